import os
from functools import lru_cache
from pathlib import Path

# Seeded for every new account, in this order. "other" is a UI-only marker
# and is never persisted as a category type.
DEFAULT_CATEGORIES: list[tuple[str, str]] = [
    ("food", "expense"),
    ("transport", "expense"),
    ("shopping", "expense"),
    ("salary", "income"),
    ("freelance", "income"),
    ("other", "other"),
]


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        session_secret: str,
        session_max_age_hours: int,
        bcrypt_rounds: int,
        log_level: str,
        default_categories: list[tuple[str, str]],
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.session_secret = session_secret
        self.session_max_age_hours = session_max_age_hours
        self.bcrypt_rounds = bcrypt_rounds
        self.log_level = log_level
        self.default_categories = default_categories


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budget.db"
    database_url = os.getenv("BUDGET_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("BUDGET_TIMEZONE", "UTC")
    session_secret = os.getenv(
        "BUDGET_SESSION_SECRET",
        "5d0c3f0b8f7c4f63a8e4f1a3b2c9d7e6a1f0b4c8d2e6f9a3b7c1d5e8f2a6b0c4",
    )
    session_max_age_hours = int(os.getenv("BUDGET_SESSION_MAX_AGE_HOURS", "720"))
    bcrypt_rounds = int(os.getenv("BUDGET_BCRYPT_ROUNDS", "10"))
    log_level = os.getenv("BUDGET_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        session_secret=session_secret,
        session_max_age_hours=session_max_age_hours,
        bcrypt_rounds=bcrypt_rounds,
        log_level=log_level,
        default_categories=list(DEFAULT_CATEGORIES),
    )
