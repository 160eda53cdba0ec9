import re
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_LEGACY_DATE = re.compile(r"^\d{2}-\d{2}-\d{4}$")
_MONTH = re.compile(r"^\d{4}-\d{2}$")


def normalize_date(value: Optional[str]) -> Optional[str]:
    """Return ``value`` as YYYY-MM-DD, or None when it is not a real date.

    Both the canonical YYYY-MM-DD shape and the older DD-MM-YYYY shape are
    accepted.
    """
    if not value:
        return None
    value = value.strip()
    if _ISO_DATE.match(value):
        candidate = value
    elif _LEGACY_DATE.match(value):
        day, month, year = value.split("-")
        candidate = f"{year}-{month}-{day}"
    else:
        return None
    try:
        date.fromisoformat(candidate)
    except ValueError:
        return None
    return candidate


def today_in(timezone: str) -> date:
    return datetime.now(ZoneInfo(timezone)).date()


def resolve_month(month: Optional[str], *, today: Optional[date] = None) -> str:
    today = today or date.today()
    if not month:
        return today.strftime("%Y-%m")
    month = month.strip()
    if not _MONTH.match(month):
        raise ValueError("Month must look like YYYY-MM")
    if not 1 <= int(month[5:]) <= 12:
        raise ValueError("Month must look like YYYY-MM")
    return month
