from typing import Optional, Protocol

import bcrypt
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings


class PasswordHasher(Protocol):
    def hash(self, password: str) -> str: ...

    def verify(self, password: str, hashed: str) -> bool: ...


class BcryptPasswordHasher:
    def __init__(self, rounds: Optional[int] = None) -> None:
        self.rounds = rounds or get_settings().bcrypt_rounds

    def hash(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    def verify(self, password: str, hashed: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            return False


def _serializer(secret: Optional[str] = None) -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(secret or settings.session_secret, salt="session")


def issue_session_token(user_id: int, *, secret: Optional[str] = None) -> str:
    return _serializer(secret).dumps({"u": user_id})


def resolve_session_token(
    token: str, *, secret: Optional[str] = None, max_age_hours: Optional[int] = None
) -> Optional[int]:
    """Return the user id signed into ``token``, or None if it is not valid."""
    if max_age_hours is None:
        max_age_hours = get_settings().session_max_age_hours
    try:
        data = _serializer(secret).loads(token, max_age=max_age_hours * 3600)
    except (SignatureExpired, BadSignature):
        return None

    user_id = data.get("u") if isinstance(data, dict) else None
    if not isinstance(user_id, int):
        return None
    return user_id
