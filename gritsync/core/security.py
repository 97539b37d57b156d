from datetime import datetime, timedelta, timezone
from typing import Any

from jose import jwt

from gritsync.core.config import settings

ALGO = "HS256"
ACCESS_TTL_MIN = 60


def _now() -> datetime:
    return datetime.now(timezone.utc)


def make_access_token(user_id: str, ttl_min: int = ACCESS_TTL_MIN) -> str:
    payload: dict[str, Any] = {
        "iss": settings.JWT_ISSUER,
        "sub": user_id,
        "type": "access",
        "exp": _now() + timedelta(minutes=ttl_min),
        "iat": _now(),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=ALGO)


def decode_token(token: str) -> dict[str, Any]:
    return jwt.decode(
        token, settings.JWT_SECRET, algorithms=[ALGO], issuer=settings.JWT_ISSUER
    )
