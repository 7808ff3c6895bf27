from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt

from .config import get_settings


def create_access_token(
    *,
    subject: str | int,
    additional_claims: Dict[str, Any] | None = None,
) -> str:
    """Mint a token the way the identity provider does; used by tooling and tests."""

    settings = get_settings()
    expire = datetime.now(tz=timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    payload: Dict[str, Any] = {
        "sub": str(subject),
        "type": "access",
        "exp": expire,
    }
    if additional_claims:
        payload.update(additional_claims)
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    settings = get_settings()
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
