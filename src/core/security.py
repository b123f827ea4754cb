"""
Access token helpers
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import jwt

from .config import settings


def create_access_token(
    user_id: str,
    roles: Optional[List[str]] = None,
    expires_minutes: Optional[int] = None,
    extra_claims: Optional[Dict[str, Any]] = None
) -> str:
    """Issue a signed access token for a user"""
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "sub": user_id,
        "roles": roles or [],
        "iss": settings.JWT_ISSUER,
        "iat": now,
        "exp": expire,
    }
    if extra_claims:
        payload.update(extra_claims)
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Verify and decode an access token

    Raises:
        jwt.PyJWTError: token is invalid or expired
    """
    payload = jwt.decode(
        token,
        settings.JWT_SECRET,
        algorithms=[settings.JWT_ALGORITHM],
        issuer=settings.JWT_ISSUER,
        options={"require": ["exp", "sub"]},
    )
    return payload


def peek_token_claims(authorization: Optional[str]) -> Optional[Dict[str, Any]]:
    """Claims from a bearer header, or None when absent or invalid"""
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    try:
        return decode_access_token(authorization.split(" ", 1)[1].strip())
    except jwt.PyJWTError:
        return None
