"""
Bearer token helpers
"""

from datetime import datetime, timedelta
from typing import Optional, Union, Any
from jose import JWTError, jwt

from acervo.core.config import settings


def create_access_token(
    subject: Union[str, Any], expires_delta: Optional[timedelta] = None
) -> str:
    """Issue a signed token for a user id (used by tooling and tests)"""
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(hours=1)

    to_encode = {"exp": expire, "sub": str(subject)}
    if settings.JWT_AUDIENCE:
        to_encode["aud"] = settings.JWT_AUDIENCE
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> Optional[str]:
    """Verify a token and return the user id it was issued for"""
    if not token or not settings.SECRET_KEY:
        return None
    try:
        options = {"verify_aud": bool(settings.JWT_AUDIENCE)}
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            options=options,
        )
    except JWTError:
        return None
    user_id = payload.get("sub")
    if not user_id:
        return None
    return str(user_id)
