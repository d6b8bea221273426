from datetime import timedelta
from typing import Any, Optional, Union

from jose import jwt

from complaint_desk.core.config import settings
from complaint_desk.core.time_utils import get_utc_now

ALGORITHM = "HS256"


def create_access_token(subject: Union[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Issue a signed access token for a user id.
    Token issuance belongs to the identity provider; this exists for
    local tooling and tests.
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    expire = get_utc_now() + expires_delta
    to_encode = {"exp": expire, "sub": str(subject)}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Raises jose.JWTError on bad signature or expiry."""
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
