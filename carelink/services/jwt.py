import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from carelink.core.config import settings

logger = logging.getLogger(__name__)


def create_access_token(
    subject: str,
    expires_delta: Optional[timedelta] = None,
    user_data: Optional[dict] = None
) -> str:
    """Issue an access token in the same shape the hosted auth provider does.

    Used by local tooling and the test suite; production tokens come from the
    auth provider itself.
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.JWT_EXPIRE_MINUTES))

    payload = {
        "sub": str(subject),
        "exp": int(expire.timestamp()),
        "iat": int(now.timestamp()),
    }
    if settings.JWT_AUDIENCE:
        payload["aud"] = settings.JWT_AUDIENCE

    if user_data:
        for key, value in user_data.items():
            if value is not None and key not in payload:
                payload[key] = str(value)

    encoded_jwt = jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    logger.debug("Issued access token for sub=%s", subject)
    return encoded_jwt


def decode_token(token: str) -> dict:
    """Verify signature and expiry; raises ``jwt.InvalidTokenError`` subclasses."""
    if settings.JWT_AUDIENCE:
        return jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
        )
    return jwt.decode(
        token,
        settings.JWT_SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
        options={"verify_aud": False},
    )
