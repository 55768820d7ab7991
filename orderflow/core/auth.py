"""
JWT bearer tokens: creation and verification.

Tokens are issued by the identity service; this module only needs the shared
secret. The payload names the user, the role and, for restaurant and rider
users, the entity they act for.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt as pyjwt
from pydantic import BaseModel

from orderflow.core.config import settings
from orderflow.core.logging import get_logger

logger = get_logger(__name__)


class TokenPayload(BaseModel):
    """JWT token contents"""
    user_id: int
    role: str
    rider_id: Optional[int] = None
    restaurant_id: Optional[int] = None
    exp: int  # Unix timestamp


def create_access_token(
    user_id: int,
    role: str,
    rider_id: Optional[int] = None,
    restaurant_id: Optional[int] = None,
) -> str:
    """Create a signed access token"""
    if not settings.JWT_SECRET_KEY:
        raise ValueError("JWT_SECRET_KEY is not configured, cannot sign tokens")
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "user_id": user_id,
        "role": role,
        "rider_id": rider_id,
        "restaurant_id": restaurant_id,
        "exp": int(expire.timestamp()),
    }
    encoded = pyjwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    logger.info(
        "JWT token created",
        extra_data={"user_id": user_id, "role": role},
    )
    return encoded


def verify_token(token: str) -> Optional[TokenPayload]:
    """Verify a token; None when invalid, expired or malformed"""
    if not settings.JWT_SECRET_KEY:
        logger.error("JWT_SECRET_KEY is empty, tokens cannot be verified")
        return None
    try:
        payload = pyjwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
        return TokenPayload(**payload)
    except pyjwt.InvalidTokenError:
        logger.warning("JWT token invalid or expired")
        return None
    except (KeyError, ValueError) as e:
        logger.warning("JWT payload malformed", extra_data={"error": str(e)})
        return None
