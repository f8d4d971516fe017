"""
Authentication boundary

Sessions are issued by the portal's identity service; this module only
verifies the signed bearer token it hands to the browser and exposes the
caller as a Principal.
"""

import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from . import config
from .shared.errors import AuthError, ForbiddenError

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

ROLE_ADMIN = "ADMIN"
ROLE_CLIENT = "CLIENT"


@dataclass(frozen=True)
class Principal:
    user_id: str
    email: str
    role: str = ROLE_CLIENT

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def owns(self, client_email: Optional[str]) -> bool:
        return bool(client_email) and client_email.strip().lower() == self.email.lower()


def decode_session_token(token: str) -> Principal:
    """Verify a session JWT and return the principal it names"""
    try:
        claims = jwt.decode(token, config.SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"⚠️ Rejected session token: {e}")
        raise AuthError("Invalid or expired session token", code="InvalidSession") from e

    user_id = claims.get("sub")
    email = claims.get("email")
    if not user_id or not email:
        logger.error(f"❌ Token missing required claims. Available claims: {list(claims.keys())}")
        raise AuthError("Invalid token claims", code="InvalidSession")

    return Principal(user_id=str(user_id), email=email, role=claims.get("role", ROLE_CLIENT))


def create_session_token(user_id: str, email: str, role: str = ROLE_CLIENT) -> str:
    """Issue a session token (used by the identity service and by tests)"""
    return jwt.encode(
        {"sub": user_id, "email": email, "role": role},
        config.SECRET_KEY,
        algorithm=config.JWT_ALGORITHM,
    )


async def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Principal:
    """Get the calling principal from the Authorization header"""
    if not credentials:
        raise AuthError(
            "Not authenticated. Please provide a valid Bearer token in the Authorization header.",
            code="NotAuthenticated",
        )
    return decode_session_token(credentials.credentials)


async def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_admin:
        logger.warning(f"⚠️ Non-admin {principal.email} attempted an admin action")
        raise ForbiddenError("Admin access required")
    return principal


async def require_cron_secret(request: Request) -> None:
    """Guard for the externally triggered reminder scan"""
    if not config.CRON_SECRET:
        logger.error("❌ CRON_SECRET not configured - refusing cron trigger")
        raise AuthError("Cron trigger not configured", code="CronNotConfigured")

    header = request.headers.get("authorization", "")
    expected = f"Bearer {config.CRON_SECRET}"
    if not hmac.compare_digest(header.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("🚫 Cron trigger rejected: bad bearer secret")
        raise AuthError("Unauthorized")
