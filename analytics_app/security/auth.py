"""
Credential verification for the admin surfaces.

Tokens are HS256 JWTs issued by the main application's auth service; this
module only verifies them. ``create_access_token`` exists for tooling and
tests that need a token without the auth service.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from analytics_app.config import settings
from analytics_app.exceptions import AuthenticationError, PermissionDeniedError

logger = structlog.get_logger()

bearer_scheme = HTTPBearer(auto_error=False)


class TokenPayload(BaseModel):
    subject_id: str
    role: str


def create_access_token(subject_id: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.jwt_expires_minutes))
    payload = {"sub": str(subject_id), "role": role, "iat": now, "exp": expire}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_credential(token: str) -> TokenPayload:
    """
    Decode and validate a token.

    Raises:
        AuthenticationError: Missing, malformed, badly signed or expired token
    """
    if not token:
        raise AuthenticationError("Authentication required")
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except jwt.InvalidTokenError as e:
        logger.debug("Invalid token", error=str(e))
        raise AuthenticationError("Invalid token")

    subject_id = payload.get("sub") or payload.get("user_id")
    role = payload.get("role")
    if not subject_id or not role:
        raise AuthenticationError("Invalid token payload")
    return TokenPayload(subject_id=str(subject_id), role=str(role))


def is_privileged(payload: TokenPayload) -> bool:
    return payload.role.lower() in {role.lower() for role in settings.admin_roles}


def verify_admin(token: str) -> TokenPayload:
    """verify_credential plus a privileged-role check"""
    payload = verify_credential(token)
    if not is_privileged(payload):
        raise PermissionDeniedError()
    return payload


def is_admin_token(token: Optional[str]) -> bool:
    """True for a valid privileged token; never raises"""
    if not token:
        return False
    try:
        verify_admin(token)
    except (AuthenticationError, PermissionDeniedError):
        return False
    return True


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Token part of an ``Authorization: Bearer <token>`` header"""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> TokenPayload:
    """FastAPI dependency guarding the reporting routes"""
    if credentials is None:
        raise AuthenticationError("Authentication required")
    return verify_admin(credentials.credentials)
