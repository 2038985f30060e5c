"""
Authentication for File Vault Service.
Bearer JWTs issued by the verify-code flow identify the calling principal.
"""

import time
import uuid
from dataclasses import dataclass

import jwt
from fastapi import Depends, Header

from app.core.config import settings
from app.core.errors import Forbidden, Unauthorized
from shared_schemas.file_service import UserRole


@dataclass(frozen=True)
class Principal:
    """Authenticated caller decoded from the access token."""
    id: uuid.UUID
    email: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def create_access_token(user_id: uuid.UUID, email: str, role: UserRole) -> str:
    """
    Issue a signed access token.

    Args:
        user_id: User primary key
        email: User email
        role: User role

    Returns:
        Encoded JWT
    """
    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "email": email,
        "role": role.value,
        "iat": now,
        "exp": now + settings.JWT_EXPIRATION_SECONDS,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Principal:
    """
    Validate a token and build the principal.

    Raises:
        Unauthorized: If the token is expired, malformed or has a bad signature
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token")

    try:
        return Principal(
            id=uuid.UUID(payload["sub"]),
            email=payload["email"],
            role=UserRole(payload["role"]),
        )
    except (KeyError, ValueError):
        raise Unauthorized("Invalid token claims")


async def get_current_principal(authorization: str = Header(None)) -> Principal:
    """
    Verify the Bearer token on the request.

    Raises:
        Unauthorized: If the header is missing or the token is invalid
    """
    if not authorization:
        raise Unauthorized("Authorization header missing")

    if not authorization.startswith("Bearer "):
        raise Unauthorized("Invalid authorization header format. Use: Bearer <token>")

    return decode_access_token(authorization.replace("Bearer ", "", 1))


async def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    """Allow only ADMIN principals."""
    if not principal.is_admin:
        raise Forbidden("Admin access required")
    return principal
