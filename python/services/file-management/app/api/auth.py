"""
Email one-time-code authentication endpoints.
request-code sends a code, verify-code exchanges it for a bearer token.
"""

import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared_schemas.file_service import (
    RequestCodeRequest,
    TokenResponse,
    UserInfo,
    UserRole,
    VerifyCodeRequest,
)
from app.clients.email_notifier import EmailNotifier, get_notifier
from app.core.auth import create_access_token
from app.core.config import RouteClass, settings
from app.core.database import get_db
from app.core.errors import Forbidden, Unauthorized, VaultError
from app.core.rate_limit import RateLimiter, enforce, get_rate_limiter
from app.core.verification import VerificationCodeStore, get_verification_store
from app.models.user import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def email_domain_allowed(email: str) -> bool:
    """Empty allow-list admits every domain."""
    if not settings.ALLOWED_EMAIL_DOMAINS:
        return True
    return email.rsplit("@", 1)[-1] in settings.ALLOWED_EMAIL_DOMAINS


@router.post("/request-code")
async def request_code(
    request: RequestCodeRequest,
    response: Response,
    limiter: RateLimiter = Depends(get_rate_limiter),
    codes: VerificationCodeStore = Depends(get_verification_store),
    notifier: EmailNotifier = Depends(get_notifier),
    db: AsyncSession = Depends(get_db)
):
    """
    Send a one-time code to an email address.

    The user is created on first request with the USER role.
    """
    await enforce(limiter, RouteClass.AUTH_REQUEST_CODE, request.email, response)

    if not email_domain_allowed(request.email):
        raise Forbidden("Email domain is not allowed")

    user = await db.scalar(select(User).where(User.email == request.email))
    if user is None:
        user = User(
            email=request.email,
            name=request.email.split("@")[0],
            role=UserRole.USER
        )
        db.add(user)
        await db.commit()
        logger.info(f"Created user on first sign-in: {request.email}")

    code = await codes.issue(request.email, user.id)

    if not await notifier.send_verification_code(request.email, code):
        raise VaultError("Failed to send verification email")

    return {"success": True, "message": "Verification code sent"}


@router.post("/verify-code", response_model=TokenResponse)
async def verify_code(
    request: VerifyCodeRequest,
    response: Response,
    limiter: RateLimiter = Depends(get_rate_limiter),
    codes: VerificationCodeStore = Depends(get_verification_store),
    db: AsyncSession = Depends(get_db)
):
    """Exchange a valid code for an access token. Each code works once."""
    await enforce(limiter, RouteClass.AUTH, request.email, response)

    user_id = await codes.consume(request.email, request.code.strip())
    if user_id is None:
        raise Unauthorized("Invalid or expired code")

    user = await db.get(User, user_id)
    if user is None:
        raise Unauthorized("User no longer exists")

    token = create_access_token(user.id, user.email, user.role)
    logger.info(f"Issued access token for {user.email}")

    return TokenResponse(
        access_token=token,
        expires_in=settings.JWT_EXPIRATION_SECONDS,
        user=UserInfo.model_validate(user)
    )
