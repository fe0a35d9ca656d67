"""Authentication endpoints."""
import structlog
from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from electionpoll.api.deps import get_db
from electionpoll.core import config
from electionpoll.core.constants import PURPOSE_ADMIN_LOGIN
from electionpoll.core.errors import InvalidVerification
from electionpoll.core.rate_limit import limiter, RATE_LIMITS
from electionpoll.core.sanitization import mask_phone
from electionpoll.core.security import create_access_token, is_admin_phone
from electionpoll.schemas import AdminLoginRequest, SuccessResponse
from electionpoll.services.verification import verify_challenge

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post("/admin/login", response_model=SuccessResponse)
@limiter.limit(RATE_LIMITS["admin_login"])
async def admin_login(
    request: Request,
    login: AdminLoginRequest,
    response: Response,
    db: Session = Depends(get_db)
) -> SuccessResponse:
    """
    Log an administrator in with an ``admin_login`` code.

    The phone must be listed in ADMIN_PHONES. A phone that is not listed gets
    the same answer as a wrong code, so the endpoint does not reveal who the
    administrators are.

    Example:
        Request:
            POST /api/v1/auth/admin/login
            {
                "phone": "01712345678",
                "code": "904117"
            }

        Response (200):
            {
                "success": true,
                "message": "Logged in successfully"
            }
            Set-Cookie: admin_token=eyJhbGc...; HttpOnly; SameSite=Lax

        Response (401):
            {
                "success": false,
                "error": {"code": "invalid_verification", "message": "Invalid or expired code"}
            }

    Security:
        - Token stored in httpOnly cookie (XSS protection)
        - SameSite=Lax (CSRF protection)
        - Secure flag enabled in production (HTTPS only)
    """
    if not is_admin_phone(login.phone):
        logger.warning("admin_login_rejected", phone=mask_phone(login.phone))
        raise InvalidVerification()

    if not verify_challenge(db, login.phone, login.code, PURPOSE_ADMIN_LOGIN):
        raise InvalidVerification()

    access_token = create_access_token(data={"is_admin": True, "sub": login.phone})

    response.set_cookie(
        key="admin_token",
        value=access_token,
        httponly=True,
        secure=config.settings.ENVIRONMENT == "production",
        samesite="lax",
        max_age=config.settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )
    logger.info("admin_logged_in", phone=mask_phone(login.phone))

    return SuccessResponse(success=True, message="Logged in successfully")


@router.post("/admin/logout", response_model=SuccessResponse)
async def admin_logout(response: Response) -> SuccessResponse:
    """Clear the admin cookie. Safe to call when not logged in."""
    response.delete_cookie(key="admin_token")
    return SuccessResponse(success=True, message="Logged out successfully")
