import asyncio
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from medtracker.auth import auth_rate_limit, clear_token_cookie, get_current_user, token_response
from medtracker.config import get_settings
from medtracker.database import get_db
from medtracker.exceptions import DuplicateError, UnauthorizedError, ValidationError
from medtracker.models.user import User
from medtracker.schemas.user import (
    EmailRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UpdateDetailsRequest,
    UpdatePasswordRequest,
    UserProfile,
)
from medtracker.services.email_service import email_service
from medtracker.services.user_service import user_service
from medtracker.utils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/register", dependencies=[Depends(auth_rate_limit)])
async def register(data: RegisterRequest, db: AsyncSession = Depends(get_db)):
    if data.confirm_password is not None and data.password != data.confirm_password:
        raise ValidationError("Passwords do not match")

    if await user_service.get_by_email(data.email, db):
        raise DuplicateError("email")

    user, verification_token = await user_service.create(data.name, data.email, data.password, db)
    await asyncio.to_thread(email_service.send_verification_email, user.email, user.name, verification_token)

    return token_response(
        user, 201, "User registered successfully. Please check your email to verify your account."
    )


@router.post("/login", dependencies=[Depends(auth_rate_limit)])
async def login(data: LoginRequest, db: AsyncSession = Depends(get_db)):
    user = await user_service.get_by_email(data.email, db)
    if not user:
        raise UnauthorizedError("Invalid email or password")

    if user.is_locked:
        raise UnauthorizedError(
            "Your account has been locked due to multiple failed login attempts. Please try again later."
        )

    if not user_service.check_password(user, data.password):
        user_service.register_failed_login(user)
        # The request fails, but the attempt counter must survive the rollback
        await db.commit()
        logger.info("Failed login for user id=%s (attempts=%s)", user.id, user.login_attempts)
        raise UnauthorizedError("Invalid email or password")

    if user.login_attempts or user.lock_until:
        user_service.clear_login_attempts(user)
    user.last_login = utcnow()
    await db.flush()
    logger.info("User id=%s logged in", user.id)

    return token_response(user, 200, "Login successful")


@router.get("/logout")
async def logout(current_user: User = Depends(get_current_user)):
    response = JSONResponse({"status": "success", "message": "Logged out successfully"})
    clear_token_cookie(response)
    return response


@router.get("/me")
async def get_me(current_user: User = Depends(get_current_user)):
    return {"status": "success", "data": {"user": UserProfile.model_validate(current_user)}}


@router.put("/updatedetails")
async def update_details(
    data: UpdateDetailsRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    update_data = data.model_dump(exclude_unset=True)

    new_email = update_data.get("email")
    if new_email and new_email != current_user.email:
        existing = await user_service.get_by_email(new_email, db)
        if existing and existing.id != current_user.id:
            raise DuplicateError("email")

    for key, value in update_data.items():
        if key in ("name", "email") and value is None:
            continue
        setattr(current_user, key, value)

    await db.flush()
    return {
        "status": "success",
        "message": "User details updated successfully",
        "data": {"user": UserProfile.model_validate(current_user)},
    }


@router.put("/updatepassword")
async def update_password(
    data: UpdatePasswordRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if data.new_password != data.confirm_new_password:
        raise ValidationError("New passwords do not match")

    if not user_service.check_password(current_user, data.current_password):
        raise UnauthorizedError("Current password is incorrect")

    user_service.set_password(current_user, data.new_password)
    await db.flush()
    return token_response(current_user, 200, "Password updated successfully")


@router.post("/forgotpassword", dependencies=[Depends(auth_rate_limit)])
async def forgot_password(data: EmailRequest, db: AsyncSession = Depends(get_db)):
    user = await user_service.get_by_email(data.email, db)
    if not user:
        raise ValidationError("There is no user with that email")

    reset_token = user_service.issue_reset_token(user)
    await db.flush()
    await asyncio.to_thread(
        email_service.send_password_reset_email,
        user.email,
        user.name,
        reset_token,
        get_settings().reset_token_expire_minutes,
    )
    logger.info("Password reset requested for user id=%s", user.id)

    return {"status": "success", "message": "Password reset token sent to email"}


@router.put("/resetpassword/{reset_token}")
async def reset_password(reset_token: str, data: ResetPasswordRequest, db: AsyncSession = Depends(get_db)):
    if data.confirm_password is not None and data.password != data.confirm_password:
        raise ValidationError("Passwords do not match")

    user = await user_service.find_by_reset_token(reset_token, db)
    if not user:
        raise ValidationError("Invalid or expired reset token")

    user_service.set_password(user, data.password)
    user.reset_password_token = None
    user.reset_password_expires = None
    user_service.clear_login_attempts(user)
    await db.flush()
    logger.info("Password reset completed for user id=%s", user.id)

    return token_response(user, 200, "Password reset successful")


@router.get("/verifyemail/{verification_token}")
async def verify_email(verification_token: str, db: AsyncSession = Depends(get_db)):
    user = await user_service.find_by_verification_token(verification_token, db)
    if not user:
        raise ValidationError("Invalid or expired verification token")

    user.email_verified = True
    user.email_verification_token = None
    await db.flush()

    return token_response(user, 200, "Email verified successfully")


@router.post("/resendverification", dependencies=[Depends(auth_rate_limit)])
async def resend_verification(data: EmailRequest, db: AsyncSession = Depends(get_db)):
    user = await user_service.get_by_email(data.email, db)
    if not user:
        raise ValidationError("There is no user with that email")
    if user.email_verified:
        raise ValidationError("Email is already verified")

    verification_token = user_service.issue_verification_token(user)
    await db.flush()
    await asyncio.to_thread(email_service.send_verification_email, user.email, user.name, verification_token)

    return {"status": "success", "message": "Verification email sent"}
