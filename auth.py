import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm

import models
from config import Settings
from errors import EmailDeliveryError
from utils.dependencies import (get_current_user, get_email_sender, get_password_reset_service,
                                get_settings, get_user_service)
from utils.security import create_access_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])

@router.post("/register", response_model=models.UserResponse)
async def register(user: models.UserCreate, users=Depends(get_user_service)):
    # Self-registration always creates a member; admins are promoted later
    return await users.register(user.user_id, user.name, user.email, user.password)

@router.post("/login", response_model=models.Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends(),
                users=Depends(get_user_service),
                settings: Settings = Depends(get_settings)):
    user = await users.authenticate(form_data.username, form_data.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    token = create_access_token(
        {"sub": user["user_id"], "role": user["role"]},
        timedelta(minutes=settings.access_token_expire_minutes),
        secret_key=settings.secret_key,
        algorithm=settings.algorithm,
    )
    return models.Token(access_token=token)

@router.get("/me", response_model=models.UserResponse)
async def get_current_user_info(current_user: dict = Depends(get_current_user)):
    """Get current user information"""
    return current_user

@router.patch("/me", response_model=models.UserResponse)
async def update_profile(profile: models.ProfileUpdate,
                         current_user: dict = Depends(get_current_user),
                         users=Depends(get_user_service)):
    return await users.update_profile(current_user["user_id"], profile.name, profile.email)

@router.post("/change-password")
async def change_password(body: models.PasswordChange,
                          current_user: dict = Depends(get_current_user),
                          users=Depends(get_user_service)):
    await users.change_password(current_user["user_id"], body.current_password, body.new_password)
    return {"message": "Password changed successfully"}

@router.post("/forgot-password")
async def forgot_password(body: models.ForgotPasswordRequest,
                          resets=Depends(get_password_reset_service),
                          email_sender=Depends(get_email_sender),
                          settings: Settings = Depends(get_settings)):
    user, token = await resets.generate_reset_token(body.email)
    reset_url = f"{settings.api_base_url.rstrip('/')}/auth/reset-password/{token}"
    try:
        await email_sender.send_password_reset(user["email"], user["name"], reset_url)
    except EmailDeliveryError:
        # The token stays valid; the user can ask again once mail is back
        logger.warning("Reset email for %s could not be delivered", user["user_id"])
        return {"message": "Reset token created but the email could not be sent", "email_sent": False}
    return {"message": "Password reset link sent to your email", "email_sent": True}

@router.get("/reset-password/{token}")
async def check_reset_token(token: str, resets=Depends(get_password_reset_service)):
    return {"valid": await resets.validate_token(token)}

@router.post("/reset-password")
async def reset_password(body: models.ResetPasswordRequest, resets=Depends(get_password_reset_service)):
    if body.new_password != body.confirm_password:
        raise HTTPException(status_code=400, detail="Passwords do not match")
    await resets.reset_password(body.token, body.new_password)
    return {"message": "Password has been reset successfully"}

@router.get("/user-id-available")
async def user_id_available(user_id: str = "", users=Depends(get_user_service)):
    return {"available": await users.is_user_id_available(user_id)}

@router.get("/email-available")
async def email_available(email: str = "", users=Depends(get_user_service)):
    return {"available": await users.is_email_available(email)}
