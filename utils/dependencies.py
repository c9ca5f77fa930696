from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from config import Settings
from models import Role
from utils.security import decode_access_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")


# Services are built once by the app factory and kept on app.state
def get_settings(request: Request) -> Settings:
    return request.app.state.settings

def get_store(request: Request):
    return request.app.state.store

def get_user_service(request: Request):
    return request.app.state.users

def get_catalog_service(request: Request):
    return request.app.state.catalog

def get_borrowing_service(request: Request):
    return request.app.state.borrowing

def get_notification_service(request: Request):
    return request.app.state.notifications

def get_review_service(request: Request):
    return request.app.state.reviews

def get_password_reset_service(request: Request):
    return request.app.state.password_reset

def get_email_sender(request: Request):
    return request.app.state.email_sender

def get_sweeper(request: Request):
    return request.app.state.sweeper


def is_admin(user: dict) -> bool:
    return user.get("role") == Role.ADMIN.value


async def get_current_user(request: Request, token: str = Depends(oauth2_scheme)):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    settings = get_settings(request)
    try:
        payload = decode_access_token(token, settings.secret_key, settings.algorithm)
        user_id: str = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    user = await get_store(request).get_user_by_id(user_id)
    if user is None:
        raise credentials_exception
    if not user.get("is_active", True):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated")
    return user

async def admin_required(current_user: dict = Depends(get_current_user)):
    if not is_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user
