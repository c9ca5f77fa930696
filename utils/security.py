from datetime import timedelta
from typing import Optional

from jose import jwt
from passlib.context import CryptContext

from config import settings
from utils.clock import utcnow

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str):
    return pwd_context.hash(password)

def verify_password(plain, hashed):
    return pwd_context.verify(plain, hashed)

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None,
                        secret_key: str = None, algorithm: str = None):
    to_encode = data.copy()
    expire = utcnow() + (expires_delta or timedelta(minutes=15))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, secret_key or settings.secret_key, algorithm=algorithm or settings.algorithm)

def decode_access_token(token: str, secret_key: str = None, algorithm: str = None) -> dict:
    # Raises jose.JWTError for a bad signature or an expired token
    return jwt.decode(token, secret_key or settings.secret_key, algorithms=[algorithm or settings.algorithm])
