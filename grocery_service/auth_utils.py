# grocery_service/auth_utils.py
import hashlib
import hmac
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer

from grocery_service.config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, get_secret_key
from grocery_service.db.models import RoleEnum

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def hash_password(password: str) -> str:
    """Hash a password with SHA-256."""
    return hashlib.sha256(password.encode()).hexdigest()


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Compare a password with its stored hash."""
    return hmac.compare_digest(hash_password(plain_password), hashed_password)


def create_access_token(data: dict, expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES):
    """Create a JWT that expires after `expires_minutes`."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, get_secret_key(), algorithm=ALGORITHM)


def verify_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, get_secret_key(), algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Token is not valid")

    user_id = payload.get("id")
    role = payload.get("role")
    if user_id is None or role is None:
        raise HTTPException(status_code=401, detail="Token is not valid")
    return {"id": int(user_id), "username": payload.get("sub"), "role": role}


async def get_current_user(token: str = Depends(oauth2_scheme)) -> dict:
    if not token:
        raise HTTPException(status_code=401, detail="Token is not provided")
    return verify_token(token)


def require_role(role: RoleEnum):
    async def checker(user: dict = Depends(get_current_user)) -> dict:
        if user["role"] != role.value:
            raise HTTPException(status_code=403, detail="Forbidden - Insufficient Permissions")
        return user
    return checker


def authorize_user(user: dict, user_id: int):
    """The caller may only act on its own user id."""
    if user["id"] != user_id:
        raise HTTPException(status_code=401, detail="Unauthorized - Invalid User ID")
