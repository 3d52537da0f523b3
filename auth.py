import os
import uuid
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr

from database import get_db, object_id, DocumentNotFound

logger = logging.getLogger(__name__)

SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/login", auto_error=False)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserOut(BaseModel):
    id: str
    email: EmailStr
    display_name: str = ""
    is_admin: bool = False


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire, "jti": uuid.uuid4().hex})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])


def is_admin(db, user_id: str) -> bool:
    role = db["user_role"].find_one({"user_id": user_id})
    return bool(role and role.get("is_admin"))


def user_out(db, user: dict) -> UserOut:
    user_id = str(user["_id"])
    return UserOut(
        id=user_id,
        email=user["email"],
        display_name=user.get("display_name", ""),
        is_admin=is_admin(db, user_id),
    )


def _resolve_user(db, token: str) -> UserOut:
    credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
    if db is None:
        raise HTTPException(500, "Database not configured")
    try:
        payload = decode_token(token)
        user_id: str = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception
    if db["revoked_token"].find_one({"jti": payload.get("jti")}):
        raise credentials_exception
    try:
        user = db["user"].find_one({"_id": object_id(user_id)})
    except DocumentNotFound:
        raise credentials_exception
    if not user:
        raise credentials_exception
    return user_out(db, user)


def get_current_user(token: str = Depends(oauth2_scheme), db=Depends(get_db)) -> UserOut:
    return _resolve_user(db, token)


def get_optional_user(token: Optional[str] = Depends(optional_oauth2_scheme), db=Depends(get_db)) -> Optional[UserOut]:
    if not token:
        return None
    return _resolve_user(db, token)


def require_admin(current: UserOut = Depends(get_current_user)) -> UserOut:
    if not current.is_admin:
        raise HTTPException(403, "Admin access required")
    return current


def revoke_token(db, token: str) -> None:
    payload = decode_token(token)
    db["revoked_token"].insert_one({
        "jti": payload.get("jti"),
        "user_id": payload.get("sub"),
        "expires_at": datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    })
    logger.info("Token revoked for user %s", payload.get("sub"))
