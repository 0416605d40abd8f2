import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

import settings
from database import create_document, get_db, to_object_id
from errors import NotFoundError, PermissionDenied, RemotePersistenceError, Unauthenticated, ValidationError
from schemas import User as UserSchema

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/login", auto_error=False)


class Account(BaseModel):
    id: str
    email: EmailStr
    full_name: str
    role: str = "buyer"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def _account(doc) -> Account:
    return Account(id=str(doc["_id"]), email=doc["email"], full_name=doc.get("full_name", ""), role=doc.get("role", "buyer"))


def register(db: Database, email: str, password: str, full_name: str) -> Account:
    if db["user"].find_one({"email": email}):
        raise ValidationError("Email already registered", {"email": "Email already registered"})
    user = UserSchema(email=email, full_name=full_name, password_hash=get_password_hash(password))
    try:
        user_id = create_document("user", user, database=db)
    except RemotePersistenceError as e:
        if isinstance(e.cause, DuplicateKeyError):
            raise ValidationError("Email already registered", {"email": "Email already registered"})
        raise
    logger.info("Registered account %s", email)
    return Account(id=user_id, email=user.email, full_name=user.full_name, role=user.role)


def authenticate(db: Database, email: str, password: str) -> Token:
    try:
        user = db["user"].find_one({"email": email})
    except PyMongoError as e:
        raise RemotePersistenceError("read user", e) from e
    if not user or not verify_password(password, user.get("password_hash", "")):
        raise Unauthenticated("Incorrect email or password")
    return Token(access_token=create_access_token({"sub": str(user["_id"])}))


def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db: Database = Depends(get_db)) -> Account:
    if not token:
        raise Unauthenticated()
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id = payload.get("sub")
    except JWTError:
        raise Unauthenticated("Could not validate credentials")
    if user_id is None:
        raise Unauthenticated("Could not validate credentials")
    try:
        user = db["user"].find_one({"_id": to_object_id(user_id, "User")})
    except NotFoundError:
        raise Unauthenticated("Could not validate credentials")
    if not user:
        raise Unauthenticated("Could not validate credentials")
    return _account(user)


def require_admin(current: Account = Depends(get_current_user)) -> Account:
    if not current.is_admin:
        raise PermissionDenied()
    return current
