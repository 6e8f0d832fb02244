# auth.py - Identity for Workboard
# - HS256 access/refresh tokens carrying a jti so logout can revoke them
# - bcrypt password hashes and a password policy
# - Per-email failed-login throttle
# - get_current_user dependency
#
# The platform role on the user record only gates workspace creation. Board
# permissions are resolved per workspace by access.AccessResolver.

import os
import uuid
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List

import bcrypt
from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import HTTPException, Depends, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from models import User, RevokedToken, MemberRole

logger = logging.getLogger("workboard.auth")

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY:
    SECRET_KEY = secrets.token_urlsafe(64)
    logger.warning("JWT_SECRET_KEY not set; tokens are signed with an ephemeral key and die with this process")

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))
MIN_PASSWORD_LENGTH = 8
MAX_LOGIN_ATTEMPTS = 5
LOGIN_LOCKOUT_MINUTES = 15

security = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def check_password_strength(password: str) -> str:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not any(c.isupper() for c in password) or not any(c.isdigit() for c in password):
        raise ValueError("Password must contain an uppercase letter and a digit")
    return password


# ============================================================
# SCHEMAS
# ============================================================

class UserRegister(BaseModel):
    email: EmailStr
    password: str
    name: str = ""

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return check_password_strength(v)


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class PasswordChange(BaseModel):
    current_password: str
    new_password: str

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, v: str) -> str:
        return check_password_strength(v)


class RefreshRequest(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: Dict[str, Any]


class CurrentUser(BaseModel):
    """The authenticated caller as seen by services"""
    id: str
    email: str
    name: str
    role: str
    is_active: bool

    @property
    def is_owner_admin(self) -> bool:
        return self.role == MemberRole.OWNER_ADMIN.value


def _role_value(role) -> str:
    return role.value if isinstance(role, MemberRole) else role


def _current_user(user: User) -> CurrentUser:
    return CurrentUser(
        id=user.id,
        email=user.email,
        name=user.name or "",
        role=_role_value(user.role),
        is_active=user.is_active,
    )


# ============================================================
# TOKENS
# ============================================================

def encode_token(data: Dict[str, Any], token_type: str, ttl: timedelta) -> str:
    now = datetime.now(timezone.utc)
    claims = dict(data, type=token_type, iat=now, exp=now + ttl, jti=uuid.uuid4().hex)
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str, expected_type: Optional[str] = None) -> Dict[str, Any]:
    """Verified claims, or 401"""
    try:
        claims = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except JWTError:
        raise _unauthorized("Invalid token")
    if expected_type and claims.get("type") != expected_type:
        raise _unauthorized(f"Expected a {expected_type} token")
    if not claims.get("sub"):
        raise _unauthorized("Invalid token")
    return claims


def read_access_claims(token: str) -> Optional[Dict[str, Any]]:
    """Like decode_token for access tokens, but None instead of raising"""
    try:
        return decode_token(token, expected_type="access")
    except HTTPException:
        return None


# ============================================================
# LOGIN THROTTLE
# ============================================================

class LoginThrottle:
    """Sliding window of failed logins per email, kept in process memory"""

    def __init__(self, max_attempts: int, window: timedelta):
        self.max_attempts = max_attempts
        self.window = window
        self._failures: Dict[str, List[datetime]] = {}

    def check(self, email: str) -> None:
        cutoff = datetime.now(timezone.utc) - self.window
        recent = [t for t in self._failures.get(email, ()) if t > cutoff]
        self._failures[email] = recent
        if len(recent) >= self.max_attempts:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=f"Too many login attempts. Try again in {int(self.window.total_seconds() // 60)} minutes.",
            )

    def failed(self, email: str) -> None:
        self._failures.setdefault(email, []).append(datetime.now(timezone.utc))

    def reset(self, email: str) -> None:
        self._failures.pop(email, None)


login_throttle = LoginThrottle(MAX_LOGIN_ATTEMPTS, timedelta(minutes=LOGIN_LOCKOUT_MINUTES))


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:

    @staticmethod
    def hash_password(password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=12)).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))

    @staticmethod
    def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        return encode_token(data, "access", expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))

    @staticmethod
    def create_refresh_token(data: Dict[str, Any]) -> str:
        return encode_token(data, "refresh", timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS))

    @staticmethod
    def issue_tokens(user: User) -> TokenResponse:
        role = _role_value(user.role)
        return TokenResponse(
            access_token=AuthService.create_access_token({"sub": user.id, "email": user.email, "role": role}),
            refresh_token=AuthService.create_refresh_token({"sub": user.id}),
            expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            user={"id": user.id, "email": user.email, "name": user.name, "role": role},
        )

    @staticmethod
    async def register_user(data: UserRegister, db: AsyncSession) -> User:
        """New accounts start as CUSTOMER; workspace admins raise roles per workspace"""
        taken = (await db.execute(select(User.id).where(User.email == data.email))).scalar_one_or_none()
        if taken is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User already exists")

        user = User(
            email=data.email,
            name=data.name or data.email.split("@")[0],
            password_hash=AuthService.hash_password(data.password),
            role=MemberRole.CUSTOMER,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        logger.info(f"Registered user {user.id[:8]}")
        return user

    @staticmethod
    async def authenticate_user(email: str, password: str, db: AsyncSession) -> Optional[User]:
        login_throttle.check(email)

        user = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()
        if user is None or not AuthService.verify_password(password, user.password_hash):
            login_throttle.failed(email)
            logger.warning(f"Failed login for {email}")
            return None
        if not user.is_active:
            return None

        login_throttle.reset(email)
        user.last_login_at = datetime.now(timezone.utc)
        await db.commit()
        return user

    @staticmethod
    async def load_active_user(user_id: str, db: AsyncSession) -> User:
        user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
        if user is None or not user.is_active:
            raise _unauthorized("User not found or inactive")
        return user

    @staticmethod
    async def is_token_revoked(jti: str, db: AsyncSession) -> bool:
        found = (await db.execute(select(RevokedToken.jti).where(RevokedToken.jti == jti))).scalar_one_or_none()
        return found is not None

    @staticmethod
    async def revoke_token(claims: Dict[str, Any], db: AsyncSession) -> None:
        db.add(RevokedToken(
            jti=claims["jti"],
            user_id=claims["sub"],
            expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
        ))
        await db.commit()


# ============================================================
# DEPENDENCIES
# ============================================================

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> CurrentUser:
    claims = decode_token(credentials.credentials, expected_type="access")
    if await AuthService.is_token_revoked(claims.get("jti", ""), db):
        raise _unauthorized("Token has been revoked")
    user = await AuthService.load_active_user(claims["sub"], db)
    return _current_user(user)
