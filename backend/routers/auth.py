# routers/auth.py - Account and session endpoints
from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    AuthService, CurrentUser, PasswordChange, RefreshRequest, TokenResponse,
    UserLogin, UserRegister, decode_token, get_current_user, security,
)
from database import get_db_session

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


@router.post("/register", response_model=TokenResponse, status_code=201)
async def register(data: UserRegister, db: AsyncSession = Depends(get_db_session)):
    user = await AuthService.register_user(data, db)
    return AuthService.issue_tokens(user)


@router.post("/login", response_model=TokenResponse)
async def login(credentials: UserLogin, db: AsyncSession = Depends(get_db_session)):
    user = await AuthService.authenticate_user(credentials.email, credentials.password, db)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return AuthService.issue_tokens(user)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(data: RefreshRequest, db: AsyncSession = Depends(get_db_session)):
    """Trade a refresh token for a new pair; the old refresh token is revoked"""
    claims = decode_token(data.refresh_token, expected_type="refresh")
    if await AuthService.is_token_revoked(claims["jti"], db):
        raise HTTPException(status_code=401, detail="Refresh token has been revoked")
    user = await AuthService.load_active_user(claims["sub"], db)
    await AuthService.revoke_token(claims, db)
    return AuthService.issue_tokens(user)


@router.post("/logout")
async def logout(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Revoke the access token used for this request"""
    await AuthService.revoke_token(decode_token(credentials.credentials, expected_type="access"), db)
    return {"status": "logged_out"}


@router.get("/me", response_model=CurrentUser)
async def me(user: CurrentUser = Depends(get_current_user)):
    return user


@router.post("/change-password")
async def change_password(
    data: PasswordChange,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    account = await AuthService.load_active_user(user.id, db)
    if not AuthService.verify_password(data.current_password, account.password_hash):
        raise HTTPException(status_code=401, detail="Current password is incorrect")
    account.password_hash = AuthService.hash_password(data.new_password)
    await db.commit()
    return {"status": "password_changed"}
