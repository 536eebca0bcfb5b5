# =============================================================================
# Auth API Routes
# =============================================================================
#
# Endpoints:
#   POST /auth/register         - Start registration (emails verification link)
#   POST /auth/verify-email     - Finish registration
#   POST /auth/login            - Get tokens (also set as cookies)
#   POST /auth/refresh          - New access token from a refresh token
#   POST /auth/logout           - Revoke access + refresh tokens
#   POST /auth/forgot-password  - Request password reset
#   POST /auth/reset-password   - Reset password with token
#   GET  /auth/me               - Current user
#
# OAuth:
#   GET  /auth/google/authorize - Get Google redirect URL
#   GET  /auth/google/callback  - Complete Google sign-in
#
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel, EmailStr, Field

from tracker.api.responses import respond
from tracker.auth.context import Principal
from tracker.auth.policies import get_engine, get_principal, optional_bearer
from tracker.auth.tokens import TokenError
from tracker.core.results import Unauthenticated
from tracker.engine import Engine
from tracker.integrations.oauth import GoogleOAuth, OAuthError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# =============================================================================
# Request Models
# =============================================================================


class RegisterRequest(BaseModel):
    username: str = Field(min_length=3, max_length=20, pattern=r"^[A-Za-z0-9_]+$")
    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=8)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str | None = None


class VerifyEmailRequest(BaseModel):
    token: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str = Field(min_length=8)


# =============================================================================
# Cookies
# =============================================================================


def _set_auth_cookies(response: Response, engine: Engine, access: str, refresh: str | None = None) -> None:
    settings = engine.settings
    response.set_cookie(
        settings.access_cookie_name,
        access,
        max_age=settings.jwt_access_token_expire_minutes * 60,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )
    if refresh is not None:
        response.set_cookie(
            settings.refresh_cookie_name,
            refresh,
            max_age=settings.jwt_refresh_token_expire_days * 24 * 3600,
            httponly=True,
            secure=settings.is_production,
            samesite="lax",
        )


# =============================================================================
# Public Endpoints
# =============================================================================


@router.post("/register", status_code=201)
async def register(data: RegisterRequest, engine: Engine = Depends(get_engine)):
    """Start registration. The account exists once the emailed link is used."""
    result = await engine.accounts.register(data.username, data.name, data.email, data.password)
    return respond(result, "Verification email sent", status_code=201)


@router.post("/verify-email", status_code=201)
async def verify_email(data: VerifyEmailRequest, engine: Engine = Depends(get_engine)):
    result = await engine.accounts.verify_email(data.token)
    return respond(result, "Email verified, account created", status_code=201)


@router.post("/login")
async def login(data: LoginRequest, response: Response, engine: Engine = Depends(get_engine)):
    result = await engine.accounts.login(data.email, data.password)
    body = respond(result, "Logged in")
    _set_auth_cookies(response, engine, result.value.tokens.access_token, result.value.tokens.refresh_token)
    return body


@router.post("/refresh")
async def refresh(
    request: Request,
    response: Response,
    data: RefreshRequest | None = None,
    engine: Engine = Depends(get_engine),
):
    """New access token. The refresh token comes from the body or the refresh cookie."""
    token = (data.refresh_token if data else None) or request.cookies.get(engine.settings.refresh_cookie_name)
    if not token:
        raise HTTPException(
            status_code=401,
            detail={"kind": "missing_credential", "message": "No refresh token provided"},
        )

    try:
        access_token = await engine.tokens.refresh(token, engine.storage.metadata)
    except Unauthenticated as e:
        raise HTTPException(status_code=401, detail={"kind": "unauthenticated", "message": e.message})

    _set_auth_cookies(response, engine, access_token)
    return {
        "data": {
            "access_token": access_token,
            "token_type": "bearer",
            "expires_in": engine.settings.jwt_access_token_expire_minutes * 60,
        },
        "message": "Token refreshed",
    }


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    data: RefreshRequest | None = None,
    engine: Engine = Depends(get_engine),
    credentials=Depends(optional_bearer),
):
    """
    Revoke the presented access and refresh tokens.

    Tokens that are already expired or were never valid are ignored, so
    logging out twice is harmless.
    """
    settings = engine.settings
    access = (credentials.credentials if credentials else None) or request.cookies.get(settings.access_cookie_name)
    refresh_token = (data.refresh_token if data else None) or request.cookies.get(settings.refresh_cookie_name)

    if access:
        try:
            await engine.tokens.revoke_access(access)
        except TokenError as e:
            logger.info(f"Logout ignored access token: {e.message}")
    if refresh_token:
        try:
            await engine.tokens.revoke(refresh_token)
        except TokenError as e:
            logger.info(f"Logout ignored refresh token: {e.message}")

    response.delete_cookie(settings.access_cookie_name)
    response.delete_cookie(settings.refresh_cookie_name)
    return {"data": None, "message": "Logged out successfully"}


@router.post("/forgot-password")
async def forgot_password(data: ForgotPasswordRequest, engine: Engine = Depends(get_engine)):
    """Always succeeds, to prevent email enumeration."""
    result = await engine.accounts.forgot_password(data.email)
    return respond(result, "If an account exists with this email, a reset link has been sent")


@router.post("/reset-password")
async def reset_password(data: ResetPasswordRequest, engine: Engine = Depends(get_engine)):
    result = await engine.accounts.reset_password(data.token, data.new_password)
    return respond(result, "Password reset successfully")


# =============================================================================
# Protected Endpoints
# =============================================================================


@router.get("/me")
async def me(principal: Principal = Depends(get_principal), engine: Engine = Depends(get_engine)):
    result = await engine.users.get_user(principal, principal.user_id)
    return respond(result)


# =============================================================================
# Google OAuth
# =============================================================================


def _google(engine: Engine) -> GoogleOAuth:
    return GoogleOAuth(engine.settings, engine.storage.cache)


@router.get("/google/authorize")
async def google_authorize(engine: Engine = Depends(get_engine)):
    try:
        url = await _google(engine).get_authorize_url()
    except OAuthError as e:
        raise HTTPException(status_code=400, detail={"kind": "oauth_error", "message": str(e)})
    return {"data": {"url": url}, "message": ""}


@router.get("/google/callback")
async def google_callback(code: str, state: str, response: Response, engine: Engine = Depends(get_engine)):
    try:
        info = await _google(engine).authenticate(code, state)
    except OAuthError as e:
        raise HTTPException(status_code=400, detail={"kind": "oauth_error", "message": str(e)})

    result = await engine.accounts.federated_login(info)
    body = respond(result, "Logged in with Google")
    _set_auth_cookies(response, engine, result.value.tokens.access_token, result.value.tokens.refresh_token)
    return body
