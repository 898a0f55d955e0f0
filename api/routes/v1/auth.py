"""
api/routes/v1/auth.py -- Registration, session, and password reset endpoints.

Routes:
  POST /api/v1/auth/register                -- start sign-up; emails a verification link
  GET  /api/v1/auth/verify-email?token=     -- confirm email; redirects to the frontend
  POST /api/v1/auth/login                   -- password login; returns a token pair
  POST /api/v1/auth/refresh                 -- rotate a refresh token
  POST /api/v1/auth/logout                  -- revoke one refresh token
  POST /api/v1/auth/logout-all              -- revoke every session (requires auth)
  POST /api/v1/auth/request-password-reset  -- email a reset link (generic response)
  GET  /api/v1/auth/verify-reset?token=     -- check a reset link; redirects to the frontend
  POST /api/v1/auth/reset-password          -- set a new password with a reset token
  GET  /api/v1/auth/me                      -- current user (requires auth)

Security:
  register, login and request-password-reset are rate-limited per IP.
  Login and refresh responses carry Cache-Control: no-store.
  request-password-reset returns the same body for every input.
  Service errors (auth.errors.AuthError) are mapped to the error envelope by
  the exception handler in api/main.py; handlers here only translate the
  happy path.

Handlers are plain `def`: the services are synchronous (bcrypt, SQLAlchemy),
so FastAPI runs them in its thread pool.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from api.limiter import limiter
from api.models import (
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    PasswordResetConfirm,
    PasswordResetRequest,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
    UserResponse,
    to_user_response,
)
from auth.dependencies import get_current_user
from auth.errors import AuthError
from auth.models import TokenPair, User
from auth.service import AuthService
from core.config import get_settings

logger = logging.getLogger("authkeep.api.auth")

_settings = get_settings()

# Auth policy:
# - POST /auth/register, /auth/login, /auth/refresh, /auth/logout:  public
# - GET  /auth/verify-email, /auth/verify-reset:                    public (email links)
# - POST /auth/request-password-reset, /auth/reset-password:        public
# - POST /auth/logout-all, GET /auth/me:                            requires auth (get_current_user)
router = APIRouter()


def _auth(request: Request) -> AuthService:
    return request.app.state.auth


def _client(request: Request) -> tuple[str | None, str | None]:
    ip = request.client.host if request.client else None
    return ip, request.headers.get("User-Agent")


def _token_response(pair: TokenPair) -> JSONResponse:
    resp = JSONResponse(
        status_code=200,
        content=TokenResponse(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=pair.expires_in,
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _frontend_redirect(path: str, **params: str) -> RedirectResponse:
    url = f"{_settings.frontend_url.rstrip('/')}{path}?{urlencode(params)}"
    return RedirectResponse(url, status_code=302)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@limiter.limit(_settings.register_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=MessageResponse, status_code=201)
def register(request: Request, response: Response, body: RegisterRequest) -> MessageResponse:
    """Start a sign-up, or re-issue the verification link of a pending one.

    201 when a new pending sign-up was created, 200 when an existing one was
    refreshed with a new link.
    """
    ip, user_agent = _client(request)
    result = _auth(request).registration.register(
        body.email,
        body.password,
        body.display_name,
        ip=ip,
        user_agent=user_agent,
    )
    if not result.created:
        response.status_code = 200
    return MessageResponse(message=result.message)


@router.get("/auth/verify-email", response_class=RedirectResponse, status_code=302)
def verify_email(request: Request, token: str = "") -> RedirectResponse:
    """Redeem a verification link and send the browser to the frontend result page."""
    try:
        _auth(request).registration.verify_email(token)
    except AuthError as exc:
        logger.info("Email verification failed: %s", exc.message)
        return _frontend_redirect("/email-verified", status="failed")
    return _frontend_redirect("/email-verified", status="success")


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)  # brute-force mitigation
@router.post("/auth/login", response_model=TokenResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; open a session for the given device.

    Every failure returns the same 401 so the response never reveals whether
    the email is registered.
    """
    ip, user_agent = _client(request)
    pair = _auth(request).sessions.login(
        body.email,
        body.password,
        body.device_id,
        device_name=body.device_name,
        ip=ip,
        user_agent=user_agent,
    )
    return _token_response(pair)


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Trade a refresh token for a new pair. The presented token stops working."""
    pair = _auth(request).rotation.refresh(body.refresh_token, body.device_id)
    return _token_response(pair)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, body: LogoutRequest) -> MessageResponse:
    """Revoke the session behind one refresh token."""
    return MessageResponse(message=_auth(request).rotation.logout(body.refresh_token))


@router.post("/auth/logout-all", response_model=MessageResponse)
def logout_all(request: Request, current_user: User = Depends(get_current_user)) -> MessageResponse:
    """Revoke every session of the authenticated user on every device.

    Access tokens already issued stay valid until they expire.
    """
    return MessageResponse(message=_auth(request).rotation.logout_all(current_user.id))


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return identity information for the currently authenticated user."""
    return to_user_response(current_user)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@limiter.limit(_settings.reset_rate_limit)
@router.post("/auth/request-password-reset", response_model=MessageResponse)
def request_password_reset(request: Request, body: PasswordResetRequest) -> MessageResponse:
    """Email a reset link if the account exists. The response is identical either way."""
    ip, user_agent = _client(request)
    message = _auth(request).password_reset.request_reset(body.email, ip=ip, user_agent=user_agent)
    return MessageResponse(message=message)


@router.get("/auth/verify-reset", response_class=RedirectResponse, status_code=302)
def verify_reset(request: Request, token: str = "") -> RedirectResponse:
    """Check a reset link and send the browser to the frontend reset form."""
    try:
        _auth(request).password_reset.verify_reset_token(token)
    except AuthError as exc:
        logger.info("Reset link rejected: %s", exc.message)
        return _frontend_redirect("/reset-password", status="invalid")
    return _frontend_redirect("/reset-password", token=token, status="valid")


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: PasswordResetConfirm) -> MessageResponse:
    """Set a new password with a reset token. Signs the user out everywhere."""
    ip, user_agent = _client(request)
    message = _auth(request).password_reset.reset_password(
        body.token,
        body.new_password,
        ip=ip,
        user_agent=user_agent,
    )
    return MessageResponse(message=message)
