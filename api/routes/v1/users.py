"""
api/routes/v1/users.py -- Self-service profile endpoints.

Routes:
  GET    /api/v1/users/me  -- profile of the authenticated user
  PATCH  /api/v1/users/me  -- change display name and/or password
  DELETE /api/v1/users/me  -- soft-delete the account and revoke all sessions

All routes require auth (get_current_user). Users can only ever act on
their own record -- there is no user id in the path to tamper with.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import MessageResponse, ProfileUpdate, UserResponse, to_user_response
from auth.dependencies import get_current_user
from auth.models import User

router = APIRouter()


@router.get("/users/me", response_model=UserResponse)
def get_me(request: Request, current_user: User = Depends(get_current_user)) -> UserResponse:
    return to_user_response(request.app.state.auth.accounts.get_profile(current_user.id))


@router.patch("/users/me", response_model=UserResponse)
def update_me(
    request: Request,
    body: ProfileUpdate,
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    """Update the profile. Changing the password requires old_password."""
    ip = request.client.host if request.client else None
    user = request.app.state.auth.accounts.update_profile(
        current_user.id,
        display_name=body.display_name,
        old_password=body.old_password,
        new_password=body.new_password,
        ip=ip,
        user_agent=request.headers.get("User-Agent"),
    )
    return to_user_response(user)


@router.delete("/users/me", response_model=MessageResponse)
def delete_me(request: Request, current_user: User = Depends(get_current_user)) -> MessageResponse:
    """Soft-delete the account. Admin accounts are refused with 403."""
    ip = request.client.host if request.client else None
    message = request.app.state.auth.accounts.delete_account(
        current_user.id,
        ip=ip,
        user_agent=request.headers.get("User-Agent"),
    )
    return MessageResponse(message=message)
