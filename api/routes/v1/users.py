"""
api/routes/v1/users.py -- Self-service profile endpoints for the signed-in account.

Routes:
  GET    /api/v1/user/profile    -- public projection + note stats
  PUT    /api/v1/user/profile    -- change name and/or email
  PATCH  /api/v1/user/profile    -- same as PUT
  PUT    /api/v1/user/password   -- change password (requires current password)
  DELETE /api/v1/user/account    -- delete account and all owned notes
  GET    /api/v1/user/stats      -- note counts per period, account age

All routes act on identity.account_id from the bearer token. A token whose
account has since been deleted yields 404 USER_NOT_FOUND.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Request

from api.models import (
    AccountAge,
    AccountDeleteRequest,
    AccountDeleteResponse,
    AccountProfile,
    AccountPublic,
    PasswordChangeRequest,
    PasswordChangeResponse,
    ProfileResponse,
    ProfileStats,
    ProfileUpdateRequest,
    ProfileUpdateResponse,
    UserStatsResponse,
)
from auth import account as account_flow
from auth.dependencies import get_current_identity
from auth.models import TokenIdentity
from notes.store import period_starts

# Auth policy:
# - every route requires a bearer token (get_current_identity)
router = APIRouter()


def _account_age_days(created_at: str | None, now: datetime) -> int:
    if not created_at:
        return 0
    created = datetime.fromisoformat(created_at)
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return max(0, (now - created).days)


@router.get("/user/profile", response_model=ProfileResponse)
def get_profile(request: Request, identity: TokenIdentity = Depends(get_current_identity)) -> ProfileResponse:
    account = account_flow.get_account(request.app.state.account_store, identity.account_id)
    note_store = request.app.state.note_store
    stats = ProfileStats(
        total_notes=note_store.count_notes(account.id),
        notes_this_month=note_store.count_notes(account.id, since=period_starts()["month"]),
        member_since=account.created_at,
    )
    public = AccountPublic.from_account(account)
    return ProfileResponse(user=AccountProfile(**public.model_dump(), stats=stats))


@router.put("/user/profile", response_model=ProfileUpdateResponse)
@router.patch("/user/profile", response_model=ProfileUpdateResponse)
def update_profile(
    request: Request,
    body: ProfileUpdateRequest,
    identity: TokenIdentity = Depends(get_current_identity),
) -> ProfileUpdateResponse:
    """Change name and/or email. A new email drops the account back to unverified.

    The fresh verification code goes to the NEW address; verificationSent
    reports whether it was delivered.
    """
    result = account_flow.update_profile(
        request.app.state.account_store,
        request.app.state.email_sender,
        identity.account_id,
        name=body.name,
        email=body.email,
    )
    return ProfileUpdateResponse(
        user=AccountPublic.from_account(result.account),
        email_changed=result.email_changed,
        verification_sent=result.verification_sent,
    )


@router.put("/user/password", response_model=PasswordChangeResponse)
def change_password(
    request: Request,
    body: PasswordChangeRequest,
    identity: TokenIdentity = Depends(get_current_identity),
) -> PasswordChangeResponse:
    account_flow.change_password(
        request.app.state.account_store,
        identity.account_id,
        body.current_password,
        body.new_password,
    )
    return PasswordChangeResponse()


@router.delete("/user/account", response_model=AccountDeleteResponse)
def delete_account(
    request: Request,
    body: Optional[AccountDeleteRequest] = None,
    identity: TokenIdentity = Depends(get_current_identity),
) -> AccountDeleteResponse:
    """Permanently delete the account. Owned notes are removed first."""
    notes_deleted = account_flow.delete_account(
        request.app.state.account_store,
        identity.account_id,
        body.password if body is not None else None,
        request.app.state.note_store.delete_all,
    )
    return AccountDeleteResponse(notes_deleted=notes_deleted)


@router.get("/user/stats", response_model=UserStatsResponse)
def user_stats(request: Request, identity: TokenIdentity = Depends(get_current_identity)) -> UserStatsResponse:
    account = account_flow.get_account(request.app.state.account_store, identity.account_id)
    note_store = request.app.state.note_store
    now = datetime.now(timezone.utc)
    starts = period_starts(now)
    total = note_store.count_notes(account.id)
    age_days = _account_age_days(account.created_at, now)
    return UserStatsResponse(
        total_notes=total,
        notes_today=note_store.count_notes(account.id, since=starts["today"]),
        notes_this_week=note_store.count_notes(account.id, since=starts["week"]),
        notes_this_month=note_store.count_notes(account.id, since=starts["month"]),
        notes_this_year=note_store.count_notes(account.id, since=starts["year"]),
        account_age=AccountAge(days=age_days, months=age_days // 30, years=age_days // 365),
        average_notes_per_day=round(total / age_days, 2) if total and age_days else 0.0,
        member_since=account.created_at,
    )
