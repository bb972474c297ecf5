"""
API request and response models for the note service REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
notes/models.py, which own the internal domain representation. Route handlers
map between the two with the from_* factory methods defined here.

JSON field names are camelCase on the wire (userId, isVerified, tokenId) and
snake_case in Python. _ApiModel sets that up once via an alias generator;
request bodies accept either spelling.

Request models fix the JSON shape only. Length bounds and email shape are
enforced by auth/validation.py and notes/store.py so they hold for every
caller, and come back as one VALIDATION_ERROR listing every bad field.

Public projection [C2]: AccountPublic.from_account() is the ONLY way an
Account reaches a response body. It copies five fields by name; password
hash, OTP code, OTP expiry and federated subject are never read.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import Account
from core.errors import FieldError
from notes.models import Note, NotePage, NoteStats, SearchHit


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------


class FieldErrorItem(_ApiModel):
    field: str
    message: str

    @classmethod
    def from_field_error(cls, err: FieldError) -> "FieldErrorItem":
        return cls(field=err.field, message=err.message)


class ErrorDetail(_ApiModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    errors: list[FieldErrorItem] = Field(default_factory=list)


class ErrorResponse(_ApiModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(_ApiModel):
    """Response for GET /api/v1/health."""

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class MessageResponse(_ApiModel):
    message: str


# ---------------------------------------------------------------------------
# Accounts -- public projection
# ---------------------------------------------------------------------------


class AccountPublic(_ApiModel):
    """The only account shape that is ever serialized."""

    id: int
    email: str
    name: str
    is_verified: bool
    created_at: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountPublic":
        return cls(
            id=account.id,
            email=account.email,
            name=account.name,
            is_verified=account.is_verified,
            created_at=account.created_at,
        )


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class RegisterRequest(_ApiModel):
    """Request body for POST /api/v1/auth/register."""

    email: str = ""
    password: str = ""
    name: str = ""


class VerifyOtpRequest(_ApiModel):
    """Request body for POST /api/v1/auth/verify-otp."""

    email: str = ""
    otp: str = ""


class ResendOtpRequest(_ApiModel):
    """Request body for POST /api/v1/auth/resend-otp."""

    email: str = ""


class LoginRequest(_ApiModel):
    """Request body for POST /api/v1/auth/login."""

    email: str = ""
    password: str = ""


class GoogleLoginRequest(_ApiModel):
    """Request body for POST /api/v1/auth/google. token_id is the Google ID token."""

    token_id: str = ""


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class RegisterResponse(_ApiModel):
    """Response body for POST /api/v1/auth/register (201).

    verification_sent is False when the OTP email could not be delivered;
    the account exists either way and /auth/resend-otp can be used.
    """

    message: str
    user_id: int
    email: str
    verification_sent: bool


class AuthResponse(_ApiModel):
    """Response body for every endpoint that issues a bearer token."""

    message: str
    token: str
    user: AccountPublic


class ProviderInfo(_ApiModel):
    """Public metadata for a configured federated login provider."""

    name: str
    label: str
    client_id: str


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


class ProfileStats(_ApiModel):
    total_notes: int
    notes_this_month: int
    member_since: Optional[str] = None


class AccountProfile(AccountPublic):
    stats: ProfileStats


class ProfileResponse(_ApiModel):
    """Response body for GET /api/v1/user/profile."""

    message: str = "Profile retrieved successfully"
    user: AccountProfile


class ProfileUpdateRequest(_ApiModel):
    """Request body for PUT/PATCH /api/v1/user/profile. Omitted fields are left alone."""

    name: Optional[str] = None
    email: Optional[str] = None


class ProfileUpdateResponse(_ApiModel):
    message: str = "Profile updated successfully"
    user: AccountPublic
    email_changed: bool
    verification_sent: bool = False


class PasswordChangeRequest(_ApiModel):
    """Request body for PUT /api/v1/user/password."""

    current_password: str = ""
    new_password: str = ""


class PasswordChangeResponse(_ApiModel):
    message: str = "Password changed successfully"
    changed_at: str = Field(default_factory=_utc_now_iso)


class AccountDeleteRequest(_ApiModel):
    """Request body for DELETE /api/v1/user/account. password may be omitted for Google-only accounts."""

    password: Optional[str] = None


class AccountDeleteResponse(_ApiModel):
    message: str = "Account deleted successfully"
    notes_deleted: int
    deleted_at: str = Field(default_factory=_utc_now_iso)


class AccountAge(_ApiModel):
    days: int
    months: int
    years: int


class UserStatsResponse(_ApiModel):
    """Response body for GET /api/v1/user/stats."""

    total_notes: int
    notes_today: int
    notes_this_week: int
    notes_this_month: int
    notes_this_year: int
    account_age: AccountAge
    average_notes_per_day: float
    member_since: Optional[str] = None


# ---------------------------------------------------------------------------
# Notes -- requests
# ---------------------------------------------------------------------------


class NoteCreate(_ApiModel):
    """Request body for POST /api/v1/notes."""

    title: str = ""
    content: str = ""


class NoteUpdate(_ApiModel):
    """Request body for PUT/PATCH /api/v1/notes/{id}. At least one field is required."""

    title: Optional[str] = None
    content: Optional[str] = None


# ---------------------------------------------------------------------------
# Notes -- responses
# ---------------------------------------------------------------------------


class NoteResponse(_ApiModel):
    """A note as returned to its owner. owner_id is never included."""

    id: int
    title: str
    content: str
    created_at: str
    updated_at: str

    @classmethod
    def from_note(cls, note: Note) -> "NoteResponse":
        return cls(
            id=note.id,
            title=note.title,
            content=note.content,
            created_at=note.created_at,
            updated_at=note.updated_at,
        )


class SearchHitResponse(NoteResponse):
    relevance_score: int

    @classmethod
    def from_hit(cls, hit: SearchHit) -> "SearchHitResponse":
        base = NoteResponse.from_note(hit.note)
        return cls(**base.model_dump(), relevance_score=hit.relevance)


class Pagination(_ApiModel):
    current_page: int
    total_pages: int
    total_count: int
    limit: int
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def from_page(cls, page: NotePage) -> "Pagination":
        return cls(
            current_page=page.page,
            total_pages=page.total_pages,
            total_count=page.total_count,
            limit=page.limit,
            has_next_page=page.has_next_page,
            has_prev_page=page.has_prev_page,
        )


class NoteEnvelope(_ApiModel):
    message: str
    note: NoteResponse


class NoteListResponse(_ApiModel):
    """Response body for GET /api/v1/notes."""

    notes: list[NoteResponse]
    pagination: Pagination
    search: Optional[str] = None
    sort_by: str
    sort_order: str


class NoteSearchResponse(_ApiModel):
    """Response body for GET /api/v1/notes/search."""

    query: str
    notes: list[SearchHitResponse]
    pagination: Pagination


class NoteDeletedResponse(_ApiModel):
    message: str = "Note deleted successfully"
    id: int
    title: str
    deleted_at: str = Field(default_factory=_utc_now_iso)


class NotesDeletedResponse(_ApiModel):
    message: str
    deleted_count: int
    deleted_at: str = Field(default_factory=_utc_now_iso)


class NoteSummary(_ApiModel):
    id: int
    title: str
    created_at: str


class NoteStatsResponse(_ApiModel):
    """Response body for GET /api/v1/notes/stats."""

    total_notes: int
    notes_today: int
    notes_this_week: int
    notes_this_month: int
    oldest_note: Optional[NoteSummary] = None
    newest_note: Optional[NoteSummary] = None
    average_content_length: int

    @classmethod
    def from_stats(cls, stats: NoteStats) -> "NoteStatsResponse":
        def summary(note: Optional[Note]) -> Optional[NoteSummary]:
            if note is None:
                return None
            return NoteSummary(id=note.id, title=note.title, created_at=note.created_at)

        return cls(
            total_notes=stats.total_notes,
            notes_today=stats.notes_today,
            notes_this_week=stats.notes_this_week,
            notes_this_month=stats.notes_this_month,
            oldest_note=summary(stats.oldest),
            newest_note=summary(stats.newest),
            average_content_length=stats.average_content_length,
        )
