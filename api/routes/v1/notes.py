"""
api/routes/v1/notes.py -- Note CRUD, search and statistics REST endpoints.

Routes:
  GET    /api/v1/notes              -- paginated list (search, sortBy, sortOrder)
  GET    /api/v1/notes/search       -- substring search with relevance score
  GET    /api/v1/notes/stats        -- counts per period, oldest/newest, avg length
  GET    /api/v1/notes/{id}         -- one note
  POST   /api/v1/notes              -- create; 201
  PUT    /api/v1/notes/{id}         -- update title and/or content
  PATCH  /api/v1/notes/{id}         -- same as PUT
  DELETE /api/v1/notes/{id}         -- delete one note
  DELETE /api/v1/notes              -- delete all of the caller's notes

IDOR guard: the owner is always identity.account_id from the bearer token.
A note id belonging to another account is reported exactly like a missing
one (404 NOTE_NOT_FOUND).


A token for a deleted account still reads as an empty collection; creating
a note with it is refused with 404 USER_NOT_FOUND.

The static paths (/search, /stats) are registered before /{note_id} so they
are never captured by the path parameter.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.limiter import limiter
from api.models import (
    NoteCreate,
    NoteDeletedResponse,
    NoteEnvelope,
    NoteListResponse,
    NoteResponse,
    NoteSearchResponse,
    NotesDeletedResponse,
    NoteStatsResponse,
    NoteUpdate,
    Pagination,
    SearchHitResponse,
)
from auth import account as account_flow
from auth.dependencies import get_current_identity
from auth.models import TokenIdentity
from core.config import get_settings
from core.errors import NoteNotFound
from notes.store import NoteStore

# Auth policy:
# - every route requires a bearer token (get_current_identity)
router = APIRouter()

_settings = get_settings()


def _store(request: Request) -> NoteStore:
    return request.app.state.note_store


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------


@router.get("/notes", response_model=NoteListResponse)
def list_notes(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    search: Optional[str] = Query(default=None, max_length=200),
    sort_by: str = Query(default="updatedAt", alias="sortBy"),
    sort_order: str = Query(default="desc", alias="sortOrder"),
    identity: TokenIdentity = Depends(get_current_identity),
) -> NoteListResponse:
    """Return one page of the caller's notes."""
    result = _store(request).list_notes(
        identity.account_id,
        page=page,
        limit=limit,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return NoteListResponse(
        notes=[NoteResponse.from_note(n) for n in result.items],
        pagination=Pagination.from_page(result),
        search=search or None,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@router.get("/notes/search", response_model=NoteSearchResponse)
def search_notes(
    request: Request,
    q: str = Query(default="", max_length=200),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    identity: TokenIdentity = Depends(get_current_identity),
) -> NoteSearchResponse:
    """Search title and content. Empty q is SEARCH_QUERY_REQUIRED."""
    result = _store(request).search_notes(identity.account_id, q, page=page, limit=limit)
    return NoteSearchResponse(
        query=q,
        notes=[SearchHitResponse.from_hit(h) for h in result.items],
        pagination=Pagination.from_page(result),
    )


@router.get("/notes/stats", response_model=NoteStatsResponse)
def notes_stats(request: Request, identity: TokenIdentity = Depends(get_current_identity)) -> NoteStatsResponse:
    return NoteStatsResponse.from_stats(_store(request).stats(identity.account_id))


@limiter.limit(_settings.note_create_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/notes", response_model=NoteEnvelope, status_code=201)
def create_note(
    request: Request,
    body: NoteCreate,
    identity: TokenIdentity = Depends(get_current_identity),
) -> NoteEnvelope:
    """Create a note owned by the caller. Title and content are trimmed.

    The only note route that checks the account still exists: a token that
    outlives its account must not leave notes with no owner behind.
    """
    account_flow.get_account(request.app.state.account_store, identity.account_id)
    note = _store(request).create_note(identity.account_id, body.title, body.content)
    return NoteEnvelope(message="Note created successfully", note=NoteResponse.from_note(note))


@router.delete("/notes", response_model=NotesDeletedResponse)
def delete_all_notes(request: Request, identity: TokenIdentity = Depends(get_current_identity)) -> NotesDeletedResponse:
    """Delete every note the caller owns."""
    count = _store(request).delete_all(identity.account_id)
    return NotesDeletedResponse(message=f"{count} notes deleted successfully", deleted_count=count)


# ---------------------------------------------------------------------------
# Single note
# ---------------------------------------------------------------------------


@router.get("/notes/{note_id}", response_model=NoteEnvelope)
def get_note(
    request: Request,
    note_id: int,
    identity: TokenIdentity = Depends(get_current_identity),
) -> NoteEnvelope:
    note = _store(request).get_note(identity.account_id, note_id)
    if note is None:
        raise NoteNotFound()
    return NoteEnvelope(message="Note retrieved successfully", note=NoteResponse.from_note(note))


@router.put("/notes/{note_id}", response_model=NoteEnvelope)
@router.patch("/notes/{note_id}", response_model=NoteEnvelope)
def update_note(
    request: Request,
    note_id: int,
    body: NoteUpdate,
    identity: TokenIdentity = Depends(get_current_identity),
) -> NoteEnvelope:
    """Update title and/or content; at least one must be present."""
    note = _store(request).update_note(identity.account_id, note_id, title=body.title, content=body.content)
    if note is None:
        raise NoteNotFound()
    return NoteEnvelope(message="Note updated successfully", note=NoteResponse.from_note(note))


@router.delete("/notes/{note_id}", response_model=NoteDeletedResponse)
def delete_note(
    request: Request,
    note_id: int,
    identity: TokenIdentity = Depends(get_current_identity),
) -> NoteDeletedResponse:
    note = _store(request).delete_note(identity.account_id, note_id)
    if note is None:
        raise NoteNotFound()
    return NoteDeletedResponse(id=note.id, title=note.title)
