"""
notes/store.py -- SQLAlchemy-backed persistence and rules for notes.

Uses SQLAlchemy Core (not ORM) so notes/models.py stays the authoritative
domain representation. Same Repository + Data Mapper shape as
auth/store.py: NoteStore is the repository, _row_to_note the mapper.

Ownership: every read and write takes owner_id and filters on it. A note
that exists but belongs to someone else is indistinguishable from a missing
note -- both come back as None, which the routes turn into NOTE_NOT_FOUND.

Field rules (enforced here, for every caller):
  title   -- trimmed, 1-200 characters
  content -- trimmed, 1-10000 characters

Search uses LIKE with the user's text escaped, never a regex, so a query
like ".*" matches those two literal characters and nothing else.

Timestamps are fixed-width UTC ISO 8601 strings, so created_at >= since
comparisons in SQL are chronological.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = NoteStore()
    note = store.create_note(owner_id=1, title="Groceries", content="milk")
    page = store.list_notes(1, page=1, limit=20, search="milk")
    store.close()
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event, func, select, text
from sqlalchemy.engine import Engine

from core.errors import FieldError, SearchQueryRequired, ValidationError
from notes.models import Note, NotePage, NoteStats, SearchHit

logger = logging.getLogger("noteapp.notes.store")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'noteapp_notes.db'}"

TITLE_MAX = 200
CONTENT_MAX = 10000

# API sort keys -> column names. Anything else is rejected before SQL is built.
SORT_FIELDS = {"createdAt": "created_at", "updatedAt": "updated_at", "title": "title"}

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_notes = Table(
    "notes",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_id", Integer, nullable=False),
    Column("title", String(TITLE_MAX), nullable=False),
    Column("content", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Index("ix_notes_owner_created", "owner_id", "created_at"),
    Index("ix_notes_owner_updated", "owner_id", "updated_at"),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return _to_iso(datetime.now(timezone.utc))


def period_starts(now: Optional[datetime] = None) -> dict[str, datetime]:
    """Return the start instants of the reporting windows used by stats.

    today -- midnight UTC of the current day
    week  -- a rolling 7 days back from now
    month -- the first of the current month, UTC
    year  -- January 1st of the current year, UTC
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return {
        "today": midnight,
        "week": now - timedelta(days=7),
        "month": midnight.replace(day=1),
        "year": midnight.replace(month=1, day=1),
    }


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _title_errors(title: str) -> list[FieldError]:
    if not title:
        return [FieldError("title", "Title cannot be empty")]
    if len(title) > TITLE_MAX:
        return [FieldError("title", f"Title cannot exceed {TITLE_MAX} characters")]
    return []


def _content_errors(content: str) -> list[FieldError]:
    if not content:
        return [FieldError("content", "Content cannot be empty")]
    if len(content) > CONTENT_MAX:
        return [FieldError("content", "Content cannot exceed 10,000 characters")]
    return []


def _relevance(note: Note, query: str) -> int:
    needle = query.lower()
    return (2 if needle in note.title.lower() else 0) + (1 if needle in note.content.lower() else 0)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class NoteStore:
    """Repository for Note entities, always scoped to one owner per call."""

    def __init__(self, db_url: str = _DEFAULT_DB_URL, timeout: float = 5.0) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = timeout
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_note(self, owner_id: int, title: str, content: str) -> Note:
        """Insert a note after trimming and validating both fields.

        Raises:
            ValidationError: title or content empty after trimming, or too long.
        """
        title, content = title.strip(), content.strip()
        errors = _title_errors(title) + _content_errors(content)
        if errors:
            raise ValidationError(errors=errors)
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _notes.insert().values(
                    owner_id=owner_id, title=title, content=content, created_at=now, updated_at=now
                )
            )
            conn.commit()
        note = Note(owner_id=owner_id, title=title, content=content, created_at=now, updated_at=now)
        note.id = result.inserted_primary_key[0]
        logger.info("Note %s created for account %s", note.id, owner_id)
        return note

    def update_note(
        self,
        owner_id: int,
        note_id: int,
        title: Optional[str] = None,
        content: Optional[str] = None,
    ) -> Optional[Note]:
        """Update title and/or content. Returns the updated note, or None if not found.

        Raises:
            ValidationError: neither field given, or a given field fails its rule.
        """
        fields: dict = {}
        errors: list[FieldError] = []
        if title is not None:
            fields["title"] = title.strip()
            errors += _title_errors(fields["title"])
        if content is not None:
            fields["content"] = content.strip()
            errors += _content_errors(fields["content"])
        if not fields:
            raise ValidationError("At least one field (title or content) must be provided.")
        if errors:
            raise ValidationError(errors=errors)
        fields["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _notes.update().where((_notes.c.id == note_id) & (_notes.c.owner_id == owner_id)).values(**fields)
            )
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.get_note(owner_id, note_id)

    def delete_note(self, owner_id: int, note_id: int) -> Optional[Note]:
        """Delete one note. Returns the deleted note, or None if not found."""
        note = self.get_note(owner_id, note_id)
        if note is None:
            return None
        with self.engine.connect() as conn:
            result = conn.execute(
                _notes.delete().where((_notes.c.id == note_id) & (_notes.c.owner_id == owner_id))
            )
            conn.commit()
        # A concurrent delete may have won between the read and the delete
        return note if result.rowcount > 0 else None

    def delete_all(self, owner_id: int) -> int:
        """Delete every note the owner has. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_notes.delete().where(_notes.c.owner_id == owner_id))
            conn.commit()
        logger.info("Deleted %d notes for account %s", result.rowcount, owner_id)
        return result.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_note(self, owner_id: int, note_id: int) -> Optional[Note]:
        """Fetch one note by id, only if the owner matches. Returns None otherwise."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _notes.select().where((_notes.c.id == note_id) & (_notes.c.owner_id == owner_id))
            ).fetchone()
        return _row_to_note(row) if row is not None else None

    def list_notes(
        self,
        owner_id: int,
        page: int = 1,
        limit: int = 20,
        search: Optional[str] = None,
        sort_by: str = "updatedAt",
        sort_order: str = "desc",
    ) -> NotePage:
        """Return one page of the owner's notes, optionally filtered by a substring.

        sort_by is one of SORT_FIELDS; sort_order is "asc" or "desc". Ties
        are broken by id in the same direction so paging is stable.
        """
        if sort_by not in SORT_FIELDS:
            raise ValidationError(errors=[FieldError("sortBy", f"sortBy must be one of {', '.join(SORT_FIELDS)}")])
        if sort_order not in ("asc", "desc"):
            raise ValidationError(errors=[FieldError("sortOrder", "sortOrder must be asc or desc")])

        condition = _notes.c.owner_id == owner_id
        term = (search or "").strip()
        if term:
            condition = condition & self._matches(term)

        column = _notes.c[SORT_FIELDS[sort_by]]
        order = (column.desc(), _notes.c.id.desc()) if sort_order == "desc" else (column.asc(), _notes.c.id.asc())
        rows, total = self._page(condition, order, page, limit)
        return NotePage(items=[_row_to_note(r) for r in rows], total_count=total, page=page, limit=limit)

    def search_notes(self, owner_id: int, query: str, page: int = 1, limit: int = 20) -> NotePage:
        """Case-insensitive substring search over title and content, newest first.

        Raises:
            SearchQueryRequired: query is empty after trimming.
        """
        term = (query or "").strip()
        if not term:
            raise SearchQueryRequired()
        condition = (_notes.c.owner_id == owner_id) & self._matches(term)
        rows, total = self._page(condition, (_notes.c.updated_at.desc(), _notes.c.id.desc()), page, limit)
        hits = [SearchHit(note=n, relevance=_relevance(n, term)) for n in (_row_to_note(r) for r in rows)]
        return NotePage(items=hits, total_count=total, page=page, limit=limit)

    def count_notes(self, owner_id: int, since: Optional[datetime] = None) -> int:
        """Count the owner's notes, optionally only those created at or after since."""
        condition = _notes.c.owner_id == owner_id
        if since is not None:
            condition = condition & (_notes.c.created_at >= _to_iso(since))
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_notes).where(condition)).scalar() or 0

    def stats(self, owner_id: int, now: Optional[datetime] = None) -> NoteStats:
        """Counts per reporting window, oldest/newest note and mean content length."""
        starts = period_starts(now)
        owned = _notes.c.owner_id == owner_id
        with self.engine.connect() as conn:
            avg_len = conn.execute(select(func.avg(func.length(_notes.c.content))).where(owned)).scalar()
            oldest = conn.execute(
                _notes.select().where(owned).order_by(_notes.c.created_at.asc(), _notes.c.id.asc()).limit(1)
            ).fetchone()
            newest = conn.execute(
                _notes.select().where(owned).order_by(_notes.c.created_at.desc(), _notes.c.id.desc()).limit(1)
            ).fetchone()
        return NoteStats(
            total_notes=self.count_notes(owner_id),
            notes_today=self.count_notes(owner_id, starts["today"]),
            notes_this_week=self.count_notes(owner_id, starts["week"]),
            notes_this_month=self.count_notes(owner_id, starts["month"]),
            average_content_length=round(avg_len or 0),
            oldest=_row_to_note(oldest) if oldest is not None else None,
            newest=_row_to_note(newest) if newest is not None else None,
        )

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _matches(term: str):
        pattern = f"%{_escape_like(term.lower())}%"
        return func.lower(_notes.c.title).like(pattern, escape="\\") | func.lower(_notes.c.content).like(
            pattern, escape="\\"
        )

    def _page(self, condition, order, page: int, limit: int):
        offset = (max(page, 1) - 1) * limit
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_notes).where(condition)).scalar() or 0
            rows = conn.execute(
                _notes.select().where(condition).order_by(*order).limit(limit).offset(offset)
            ).fetchall()
        return rows, total


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_note(row) -> Note:
    return Note(
        id=row.id,
        owner_id=row.owner_id,
        title=row.title,
        content=row.content,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
