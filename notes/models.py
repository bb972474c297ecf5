"""
notes/models.py -- Domain dataclasses for notes.

Pure data containers. Field rules (title/content lengths, trimming) and all
query logic live in notes/store.py.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Note:
    """A note owned by exactly one account.

    owner_id is the account id taken from the verified bearer token; it is
    never exposed in API responses. id is None before the note is written.
    """

    owner_id: int
    title: str
    content: str
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""  # ISO 8601, bumped on every update


@dataclass
class SearchHit:
    """A note matched by search_notes() with its relevance score.

    relevance = 2 if the title contains the query + 1 if the content does.
    """

    note: Note
    relevance: int


@dataclass
class NotePage:
    """One page of a list or search result plus the totals needed for paging."""

    items: list = field(default_factory=list)  # list[Note] or list[SearchHit]
    total_count: int = 0
    page: int = 1
    limit: int = 20

    @property
    def total_pages(self) -> int:
        return (self.total_count + self.limit - 1) // self.limit if self.limit else 0

    @property
    def has_next_page(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev_page(self) -> bool:
        return self.page > 1


@dataclass
class NoteStats:
    total_notes: int
    notes_today: int
    notes_this_week: int
    notes_this_month: int
    average_content_length: int
    oldest: Optional[Note] = None
    newest: Optional[Note] = None
