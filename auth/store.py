"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper (same as notes/store.py).
AccountStore is the repository; _row_to_account is the mapper.
Workflow and route code never touches SQL directly.

Invariants enforced here, at the storage layer:
  - UNIQUE(email). Emails are lowercased before every read and write, and an
    IntegrityError on the email index surfaces as DuplicateEmail rather than a
    raw driver error.
  - UNIQUE(federated_subject). NULLs are distinct in both SQLite and
    PostgreSQL, so unlinked accounts do not collide.
  - An account must carry a password hash or a federated subject. create()
    and save() raise InvalidAccountState before touching the database.
  - is_verified only goes back to 0 when a caller names it. update() writes
    just the columns it is given, and replace_otp() and consume_otp() are
    conditional UPDATEs, so a read-modify-write in a workflow cannot undo a
    verification that committed in between.

Timestamps are stored as fixed-width UTC ISO 8601 strings (microsecond
precision, +00:00 suffix) so string comparison in SQL matches chronological
order. consume_otp() relies on that.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or notes/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import Account, OneTimeCode
from core.errors import DuplicateEmail, InvalidAccountState

logger = logging.getLogger("noteapp.auth.store")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'noteapp_accounts.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(50), nullable=False),
    Column("hashed_password", Text),  # NULL for Google-only accounts
    Column("federated_subject", String(255), unique=True),  # Google "sub"
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("otp_code", String(12)),
    Column("otp_expires_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _now_iso() -> str:
    return _to_iso(datetime.now(timezone.utc))


def _check_invariants(account: Account) -> None:
    if not account.hashed_password and not account.federated_subject:
        raise InvalidAccountState()
    if (account.otp_code is None) != (account.otp_expires_at is None):
        raise InvalidAccountState("OTP code and expiry must be set together.")


def _is_email_conflict(exc: IntegrityError) -> bool:
    # SQLite: "UNIQUE constraint failed: accounts.email"
    # PostgreSQL: 'duplicate key value violates unique constraint "accounts_email_key"'
    return "email" in str(exc.orig).lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account entities.

    Usage:
        store = AccountStore()
        account = store.create(Account(email="a@b.com", name="Ann", hashed_password=hash_password("secret1")))
        found = store.get_by_email("A@B.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, timeout: float = 5.0) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            # Busy timeout: a write blocked longer than this raises
            # OperationalError, which reaches the client as a 500.
            connect_args["timeout"] = timeout
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    def get_by_email(self, email: str) -> Account | None:
        """Look up an account by email, case-insensitively. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == normalize_email(email))).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_id(self, account_id: int) -> Account | None:
        """Look up an account by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_federated_subject(self, subject: str) -> Account | None:
        """Look up the account linked to a Google subject id. Returns None if unlinked."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.federated_subject == subject)).fetchone()
        return _row_to_account(row) if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, account: Account) -> Account:
        """Insert a new account and return it with id and timestamps filled in.

        Raises:
            InvalidAccountState: neither password hash nor federated subject set.
            DuplicateEmail:      another account already holds this email.
        """
        _check_invariants(account)
        now = _now_iso()
        values = _account_values(account)
        values["created_at"] = now
        values["updated_at"] = now
        try:
            with self.engine.connect() as conn:
                result = conn.execute(_accounts.insert().values(**values))
                conn.commit()
        except IntegrityError as exc:
            if _is_email_conflict(exc):
                raise DuplicateEmail() from exc
            raise
        account.id = result.inserted_primary_key[0]
        account.email = values["email"]
        account.created_at = now
        account.updated_at = now
        return account

    def save(self, account: Account) -> Account:
        """Re-persist every mutable field of an existing account.

        Idempotent: saving an unchanged account rewrites the same values.
        created_at is never written here.

        Raises:
            InvalidAccountState: the mutation removed the last auth method.
            DuplicateEmail:      the email was changed to one already in use.
        """
        _check_invariants(account)
        values = _account_values(account)
        values["updated_at"] = _now_iso()
        try:
            with self.engine.connect() as conn:
                conn.execute(_accounts.update().where(_accounts.c.id == account.id).values(**values))
                conn.commit()
        except IntegrityError as exc:
            if _is_email_conflict(exc):
                raise DuplicateEmail() from exc
            raise
        account.email = values["email"]
        account.updated_at = values["updated_at"]
        return account

    def update(self, account_id: int, **changes) -> bool:
        """Write only the named columns of an existing account.

        Workflows that read, decide and write use this instead of save() so a
        concurrent consume_otp() between their read and their write is not
        overwritten from the stale copy. Columns not named are left as they
        are in the database.

        Returns True if the account row still exists and was updated.

        Raises:
            ValueError:          a name outside the mutable columns.
            InvalidAccountState: the change would remove a required value.
            DuplicateEmail:      the email was changed to one already in use.
        """
        unknown = set(changes) - _MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f"Not an updatable account column: {', '.join(sorted(unknown))}")
        if "hashed_password" in changes and not changes["hashed_password"]:
            raise InvalidAccountState()
        otp_pair = (changes.get("otp_code"), changes.get("otp_expires_at"))
        if ("otp_code" in changes) != ("otp_expires_at" in changes) or (otp_pair[0] is None) != (otp_pair[1] is None):
            raise InvalidAccountState("OTP code and expiry must be set together.")
        values = _column_values(changes)
        values["updated_at"] = _now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**values))
                conn.commit()
        except IntegrityError as exc:
            if _is_email_conflict(exc):
                raise DuplicateEmail() from exc
            raise
        return result.rowcount == 1

    def replace_otp(self, account_id: int, otp: OneTimeCode) -> bool:
        """Overwrite the pending code, but only while the account is unverified.

        Returns False if the account is already verified (or gone), so a
        verification that commits first is never undone by a resend.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == account_id) & (_accounts.c.is_verified == 0))
                .values(otp_code=otp.code, otp_expires_at=_to_iso(otp.expires_at), updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount == 1

    def consume_otp(self, account_id: int, code: str, now: datetime | None = None) -> bool:
        """Atomically mark an account verified and clear its OTP.

        The UPDATE only matches while the account is unverified, holds exactly
        this code, and the code has not expired. Of two concurrent callers
        presenting the same code, only one sees rowcount == 1; the other must
        re-read the account to classify its failure.

        Returns True if this call performed the transition.
        """
        current = _to_iso(now or datetime.now(timezone.utc))
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where(
                    (_accounts.c.id == account_id)
                    & (_accounts.c.is_verified == 0)
                    & (_accounts.c.otp_code == code)
                    & (_accounts.c.otp_expires_at > current)
                )
                .values(is_verified=1, otp_code=None, otp_expires_at=None, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount == 1

    def delete(self, account_id: int) -> bool:
        """Permanently delete an account record. Returns True if a row was removed.

        Owned notes are NOT touched here; the account deletion workflow removes
        them first through the note store.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.delete().where(_accounts.c.id == account_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


_MUTABLE_COLUMNS = {
    "email",
    "name",
    "hashed_password",
    "federated_subject",
    "is_verified",
    "otp_code",
    "otp_expires_at",
}


def _column_values(changes: dict) -> dict:
    values = dict(changes)
    if "email" in values:
        values["email"] = normalize_email(values["email"])
    if "is_verified" in values:
        values["is_verified"] = 1 if values["is_verified"] else 0
    if values.get("otp_expires_at") is not None:
        values["otp_expires_at"] = _to_iso(values["otp_expires_at"])
    return values


def _account_values(account: Account) -> dict:
    return _column_values({column: getattr(account, column) for column in _MUTABLE_COLUMNS})


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        name=row.name,
        hashed_password=row.hashed_password,
        federated_subject=row.federated_subject,
        is_verified=bool(row.is_verified),
        otp_code=row.otp_code,
        otp_expires_at=_from_iso(row.otp_expires_at),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
