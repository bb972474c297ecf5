"""
auth/models.py -- Domain dataclasses for identity entities.

Pattern: Data class (pure data container, near-zero logic). Stores and
workflows do the work; the API layer builds its own public projection from
these (api/models.py AccountPublic.from_account) so secret fields never reach
a serializer by accident.

Layer rule: no imports from api/ or notes/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class Account:
    """The unified identity record, whichever path created it.

    email is always stored lowercased. hashed_password is None for accounts
    created through Google login; federated_subject is None until the account
    is linked to a Google identity. At least one of the two must be set --
    AccountStore refuses to persist an account with neither.

    otp_code / otp_expires_at are both set during an open verification window
    and both None otherwise.
    """

    email: str
    name: str
    id: int | None = None
    hashed_password: str | None = None  # None = Google-only account
    federated_subject: str | None = None  # Google "sub" claim
    is_verified: bool = False
    otp_code: str | None = None
    otp_expires_at: datetime | None = None
    created_at: str | None = None  # ISO 8601, set by store on insert
    updated_at: str | None = None

    @property
    def has_password(self) -> bool:
        return self.hashed_password is not None

    def set_otp(self, code: OneTimeCode) -> None:
        self.otp_code = code.code
        self.otp_expires_at = code.expires_at

    def clear_otp(self) -> None:
        self.otp_code = None
        self.otp_expires_at = None


@dataclass(frozen=True)
class OneTimeCode:
    """A freshly generated verification code and the instant it stops working."""

    code: str
    expires_at: datetime


@dataclass(frozen=True)
class TokenIdentity:
    """Claims recovered from a verified bearer token.

    Downstream handlers trust account_id as the owner key for every query.
    """

    account_id: int
    email: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class FederatedProfile:
    """Verified claims extracted from a Google ID token."""

    subject: str
    email: str
    name: str


@dataclass(frozen=True)
class AuthResult:
    """A freshly issued bearer token and the account it was issued for."""

    token: str
    account: Account


@dataclass(frozen=True)
class RegistrationResult:
    """Outcome of register(). verification_sent is False when the OTP email failed."""

    account: Account
    verification_sent: bool


@dataclass(frozen=True)
class ProfileUpdate:
    account: Account
    email_changed: bool
    verification_sent: bool = False
