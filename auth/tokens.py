"""
auth/tokens.py -- Bearer tokens, password hashing, and one-time codes.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (account id), email, iat, exp, plus a fixed issuer and audience.
       verify_token() raises TokenExpired only after the signature checked
       out; every other failure is InvalidToken. python-jose compares
       signatures with hmac.compare_digest.

  Passwords: bcrypt directly (no passlib wrapper). Cost factor comes from
       Settings.bcrypt_rounds (12 in production). The _DUMMY_HASH constant
       enables timing equalization in authenticate() so response time does
       not reveal whether an email is registered [C1].

  One-time codes: secrets.randbelow over the full 10**n range, zero padded,
       so every n-digit string (leading zeros included) is equally likely.

Layer rule: no imports from api/ or notes/. Import from core/ is allowed.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import OneTimeCode, TokenIdentity
from core.config import get_settings
from core.errors import InvalidToken, TokenExpired

if TYPE_CHECKING:
    from auth.models import Account

logger = logging.getLogger("noteapp.auth")

_settings = get_settings()

_ALGORITHM = "HS256"
_REQUIRED_CLAIMS = ("sub", "email", "iat", "exp")

# bcrypt only looks at the first 72 bytes. Truncate explicitly so bcrypt 5.x
# (which raises on longer input) behaves like 4.x for 128-char passwords.
_BCRYPT_MAX_BYTES = 72


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8")[:_BCRYPT_MAX_BYTES], salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:_BCRYPT_MAX_BYTES], hashed.encode("utf-8"))
    except ValueError:
        # Corrupt or non-bcrypt hash in the store
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("noteapp_timing_dummy")


def authenticate(account: Account | None, password: str) -> bool:
    """Check a password against an account with timing equalization [C1].

    Always runs bcrypt: against _DUMMY_HASH when there is no account or the
    account has no password, against the real hash otherwise. Callers decide
    what a False means for accounts without a password.
    """
    if account is None or account.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return False
    return verify_password(password, account.hashed_password)


# ---------------------------------------------------------------------------
# One-time codes
# ---------------------------------------------------------------------------


def generate_otp(now: datetime | None = None) -> OneTimeCode:
    """Return a uniformly random fixed-width numeric code and its expiry."""
    length = _settings.otp_length
    code = f"{secrets.randbelow(10**length):0{length}d}"
    issued = now or datetime.now(timezone.utc)
    return OneTimeCode(code=code, expires_at=issued + timedelta(seconds=_settings.otp_ttl_seconds))


def otp_matches(account: Account, candidate: str, now: datetime | None = None) -> bool:
    """True when the account holds an unexpired code equal to candidate.

    Expiry is judged here, at check time, never when the code was written.
    """
    if account.otp_code is None or account.otp_expires_at is None:
        return False
    current = now or datetime.now(timezone.utc)
    if not account.otp_expires_at > current:
        return False
    return hmac.compare_digest(account.otp_code.encode("utf-8"), candidate.encode("utf-8"))


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def issue_token(account_id: int, email: str, issued_at: datetime | None = None) -> str:
    """Encode a signed bearer token for an account.

    Args:
        account_id: Account primary key; stored as the "sub" claim.
        email:      Normalized account email at issue time.
        issued_at:  Override for the issue instant. Defaults to now; tests
                    pass a past instant to mint already-expired tokens.
    """
    iat = issued_at or datetime.now(timezone.utc)
    payload = {
        "sub": str(account_id),
        "email": email,
        "iat": int(iat.timestamp()),
        "exp": int((iat + timedelta(seconds=_settings.token_expire_seconds)).timestamp()),
        "iss": _settings.token_issuer,
        "aud": _settings.token_audience,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def verify_token(token: str) -> TokenIdentity:
    """Decode and verify a bearer token.

    Raises:
        TokenExpired: signature valid but exp is in the past.
        InvalidToken: bad signature, malformed structure, wrong issuer or
                      audience, or a required claim missing.
    """
    try:
        payload = jwt.decode(
            token,
            _settings.secret_key,
            algorithms=[_ALGORITHM],
            audience=_settings.token_audience,
            issuer=_settings.token_issuer,
        )
    except ExpiredSignatureError as exc:
        raise TokenExpired() from exc
    except JWTError as exc:
        raise InvalidToken() from exc

    if any(claim not in payload for claim in _REQUIRED_CLAIMS):
        raise InvalidToken()
    try:
        return TokenIdentity(
            account_id=int(payload["sub"]),
            email=str(payload["email"]),
            issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
        )
    except (TypeError, ValueError) as exc:
        raise InvalidToken() from exc


def needs_refresh(identity: TokenIdentity, now: datetime | None = None) -> bool:
    """True when the token expires inside the sliding-refresh window."""
    current = now or datetime.now(timezone.utc)
    return identity.expires_at - current < timedelta(seconds=_settings.token_refresh_window_seconds)
