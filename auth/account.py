"""
auth/account.py -- Self-service account management for a signed-in user.

Every function takes the account id from the verified bearer token; none of
them accept an id from the request body.

Email change policy: a new address is unproven, so the account drops back to
unverified and a fresh one-time code is issued and emailed straight away
(best effort, same as registration). Existing bearer tokens keep working
until they expire; the next password login is refused with
EMAIL_NOT_VERIFIED until the new address is confirmed via /auth/verify-otp.

Account deletion removes owned notes before the account row. The note store
lives in notes/, which auth/ may not import, so the caller passes a
delete_owned_notes callable.

Layer rule: no imports from api/ or notes/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Optional

from auth.models import Account, ProfileUpdate
from auth.notifications import EmailSender, try_send_verification_code
from auth.store import AccountStore, normalize_email
from auth.tokens import generate_otp, hash_password, verify_password
from auth.validation import email_errors, name_errors, password_errors, require_valid
from core.config import get_settings
from core.errors import (
    DuplicateEmail,
    EmailAlreadyExists,
    FieldError,
    GoogleAccountNoPassword,
    InvalidCurrentPassword,
    InvalidPassword,
    NoFieldsToUpdate,
    PasswordRequired,
    SamePassword,
    UserNotFound,
)

logger = logging.getLogger("noteapp.auth.account")


def get_account(store: AccountStore, account_id: int) -> Account:
    """Return the account behind a token, or raise UserNotFound if it was deleted."""
    account = store.get_by_id(account_id)
    if account is None:
        raise UserNotFound()
    return account


def update_profile(
    store: AccountStore,
    sender: EmailSender,
    account_id: int,
    name: Optional[str] = None,
    email: Optional[str] = None,
) -> ProfileUpdate:
    """Change the display name and/or email.

    Raises:
        NoFieldsToUpdate:   neither name nor email given.
        ValidationError:    a given field fails its rule.
        UserNotFound:       the account no longer exists.
        EmailAlreadyExists: another account holds the new email.
    """
    if name is None and email is None:
        raise NoFieldsToUpdate()
    errors: list[FieldError] = []
    if name is not None:
        errors += name_errors(name)
    if email is not None:
        errors += email_errors(email)
    require_valid(errors)

    account = get_account(store, account_id)
    # Only the columns this call decides are written, so a verification that
    # commits between the read above and the write below is kept.
    changes: dict = {}
    code = None
    if email is not None and normalize_email(email) != account.email:
        new_email = normalize_email(email)
        if store.get_by_email(new_email) is not None:
            raise EmailAlreadyExists()
        otp = generate_otp()
        changes.update(email=new_email, is_verified=False, otp_code=otp.code, otp_expires_at=otp.expires_at)
        code = otp.code
    if name is not None:
        changes["name"] = name.strip()
    email_changed = "email" in changes

    if changes:
        try:
            updated = store.update(account.id, **changes)
        except DuplicateEmail as exc:
            raise EmailAlreadyExists() from exc
        if not updated:
            raise UserNotFound()
        account = get_account(store, account.id)

    sent = False
    if email_changed:
        logger.info("Account %s changed email; verification required", account.id)
        ttl_minutes = max(1, get_settings().otp_ttl_seconds // 60)
        sent = try_send_verification_code(sender, account.email, code, ttl_minutes)
    return ProfileUpdate(account=account, email_changed=email_changed, verification_sent=sent)


def change_password(store: AccountStore, account_id: int, current_password: str, new_password: str) -> None:
    """Replace the password after re-checking the current one.

    Raises:
        ValidationError:         new password outside 6-128 characters.
        GoogleAccountNoPassword: the account has no password to change.
        InvalidCurrentPassword:  current_password does not match.
        SamePassword:            new_password equals the current one.
    """
    errors = password_errors(new_password, field="newPassword")
    if not current_password:
        errors.insert(0, FieldError("currentPassword", "Current password is required"))
    require_valid(errors)

    account = get_account(store, account_id)
    if not account.has_password:
        raise GoogleAccountNoPassword()
    if not verify_password(current_password, account.hashed_password):
        raise InvalidCurrentPassword()
    if verify_password(new_password, account.hashed_password):
        raise SamePassword()

    if not store.update(account.id, hashed_password=hash_password(new_password)):
        raise UserNotFound()
    logger.info("Account %s changed password", account.id)


def delete_account(
    store: AccountStore,
    account_id: int,
    password: Optional[str],
    delete_owned_notes: Callable[[int], int],
) -> int:
    """Delete the account and everything it owns. Returns the number of notes removed.

    Accounts with a password must confirm it; Google-only accounts need not.

    Raises:
        UserNotFound:     the account no longer exists.
        PasswordRequired: the account has a password and none was given.
        InvalidPassword:  the given password does not match.
    """
    account = get_account(store, account_id)
    if account.has_password:
        if not password:
            raise PasswordRequired()
        if not verify_password(password, account.hashed_password):
            raise InvalidPassword()

    notes_deleted = delete_owned_notes(account.id)
    store.delete(account.id)
    logger.info("Account %s deleted with %d notes", account.id, notes_deleted)
    return notes_deleted
