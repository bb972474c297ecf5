"""
auth/registration.py -- Registration and email verification workflow.

Account states: created (unverified, OTP present) -> verified (OTP cleared).
"OTP issued" is not a stored state; it is simply otp_code being non-NULL.

Partial-failure policy:
  register()   -- the account is durable before any email is attempted. A
                  failed OTP email is logged and reported back as
                  verification_sent=False; the caller can use resend_otp().
  verify_otp() -- the welcome email is best effort and never fails the call.
  resend_otp() -- delivery IS the operation, so EmailSendFailed propagates.

Concurrency: two verify_otp() calls with the same valid code race on
AccountStore.consume_otp(), a single conditional UPDATE. Exactly one wins;
the loser re-reads the account and fails with AlreadyVerified (or InvalidOTP
if the code was replaced in between). No token is issued to the loser.

Layer rule: no imports from api/ or notes/.
"""

from __future__ import annotations

import logging

from auth.models import Account, AuthResult, RegistrationResult
from auth.notifications import EmailSender, send_verification_code, try_send_verification_code, try_send_welcome
from auth.store import AccountStore, normalize_email
from auth.tokens import generate_otp, hash_password, issue_token, otp_matches
from auth.validation import check_email, check_otp_request, check_registration
from core.config import get_settings
from core.errors import AlreadyVerified, DuplicateEmail, InvalidOTP, UserExists, UserNotFound

logger = logging.getLogger("noteapp.auth.registration")

_settings = get_settings()


def _ttl_minutes() -> int:
    return max(1, _settings.otp_ttl_seconds // 60)


def register(store: AccountStore, sender: EmailSender, email: str, password: str, name: str) -> RegistrationResult:
    """Create an unverified password account and email it a one-time code.

    Raises:
        ValidationError: email shape, password length or name length invalid.
        UserExists:      an account already holds this email.
    """
    check_registration(email, password, name)
    normalized = normalize_email(email)

    if store.get_by_email(normalized) is not None:
        raise UserExists()

    account = Account(
        email=normalized,
        name=name.strip(),
        hashed_password=hash_password(password),
        is_verified=False,
    )
    otp = generate_otp()
    account.set_otp(otp)
    try:
        store.create(account)
    except DuplicateEmail as exc:
        # Lost a race with a concurrent registration for the same address
        raise UserExists() from exc
    logger.info("Registered account %s", account.id)

    sent = try_send_verification_code(sender, account.email, otp.code, _ttl_minutes())
    return RegistrationResult(account=account, verification_sent=sent)


def verify_otp(store: AccountStore, sender: EmailSender, email: str, code: str) -> AuthResult:
    """Redeem a one-time code, mark the account verified, and issue a token.

    A failed attempt leaves the stored code untouched, so the user can retry
    until it expires.

    Raises:
        UserNotFound:    no account for this email.
        AlreadyVerified: the account is already verified.
        InvalidOTP:      no code stored, code mismatch, or code expired.
    """
    check_otp_request(email, code, _settings.otp_length)

    account = store.get_by_email(email)
    if account is None:
        raise UserNotFound()
    if account.is_verified:
        raise AlreadyVerified()
    if not otp_matches(account, code):
        raise InvalidOTP()

    if not store.consume_otp(account.id, code):
        current = store.get_by_id(account.id)
        if current is not None and current.is_verified:
            raise AlreadyVerified()
        raise InvalidOTP()

    account.is_verified = True
    account.clear_otp()
    logger.info("Account %s verified", account.id)

    token = issue_token(account.id, account.email)
    try_send_welcome(sender, account.email, account.name)
    return AuthResult(token=token, account=account)


def resend_otp(store: AccountStore, sender: EmailSender, email: str) -> None:
    """Replace the account's code with a fresh one and email it.

    The previous code stops working as soon as the new one is saved. The
    overwrite is conditional on the account still being unverified.

    Raises:
        UserNotFound:    no account for this email.
        AlreadyVerified: the account is already verified.
        EmailSendFailed: the new code could not be delivered.
    """
    check_email(email)

    account = store.get_by_email(email)
    if account is None:
        raise UserNotFound()
    if account.is_verified:
        raise AlreadyVerified()

    otp = generate_otp()
    if not store.replace_otp(account.id, otp):
        # A verify_otp() committed after the read above, or the account is gone
        if store.get_by_id(account.id) is None:
            raise UserNotFound()
        raise AlreadyVerified()
    send_verification_code(sender, account.email, otp.code, _ttl_minutes())
    logger.info("Verification code re-sent for account %s", account.id)
