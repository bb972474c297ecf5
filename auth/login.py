"""
auth/login.py -- Password login and Google login.

Password login check order matters:
  1. Unknown email          -> InvalidCredentials (same error as a wrong
                               password, so responses do not reveal which
                               emails are registered).
  2. Google-only account    -> GoogleLoginRequired.
  3. Wrong password         -> InvalidCredentials.
  4. Unverified email       -> EmailNotVerified. Checked only after the
                               password, so it is never an oracle either.
bcrypt runs on every path through authenticate() [C1].

Google login links by subject first, then by email. An existing password
account with the same email gets the Google subject attached and is marked
verified: Google already proved ownership of the address. That upgrade is
one-way; a later Google login never clears a password or un-verifies.
Verification is only granted when the Google email equals the account's
current email; an account that moved to an unproven address stays pending.

Layer rule: no imports from api/ or notes/.
"""

from __future__ import annotations

import logging

from auth.federated import IdentityVerifier
from auth.models import Account, AuthResult, FederatedProfile
from auth.notifications import EmailSender, try_send_welcome
from auth.store import AccountStore, normalize_email
from auth.tokens import authenticate, issue_token
from auth.validation import NAME_MAX, NAME_MIN, check_login
from core.errors import (
    DuplicateEmail,
    EmailNotVerified,
    FederatedIdentityMismatch,
    FederatedLoginDisabled,
    GoogleLoginRequired,
    InvalidCredentials,
)

logger = logging.getLogger("noteapp.auth.login")


def login(store: AccountStore, email: str, password: str) -> AuthResult:
    """Authenticate with email and password and issue a bearer token."""
    check_login(email, password)

    account = store.get_by_email(email)
    password_ok = authenticate(account, password)
    if account is None:
        raise InvalidCredentials()
    if not account.has_password:
        raise GoogleLoginRequired()
    if not password_ok:
        raise InvalidCredentials()
    if not account.is_verified:
        raise EmailNotVerified()

    logger.info("Password login for account %s", account.id)
    return AuthResult(token=issue_token(account.id, account.email), account=account)


def federated_login(
    store: AccountStore,
    sender: EmailSender,
    verifier: IdentityVerifier | None,
    assertion: str,
) -> AuthResult:
    """Authenticate with a Google ID token, creating or linking the account.

    Raises:
        FederatedLoginDisabled:     no Google client id configured.
        InvalidFederatedToken:      the assertion failed verification.
        IncompleteFederatedProfile: subject, email or name missing.
        FederatedIdentityMismatch:  the email's account is linked to a
                                    different Google subject.
    """
    if verifier is None:
        raise FederatedLoginDisabled()
    profile = verifier.verify(assertion)
    email = normalize_email(profile.email)

    account = store.get_by_federated_subject(profile.subject) or store.get_by_email(email)
    if account is not None:
        _link(store, account, profile)
    else:
        account = Account(
            email=email,
            name=_display_name(profile, email),
            federated_subject=profile.subject,
            is_verified=True,
        )
        try:
            store.create(account)
        except DuplicateEmail:
            # A concurrent request created the account first; link to it
            existing = store.get_by_email(email)
            if existing is None:
                raise
            account = existing
            _link(store, account, profile)
        else:
            logger.info("Created account %s from Google login", account.id)
            try_send_welcome(sender, account.email, account.name)

    return AuthResult(token=issue_token(account.id, account.email), account=account)


def _link(store: AccountStore, account: Account, profile: FederatedProfile) -> None:
    """Attach the Google subject and, if Google vouched for this email, verify it.

    An account found by subject may have since moved to an address Google
    never proved (profile email change). Its pending verification is left
    alone; only the subject link is written.
    """
    if account.federated_subject is not None and account.federated_subject != profile.subject:
        raise FederatedIdentityMismatch()
    changes: dict = {}
    if account.federated_subject is None:
        changes["federated_subject"] = profile.subject
    if normalize_email(profile.email) == account.email and (not account.is_verified or account.otp_code is not None):
        changes.update(is_verified=True, otp_code=None, otp_expires_at=None)
    if not changes:
        return
    store.update(account.id, **changes)
    for column, value in changes.items():
        setattr(account, column, value)
    if "federated_subject" in changes:
        logger.info("Linked Google identity to account %s", account.id)


def _display_name(profile: FederatedProfile, email: str) -> str:
    """Fit the provider's display name into the 2-50 character name rule."""
    name = profile.name.strip()[:NAME_MAX].strip()
    if len(name) < NAME_MIN:
        name = email.split("@", 1)[0][:NAME_MAX].ljust(NAME_MIN, "_")
    return name
