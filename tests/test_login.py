"""
tests/test_login.py -- Unit tests for auth/login.py.

Covers:
  - password login: success, unknown email vs wrong password (same error),
    unverified account, Google-only account regardless of password
  - Google login: new account, linking an existing password account by
    email, returning user by subject, subject mismatch, disabled provider,
    rejected assertion, name fitting, a changed email left unverified
"""

from __future__ import annotations

import pytest

from auth import account as account_flow
from auth import login as login_flow
from auth import registration
from auth.models import Account
from auth.store import AccountStore
from auth.tokens import hash_password, verify_token
from core.errors import (
    EmailNotVerified,
    FederatedIdentityMismatch,
    FederatedLoginDisabled,
    GoogleLoginRequired,
    InvalidCredentials,
    InvalidFederatedToken,
)


def _verified(store: AccountStore, email: str = "a@b.com", password: str = "secret1") -> Account:
    return store.create(Account(email=email, name="Ann", hashed_password=hash_password(password), is_verified=True))


class TestPasswordLogin:
    def test_success(self, account_store: AccountStore) -> None:
        account = _verified(account_store)
        result = login_flow.login(account_store, "A@B.com", "secret1")
        assert result.account.id == account.id
        assert verify_token(result.token).email == "a@b.com"

    def test_unknown_email_and_wrong_password_look_the_same(self, account_store: AccountStore) -> None:
        _verified(account_store)
        with pytest.raises(InvalidCredentials) as unknown:
            login_flow.login(account_store, "nobody@b.com", "secret1")
        with pytest.raises(InvalidCredentials) as wrong:
            login_flow.login(account_store, "a@b.com", "wrong-pass")
        assert unknown.value.message == wrong.value.message
        assert unknown.value.status_code == wrong.value.status_code == 401

    def test_unverified_account(self, account_store: AccountStore, email_sender) -> None:
        registration.register(account_store, email_sender, "a@b.com", "secret1", "Ann")
        with pytest.raises(EmailNotVerified):
            login_flow.login(account_store, "a@b.com", "secret1")

    def test_unverified_with_wrong_password_is_invalid_credentials(self, account_store: AccountStore, email_sender) -> None:
        registration.register(account_store, email_sender, "a@b.com", "secret1", "Ann")
        with pytest.raises(InvalidCredentials):
            login_flow.login(account_store, "a@b.com", "wrong-pass")

    @pytest.mark.parametrize("password", ["secret1", "anything", "x"])
    def test_google_only_account(self, account_store: AccountStore, password: str) -> None:
        account_store.create(Account(email="carol@x.com", name="Carol", federated_subject="g-1", is_verified=True))
        with pytest.raises(GoogleLoginRequired):
            login_flow.login(account_store, "carol@x.com", password)


class TestFederatedLogin:
    def test_creates_verified_account_without_password(self, account_store, email_sender, identity_verifier) -> None:
        identity_verifier.add("tok-carol", "g-carol", "Carol@X.com", "Carol")
        result = login_flow.federated_login(account_store, email_sender, identity_verifier, "tok-carol")
        account = account_store.get_by_email("carol@x.com")
        assert account is not None and account.id == result.account.id
        assert account.is_verified is True
        assert account.hashed_password is None
        assert account.federated_subject == "g-carol"
        assert email_sender.to("carol@x.com"), "welcome email expected"

        # Later password login for the same email must be redirected to Google
        with pytest.raises(GoogleLoginRequired):
            login_flow.login(account_store, "carol@x.com", "secret1")

    def test_returning_user_found_by_subject(self, account_store, email_sender, identity_verifier) -> None:
        identity_verifier.add("tok-1", "g-1", "carol@x.com", "Carol")
        first = login_flow.federated_login(account_store, email_sender, identity_verifier, "tok-1")
        second = login_flow.federated_login(account_store, email_sender, identity_verifier, "tok-1")
        assert first.account.id == second.account.id

    def test_links_existing_password_account(self, account_store, email_sender, identity_verifier) -> None:
        registration.register(account_store, email_sender, "ann@b.com", "secret1", "Ann")
        identity_verifier.add("tok-ann", "g-ann", "ann@b.com", "Ann Google")
        result = login_flow.federated_login(account_store, email_sender, identity_verifier, "tok-ann")
        stored = account_store.get_by_email("ann@b.com")
        assert stored.id == result.account.id
        assert stored.federated_subject == "g-ann"
        assert stored.is_verified is True and stored.otp_code is None
        assert stored.name == "Ann"
        # Password still works after linking
        assert login_flow.login(account_store, "ann@b.com", "secret1").account.id == stored.id

    def test_changed_email_stays_pending(self, account_store, email_sender, identity_verifier) -> None:
        identity_verifier.add("tok-gus", "g-gus", "gus@x.com", "Gus")
        created = login_flow.federated_login(account_store, email_sender, identity_verifier, "tok-gus").account
        account_flow.update_profile(account_store, email_sender, created.id, email="unproven@x.com")

        again = login_flow.federated_login(account_store, email_sender, identity_verifier, "tok-gus")
        assert again.account.id == created.id
        assert verify_token(again.token).account_id == created.id
        stored = account_store.get_by_id(created.id)
        assert stored.email == "unproven@x.com"
        assert stored.is_verified is False
        assert stored.otp_code is not None

    def test_subject_mismatch(self, account_store, email_sender, identity_verifier) -> None:
        account_store.create(Account(email="d@x.com", name="Dee", federated_subject="g-old", is_verified=True))
        identity_verifier.add("tok-new", "g-new", "d@x.com", "Dee")
        with pytest.raises(FederatedIdentityMismatch):
            login_flow.federated_login(account_store, email_sender, identity_verifier, "tok-new")

    def test_disabled(self, account_store, email_sender) -> None:
        with pytest.raises(FederatedLoginDisabled):
            login_flow.federated_login(account_store, email_sender, None, "anything")

    def test_rejected_assertion(self, account_store, email_sender, identity_verifier) -> None:
        with pytest.raises(InvalidFederatedToken):
            login_flow.federated_login(account_store, email_sender, identity_verifier, "forged")

    def test_long_and_short_names_fitted(self, account_store, email_sender, identity_verifier) -> None:
        identity_verifier.add("tok-long", "g-long", "long@x.com", "N" * 80)
        identity_verifier.add("tok-short", "g-short", "sh@x.com", "Q")
        long_acc = login_flow.federated_login(account_store, email_sender, identity_verifier, "tok-long").account
        short_acc = login_flow.federated_login(account_store, email_sender, identity_verifier, "tok-short").account
        assert len(long_acc.name) == 50
        assert short_acc.name == "sh"
