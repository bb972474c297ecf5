"""
tests/test_account_store.py -- Unit tests for AccountStore (auth/store.py).

Covers:
  - create/get round trip, email normalization, timestamps
  - UNIQUE(email) -> DuplicateEmail on create and on save
  - auth-method and OTP-pair invariants -> InvalidAccountState
  - consume_otp(): single winner, wrong code, expired code, already verified
  - federated subject lookup, delete, ping
  - update() writes only named columns; replace_otp() only while unverified
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from auth.models import Account, OneTimeCode
from auth.store import AccountStore
from core.errors import DuplicateEmail, InvalidAccountState


def _password_account(email: str = "Ann@Example.com") -> Account:
    return Account(email=email, name="Ann", hashed_password="$2b$04$placeholderplaceholderplaceholderpla")


def _with_otp(account: Account, code: str = "123456", minutes: int = 10) -> Account:
    account.set_otp(OneTimeCode(code=code, expires_at=datetime.now(timezone.utc) + timedelta(minutes=minutes)))
    return account


class TestCreateAndRead:
    def test_create_assigns_id_and_timestamps(self, account_store: AccountStore) -> None:
        account = account_store.create(_password_account())
        assert account.id is not None
        assert account.created_at and account.updated_at
        assert account.email == "ann@example.com"

    def test_lookup_is_case_insensitive(self, account_store: AccountStore) -> None:
        created = account_store.create(_password_account())
        found = account_store.get_by_email("  ANN@example.COM ")
        assert found is not None and found.id == created.id

    def test_get_by_id_round_trip(self, account_store: AccountStore) -> None:
        created = account_store.create(_with_otp(_password_account()))
        found = account_store.get_by_id(created.id)
        assert found is not None
        assert found.name == "Ann"
        assert found.is_verified is False
        assert found.otp_code == "123456"
        assert found.otp_expires_at is not None and found.otp_expires_at.tzinfo is not None

    def test_missing_lookups_return_none(self, account_store: AccountStore) -> None:
        assert account_store.get_by_email("nobody@x.com") is None
        assert account_store.get_by_id(999) is None
        assert account_store.get_by_federated_subject("nope") is None

    def test_federated_subject_lookup(self, account_store: AccountStore) -> None:
        created = account_store.create(Account(email="g@x.com", name="Gee", federated_subject="sub-1", is_verified=True))
        found = account_store.get_by_federated_subject("sub-1")
        assert found is not None and found.id == created.id
        assert found.hashed_password is None

    def test_ping(self, account_store: AccountStore) -> None:
        assert account_store.ping() is True


class TestUniqueness:
    def test_duplicate_email_on_create(self, account_store: AccountStore) -> None:
        account_store.create(_password_account("ann@example.com"))
        with pytest.raises(DuplicateEmail):
            account_store.create(_password_account("ANN@example.com"))

    def test_duplicate_email_on_save(self, account_store: AccountStore) -> None:
        account_store.create(_password_account("ann@example.com"))
        bob = account_store.create(_password_account("bob@example.com"))
        bob.email = "ann@example.com"
        with pytest.raises(DuplicateEmail):
            account_store.save(bob)


class TestInvariants:
    def test_no_auth_method_rejected(self, account_store: AccountStore) -> None:
        with pytest.raises(InvalidAccountState):
            account_store.create(Account(email="x@y.com", name="Nobody"))

    def test_half_otp_pair_rejected(self, account_store: AccountStore) -> None:
        account = _password_account()
        account.otp_code = "123456"
        with pytest.raises(InvalidAccountState):
            account_store.create(account)

    def test_save_cannot_remove_last_method(self, account_store: AccountStore) -> None:
        account = account_store.create(_password_account())
        account.hashed_password = None
        with pytest.raises(InvalidAccountState):
            account_store.save(account)

    def test_save_is_idempotent(self, account_store: AccountStore) -> None:
        account = account_store.create(_password_account())
        account_store.save(account)
        account_store.save(account)
        found = account_store.get_by_id(account.id)
        assert found is not None and found.email == account.email


class TestConsumeOtp:
    def test_exactly_one_winner(self, account_store: AccountStore) -> None:
        account = account_store.create(_with_otp(_password_account()))
        assert account_store.consume_otp(account.id, "123456") is True
        assert account_store.consume_otp(account.id, "123456") is False
        found = account_store.get_by_id(account.id)
        assert found.is_verified is True
        assert found.otp_code is None and found.otp_expires_at is None

    def test_wrong_code_leaves_state(self, account_store: AccountStore) -> None:
        account = account_store.create(_with_otp(_password_account()))
        assert account_store.consume_otp(account.id, "000000") is False
        found = account_store.get_by_id(account.id)
        assert found.is_verified is False and found.otp_code == "123456"

    def test_expired_code(self, account_store: AccountStore) -> None:
        account = account_store.create(_with_otp(_password_account()))
        later = datetime.now(timezone.utc) + timedelta(minutes=11)
        assert account_store.consume_otp(account.id, "123456", now=later) is False
        assert account_store.get_by_id(account.id).otp_code == "123456"


class TestDelete:
    def test_delete(self, account_store: AccountStore) -> None:
        account = account_store.create(_password_account())
        assert account_store.delete(account.id) is True
        assert account_store.get_by_id(account.id) is None
        assert account_store.delete(account.id) is False


class TestColumnUpdates:
    def test_update_writes_only_named_columns(self, account_store: AccountStore) -> None:
        account = account_store.create(_with_otp(_password_account()))
        stale = account_store.get_by_id(account.id)
        assert account_store.consume_otp(account.id, "123456") is True

        assert account_store.update(stale.id, name="Annabel") is True

        found = account_store.get_by_id(account.id)
        assert found.name == "Annabel"
        assert found.is_verified is True
        assert found.otp_code is None and found.otp_expires_at is None

    def test_update_email_conflict(self, account_store: AccountStore) -> None:
        account_store.create(_password_account("ann@example.com"))
        bob = account_store.create(_password_account("bob@example.com"))
        with pytest.raises(DuplicateEmail):
            account_store.update(bob.id, email="ANN@example.com")

    def test_update_rejects_half_otp_pair(self, account_store: AccountStore) -> None:
        account = account_store.create(_password_account())
        with pytest.raises(InvalidAccountState):
            account_store.update(account.id, otp_code="123456")

    def test_update_rejects_unknown_column(self, account_store: AccountStore) -> None:
        account = account_store.create(_password_account())
        with pytest.raises(ValueError):
            account_store.update(account.id, created_at="2020-01-01")

    def test_update_missing_account(self, account_store: AccountStore) -> None:
        assert account_store.update(999, name="Ghost") is False

    def test_replace_otp_only_while_unverified(self, account_store: AccountStore) -> None:
        account = account_store.create(_with_otp(_password_account()))
        fresh = OneTimeCode(code="654321", expires_at=datetime.now(timezone.utc) + timedelta(minutes=10))
        assert account_store.replace_otp(account.id, fresh) is True
        assert account_store.get_by_id(account.id).otp_code == "654321"

        assert account_store.consume_otp(account.id, "654321") is True
        assert account_store.replace_otp(account.id, fresh) is False
        found = account_store.get_by_id(account.id)
        assert found.is_verified is True and found.otp_code is None
