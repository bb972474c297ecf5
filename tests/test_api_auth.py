"""
tests/test_api_auth.py -- Integration tests for /api/v1/auth/* and bearer-token handling.

All tests share one module-scoped app instance (api_client), so every test
uses its own email address.

Covers:
  - register -> verify-otp -> login end to end, Cache-Control: no-store
  - error envelope shape and codes (USER_EXISTS, INVALID_OTP, VALIDATION_ERROR,
    INVALID_CREDENTIALS, EMAIL_NOT_VERIFIED, GOOGLE_LOGIN_REQUIRED)
  - resend-otp replaces the code
  - Google login through the fake verifier; providers list empty when unconfigured
  - MISSING_TOKEN 401, INVALID_TOKEN / TOKEN_EXPIRED 403
  - sliding refresh: X-New-Token on a near-expiry token only
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from auth.tokens import issue_token, verify_token


def _error(resp) -> dict:
    body = resp.json()
    assert "error" in body, f"Expected error envelope, got: {resp.text}"
    return body["error"]


class TestRegistrationFlow:
    """register -> verify-otp -> login through the real routes."""

    def test_end_to_end(self, api_client) -> None:
        client = api_client.client
        resp = client.post(
            "/api/v1/auth/register", json={"email": "A@B.com", "password": "secret1", "name": "Ann"}
        )
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        data = resp.json()
        assert data["email"] == "a@b.com"
        assert data["verificationSent"] is True
        assert isinstance(data["userId"], int)

        resp = client.post("/api/v1/auth/login", json={"email": "a@b.com", "password": "secret1"})
        assert resp.status_code == 400
        assert _error(resp)["code"] == "EMAIL_NOT_VERIFIED"

        code = api_client.email_sender.last_code("a@b.com")
        resp = client.post("/api/v1/auth/verify-otp", json={"email": "a@b.com", "otp": code})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert resp.headers["cache-control"] == "no-store"
        body = resp.json()
        assert body["user"]["isVerified"] is True
        assert verify_token(body["token"]).account_id == data["userId"]

        resp = client.post("/api/v1/auth/login", json={"email": "A@B.COM", "password": "secret1"})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert resp.headers["cache-control"] == "no-store"
        assert resp.json()["user"]["email"] == "a@b.com"

    def test_duplicate_registration(self, api_client) -> None:
        payload = {"email": "dup@b.com", "password": "secret1", "name": "Dup"}
        assert api_client.client.post("/api/v1/auth/register", json=payload).status_code == 201
        resp = api_client.client.post("/api/v1/auth/register", json=payload)
        assert resp.status_code == 400
        assert _error(resp)["code"] == "USER_EXISTS"

    def test_validation_error_lists_fields(self, api_client) -> None:
        resp = api_client.client.post("/api/v1/auth/register", json={"email": "nope", "password": "1", "name": ""})
        assert resp.status_code == 400
        err = _error(resp)
        assert err["code"] == "VALIDATION_ERROR"
        assert {e["field"] for e in err["errors"]} == {"email", "password", "name"}

    def test_malformed_body(self, api_client) -> None:
        resp = api_client.client.post("/api/v1/auth/login", json={"email": 123, "password": []})
        assert resp.status_code == 400
        assert _error(resp)["code"] == "VALIDATION_ERROR"

    def test_wrong_otp(self, api_client) -> None:
        api_client.client.post(
            "/api/v1/auth/register", json={"email": "otp@b.com", "password": "secret1", "name": "Otto"}
        )
        code = api_client.email_sender.last_code("otp@b.com")
        wrong = "000000" if code != "000000" else "111111"
        resp = api_client.client.post("/api/v1/auth/verify-otp", json={"email": "otp@b.com", "otp": wrong})
        assert resp.status_code == 400
        assert _error(resp)["code"] == "INVALID_OTP"

    def test_verify_twice(self, api_client) -> None:
        api_client.register_and_verify("twice@b.com")
        resp = api_client.client.post("/api/v1/auth/verify-otp", json={"email": "twice@b.com", "otp": "123456"})
        assert resp.status_code == 400
        assert _error(resp)["code"] == "ALREADY_VERIFIED"

    def test_resend_replaces_code(self, api_client) -> None:
        client = api_client.client
        client.post("/api/v1/auth/register", json={"email": "re@b.com", "password": "secret1", "name": "Re"})
        first = api_client.email_sender.last_code("re@b.com")
        resp = client.post("/api/v1/auth/resend-otp", json={"email": "re@b.com"})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        second = api_client.email_sender.last_code("re@b.com")
        assert api_client.account_store.get_by_email("re@b.com").otp_code == second
        if first != second:
            resp = client.post("/api/v1/auth/verify-otp", json={"email": "re@b.com", "otp": first})
            assert _error(resp)["code"] == "INVALID_OTP"
        resp = client.post("/api/v1/auth/verify-otp", json={"email": "re@b.com", "otp": second})
        assert resp.status_code == 200

    def test_resend_unknown_email(self, api_client) -> None:
        resp = api_client.client.post("/api/v1/auth/resend-otp", json={"email": "ghost@b.com"})
        assert resp.status_code == 404
        assert _error(resp)["code"] == "USER_NOT_FOUND"


class TestLogin:
    def test_unknown_email_and_wrong_password_identical(self, api_client) -> None:
        api_client.register_and_verify("known@b.com")
        unknown = api_client.client.post("/api/v1/auth/login", json={"email": "unknown@b.com", "password": "secret1"})
        wrong = api_client.client.post("/api/v1/auth/login", json={"email": "known@b.com", "password": "wrong-pw"})
        assert unknown.status_code == wrong.status_code == 401
        assert _error(unknown) == _error(wrong)
        assert _error(unknown)["code"] == "INVALID_CREDENTIALS"


class TestGoogleLogin:
    def test_new_google_account(self, api_client) -> None:
        api_client.verifier.add("g-tok-carol", "g-carol", "carol@x.com", "Carol")
        resp = api_client.client.post("/api/v1/auth/google", json={"tokenId": "g-tok-carol"})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert resp.headers["cache-control"] == "no-store"
        assert resp.json()["user"]["isVerified"] is True

        resp = api_client.client.post("/api/v1/auth/login", json={"email": "carol@x.com", "password": "secret1"})
        assert resp.status_code == 400
        assert _error(resp)["code"] == "GOOGLE_LOGIN_REQUIRED"

    def test_rejected_assertion(self, api_client) -> None:
        resp = api_client.client.post("/api/v1/auth/google", json={"tokenId": "forged"})
        assert resp.status_code == 400
        assert _error(resp)["code"] == "INVALID_FEDERATED_TOKEN"

    def test_providers_empty_when_unconfigured(self, api_client) -> None:
        resp = api_client.client.get("/api/v1/auth/providers")
        assert resp.status_code == 200
        assert resp.json() == []


class TestBearerTokens:
    """Token checks run through a protected route (GET /user/profile)."""

    URL = "/api/v1/user/profile"

    def test_missing_token(self, api_client) -> None:
        resp = api_client.client.get(self.URL)
        assert resp.status_code == 401, f"Expected 401, got {resp.status_code}: {resp.text}"
        assert _error(resp)["code"] == "MISSING_TOKEN"

    def test_wrong_scheme(self, api_client) -> None:
        token = api_client.register_and_verify("scheme@b.com")
        resp = api_client.client.get(self.URL, headers={"Authorization": f"Token {token}"})
        assert resp.status_code == 401
        assert _error(resp)["code"] == "MISSING_TOKEN"

    def test_lowercase_scheme_accepted(self, api_client) -> None:
        token = api_client.register_and_verify("lower@b.com")
        resp = api_client.client.get(self.URL, headers={"Authorization": f"bearer {token}"})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"

    def test_tampered_token(self, api_client) -> None:
        token = api_client.register_and_verify("tamper@b.com")
        resp = api_client.client.get(self.URL, headers=api_client.auth(token[:-2] + "xx"))
        assert resp.status_code == 403
        assert _error(resp)["code"] == "INVALID_TOKEN"

    def test_expired_token(self, api_client) -> None:
        api_client.register_and_verify("expired@b.com")
        account = api_client.account_store.get_by_email("expired@b.com")
        stale = issue_token(account.id, account.email, issued_at=datetime.now(timezone.utc) - timedelta(days=8))
        resp = api_client.client.get(self.URL, headers=api_client.auth(stale))
        assert resp.status_code == 403
        assert _error(resp)["code"] == "TOKEN_EXPIRED"

    def test_fresh_token_not_refreshed(self, api_client) -> None:
        token = api_client.register_and_verify("fresh@b.com")
        resp = api_client.client.get(self.URL, headers=api_client.auth(token))
        assert resp.status_code == 200
        assert "x-new-token" not in resp.headers

    def test_near_expiry_token_refreshed(self, api_client) -> None:
        api_client.register_and_verify("sliding@b.com")
        account = api_client.account_store.get_by_email("sliding@b.com")
        old = issue_token(account.id, account.email, issued_at=datetime.now(timezone.utc) - timedelta(days=6, hours=12))
        resp = api_client.client.get(self.URL, headers=api_client.auth(old))
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        new_token = resp.headers.get("x-new-token")
        assert new_token, "Expected X-New-Token on a near-expiry token"
        assert verify_token(new_token).account_id == account.id
        assert verify_token(new_token).expires_at > verify_token(old).expires_at

    def test_failed_request_not_refreshed(self, api_client) -> None:
        api_client.register_and_verify("sliding-fail@b.com")
        account = api_client.account_store.get_by_email("sliding-fail@b.com")
        old = issue_token(account.id, account.email, issued_at=datetime.now(timezone.utc) - timedelta(days=6, hours=12))
        resp = api_client.client.get("/api/v1/notes/999999", headers=api_client.auth(old))
        assert resp.status_code == 404
        assert "x-new-token" not in resp.headers
