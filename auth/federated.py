"""
auth/federated.py -- Google ID token verification (the federated identity bridge).

The browser obtains a Google ID token (a JWT signed by Google) and posts it
to /auth/google. GoogleIdentityVerifier checks it and returns a
FederatedProfile built from verified claims only.

Checks, in order:
  1. RS256 signature against Google's published JWKS. Keys are fetched over
     HTTP and cached for google_jwks_cache_seconds. A token signed with a kid
     missing from the cache triggers one refetch (Google rotates keys), at
     most once per _MIN_REFETCH_SECONDS so garbage tokens cannot hammer the
     JWKS endpoint.
  2. exp / iat, with a small leeway for clock skew.
  3. aud == the configured client id; iss is one of Google's two issuers.
  4. [H1] email_verified must be true. An unverified email could be a
     victim's address added to an attacker's Google account.
  5. sub, email and name must all be present -> otherwise
     IncompleteFederatedProfile.

Any failure in 1-4 is InvalidFederatedToken. An unreachable JWKS endpoint is
FederatedProviderUnavailable -- a dependency failure, not the user's fault.

Layer rule: no imports from api/ or notes/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any, Protocol

import requests
from authlib.jose import JsonWebKey, JsonWebToken
from authlib.jose.errors import JoseError

from auth.models import FederatedProfile
from core.config import Settings, get_settings
from core.errors import FederatedProviderUnavailable, IncompleteFederatedProfile, InvalidFederatedToken

logger = logging.getLogger("noteapp.auth.federated")

GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")

_LEEWAY_SECONDS = 60
_MIN_REFETCH_SECONDS = 60

# Module-level session shared across JWKS fetches for connection pooling.
_session = requests.Session()
_session.max_redirects = 3


class IdentityVerifier(Protocol):
    def verify(self, assertion: str) -> FederatedProfile: ...


class GoogleIdentityVerifier:
    """Verify Google ID tokens for one OAuth client id.

    Args:
        client_id:     The OAuth client id the token must be addressed to.
        jwks_url:      Google's JWKS endpoint.
        cache_seconds: How long fetched keys are trusted before refetching.
        timeout:       HTTP timeout for the JWKS fetch.
        fetch_jwks:    Override for the fetch (tests pass a local key set).
    """

    def __init__(
        self,
        client_id: str,
        jwks_url: str = "https://www.googleapis.com/oauth2/v3/certs",
        cache_seconds: int = 3600,
        timeout: float = 5.0,
        fetch_jwks: Callable[[], dict[str, Any]] | None = None,
    ) -> None:
        self.client_id = client_id
        self.jwks_url = jwks_url
        self.cache_seconds = cache_seconds
        self.timeout = timeout
        self._fetch = fetch_jwks or self._fetch_remote
        self._jwt = JsonWebToken(["RS256"])
        self._keys = None
        self._fetched_at = 0.0

    # ------------------------------------------------------------------
    # Key set
    # ------------------------------------------------------------------

    def _fetch_remote(self) -> dict[str, Any]:
        try:
            resp = _session.get(self.jwks_url, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Google JWKS fetch failed: %s", exc)
            raise FederatedProviderUnavailable() from exc

    def _key_set(self, force: bool = False):
        age = time.monotonic() - self._fetched_at
        if self._keys is None or age > self.cache_seconds or (force and age > _MIN_REFETCH_SECONDS):
            jwks = self._fetch()
            try:
                self._keys = JsonWebKey.import_key_set(jwks)
            except (JoseError, ValueError, KeyError, TypeError) as exc:
                logger.warning("Google JWKS response could not be parsed: %s", exc)
                raise FederatedProviderUnavailable() from exc
            self._fetched_at = time.monotonic()
            logger.info("Google JWKS loaded")
        return self._keys

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def _decode(self, assertion: str, keys):
        return self._jwt.decode(
            assertion,
            keys,
            claims_options={
                "iss": {"essential": True, "values": list(GOOGLE_ISSUERS)},
                "aud": {"essential": True, "value": self.client_id},
                "exp": {"essential": True},
            },
        )

    def verify(self, assertion: str) -> FederatedProfile:
        """Return the verified profile carried by a Google ID token."""
        if not assertion:
            raise InvalidFederatedToken()
        try:
            try:
                claims = self._decode(assertion, self._key_set())
            except ValueError:
                # authlib raises ValueError when no key matches the token's
                # kid. Google may have rotated keys since the last fetch.
                claims = self._decode(assertion, self._key_set(force=True))
            claims.validate(leeway=_LEEWAY_SECONDS)
        except (JoseError, ValueError) as exc:
            logger.info("Rejected Google ID token: %s", exc)
            raise InvalidFederatedToken() from exc

        if claims.get("email_verified") not in (True, "true"):
            raise InvalidFederatedToken("Google account email is not verified.")

        subject = claims.get("sub")
        email = claims.get("email")
        name = claims.get("name")
        if not subject or not email or not name:
            raise IncompleteFederatedProfile()
        return FederatedProfile(subject=str(subject), email=str(email), name=str(name))


def build_identity_verifier(settings: Settings) -> GoogleIdentityVerifier | None:
    """Return a verifier for the configured client id, or None if Google login is off."""
    if not settings.google_client_id:
        logger.info("GOOGLE_CLIENT_ID not set -- Google login disabled")
        return None
    logger.info("Google login enabled")
    return GoogleIdentityVerifier(
        client_id=settings.google_client_id,
        jwks_url=settings.google_jwks_url,
        cache_seconds=settings.google_jwks_cache_seconds,
        timeout=settings.federated_timeout_seconds,
    )


def get_enabled_providers() -> list[dict]:
    """Return metadata for every configured federated provider.

    Used by GET /api/v1/auth/providers so the login page knows which buttons
    to render. Returns list of {"name": str, "label": str, "client_id": str};
    ProviderInfo serializes client_id as "clientId".
    """
    cfg = get_settings()
    providers: list[dict] = []
    if cfg.google_client_id:
        providers.append({"name": "google", "label": "Google", "client_id": cfg.google_client_id})
    return providers
