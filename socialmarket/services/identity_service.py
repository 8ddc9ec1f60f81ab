"""Identity provider — Supabase Auth (GoTrue) over REST.

Treated as an opaque capability: verify a bearer token, sign a user up,
refresh a session. Nothing here is reimplemented locally.

Failure classes matter to callers:
- a token the provider rejects (4xx) resolves to None
- sign-up / refresh rejected by the provider raises IdentityRejected
- network errors and provider outages (5xx) raise IdentityProviderError
"""

import logging
from collections import namedtuple

import requests

logger = logging.getLogger(__name__)

Identity = namedtuple("Identity", ["id", "email"])


class IdentityProviderError(Exception):
    """The provider could not be reached or failed on its side."""


class IdentityRejected(Exception):
    """The provider understood the request and refused it."""


class SupabaseIdentityProvider:

    def __init__(self, url=None, api_key=None, timeout=10):
        self.url = url.rstrip("/") if url else None
        self.api_key = api_key
        self.timeout = timeout

    def init_app(self, app):
        url = app.config.get("SUPABASE_URL")
        self.url = url.rstrip("/") if url else None
        self.api_key = app.config.get("SUPABASE_ANON_KEY")
        self.timeout = app.config.get("SUPABASE_TIMEOUT", 10)
        app.extensions["identity"] = self

    def _headers(self, token=None):
        headers = {"apikey": self.api_key or "", "Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _request(self, method, path, **kwargs):
        if not self.url:
            raise IdentityProviderError("Identity provider is not configured")
        try:
            return requests.request(
                method, f"{self.url}{path}", timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            raise IdentityProviderError(f"Identity provider unreachable: {e}") from e

    @staticmethod
    def _error_message(resp):
        try:
            body = resp.json()
        except ValueError:
            return f"HTTP {resp.status_code}"
        return (
            body.get("msg")
            or body.get("error_description")
            or body.get("message")
            or f"HTTP {resp.status_code}"
        )

    def verify_token(self, token):
        """Resolve an access token to an Identity, or None if rejected."""
        resp = self._request("GET", "/auth/v1/user", headers=self._headers(token))

        if resp.status_code >= 500:
            raise IdentityProviderError(f"Identity provider error: HTTP {resp.status_code}")
        if resp.status_code >= 400:
            logger.info(f"Token rejected by identity provider: {self._error_message(resp)}")
            return None

        user = resp.json() or {}
        if not user.get("id"):
            return None
        return Identity(id=user["id"], email=user.get("email") or "")

    def sign_up(self, email, password, metadata=None):
        """Create an account. Returns {"user": {...}, "session": {...} | None}."""
        resp = self._request(
            "POST",
            "/auth/v1/signup",
            headers=self._headers(),
            json={"email": email, "password": password, "data": metadata or {}},
        )
        body = self._check(resp)

        # With email confirmation on, GoTrue returns the bare user object.
        if "access_token" in body:
            session = {k: v for k, v in body.items() if k != "user"}
            return {"user": body.get("user"), "session": session}
        return {"user": body, "session": None}

    def refresh_session(self, refresh_token):
        """Exchange a refresh token for a new session."""
        resp = self._request(
            "POST",
            "/auth/v1/token?grant_type=refresh_token",
            headers=self._headers(),
            json={"refresh_token": refresh_token},
        )
        body = self._check(resp)
        session = {k: v for k, v in body.items() if k != "user"}
        return {"user": body.get("user"), "session": session}

    def _check(self, resp):
        if resp.status_code >= 500:
            raise IdentityProviderError(f"Identity provider error: HTTP {resp.status_code}")
        if resp.status_code >= 400:
            raise IdentityRejected(self._error_message(resp))
        return resp.json() or {}
