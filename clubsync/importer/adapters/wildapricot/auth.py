"""
OAuth token management for the Wild Apricot API.

Tokens are obtained with the client-credentials grant and cached until shortly
before expiry. Concurrent callers that find the cache empty share a single
in-flight refresh rather than each posting to the auth endpoint.
"""

from __future__ import annotations

import base64
import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable

import requests

from clubsync.importer.metrics import record_wildapricot_auth_attempt

from .errors import TokenError


@dataclass(frozen=True)
class AccessToken:
    access_token: str
    token_type: str
    expires_at: float
    account_id: str | None
    refresh_token: str | None = None


class TokenManager:
    """Cache one access token and coalesce concurrent refreshes."""

    def __init__(
        self,
        *,
        api_key: str,
        auth_url: str,
        account_id: str | None = None,
        expiry_buffer: float = 300.0,
        timeout: float = 30.0,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.time,
        logger: logging.Logger | None = None,
    ) -> None:
        self.api_key = api_key
        self.auth_url = auth_url
        self.configured_account_id = account_id
        self.expiry_buffer = expiry_buffer
        self.timeout = timeout
        self.session = session or requests.Session()
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._token: AccessToken | None = None
        self._inflight: Future | None = None

    # Public API -----------------------------------------------------------------

    def get_access_token(self) -> str:
        """Return a valid bearer token, refreshing it if needed."""
        return self.get_token().access_token

    def get_token(self) -> AccessToken:
        with self._lock:
            token = self._token
            if token is not None and self._is_valid(token):
                return token
            future = self._inflight
            is_leader = future is None
            if is_leader:
                future = Future()
                self._inflight = future

        if not is_leader:
            return future.result()

        try:
            token = self._request_token()
        except BaseException as exc:
            with self._lock:
                self._inflight = None
            future.set_exception(exc)
            raise
        with self._lock:
            self._token = token
            self._inflight = None
        future.set_result(token)
        return token

    def refresh_token(self) -> AccessToken:
        """Discard the cached token and authenticate again."""
        self.clear_token()
        return self.get_token()

    def clear_token(self) -> None:
        with self._lock:
            self._token = None

    @property
    def account_id(self) -> str | None:
        token = self._token
        if token is not None and token.account_id:
            return token.account_id
        return self.configured_account_id

    # Internal helpers -----------------------------------------------------------

    def _is_valid(self, token: AccessToken) -> bool:
        return self.clock() + self.expiry_buffer < token.expires_at

    def _request_token(self) -> AccessToken:
        credentials = base64.b64encode(f"APIKEY:{self.api_key}".encode("utf-8")).decode("ascii")
        try:
            response = self.session.post(
                self.auth_url,
                headers={
                    "Authorization": f"Basic {credentials}",
                    "Content-Type": "application/x-www-form-urlencoded",
                    "Accept": "application/json",
                },
                data={"grant_type": "client_credentials", "scope": "auto"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            record_wildapricot_auth_attempt("failure")
            self.logger.error("Wild Apricot auth endpoint unreachable", extra={"wa_auth_error": str(exc)})
            raise TokenError(f"Failed to obtain access token: {exc}") from exc

        if not response.ok:
            record_wildapricot_auth_attempt("failure")
            self.logger.error(
                "Wild Apricot token request rejected",
                extra={"status_code": response.status_code, "wa_auth_body": response.text[:500]},
            )
            raise TokenError(
                f"Failed to obtain access token: {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            record_wildapricot_auth_attempt("failure")
            raise TokenError(
                "Failed to obtain access token: response was not valid JSON",
                status_code=response.status_code,
                body=response.text,
            ) from exc
        if not isinstance(payload, dict):
            payload = {}
        access_token = payload.get("access_token")
        if not access_token:
            record_wildapricot_auth_attempt("failure")
            raise TokenError("Failed to obtain access token: response did not include access_token")

        permissions = payload.get("Permissions") or []
        account_id = None
        if permissions and permissions[0].get("AccountId") is not None:
            account_id = str(permissions[0]["AccountId"])
        token = AccessToken(
            access_token=access_token,
            token_type=payload.get("token_type") or "Bearer",
            expires_at=self.clock() + float(payload.get("expires_in") or 0),
            account_id=account_id or self.configured_account_id,
            refresh_token=payload.get("refresh_token"),
        )
        record_wildapricot_auth_attempt("success")
        self.logger.info(
            "Obtained Wild Apricot access token",
            extra={"wa_account_id": token.account_id, "wa_token_expires_at": token.expires_at},
        )
        return token
