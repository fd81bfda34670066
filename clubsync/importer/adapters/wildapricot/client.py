"""
Wild Apricot REST client used by the sync engine.

Every authenticated request goes through ``WildApricotClient.request`` which
owns retry classification:

* 401 clears the cached token and retries once with a fresh one.
* 429 honours ``Retry-After`` (falling back to exponential backoff).
* 5xx and network errors back off exponentially with jitter.
* Any other 4xx fails immediately.
"""

from __future__ import annotations

import logging
import random
import time
from datetime import date, datetime, timezone
from typing import Any, Callable, List, Mapping

import requests

from clubsync.importer.metrics import record_wildapricot_retry

from .auth import TokenManager
from .config import WildApricotConfig
from .errors import (
    ApiError,
    AsyncQueryFailed,
    AsyncQueryTimeout,
    RateLimitExceeded,
    RequestFailed,
)
from .records import WAContact, WAEvent, WAEventRegistration, WAMembershipLevel

ASYNC_PENDING_STATES = frozenset({"Waiting", "Processing", "Pending"})


def _extract_items(payload: Any, item_key: str | None) -> list:
    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    if item_key and isinstance(payload.get(item_key), list):
        return payload[item_key]
    items = payload.get("Items")
    if isinstance(items, list):
        return items
    return []


def _format_filter_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _format_filter_date(value: date | datetime) -> str:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        value = value.date()
    return value.isoformat()


class WildApricotClient:
    """Authenticated access to one Wild Apricot account."""

    def __init__(
        self,
        config: WildApricotConfig,
        *,
        session: requests.Session | None = None,
        token_manager: TokenManager | None = None,
        sleep_fn: Callable[[float], None] = time.sleep,
        jitter_fn: Callable[[], float] = random.random,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.session = session or requests.Session()
        self.tokens = token_manager or TokenManager(
            api_key=config.api_key,
            auth_url=config.auth_url,
            account_id=config.account_id,
            expiry_buffer=config.token_expiry_buffer,
            timeout=config.request_timeout,
            session=self.session,
        )
        self.sleep = sleep_fn
        self.jitter = jitter_fn
        self.logger = logger or logging.getLogger(__name__)

    # Public API -----------------------------------------------------------------

    @property
    def account_id(self) -> str:
        return self.tokens.account_id or self.config.account_id

    @property
    def account_url(self) -> str:
        return f"{self.config.api_base_url}/accounts/{self.account_id}"

    def request(self, method: str, url: str, *, params: Mapping[str, Any] | None = None) -> Any:
        """
        Issue an authenticated request and return the decoded JSON body.

        Raises:
            ApiError: non-retryable 4xx, or a second 401 after re-authenticating.
            RateLimitExceeded: 429 responses persisted past ``max_retries``.
            RequestFailed: 5xx or network failures persisted past ``max_retries``.
            TokenError: the auth endpoint rejected the credentials.
        """
        attempt = 0
        reauthenticated = False
        max_retries = self.config.max_retries

        while True:
            token = self.tokens.get_access_token()
            try:
                response = self.session.request(
                    method,
                    url,
                    headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
                    params=dict(params) if params else None,
                    timeout=self.config.request_timeout,
                )
            except (requests.ConnectionError, requests.Timeout) as exc:
                if attempt >= max_retries:
                    raise RequestFailed(f"API request failed: {exc}", url=url) from exc
                delay = self._backoff_delay(attempt)
                self._log_retry("network", url, attempt, delay, error=str(exc))
                self.sleep(delay)
                attempt += 1
                continue

            status = response.status_code
            if status == 401:
                if reauthenticated:
                    raise ApiError(
                        "API request unauthorized after token refresh",
                        status_code=status,
                        body=response.text,
                        url=url,
                    )
                reauthenticated = True
                record_wildapricot_retry("unauthorized")
                self.logger.info("Wild Apricot token rejected; re-authenticating", extra={"wa_url": url})
                self.tokens.clear_token()
                continue

            if status == 429:
                if attempt >= max_retries:
                    raise RateLimitExceeded("Rate limit exceeded", status_code=status, body=response.text, url=url)
                delay = self._retry_after(response)
                if delay is None:
                    delay = self._backoff_delay(attempt)
                self._log_retry("rate_limit", url, attempt, delay, status=status)
                self.sleep(delay)
                attempt += 1
                continue

            if status >= 500:
                if attempt >= max_retries:
                    raise RequestFailed(
                        f"API request failed: {status}",
                        status_code=status,
                        body=response.text,
                        url=url,
                    )
                delay = self._backoff_delay(attempt)
                self._log_retry("server_error", url, attempt, delay, status=status)
                self.sleep(delay)
                attempt += 1
                continue

            if status >= 400:
                raise ApiError(f"API request failed: {status}", status_code=status, body=response.text, url=url)

            return self._decode(response, url)

    def get(self, endpoint: str, *, params: Mapping[str, Any] | None = None) -> Any:
        return self.request("GET", self._resolve(endpoint), params=params)

    def fetch_paged(
        self,
        endpoint: str,
        *,
        item_key: str | None = None,
        params: Mapping[str, Any] | None = None,
        page_size: int | None = None,
    ) -> List[dict]:
        """
        Collect every item from a ``$top``/``$skip`` paginated endpoint.

        Stops on an empty page or a page shorter than ``page_size``. When the
        platform answers with a ``ResultUrl`` instead of items, the async query
        is polled to completion and its payload returned.
        """
        url = self._resolve(endpoint)
        page_size = page_size or self.config.page_size
        items: List[dict] = []
        skip = 0
        while True:
            page_params = {**(params or {}), "$top": page_size, "$skip": skip}
            payload = self.request("GET", url, params=page_params)
            page = _extract_items(payload, item_key)
            if not page and isinstance(payload, Mapping) and payload.get("ResultUrl"):
                return items + self.poll_async_query(payload["ResultUrl"], item_key=item_key)

            items.extend(page)
            self.logger.debug(
                "Fetched Wild Apricot page",
                extra={"wa_endpoint": endpoint, "wa_skip": skip, "wa_page_items": len(page)},
            )
            if not page or len(page) < page_size:
                break
            skip += len(page)
        return items

    def poll_async_query(self, result_url: str, *, item_key: str | None = None) -> List[dict]:
        """Poll an asynchronous query until it completes, fails, or exhausts its attempts."""
        max_attempts = self.config.async_max_attempts
        for attempt in range(1, max_attempts + 1):
            payload = self.request("GET", result_url)
            state = payload.get("State") if isinstance(payload, Mapping) else None
            if state == "Complete":
                return _extract_items(payload, item_key)
            if state == "Failed":
                details = payload.get("ErrorDetails")
                raise AsyncQueryFailed(f"Async query failed: {details}", details=details)
            self.logger.debug(
                "Wild Apricot async query pending",
                extra={"wa_result_url": result_url, "wa_state": state, "wa_attempt": attempt},
            )
            if attempt < max_attempts:
                self.sleep(self.config.async_poll_interval)
        raise AsyncQueryTimeout(
            f"Async query timed out after {max_attempts} attempts",
            attempts=max_attempts,
        )

    # Typed fetchers -------------------------------------------------------------

    def fetch_contacts(self) -> List[WAContact]:
        return self.fetch_paged("contacts", item_key="Contacts", params={"$async": "false"})

    def fetch_contacts_modified_since(self, since: datetime) -> List[WAContact]:
        return self.fetch_paged(
            "contacts",
            item_key="Contacts",
            params={
                "$async": "false",
                "$filter": f"'Profile last updated' ge {_format_filter_datetime(since)}",
            },
        )

    def fetch_events(self) -> List[WAEvent]:
        return self.fetch_paged("events", item_key="Events")

    def fetch_events_from_date(self, start: date | datetime) -> List[WAEvent]:
        return self.fetch_paged(
            "events",
            item_key="Events",
            params={"$filter": f"StartDate ge {_format_filter_date(start)}"},
        )

    def fetch_event_registrations(self, event_id: int | str) -> List[WAEventRegistration]:
        payload = self.get("eventregistrations", params={"eventId": event_id})
        return _extract_items(payload, "EventRegistrations")

    def fetch_membership_levels(self) -> List[WAMembershipLevel]:
        payload = self.get("membershiplevels")
        return _extract_items(payload, "MembershipLevels")

    def health_check(self) -> dict[str, Any]:
        """Report API reachability without raising."""
        try:
            self.fetch_membership_levels()
        except Exception as exc:
            self.logger.warning("Wild Apricot health check failed", extra={"wa_error": str(exc)})
            return {"ok": False, "account_id": self.config.account_id, "error": str(exc)}
        return {"ok": True, "account_id": self.account_id, "error": None}

    # Internal helpers -----------------------------------------------------------

    def _resolve(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self.account_url}/{endpoint.lstrip('/')}"

    def _backoff_delay(self, attempt: int) -> float:
        base = self.config.retry_base_delay
        delay = base * (2**attempt) + self.jitter() * base
        return min(self.config.retry_max_delay, delay)

    @staticmethod
    def _retry_after(response) -> float | None:
        raw = (response.headers or {}).get("Retry-After")
        if raw is None:
            return None
        try:
            return max(0.0, float(raw))
        except (TypeError, ValueError):
            return None

    def _decode(self, response, url: str) -> Any:
        if response.status_code == 204:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(
                "API returned a non-JSON response",
                status_code=response.status_code,
                body=response.text,
                url=url,
            ) from exc

    def _log_retry(
        self,
        reason: str,
        url: str,
        attempt: int,
        delay: float,
        *,
        status: int | None = None,
        error: str | None = None,
    ) -> None:
        record_wildapricot_retry(reason)  # type: ignore[arg-type]
        self.logger.warning(
            "Retrying Wild Apricot request",
            extra={
                "wa_url": url,
                "wa_retry_reason": reason,
                "wa_attempt": attempt + 1,
                "wa_delay_seconds": round(delay, 3),
                "status_code": status,
                "wa_error": error,
            },
        )


def create_wildapricot_client(
    config: WildApricotConfig | None = None,
    *,
    session: requests.Session | None = None,
    env: Mapping[str, str] | None = None,
) -> WildApricotClient:
    """Build a client from explicit configuration or the ``WA_*`` environment."""

    config = config or WildApricotConfig.from_env(env)
    return WildApricotClient(config, session=session)
