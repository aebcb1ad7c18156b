"""Record store API client (SmartSuite-compatible).

Wraps the four record operations the evidence pipeline needs (get, list,
create, update) plus a single-field lookup. The store cannot filter on
linked-record fields, so callers list broadly and filter locally; see
``EvidenceRepository``.

Status mapping:
- 404 -> NotFoundError (``get_record`` returns None instead)
- 409 -> ConflictError
- 429 -> RateLimitedError, with Retry-After when the store sends one
- 5xx, timeouts, connection errors -> TransientSyncError
- 400/422 -> FatalSyncError("validation_rejected")
- 401/403 -> FatalSyncError("auth_rejected")

Reads are retried here with tenacity. Writes are not: the sync engine owns
the retry policy for uploads.
"""

from __future__ import annotations

import time
from typing import Any

import httpx
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt

from workproof.core.config import RecordStoreConfig
from workproof.core.errors import (
    ConflictError,
    FatalSyncError,
    IncompleteListingError,
    NotFoundError,
    RateLimitedError,
    TransientSyncError,
)
from workproof.core.metrics import (
    workproof_dependency_failures_total,
    workproof_record_store_latency_seconds,
    workproof_record_store_requests_total,
)
from workproof.core.tracing import get_tracing_headers

logger = structlog.get_logger(__name__)


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def _error_body(response: httpx.Response) -> str:
    try:
        return response.text[:500]
    except (UnicodeDecodeError, httpx.ResponseNotRead):
        return ""


def raise_for_store_status(response: httpx.Response) -> None:
    """Translate a record store HTTP status into the sync error taxonomy."""
    status = response.status_code
    if status < 400:
        return

    details = {"status_code": status, "body": _error_body(response)}
    if status == 404:
        raise NotFoundError("Record not found", details=details)
    if status == 409:
        raise ConflictError("Record store reported a conflict", details=details)
    if status == 429:
        raise RateLimitedError(
            "Record store rate limit reached",
            retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            details=details,
        )
    if status >= 500:
        raise TransientSyncError(f"Record store error {status}", details=details)
    if status in (401, 403):
        raise FatalSyncError("Record store rejected credentials", "auth_rejected", details)
    if status in (400, 422):
        raise FatalSyncError("Record store rejected the record", "validation_rejected", details)
    raise FatalSyncError(f"Record store returned {status}", f"http_{status}", details)


class RecordStoreClient:
    """Async HTTP client for the record store."""

    def __init__(
        self,
        config: RecordStoreConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = config.base_url.rstrip("/")
        self._api_key = config.api_key.get_secret_value()
        self._workspace_id = config.workspace_id
        self._timeout = config.timeout_seconds
        self._read_attempts = config.read_retry_attempts
        self._read_backoff = config.read_backoff_seconds
        self._rate_limit_backoff = config.rate_limit_backoff_seconds
        self._max_read_backoff = config.max_read_backoff_seconds
        self._page_size = config.page_size
        self._max_pages = config.max_pages
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _build_headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {
            "Authorization": f"Token {self._api_key}",
            "Account-Id": self._workspace_id,
            "Content-Type": "application/json",
            **get_tracing_headers(),
        }
        if extra:
            headers.update(extra)
        return headers

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_record(self, table: str, record_id: str) -> dict[str, Any] | None:
        """GET /applications/{table}/records/{id}/ -- None when the record is gone."""
        try:
            data = await self._request("GET", f"/applications/{table}/records/{record_id}/")
        except NotFoundError:
            return None
        return data if isinstance(data, dict) else None

    async def list_records(
        self,
        table: str,
        *,
        filter: dict[str, Any] | None = None,
        sort: list[dict[str, str]] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """POST /applications/{table}/records/list/ with bounded auto-pagination.

        Raises IncompleteListingError when ``max_pages`` pages are not enough to
        reach the end of an unbounded listing.
        """
        page_size = min(limit, self._page_size) if limit else self._page_size
        items: list[dict[str, Any]] = []
        offset = 0

        for _page in range(self._max_pages):
            body: dict[str, Any] = {"limit": page_size, "offset": offset}
            if filter:
                body["filter"] = filter
            if sort:
                body["sort"] = sort

            data = await self._request(
                "POST", f"/applications/{table}/records/list/", json=body
            )
            if not isinstance(data, dict):
                return items
            page = data.get("items") or []
            items.extend(page)
            total = data.get("total")

            if limit and len(items) >= limit:
                return items[:limit]
            if len(page) < page_size or (total is not None and len(items) >= total):
                return items
            offset += len(page)

        workproof_dependency_failures_total.labels(dependency="record_store").inc()
        logger.error(
            "Record store listing hit the page limit",
            table=table,
            fetched=len(items),
            max_pages=self._max_pages,
        )
        raise IncompleteListingError(
            "Record store listing exceeded the page limit",
            details={"table": table, "fetched": len(items), "max_pages": self._max_pages},
        )

    async def find_by_field(self, table: str, field: str, value: Any) -> dict[str, Any] | None:
        """First record whose scalar ``field`` equals ``value``."""
        records = await self.list_records(
            table,
            filter={
                "operator": "and",
                "fields": [{"field": field, "comparison": "is", "value": value}],
            },
            limit=1,
        )
        return records[0] if records else None

    async def create_record(
        self,
        table: str,
        fields: dict[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        """POST /applications/{table}/records/"""
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        data = await self._request(
            "POST",
            f"/applications/{table}/records/",
            json=fields,
            headers=headers,
            retry=False,
        )
        return data if isinstance(data, dict) else {}

    async def update_record(
        self, table: str, record_id: str, fields: dict[str, Any]
    ) -> dict[str, Any]:
        """PATCH /applications/{table}/records/{id}/"""
        data = await self._request(
            "PATCH",
            f"/applications/{table}/records/{record_id}/",
            json=fields,
            retry=False,
        )
        return data if isinstance(data, dict) else {}

    async def health_check(self) -> bool:
        """True if the record store answers an authenticated request."""
        try:
            await self._request("GET", "/applications/", retry=False)
            return True
        except Exception:
            return False

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _wait_for_store(self, retry_state: RetryCallState) -> float:
        """Exponential wait between read retries; rate limits start from a larger base."""
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        attempt = retry_state.attempt_number
        if isinstance(exc, RateLimitedError):
            delay = self._rate_limit_backoff * 2 ** (attempt - 1)
            if exc.retry_after is not None:
                delay = max(delay, exc.retry_after)
        else:
            delay = self._read_backoff * 2 ** (attempt - 1)
        return min(delay, self._max_read_backoff)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        retry: bool = True,
    ) -> Any:
        attempts = self._read_attempts if retry else 1
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=self._wait_for_store,
            retry=retry_if_exception_type(TransientSyncError),
            reraise=True,
        ):
            with attempt:
                return await self._send(method, path, json=json, headers=headers)

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None,
        headers: dict[str, str] | None,
    ) -> Any:
        client = await self._get_client()
        url = f"{self._base_url}{path}"
        started = time.perf_counter()

        try:
            response = await client.request(
                method, url, json=json, headers=self._build_headers(headers)
            )
        except httpx.TimeoutException as exc:
            workproof_dependency_failures_total.labels(dependency="record_store").inc()
            logger.warning("Record store request timed out", method=method, path=path)
            raise TransientSyncError("Record store request timed out") from exc
        except httpx.TransportError as exc:
            workproof_dependency_failures_total.labels(dependency="record_store").inc()
            logger.warning(
                "Record store unreachable", method=method, path=path, error=str(exc)
            )
            raise TransientSyncError("Record store unreachable") from exc

        elapsed = time.perf_counter() - started
        workproof_record_store_latency_seconds.labels(method=method).observe(elapsed)
        workproof_record_store_requests_total.labels(
            method=method, status_code=str(response.status_code)
        ).inc()

        if response.status_code >= 400:
            if response.status_code >= 500 or response.status_code == 429:
                workproof_dependency_failures_total.labels(dependency="record_store").inc()
            logger.warning(
                "Record store request failed",
                method=method,
                path=path,
                status_code=response.status_code,
                elapsed_ms=round(elapsed * 1000, 1),
            )
            raise_for_store_status(response)

        logger.debug(
            "Record store request succeeded",
            method=method,
            path=path,
            status_code=response.status_code,
            elapsed_ms=round(elapsed * 1000, 1),
        )
        if not response.content:
            return {}
        return response.json()
