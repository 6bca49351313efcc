"""
Async Graph API client with pagination, throttling, retry, and safety enforcement.
Requests are issued one at a time; callers await each call before the next.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncGenerator, Awaitable, Callable, Optional
from urllib.parse import quote

import httpx

from ..config import (
    GRAPH_BASE_URL,
    GRAPH_API_VERSION,
    DEFAULT_PAGE_SIZE,
    MAX_PAGES_PER_ENDPOINT,
    THROTTLE_STATUS_CODES,
    RetryConfig,
)
from ..safety.guardian import SafetyGuardian, SafetyViolation

logger = logging.getLogger("m365_license_tools.graph")

SleepFunc = Callable[[float], Awaitable[Any]]


class GraphAPIError(Exception):
    """Raised when Graph API returns a non-recoverable error."""
    def __init__(
        self,
        status_code: int,
        message: str,
        url: str,
        code: str = "",
        retry_after: Optional[float] = None,
    ):
        self.status_code = status_code
        self.message = message
        self.url = url
        self.code = code
        self.retry_after = retry_after
        super().__init__(f"Graph API Error {status_code} for {url}: {message}")

    @property
    def is_throttled(self) -> bool:
        return self.status_code in THROTTLE_STATUS_CODES


def _parse_retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def _error_from_response(response: httpx.Response, url: str) -> GraphAPIError:
    """Build a GraphAPIError from a Graph error payload."""
    code = ""
    message = ""
    try:
        error_body = response.json() if response.content else {}
        error = error_body.get("error", {}) if isinstance(error_body, dict) else {}
        code = error.get("code", "") or ""
        message = error.get("message", "") or ""
    except ValueError:
        pass
    if not message:
        message = response.text[:200] or response.reason_phrase
    return GraphAPIError(
        response.status_code,
        message,
        url,
        code=code,
        retry_after=_parse_retry_after(response),
    )


class GraphClient:
    """
    Async Microsoft Graph API client.
    Features:
      - Safety-validated requests (mode enforced by SafetyGuardian)
      - Automatic pagination with @odata.nextLink
      - Exponential backoff on 429/503/504 for reads
      - Single-attempt writes so callers own the retry decision
    """

    def __init__(
        self,
        access_token: str,
        guardian: SafetyGuardian,
        retry: Optional[RetryConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.access_token = access_token
        self.guardian = guardian
        self.retry = retry or RetryConfig()
        self._transport = transport
        self.sleep = sleep
        self._request_count = 0
        self._throttle_count = 0
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(60.0, connect=30.0),
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
                "ConsistencyLevel": "eventual",
            },
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    def _build_url(self, endpoint: str) -> str:
        """Build full Graph URL from relative endpoint."""
        if endpoint.startswith("http"):
            return endpoint
        endpoint = endpoint.lstrip("/")
        return f"{GRAPH_BASE_URL}/{GRAPH_API_VERSION}/{endpoint}"

    async def get(self, endpoint: str, params: Optional[dict] = None) -> dict:
        """Execute a single GET request with retry/throttle handling."""
        url = self._build_url(endpoint)
        self.guardian.validate_request("GET", url)
        return await self._execute_with_retry("GET", url, params=params)

    async def get_all_pages(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        top: Optional[int] = None,
    ) -> list[dict]:
        """Fetch all pages of a paginated endpoint into a list."""
        items = []
        async for item in self.get_all_pages_stream(endpoint, params, top):
            items.append(item)
        return items

    async def get_all_pages_stream(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        top: Optional[int] = None,
    ) -> AsyncGenerator[dict, None]:
        """
        Stream all pages of a paginated endpoint as an async generator.
        Yields one item at a time.
        """
        params = dict(params or {})
        if "$top" not in params:
            params["$top"] = str(min(top or DEFAULT_PAGE_SIZE, DEFAULT_PAGE_SIZE))

        url: Optional[str] = self._build_url(endpoint)
        pages = 0

        while url and pages < MAX_PAGES_PER_ENDPOINT:
            self.guardian.validate_request("GET", url)
            data = await self._execute_with_retry("GET", url, params=params)

            for item in data.get("value", []):
                yield item

            # nextLink already carries the query string
            url = data.get("@odata.nextLink")
            params = None
            pages += 1

        if pages >= MAX_PAGES_PER_ENDPOINT:
            logger.warning(
                f"Pagination safety cap reached ({MAX_PAGES_PER_ENDPOINT} pages) "
                f"for endpoint: {endpoint}"
            )

    async def post(self, endpoint: str, json_body: dict) -> dict:
        """
        Execute a single POST with no retry. Raises GraphAPIError on any
        non-success status so the caller can classify it.
        """
        url = self._build_url(endpoint)
        self.guardian.validate_request("POST", url, json_body)

        response = await self._execute_raw("POST", url, json_body=json_body)
        self._request_count += 1
        if response.status_code in THROTTLE_STATUS_CODES:
            self._throttle_count += 1
        if response.status_code in (200, 201, 202, 204):
            if not response.content or not response.content.strip():
                return {}
            try:
                return response.json()
            except ValueError:
                return {}
        raise _error_from_response(response, url)

    # ── Licensing endpoints ────────────────────────────────────────────────

    async def list_subscribed_skus(self) -> list[dict]:
        """GET /subscribedSkus — the tenant's purchased SKUs."""
        data = await self.get("subscribedSkus")
        return data.get("value", [])

    def list_users_with_licenses(self, select: str) -> AsyncGenerator[dict, None]:
        """Stream every user with the requested properties."""
        return self.get_all_pages_stream("users", params={"$select": select})

    async def remove_license(self, user: str, sku_id: str) -> dict:
        """POST /users/{user}/assignLicense removing a single SKU."""
        body = {"addLicenses": [], "removeLicenses": [sku_id]}
        return await self.post(f"users/{quote(user, safe='@')}/assignLicense", body)

    # ── Transport ──────────────────────────────────────────────────────────

    async def _execute_with_retry(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> dict:
        """Execute request with exponential backoff on throttling."""
        max_attempts = self.retry.max_attempts

        for attempt in range(1, max_attempts + 1):
            try:
                response = await self._execute_raw(
                    method, url, params=params, json_body=json_body
                )
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                logger.warning(
                    f"{type(e).__name__} on {url}, attempt {attempt}/{max_attempts}"
                )
                if attempt == max_attempts:
                    raise
                await self.sleep(self.retry.delay_for(attempt))
                continue

            self._request_count += 1

            if response.status_code == 200:
                if not response.content or not response.content.strip():
                    return {"value": []}
                try:
                    return response.json()
                except ValueError:
                    logger.debug(f"200 response with non-JSON body from {url}")
                    return {"value": []}

            if response.status_code == 204:
                return {}

            if response.status_code in THROTTLE_STATUS_CODES:
                self._throttle_count += 1
                if attempt == max_attempts:
                    break
                wait_time = self.retry.delay_for(attempt)
                retry_after = _parse_retry_after(response)
                if retry_after is not None:
                    wait_time = min(max(retry_after, wait_time), self.retry.max_delay)
                logger.warning(
                    f"Throttled ({response.status_code}) on {url}. "
                    f"Retry {attempt}/{max_attempts - 1} in {wait_time:.1f}s"
                )
                await self.sleep(wait_time)
                continue

            raise _error_from_response(response, url)

        raise GraphAPIError(
            response.status_code, "throttled: retries exhausted", url
        )

    async def _execute_raw(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> httpx.Response:
        """Execute raw HTTP request."""
        if not self._client:
            raise RuntimeError("GraphClient not initialized. Use 'async with' context.")

        if method == "GET":
            return await self._client.get(url, params=params)
        elif method == "POST":
            return await self._client.post(url, json=json_body, params=params)
        else:
            raise SafetyViolation(f"Unsupported method at raw level: {method}")

    def get_stats(self) -> dict:
        """Return client statistics."""
        return {
            "total_requests": self._request_count,
            "throttle_events": self._throttle_count,
        }
