"""
License Remover — removes one SKU per input row, sequentially.

Retry policy per row:
  - 429/503/504 are throttling: wait (doubling, capped, Retry-After honoured)
    and try again until max_attempts is reached
  - 409 on the first attempt means there is nothing to remove (success)
  - 400 saying the user does not hold the license is also a success
  - anything else fails the row; with stop_on_error it also ends the run

An interrupt ends the run early. The row in flight is recorded as Failed
("interrupted") because its removal may already have been applied.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Callable, Optional

import httpx

from ..config import RetryConfig
from ..graph.client import GraphAPIError, GraphClient, SleepFunc
from .models import (
    OUTCOME_FAILED,
    OUTCOME_NOT_ASSIGNED,
    OUTCOME_REMOVED,
    OUTCOME_WHAT_IF,
    RemovalRequest,
    RemovalResult,
    RemovalSummary,
    SubscribedSku,
)
from .skus import LicenseResolutionError, SkuCatalog

logger = logging.getLogger("m365_license_tools.licensing.remover")

NOT_HELD_PATTERN = re.compile(
    r"does not have (a |the )?(corresponding )?licen[cs]e|licen[cs]e .*not (assigned|found on user)",
    re.IGNORECASE,
)


class LicenseRemover:
    """Runs removal requests one at a time and collects the results."""

    def __init__(
        self,
        graph: GraphClient,
        catalog: SkuCatalog,
        retry: Optional[RetryConfig] = None,
        what_if: bool = False,
        stop_on_error: bool = False,
        sleep: Optional[SleepFunc] = None,
        on_result: Optional[Callable[[RemovalResult], None]] = None,
    ):
        self.graph = graph
        self.catalog = catalog
        self.retry = retry or RetryConfig()
        self.what_if = what_if
        self.stop_on_error = stop_on_error
        self._sleep = sleep or graph.sleep
        self._on_result = on_result
        self._resolved: dict[str, SubscribedSku] = {}
        self._unresolved: dict[str, str] = {}
        self._attempts_in_flight = 0
        self.throttle_events = 0

    def _resolve(self, request: RemovalRequest) -> Optional[str]:
        """Fill in sku_id/sku_part_number. Returns an error message on failure."""
        key = request.license.strip().lower()
        if not key:
            return "missing license identifier"
        if key in self._unresolved:
            return self._unresolved[key]
        if key not in self._resolved:
            try:
                self._resolved[key] = self.catalog.resolve(request.license)
            except LicenseResolutionError as e:
                self._unresolved[key] = str(e)
                return str(e)
        sku = self._resolved[key]
        request.sku_id = sku.sku_id
        request.sku_part_number = sku.sku_part_number
        return None

    def _result(self, request: RemovalRequest, outcome: str, attempts: int, **kwargs) -> RemovalResult:
        return RemovalResult(
            user_principal_name=request.user_principal_name,
            sku_id=request.sku_id,
            sku_part_number=request.sku_part_number,
            outcome=outcome,
            attempts=attempts,
            **kwargs,
        )

    async def remove_one(self, request: RemovalRequest) -> RemovalResult:
        """Remove the request's SKU from its user, retrying only on throttling."""
        user = request.user_principal_name
        max_attempts = self.retry.max_attempts
        attempt = 0

        while True:
            attempt += 1
            self._attempts_in_flight = attempt
            try:
                await self.graph.remove_license(user, request.sku_id)
                return self._result(request, OUTCOME_REMOVED, attempt, status_code=200)

            except GraphAPIError as e:
                if e.is_throttled:
                    self.throttle_events += 1
                    if attempt >= max_attempts:
                        return self._result(
                            request, OUTCOME_FAILED, attempt,
                            status_code=e.status_code,
                            message="throttled: retries exhausted",
                        )
                    wait_time = self.retry.delay_for(attempt)
                    if e.retry_after is not None:
                        wait_time = min(max(e.retry_after, wait_time), self.retry.max_delay)
                    logger.warning(
                        f"Throttled ({e.status_code}) removing {request.sku_id} from {user}. "
                        f"Retry {attempt}/{max_attempts - 1} in {wait_time:.1f}s"
                    )
                    await self._sleep(wait_time)
                    continue

                if e.status_code == 409 and attempt == 1:
                    return self._result(
                        request, OUTCOME_NOT_ASSIGNED, attempt,
                        status_code=e.status_code, message=e.message,
                    )
                if e.status_code == 400 and NOT_HELD_PATTERN.search(e.message):
                    return self._result(
                        request, OUTCOME_NOT_ASSIGNED, attempt,
                        status_code=e.status_code, message=e.message,
                    )
                if e.status_code == 404:
                    message = f"user not found: {e.message}"
                else:
                    message = f"{e.code}: {e.message}" if e.code else e.message
                return self._result(
                    request, OUTCOME_FAILED, attempt,
                    status_code=e.status_code, message=message,
                )

            except httpx.HTTPError as e:
                return self._result(
                    request, OUTCOME_FAILED, attempt,
                    message=f"{type(e).__name__}: {e}",
                )

    async def process(self, request: RemovalRequest) -> RemovalResult:
        self._attempts_in_flight = 0
        error = self._resolve(request)
        if error:
            return self._result(request, OUTCOME_FAILED, 0, message=error)
        if self.what_if:
            return self._result(
                request, OUTCOME_WHAT_IF, 0,
                message=f"would remove {request.sku_part_number or request.sku_id}",
            )
        return await self.remove_one(request)

    async def run(self, requests: list[RemovalRequest]) -> RemovalSummary:
        summary = RemovalSummary(what_if=self.what_if)
        total = len(requests)
        pending: Optional[RemovalRequest] = None

        try:
            for index, request in enumerate(requests, start=1):
                pending = request
                result = await self.process(request)
                summary.results.append(result)
                pending = None

                if result.succeeded:
                    logger.info(
                        f"[{index}/{total}] {result.outcome}: {result.user_principal_name} "
                        f"{result.sku_part_number or result.sku_id} ({result.attempts} attempt(s))"
                    )
                else:
                    logger.error(
                        f"[{index}/{total}] Failed: {result.user_principal_name} "
                        f"(row {request.row_number}) — {result.message}"
                    )
                if self._on_result:
                    self._on_result(result)

                if not result.succeeded and self.stop_on_error:
                    summary.aborted = True
                    logger.error(
                        f"Stopping after row {request.row_number}; "
                        f"{total - index} row(s) not attempted"
                    )
                    break
        except (KeyboardInterrupt, asyncio.CancelledError):
            summary.interrupted = True
            if pending is not None:
                # The POST may or may not have reached Graph
                summary.results.append(self._result(
                    pending, OUTCOME_FAILED, self._attempts_in_flight, message="interrupted",
                ))
            logger.warning(f"Interrupted after {len(summary.results)}/{total} row(s)")

        summary.throttle_events = self.throttle_events
        return summary
