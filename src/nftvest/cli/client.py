"""
HTTP client for the vesting API.

The engine never retries; this client is where transient failures are
retried. Only connection errors, timeouts, HTTP 429 and HTTP 5xx are
retried. Engine rejections (4xx) are returned to the caller at once.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests

from nftvest.core import config

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


class VestingAPIError(Exception):
    """Error response from the vesting API."""

    def __init__(self, message: str, status: int = 0, code: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code

    @property
    def retryable(self) -> bool:
        return self.status in RETRYABLE_STATUS


class RetryPolicy:
    """
    Retry logic with exponential backoff and jitter.

    Delay for attempt n (0-based) is base_delay * exponential_base**n, capped
    at max_delay, then scaled by a random factor in [0.5, 1.5) when jitter is
    enabled.
    """

    def __init__(
        self,
        max_retries: int = config.CLIENT_MAX_RETRIES,
        base_delay: float = config.CLIENT_BACKOFF,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.exponential_base**attempt), self.max_delay)
        if self.jitter:
            delay *= 0.5 + (secrets.randbelow(1000) / 1000.0)
        return delay

    @staticmethod
    def is_retryable(exc: Exception) -> bool:
        if isinstance(exc, VestingAPIError):
            return exc.retryable
        return isinstance(exc, (requests.ConnectionError, requests.Timeout))

    def execute(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """
        Call func, retrying transient failures.

        Raises:
            The last exception once retries are exhausted, or the first
            non-retryable one
        """
        for attempt in range(self.max_retries + 1):
            try:
                result = func(*args, **kwargs)
                if attempt > 0:
                    logger.info("Request succeeded on attempt %d", attempt + 1)
                return result
            except (requests.RequestException, VestingAPIError) as exc:
                if not self.is_retryable(exc) or attempt >= self.max_retries:
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "Attempt %d failed: %s",
                    attempt + 1,
                    exc,
                    extra={"event": "client.retry", "error_type": type(exc).__name__, "delay": delay},
                )
                self._sleep(delay)


class VestingClient:
    """Client for vesting API operations."""

    def __init__(
        self,
        node_url: str = config.CLIENT_NODE_URL,
        timeout: float = config.CLIENT_TIMEOUT,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self.node_url = node_url.rstrip("/")
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()

    def _send(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        response = requests.request(method, url, timeout=self.timeout, **kwargs)
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400:
            raise VestingAPIError(
                body.get("error") or f"HTTP {response.status_code}",
                status=response.status_code,
                code=body.get("code", ""),
            )
        return body

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> Dict[str, Any]:
        """Make HTTP request to the vesting API."""
        url = f"{self.node_url}/{endpoint.lstrip('/')}"
        logger.debug("Vesting request: %s %s", method, url)
        return self.retry_policy.execute(self._send, method, url, **kwargs)

    def create_linear_plan(
        self,
        issuer: str,
        beneficiary: str,
        source_collection: str,
        template_id: int,
        token_ids: Iterable[int],
        permits: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        payload = {
            "issuer": issuer,
            "beneficiary": beneficiary,
            "sourceCollection": source_collection,
            "templateId": template_id,
            "tokenIds": list(token_ids),
            "permits": permits or [],
        }
        return self._request("POST", "/vesting/plans/linear", json=payload)

    def create_tranche_plan(
        self,
        issuer: str,
        beneficiary: str,
        source_collection: str,
        token_ids: Iterable[int],
        tranches: Iterable[Dict[str, int]],
        permits: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        payload = {
            "issuer": issuer,
            "beneficiary": beneficiary,
            "sourceCollection": source_collection,
            "tokenIds": list(token_ids),
            "trancheSchedule": list(tranches),
            "permits": permits or [],
        }
        return self._request("POST", "/vesting/plans/tranche", json=payload)

    def claim(
        self,
        plan_id: int,
        caller: str,
        to: Optional[str] = None,
        token_ids: Optional[Iterable[int]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"caller": caller}
        if to:
            payload["to"] = to
        if token_ids is not None:
            payload["tokenIds"] = list(token_ids)
        return self._request("POST", f"/vesting/plans/{plan_id}/claim", json=payload)

    def revoke(self, plan_id: int, caller: str) -> Dict[str, Any]:
        return self._request("POST", f"/vesting/plans/{plan_id}/revoke", json={"caller": caller})

    def get_plan(self, plan_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/vesting/plans/{plan_id}")

    def claimable_count(self, plan_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/vesting/plans/{plan_id}/claimable")

    def unlocked_count(self, plan_id: int, timestamp: Optional[int] = None) -> Dict[str, Any]:
        params = {"timestamp": timestamp} if timestamp is not None else None
        return self._request("GET", f"/vesting/plans/{plan_id}/unlocked", params=params)

    def metadata_uri(self, plan_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/vesting/plans/{plan_id}/metadata")

    def positions(self, owner: str) -> Dict[str, Any]:
        return self._request("GET", f"/vesting/positions/{owner}")

    def position_by_index(self, owner: str, index: int) -> Dict[str, Any]:
        return self._request("GET", f"/vesting/positions/{owner}/{index}")

    def templates(self) -> Dict[str, Any]:
        return self._request("GET", "/vesting/templates")
