"""Koios REST client.

This module provides the KoiosClient class that implements the
DelegationSource interface over the public Koios API. It includes:

- A lazily created ``httpx.AsyncClient`` with optional bearer authentication
- Retry with exponential backoff for transient failures (4xx is not retried)
- Request metrics for monitoring
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx

from delegation_sync.core.errors import SourceError
from delegation_sync.core.settings import settings
from delegation_sync.services.source import JsonRow

# Configure logger for this module
logger = logging.getLogger(__name__)

# HTTP status codes
HTTP_BAD_REQUEST = 400
HTTP_INTERNAL_SERVER_ERROR = 500


@dataclass
class KoiosMetrics:
    """Metrics collection for Koios requests."""

    request_count: int = 0
    success_count: int = 0
    error_count: int = 0
    retry_count: int = 0
    total_response_time: float = 0.0
    max_response_time: float = 0.0
    error_counts_by_type: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    endpoint_counts: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def record_request(
        self, endpoint: str, response_time: float, success: bool, error_type: str | None = None
    ) -> None:
        """Record a request metric."""
        self.request_count += 1
        self.total_response_time += response_time
        self.max_response_time = max(self.max_response_time, response_time)
        self.endpoint_counts[endpoint] += 1

        if success:
            self.success_count += 1
        else:
            self.error_count += 1
            if error_type:
                self.error_counts_by_type[error_type] += 1

    def get_average_response_time(self) -> float:
        """Get average response time."""
        return self.total_response_time / self.request_count if self.request_count > 0 else 0.0


@dataclass(frozen=True)
class KoiosConfig:
    """Immutable configuration for Koios access."""

    base_url: str
    api_key: str | None
    timeout_seconds: float
    max_retries: int
    retry_base_delay_seconds: float
    retry_max_delay_seconds: float


def load_koios_config() -> KoiosConfig:
    """Build configuration object from global settings."""

    return KoiosConfig(
        base_url=settings.koios_api_url.rstrip("/"),
        api_key=settings.koios_api_key,
        timeout_seconds=float(settings.koios_timeout_seconds),
        max_retries=max(0, settings.koios_max_retries),
        retry_base_delay_seconds=float(settings.koios_retry_base_delay_seconds),
        retry_max_delay_seconds=float(settings.koios_retry_max_delay_seconds),
    )


class KoiosClient:
    """HTTP client wrapper for the Koios API."""

    def __init__(
        self,
        config: KoiosConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or load_koios_config()
        self._transport = transport
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._metrics = KoiosMetrics()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                headers = {"Accept": "application/json"}
                if self.config.api_key:
                    api_key = self.config.api_key
                    headers["Authorization"] = (
                        api_key if api_key.startswith("Bearer ") else f"Bearer {api_key}"
                    )
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url,
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    headers=headers,
                    transport=self._transport,
                )

        return self._client

    def _retry_delay(self, attempt: int) -> float:
        return min(
            self.config.retry_base_delay_seconds * (2 ** attempt),
            self.config.retry_max_delay_seconds,
        )

    async def _request_once(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json_data: Any | None = None,
    ) -> Any:
        client = await self._ensure_client()
        endpoint = f"{method} {path}"
        start_time = time.time()
        success = False
        error_type = None

        try:
            response = await client.request(method, path, params=params, json=json_data)
            if response.status_code >= HTTP_BAD_REQUEST:
                error_type = f"http_{response.status_code}"
                raise SourceError(
                    f"Koios responded with {response.status_code} for {endpoint}",
                    status_code=response.status_code,
                )
            payload = response.json()
            success = True
            return payload
        except httpx.HTTPError as exc:
            error_type = "network_error"
            raise SourceError(f"Koios request {endpoint} failed: {exc}") from exc
        except ValueError as exc:
            error_type = "invalid_json"
            raise SourceError(f"Koios returned invalid JSON for {endpoint}") from exc
        finally:
            self._metrics.record_request(endpoint, time.time() - start_time, success, error_type)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json_data: Any | None = None,
    ) -> Any:
        """Send a request, retrying transient failures with exponential backoff."""
        attempt = 0
        while True:
            try:
                return await self._request_once(method, path, params=params, json_data=json_data)
            except SourceError as exc:
                status = exc.status_code
                if status is not None and HTTP_BAD_REQUEST <= status < HTTP_INTERNAL_SERVER_ERROR:
                    logger.error("Non-retryable Koios error (%s): %s", status, exc)
                    raise
                if attempt >= self.config.max_retries:
                    raise SourceError(
                        f"Koios request failed after {self.config.max_retries} retries: {exc}",
                        status_code=status,
                    ) from exc
                delay = self._retry_delay(attempt)
                attempt += 1
                self._metrics.retry_count += 1
                logger.warning(
                    "Retry attempt %d/%d for %s %s after %.1fs: %s",
                    attempt,
                    self.config.max_retries,
                    method,
                    path,
                    delay,
                    exc,
                )
                await self._sleep(delay)

    async def _get_rows(self, path: str, params: Mapping[str, Any] | None = None) -> list[JsonRow]:
        payload = await self._request("GET", path, params=params)
        return payload if isinstance(payload, list) else []

    async def _post_rows(
        self,
        path: str,
        body: Mapping[str, Any],
        params: Mapping[str, Any] | None = None,
    ) -> list[JsonRow]:
        payload = await self._request("POST", path, params=params, json_data=dict(body))
        return payload if isinstance(payload, list) else []

    async def get_tip(self) -> JsonRow:
        """Return the current chain tip."""
        rows = await self._get_rows("/tip")
        if not rows:
            raise SourceError("Koios /tip returned no rows")
        return rows[0]

    async def list_dreps(self, *, limit: int, offset: int) -> list[JsonRow]:
        return await self._get_rows("/drep_list", {"limit": limit, "offset": offset})

    async def get_drep_info(self, drep_ids: Sequence[str]) -> list[JsonRow]:
        if not drep_ids:
            return []
        return await self._post_rows("/drep_info", {"_drep_ids": list(drep_ids)})

    async def list_drep_delegators(
        self, drep_id: str, *, limit: int, offset: int
    ) -> list[JsonRow]:
        return await self._get_rows(
            "/drep_delegators",
            {"_drep_id": drep_id, "limit": limit, "offset": offset},
        )

    async def list_accounts(self, *, limit: int, offset: int) -> list[JsonRow]:
        return await self._get_rows("/account_list", {"limit": limit, "offset": offset})

    async def get_account_update_history(
        self, stake_addresses: Sequence[str], *, limit: int, offset: int
    ) -> list[JsonRow]:
        """Return one page of certificate history for a batch of accounts.

        Paging applies to the combined result set of the whole batch.
        """
        if not stake_addresses:
            return []
        return await self._post_rows(
            "/account_update_history",
            {"_stake_addresses": list(stake_addresses)},
            params={"offset": offset, "limit": limit},
        )

    async def get_tx_info(self, tx_hashes: Sequence[str]) -> list[JsonRow]:
        if not tx_hashes:
            return []
        return await self._post_rows(
            "/tx_info",
            {
                "_tx_hashes": list(tx_hashes),
                "_inputs": False,
                "_metadata": False,
                "_assets": False,
                "_withdrawals": False,
                "_certs": True,
                "_scripts": False,
                "_bytecode": False,
            },
        )

    def get_metrics(self) -> dict[str, Any]:
        """Get Koios request metrics.

        Returns:
            Dictionary containing performance and usage metrics
        """
        return {
            "request_count": self._metrics.request_count,
            "success_count": self._metrics.success_count,
            "error_count": self._metrics.error_count,
            "retry_count": self._metrics.retry_count,
            "average_response_time": self._metrics.get_average_response_time(),
            "max_response_time": self._metrics.max_response_time,
            "error_counts_by_type": dict(self._metrics.error_counts_by_type),
            "endpoint_counts": dict(self._metrics.endpoint_counts),
        }

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""

        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None


class _KoiosClientSingleton:
    """Singleton wrapper for KoiosClient."""

    _instance: KoiosClient | None = None

    @classmethod
    def get_instance(cls) -> KoiosClient:
        """Get or create the singleton KoiosClient instance."""
        if cls._instance is None:
            cls._instance = KoiosClient()
        return cls._instance


def get_koios_client() -> KoiosClient:
    """Return a singleton Koios client instance."""
    return _KoiosClientSingleton.get_instance()
