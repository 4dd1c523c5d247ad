from __future__ import annotations

import abc
import asyncio
import logging
import re
from typing import Any

import httpx

from ipintel.core.cancellation import CancellationToken
from ipintel.core.errors import (
    OperationCancelled,
    ProviderAuthError,
    ProviderError,
    ProviderRateLimited,
    ProviderResponseError,
    ProviderTimeout,
)
from ipintel.schema import PartialResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 3.0
MAX_RETRY_DELAY = 10.0

_ASN_RE = re.compile(r"^(?:AS)?\s*(\d+)", re.IGNORECASE)


def normalize_asn(value: Any) -> str | None:
    """Turn 15169, "15169", "as15169" or "AS15169 Google LLC" into "AS15169"."""
    if value is None or value == "":
        return None
    match = _ASN_RE.match(str(value).strip())
    if not match:
        return None
    return f"AS{int(match.group(1))}"


class ProviderAdapter(abc.ABC):
    """Minimal interface every intelligence source must implement."""

    provider_id: str = ""

    @abc.abstractmethod
    async def lookup(self, ip: str, cancel: CancellationToken) -> PartialResult:
        """
        Return this provider's partial answer for `ip`.
        Raise ProviderError for failures; "not found" is a successful empty result.
        """
        ...  # pragma: no cover


class ProviderHttpClient(ProviderAdapter):
    """
    Base HTTP client for vendor adapters.
    Subclasses implement lookup() with provider-specific parsing.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        retries: int = 0,
        retry_delay: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.retries = retries
        self.retry_delay = retry_delay
        self._transport = transport

    async def get(
        self,
        path: str,
        cancel: CancellationToken,
        params: dict | None = None,
        headers: dict | None = None,
        allow_404: bool = False,
    ) -> dict | None:
        url = f"{self.base_url}/{path.lstrip('/')}" if path else self.base_url
        attempt = 0
        while True:
            try:
                return await cancel.guard(self._request(url, params, headers, allow_404))
            except OperationCancelled as exc:
                raise ProviderTimeout(exc.reason) from exc
            except (ProviderAuthError, ProviderRateLimited, ProviderResponseError):
                raise
            except ProviderError as exc:
                if attempt >= self.retries or cancel.cancelled:
                    raise
                delay = min(self.retry_delay * (2 ** attempt), MAX_RETRY_DELAY)
                remaining = cancel.remaining()
                if remaining is not None and delay >= remaining:
                    raise
                logger.debug(
                    "%s attempt %d failed (%s), retrying in %.2fs",
                    self.provider_id, attempt + 1, exc.reason, delay,
                )
                attempt += 1
                try:
                    await cancel.guard(asyncio.sleep(delay))
                except OperationCancelled as cancelled:
                    raise ProviderTimeout(cancelled.reason) from cancelled

    async def _request(
        self,
        url: str,
        params: dict | None,
        headers: dict | None,
        allow_404: bool,
    ) -> dict | None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(url, params=params, headers=headers or {})
        except httpx.TimeoutException as exc:
            raise ProviderTimeout() from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"transport error: {exc}") from exc

        if allow_404 and resp.status_code == 404:
            return None
        if resp.status_code in (401, 403):
            raise ProviderAuthError(f"HTTP {resp.status_code}: credentials rejected")
        if resp.status_code == 429:
            raise ProviderRateLimited("HTTP 429: rate limited")
        if resp.status_code >= 500:
            # retryable
            raise ProviderError(f"HTTP {resp.status_code}")
        if not resp.is_success:
            raise ProviderResponseError(f"HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderResponseError("malformed JSON response") from exc
        if not isinstance(data, dict):
            raise ProviderResponseError("unexpected response shape")
        return data

    def _result(self, **fields: Any) -> PartialResult:
        return PartialResult(provider=self.provider_id, success=True, **fields)
