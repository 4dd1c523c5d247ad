from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Iterable

from ipintel.config import Settings, settings as default_settings
from ipintel.core.cancellation import CancellationToken
from ipintel.core.errors import IpValidationError
from ipintel.core.ip_validation import validate_and_normalize_ip
from ipintel.correlation.engine import CorrelationEngine
from ipintel.health.tracker import HealthTracker
from ipintel.providers.registry import ProviderRegistry, build_registry
from ipintel.schema import (
    BulkLookupResponse,
    BulkLookupResult,
    BulkLookupSummary,
    CorrelatedRecord,
    PartialResult,
    ProviderHealth,
)
from .events import LookupProgress
from .orchestrator import Orchestrator

logger = logging.getLogger(__name__)


class IpLookupService:
    """
    Validate -> orchestrate -> correlate.

    Concurrent lookups of the same address (and provider selection) share
    one in-flight run. Persistence is left to the caller.
    """

    def __init__(
        self,
        registry: ProviderRegistry | None = None,
        health: HealthTracker | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self.registry = registry if registry is not None else build_registry(self.settings)
        self.health = health if health is not None else HealthTracker.from_settings(self.settings)
        self.orchestrator = Orchestrator(
            self.registry,
            self.health,
            global_timeout=self.settings.lookup_global_timeout,
            provider_timeout=self.settings.provider_timeout,
        )
        self.correlation = CorrelationEngine(
            self.registry.trust_rank, default_trust_rank=self.settings.default_trust_rank
        )
        self.cache_ttl_seconds = self.settings.cache_ttl_seconds
        self._pending: dict[tuple, asyncio.Task] = {}

    async def lookup(
        self,
        ip: str,
        providers: Iterable[str] | None = None,
    ) -> CorrelatedRecord:
        """Raises IpValidationError for bad input; provider failures only show up in metadata."""
        normalized = validate_and_normalize_ip(ip)
        selection = tuple(sorted(set(providers))) if providers is not None else None
        key = (normalized, selection)

        pending = self._pending.get(key)
        if pending is not None:
            logger.debug("Coalescing lookup of %s with in-flight run", normalized)
            return await asyncio.shield(pending)

        task = asyncio.create_task(self._execute(normalized, selection), name=f"lookup-{normalized}")
        self._pending[key] = task
        task.add_done_callback(lambda t: self._release(key, t))
        return await asyncio.shield(task)

    def _release(self, key: tuple, task: asyncio.Task) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]

    async def _execute(self, ip: str, providers: Iterable[str] | None) -> CorrelatedRecord:
        outcomes = await self.orchestrator.run(ip, providers)
        return self._correlate(ip, outcomes)

    def _correlate(self, ip: str, outcomes: list[PartialResult]) -> CorrelatedRecord:
        record = self.correlation.correlate(ip, outcomes, "live", self.cache_ttl_seconds)
        meta = record.metadata
        logger.info(
            "Live lookup completed for %s: %d/%d providers succeeded, %d conflict(s)",
            ip, meta.providers_succeeded, meta.providers_queried, len(meta.conflicts),
        )
        return record

    async def stream(
        self,
        ip: str,
        providers: Iterable[str] | None = None,
        cancel: CancellationToken | None = None,
    ) -> AsyncIterator[LookupProgress | CorrelatedRecord]:
        """
        Yield a LookupProgress per finished provider, then the CorrelatedRecord.
        Closing the generator early cancels the providers still running.
        """
        normalized = validate_and_normalize_ip(ip)
        run = self.orchestrator.start(normalized, providers, cancel)
        try:
            async for notice in run:
                yield LookupProgress(
                    ip=normalized,
                    provider=notice.provider,
                    success=notice.success,
                    completed=notice.completed,
                    total=notice.total,
                )
            outcomes = await run.wait()
            yield self._correlate(normalized, outcomes)
        finally:
            if not run.done:
                run.cancel()

    async def bulk_lookup(
        self,
        ips: Iterable[str],
        concurrency: int | None = None,
    ) -> BulkLookupResponse:
        started = time.monotonic()
        semaphore = asyncio.Semaphore(concurrency or self.settings.bulk_concurrency)

        async def _one(ip: str) -> BulkLookupResult:
            async with semaphore:
                try:
                    record = await self.lookup(ip)
                except IpValidationError as exc:
                    return BulkLookupResult(ip=ip, success=False, error=exc.message)
                return BulkLookupResult(ip=ip, success=True, data=record)

        results = await asyncio.gather(*(_one(ip) for ip in ips))
        successful = sum(1 for r in results if r.success)
        return BulkLookupResponse(
            results=list(results),
            summary=BulkLookupSummary(
                total=len(results),
                successful=successful,
                failed=len(results) - successful,
                processing_time_ms=int((time.monotonic() - started) * 1000),
            ),
        )

    def providers_health(self) -> list[ProviderHealth]:
        return self.orchestrator.providers_health()
