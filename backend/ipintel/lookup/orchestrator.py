from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Iterable

from ipintel.core.cancellation import CancellationToken
from ipintel.core.errors import OperationCancelled, ProviderError
from ipintel.health.tracker import HealthTracker
from ipintel.providers.registry import ProviderRegistry, RegisteredProvider
from ipintel.schema import PartialResult, ProviderHealth
from .events import CompletionNotice

logger = logging.getLogger(__name__)

DEFAULT_GLOBAL_TIMEOUT = 5.0


class LookupRun:
    """
    Handle for one in-flight lookup.

    Iterate it (single consumer) for CompletionNotice events in real
    completion order; await wait() for the full outcome set. Each provider
    runs in its own task bound to a child of the lookup token.
    """

    def __init__(
        self,
        ip: str,
        providers: list[RegisteredProvider],
        token: CancellationToken,
        health: HealthTracker | None = None,
        default_timeout: float | None = None,
    ) -> None:
        self.ip = ip
        self.token = token
        self.total = len(providers)
        self.completed = 0
        self._providers = providers
        self._health = health
        self._default_timeout = default_timeout
        self._outcomes: dict[str, PartialResult] = {}
        self._started: dict[str, float] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._notices: asyncio.Queue[CompletionNotice | None] = asyncio.Queue()
        self._closed = False
        self._supervisor: asyncio.Task | None = None

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def _launch(self) -> None:
        for entry in self._providers:
            pid = entry.provider_id
            self._started[pid] = time.monotonic()
            self._tasks[pid] = asyncio.create_task(self._dispatch(entry), name=f"lookup-{pid}")
        self._supervisor = asyncio.create_task(self._supervise(), name=f"lookup-supervisor-{self.ip}")

    @property
    def done(self) -> bool:
        return self._closed

    def cancel(self, reason: str = "cancelled") -> None:
        self.token.cancel(reason)

    async def wait(self) -> list[PartialResult]:
        """Outcome per provider, ordered by provider id."""
        if self._supervisor is not None:
            await asyncio.shield(self._supervisor)
        return [self._outcomes[pid] for pid in sorted(self._outcomes)]

    def __aiter__(self) -> AsyncIterator[CompletionNotice]:
        return self._iter_notices()

    async def _iter_notices(self) -> AsyncIterator[CompletionNotice]:
        while True:
            notice = await self._notices.get()
            if notice is None:
                return
            yield notice

    # ── Per-provider dispatch ─────────────────────────────────────────────────

    async def _dispatch(self, entry: RegisteredProvider) -> None:
        pid = entry.provider_id
        timeout = entry.config.timeout
        if timeout is None:
            timeout = self._default_timeout
        token = self.token.child(timeout)
        started = self._started[pid]

        try:
            result = await token.guard(entry.adapter.lookup(self.ip, token))
            latency = _elapsed_ms(started)
            if result.provider != pid or result.latency_ms != latency:
                result = result.model_copy(update={"provider": pid, "latency_ms": latency})
        except OperationCancelled as exc:
            result = PartialResult.failure(pid, exc.reason, _elapsed_ms(started))
        except ProviderError as exc:
            result = PartialResult.failure(pid, exc.reason, _elapsed_ms(started))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Provider %s raised during lookup of %s: %s", pid, self.ip, exc)
            result = PartialResult.failure(pid, str(exc) or type(exc).__name__, _elapsed_ms(started))

        self._finish(pid, result, notify=True)

    def _finish(self, pid: str, result: PartialResult, notify: bool) -> None:
        if pid in self._outcomes or self._closed:
            return
        self._outcomes[pid] = result
        self.completed += 1
        self._report_health(pid, result)

        logger.debug(
            "Provider %s finished for %s: success=%s latency=%dms%s",
            pid, self.ip, result.success, result.latency_ms,
            f" error={result.error}" if result.error else "",
        )
        if notify:
            self._notices.put_nowait(
                CompletionNotice(
                    ip=self.ip,
                    provider=pid,
                    success=result.success,
                    completed=self.completed,
                    total=self.total,
                    error=result.error,
                )
            )

    def _report_health(self, pid: str, result: PartialResult) -> None:
        if self._health is None:
            return
        # detached: the lookup never waits on the tracker
        asyncio.get_running_loop().call_soon(
            self._health.record, pid, result.success, result.latency_ms
        )

    # ── Supervision ───────────────────────────────────────────────────────────

    async def _supervise(self) -> None:
        waiting: set[asyncio.Task] = set(self._tasks.values())
        fired = asyncio.ensure_future(self.token.wait())
        try:
            while waiting:
                done, _ = await asyncio.wait(waiting | {fired}, return_when=asyncio.FIRST_COMPLETED)
                waiting -= done
                if fired in done:
                    break

            if waiting:
                reason = self.token.reason or "timeout"
                logger.warning(
                    "Lookup of %s %s with %d provider(s) pending",
                    self.ip, "timed out" if reason == "timeout" else reason, len(waiting),
                )
                for pid, task in self._tasks.items():
                    if pid in self._outcomes:
                        continue
                    task.cancel()
                    self._finish(
                        pid,
                        PartialResult.failure(pid, reason, _elapsed_ms(self._started[pid])),
                        notify=True,
                    )
        finally:
            fired.cancel()
            self._closed = True
            self._notices.put_nowait(None)


class Orchestrator:
    """
    Fans a lookup out to every selected provider concurrently.
    One provider's failure or slowness never blocks the others.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        health: HealthTracker | None = None,
        global_timeout: float = DEFAULT_GLOBAL_TIMEOUT,
        provider_timeout: float | None = None,
    ) -> None:
        self.registry = registry
        self.health = health
        self.global_timeout = global_timeout
        self.provider_timeout = provider_timeout

    def select_providers(self, requested: Iterable[str] | None = None) -> list[RegisteredProvider]:
        """
        Explicitly requested ids bypass the enabled and health filters.
        Otherwise: every enabled provider currently considered healthy.
        """
        if requested is not None:
            selected = []
            for pid in dict.fromkeys(requested):
                entry = self.registry.get(pid)
                if entry is None:
                    logger.warning("Unknown provider requested: %s", pid)
                    continue
                selected.append(entry)
            return selected

        selected = []
        for entry in self.registry.enabled():
            if self.health is not None and not self.health.is_healthy(entry.provider_id):
                logger.warning("Skipping unhealthy provider %s", entry.provider_id)
                continue
            selected.append(entry)
        return selected

    def start(
        self,
        ip: str,
        providers: Iterable[str] | None = None,
        cancel: CancellationToken | None = None,
    ) -> LookupRun:
        """Schedule the lookup on the running loop and return its handle immediately."""
        selected = self.select_providers(providers)
        if not selected:
            logger.warning("No providers available for %s, returning empty outcome set", ip)

        if cancel is not None:
            token = cancel.child(self.global_timeout)
        else:
            token = CancellationToken.with_timeout(self.global_timeout)

        run = LookupRun(
            ip,
            selected,
            token,
            health=self.health,
            default_timeout=self.provider_timeout,
        )
        run._launch()
        return run

    async def run(
        self,
        ip: str,
        providers: Iterable[str] | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[PartialResult]:
        return await self.start(ip, providers, cancel).wait()

    def providers_health(self) -> list[ProviderHealth]:
        if self.health is None:
            return [
                ProviderHealth(
                    provider=p.provider_id, enabled=p.enabled, healthy=True, trust_rank=p.trust_rank
                )
                for p in self.registry
            ]
        return [
            self.health.snapshot(p.provider_id, enabled=p.enabled, trust_rank=p.trust_rank)
            for p in self.registry
        ]


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
