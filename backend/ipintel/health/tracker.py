from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

from ipintel.schema import ProviderHealth

logger = logging.getLogger(__name__)


@dataclass
class _Window:
    samples: deque
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    healthy: bool = True
    retry_at: float | None = None


class HealthTracker:
    """
    Rolling success-rate / latency window per provider.

    Shared by every lookup. Each provider has its own lock held only for
    an append or a summary over at most `window_size` samples.
    """

    def __init__(
        self,
        window_size: int = 20,
        min_samples: int = 5,
        success_threshold: float = 0.5,
        recovery_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if window_size < 1:
            raise ValueError("window_size must be at least 1")
        self.window_size = window_size
        self.min_samples = min(min_samples, window_size)
        self.success_threshold = success_threshold
        self.recovery_seconds = recovery_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._registry_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings) -> HealthTracker:
        return cls(
            window_size=settings.health_window_size,
            min_samples=settings.health_min_samples,
            success_threshold=settings.health_success_threshold,
            recovery_seconds=settings.health_recovery_seconds,
        )

    def _window(self, provider: str) -> _Window:
        window = self._windows.get(provider)
        if window is None:
            with self._registry_lock:
                window = self._windows.setdefault(
                    provider, _Window(samples=deque(maxlen=self.window_size))
                )
        return window

    def record(self, provider: str, success: bool, latency_ms: float) -> None:
        window = self._window(provider)
        with window.lock:
            if not window.healthy and success:
                # successful probe after cooldown: start over
                window.samples.clear()
                window.samples.append((True, latency_ms))
                window.healthy = True
                window.retry_at = None
                logger.info("Provider %s recovered", provider)
                return

            window.samples.append((success, latency_ms))
            if not window.healthy:
                window.retry_at = self._clock() + self.recovery_seconds
                return

            n = len(window.samples)
            if n >= self.min_samples:
                rate = sum(1 for ok, _ in window.samples if ok) / n
                if rate < self.success_threshold:
                    window.healthy = False
                    window.retry_at = self._clock() + self.recovery_seconds
                    logger.warning(
                        "Provider %s marked unhealthy (success rate %.2f over %d samples)",
                        provider, rate, n,
                    )

    def is_healthy(self, provider: str) -> bool:
        """True if the provider should be queried; unhealthy ones become probe-able after cooldown."""
        window = self._windows.get(provider)
        if window is None:
            return True
        with window.lock:
            if window.healthy:
                return True
            return window.retry_at is not None and self._clock() >= window.retry_at

    def success_rate(self, provider: str) -> float | None:
        window = self._windows.get(provider)
        if window is None:
            return None
        with window.lock:
            if not window.samples:
                return None
            return sum(1 for ok, _ in window.samples if ok) / len(window.samples)

    def average_latency_ms(self, provider: str) -> float | None:
        window = self._windows.get(provider)
        if window is None:
            return None
        with window.lock:
            if not window.samples:
                return None
            return sum(lat for _, lat in window.samples) / len(window.samples)

    def snapshot(self, provider: str, enabled: bool = True, trust_rank: int = 5) -> ProviderHealth:
        window = self._windows.get(provider)
        samples = 0
        if window is not None:
            with window.lock:
                samples = len(window.samples)
                # matches is_healthy(): a provider past its cooldown is selectable again
                healthy = window.healthy or (
                    window.retry_at is not None and self._clock() >= window.retry_at
                )
        else:
            healthy = True
        return ProviderHealth(
            provider=provider,
            enabled=enabled,
            healthy=healthy,
            trust_rank=trust_rank,
            samples=samples,
            success_rate=self.success_rate(provider),
            avg_latency_ms=self.average_latency_ms(provider),
        )

    def reset(self, provider: str | None = None) -> None:
        with self._registry_lock:
            if provider is None:
                self._windows.clear()
            else:
                self._windows.pop(provider, None)
