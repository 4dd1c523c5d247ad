from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from ipintel.core.cancellation import CancellationToken
from ipintel.providers.client import ProviderAdapter
from ipintel.providers.registry import ProviderConfig, ProviderRegistry, RegisteredProvider
from ipintel.schema import PartialResult


class FakeAdapter(ProviderAdapter):
    """Scripted provider: optional delay, failure, or a hang that only cancellation ends."""

    def __init__(
        self,
        provider_id: str,
        delay: float = 0.0,
        error: Exception | None = None,
        hang: bool = False,
        **fields,
    ) -> None:
        self.provider_id = provider_id
        self.delay = delay
        self.error = error
        self.hang = hang
        self.fields = fields
        self.calls = 0
        self.cancelled = False

    async def lookup(self, ip: str, cancel: CancellationToken) -> PartialResult:
        self.calls += 1
        try:
            if self.hang:
                await asyncio.sleep(3600)
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return PartialResult(provider=self.provider_id, success=True, **self.fields)


@pytest.fixture
def fake():
    def _make(provider_id: str, **kwargs) -> FakeAdapter:
        return FakeAdapter(provider_id, **kwargs)

    return _make


@pytest.fixture
def registry_of():
    def _make(*adapters: FakeAdapter, trust: dict | None = None, timeout: float = 1.0, disabled=()) -> ProviderRegistry:
        trust = trust or {}
        return ProviderRegistry(
            RegisteredProvider(
                adapter=a,
                trust_rank=trust.get(a.provider_id, 5),
                enabled=a.provider_id not in disabled,
                config=ProviderConfig(timeout=timeout),
            )
            for a in adapters
        )

    return _make


@pytest.fixture
def ok():
    """Successful PartialResult builder."""

    def _make(provider: str, **fields) -> PartialResult:
        return PartialResult(provider=provider, success=True, **fields)

    return _make


@pytest.fixture
def failed():
    def _make(provider: str, reason: str = "timeout") -> PartialResult:
        return PartialResult.failure(provider, reason)

    return _make


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
