from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from types import MappingProxyType

from ipintel.config import Settings
from .abuseipdb import AbuseIPDBProvider
from .client import ProviderAdapter
from .ip_api import IpApiProvider
from .ipinfo import IpInfoProvider
from .shodan import ShodanProvider
from .virustotal import VirusTotalProvider

logger = logging.getLogger(__name__)

DEFAULT_TRUST_RANK = 5


@dataclass(frozen=True)
class ProviderConfig:
    timeout: float | None = None      # seconds; None falls back to the orchestrator default
    api_key: str = field(default="", repr=False)
    base_url: str = ""


@dataclass(frozen=True)
class RegisteredProvider:
    adapter: ProviderAdapter
    trust_rank: int
    enabled: bool = True
    config: ProviderConfig = field(default_factory=ProviderConfig)

    @property
    def provider_id(self) -> str:
        return self.adapter.provider_id


class ProviderRegistry:
    """
    Read-only mapping from provider id to adapter, trust rank and config.
    Built once at startup; never mutated afterwards.
    """

    def __init__(
        self,
        entries: Iterable[RegisteredProvider],
        default_trust_rank: int = DEFAULT_TRUST_RANK,
    ) -> None:
        mapping: dict[str, RegisteredProvider] = {}
        for entry in entries:
            if not entry.provider_id:
                raise ValueError(f"{type(entry.adapter).__name__} has no provider_id")
            if entry.provider_id in mapping:
                raise ValueError(f"Duplicate provider id: {entry.provider_id}")
            if entry.trust_rank < 1:
                raise ValueError(f"Trust rank for {entry.provider_id} must be positive")
            mapping[entry.provider_id] = entry
        self._providers = MappingProxyType(mapping)
        self._default_trust_rank = default_trust_rank

    def __len__(self) -> int:
        return len(self._providers)

    def __iter__(self) -> Iterator[RegisteredProvider]:
        return iter(self._providers.values())

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._providers

    @property
    def providers(self) -> MappingProxyType:
        return self._providers

    def get(self, provider_id: str) -> RegisteredProvider | None:
        return self._providers.get(provider_id)

    def enabled(self) -> list[RegisteredProvider]:
        return [p for p in self._providers.values() if p.enabled]

    def trust_rank(self, provider_id: str) -> int:
        entry = self._providers.get(provider_id)
        return entry.trust_rank if entry is not None else self._default_trust_rank


def build_registry(settings: Settings) -> ProviderRegistry:
    """Construct the bundled adapters from settings."""
    timeout = settings.provider_timeout
    common = {
        "timeout": timeout,
        "retries": settings.provider_retries,
        "retry_delay": settings.provider_retry_delay_ms / 1000.0,
    }

    entries: list[RegisteredProvider] = [
        RegisteredProvider(
            adapter=IpApiProvider(base_url=settings.ipapi_url, **common),
            trust_rank=settings.ipapi_trust_rank,
            enabled=True,     # no key needed
            config=ProviderConfig(timeout=timeout, base_url=settings.ipapi_url),
        ),
        RegisteredProvider(
            adapter=IpInfoProvider(api_key=settings.ipinfo_token, base_url=settings.ipinfo_url, **common),
            trust_rank=settings.ipinfo_trust_rank,
            enabled=bool(settings.ipinfo_token),
            config=ProviderConfig(timeout=timeout, api_key=settings.ipinfo_token, base_url=settings.ipinfo_url),
        ),
        RegisteredProvider(
            adapter=AbuseIPDBProvider(api_key=settings.abuseipdb_api_key, base_url=settings.abuseipdb_url, **common),
            trust_rank=settings.abuseipdb_trust_rank,
            enabled=bool(settings.abuseipdb_api_key),
            config=ProviderConfig(
                timeout=timeout, api_key=settings.abuseipdb_api_key, base_url=settings.abuseipdb_url
            ),
        ),
        RegisteredProvider(
            adapter=ShodanProvider(api_key=settings.shodan_api_key, base_url=settings.shodan_url, **common),
            trust_rank=settings.shodan_trust_rank,
            enabled=bool(settings.shodan_api_key),
            config=ProviderConfig(timeout=timeout, api_key=settings.shodan_api_key, base_url=settings.shodan_url),
        ),
        RegisteredProvider(
            adapter=VirusTotalProvider(
                api_key=settings.virustotal_api_key, base_url=settings.virustotal_url, **common
            ),
            trust_rank=settings.virustotal_trust_rank,
            enabled=bool(settings.virustotal_api_key),
            config=ProviderConfig(
                timeout=timeout, api_key=settings.virustotal_api_key, base_url=settings.virustotal_url
            ),
        ),
    ]

    disabled = set(settings.disabled_provider_list)
    entries = [e for e in entries if e.provider_id not in disabled]

    registry = ProviderRegistry(entries, default_trust_rank=settings.default_trust_rank)
    logger.info(
        "Provider registry built: %d registered, enabled=%s",
        len(registry),
        [p.provider_id for p in registry.enabled()],
    )
    return registry
