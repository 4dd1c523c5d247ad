from __future__ import annotations

import pytest

from ipintel.config import Settings
from ipintel.providers.registry import (
    ProviderConfig,
    ProviderRegistry,
    RegisteredProvider,
    build_registry,
)


def test_lookup_and_enabled(fake, registry_of):
    registry = registry_of(fake("a"), fake("b"), trust={"a": 9}, disabled=("b",))

    assert len(registry) == 2
    assert "a" in registry
    assert registry.get("missing") is None
    assert [p.provider_id for p in registry.enabled()] == ["a"]
    assert registry.trust_rank("a") == 9
    assert registry.trust_rank("b") == 5
    assert registry.trust_rank("missing") == 5


def test_duplicate_ids_rejected(fake):
    entries = [RegisteredProvider(adapter=fake("a"), trust_rank=5) for _ in range(2)]
    with pytest.raises(ValueError, match="Duplicate"):
        ProviderRegistry(entries)


def test_non_positive_trust_rejected(fake):
    with pytest.raises(ValueError):
        ProviderRegistry([RegisteredProvider(adapter=fake("a"), trust_rank=0)])


def test_empty_id_rejected(fake):
    with pytest.raises(ValueError):
        ProviderRegistry([RegisteredProvider(adapter=fake(""), trust_rank=5)])


def test_registry_is_read_only(fake, registry_of):
    registry = registry_of(fake("a"))
    with pytest.raises(TypeError):
        registry.providers["b"] = registry.get("a")


def test_api_key_hidden_from_repr():
    assert "secret" not in repr(ProviderConfig(api_key="secret"))


def test_build_registry_without_keys():
    registry = build_registry(Settings(_env_file=None))

    assert set(p.provider_id for p in registry) == {
        "ip-api.com", "ipinfo.io", "abuseipdb.com", "shodan.io", "virustotal.com",
    }
    assert [p.provider_id for p in registry.enabled()] == ["ip-api.com"]


def test_build_registry_with_keys_and_overrides():
    settings = Settings(
        _env_file=None,
        abuseipdb_api_key="k1",
        shodan_api_key="k2",
        abuseipdb_trust_rank=10,
        provider_timeout_ms=1500,
        disabled_providers="ip-api.com, virustotal.com",
    )
    registry = build_registry(settings)

    assert "ip-api.com" not in registry
    assert "virustotal.com" not in registry
    assert sorted(p.provider_id for p in registry.enabled()) == ["abuseipdb.com", "shodan.io"]
    assert registry.trust_rank("abuseipdb.com") == 10
    assert registry.get("shodan.io").config.timeout == 1.5
