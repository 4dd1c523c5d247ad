from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from ipintel.core.cancellation import CancellationToken
from ipintel.core.errors import (
    ProviderAuthError,
    ProviderError,
    ProviderRateLimited,
    ProviderResponseError,
    ProviderTimeout,
)
from ipintel.providers.abuseipdb import AbuseIPDBProvider
from ipintel.providers.client import normalize_asn
from ipintel.providers.ip_api import IpApiProvider
from ipintel.providers.ipinfo import IpInfoProvider
from ipintel.providers.shodan import ShodanProvider
from ipintel.providers.virustotal import VirusTotalProvider


def _run(provider, ip: str = "8.8.8.8", timeout: float = 2.0):
    async def scenario():
        return await provider.lookup(ip, CancellationToken.with_timeout(timeout))

    return asyncio.run(scenario())


def _respond(status: int = 200, json=None, requests: list | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return httpx.Response(status, json=json)

    return httpx.MockTransport(handler)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (15169, "AS15169"),
        ("15169", "AS15169"),
        ("as15169", "AS15169"),
        ("AS15169 Google LLC", "AS15169"),
        ("", None),
        (None, None),
        ("Google", None),
    ],
)
def test_normalize_asn(value, expected):
    assert normalize_asn(value) == expected


# ── ip-api.com ────────────────────────────────────────────────────────────────

def test_ip_api_parse():
    requests: list = []
    payload = {
        "status": "success",
        "countryCode": "US",
        "regionName": "Virginia",
        "city": "Ashburn",
        "lat": 39.03,
        "lon": -77.5,
        "timezone": "America/New_York",
        "isp": "Google LLC",
        "org": "Google Public DNS",
        "as": "AS15169 Google LLC",
        "mobile": False,
        "proxy": False,
        "hosting": True,
    }
    provider = IpApiProvider(base_url="http://ip-api.test/json", transport=_respond(json=payload, requests=requests))

    result = _run(provider)

    assert result.success
    assert result.provider == "ip-api.com"
    assert result.asn == "AS15169"
    assert result.org == "Google Public DNS"
    assert result.country == "US"
    assert result.region == "Virginia"
    assert (result.latitude, result.longitude) == (39.03, -77.5)
    assert result.is_hosting is True
    assert result.is_proxy is None
    assert requests[0].url.path == "/json/8.8.8.8"
    assert requests[0].url.params["fields"] == "66846719"


def test_ip_api_reserved_range_is_empty_success():
    provider = IpApiProvider(transport=_respond(json={"status": "fail", "message": "reserved range"}))
    result = _run(provider)
    assert result.success
    assert not result.has_data()


def test_ip_api_quota_message():
    provider = IpApiProvider(transport=_respond(json={"status": "fail", "message": "usage limit exceeded"}))
    with pytest.raises(ProviderRateLimited):
        _run(provider)


# ── ipinfo.io ─────────────────────────────────────────────────────────────────

def test_ipinfo_parse_and_auth_header():
    requests: list = []
    payload = {
        "ip": "8.8.8.8",
        "city": "Mountain View",
        "region": "California",
        "country": "US",
        "loc": "37.4056,-122.0775",
        "org": "AS15169 Google LLC",
        "timezone": "America/Los_Angeles",
        "privacy": {"vpn": True, "proxy": False, "tor": False, "hosting": True, "service": "NordVPN"},
    }
    provider = IpInfoProvider(api_key="tok", transport=_respond(json=payload, requests=requests))

    result = _run(provider)

    assert result.asn == "AS15169"
    assert result.org == "Google LLC"
    assert result.latitude == 37.4056
    assert result.longitude == -122.0775
    assert result.is_vpn is True
    assert result.is_proxy is False
    assert result.vpn_provider == "NordVPN"
    assert requests[0].headers["Authorization"] == "Bearer tok"
    assert requests[0].url.path == "/8.8.8.8/json"


def test_ipinfo_without_privacy_has_no_flags():
    provider = IpInfoProvider(api_key="tok", transport=_respond(json={"country": "DE", "loc": "bad"}))
    result = _run(provider)

    assert result.country == "DE"
    assert result.latitude is None
    assert result.is_vpn is None


# ── AbuseIPDB ─────────────────────────────────────────────────────────────────

def test_abuseipdb_parse():
    requests: list = []
    payload = {
        "data": {
            "ipAddress": "1.2.3.4",
            "abuseConfidenceScore": 87,
            "countryCode": "cn",
            "usageType": "Data Center/Web Hosting/Transit",
            "isp": "Example Hosting",
            "isTor": False,
            "totalReports": 12,
            "lastReportedAt": "2025-09-01T10:00:00+00:00",
        }
    }
    provider = AbuseIPDBProvider(api_key="k", transport=_respond(json=payload, requests=requests))

    result = _run(provider, "1.2.3.4")

    assert result.abuse_score == 87
    assert result.country == "CN"
    assert result.is_hosting is True
    assert result.is_tor is False
    assert result.last_seen == datetime(2025, 9, 1, 10, tzinfo=timezone.utc)
    assert result.raw["total_reports"] == 12
    assert requests[0].headers["Key"] == "k"
    assert requests[0].url.params["ipAddress"] == "1.2.3.4"


# ── Shodan ────────────────────────────────────────────────────────────────────

def test_shodan_parse():
    payload = {
        "asn": "AS13335",
        "org": "Cloudflare",
        "country_code": "US",
        "city": "San Francisco",
        "latitude": 37.77,
        "longitude": -122.42,
        "tags": ["cloud", "vpn"],
        "ports": [80, 443],
        "vulns": {"CVE-2024-0001": {}},
    }
    provider = ShodanProvider(api_key="k", transport=_respond(json=payload))

    result = _run(provider, "1.1.1.1")

    assert result.asn == "AS13335"
    assert result.is_vpn is True
    assert result.is_hosting is True
    assert result.is_tor is None
    assert result.raw["vulns"] == ["CVE-2024-0001"]


def test_shodan_unknown_host_is_empty_success():
    provider = ShodanProvider(api_key="k", transport=_respond(404, json={"error": "No information available"}))
    result = _run(provider)

    assert result.success
    assert not result.has_data()


# ── VirusTotal ────────────────────────────────────────────────────────────────

def test_virustotal_parse():
    payload = {
        "data": {
            "attributes": {
                "asn": 15169,
                "as_owner": "GOOGLE",
                "country": "US",
                "last_analysis_date": 1700000000,
                "last_analysis_stats": {"harmless": 70, "malicious": 8, "suspicious": 2, "undetected": 20},
            }
        }
    }
    provider = VirusTotalProvider(api_key="k", transport=_respond(json=payload))

    result = _run(provider)

    assert result.asn == "AS15169"
    assert result.abuse_score == 10
    assert result.last_seen == datetime.fromtimestamp(1700000000, tz=timezone.utc)


def test_virustotal_without_stats_has_no_score():
    provider = VirusTotalProvider(api_key="k", transport=_respond(json={"data": {"attributes": {}}}))
    assert _run(provider).abuse_score is None


# ── Shared HTTP behaviour ─────────────────────────────────────────────────────

@pytest.mark.parametrize(
    ("status", "error"),
    [(401, ProviderAuthError), (403, ProviderAuthError), (429, ProviderRateLimited), (400, ProviderResponseError)],
)
def test_status_mapping(status, error):
    provider = IpInfoProvider(api_key="k", transport=_respond(status, json={}), retries=2, retry_delay=0.01)
    with pytest.raises(error):
        _run(provider)


def test_non_retryable_errors_are_not_retried():
    requests: list = []
    provider = IpInfoProvider(
        api_key="k", transport=_respond(429, json={}, requests=requests), retries=3, retry_delay=0.01
    )
    with pytest.raises(ProviderRateLimited):
        _run(provider)
    assert len(requests) == 1


def test_server_error_is_retried():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(503)
        return httpx.Response(200, json={"country": "US"})

    provider = IpInfoProvider(api_key="k", transport=httpx.MockTransport(handler), retries=2, retry_delay=0.01)

    assert _run(provider).country == "US"
    assert calls["n"] == 3


def test_retries_exhausted():
    requests: list = []
    provider = IpInfoProvider(
        api_key="k", transport=_respond(500, requests=requests), retries=1, retry_delay=0.01
    )
    with pytest.raises(ProviderError, match="HTTP 500"):
        _run(provider)
    assert len(requests) == 2


def test_malformed_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>")

    provider = IpInfoProvider(api_key="k", transport=httpx.MockTransport(handler))
    with pytest.raises(ProviderResponseError):
        _run(provider)


def test_list_body_rejected():
    provider = IpInfoProvider(api_key="k", transport=_respond(json=[1, 2]))
    with pytest.raises(ProviderResponseError):
        _run(provider)


def test_transport_error_is_a_provider_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    provider = IpInfoProvider(api_key="k", transport=httpx.MockTransport(handler))
    with pytest.raises(ProviderError, match="transport error"):
        _run(provider)


def test_cancellation_interrupts_request():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(3600)
        return httpx.Response(200, json={})

    provider = IpInfoProvider(api_key="k", transport=httpx.MockTransport(handler), timeout=60)
    with pytest.raises(ProviderTimeout) as exc:
        _run(provider, timeout=0.05)
    assert exc.value.reason == "timeout"
