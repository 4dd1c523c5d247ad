from __future__ import annotations

import logging

from ipintel.core.cancellation import CancellationToken
from ipintel.schema import PartialResult
from .client import ProviderHttpClient, normalize_asn

logger = logging.getLogger(__name__)


class ShodanProvider(ProviderHttpClient):
    """Shodan host API provider."""

    provider_id = "shodan.io"

    def __init__(self, api_key: str, base_url: str = "https://api.shodan.io", **kwargs) -> None:
        super().__init__(base_url=base_url, api_key=api_key, **kwargs)

    async def lookup(self, ip: str, cancel: CancellationToken) -> PartialResult:
        data = await self.get(
            f"/shodan/host/{ip}",
            cancel,
            params={"key": self.api_key, "minify": "true"},
            allow_404=True,
        )
        if data is None:
            # host never scanned
            return self._result()
        return self._parse(data)

    def _parse(self, data: dict) -> PartialResult:
        tags = data.get("tags", []) or []
        vulns = data.get("vulns", []) or []
        if isinstance(vulns, dict):
            vulns = list(vulns.keys())

        return self._result(
            asn=normalize_asn(data.get("asn")),
            org=data.get("org") or data.get("isp") or None,
            country=data.get("country_code") or None,
            region=data.get("region_code") or None,
            city=data.get("city") or None,
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
            is_vpn=True if "vpn" in tags else None,
            is_proxy=True if "proxy" in tags else None,
            is_tor=True if "tor" in tags else None,
            is_hosting=True if "cloud" in tags else None,
            raw={
                "ports": data.get("ports", []),
                "vulns": vulns,
                "hostnames": data.get("hostnames", []),
                "tags": tags,
                "os": data.get("os"),
                "last_update": data.get("last_update"),
            },
        )
