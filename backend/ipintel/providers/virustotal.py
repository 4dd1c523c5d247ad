from __future__ import annotations

import logging
from datetime import datetime, timezone

from ipintel.core.cancellation import CancellationToken
from ipintel.schema import PartialResult
from .client import ProviderHttpClient, normalize_asn

logger = logging.getLogger(__name__)


class VirusTotalProvider(ProviderHttpClient):
    """VirusTotal v3 IP address report."""

    provider_id = "virustotal.com"

    def __init__(self, api_key: str, base_url: str = "https://www.virustotal.com/api/v3", **kwargs) -> None:
        super().__init__(base_url=base_url, api_key=api_key, **kwargs)

    def _headers(self) -> dict:
        return {"x-apikey": self.api_key}

    async def lookup(self, ip: str, cancel: CancellationToken) -> PartialResult:
        data = await self.get(f"/ip_addresses/{ip}", cancel, headers=self._headers(), allow_404=True)
        if data is None:
            return self._result()
        return self._parse(data)

    def _parse(self, data: dict) -> PartialResult:
        attrs = data.get("data", {}).get("attributes", {})
        stats = attrs.get("last_analysis_stats", {})
        malicious = stats.get("malicious", 0) + stats.get("suspicious", 0)
        total = sum(stats.values())
        abuse_score = round(min(100, malicious / total * 100)) if total else None

        last_seen = None
        ts = attrs.get("last_analysis_date")
        if isinstance(ts, (int, float)):
            last_seen = datetime.fromtimestamp(ts, tz=timezone.utc)

        return self._result(
            asn=normalize_asn(attrs.get("asn")),
            org=attrs.get("as_owner") or None,
            country=attrs.get("country") or None,
            abuse_score=abuse_score,
            last_seen=last_seen,
            raw={
                "last_analysis_stats": stats,
                "reputation": attrs.get("reputation"),
                "tags": list(attrs.get("tags", [])),
                "network": attrs.get("network"),
            },
        )
