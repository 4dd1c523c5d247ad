from __future__ import annotations

import logging
from datetime import datetime

from ipintel.core.cancellation import CancellationToken
from ipintel.schema import PartialResult
from .client import ProviderHttpClient

logger = logging.getLogger(__name__)

_HOSTING_USAGE = {"Data Center/Web Hosting/Transit", "Content Delivery Network"}
_MOBILE_USAGE = {"Mobile ISP"}


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class AbuseIPDBProvider(ProviderHttpClient):
    """AbuseIPDB v2 check endpoint."""

    provider_id = "abuseipdb.com"

    def __init__(self, api_key: str, base_url: str = "https://api.abuseipdb.com/api/v2", **kwargs) -> None:
        super().__init__(base_url=base_url, api_key=api_key, **kwargs)

    def _headers(self) -> dict:
        return {
            "Key": self.api_key,
            "Accept": "application/json",
        }

    async def lookup(self, ip: str, cancel: CancellationToken) -> PartialResult:
        data = await self.get(
            "/check",
            cancel,
            params={"ipAddress": ip, "maxAgeInDays": 90},
            headers=self._headers(),
        )
        return self._parse(data)

    def _parse(self, data: dict) -> PartialResult:
        info = data.get("data", {})
        usage_type = info.get("usageType") or ""
        is_tor = info.get("isTor")

        score = info.get("abuseConfidenceScore")
        return self._result(
            org=info.get("isp") or None,
            country=info.get("countryCode") or None,
            is_tor=is_tor if isinstance(is_tor, bool) else None,
            is_hosting=True if usage_type in _HOSTING_USAGE else None,
            is_mobile=True if usage_type in _MOBILE_USAGE else None,
            abuse_score=int(score) if isinstance(score, (int, float)) else None,
            last_seen=_parse_ts(info.get("lastReportedAt")),
            raw={
                "abuse_confidence_score": score,
                "total_reports": info.get("totalReports", 0),
                "distinct_users": info.get("numDistinctUsers", 0),
                "usage_type": usage_type,
                "domain": info.get("domain"),
                "is_whitelisted": info.get("isWhitelisted"),
            },
        )
