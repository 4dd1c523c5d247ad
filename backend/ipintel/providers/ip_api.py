from __future__ import annotations

import logging
import re

from ipintel.core.cancellation import CancellationToken
from ipintel.core.errors import ProviderRateLimited, ProviderResponseError
from ipintel.schema import PartialResult
from .client import ProviderHttpClient, normalize_asn

logger = logging.getLogger(__name__)

# status,message,countryCode,region,regionName,city,lat,lon,timezone,isp,org,as,mobile,proxy,hosting,query
_FIELDS = "66846719"
_AS_RE = re.compile(r"^AS(\d+)\s+(.+)$")


class IpApiProvider(ProviderHttpClient):
    """ip-api.com geolocation provider (free tier, no key)."""

    provider_id = "ip-api.com"

    def __init__(self, base_url: str = "http://ip-api.com/json", **kwargs) -> None:
        super().__init__(base_url=base_url, **kwargs)

    async def lookup(self, ip: str, cancel: CancellationToken) -> PartialResult:
        data = await self.get(f"/{ip}", cancel, params={"fields": _FIELDS})
        if data.get("status") == "fail":
            message = data.get("message") or "unknown error"
            # private/reserved ranges are "no data", quota messages are errors
            if message in ("private range", "reserved range", "invalid query"):
                return self._result(raw=data)
            if "limit" in message.lower():
                raise ProviderRateLimited(message)
            raise ProviderResponseError(message)
        return self._parse(data)

    def _parse(self, data: dict) -> PartialResult:
        asn = None
        org = None
        as_field = data.get("as") or ""
        match = _AS_RE.match(as_field)
        if match:
            asn = normalize_asn(match.group(1))
            org = match.group(2)
        elif as_field:
            org = as_field
        org = data.get("org") or org or data.get("isp") or None

        lat = data.get("lat")
        lon = data.get("lon")

        return self._result(
            asn=asn,
            org=org,
            country=data.get("countryCode") or None,
            region=data.get("regionName") or data.get("region") or None,
            city=data.get("city") or None,
            latitude=lat if isinstance(lat, (int, float)) else None,
            longitude=lon if isinstance(lon, (int, float)) else None,
            timezone=data.get("timezone") or None,
            is_proxy=True if data.get("proxy") is True else None,
            is_hosting=True if data.get("hosting") is True else None,
            is_mobile=True if data.get("mobile") is True else None,
            raw=data,
        )
