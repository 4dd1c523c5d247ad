from __future__ import annotations

import logging
import re

from ipintel.core.cancellation import CancellationToken
from ipintel.schema import PartialResult
from .client import ProviderHttpClient, normalize_asn

logger = logging.getLogger(__name__)

_AS_RE = re.compile(r"^AS(\d+)\s+(.+)$")


class IpInfoProvider(ProviderHttpClient):
    """ipinfo.io provider. Privacy flags are only present on paid plans."""

    provider_id = "ipinfo.io"

    def __init__(self, api_key: str, base_url: str = "https://ipinfo.io", **kwargs) -> None:
        super().__init__(base_url=base_url, api_key=api_key, **kwargs)

    async def lookup(self, ip: str, cancel: CancellationToken) -> PartialResult:
        data = await self.get(
            f"/{ip}/json",
            cancel,
            headers={"Authorization": f"Bearer {self.api_key}", "Accept": "application/json"},
        )
        if data.get("bogon"):
            return self._result(raw=data)
        return self._parse(data)

    def _parse(self, data: dict) -> PartialResult:
        asn = None
        org = data.get("org") or None
        if org:
            match = _AS_RE.match(org)
            if match:
                asn = normalize_asn(match.group(1))
                org = match.group(2)

        lat = lon = None
        loc = data.get("loc") or ""
        parts = loc.split(",")
        if len(parts) == 2:
            try:
                lat, lon = float(parts[0]), float(parts[1])
            except ValueError:
                logger.debug("ipinfo.io returned unparsable loc %r", loc)

        privacy = data.get("privacy") or {}

        def _flag(name: str) -> bool | None:
            value = privacy.get(name)
            return value if isinstance(value, bool) else None

        return self._result(
            asn=asn,
            org=org,
            country=data.get("country") or None,
            region=data.get("region") or None,
            city=data.get("city") or None,
            latitude=lat,
            longitude=lon,
            timezone=data.get("timezone") or None,
            is_vpn=_flag("vpn"),
            is_proxy=_flag("proxy"),
            is_tor=_flag("tor"),
            is_hosting=_flag("hosting"),
            vpn_provider=privacy.get("service") or None,
            raw=data,
        )
