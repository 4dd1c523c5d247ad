from __future__ import annotations

from dataclasses import dataclass

from ipintel.providers.client import normalize_asn


@dataclass(frozen=True)
class VpnMapping:
    provider: str
    asns: tuple[str, ...]
    orgs: tuple[str, ...]


# Networks operated by well-known commercial VPN services
VPN_MAPPINGS: tuple[VpnMapping, ...] = (
    VpnMapping("ProtonVPN", ("AS51167", "AS212238", "AS62371", "AS206067"),
               ("Datacamp Limited", "Proton AG", "Proton Technologies AG")),
    VpnMapping("NordVPN", ("AS202425", "AS57878", "AS210083"),
               ("Nord Security", "NordVPN", "Nordvpn S.A.")),
    VpnMapping("ExpressVPN", ("AS396356", "AS397444"), ("ExpressVPN", "Express VPN")),
    VpnMapping("Surfshark", ("AS202306", "AS208323"), ("Surfshark", "Surfshark Ltd")),
    VpnMapping("CyberGhost", ("AS205157",), ("CyberGhost", "SC CyberGhost SRL")),
    VpnMapping("Private Internet Access", ("AS46562", "AS54290"),
               ("Private Internet Access", "London Trust Media")),
    VpnMapping("Mullvad", ("AS208843",), ("Mullvad VPN", "Amagicom AB")),
    VpnMapping("Windscribe", ("AS59711", "AS396998"), ("Windscribe", "WINDSCRIBE-AS")),
    VpnMapping("IPVanish", ("AS35470", "AS49981"), ("IPVanish", "Highwinds Network Group")),
    VpnMapping("Hide.me", ("AS199883",), ("eVenture Limited", "hide.me")),
    VpnMapping("TorGuard", ("AS395324",), ("TorGuard", "VPNetworks LLC")),
)

_ASN_INDEX: dict[str, str] = {asn: m.provider for m in VPN_MAPPINGS for asn in m.asns}


def identify_vpn_provider(asn: str | None = None, org: str | None = None) -> str | None:
    """Best-effort VPN service name from an ASN or organization name."""
    normalized = normalize_asn(asn)
    if normalized and normalized in _ASN_INDEX:
        return _ASN_INDEX[normalized]

    if org:
        org_lower = org.lower().strip()
        if not org_lower:
            return None
        for mapping in VPN_MAPPINGS:
            for mapped in mapping.orgs:
                mapped_lower = mapped.lower()
                if mapped_lower in org_lower or org_lower in mapped_lower:
                    return mapping.provider
    return None
