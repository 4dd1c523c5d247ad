from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from ipintel.schema import (
    ConflictReport,
    ConflictValue,
    Coordinates,
    CorrelatedRecord,
    Flags,
    Location,
    PartialResult,
    RecordMetadata,
    SourceTag,
    Threat,
)
from .vpn_mapping import identify_vpn_provider

logger = logging.getLogger(__name__)

DEFAULT_TRUST_RANK = 5
COORDINATE_DIGITS = 6

SCALAR_FIELDS = ("asn", "org", "country", "region", "city", "timezone")
BOOLEAN_FIELDS = ("is_proxy", "is_vpn", "is_tor", "is_hosting", "is_mobile")

# (value, provider, trust rank)
Contribution = tuple[Any, str, int]


class CorrelationEngine:
    """
    Merges per-provider partial results into one CorrelatedRecord.

    Pure: the output depends only on the outcome set (never its order) and
    on `now`. Conflicts are reported for every field where two or more
    providers supplied different non-null values.
    """

    def __init__(
        self,
        trust_ranks: Callable[[str], int] | Mapping[str, int] | None = None,
        default_trust_rank: int = DEFAULT_TRUST_RANK,
    ) -> None:
        if trust_ranks is None:
            self._trust = lambda provider: default_trust_rank
        elif isinstance(trust_ranks, Mapping):
            self._trust = lambda provider: trust_ranks.get(provider, default_trust_rank)
        else:
            self._trust = trust_ranks

    def correlate(
        self,
        ip: str,
        outcomes: Iterable[PartialResult],
        source: SourceTag = "live",
        ttl_seconds: int = 0,
        now: datetime | None = None,
    ) -> CorrelatedRecord:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must not be negative")
        if now is None:
            now = datetime.now(timezone.utc)

        ordered = sorted(
            outcomes, key=lambda r: (r.provider, r.success, r.error or "", r.model_dump_json())
        )
        succeeded = [r for r in ordered if r.success]
        failed = [r for r in ordered if not r.success]
        conflicts: list[ConflictReport] = []

        scalars = {f: self._merge_scalar(f, succeeded, conflicts) for f in SCALAR_FIELDS}
        coordinates = self._merge_coordinates(succeeded, conflicts)
        booleans = {f: self._merge_boolean(f, succeeded, conflicts) for f in BOOLEAN_FIELDS}

        vpn_provider = self._merge_vpn_provider(succeeded, conflicts)
        if vpn_provider is None and booleans["is_vpn"]:
            vpn_provider = identify_vpn_provider(scalars["asn"], scalars["org"])

        abuse_score = self._merge_abuse_score(succeeded, conflicts)
        seen = [r.last_seen for r in succeeded if r.last_seen is not None]
        last_reported = max(seen) if seen else None

        has_data = any(r.has_data() for r in succeeded)
        confidence = self.confidence(len(ordered), len(succeeded), len(conflicts), has_data)
        risk_level = self.risk_level(abuse_score, booleans) if has_data else None

        city, region, country = scalars["city"], scalars["region"], scalars["country"]
        accuracy = "city" if city else "region" if region else "country" if country else None

        return CorrelatedRecord(
            ip=ip,
            asn=scalars["asn"],
            org=scalars["org"],
            location=Location(
                country=country,
                region=region,
                city=city,
                coordinates=coordinates,
                timezone=scalars["timezone"],
                accuracy=accuracy,
            ),
            flags=Flags(**booleans, vpn_provider=vpn_provider, confidence=confidence),
            threat=Threat(abuse_score=abuse_score, risk_level=risk_level, last_reported=last_reported),
            metadata=RecordMetadata(
                providers=tuple(ordered),
                conflicts=tuple(conflicts),
                source=source,
                created_at=now,
                updated_at=now,
                expires_at=now + timedelta(seconds=ttl_seconds),
                ttl_seconds=ttl_seconds,
                warnings=tuple(f"Provider '{r.provider}' failed: {r.error}" for r in failed),
                partial_data=bool(failed),
                providers_queried=len(ordered),
                providers_succeeded=len(succeeded),
            ),
        )

    # ── Field strategies ──────────────────────────────────────────────────────

    def _contributions(self, field: str, results: list[PartialResult]) -> list[Contribution]:
        return [
            (getattr(r, field), r.provider, self._trust(r.provider))
            for r in results
            if getattr(r, field) is not None
        ]

    def _merge_scalar(
        self, field: str, results: list[PartialResult], conflicts: list[ConflictReport]
    ) -> str | None:
        """Majority vote; a tied count goes to the group holding the single highest-trust provider."""
        contributions = self._contributions(field, results)
        if not contributions:
            return None
        groups = _group(contributions)
        if len(groups) == 1:
            return contributions[0][0]

        values = sorted(
            groups.values(),
            key=lambda v: (-len(v.providers), -v.best_trust, str(v.value)),
        )
        top_count = len(values[0].providers)
        tied = sum(1 for v in values if len(v.providers) == top_count)
        reason = "majority vote" if tied == 1 else "highest trust"

        resolved = values[0].value
        conflicts.append(ConflictReport(field=field, values=tuple(values), resolved=resolved, reason=reason))
        return resolved

    def _merge_coordinates(
        self, results: list[PartialResult], conflicts: list[ConflictReport]
    ) -> Coordinates | None:
        # a provider with only one axis contributes to neither
        pairs = [
            ((r.latitude, r.longitude), r.provider, self._trust(r.provider))
            for r in results
            if r.latitude is not None and r.longitude is not None
        ]
        if not pairs:
            return None

        lat = round(math.fsum(p[0][0] for p in pairs) / len(pairs), COORDINATE_DIGITS)
        lon = round(math.fsum(p[0][1] for p in pairs) / len(pairs), COORDINATE_DIGITS)

        groups = _group(pairs)
        if len(groups) > 1:
            values = sorted(groups.values(), key=lambda v: (-len(v.providers), v.value))
            conflicts.append(
                ConflictReport(field="coordinates", values=tuple(values), resolved=(lat, lon), reason="average")
            )
        return Coordinates(lat=lat, lon=lon)

    def _merge_boolean(
        self, field: str, results: list[PartialResult], conflicts: list[ConflictReport]
    ) -> bool | None:
        """Logical OR over providers that expressed an opinion; absent when none did."""
        contributions = self._contributions(field, results)
        if not contributions:
            return None
        merged = any(value for value, _, _ in contributions)

        groups = _group(contributions)
        if len(groups) > 1:
            values = sorted(groups.values(), key=lambda v: not v.value)
            conflicts.append(
                ConflictReport(field=field, values=tuple(values), resolved=merged, reason="boolean union")
            )
        return merged

    def _merge_vpn_provider(
        self, results: list[PartialResult], conflicts: list[ConflictReport]
    ) -> str | None:
        contributions = self._contributions(
            "vpn_provider", [r for r in results if r.is_vpn is True]
        )
        if not contributions:
            return None
        groups = _group(contributions)
        values = sorted(
            groups.values(),
            key=lambda v: (-v.best_trust, -len(v.providers), str(v.value)),
        )
        resolved = values[0].value
        if len(values) > 1:
            conflicts.append(
                ConflictReport(field="vpn_provider", values=tuple(values), resolved=resolved, reason="highest trust")
            )
        return resolved

    def _merge_abuse_score(
        self, results: list[PartialResult], conflicts: list[ConflictReport]
    ) -> int | None:
        """Maximum: one source flagging abuse is not diluted by others reporting none."""
        contributions = self._contributions("abuse_score", results)
        if not contributions:
            return None
        resolved = max(value for value, _, _ in contributions)

        groups = _group(contributions)
        if len(groups) > 1:
            values = sorted(groups.values(), key=lambda v: -v.value)
            conflicts.append(
                ConflictReport(field="abuse_score", values=tuple(values), resolved=resolved, reason="maximum")
            )
        return resolved

    # ── Derived values ────────────────────────────────────────────────────────

    @staticmethod
    def risk_level(abuse_score: int | None, flags: Mapping[str, bool | None]) -> str:
        if flags.get("is_tor") or (abuse_score is not None and abuse_score >= 70):
            return "high"
        if flags.get("is_vpn") or flags.get("is_proxy") or (abuse_score is not None and abuse_score >= 30):
            return "medium"
        return "low"

    @staticmethod
    def confidence(queried: int, succeeded: int, conflict_count: int, has_data: bool = True) -> int:
        """
        0-100. Scales with the share of providers that answered and drops
        10 points per conflicting field, bottoming out at half.
        """
        if queried == 0 or succeeded == 0 or not has_data:
            return 0
        consensus = max(0.5, 1.0 - 0.1 * conflict_count)
        return int(round(100 * (succeeded / queried) * consensus))


def _group(contributions: list[Contribution]) -> dict[Any, ConflictValue]:
    grouped: dict[Any, list[tuple[str, int]]] = {}
    for value, provider, rank in contributions:
        grouped.setdefault(value, []).append((provider, rank))
    return {
        value: ConflictValue(
            value=value,
            providers=tuple(sorted(p for p, _ in members)),
            trust_ranks={p: r for p, r in sorted(members)},
        )
        for value, members in grouped.items()
    }
