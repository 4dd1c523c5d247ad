from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

SourceTag = Literal["cache", "db", "live", "stale"]
RiskLevel = Literal["low", "medium", "high"]
Accuracy = Literal["city", "region", "country"]
ConflictReason = Literal[
    "majority vote",
    "highest trust",
    "single source",
    "average",
    "boolean union",
    "maximum",
]


# ── Provider output ───────────────────────────────────────────────────────────

class PartialResult(BaseModel):
    """
    One provider's answer for one IP.

    Every informative field is optional: None means the provider had no
    opinion, which is not the same as False or 0. A failed result carries
    only the error description.
    """

    model_config = ConfigDict(frozen=True)

    INFORMATIVE_FIELDS: ClassVar[tuple[str, ...]] = (
        "asn",
        "org",
        "country",
        "region",
        "city",
        "latitude",
        "longitude",
        "timezone",
        "is_proxy",
        "is_vpn",
        "is_tor",
        "is_hosting",
        "is_mobile",
        "vpn_provider",
        "abuse_score",
        "last_seen",
    )

    provider: str
    success: bool
    latency_ms: int = 0
    error: str | None = None

    asn: str | None = None          # "AS" + number
    org: str | None = None
    country: str | None = None      # ISO 3166-1 alpha-2
    region: str | None = None
    city: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    timezone: str | None = None     # IANA name

    is_proxy: bool | None = None
    is_vpn: bool | None = None
    is_tor: bool | None = None
    is_hosting: bool | None = None
    is_mobile: bool | None = None
    vpn_provider: str | None = None

    abuse_score: int | None = Field(default=None, ge=0, le=100)
    last_seen: datetime | None = None

    raw: dict[str, Any] = Field(default_factory=dict)

    @field_validator("country")
    @classmethod
    def _upper_country(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip().upper()
        if len(v) != 2 or not v.isalpha():
            raise ValueError(f"country must be an ISO 3166-1 alpha-2 code, got {v!r}")
        return v

    @field_validator("last_seen")
    @classmethod
    def _aware_last_seen(cls, v: datetime | None) -> datetime | None:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def _failure_has_no_data(self) -> PartialResult:
        if self.success:
            return self
        populated = [f for f in self.INFORMATIVE_FIELDS if getattr(self, f) is not None]
        if populated or self.raw:
            raise ValueError(
                f"failed result for {self.provider} must not carry data: {populated or ['raw']}"
            )
        return self

    @classmethod
    def failure(cls, provider: str, reason: str, latency_ms: int = 0) -> PartialResult:
        return cls(provider=provider, success=False, error=reason, latency_ms=latency_ms)

    def has_data(self) -> bool:
        return self.success and any(
            getattr(self, f) is not None for f in self.INFORMATIVE_FIELDS
        )


# ── Conflicts ─────────────────────────────────────────────────────────────────

class ConflictValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: Any
    providers: tuple[str, ...]
    trust_ranks: dict[str, int]

    @property
    def best_trust(self) -> int:
        return max(self.trust_ranks.values())


class ConflictReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    values: tuple[ConflictValue, ...]
    resolved: Any
    reason: ConflictReason


# ── Correlated record ─────────────────────────────────────────────────────────

class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lon: float


class Location(BaseModel):
    model_config = ConfigDict(frozen=True)

    country: str | None = None
    region: str | None = None
    city: str | None = None
    coordinates: Coordinates | None = None
    timezone: str | None = None
    accuracy: Accuracy | None = None


class Flags(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_proxy: bool | None = None
    is_vpn: bool | None = None
    is_tor: bool | None = None
    is_hosting: bool | None = None
    is_mobile: bool | None = None
    vpn_provider: str | None = None
    confidence: int = Field(default=0, ge=0, le=100)


class Threat(BaseModel):
    model_config = ConfigDict(frozen=True)

    abuse_score: int | None = None
    risk_level: RiskLevel | None = None     # None = indeterminate
    last_reported: datetime | None = None


class RecordMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    providers: tuple[PartialResult, ...] = ()
    conflicts: tuple[ConflictReport, ...] = ()
    source: SourceTag
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    ttl_seconds: int
    warnings: tuple[str, ...] = ()
    partial_data: bool = False
    providers_queried: int = 0
    providers_succeeded: int = 0


class CorrelatedRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    ip: str
    asn: str | None = None
    org: str | None = None
    location: Location = Field(default_factory=Location)
    flags: Flags = Field(default_factory=Flags)
    threat: Threat = Field(default_factory=Threat)
    metadata: RecordMetadata

    def conflict(self, field: str) -> ConflictReport | None:
        for report in self.metadata.conflicts:
            if report.field == field:
                return report
        return None


# ── Provider health ───────────────────────────────────────────────────────────

class ProviderHealth(BaseModel):
    provider: str
    enabled: bool
    healthy: bool
    trust_rank: int
    samples: int = 0
    success_rate: float | None = None
    avg_latency_ms: float | None = None


# ── Bulk lookups ──────────────────────────────────────────────────────────────

class BulkLookupResult(BaseModel):
    ip: str
    success: bool
    data: CorrelatedRecord | None = None
    error: str | None = None


class BulkLookupSummary(BaseModel):
    total: int
    successful: int
    failed: int
    processing_time_ms: int


class BulkLookupResponse(BaseModel):
    results: list[BulkLookupResult] = Field(default_factory=list)
    summary: BulkLookupSummary
