from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Lookup
    lookup_global_timeout_ms: int = 5000
    provider_timeout_ms: int = 3000
    provider_retries: int = 2
    provider_retry_delay_ms: int = 500
    cache_ttl_seconds: int = 2592000     # 30 days
    bulk_concurrency: int = 5

    # Health tracking
    health_window_size: int = 20
    health_min_samples: int = 5
    health_success_threshold: float = 0.5
    health_recovery_seconds: float = 60.0

    # Providers
    default_trust_rank: int = 5

    ipapi_url: str = "http://ip-api.com/json"
    ipapi_trust_rank: int = 6

    ipinfo_token: str = ""
    ipinfo_url: str = "https://ipinfo.io"
    ipinfo_trust_rank: int = 8

    abuseipdb_api_key: str = ""
    abuseipdb_url: str = "https://api.abuseipdb.com/api/v2"
    abuseipdb_trust_rank: int = 9

    shodan_api_key: str = ""
    shodan_url: str = "https://api.shodan.io"
    shodan_trust_rank: int = 8

    virustotal_api_key: str = ""
    virustotal_url: str = "https://www.virustotal.com/api/v3"
    virustotal_trust_rank: int = 9

    # Comma-separated provider ids to leave out of the registry entirely
    disabled_providers: str = ""

    @property
    def disabled_provider_list(self) -> list[str]:
        return [p.strip() for p in self.disabled_providers.split(",") if p.strip()]

    @property
    def lookup_global_timeout(self) -> float:
        return self.lookup_global_timeout_ms / 1000.0

    @property
    def provider_timeout(self) -> float:
        return self.provider_timeout_ms / 1000.0


settings = Settings()
