from pydantic_settings import BaseSettings

from .yaml_config import get_defaults

_defaults = get_defaults()


class Settings(BaseSettings):
    model_config = {"env_prefix": "DNS_SOC_"}

    # Telemetry source (analytics GraphQL API)
    graphql_url: str = _defaults.get("graphql_url", "https://api.cloudflare.com/client/v4/graphql")
    api_token: str = ""
    account_id: str = ""
    telemetry_limit: int = _defaults.get("telemetry_limit", 10000)
    telemetry_max_retries: int = _defaults.get("telemetry_max_retries", 3)
    telemetry_retry_base_delay: float = _defaults.get("telemetry_retry_base_delay", 1.0)
    telemetry_timeout_seconds: float = _defaults.get("telemetry_timeout_seconds", 30.0)

    # Hot store (SQLite)
    hot_store_path: str = _defaults.get("hot_store_path", "/data/dns_security.db")
    insert_batch_size: int = _defaults.get("insert_batch_size", 100)
    hot_tier_days: int = _defaults.get("hot_tier_days", 7)

    # Cold archive; an empty archive_path means archival is not configured
    archive_path: str = _defaults.get("archive_path", "")
    archive_prefix: str = _defaults.get("archive_prefix", "dns/security/event_date=")
    archive_list_limit: int = _defaults.get("archive_list_limit", 1000)
    archive_max_partitions: int = _defaults.get("archive_max_partitions", 100)
    pipeline_endpoint: str = _defaults.get("pipeline_endpoint", "")
    pipeline_token: str = ""

    # Ingestion
    realtime_window_minutes: int = _defaults.get("realtime_window_minutes", 5)
    threat_intel_threshold: int = _defaults.get("threat_intel_threshold", 70)

    # Query routing
    live_window_days: int = _defaults.get("live_window_days", 30)
    cache_ttl_seconds: float = _defaults.get("cache_ttl_seconds", 60)
    dashboard_limit: int = _defaults.get("dashboard_limit", 10000)

    # Logging
    log_level: str = _defaults.get("log_level", "INFO")
    log_json: bool = _defaults.get("log_json", True)

    @property
    def archive_configured(self) -> bool:
        return bool(self.archive_path)


settings = Settings()
