"""Centralized virt-api settings using pydantic-settings.

This module provides a single source of truth for all bootstrap configuration
loaded from environment variables. Uses pydantic for automatic validation,
type coercion, and documentation.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """virt-api configuration loaded from environment variables.

    All settings have sensible defaults for an in-cluster deployment. Override
    via environment variables as documented per field.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Service identification
    namespace: str = Field(
        default="kubevirt",
        description="Namespace virt-api runs in (from the downward API)",
        validation_alias="POD_NAMESPACE",
    )
    service_name: str = Field(
        default="virt-api",
        description="Name of the Service fronting virt-api",
        validation_alias="VIRT_API_SERVICE_NAME",
    )

    # Serving
    bind_address: str = Field(
        default="0.0.0.0",
        description="Address the HTTPS listener binds to",
        validation_alias="VIRT_API_BIND_ADDRESS",
    )
    port: int = Field(
        default=443,
        description="Port the HTTPS listener binds to",
        validation_alias="VIRT_API_PORT",
    )
    certs_dir: str = Field(
        default="",
        description="Directory for the serving key pair (empty = temporary directory)",
        validation_alias="VIRT_API_CERTS_DIR",
    )

    # API groups
    kubevirt_group: str = Field(
        default="kubevirt.io",
        description="API group whose resources are admission controlled",
        validation_alias="KUBEVIRT_GROUP",
    )
    webhook_api_versions_csv: str = Field(
        default="v1alpha3",
        description="Comma-separated API versions admission rules match",
        validation_alias="WEBHOOK_API_VERSIONS",
    )
    subresource_group: str = Field(
        default="subresource.kubevirt.io",
        description="Aggregated API group served by virt-api",
        validation_alias="SUBRESOURCE_GROUP",
    )
    subresource_versions_csv: str = Field(
        default="v1alpha3",
        description="Comma-separated versions of the aggregated API group",
        validation_alias="SUBRESOURCE_VERSIONS",
    )

    # Admission handlers
    admission_handlers: str = Field(
        default="virt_api.webhooks.passthrough:build_handlers",
        description="Import path ('module:callable') of the admission handler factory",
        validation_alias="ADMISSION_HANDLERS",
    )

    # Watch caches
    cache_sync_poll_seconds: float = Field(
        default=0.1,
        description="Interval between cache sync checks during startup",
        validation_alias="CACHE_SYNC_POLL_SECONDS",
    )
    watch_timeout_seconds: int = Field(
        default=60,
        description="Server-side timeout of a single watch request",
        validation_alias="WATCH_TIMEOUT_SECONDS",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias="JSON_LOGS",
        description="Enable JSON formatted logging for structured log aggregation",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CORRELATION_IDS",
        description="Enable correlation IDs in logs for request tracing",
    )
    log_health_probes: bool = Field(
        default=False,
        validation_alias="LOG_HEALTH_PROBES",
        description="Log aggregation-layer status probes hitting '/'",
    )

    @property
    def webhook_api_versions(self) -> list[str]:
        """API versions matched by every admission rule."""
        return _split_csv(self.webhook_api_versions_csv)

    @property
    def subresource_versions(self) -> list[str]:
        """Versions of the aggregated group, one APIService each."""
        return _split_csv(self.subresource_versions_csv)


# Global settings instance - initialized once at module import
settings = Settings()
