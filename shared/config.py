"""
Shared configuration management for the docgate document gateway.
"""

from typing import Annotated, List, Literal, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from shared.errors import ServerMisconfigured


CREDENTIAL_SOURCES = ("environment", "config_file", "static")


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="DOCGATE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # Observability
    enable_tracing: bool = False
    otel_exporter: Optional[str] = None
    enable_console_tracing: bool = False


class DocgateConfig(BaseConfig):
    """Configuration consumed by the gateway service."""

    service_name: str = "docgate"
    host: str = "0.0.0.0"
    port: int = 8080
    workers: int = 4
    max_connections: int = 100
    keep_alive: int = 60

    # Inbound bearer secret; PS_API_TOKEN is accepted for older deployments
    api_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("DOCGATE_API_TOKEN", "PS_API_TOKEN", "api_token"),
    )

    # Object storage backend
    namespace: Optional[str] = None
    bucket: Optional[str] = None
    region: Optional[str] = None
    objectstorage_endpoint: Optional[str] = None

    # Credential chain, tried in order
    credential_providers: Annotated[List[str], NoDecode] = ["environment", "config_file"]
    oci_config_file: str = "~/.oci/config"
    oci_config_profile: str = "DEFAULT"
    static_tenancy: Optional[str] = None
    static_user: Optional[str] = None
    static_fingerprint: Optional[str] = None
    static_private_key: Optional[str] = None
    static_region: Optional[str] = None
    cache_credentials: bool = False

    # Signing strategy
    signing_strategy: Literal["direct", "preauthenticated"] = "direct"
    par_name_prefix: str = "docgate"
    par_ttl_seconds: int = 3600
    par_refresh_margin_seconds: int = 60

    # Outbound timeouts (seconds)
    backend_timeout: float = 30.0
    token_timeout: float = 10.0

    default_content_type: str = "application/octet-stream"

    @field_validator("credential_providers", mode="before")
    @classmethod
    def _split_providers(cls, value):
        if isinstance(value, str):
            value = value.split(",")
        return [str(item).strip().lower() for item in value if str(item).strip()]

    @field_validator("credential_providers")
    @classmethod
    def _check_providers(cls, value: List[str]) -> List[str]:
        unknown = [item for item in value if item not in CREDENTIAL_SOURCES]
        if unknown:
            raise ValueError(f"Unknown credential providers: {', '.join(unknown)}")
        return value

    @field_validator("par_ttl_seconds")
    @classmethod
    def _check_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("par_ttl_seconds must be positive")
        return value

    def validate_backend(self) -> None:
        """Raise ServerMisconfigured when the bucket cannot be addressed."""
        missing = [name for name in ("namespace", "bucket") if not getattr(self, name)]
        if missing:
            raise ServerMisconfigured(
                "Object storage backend is not configured",
                details={"missing": missing},
            )


def get_config(**overrides) -> DocgateConfig:
    """Get configuration for the gateway service."""
    return DocgateConfig(**overrides)
