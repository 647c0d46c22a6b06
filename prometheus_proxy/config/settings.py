"""Application settings loaded from environment variables."""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings

LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")


class Settings(BaseSettings):
    # Upstream Prometheus (Azure Managed Prometheus query endpoint)
    prometheus_url: str

    # Azure AD credentials
    # Empty secret = workload identity
    azure_tenant_id: str
    azure_client_id: str = ""
    azure_client_secret: str = ""

    # Server
    host: str = "0.0.0.0"
    port: int = 9090
    upstream_timeout_seconds: float = 60.0

    # Logging
    log_level: str = "INFO"
    audit_log_file: str = ""  # Empty = stdout only

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @field_validator("prometheus_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("prometheus_url must not be empty")
        return value.rstrip("/")

    @field_validator("azure_tenant_id")
    @classmethod
    def _require_tenant(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("azure_tenant_id must not be empty")
        return value.strip()

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(
                f"invalid log level {value!r}, allowed values are: {', '.join(LOG_LEVELS)}"
            )
        return level

    @field_validator("port")
    @classmethod
    def _validate_port(cls, value: int) -> int:
        if not 0 < value < 65536:
            raise ValueError(f"invalid port {value}")
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
