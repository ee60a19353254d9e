"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with validation.
"""
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Controller settings with environment variable loading."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="DBaaS Controller", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Logging level")

    # Debug server
    host: str = Field(default="0.0.0.0", description="Debug server host")
    port: int = Field(default=8000, ge=1, le=65535, description="Debug server port")

    # Kubernetes
    kubeconfig_path: Optional[str] = Field(
        default=None, description="Path to kubeconfig file (None for the kubectl default)"
    )
    k8s_namespace: str = Field(default="default", description="Namespace holding database clusters")
    kubectl_binary: str = Field(default="kubectl", description="kubectl executable used for the API bridge")

    # API bridge sessions (kubectl proxy)
    proxy_port_min: int = Field(default=10000, ge=1024, le=65535, description="Lowest bridge port")
    proxy_port_max: int = Field(default=19999, ge=1024, le=65535, description="Highest bridge port")
    proxy_start_attempts: int = Field(default=5, ge=1, le=50, description="Attempts to start a bridge")
    proxy_dial_attempts: int = Field(default=30, ge=1, le=600, description="Dial attempts per started bridge")
    proxy_dial_timeout: float = Field(default=1.0, gt=0, le=30, description="Single dial timeout in seconds")
    proxy_dial_interval: float = Field(default=0.2, ge=0, le=10, description="Pause between dial attempts")
    proxy_stop_timeout: float = Field(default=5.0, gt=0, le=60, description="Grace period before killing a bridge")
    proxy_open_timeout: float = Field(default=60.0, gt=0, le=600, description="Overall budget to open a session")

    # Version service
    version_service_url: str = Field(
        default="https://check.percona.com/versions/v1", description="Version matrix service base URL"
    )
    version_service_timeout: float = Field(default=10.0, gt=0, le=120, description="Version service timeout")
    version_service_attempts: int = Field(default=3, ge=1, le=10, description="Version service fetch attempts")

    # Custom resource templates
    pxc_cr_template_path: str = Field(
        default="/srv/dbaas/crs/pxc.cr.yml", description="Optional PXC CR template overriding defaults"
    )
    psmdb_cr_template_path: str = Field(
        default="/srv/dbaas/crs/psmdb.cr.yml", description="Optional PSMDB CR template overriding defaults"
    )

    # Monitoring client
    pmm_client_image: str = Field(default="percona/pmm-client:2", description="PMM client sidecar image")

    # Metrics
    prometheus_enabled: bool = Field(default=True, description="Expose Prometheus metrics")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment."""
        valid_envs = ["development", "testing", "staging", "production"]
        if v.lower() not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}")
        return v.lower()

    @model_validator(mode="after")
    def validate_port_range(self) -> "Settings":
        if self.proxy_port_min > self.proxy_port_max:
            raise ValueError("proxy_port_min must not exceed proxy_port_max")
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"


settings = Settings()
