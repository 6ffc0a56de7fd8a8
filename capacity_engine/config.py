# capacity_engine/config.py

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PanelSettings(BaseSettings):
    """Pterodactyl panel connection from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Panel connection (NO DEFAULTS)
    panel_url: str
    panel_api_key: str

    # HTTP behaviour
    panel_connect_timeout_seconds: float = 3.0
    panel_timeout_seconds: float = 10.0
    panel_max_retries: int = Field(default=2, ge=0)
    panel_page_size: int = Field(default=100, ge=1, le=500)

    @property
    def base_url(self) -> str:
        return self.panel_url.rstrip("/")


class MonitorSettings(BaseSettings):
    """Capacity monitoring and placement tuning."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Snapshot cache
    cache_ttl_seconds: float = Field(default=20.0, gt=0)

    # Effective limits
    honor_panel_overallocation: bool = True
    safety_margin_percent: float = Field(default=0.0, ge=0, lt=100)

    # Status thresholds (percent)
    limited_threshold: float = 80.0
    full_threshold: float = 95.0
    projected_warning_threshold: float = 90.0

    # Smallest server a location must still be able to host to not be "full"
    min_request_memory: int = 128
    min_request_disk: int = 256

    # Node selection
    selection_strategy: str = "lowest_utilization"

    # Route layer rate limiting
    admin_rate_limit: int = 30
    user_rate_limit: int = 60
    rate_limit_window_seconds: int = 60


class ApiSettings(BaseSettings):
    """HTTP server binding."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    api_host: str = "0.0.0.0"
    api_port: int = 8080
    log_level: str = "INFO"
