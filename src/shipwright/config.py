"""Configuration management for Shipwright."""

from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shipwright.constants import CHANNELS, DEFAULT_CHANNEL


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Every field can be set with a ``SHIPWRIGHT_`` prefixed variable, e.g.
    ``SHIPWRIGHT_UPDATE_URL=https://updates.example.com``.
    """

    model_config = SettingsConfigDict(
        env_prefix="SHIPWRIGHT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")
    log_to_file: bool = Field(default=False, description="Also write logs to a rotating file")
    log_directory: str = Field(default="logs", description="Directory for log files")
    log_file_max_bytes: int = Field(default=10_485_760, description="Rotate log files at this size")
    log_file_backup_count: int = Field(default=5, description="Rotated log files to keep")
    log_error_file_enabled: bool = Field(
        default=True, description="Write WARNING+ records to a separate error log"
    )

    # Application being packaged / updated
    binary_name: str = Field(default="fleet-agent", description="Executable name")
    app_version: str = Field(default="0.1.0", description="Declared semantic version to package")

    # Packaging workspace
    workspace_dir: str = Field(
        default="~/.shipwright/releases", description="Packaging workspace root"
    )
    manifest_root: str = Field(
        default="~/.shipwright/releases/channels",
        description="Directory holding one manifest sub-directory per channel",
    )
    download_base_url: str = Field(
        default="https://updates.example.com",
        description="Public base URL that channel directories are served from",
    )
    build_command: str | None = Field(
        default=None, description="Opaque build command producing the binary"
    )
    build_output: str | None = Field(
        default=None, description="Path of the binary the build command produces"
    )
    required_tools: Annotated[
        list[str],
        Field(default_factory=list, description="External tools that must be on PATH"),
    ]
    build_timeout: int = Field(default=1200, description="Build command timeout (seconds)")
    min_system_version: str = Field(default="1.0.0", description="Oldest client allowed to update")

    # Signing identity
    cert_country: str = Field(default="US", description="Certificate country (C)")
    cert_state: str = Field(default="State", description="Certificate state (ST)")
    cert_locality: str = Field(default="City", description="Certificate locality (L)")
    cert_organization: str = Field(default="Shipwright", description="Certificate organisation (O)")
    cert_common_name: str = Field(
        default="Shipwright Update Package", description="Certificate common name (CN)"
    )
    cert_validity_days: int = Field(default=365, description="Certificate validity in days")

    # Installation (client side)
    install_dir: str = Field(default="/opt/fleet-agent", description="Installation directory")
    state_dir: str = Field(
        default="~/.shipwright", description="Directory for backups and downloads"
    )
    trusted_certificate: str | None = Field(
        default=None, description="Pinned certificate used to verify release signatures"
    )
    update_url: str = Field(
        default="https://updates.example.com",
        description="Base URL (or local directory) serving <channel>/manifest.json",
    )
    update_channel: str = Field(default=DEFAULT_CHANNEL, description="Default update channel")
    signature_required: bool = Field(
        default=True, description="Treat a missing or invalid signature as fatal"
    )
    backup_retention: int | None = Field(
        default=5, description="Backups to keep; unset for unbounded retention"
    )

    # Timeouts (seconds)
    manifest_timeout: float = Field(default=30.0, description="Manifest fetch timeout")
    download_timeout: float = Field(default=600.0, description="Artifact download timeout")
    probe_timeout: float = Field(default=10.0, description="Binary --version probe timeout")
    termination_grace: float = Field(
        default=5.0, description="Grace period between SIGTERM and SIGKILL"
    )
    session_timeout: float = Field(default=1800.0, description="Overall update session timeout")

    @field_validator("update_channel")
    @classmethod
    def _known_channel(cls, value: str) -> str:
        value = value.lower()
        if value not in CHANNELS:
            raise ValueError(f"update_channel must be one of {', '.join(CHANNELS)}")
        return value

    @field_validator("backup_retention")
    @classmethod
    def _positive_retention(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("backup_retention must be at least 1")
        return value

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def log_file_path(self) -> str:
        return f"{self.log_directory}/shipwright.log"

    @property
    def error_log_file_path(self) -> str:
        return f"{self.log_directory}/shipwright_error.log"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
