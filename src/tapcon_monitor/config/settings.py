"""Settings and configuration management for tapcon monitor."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

CONTAINER_DIR = "containers"
IMAGE_DIR = "image"
IMAGE_REPO_FILE = "repositories.json"
IMAGE_CONTENT_DIR = "imagedb/content/sha256"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="TAPCON_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime state layout
    docker_root: str = Field(
        default="/var/lib/docker",
        description="Root of the container runtime's on-disk state",
    )

    image_driver: str = Field(
        default="overlay2",
        description="Image store driver directory under <docker_root>/image",
    )

    # Reconciliation timing
    rescan_interval_s: float = Field(
        default=60.0,
        gt=0,
        description="Interval in seconds between full directory rescans",
    )

    refresh_interval_s: float = Field(
        default=300.0,
        ge=0,
        description="Minimum interval in seconds between principal refreshes per container",
    )

    # Static port pool
    static_port_base: int = Field(
        default=15000,
        gt=0,
        description="First port of the static port range pool",
    )

    static_port_max: int = Field(
        default=35000,
        gt=0,
        description="End (exclusive) of the static port range pool",
    )

    port_per_container: int = Field(
        default=100,
        gt=0,
        description="Number of ports in each static slot",
    )

    # Metadata service
    metadata_address: str = Field(
        default="169.254.169.254",
        description="Host (and optional port) of the metadata service",
    )

    metadata_protocol: Literal["http", "https"] = Field(
        default="http",
        description="Scheme used to reach the metadata service",
    )

    metadata_timeout_s: float = Field(
        default=10.0,
        gt=0,
        description="Transport timeout in seconds for each metadata call",
    )

    # Host integration
    ipshow_command: str = Field(
        default="ipshow",
        description="Helper printing '<iface> <ip>' lines for a network namespace path",
    )

    sandbox_mode: Literal["iptables", "dry-run"] = Field(
        default="iptables",
        description="Packet filter backend (iptables, or dry-run to only log commands)",
    )

    docker_host: str | None = Field(
        default=None,
        description="Docker daemon host URL (defaults to Docker's standard detection)",
    )

    drain_grace_s: float = Field(
        default=10.0,
        ge=0,
        description="Grace period in seconds for container workers during shutdown",
    )

    # Observability
    metrics_port: int | None = Field(
        default=None,
        description="Port for the Prometheus metrics endpoint (disabled when unset)",
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    log_format: str = Field(
        default="json",
        description="Log format (json or text)",
    )

    @property
    def container_root(self) -> Path:
        """Directory holding one subdirectory per container."""
        return Path(self.docker_root).absolute() / CONTAINER_DIR

    @property
    def image_root(self) -> Path:
        """Directory holding the image repository index and metadata store."""
        return Path(self.docker_root).absolute() / IMAGE_DIR / self.image_driver

    @property
    def image_repo_file(self) -> Path:
        """Path of the image repository index file."""
        return self.image_root / IMAGE_REPO_FILE

    @property
    def image_content_root(self) -> Path:
        """Content-addressed image metadata store."""
        return self.image_root / IMAGE_CONTENT_DIR

    @property
    def metadata_base_url(self) -> str:
        """Base URL of the metadata service."""
        return f"{self.metadata_protocol}://{self.metadata_address}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
