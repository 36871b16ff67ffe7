"""Configuration management for Flux Gallery.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the FLUXGALLERY_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (FLUXGALLERY_* prefix)
2. .env file in the project root
3. Default values defined in GalleryConfig

The provider credential is also accepted under its conventional name,
``REPLICATE_API_TOKEN``, so an existing Replicate setup works unchanged.

Example .env file:
    REPLICATE_API_TOKEN=r8_...
    FLUXGALLERY_STORAGE_BACKEND=local
    FLUXGALLERY_STORAGE_DIR=storage
    FLUXGALLERY_PUBLIC_BASE_URL=https://gallery.example.com

No Global Instance
------------------
Unlike a module-level singleton, a :class:`GalleryConfig` is built once by the
application factory (:func:`fluxgallery.api.main.create_app`) and passed by
reference into the context objects that need it.

Usage Example
-------------
    from fluxgallery.core.config import GalleryConfig

    config = GalleryConfig(storage_backend="memory")
    print(config.provider_timeout)

Directory Management
--------------------
When the local storage backend is selected the configuration creates
``storage_dir`` on initialization so the static file mount always has a
directory to serve from.
"""

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class GalleryConfig(BaseSettings):
    """Main configuration for Flux Gallery.

    Attributes
    ----------
    Provider Settings:
        replicate_api_token : str | None
            Bearer token for the Replicate API
        replicate_api_url : str
            Base URL of the Replicate HTTP API
        provider_timeout : float
            Upper bound in seconds for one generation call, polling included
        provider_poll_interval : float
            Delay in seconds between prediction status polls

    Storage Settings:
        storage_backend : Literal["local", "memory"]
            Object store implementation
        storage_dir : Path
            Root directory of the local object store
        public_base_url : str
            Externally reachable base URL of this server
        files_mount : str
            Path under which local objects are served
        storage_timeout : float
            Upper bound in seconds for one object-store or download call
        orphan_grace_seconds : int
            Minimum age before orphaned metadata may be pruned

    Server Settings:
        server_host : str
            Server bind address
        server_port : int
            Server port (1024-65535)
        log_level : str
            Root logging level
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FLUXGALLERY_",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Provider settings
    replicate_api_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "replicate_api_token",
            "FLUXGALLERY_REPLICATE_API_TOKEN",
            "REPLICATE_API_TOKEN",
        ),
        description="Bearer token for the Replicate API",
    )
    replicate_api_url: str = Field(
        default="https://api.replicate.com/v1",
        description="Base URL of the Replicate HTTP API",
    )
    provider_timeout: float = Field(
        default=120.0,
        description="Upper bound in seconds for one generation call",
        gt=0,
    )
    provider_poll_interval: float = Field(
        default=1.0,
        description="Delay in seconds between prediction status polls",
        gt=0,
    )

    # Storage settings
    storage_backend: Literal["local", "memory"] = Field(
        default="local",
        description="Object store implementation (local filesystem or in-memory)",
    )
    storage_dir: Path = Field(
        default=Path("storage"),
        description="Root directory of the local object store",
    )
    public_base_url: str = Field(
        default="http://localhost:7860",
        description="Externally reachable base URL used to build artifact URLs",
    )
    files_mount: str = Field(
        default="/files",
        description="Path under which local objects are served",
    )
    storage_timeout: float = Field(
        default=30.0,
        description="Upper bound in seconds for one object-store or download call",
        gt=0,
    )
    orphan_grace_seconds: int = Field(
        default=300,
        description="Minimum age before orphaned metadata may be pruned",
        ge=0,
    )

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=7860,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: str = Field(
        default="INFO",
        description="Root logging level",
    )

    def __init__(self, **kwargs):
        """Initialize configuration and create the storage directory.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        if self.storage_backend == "local":
            self.storage_dir.mkdir(parents=True, exist_ok=True)

    @property
    def files_base_url(self) -> str:
        """Return the absolute URL prefix for locally served objects."""
        return self.public_base_url.rstrip("/") + "/" + self.files_mount.strip("/")
