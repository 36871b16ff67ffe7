"""Explicit wiring of the core services.

A :class:`GalleryContext` is built once at startup from a
:class:`~fluxgallery.core.config.GalleryConfig` and passed by reference to
whatever needs it (the FastAPI app keeps it on ``app.state``).  Nothing in the
core holds module-level clients.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .artifact_store import ArtifactStore
from .config import GalleryConfig
from .gallery import GalleryReconstructor
from .object_store import LocalObjectStore, MemoryObjectStore, ObjectStore
from .orchestrator import GenerationOrchestrator, GenerationResult
from .profiles import ProfileRegistry, default_registry
from .provider import GenerationProvider, ReplicateProvider
from .records import MetadataRecord, PersistResult

logger = logging.getLogger(__name__)


@dataclass
class GalleryContext:
    """Everything a request handler needs, constructed once."""

    config: GalleryConfig
    registry: ProfileRegistry
    orchestrator: GenerationOrchestrator
    artifacts: ArtifactStore
    gallery: GalleryReconstructor

    async def save_generation(self, owner_id: str, result: GenerationResult) -> PersistResult | None:
        """Persist a generation result for ``owner_id`` without ever raising.

        Returns:
            The written paths, or ``None`` if saving failed (already logged).
        """
        metadata = MetadataRecord(
            prompt=result.prompt,
            model=result.model,
            parameters=result.parameters,
            timestamp=0,
            image_url=result.url,
        )
        return await self.artifacts.try_persist(owner_id, result.url, metadata)


def build_object_store(config: GalleryConfig) -> ObjectStore:
    """Create the object store selected by ``config.storage_backend``."""
    if config.storage_backend == "memory":
        return MemoryObjectStore()
    return LocalObjectStore(config.storage_dir, config.files_base_url)


def build_context(
    config: GalleryConfig,
    *,
    provider: GenerationProvider | None = None,
    object_store: ObjectStore | None = None,
    registry: ProfileRegistry | None = None,
) -> GalleryContext:
    """Wire the registry, orchestrator, artifact store and reconstructor.

    Args:
        config: Application configuration.
        provider: Generation provider; defaults to :class:`ReplicateProvider`.
        object_store: Backing store; defaults to the configured backend.
        registry: Profile registry; defaults to the built-in profiles.
    """
    if provider is None:
        provider = ReplicateProvider(
            api_token=config.replicate_api_token,
            base_url=config.replicate_api_url,
            timeout=config.provider_timeout,
            poll_interval=config.provider_poll_interval,
        )
        logger.info(
            f"Using Replicate provider (token configured: {bool(config.replicate_api_token)})"
        )
    if object_store is None:
        object_store = build_object_store(config)

    artifacts = ArtifactStore(object_store, timeout=config.storage_timeout)
    return GalleryContext(
        config=config,
        registry=registry or default_registry(),
        orchestrator=GenerationOrchestrator(provider),
        artifacts=artifacts,
        gallery=GalleryReconstructor(artifacts, timeout=config.storage_timeout),
    )
