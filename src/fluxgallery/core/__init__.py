"""Core services for Flux Gallery.

- **config.py**: Environment-based configuration using Pydantic Settings
- **profiles.py**: Provider profiles and the profile registry
- **provider.py**: Generation provider contract and the Replicate client
- **orchestrator.py**: Request validation, parameter merging, provider call
- **object_store.py**: Hierarchical object store backends
- **artifact_store.py**: Artifact and metadata-sidecar persistence
- **gallery.py**: Gallery reconstruction with fallback metadata
- **context.py**: Explicit wiring of the above
"""

from fluxgallery.core.artifact_store import ArtifactStore
from fluxgallery.core.config import GalleryConfig
from fluxgallery.core.context import GalleryContext, build_context
from fluxgallery.core.gallery import GalleryReconstructor
from fluxgallery.core.orchestrator import GenerationOrchestrator, GenerationResult
from fluxgallery.core.profiles import ProfileRegistry, ProviderProfile, default_registry

__all__ = [
    "ArtifactStore",
    "GalleryConfig",
    "GalleryContext",
    "GalleryReconstructor",
    "GenerationOrchestrator",
    "GenerationResult",
    "ProfileRegistry",
    "ProviderProfile",
    "build_context",
    "default_registry",
]
