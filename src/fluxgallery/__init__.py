"""Flux Gallery - hosted image generation with a per-user persistent gallery."""

__version__ = "0.1.0"

from fluxgallery.core.config import GalleryConfig
from fluxgallery.core.profiles import ProfileRegistry, ProviderProfile, default_registry

__all__ = [
    "GalleryConfig",
    "ProfileRegistry",
    "ProviderProfile",
    "default_registry",
]
