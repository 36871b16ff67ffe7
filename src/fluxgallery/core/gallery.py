"""Per-owner gallery reconstruction.

The gallery is never stored as a document of its own.  Every listing joins the
owner's artifacts with their metadata sidecars:

1. enumerate artifacts through :meth:`ArtifactStore.list` (fatal on failure)
2. for every artifact, concurrently: resolve a download URL, then read its
   sidecar, falling back to a synthesized record when the sidecar is missing
   or unreadable
3. wait for every task, success or failure, without short-circuiting
4. sort newest first

An artifact whose download URL cannot be resolved is dropped from the listing.
Sidecar problems never drop an artifact.  Entries with equal timestamps keep
their enumeration order (``sorted`` is stable).
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter

from .artifact_store import ArtifactStore
from .errors import ObjectNotFoundError, StorageReadError
from .records import GalleryEntry, MetadataRecord, StoredArtifact

logger = logging.getLogger(__name__)


class GalleryReconstructor:
    """Rebuild an owner's gallery from stored artifacts and sidecars.

    Args:
        artifacts: Store used for enumeration and sidecar lookups.
        timeout: Upper bound in seconds for each per-artifact store call.
    """

    def __init__(self, artifacts: ArtifactStore, timeout: float = 30.0) -> None:
        self.artifacts = artifacts
        self.timeout = timeout

    async def _load_metadata(self, owner_id: str, artifact: StoredArtifact) -> MetadataRecord | None:
        """Return the stored record, or ``None`` when the fallback should be used."""
        try:
            return await asyncio.wait_for(
                self.artifacts.read_metadata(owner_id, artifact.artifact_id), self.timeout
            )
        except ObjectNotFoundError:
            logger.info(f"No metadata found for image: {artifact.artifact_id}")
        except (StorageReadError, asyncio.TimeoutError) as e:
            logger.warning(f"Unreadable metadata for image {artifact.artifact_id}: {e}")
        return None

    async def _build_entry(self, owner_id: str, artifact: StoredArtifact) -> GalleryEntry:
        url = await asyncio.wait_for(
            self.artifacts.store.download_url(artifact.path), self.timeout
        )

        record = await self._load_metadata(owner_id, artifact)
        synthesized = record is None
        if record is None:
            record = MetadataRecord.fallback(artifact.artifact_id)

        return GalleryEntry(
            url=url,
            metadata=record,
            timestamp=record.timestamp,
            path=artifact.path,
            synthesized=synthesized,
        )

    async def reconstruct(self, owner_id: str) -> list[GalleryEntry]:
        """Return the owner's gallery, newest first.

        Args:
            owner_id: Owner namespace to reconstruct.

        Returns:
            Gallery entries sorted by ``timestamp`` descending.

        Raises:
            ValidationError: If the owner id is invalid.
            GalleryListError: If the artifacts cannot be enumerated.
        """
        stored = await self.artifacts.list(owner_id)
        logger.info(f"Reconstructing gallery for {owner_id}: {len(stored)} artifacts")

        outcomes = await asyncio.gather(
            *(self._build_entry(owner_id, artifact) for artifact in stored),
            return_exceptions=True,
        )

        entries: list[GalleryEntry] = []
        for artifact, outcome in zip(stored, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.warning(f"Error processing image {artifact.path}: {outcome!r}")
                continue
            entries.append(outcome)

        dropped = len(stored) - len(entries)
        if dropped:
            logger.warning(f"Dropped {dropped} unresolvable artifacts for {owner_id}")

        return sorted(entries, key=lambda entry: entry.timestamp, reverse=True)


def summarize(entries: list[GalleryEntry]) -> dict:
    """Return gallery statistics.

    Returns:
        Dictionary with ``total_images``, ``with_metadata`` and
        ``model_counts`` (a mapping of model id to count).
    """
    model_counts = Counter(entry.metadata.model for entry in entries)
    return {
        "total_images": len(entries),
        "with_metadata": sum(1 for entry in entries if not entry.synthesized),
        "model_counts": dict(model_counts),
    }
