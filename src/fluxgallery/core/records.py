"""Persisted and reconstructed gallery records.

Models
------
MetadataRecord
    The JSON document stored in an artifact's metadata sidecar.  Its
    ``timestamp`` equals the artifact id and is the only join key between
    the two.
StoredArtifact
    One artifact found while enumerating an owner's namespace.
PersistResult
    Paths written by :meth:`ArtifactStore.persist`.
GalleryEntry
    Transient join of an artifact URL with its (possibly synthesized)
    metadata.  Rebuilt on every listing, never persisted.
"""

from __future__ import annotations

import time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

FALLBACK_PROMPT = "No prompt available"
FALLBACK_MODEL = "Unknown model"

ArtifactFormat = Literal["webp", "jpg"]


class MetadataRecord(BaseModel):
    """Sidecar metadata describing the request that produced an artifact.

    Attributes:
        prompt: Prompt used for the generation.
        model: Canonical provider model id.
        parameters: Snapshot of the parameters used (prompt excluded).
        timestamp: Millisecond id shared with the artifact.
        image_url: Locator returned by the provider (``imageUrl`` on the wire).
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    prompt: str
    model: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    timestamp: int
    image_url: str | None = Field(default=None, alias="imageUrl")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def fallback(cls, artifact_id: str) -> MetadataRecord:
        """Synthesize a record for an artifact whose sidecar is missing or unreadable.

        The timestamp is the numeric artifact id when it parses as an integer,
        otherwise the current time in milliseconds.
        """
        try:
            timestamp = int(artifact_id)
        except ValueError:
            timestamp = int(time.time() * 1000)
        return cls(
            prompt=FALLBACK_PROMPT,
            model=FALLBACK_MODEL,
            parameters={},
            timestamp=timestamp,
        )


class StoredArtifact(BaseModel):
    """An artifact object found under an owner's namespace."""

    model_config = ConfigDict(frozen=True)

    path: str
    name: str
    artifact_id: str
    format: ArtifactFormat


class PersistResult(BaseModel):
    """Where :meth:`ArtifactStore.persist` wrote the artifact and its sidecar."""

    model_config = ConfigDict(frozen=True)

    artifact_id: int
    artifact_path: str
    metadata_path: str


class GalleryEntry(BaseModel):
    """One reconstructed gallery item."""

    url: str
    metadata: MetadataRecord
    timestamp: int
    path: str | None = None
    synthesized: bool = False
