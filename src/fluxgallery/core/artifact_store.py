"""Artifact and metadata-sidecar persistence under per-owner namespaces.

Object layout
-------------
::

    users/{owner_id}/{id}.{webp|jpg}          generated artifact
    users/{owner_id}/images/{id}.{webp|jpg}   legacy grouping, listed too
    users/{owner_id}/metadata/{id}.json       sidecar (empty body, record in
                                              the ``json`` custom attribute)

``id`` is a millisecond timestamp and is the sole join key between an
artifact and its sidecar.

Write ordering
--------------
:meth:`ArtifactStore.persist` writes the sidecar first and only then fetches
and writes the artifact.  A failure in between leaves an orphaned sidecar
rather than an artifact without provenance.  This is best-effort, not
transactional: orphaned sidecars are reported by
:meth:`ArtifactStore.find_orphan_metadata` and removed only on request by
:meth:`ArtifactStore.prune_orphan_metadata`.

Id allocation
-------------
Ids are strictly increasing per store instance, and an id is bumped past any
sidecar or artifact already present for the owner, so two saves landing in
the same millisecond cannot overwrite each other.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import io
import logging
import re
import time
from collections.abc import Callable
from typing import Union

import httpx
import pydantic
from PIL import Image

from .errors import (
    GalleryListError,
    StorageReadError,
    StorageWriteError,
    ValidationError,
)
from .object_store import ObjectStore
from .records import MetadataRecord, PersistResult, StoredArtifact

logger = logging.getLogger(__name__)

ARTIFACT_EXTENSIONS = (".jpg", ".webp")
NESTED_GROUPINGS = ("images",)
METADATA_ATTRIBUTE = "json"

_OWNER_ID_RE = re.compile(r"^[A-Za-z0-9_.@-]{1,128}$")
_CONTENT_TYPES = {"webp": "image/webp", "jpg": "image/jpeg"}

ArtifactSource = Union[bytes, str]


def validate_owner_id(owner_id: str | None) -> str:
    """Check that an owner id is usable as a single namespace segment.

    Raises:
        ValidationError: If the id is empty or contains unsafe characters.
    """
    if not owner_id or owner_id in (".", "..") or not _OWNER_ID_RE.match(owner_id):
        raise ValidationError(f"Invalid owner id: {owner_id!r}")
    return owner_id


def artifact_format(locator: str) -> str:
    """Derive the stored format from an artifact locator."""
    return "webp" if "webp" in locator.lower() else "jpg"


def _probe_dimensions(data: bytes) -> dict[str, str]:
    """Return width/height attributes when the payload decodes as an image."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            width, height = image.size
    except (OSError, ValueError) as e:
        logger.debug(f"Artifact payload is not a decodable image: {e}")
        return {}
    return {"width": str(width), "height": str(height)}


class ArtifactStore:
    """Write and enumerate generated artifacts and their metadata sidecars.

    Args:
        store: Backing object store.
        timeout: Upper bound in seconds for each store call and download.
        clock: Time source returning seconds (injectable for tests).
        transport: Optional httpx transport used for artifact downloads.
    """

    def __init__(
        self,
        store: ObjectStore,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.store = store
        self.timeout = timeout
        self._clock = clock
        self._transport = transport
        self._last_id = 0

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @staticmethod
    def owner_prefix(owner_id: str) -> str:
        return f"users/{owner_id}"

    @classmethod
    def metadata_path(cls, owner_id: str, artifact_id: int | str) -> str:
        return f"{cls.owner_prefix(owner_id)}/metadata/{artifact_id}.json"

    @classmethod
    def artifact_path(cls, owner_id: str, artifact_id: int | str, fmt: str) -> str:
        return f"{cls.owner_prefix(owner_id)}/{artifact_id}.{fmt}"

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    def _next_id(self) -> int:
        now = int(self._clock() * 1000)
        self._last_id = max(now, self._last_id + 1)
        return self._last_id

    async def _allocate_id(self, owner_id: str) -> int:
        artifact_id = self._next_id()
        while await self._id_taken(owner_id, artifact_id):
            logger.debug(f"Artifact id {artifact_id} already used by {owner_id}, bumping")
            artifact_id = self._next_id()
        return artifact_id

    async def _id_taken(self, owner_id: str, artifact_id: int) -> bool:
        candidates = [self.metadata_path(owner_id, artifact_id)] + [
            self.artifact_path(owner_id, artifact_id, fmt) for fmt in _CONTENT_TYPES
        ]
        for path in candidates:
            if await asyncio.wait_for(self.store.exists(path), self.timeout):
                return True
        return False

    async def _fetch_artifact(self, artifact: ArtifactSource) -> bytes:
        """Turn an artifact source into storable bytes.

        Accepts raw bytes, ``data:`` URLs, and ``http(s)`` URLs.
        """
        if isinstance(artifact, (bytes, bytearray)):
            return bytes(artifact)

        if artifact.startswith("data:"):
            header, _, encoded = artifact.partition(",")
            try:
                if header.endswith(";base64"):
                    return base64.b64decode(encoded, validate=True)
                return encoded.encode("utf-8")
            except binascii.Error as e:
                raise StorageWriteError(f"Invalid base64 data URL: {e}") from e

        if artifact.startswith(("http://", "https://")):
            try:
                async with httpx.AsyncClient(
                    transport=self._transport, timeout=self.timeout, follow_redirects=True
                ) as client:
                    response = await client.get(artifact)
                    response.raise_for_status()
                    return response.content
            except httpx.HTTPError as e:
                raise StorageWriteError(f"Failed to download {artifact}: {e}") from e

        raise StorageWriteError(f"Unsupported artifact locator: {artifact[:64]!r}")

    async def persist(
        self,
        owner_id: str,
        artifact: ArtifactSource,
        metadata: MetadataRecord,
    ) -> PersistResult:
        """Store an artifact and its metadata sidecar.

        The metadata ``timestamp`` is replaced with the newly allocated id.
        The sidecar is written and awaited before the artifact is fetched and
        written.

        Args:
            owner_id: Owner namespace.
            artifact: Artifact bytes, or a URL/data URL locating it.
            metadata: Record describing the generation.

        Returns:
            The id and both object paths.

        Raises:
            ValidationError: If ``owner_id`` is not a valid namespace segment.
            StorageWriteError: If either write, or fetching the artifact, fails.
        """
        owner_id = validate_owner_id(owner_id)
        locator = artifact if isinstance(artifact, str) else (metadata.image_url or "")
        fmt = artifact_format(locator)

        try:
            artifact_id = await self._allocate_id(owner_id)
            record = metadata.model_copy(update={"timestamp": artifact_id}, deep=True)
            metadata_path = self.metadata_path(owner_id, artifact_id)
            artifact_path = self.artifact_path(owner_id, artifact_id, fmt)

            await asyncio.wait_for(
                self.store.put(metadata_path, b"", {METADATA_ATTRIBUTE: record.to_json()}),
                self.timeout,
            )
            logger.info(f"Metadata saved at: {metadata_path}")

            data = await self._fetch_artifact(artifact)
            attributes = {"contentType": _CONTENT_TYPES[fmt], **_probe_dimensions(data)}
            await asyncio.wait_for(self.store.put(artifact_path, data, attributes), self.timeout)
            logger.info(f"Artifact saved at: {artifact_path} ({len(data)} bytes)")
        except StorageWriteError:
            raise
        except Exception as e:
            raise StorageWriteError(f"Failed to persist artifact for {owner_id}: {e}") from e

        return PersistResult(
            artifact_id=artifact_id,
            artifact_path=artifact_path,
            metadata_path=metadata_path,
        )

    async def try_persist(
        self,
        owner_id: str,
        artifact: ArtifactSource,
        metadata: MetadataRecord,
    ) -> PersistResult | None:
        """Like :meth:`persist`, but log failures and return ``None``.

        Used where a generation result has already been produced and must be
        returned to the user whether or not saving it succeeds.
        """
        try:
            return await self.persist(owner_id, artifact, metadata)
        except (StorageWriteError, ValidationError) as e:
            logger.error(f"Error saving artifact for {owner_id}: {e}", exc_info=True)
            return None

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def list(self, owner_id: str) -> list[StoredArtifact]:
        """Enumerate the owner's artifacts.

        Covers objects directly under the owner prefix plus one level of
        ``images/`` groupings, filtered to ``.jpg`` and ``.webp``.  Order is
        the backing store's listing order.

        Raises:
            ValidationError: If the owner id is invalid.
            GalleryListError: If enumeration fails.
        """
        owner_id = validate_owner_id(owner_id)
        try:
            prefix = self.owner_prefix(owner_id)
            root = await asyncio.wait_for(self.store.list(prefix), self.timeout)
            refs = [*root.items]
            for group in root.prefixes:
                if group.name in NESTED_GROUPINGS:
                    nested = await asyncio.wait_for(self.store.list(group.path), self.timeout)
                    refs.extend(nested.items)
        except Exception as e:
            raise GalleryListError(f"Failed to list artifacts for {owner_id}: {e}") from e

        logger.debug(f"Found {len(refs)} objects for {owner_id}")

        artifacts = []
        for ref in refs:
            if not ref.name.endswith(ARTIFACT_EXTENSIONS):
                continue
            artifact_id, _, extension = ref.name.rpartition(".")
            artifacts.append(
                StoredArtifact(
                    path=ref.path,
                    name=ref.name,
                    artifact_id=artifact_id,
                    format=extension,
                )
            )
        return artifacts

    async def read_metadata(self, owner_id: str, artifact_id: str) -> MetadataRecord:
        """Load and parse the sidecar for ``artifact_id``.

        Raises:
            ObjectNotFoundError: If the sidecar does not exist.
            StorageReadError: If it carries no record or the record is malformed.
        """
        path = self.metadata_path(owner_id, artifact_id)
        info = await asyncio.wait_for(self.store.get_info(path), self.timeout)
        raw = info.custom_metadata.get(METADATA_ATTRIBUTE)
        if raw is None:
            raise StorageReadError(f"Sidecar {path} carries no metadata record")
        if not isinstance(raw, str):
            raise StorageReadError(f"Malformed metadata record in {path}: not a string")
        try:
            return MetadataRecord.model_validate_json(raw)
        except pydantic.ValidationError as e:
            raise StorageReadError(f"Malformed metadata record in {path}: {e}") from e

    async def find_orphan_metadata(self, owner_id: str) -> list[str]:
        """Return sidecar ids that have no matching artifact.

        Raises:
            GalleryListError: If either listing fails.
        """
        artifact_ids = {artifact.artifact_id for artifact in await self.list(owner_id)}
        try:
            listing = await asyncio.wait_for(
                self.store.list(f"{self.owner_prefix(owner_id)}/metadata"), self.timeout
            )
        except Exception as e:
            raise GalleryListError(f"Failed to list metadata for {owner_id}: {e}") from e

        orphans = []
        for ref in listing.items:
            if not ref.name.endswith(".json"):
                continue
            metadata_id = ref.name[: -len(".json")]
            if metadata_id not in artifact_ids:
                orphans.append(metadata_id)
        return sorted(orphans)

    async def prune_orphan_metadata(self, owner_id: str, grace_seconds: float) -> list[str]:
        """Delete orphaned sidecars older than ``grace_seconds``.

        The grace window keeps sidecars whose artifact write may still be in
        flight.  Non-numeric ids are never pruned.

        Returns:
            Ids of the sidecars that were removed.
        """
        cutoff = int((self._clock() - grace_seconds) * 1000)
        removed = []
        for metadata_id in await self.find_orphan_metadata(owner_id):
            if not metadata_id.isdigit() or int(metadata_id) > cutoff:
                continue
            try:
                await asyncio.wait_for(
                    self.store.delete(self.metadata_path(owner_id, metadata_id)), self.timeout
                )
            except StorageReadError as e:
                logger.warning(f"Orphaned metadata {metadata_id} vanished before pruning: {e}")
                continue
            removed.append(metadata_id)
        if removed:
            logger.info(f"Pruned {len(removed)} orphaned metadata records for {owner_id}")
        return removed
