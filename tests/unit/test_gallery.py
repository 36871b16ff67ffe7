"""Tests for fluxgallery.core.gallery — gallery reconstruction.

Tests cover:
- Round trip from persist() to reconstruct().
- Fallback metadata for orphaned and malformed sidecars.
- Dropping artifacts whose URL cannot be resolved.
- Sort order, tie handling, and idempotence.
- Fatal enumeration failures.
"""

from __future__ import annotations

import asyncio
import json
import time

import pytest

from fluxgallery.core.artifact_store import ArtifactStore
from fluxgallery.core.errors import GalleryListError, StorageReadError
from fluxgallery.core.gallery import GalleryReconstructor, summarize
from fluxgallery.core.object_store import LocalObjectStore, MemoryObjectStore
from fluxgallery.core.records import (
    FALLBACK_MODEL,
    FALLBACK_PROMPT,
    GalleryEntry,
    MetadataRecord,
)


def _sidecar(prompt: str, timestamp: int, model: str = "black-forest-labs/flux-1.1-pro") -> dict:
    """Build the custom attributes of a valid sidecar."""
    record = {
        "prompt": prompt,
        "model": model,
        "parameters": {"aspect_ratio": "1:1"},
        "timestamp": timestamp,
        "imageUrl": f"https://replicate.delivery/{timestamp}.webp",
    }
    return {"json": json.dumps(record)}


class UnresolvableStore(MemoryObjectStore):
    """Memory store whose download URLs fail for selected paths."""

    def __init__(self, broken: set[str]):
        super().__init__()
        self.broken = broken

    async def download_url(self, path):
        if path in self.broken:
            raise StorageReadError(f"permission denied: {path}")
        return await super().download_url(path)


class FailingListStore(MemoryObjectStore):
    async def list(self, prefix):
        raise TimeoutError("listing timed out")


class HangingStore(MemoryObjectStore):
    """Memory store whose calls never complete for selected paths."""

    def __init__(self, hang_info: set[str] = frozenset(), hang_urls: set[str] = frozenset()):
        super().__init__()
        self.hang_info = hang_info
        self.hang_urls = hang_urls

    async def get_info(self, path):
        if path in self.hang_info:
            await asyncio.sleep(60)
        return await super().get_info(path)

    async def download_url(self, path):
        if path in self.hang_urls:
            await asyncio.sleep(60)
        return await super().download_url(path)


class TestRoundTrip:
    """persist() followed by reconstruct()."""

    @pytest.mark.asyncio
    async def test_prompt_and_timestamp_survive(
        self, artifact_store, reconstructor, sample_metadata, png_bytes
    ):
        result = await artifact_store.persist("u1", png_bytes, sample_metadata)

        entries = await reconstructor.reconstruct("u1")

        assert len(entries) == 1
        entry = entries[0]
        assert entry.metadata.prompt == "A futuristic cityscape at sunset"
        assert entry.timestamp == result.artifact_id
        assert entry.metadata.timestamp == result.artifact_id
        assert entry.url == f"memory://users/u1/{result.artifact_id}.webp"
        assert entry.synthesized is False

    @pytest.mark.asyncio
    async def test_flux_pro_parameters_preserved(
        self, artifact_store, reconstructor, sample_metadata, png_bytes
    ):
        await artifact_store.persist("u1", png_bytes, sample_metadata)
        entries = await reconstructor.reconstruct("u1")
        assert entries[0].metadata.parameters == sample_metadata.parameters
        assert entries[0].metadata.image_url == sample_metadata.image_url


class TestFallback:
    """Missing or unreadable sidecars."""

    @pytest.mark.asyncio
    async def test_orphan_artifact_gets_fallback(self, memory_store, reconstructor):
        """users/u/100.jpg without a sidecar still appears, with defaults."""
        await memory_store.put("users/u/100.jpg", b"a")

        entries = await reconstructor.reconstruct("u")

        assert len(entries) == 1
        assert entries[0].metadata.prompt == FALLBACK_PROMPT
        assert entries[0].metadata.model == FALLBACK_MODEL
        assert entries[0].metadata.parameters == {}
        assert entries[0].timestamp == 100
        assert entries[0].synthesized is True

    @pytest.mark.asyncio
    async def test_non_numeric_id_uses_current_time(self, memory_store, reconstructor):
        await memory_store.put("users/u/sunset.webp", b"a")
        before = int(time.time() * 1000)

        entries = await reconstructor.reconstruct("u")

        assert entries[0].metadata.prompt == FALLBACK_PROMPT
        assert entries[0].timestamp >= before

    @pytest.mark.asyncio
    async def test_one_malformed_sidecar_among_many(self, memory_store, reconstructor):
        """A single malformed sidecar falls back; nothing is dropped."""
        for ts in (100, 200, 300, 400):
            await memory_store.put(f"users/u/{ts}.webp", b"a")
            await memory_store.put(f"users/u/metadata/{ts}.json", b"", _sidecar(f"p{ts}", ts))
        await memory_store.put("users/u/metadata/300.json", b"", {"json": "{broken"})

        entries = await reconstructor.reconstruct("u")

        assert len(entries) == 4
        prompts = {entry.timestamp: entry.metadata.prompt for entry in entries}
        assert prompts == {400: "p400", 300: FALLBACK_PROMPT, 200: "p200", 100: "p100"}

    @pytest.mark.asyncio
    async def test_sidecar_missing_required_field(self, memory_store, reconstructor):
        await memory_store.put("users/u/100.jpg", b"a")
        await memory_store.put(
            "users/u/metadata/100.json", b"", {"json": json.dumps({"prompt": "x"})}
        )
        entries = await reconstructor.reconstruct("u")
        assert entries[0].metadata.prompt == FALLBACK_PROMPT

    @pytest.mark.asyncio
    async def test_stored_timestamp_trusted_over_filename(self, memory_store, reconstructor):
        await memory_store.put("users/u/100.jpg", b"a")
        await memory_store.put("users/u/metadata/100.json", b"", _sidecar("x", 999))

        entries = await reconstructor.reconstruct("u")

        assert entries[0].timestamp == 999
        assert entries[0].metadata.prompt == "x"


class TestOrderingAndIsolation:
    """Sort invariant, tie handling, idempotence, and per-artifact isolation."""

    @pytest.mark.asyncio
    async def test_two_artifacts_scenario(self, memory_store, reconstructor):
        """200.webp with a sidecar, orphan 100.jpg -> [200 ("x"), 100 (fallback)]."""
        await memory_store.put("users/u2/200.webp", b"a")
        await memory_store.put("users/u2/metadata/200.json", b"", _sidecar("x", 200))
        await memory_store.put("users/u2/100.jpg", b"b")

        entries = await reconstructor.reconstruct("u2")

        assert [(e.timestamp, e.metadata.prompt) for e in entries] == [
            (200, "x"),
            (100, FALLBACK_PROMPT),
        ]

    @pytest.mark.asyncio
    async def test_sorted_newest_first(self, memory_store, reconstructor):
        for ts in (5, 300, 42, 1000, 7):
            await memory_store.put(f"users/u/{ts}.jpg", b"a")
        await memory_store.put("users/u/images/500.webp", b"a")

        entries = await reconstructor.reconstruct("u")

        timestamps = [e.timestamp for e in entries]
        assert timestamps == [1000, 500, 300, 42, 7, 5]
        assert all(a >= b for a, b in zip(timestamps, timestamps[1:]))

    @pytest.mark.asyncio
    async def test_ties_keep_enumeration_order(self, memory_store, reconstructor):
        """Equal timestamps keep the order the store listed them in."""
        await memory_store.put("users/u/a.jpg", b"a")
        await memory_store.put("users/u/metadata/a.json", b"", _sidecar("first", 50))
        await memory_store.put("users/u/b.jpg", b"b")
        await memory_store.put("users/u/metadata/b.json", b"", _sidecar("second", 50))

        entries = await reconstructor.reconstruct("u")

        assert [e.metadata.prompt for e in entries] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_idempotent(self, artifact_store, reconstructor, sample_metadata, png_bytes):
        await artifact_store.persist("u1", png_bytes, sample_metadata)
        await artifact_store.persist("u1", png_bytes, sample_metadata)

        first = await reconstructor.reconstruct("u1")
        second = await reconstructor.reconstruct("u1")

        assert first == second

    @pytest.mark.asyncio
    async def test_unresolvable_url_drops_only_that_artifact(self):
        store = UnresolvableStore(broken={"users/u/200.webp"})
        for ts in (100, 200, 300):
            await store.put(f"users/u/{ts}.webp", b"a")
        reconstructor = GalleryReconstructor(ArtifactStore(store))

        entries = await reconstructor.reconstruct("u")

        assert [e.timestamp for e in entries] == [300, 100]

    @pytest.mark.asyncio
    async def test_empty_gallery(self, reconstructor):
        assert await reconstructor.reconstruct("nobody") == []

    @pytest.mark.asyncio
    async def test_enumeration_failure_is_fatal(self):
        reconstructor = GalleryReconstructor(ArtifactStore(FailingListStore()))
        with pytest.raises(GalleryListError):
            await reconstructor.reconstruct("u")


class TestCorruptAndSlowStores:
    """Corrupted attributes and hanging store calls."""

    @pytest.mark.asyncio
    async def test_corrupt_local_attributes_fall_back(self, temp_dir):
        """Attributes that are valid JSON but not an object still yield an entry."""
        store = LocalObjectStore(temp_dir, "http://testserver/files")
        for ts in (100, 200):
            await store.put(f"users/u/{ts}.jpg", b"a")
            await store.put(f"users/u/metadata/{ts}.json", b"", _sidecar(f"p{ts}", ts))
        attrs_file = temp_dir / ".attrs" / "users" / "u" / "metadata" / "100.json.json"
        attrs_file.write_text('["corrupt"]')

        entries = await GalleryReconstructor(ArtifactStore(store)).reconstruct("u")

        assert [e.timestamp for e in entries] == [200, 100]
        assert entries[0].metadata.prompt == "p200"
        assert entries[1].metadata.prompt == FALLBACK_PROMPT
        assert entries[1].synthesized is True

    @pytest.mark.asyncio
    async def test_non_string_record_falls_back(self, memory_store, reconstructor):
        await memory_store.put("users/u/100.jpg", b"a")
        await memory_store.put("users/u/metadata/100.json", b"", {"json": ["corrupt"]})

        entries = await reconstructor.reconstruct("u")

        assert len(entries) == 1
        assert entries[0].synthesized is True

    @pytest.mark.asyncio
    async def test_hanging_metadata_read_falls_back(self):
        store = HangingStore(hang_info={"users/u/metadata/100.json"})
        for ts in (100, 200):
            await store.put(f"users/u/{ts}.webp", b"a")
            await store.put(f"users/u/metadata/{ts}.json", b"", _sidecar(f"p{ts}", ts))
        artifacts = ArtifactStore(store, timeout=0.05)

        entries = await GalleryReconstructor(artifacts, timeout=0.05).reconstruct("u")

        assert [(e.timestamp, e.metadata.prompt) for e in entries] == [
            (200, "p200"),
            (100, FALLBACK_PROMPT),
        ]
        assert entries[1].synthesized is True

    @pytest.mark.asyncio
    async def test_hanging_download_url_drops_only_that_artifact(self):
        store = HangingStore(hang_urls={"users/u/200.webp"})
        for ts in (100, 200, 300):
            await store.put(f"users/u/{ts}.webp", b"a")
        artifacts = ArtifactStore(store, timeout=0.05)

        entries = await GalleryReconstructor(artifacts, timeout=0.05).reconstruct("u")

        assert [e.timestamp for e in entries] == [300, 100]


class TestSummarize:
    """Test summarize()."""

    def test_counts_per_model(self):
        def entry(ts, model, synthesized=False):
            record = MetadataRecord(prompt="p", model=model, timestamp=ts)
            return GalleryEntry(url="u", metadata=record, timestamp=ts, synthesized=synthesized)

        stats = summarize([entry(1, "a"), entry(2, "a"), entry(3, FALLBACK_MODEL, True)])

        assert stats == {
            "total_images": 3,
            "with_metadata": 2,
            "model_counts": {"a": 2, FALLBACK_MODEL: 1},
        }
