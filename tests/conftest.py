"""Shared pytest fixtures for Flux Gallery tests."""

import base64
import io
import shutil
import tempfile
from pathlib import Path
from typing import Any, Generator

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from fluxgallery.api.main import create_app
from fluxgallery.core.artifact_store import ArtifactStore
from fluxgallery.core.config import GalleryConfig
from fluxgallery.core.errors import ProviderError
from fluxgallery.core.gallery import GalleryReconstructor
from fluxgallery.core.object_store import MemoryObjectStore
from fluxgallery.core.records import MetadataRecord


WEBP_DATA_URL = "data:image/webp;base64," + base64.b64encode(b"RIFF\x10\x00\x00\x00WEBPVP8 ").decode()


class FakeProvider:
    """Generation provider double that records every call.

    Args:
        url: Locator returned on success.
        error: If set, raised instead of returning.
    """

    def __init__(self, url: str = WEBP_DATA_URL, error=None):
        self.url = url
        self.error = error
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def invoke(self, model_id: str, parameters: dict[str, Any]) -> str:
        self.calls.append((model_id, dict(parameters)))
        if self.error is not None:
            raise self.error
        return self.url


class SteppingClock:
    """Clock that advances by ``step`` seconds on every call."""

    def __init__(self, start: float = 1_700_000_000.0, step: float = 0.0):
        self.now = start
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path, monkeypatch) -> GalleryConfig:
    """Create a test configuration isolated from the environment.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        GalleryConfig instance for testing
    """
    monkeypatch.delenv("REPLICATE_API_TOKEN", raising=False)
    return GalleryConfig(
        _env_file=None,
        storage_backend="local",
        storage_dir=temp_dir / "storage",
        public_base_url="http://testserver",
        replicate_api_token="r8_test",
        storage_timeout=5.0,
        orphan_grace_seconds=300,
    )


@pytest.fixture
def memory_store() -> MemoryObjectStore:
    """Empty in-memory object store."""
    return MemoryObjectStore()


@pytest.fixture
def clock() -> SteppingClock:
    """Deterministic clock starting at a fixed instant."""
    return SteppingClock()


@pytest.fixture
def artifact_store(memory_store: MemoryObjectStore, clock: SteppingClock) -> ArtifactStore:
    """ArtifactStore over the in-memory store with a fixed clock."""
    return ArtifactStore(memory_store, timeout=5.0, clock=clock)


@pytest.fixture
def reconstructor(artifact_store: ArtifactStore) -> GalleryReconstructor:
    """GalleryReconstructor over the shared artifact store."""
    return GalleryReconstructor(artifact_store, timeout=5.0)


@pytest.fixture
def fake_provider() -> FakeProvider:
    """Provider double returning a webp data URL, so saving needs no network."""
    return FakeProvider()


@pytest.fixture
def failing_provider() -> FakeProvider:
    """Provider double that fails with a structured upstream error."""
    return FakeProvider(
        error=ProviderError(
            "Invalid token",
            detail={"status": 401, "detail": "Invalid token"},
        )
    )


@pytest.fixture
def png_bytes() -> bytes:
    """A small, decodable PNG payload."""
    buffer = io.BytesIO()
    Image.new("RGB", (64, 48), color=(255, 0, 0)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def sample_metadata() -> MetadataRecord:
    """Metadata record as produced by a flux-pro generation."""
    return MetadataRecord(
        prompt="A futuristic cityscape at sunset",
        model="black-forest-labs/flux-1.1-pro",
        parameters={
            "aspect_ratio": "1:1",
            "output_format": "webp",
            "output_quality": 80,
            "safety_tolerance": 2,
            "prompt_upsampling": True,
        },
        timestamp=0,
        image_url="https://replicate.delivery/out/image.webp",
    )


@pytest.fixture
def test_client(test_config: GalleryConfig, memory_store, fake_provider) -> TestClient:
    """TestClient over an app wired to the fake provider and in-memory store."""
    app = create_app(test_config, provider=fake_provider, object_store=memory_store)
    with TestClient(app) as client:
        yield client
