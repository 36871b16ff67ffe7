"""Hierarchical object store with per-object custom attributes.

The artifact store and the gallery reconstructor only ever talk to an
:class:`ObjectStore`, which models a bucket-style namespace:

- objects are addressed by ``/``-separated paths (``users/u1/123.webp``)
- every object may carry a small mapping of string custom attributes
- listing is one level deep and returns both objects and sub-prefixes
- every object resolves to a fetchable download URL

Two backends are provided:

``LocalObjectStore``
    Objects are files under a root directory.  Custom attributes live in a
    parallel ``.attrs/`` tree (one JSON file per object) so they never show up
    as objects themselves.  Download URLs point at the FastAPI static mount.
    Blocking file I/O runs in a worker thread.

``MemoryObjectStore``
    Dictionary-backed store used for tests and ephemeral deployments.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import quote

from .errors import ObjectNotFoundError, StorageReadError, StorageWriteError

logger = logging.getLogger(__name__)

ATTRS_DIR = ".attrs"


def normalize_path(path: str) -> str:
    """Normalize an object path and reject traversal.

    Raises:
        ValueError: If the path is empty or contains ``.``/``..`` segments.
    """
    parts = [p for p in path.strip("/").split("/") if p]
    if not parts or any(p in (".", "..") for p in parts) or parts[0] == ATTRS_DIR:
        raise ValueError(f"Invalid object path: {path!r}")
    return "/".join(parts)


@dataclass(frozen=True)
class ObjectRef:
    """Reference to an object or a prefix in the store."""

    path: str

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]


@dataclass(frozen=True)
class ObjectInfo:
    """Attributes of a stored object."""

    path: str
    size: int
    custom_metadata: dict[str, str] = field(default_factory=dict)
    updated: float = 0.0

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]


@dataclass
class ListResult:
    """One level of a listing: objects directly under the prefix and sub-prefixes."""

    items: list[ObjectRef] = field(default_factory=list)
    prefixes: list[ObjectRef] = field(default_factory=list)


class ObjectStore(ABC):
    """Abstract async object store."""

    @abstractmethod
    async def put(
        self, path: str, data: bytes, custom_metadata: dict[str, str] | None = None
    ) -> ObjectInfo:
        """Create or replace an object.

        Raises:
            StorageWriteError: If the write fails.
        """

    @abstractmethod
    async def get_info(self, path: str) -> ObjectInfo:
        """Return an object's attributes.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """

    @abstractmethod
    async def read(self, path: str) -> bytes:
        """Return an object's content.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """

    @abstractmethod
    async def list(self, prefix: str) -> ListResult:
        """List one level under ``prefix``.  A missing prefix lists as empty."""

    @abstractmethod
    async def download_url(self, path: str) -> str:
        """Return a fetchable URL for an object.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Delete an object.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """

    async def exists(self, path: str) -> bool:
        try:
            await self.get_info(path)
        except ObjectNotFoundError:
            return False
        return True


class MemoryObjectStore(ObjectStore):
    """In-process object store keyed by path."""

    def __init__(self, base_url: str = "memory://") -> None:
        self.base_url = base_url
        self._objects: dict[str, tuple[bytes, dict[str, str], float]] = {}

    async def put(
        self, path: str, data: bytes, custom_metadata: dict[str, str] | None = None
    ) -> ObjectInfo:
        path = normalize_path(path)
        if path in self._prefix_paths():
            raise StorageWriteError(f"Path is a prefix: {path}")
        attrs = dict(custom_metadata or {})
        updated = time.time()
        self._objects[path] = (bytes(data), attrs, updated)
        return ObjectInfo(path=path, size=len(data), custom_metadata=attrs, updated=updated)

    async def get_info(self, path: str) -> ObjectInfo:
        path = normalize_path(path)
        if path not in self._objects:
            raise ObjectNotFoundError(path)
        data, attrs, updated = self._objects[path]
        return ObjectInfo(path=path, size=len(data), custom_metadata=dict(attrs), updated=updated)

    async def read(self, path: str) -> bytes:
        path = normalize_path(path)
        if path not in self._objects:
            raise ObjectNotFoundError(path)
        return self._objects[path][0]

    async def list(self, prefix: str) -> ListResult:
        prefix = normalize_path(prefix)
        result = ListResult()
        seen_prefixes: set[str] = set()
        for path in sorted(self._objects):
            if not path.startswith(prefix + "/"):
                continue
            rest = path[len(prefix) + 1 :]
            if "/" in rest:
                child = f"{prefix}/{rest.split('/', 1)[0]}"
                if child not in seen_prefixes:
                    seen_prefixes.add(child)
                    result.prefixes.append(ObjectRef(child))
            else:
                result.items.append(ObjectRef(path))
        return result

    async def download_url(self, path: str) -> str:
        path = normalize_path(path)
        if path not in self._objects:
            raise ObjectNotFoundError(path)
        return f"{self.base_url}{quote(path)}"

    async def delete(self, path: str) -> None:
        path = normalize_path(path)
        if self._objects.pop(path, None) is None:
            raise ObjectNotFoundError(path)

    def _prefix_paths(self) -> set[str]:
        prefixes = set()
        for path in self._objects:
            parts = path.split("/")
            for i in range(1, len(parts)):
                prefixes.add("/".join(parts[:i]))
        return prefixes


class LocalObjectStore(ObjectStore):
    """Filesystem-backed object store.

    Args:
        root: Directory holding the objects.
        base_url: URL prefix under which ``root`` is served.
    """

    def __init__(self, root: Path, base_url: str) -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    def _file(self, path: str) -> Path:
        return self.root / normalize_path(path)

    def _attrs_file(self, path: str) -> Path:
        return self.root / ATTRS_DIR / f"{normalize_path(path)}.json"

    # -- blocking helpers, run via asyncio.to_thread --------------------------

    def _put_sync(self, path: str, data: bytes, attrs: dict[str, str]) -> ObjectInfo:
        target = self._file(path)
        attrs_target = self._attrs_file(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
            attrs_target.parent.mkdir(parents=True, exist_ok=True)
            with open(attrs_target, "w", encoding="utf-8") as handle:
                json.dump(attrs, handle)
        except OSError as e:
            raise StorageWriteError(f"Failed to write {path}: {e}") from e
        return ObjectInfo(
            path=normalize_path(path),
            size=len(data),
            custom_metadata=attrs,
            updated=target.stat().st_mtime,
        )

    def _info_sync(self, path: str) -> ObjectInfo:
        target = self._file(path)
        if not target.is_file():
            raise ObjectNotFoundError(normalize_path(path))

        attrs: dict[str, str] = {}
        attrs_target = self._attrs_file(path)
        if attrs_target.exists():
            try:
                with open(attrs_target, encoding="utf-8") as handle:
                    attrs = json.load(handle)
            except (OSError, ValueError) as e:
                raise StorageReadError(f"Failed to read attributes of {path}: {e}") from e
            if not isinstance(attrs, dict):
                raise StorageReadError(f"Attributes of {path} are not a JSON object")

        stat = target.stat()
        return ObjectInfo(
            path=normalize_path(path),
            size=stat.st_size,
            custom_metadata=attrs,
            updated=stat.st_mtime,
        )

    def _read_sync(self, path: str) -> bytes:
        target = self._file(path)
        if not target.is_file():
            raise ObjectNotFoundError(normalize_path(path))
        try:
            return target.read_bytes()
        except OSError as e:
            raise StorageReadError(f"Failed to read {path}: {e}") from e

    def _list_sync(self, prefix: str) -> ListResult:
        prefix = normalize_path(prefix)
        directory = self.root / prefix
        result = ListResult()
        if not directory.is_dir():
            return result
        try:
            children = sorted(directory.iterdir())
        except OSError as e:
            raise StorageReadError(f"Failed to list {prefix}: {e}") from e
        for child in children:
            if child.name.startswith("."):
                continue
            ref = ObjectRef(f"{prefix}/{child.name}")
            if child.is_dir():
                result.prefixes.append(ref)
            else:
                result.items.append(ref)
        return result

    def _delete_sync(self, path: str) -> None:
        target = self._file(path)
        if not target.is_file():
            raise ObjectNotFoundError(normalize_path(path))
        target.unlink()
        self._attrs_file(path).unlink(missing_ok=True)

    # -- async interface -----------------------------------------------------

    async def put(
        self, path: str, data: bytes, custom_metadata: dict[str, str] | None = None
    ) -> ObjectInfo:
        return await asyncio.to_thread(self._put_sync, path, bytes(data), dict(custom_metadata or {}))

    async def get_info(self, path: str) -> ObjectInfo:
        return await asyncio.to_thread(self._info_sync, path)

    async def read(self, path: str) -> bytes:
        return await asyncio.to_thread(self._read_sync, path)

    async def list(self, prefix: str) -> ListResult:
        return await asyncio.to_thread(self._list_sync, prefix)

    async def download_url(self, path: str) -> str:
        exists = await asyncio.to_thread(self._file(path).is_file)
        if not exists:
            raise ObjectNotFoundError(normalize_path(path))
        return f"{self.base_url}/{quote(normalize_path(path))}"

    async def delete(self, path: str) -> None:
        await asyncio.to_thread(self._delete_sync, path)
