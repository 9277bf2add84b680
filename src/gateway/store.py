"""
Durable object store implementations.

- ``VolumeObjectStore``: objects are files in a Modal Volume, keyed by path
- ``MemoryObjectStore``: process-local dict, for tests and dry runs
"""

import asyncio
import io

import modal
from modal.exception import NotFoundError
from modal.volume import FileEntryType

from .types import ObjectInfo


class StoredBlob:
    """Object body returned by ``get``."""

    def __init__(self, key: str, data: bytes):
        self.key = key
        self._data = data

    async def read(self) -> bytes:
        return self._data

    async def text(self) -> str:
        return self._data.decode("utf-8")


def _encode(data: bytes | str) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else bytes(data)


class MemoryObjectStore:
    """In-memory store with the same surface as the durable one."""

    def __init__(self, objects: dict[str, bytes] | None = None):
        self.objects: dict[str, bytes] = dict(objects or {})

    async def put(self, key: str, data: bytes | str) -> None:
        self.objects[key] = _encode(data)

    async def get(self, key: str) -> StoredBlob | None:
        if key not in self.objects:
            return None
        return StoredBlob(key, self.objects[key])

    async def list(self) -> list[ObjectInfo]:
        return [ObjectInfo(key=key, size=len(data)) for key, data in sorted(self.objects.items())]


class VolumeObjectStore:
    """Store backed by a Modal Volume. Keys map to paths under the volume root.

    The Modal client is blocking, so calls run in a worker thread.
    """

    def __init__(self, volume: modal.Volume):
        self.volume = volume

    @classmethod
    def from_name(cls, name: str) -> "VolumeObjectStore":
        return cls(modal.Volume.from_name(name, create_if_missing=True))

    def _put(self, key: str, data: bytes) -> None:
        with self.volume.batch_upload(force=True) as batch:
            batch.put_file(io.BytesIO(data), f"/{key}")

    def _get(self, key: str) -> bytes | None:
        try:
            return b"".join(self.volume.read_file(f"/{key}"))
        except (FileNotFoundError, NotFoundError):
            return None

    def _list(self) -> list[ObjectInfo]:
        entries = self.volume.listdir("/", recursive=True)
        return [
            ObjectInfo(key=entry.path.lstrip("/"), size=entry.size)
            for entry in entries
            if entry.type == FileEntryType.FILE
        ]

    async def put(self, key: str, data: bytes | str) -> None:
        await asyncio.to_thread(self._put, key, _encode(data))

    async def get(self, key: str) -> StoredBlob | None:
        data = await asyncio.to_thread(self._get, key)
        return None if data is None else StoredBlob(key, data)

    async def list(self) -> list[ObjectInfo]:
        return await asyncio.to_thread(self._list)
