"""Key-addressed object storage for the cold archive."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from .models import ObjectInfo


class ObjectStore(ABC):
    """Interface for the archive bucket.

    Implementations:
        - LocalObjectStore: a directory tree on the local filesystem
    """

    @abstractmethod
    def list(self, prefix: str, limit: int) -> list[ObjectInfo]:
        """Objects under prefix in key order, at most `limit` of them."""

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Object body. Raises KeyError when the key does not exist."""

    @abstractmethod
    def put(self, key: str, body: bytes) -> None:
        """Write an object. Existing keys are overwritten."""


class LocalObjectStore(ObjectStore):
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise ValueError(f"key escapes archive root: {key}")
        return path

    def list(self, prefix: str, limit: int) -> list[ObjectInfo]:
        if not self.root.is_dir():
            return []
        keys = sorted(
            p.relative_to(self.root).as_posix()
            for p in self.root.rglob("*")
            if p.is_file()
        )
        return [
            ObjectInfo(key=key, size=(self.root / key).stat().st_size)
            for key in keys
            if key.startswith(prefix)
        ][:limit]

    def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise KeyError(key)
        return path.read_bytes()

    def put(self, key: str, body: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(body)
