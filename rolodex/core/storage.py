"""Artifact storage for uploaded import files, export files and audit archives."""

import logging
import os
import shutil
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import BinaryIO, Protocol

from rolodex.core.config import settings
from rolodex.core.exceptions import StorageError

logger = logging.getLogger(__name__)


class Storage(Protocol):
    def exists(self, path: str) -> bool: ...

    def get(self, path: str) -> bytes: ...

    def put(self, path: str, content: bytes) -> None: ...

    def put_stream(self, path: str, stream: BinaryIO) -> None: ...

    def open(self, path: str) -> BinaryIO: ...

    def delete(self, path: str) -> bool: ...

    def files(self, prefix: str) -> list[str]: ...

    def size(self, path: str) -> int: ...

    def last_modified(self, path: str) -> datetime: ...


class LocalStorage:
    """Filesystem storage rooted at a single directory.

    Paths are relative, ``/``-separated and may not escape the root.
    """

    def __init__(self, root: str | os.PathLike[str]):
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        full = (self.root / path.lstrip("/")).resolve()
        if full != self.root and self.root not in full.parents:
            raise StorageError(f"Path escapes storage root: {path}")
        return full

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def get(self, path: str) -> bytes:
        try:
            return self._resolve(path).read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    def put(self, path: str, content: bytes) -> None:
        full = self._resolve(path)
        try:
            full.parent.mkdir(parents=True, exist_ok=True)
            full.write_bytes(content)
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}") from e

    def put_stream(self, path: str, stream: BinaryIO) -> None:
        """Copy a binary stream into storage without loading it into memory."""
        full = self._resolve(path)
        try:
            full.parent.mkdir(parents=True, exist_ok=True)
            with open(full, "wb") as f:
                shutil.copyfileobj(stream, f)
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}") from e

    def open(self, path: str) -> BinaryIO:
        try:
            return open(self._resolve(path), "rb")
        except OSError as e:
            raise StorageError(f"Failed to open {path}: {e}") from e

    def delete(self, path: str) -> bool:
        full = self._resolve(path)
        if not full.is_file():
            return False
        try:
            full.unlink()
        except OSError as e:
            raise StorageError(f"Failed to delete {path}: {e}") from e
        return True

    def files(self, prefix: str) -> list[str]:
        base = self._resolve(prefix) if prefix else self.root
        if not base.is_dir():
            return []
        return sorted(str(p.relative_to(self.root).as_posix()) for p in _walk(base))

    def size(self, path: str) -> int:
        try:
            return self._resolve(path).stat().st_size
        except OSError as e:
            raise StorageError(f"Failed to stat {path}: {e}") from e

    def last_modified(self, path: str) -> datetime:
        try:
            mtime = self._resolve(path).stat().st_mtime
        except OSError as e:
            raise StorageError(f"Failed to stat {path}: {e}") from e
        return datetime.fromtimestamp(mtime, UTC)


def _walk(base: Path) -> Iterator[Path]:
    for dirpath, _, filenames in os.walk(base):
        for name in filenames:
            yield Path(dirpath) / name


_storage: Storage | None = None


def get_storage() -> Storage:
    """Return the process-wide storage backend."""
    global _storage
    if _storage is None:
        _storage = LocalStorage(settings.APP_DATA_PATH)
        logger.debug("Using local storage at %s", settings.APP_DATA_PATH)
    return _storage


def set_storage(storage: Storage | None) -> None:
    global _storage
    _storage = storage
