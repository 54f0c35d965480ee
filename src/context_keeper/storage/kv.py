"""Key-value storage for shared JSON documents (search index, pattern cache).

Every write goes to a temporary file in the target directory and is then
moved into place with ``os.replace``, so concurrent readers see either the
previous or the new document, never a partial one. Writers that read,
modify and save a shared document hold ``lock(key)`` for the whole cycle.
"""

import fcntl
import json
import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, ContextManager, Iterator

from context_keeper.errors import StorageError
from context_keeper.logging import get_logger

logger = get_logger("kv")

_UNSAFE_KEY = re.compile(r"[^A-Za-z0-9._-]")


def lock_path_for(path: Path) -> Path:
    return path.with_name(f".{path.name}.lock")


@contextmanager
def file_lock(path: Path) -> Iterator[None]:
    """Hold an exclusive lock on the sidecar lock file of ``path``.

    The lock is advisory and shared by every process and thread that goes
    through this function for the same path.

    Raises:
        StorageError: If the lock file cannot be opened
    """
    lock_path = lock_path_for(path)
    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        f = open(lock_path, "a")
    except OSError as e:
        raise StorageError(f"Cannot open lock file {lock_path}: {e}") from e

    with f:
        fcntl.flock(f.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(f.fileno(), fcntl.LOCK_UN)


def write_json_atomic(path: Path, data: Any) -> None:
    """Serialize ``data`` to ``path`` atomically.

    Raises:
        StorageError: If the document cannot be written; ``path`` is untouched
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    except OSError as e:
        raise StorageError(f"Cannot prepare write to {path}: {e}") from e

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except (OSError, TypeError, ValueError) as e:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise StorageError(f"Failed to write {path}: {e}") from e


def read_json(path: Path) -> Any | None:
    """Load a JSON document, returning None when it is missing or unreadable."""
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning("Unreadable document: path=%s error=%s", path, e)
        return None


class KeyValueStore(ABC):
    """Minimal get/put store for JSON-serializable documents."""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Return the document stored under ``key``, or None."""
        ...

    @abstractmethod
    def put(self, key: str, value: Any) -> None:
        """Replace the document stored under ``key``."""
        ...

    @abstractmethod
    def lock(self, key: str) -> ContextManager[Any]:
        """Context manager giving exclusive read-modify-write access to ``key``."""
        ...


class JsonFileStore(KeyValueStore):
    """One JSON file per key under a directory."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def path_for(self, key: str) -> Path:
        return self.root / f"{_UNSAFE_KEY.sub('_', key)}.json"

    def get(self, key: str) -> Any | None:
        return read_json(self.path_for(key))

    def put(self, key: str, value: Any) -> None:
        path = self.path_for(key)
        write_json_atomic(path, value)
        logger.debug("Stored document: key=%s path=%s", key, path)

    def lock(self, key: str) -> ContextManager[Any]:
        return file_lock(self.path_for(key))


class MemoryStore(KeyValueStore):
    """In-process store, mostly for tests."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def put(self, key: str, value: Any) -> None:
        # Stored serialized so callers cannot mutate the stored copy
        self._data[key] = json.dumps(value)

    def lock(self, key: str) -> ContextManager[Any]:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())
