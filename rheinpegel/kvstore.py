"""
Key-value persistence backends for the history store.

A backend holds string values under string keys, in the manner of browser
localStorage:
- FileKeyValueStore: JSON file with atomic writes and a byte quota
- BrowserKeyValueStore: js.window.localStorage under Pyodide
- MemoryKeyValueStore: process-local dict, optional quota

Also provides the best-effort single-writer lock for the file backend
(fcntl on Unix, no-op elsewhere).
"""

from __future__ import annotations

import contextlib
import errno
import json
import logging
import os
from pathlib import Path
from typing import Iterator, Protocol

try:
    import fcntl  # type: ignore[import]
except ImportError:  # pragma: no cover
    fcntl = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the persistence layer fails."""


class StorageQuotaError(StorageError):
    """Raised when a write would exceed the backend's capacity."""


class StorageUnavailableError(StorageError):
    """Raised when the backend cannot be reached at all."""


class StateLockError(Exception):
    """Raised when the state file is locked by another process."""


class KeyValueStore(Protocol):
    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """In-process store; `quota_bytes` caps the UTF-8 size of all values."""

    def __init__(self, quota_bytes: int | None = None) -> None:
        self.quota_bytes = quota_bytes
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self.quota_bytes is not None:
            others = sum(len(v.encode("utf-8")) for k, v in self._items.items() if k != key)
            if others + len(value.encode("utf-8")) > self.quota_bytes:
                raise StorageQuotaError(f"quota of {self.quota_bytes} bytes exceeded")
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class FileKeyValueStore:
    """
    All keys live in one JSON object on disk.

    Writes go to a sibling `.tmp` file that replaces the target, so readers
    never see a partial document.
    """

    def __init__(self, path: Path | str, quota_bytes: int | None = None) -> None:
        self.path = Path(path)
        self.quota_bytes = quota_bytes

    def _read_all(self) -> dict[str, str]:
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("State file is not valid UTF-8 JSON; treating as empty", extra={"url": str(self.path)})
            return {}
        except OSError as exc:
            raise StorageUnavailableError(f"cannot read {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(k, str) and isinstance(v, str)}

    def _write_all(self, items: dict[str, str]) -> None:
        payload = json.dumps(items, separators=(",", ":"), sort_keys=True)
        if self.quota_bytes is not None and len(payload.encode("utf-8")) > self.quota_bytes:
            raise StorageQuotaError(f"quota of {self.quota_bytes} bytes exceeded")

        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as fh:
                fh.write(payload)
            tmp_path.replace(self.path)
        except OSError as exc:
            with contextlib.suppress(OSError):
                tmp_path.unlink()
            if exc.errno in (errno.ENOSPC, errno.EDQUOT):
                raise StorageQuotaError(f"no space left writing {self.path}") from exc
            raise StorageUnavailableError(f"cannot write {self.path}: {exc}") from exc

    def get_item(self, key: str) -> str | None:
        return self._read_all().get(key)

    def set_item(self, key: str, value: str) -> None:
        items = self._read_all()
        items[key] = value
        self._write_all(items)

    def remove_item(self, key: str) -> None:
        items = self._read_all()
        if key in items:
            del items[key]
            self._write_all(items)


class BrowserKeyValueStore:
    """window.localStorage, reachable only inside Pyodide."""

    def __init__(self, storage=None) -> None:
        if storage is None:
            try:
                import js  # type: ignore[import]
            except ImportError as exc:
                raise StorageUnavailableError("localStorage requires a Pyodide/browser runtime") from exc
            storage = js.window.localStorage
        self._storage = storage

    def get_item(self, key: str) -> str | None:
        try:
            value = self._storage.getItem(key)
        except Exception as exc:  # JS errors arrive as JsException
            raise StorageUnavailableError(str(exc)) from exc
        return None if value is None else str(value)

    def set_item(self, key: str, value: str) -> None:
        try:
            self._storage.setItem(key, value)
        except Exception as exc:  # JS errors arrive as JsException
            if "QuotaExceeded" in str(exc) or getattr(exc, "name", None) == "QuotaExceededError":
                raise StorageQuotaError(str(exc)) from exc
            raise StorageUnavailableError(str(exc)) from exc

    def remove_item(self, key: str) -> None:
        try:
            self._storage.removeItem(key)
        except Exception as exc:  # JS errors arrive as JsException
            raise StorageUnavailableError(str(exc)) from exc


LOCK_SUFFIX = ".lock"


def lock_path_for(state_path: Path) -> Path:
    """Sibling lock file for a state file: history.json -> history.json.lock."""
    return state_path.with_name(state_path.name + LOCK_SUFFIX)


@contextlib.contextmanager
def _held_flock(lock_path: Path) -> Iterator[None]:
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    # Opened without truncation; only the holder rewrites the pid.
    with lock_path.open("a+", encoding="utf-8") as fh:
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            fh.seek(0)
            holder = fh.read().strip() or "unknown"
            raise StateLockError(
                f"{lock_path} is locked by another rheinpegel process (pid {holder})"
            ) from exc
        fh.seek(0)
        fh.truncate()
        fh.write(f"{os.getpid()}\n")
        fh.flush()
        logger.debug("Acquired state lock", extra={"url": str(lock_path)})
        try:
            yield
        finally:
            fcntl.flock(fh.fileno(), fcntl.LOCK_UN)


def state_lock(state_path: Path | str | None) -> contextlib.AbstractContextManager:
    """
    Hold the single-writer lock for `state_path` while the context is open.

    The lock file records the holder's pid, which a second process reports in
    its StateLockError. Without a path, or without fcntl (Windows, Pyodide),
    this is a no-op.
    """
    if state_path is None or fcntl is None:
        return contextlib.nullcontext()
    return _held_flock(lock_path_for(Path(state_path).expanduser()))


def open_store(kind: str, state_file: str | None = None, quota_bytes: int | None = None) -> KeyValueStore:
    """Build the backend named by `kind` ('file', 'memory' or 'browser')."""
    if kind == "memory":
        return MemoryKeyValueStore(quota_bytes=quota_bytes)
    if kind == "browser":
        return BrowserKeyValueStore()
    if kind == "file":
        if not state_file:
            raise StorageUnavailableError("file storage needs a state file path")
        return FileKeyValueStore(Path(state_file).expanduser(), quota_bytes=quota_bytes)
    raise ValueError(f"unknown storage backend: {kind}")
