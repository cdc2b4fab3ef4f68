"""Durable key-value storage for on-device round state.

Values are text (JSON-encoded records). The file backend writes every value
through a temporary file and ``os.replace`` so readers never observe a
half-written record.
"""

from __future__ import annotations

import contextlib
import os
import re
import threading
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Dict, Protocol

import anyio

from roundkeeper.errors import StorageError

__all__ = [
    "KeyValueStore",
    "FileKeyValueStore",
    "InMemoryKeyValueStore",
    "checkpoint_key",
    "holes_key",
    "CURRENT_ROUND_KEY",
]

CURRENT_ROUND_KEY = "currentRound"
_SAFE_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


def checkpoint_key(round_id: str) -> str:
    return f"round_completion_checkpoint_{round_id}"


def holes_key(round_id: str) -> str:
    return f"round_{round_id}_holes"


class KeyValueStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def put(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...


def _sanitize_key(key: str) -> str:
    """Restrict keys to filesystem-safe characters to prevent path traversal."""

    if not key or not _SAFE_KEY_RE.match(key) or key in {".", ".."}:
        raise StorageError(f"Invalid storage key: {key!r}")
    return key


class FileKeyValueStore:
    def __init__(self, base_dir: Path | str) -> None:
        self._base_dir = Path(base_dir).expanduser().resolve()
        self._lock = threading.Lock()

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def _path(self, key: str) -> Path:
        return self._base_dir / f"{_sanitize_key(key)}.json"

    async def get(self, key: str) -> str | None:
        path = self._path(key)
        return await anyio.to_thread.run_sync(self._read, path)

    async def put(self, key: str, value: str) -> None:
        path = self._path(key)
        await anyio.to_thread.run_sync(self._write, path, value)

    async def delete(self, key: str) -> None:
        path = self._path(key)
        await anyio.to_thread.run_sync(self._unlink, path)

    def _read(self, path: Path) -> str | None:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"failed to read {path.name}: {exc}") from exc

    def _write(self, path: Path, value: str) -> None:
        with self._lock:
            temp_name: str | None = None
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                with NamedTemporaryFile(
                    "w", dir=path.parent, delete=False, encoding="utf-8"
                ) as tmp:
                    temp_name = tmp.name
                    tmp.write(value)
                    tmp.flush()
                    os.fsync(tmp.fileno())
                os.replace(temp_name, path)
            except OSError as exc:
                if temp_name is not None:
                    with contextlib.suppress(OSError):
                        os.unlink(temp_name)
                raise StorageError(f"failed to write {path.name}: {exc}") from exc

    def _unlink(self, path: Path) -> None:
        with self._lock:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                raise StorageError(f"failed to delete {path.name}: {exc}") from exc


class InMemoryKeyValueStore:
    def __init__(self, initial: Dict[str, str] | None = None) -> None:
        self._values: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    async def get(self, key: str) -> str | None:
        with self._lock:
            return self._values.get(key)

    async def put(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    async def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._values)
