from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Generic, Protocol, TypeVar

import anyio
import msgspec

from ...logging import get_logger

logger = get_logger(__name__)

__all__ = ["InMemStorage", "JsonFileStorage", "Storage"]

K = TypeVar("K")
S = TypeVar("S")

STATE_VERSION = 1


class Storage(Protocol[K, S]):
    async def get(self, key: K) -> S | None: ...

    async def set(self, key: K, state: S) -> None: ...

    async def remove(self, key: K) -> S | None: ...


class InMemStorage(Generic[K, S]):
    def __init__(self) -> None:
        self._lock = anyio.Lock()
        self._map: dict[K, S] = {}

    async def get(self, key: K) -> S | None:
        async with self._lock:
            return self._map.get(key)

    async def set(self, key: K, state: S) -> None:
        async with self._lock:
            self._map[key] = state

    async def remove(self, key: K) -> S | None:
        async with self._lock:
            return self._map.pop(key, None)

    def __len__(self) -> int:
        return len(self._map)


class JsonFileStorage(Generic[K, S]):
    """Dialogue states persisted to a single JSON file.

    ``state_type`` is usually a union of tagged ``State`` structs. The file is
    rewritten atomically on every change and reloaded when another process
    modifies it.
    """

    def __init__(
        self,
        path: Path,
        *,
        state_type: Any,
        key_type: Any = int,
    ) -> None:
        self._path = path
        self._lock = anyio.Lock()
        self._decoder = msgspec.json.Decoder(_file_type(key_type, state_type))
        self._encoder = msgspec.json.Encoder()
        self._states: dict[K, S] = {}
        self._loaded = False
        self._mtime_ns: int | None = None

    @property
    def path(self) -> Path:
        return self._path

    async def get(self, key: K) -> S | None:
        async with self._lock:
            self._reload_locked_if_needed()
            return self._states.get(key)

    async def set(self, key: K, state: S) -> None:
        async with self._lock:
            self._reload_locked_if_needed()
            self._states[key] = state
            self._save_locked()

    async def remove(self, key: K) -> S | None:
        async with self._lock:
            self._reload_locked_if_needed()
            state = self._states.pop(key, None)
            if state is not None:
                self._save_locked()
            return state

    def _stat_mtime_ns(self) -> int | None:
        try:
            return self._path.stat().st_mtime_ns
        except FileNotFoundError:
            return None

    def _reload_locked_if_needed(self) -> None:
        current = self._stat_mtime_ns()
        if self._loaded and current == self._mtime_ns:
            return
        self._load_locked()

    def _load_locked(self) -> None:
        self._loaded = True
        self._mtime_ns = self._stat_mtime_ns()
        if self._mtime_ns is None:
            self._states = {}
            return
        try:
            raw = self._path.read_bytes()
        except OSError as exc:
            logger.warning(
                "dialogue.storage.load_failed",
                path=str(self._path),
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            self._states = {}
            return
        try:
            payload = self._decoder.decode(raw)
        except msgspec.DecodeError as exc:
            logger.warning(
                "dialogue.storage.load_failed",
                path=str(self._path),
                error=str(exc),
                error_type=exc.__class__.__name__,
                moved_to=str(self._set_aside_locked()),
            )
            self._states = {}
            return
        if payload.version != STATE_VERSION:
            logger.warning(
                "dialogue.storage.version_mismatch",
                path=str(self._path),
                version=payload.version,
                expected=STATE_VERSION,
                moved_to=str(self._set_aside_locked()),
            )
            self._states = {}
            return
        self._states = payload.dialogues

    def _set_aside_locked(self) -> Path:
        # keep unreadable contents; the next save starts a fresh file
        backup = self._path.with_name(f"{self._path.name}.{self._mtime_ns}.bad")
        os.replace(self._path, backup)
        self._mtime_ns = None
        return backup

    def _save_locked(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(f"{self._path.suffix}.tmp")
        payload = {"version": STATE_VERSION, "dialogues": self._states}
        tmp_path.write_bytes(self._encoder.encode(payload))
        os.replace(tmp_path, self._path)
        self._mtime_ns = self._stat_mtime_ns()


def _file_type(key_type: Any, state_type: Any) -> Any:
    return msgspec.defstruct(
        "_DialogueFile",
        [("version", int), ("dialogues", dict[key_type, state_type])],
        forbid_unknown_fields=False,
    )
