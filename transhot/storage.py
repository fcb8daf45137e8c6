"""
Key-value storage collaborator.

Mirrors the get / set / change-notification contract of an extension storage
area. MemoryStore keeps values in process; JsonFileStore also writes every
change to a JSON document on disk.
"""

import asyncio
import copy
import inspect
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from .errors import StorageError

logger = logging.getLogger(__name__)

PROCESSED_HASHES_KEY = "processed_hashes"
VISION_RESULTS_KEY = "vision_results"
TRANSLATION_RESULTS_KEY = "translation_results"
TRANSLATION_CONTEXTS_KEY = "translation_contexts"
IMAGE_META_KEY = "image_meta"
CREDENTIALS_KEY = "vision_credentials"
CREDENTIALS_NAME_KEY = "vision_credentials_name"
CHAT_KEY_KEY = "chat_api_key"
CHAT_MODEL_KEY = "chat_model"
CONTEXT_MODEL_KEY = "context_model"
CONTEXT_ENABLED_KEY = "context_enabled"
TARGET_LANGUAGE_KEY = "target_language"
DEBUG_MODE_KEY = "debug_mode"

RESULT_KEYS = (
    PROCESSED_HASHES_KEY,
    VISION_RESULTS_KEY,
    TRANSLATION_RESULTS_KEY,
    TRANSLATION_CONTEXTS_KEY,
    IMAGE_META_KEY,
)


@dataclass(frozen=True)
class StorageChange:
    old_value: Any
    new_value: Any


ChangeListener = Callable[[dict[str, StorageChange]], Union[None, Awaitable[None]]]


class KeyValueStore(ABC):
    """Abstract storage area with change notifications."""

    def __init__(self):
        self._listeners: list[ChangeListener] = []

    @abstractmethod
    async def get(self, keys: Union[str, Iterable[str], None] = None) -> dict[str, Any]:
        """Return stored values for keys (all values when keys is None); missing keys are omitted."""

    @abstractmethod
    async def set(self, items: dict[str, Any]) -> None:
        """Store values and notify listeners about the keys that changed."""

    @abstractmethod
    async def remove(self, keys: Union[str, Iterable[str]]) -> None:
        """Delete keys and notify listeners."""

    def on_change(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _notify(self, changes: dict[str, StorageChange]) -> None:
        if not changes:
            return
        for listener in list(self._listeners):
            result = listener(changes)
            if inspect.isawaitable(result):
                await result


def _normalize_keys(keys: Union[str, Iterable[str], None]) -> Optional[list[str]]:
    if keys is None:
        return None
    if isinstance(keys, str):
        return [keys]
    return list(keys)


class MemoryStore(KeyValueStore):
    """In-process store. Values are deep-copied in and out."""

    def __init__(self, initial: Optional[dict[str, Any]] = None):
        super().__init__()
        self._data: dict[str, Any] = copy.deepcopy(initial or {})

    async def get(self, keys: Union[str, Iterable[str], None] = None) -> dict[str, Any]:
        wanted = _normalize_keys(keys)
        if wanted is None:
            return copy.deepcopy(self._data)
        return {key: copy.deepcopy(self._data[key]) for key in wanted if key in self._data}

    async def set(self, items: dict[str, Any]) -> None:
        document = dict(self._data)
        changes: dict[str, StorageChange] = {}
        for key, value in items.items():
            old = self._data.get(key)
            new = copy.deepcopy(value)
            if key in self._data and old == new:
                continue
            document[key] = new
            changes[key] = StorageChange(old_value=old, new_value=copy.deepcopy(new))
        await self._commit(document, changes)

    async def remove(self, keys: Union[str, Iterable[str]]) -> None:
        document = dict(self._data)
        changes: dict[str, StorageChange] = {}
        for key in _normalize_keys(keys) or []:
            if key in document:
                changes[key] = StorageChange(old_value=document.pop(key), new_value=None)
        await self._commit(document, changes)

    async def _commit(self, document: dict[str, Any], changes: dict[str, StorageChange]) -> None:
        # The new document becomes visible only after _persist succeeds
        if not changes:
            return
        await self._persist(document)
        self._data = document
        await self._notify(changes)

    async def _persist(self, document: dict[str, Any]) -> None:
        return None


class JsonFileStore(MemoryStore):
    """
    Durable store backed by one JSON document.

    Every set/remove rewrites the document through a temp file and os.replace,
    so a crash never leaves a half-written file. A failed write leaves the
    in-memory values unchanged, so retrying the same set writes again.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        super().__init__(self._read_document(self.path))
        self._write_lock = asyncio.Lock()

    @staticmethod
    def _read_document(path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Storage file %s unreadable, starting empty: %s", path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Storage file %s is not a JSON object, starting empty", path)
            return {}
        return data

    def _write_document(self, document: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(json.dumps(document, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, self.path)

    async def _persist(self, document: dict[str, Any]) -> None:
        async with self._write_lock:
            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(None, self._write_document, document)
            except OSError as exc:
                raise StorageError(f"Failed to write {self.path}: {exc}") from exc
