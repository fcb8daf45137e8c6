"""
Process-scoped translation state.

Mirrors the durable result maps from the storage collaborator:
- load() reads them once at startup and subscribes to change notifications
- every change (ours or another client's) replaces a whole map, so readers
  holding an old mapping never see it change under them

Only the pipeline writes through this object.
"""

import logging
import time
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

from .models import ImageMeta, OcrResult, PageVisit, TranslationEntry
from .storage import (
    IMAGE_META_KEY,
    PROCESSED_HASHES_KEY,
    RESULT_KEYS,
    TRANSLATION_CONTEXTS_KEY,
    TRANSLATION_RESULTS_KEY,
    VISION_RESULTS_KEY,
    KeyValueStore,
    StorageChange,
)

logger = logging.getLogger(__name__)

_EMPTY: Mapping[str, Any] = MappingProxyType({})


def _now_ms() -> int:
    return int(time.time() * 1000)


class TranshotState:
    def __init__(self, store: KeyValueStore):
        self.store = store
        self.processed_hashes: frozenset[str] = frozenset()
        self.vision_results: Mapping[str, dict] = _EMPTY
        self.translation_results: Mapping[str, list] = _EMPTY
        self.translation_contexts: Mapping[str, str] = _EMPTY
        self.image_meta: Mapping[str, dict] = _EMPTY
        self._unsubscribe: Optional[Callable[[], None]] = None

    async def load(self) -> "TranshotState":
        stored = await self.store.get(list(RESULT_KEYS))
        for key in RESULT_KEYS:
            self._apply(key, stored.get(key))
        if self._unsubscribe is None:
            self._unsubscribe = self.store.on_change(self._on_storage_change)
        logger.info(
            f"state: loaded processed={len(self.processed_hashes)} "
            f"translations={len(self.translation_results)}"
        )
        return self

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_storage_change(self, changes: dict[str, StorageChange]) -> None:
        for key, change in changes.items():
            if key in RESULT_KEYS:
                self._apply(key, change.new_value)

    def _apply(self, key: str, value: Any) -> None:
        if key == PROCESSED_HASHES_KEY:
            hashes = value if isinstance(value, list) else []
            self.processed_hashes = frozenset(h for h in hashes if isinstance(h, str))
        elif key == VISION_RESULTS_KEY:
            self.vision_results = MappingProxyType(dict(value or {}))
        elif key == TRANSLATION_RESULTS_KEY:
            self.translation_results = MappingProxyType(dict(value or {}))
        elif key == TRANSLATION_CONTEXTS_KEY:
            self.translation_contexts = MappingProxyType(dict(value or {}))
        elif key == IMAGE_META_KEY:
            self.image_meta = MappingProxyType(dict(value or {}))

    def is_processed(self, content_hash: str) -> bool:
        # A processed hash without translations is treated as unprocessed
        return content_hash in self.processed_hashes and content_hash in self.translation_results

    def get_translations(self, content_hash: str) -> Optional[list[TranslationEntry]]:
        items = self.translation_results.get(content_hash)
        if items is None:
            return None
        entries = []
        for item in items:
            if isinstance(item, str):
                entries.append(TranslationEntry(original_text="", translated_text=item))
            else:
                entries.append(TranslationEntry.model_validate(item))
        return entries

    def get_vision_result(self, content_hash: str) -> Optional[OcrResult]:
        data = self.vision_results.get(content_hash)
        if data is None:
            return None
        return OcrResult.model_validate(data)

    async def record_vision_result(self, content_hash: str, result: OcrResult) -> None:
        updated = dict(self.vision_results)
        updated[content_hash] = result.model_dump(mode="json")
        await self.store.set({VISION_RESULTS_KEY: updated})
        self.vision_results = MappingProxyType(updated)

    def _merged_meta(self, content_hash: str, image_url: str, origin: str, page_url: str) -> dict:
        current = self.image_meta.get(content_hash)
        meta = ImageMeta.model_validate(current) if current else ImageMeta()
        if image_url and not image_url.startswith("data:"):
            meta.image_url = image_url
        if origin:
            visit = PageVisit(origin=origin, url=page_url, updated_at=_now_ms())
            meta.pages = [page for page in meta.pages if page.origin != origin] + [visit]
        return meta.model_dump(mode="json")

    async def record_translation(
        self,
        content_hash: str,
        entries: list[TranslationEntry],
        context: Optional[str] = None,
        *,
        image_url: str = "",
        origin: str = "",
        page_url: str = "",
    ) -> None:
        """Persist translations, context, image meta and the processed flag in one write."""
        translations = dict(self.translation_results)
        translations[content_hash] = [entry.model_dump(mode="json") for entry in entries]

        contexts = dict(self.translation_contexts)
        if context:
            contexts[content_hash] = context

        meta = dict(self.image_meta)
        meta[content_hash] = self._merged_meta(content_hash, image_url, origin, page_url)

        processed = sorted(self.processed_hashes | {content_hash})

        await self.store.set(
            {
                TRANSLATION_RESULTS_KEY: translations,
                TRANSLATION_CONTEXTS_KEY: contexts,
                IMAGE_META_KEY: meta,
                PROCESSED_HASHES_KEY: processed,
            }
        )
        self.translation_results = MappingProxyType(translations)
        self.translation_contexts = MappingProxyType(contexts)
        self.image_meta = MappingProxyType(meta)
        self.processed_hashes = frozenset(processed)

    async def forget(self, content_hash: str) -> bool:
        """Erase every stored result for a hash; False when it had no translation."""
        if content_hash not in self.translation_results:
            return False
        translations = {k: v for k, v in self.translation_results.items() if k != content_hash}
        contexts = {k: v for k, v in self.translation_contexts.items() if k != content_hash}
        vision = {k: v for k, v in self.vision_results.items() if k != content_hash}
        processed = sorted(h for h in self.processed_hashes if h != content_hash)
        await self.store.set(
            {
                TRANSLATION_RESULTS_KEY: translations,
                TRANSLATION_CONTEXTS_KEY: contexts,
                VISION_RESULTS_KEY: vision,
                PROCESSED_HASHES_KEY: processed,
            }
        )
        self.translation_results = MappingProxyType(translations)
        self.translation_contexts = MappingProxyType(contexts)
        self.vision_results = MappingProxyType(vision)
        self.processed_hashes = frozenset(processed)
        logger.info(f"state: forgot {content_hash[:12]}")
        return True

    def entries_for_origin(self, origin: str) -> list[dict]:
        """Saved translations seen on an origin, most recently updated first."""
        entries = []
        for content_hash in self.translation_results:
            meta_data = self.image_meta.get(content_hash)
            if not meta_data:
                continue
            meta = ImageMeta.model_validate(meta_data)
            page = next((p for p in meta.pages if p.origin == origin), None)
            if page is None:
                continue
            entries.append(
                {
                    "hash": content_hash,
                    "translations": self.get_translations(content_hash) or [],
                    "context": self.translation_contexts.get(content_hash, ""),
                    "image_url": meta.image_url,
                    "updated_at": page.updated_at,
                }
            )
        entries.sort(key=lambda entry: entry["updated_at"], reverse=True)
        return entries
