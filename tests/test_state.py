import pytest

from transhot.models import OcrResult, Point, TranslationEntry
from transhot.state import TranshotState
from transhot.storage import (
    IMAGE_META_KEY,
    PROCESSED_HASHES_KEY,
    TRANSLATION_RESULTS_KEY,
    VISION_RESULTS_KEY,
    MemoryStore,
)

HASH_A = "a" * 64
HASH_B = "b" * 64


def _entries(*pairs):
    return [
        TranslationEntry(original_text=o, translated_text=t, bounding_poly=[Point(x=0, y=0)])
        for o, t in pairs
    ]


@pytest.mark.asyncio
async def test_load_mirrors_stored_results():
    store = MemoryStore(
        {
            PROCESSED_HASHES_KEY: [HASH_A],
            TRANSLATION_RESULTS_KEY: {HASH_A: [{"original_text": "Hi", "translated_text": "Привет"}]},
        }
    )

    state = await TranshotState(store).load()

    assert state.is_processed(HASH_A)
    assert state.get_translations(HASH_A)[0].translated_text == "Привет"


@pytest.mark.asyncio
async def test_processed_flag_without_translation_is_not_processed():
    store = MemoryStore({PROCESSED_HASHES_KEY: [HASH_A]})

    state = await TranshotState(store).load()

    assert not state.is_processed(HASH_A)


@pytest.mark.asyncio
async def test_external_changes_resync_state():
    store = MemoryStore()
    state = await TranshotState(store).load()

    await store.set(
        {
            PROCESSED_HASHES_KEY: [HASH_B],
            TRANSLATION_RESULTS_KEY: {HASH_B: []},
        }
    )

    assert state.is_processed(HASH_B)

    state.close()
    await store.set({PROCESSED_HASHES_KEY: []})
    assert HASH_B in state.processed_hashes


@pytest.mark.asyncio
async def test_record_translation_replaces_maps_and_writes_once():
    store = MemoryStore()
    state = await TranshotState(store).load()
    writes = []
    store.on_change(lambda changes: writes.append(set(changes)))
    before = state.translation_results

    await state.record_translation(
        HASH_A,
        _entries(("Hello", "Привет")),
        "A greeting",
        image_url="https://cdn.example/a.png",
        origin="https://site.example",
        page_url="https://site.example/page",
    )

    assert HASH_A not in before
    assert state.translation_results is not before
    assert state.is_processed(HASH_A)
    assert state.translation_contexts[HASH_A] == "A greeting"
    assert state.image_meta[HASH_A]["image_url"] == "https://cdn.example/a.png"
    assert len(writes) == 1
    assert PROCESSED_HASHES_KEY in writes[0]
    assert TRANSLATION_RESULTS_KEY in writes[0]

    with pytest.raises(TypeError):
        state.translation_results[HASH_B] = []


@pytest.mark.asyncio
async def test_data_urls_are_not_kept_as_image_url():
    state = await TranshotState(MemoryStore()).load()

    await state.record_translation(HASH_A, _entries(("a", "b")), image_url="data:image/png;base64,AAAA")

    assert state.image_meta[HASH_A]["image_url"] == ""


@pytest.mark.asyncio
async def test_vision_result_round_trip_through_store():
    store = MemoryStore()
    state = await TranshotState(store).load()

    await state.record_vision_result(HASH_A, OcrResult(raw={"x": 1}, blocks=[], width=10, height=5))

    assert (await store.get(VISION_RESULTS_KEY))[VISION_RESULTS_KEY][HASH_A]["width"] == 10
    assert state.get_vision_result(HASH_A).raw == {"x": 1}
    assert not state.is_processed(HASH_A)


@pytest.mark.asyncio
async def test_forget_removes_every_trace():
    store = MemoryStore()
    state = await TranshotState(store).load()
    await state.record_vision_result(HASH_A, OcrResult())
    await state.record_translation(HASH_A, _entries(("a", "b")), "ctx")

    assert await state.forget(HASH_A) is True
    assert await state.forget(HASH_A) is False

    assert not state.is_processed(HASH_A)
    assert state.get_vision_result(HASH_A) is None
    assert HASH_A not in state.translation_contexts
    stored = await store.get([PROCESSED_HASHES_KEY, TRANSLATION_RESULTS_KEY])
    assert stored[PROCESSED_HASHES_KEY] == []
    assert stored[TRANSLATION_RESULTS_KEY] == {}


@pytest.mark.asyncio
async def test_entries_for_origin_newest_first():
    store = MemoryStore(
        {
            TRANSLATION_RESULTS_KEY: {HASH_A: [], HASH_B: []},
            IMAGE_META_KEY: {
                HASH_A: {"image_url": "a.png", "pages": [{"origin": "https://x.example", "url": "", "updated_at": 1}]},
                HASH_B: {"image_url": "b.png", "pages": [{"origin": "https://x.example", "url": "", "updated_at": 2}]},
            },
        }
    )
    state = await TranshotState(store).load()

    entries = state.entries_for_origin("https://x.example")

    assert [entry["hash"] for entry in entries] == [HASH_B, HASH_A]
    assert state.entries_for_origin("https://other.example") == []
