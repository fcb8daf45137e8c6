import json

import pytest

from transhot.errors import StorageError
from transhot.storage import JsonFileStore, MemoryStore


@pytest.mark.asyncio
async def test_memory_store_get_set_remove():
    store = MemoryStore({"a": 1})

    await store.set({"b": [1, 2]})

    assert await store.get() == {"a": 1, "b": [1, 2]}
    assert await store.get("a") == {"a": 1}
    assert await store.get(["b", "missing"]) == {"b": [1, 2]}

    await store.remove("a")
    assert await store.get("a") == {}


@pytest.mark.asyncio
async def test_memory_store_values_are_copied():
    store = MemoryStore()
    value = {"items": [1]}
    await store.set({"k": value})

    value["items"].append(2)
    fetched = (await store.get("k"))["k"]
    fetched["items"].append(3)

    assert (await store.get("k"))["k"] == {"items": [1]}


@pytest.mark.asyncio
async def test_change_listener_sees_only_changed_keys():
    store = MemoryStore({"same": 1, "other": "x"})
    seen = []
    store.on_change(lambda changes: seen.append(changes))

    await store.set({"same": 1, "other": "y", "new": True})

    assert len(seen) == 1
    changes = seen[0]
    assert set(changes) == {"other", "new"}
    assert (changes["other"].old_value, changes["other"].new_value) == ("x", "y")
    assert changes["new"].old_value is None


@pytest.mark.asyncio
async def test_async_listener_is_awaited_and_unsubscribe_works():
    store = MemoryStore()
    seen = []

    async def listener(changes):
        seen.extend(changes)

    unsubscribe = store.on_change(listener)
    await store.set({"a": 1})
    unsubscribe()
    await store.set({"b": 2})

    assert seen == ["a"]


@pytest.mark.asyncio
async def test_remove_notifies_with_old_value():
    store = MemoryStore({"a": 1})
    seen = []
    store.on_change(seen.append)

    await store.remove(["a", "missing"])

    assert list(seen[0]) == ["a"]
    assert seen[0]["a"].old_value == 1
    assert seen[0]["a"].new_value is None


@pytest.mark.asyncio
async def test_json_file_store_survives_reload(tmp_path):
    path = tmp_path / "nested" / "store.json"
    store = JsonFileStore(path)

    await store.set({"processed_hashes": ["abc"], "label": "Привет"})

    assert json.loads(path.read_text(encoding="utf-8"))["label"] == "Привет"
    reloaded = JsonFileStore(path)
    assert await reloaded.get("processed_hashes") == {"processed_hashes": ["abc"]}
    assert not (tmp_path / "nested" / "store.json.tmp").exists()


def test_json_file_store_ignores_corrupt_document(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("{not json", encoding="utf-8")

    store = JsonFileStore(path)

    assert store._data == {}


@pytest.mark.asyncio
async def test_failed_write_is_retried_with_same_values(tmp_path):
    path = tmp_path / "store.json"
    store = JsonFileStore(path)
    real_write = store._write_document
    attempts = []
    seen = []
    store.on_change(seen.append)

    def flaky_write(document):
        attempts.append(document)
        if len(attempts) == 1:
            raise OSError("disk full")
        real_write(document)

    store._write_document = flaky_write

    with pytest.raises(StorageError):
        await store.set({"processed_hashes": ["abc"]})
    assert await store.get("processed_hashes") == {}
    assert seen == []

    await store.set({"processed_hashes": ["abc"]})

    assert len(attempts) == 2
    assert len(seen) == 1
    assert await JsonFileStore(path).get("processed_hashes") == {"processed_hashes": ["abc"]}
