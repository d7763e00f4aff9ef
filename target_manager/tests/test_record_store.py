import json

import pytest

from target_manager.enginelib.errors import DuplicateIdError, PersistenceError, ValidationError
from target_manager.enginelib.marker_record import Marker, create_marker
from target_manager.enginelib.record_store import DEFAULT_KEY, RecordStore
from target_manager.enginelib.state_store import JsonFileStorage


class MemoryStorage:
    def __init__(self, initial=None):
        self.data = dict(initial or {})
        self.saves = []

    def load(self, key):
        return self.data.get(key)

    def save(self, key, text):
        self.saves.append(key)
        self.data[key] = text


class BrokenStorage(MemoryStorage):
    def load(self, key):
        raise PersistenceError("disk unavailable")

    def save(self, key, text):
        raise PersistenceError("disk full")


def test_add_without_id_generates_distinct_ids():
    store = RecordStore(MemoryStorage())
    for index in range(50):
        store.add(Marker(id="", lat=float(index), lng=0.0, captured_at="t"))
    ids = [marker.id for marker in store.list()]
    assert len(ids) == 50
    assert len(set(ids)) == 50
    assert all(ids)


def test_add_appends_and_saves_structured_payload():
    storage = MemoryStorage()
    store = RecordStore(storage, key="targets")
    first = store.add(create_marker(1.0, 2.0))
    second = store.add(create_marker(3.0, 4.0))
    assert store.list() == (first, second)
    assert storage.saves == ["targets", "targets"]
    saved = json.loads(storage.data["targets"])
    assert [entry["id"] for entry in saved] == [first.id, second.id]


def test_adding_existing_id_is_an_error():
    store = RecordStore(MemoryStorage())
    marker = store.add(create_marker(1.0, 2.0))
    with pytest.raises(DuplicateIdError):
        store.add(marker)
    assert len(store) == 1


def test_update_merges_only_given_fields_in_place():
    store = RecordStore(MemoryStorage())
    first = store.add(create_marker(1.0, 2.0, name="a", note="keep"))
    store.add(create_marker(3.0, 4.0, name="b"))
    updated = store.update(first.id, name="renamed", rank=3)
    assert updated.name == "renamed"
    assert updated.rank == 3
    assert updated.note == "keep"
    assert updated.captured_at == first.captured_at
    assert store.list()[0] == updated


def test_update_unknown_id_returns_none_without_saving():
    storage = MemoryStorage()
    store = RecordStore(storage)
    assert store.update("missing", name="x") is None
    assert storage.saves == []


def test_update_rejects_bad_fields_and_ranks():
    store = RecordStore(MemoryStorage())
    marker = store.add(create_marker(1.0, 2.0))
    with pytest.raises(ValueError):
        store.update(marker.id, id="other")
    with pytest.raises(ValidationError):
        store.update(marker.id, rank=7)
    assert store.update(marker.id, region="").region == "Unknown"


def test_remove_is_noop_when_absent():
    store = RecordStore(MemoryStorage())
    marker = store.add(create_marker(1.0, 2.0))
    assert store.remove("missing") is False
    assert store.remove(marker.id) is True
    assert store.list() == ()


def test_list_is_a_snapshot():
    store = RecordStore(MemoryStorage())
    store.add(create_marker(1.0, 2.0))
    snapshot = store.list()
    store.add(create_marker(3.0, 4.0))
    assert len(snapshot) == 1
    assert len(store.list()) == 2


def test_load_drops_duplicates_and_invalid_records():
    payload = [
        {"id": "a", "lat": 1, "lng": 2},
        {"id": "a", "lat": 3, "lng": 4},
        {"id": "b", "lat": 500, "lng": 2},
        {"id": "c", "lat": 5, "lng": 6},
    ]
    store = RecordStore(MemoryStorage({"markedLocations": json.dumps(payload)}))
    assert store.load() == 2
    assert [marker.id for marker in store.list()] == ["a", "c"]


def test_load_with_nothing_stored_is_empty():
    store = RecordStore(MemoryStorage())
    assert store.load() == 0


def test_persistence_failures_do_not_block_the_store():
    store = RecordStore(BrokenStorage())
    assert store.load() == 0
    assert "disk unavailable" in store.last_error
    marker = store.add(create_marker(1.0, 2.0))
    assert store.list() == (marker,)
    assert "disk full" in store.last_error


def test_undecodable_storage_file_is_reported_not_raised(tmp_path):
    storage = JsonFileStorage(tmp_path)
    storage.path_for(DEFAULT_KEY).write_bytes(b"\xff\xfe[bad")
    store = RecordStore(storage)
    assert store.load() == 0
    assert store.last_error
    assert store.list() == ()
