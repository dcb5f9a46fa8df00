import threading
from datetime import datetime, timedelta, timezone

import pytest
from google.api_core import exceptions as gexc

from podsweeper.errors import ConflictError, SerializationError
from podsweeper.game_engine import GameStatus, new_game_state
from podsweeper import persistence
from podsweeper.persistence import FirestoreStore, InMemoryStore


def sample_state():
    s = new_game_state(4, 11)
    s.set_mine(3, 0)
    s.set_mine(1, 2)
    return s


def test_load_empty_returns_none():
    store = InMemoryStore()
    assert store.load() is None
    assert store.exists() is False


def test_save_and_load():
    store = InMemoryStore()
    s = sample_state()
    store.save(s)
    assert store.exists()
    loaded = store.load()
    assert loaded == s
    assert loaded.mine_count == 2


def test_mutating_saved_object_does_not_leak_into_store():
    store = InMemoryStore()
    s = sample_state()
    store.save(s)
    s.revealed[0][0] = True
    s.hint_cells.append(None)
    loaded = store.load()
    assert loaded.revealed[0][0] is False
    assert loaded.hint_cells == []


def test_mutating_loaded_object_does_not_leak_into_store():
    store = InMemoryStore()
    store.save(sample_state())
    first = store.load()
    first.reveal(0, 0)
    first.set_lost()
    second = store.load()
    assert second.revealed[0][0] is False
    assert second.status == GameStatus.PLAYING
    assert first is not second


def test_delete_and_delete_missing():
    store = InMemoryStore()
    store.delete()
    store.save(sample_state())
    store.delete()
    assert store.load() is None
    assert not store.exists()


def test_stale_save_raises_conflict():
    store = InMemoryStore()
    store.save(sample_state())
    a = store.load()
    b = store.load()
    a.reveal(0, 0)
    store.save(a)
    b.reveal(1, 1)
    with pytest.raises(ConflictError):
        store.save(b)
    latest = store.load()
    assert latest.revealed[0][0] and not latest.revealed[1][1]


def test_sequential_saves_of_same_object_are_fine():
    store = InMemoryStore()
    store.save(sample_state())
    s = store.load()
    s.reveal(0, 0)
    store.save(s)
    s.reveal(0, 1)
    store.save(s)
    assert store.load().clicks == 2


def test_save_after_delete_conflicts_for_loaded_state():
    store = InMemoryStore()
    store.save(sample_state())
    s = store.load()
    store.delete()
    with pytest.raises(ConflictError):
        store.save(s)


def test_reset_clears():
    store = InMemoryStore()
    store.save(sample_state())
    store.reset()
    assert store.load() is None


def test_concurrent_load_mutate_save_never_loses_updates():
    store = InMemoryStore()
    store.save(new_game_state(6, 1))
    barrier = threading.Barrier(6)

    def worker(x):
        barrier.wait()
        while True:
            s = store.load()
            s.reveal(x, 0)
            try:
                store.save(s)
                return
            except ConflictError:
                continue

    threads = [threading.Thread(target=worker, args=(x,)) for x in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    final = store.load()
    assert all(final.revealed[x][0] for x in range(6))
    assert final.clicks == 6


class FakeSnapshot:
    def __init__(self, data, update_time):
        self._data = data
        self.update_time = update_time
        self.exists = data is not None

    def to_dict(self):
        return dict(self._data) if self._data is not None else None


class FakeWriteResult:
    def __init__(self, update_time):
        self.update_time = update_time


class FakeDocument:
    def __init__(self, db):
        self.db = db
        self.data = None
        self.update_time = None

    def _bump(self):
        self.db.clock += timedelta(seconds=1)
        self.update_time = self.db.clock
        return FakeWriteResult(self.update_time)

    def get(self):
        return FakeSnapshot(self.data, self.update_time)

    def set(self, doc):
        self.data = dict(doc)
        return self._bump()

    def update(self, doc, option=None):
        if self.data is None:
            raise gexc.NotFound("no document")
        if option is not None and option["last_update_time"] != self.update_time:
            raise gexc.FailedPrecondition("stale")
        self.data.update(doc)
        return self._bump()

    def delete(self):
        self.data = None
        self.update_time = None


class FakeCollection:
    def __init__(self, db):
        self.db = db
        self.docs = {}

    def document(self, name):
        return self.docs.setdefault(name, FakeDocument(self.db))


class FakeFirestore:
    def __init__(self):
        self.clock = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.collections = {}

    def collection(self, name):
        return self.collections.setdefault(name, FakeCollection(self))

    def write_option(self, **kwargs):
        return kwargs


def test_firestore_store_round_trip_and_conflict():
    db = FakeFirestore()
    store = FirestoreStore(client=db, collection="games", document="current")
    assert store.load() is None
    assert not store.exists()

    store.save(sample_state())
    raw = db.collection("games").document("current").data
    assert isinstance(raw["state"], str)

    a = store.load()
    b = store.load()
    a.reveal(2, 2)
    store.save(a)
    with pytest.raises(ConflictError):
        store.save(b)
    assert store.load().revealed[2][2]

    store.delete()
    store.delete()
    assert store.load() is None
    with pytest.raises(ConflictError):
        store.save(a)


def test_firestore_store_malformed_document():
    db = FakeFirestore()
    store = FirestoreStore(client=db)
    ref = db.collection("podsweeper").document("podsweeper-state")
    ref.set({"state": "{broken"})
    with pytest.raises(SerializationError):
        store.load()
    ref.set({"other": 1})
    with pytest.raises(SerializationError):
        store.load()


def test_firestore_store_needs_api_core(monkeypatch):
    monkeypatch.setattr(persistence, "gexc", None)
    with pytest.raises(RuntimeError):
        FirestoreStore(client=FakeFirestore())
