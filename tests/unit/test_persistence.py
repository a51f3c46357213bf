"""Unit tests for hydration, the update gate and write-back."""

import asyncio
import json
import logging

import pytest

from fluxatom import (
    Atom,
    ConfigurationError,
    HydrationError,
    MemoryStorage,
    PersistedRecord,
    get_default_storage,
)


class RecordingStorage(MemoryStorage):
    """MemoryStorage that remembers every write and removal."""

    def __init__(self, initial=None):
        super().__init__()
        self.writes = []
        self.removed = []
        for key, value in (initial or {}).items():
            super().set(key, value)

    def set(self, key, value):
        self.writes.append((key, json.loads(value)))
        super().set(key, value)

    def remove(self, key):
        self.removed.append(key)
        super().remove(key)


class FailingStorage(MemoryStorage):
    def get(self, key):
        raise OSError("backend offline")


def stored(data, version="1.0.0"):
    return json.dumps({"data": data, "version": version})


# ============================================================================
# RECORD FORMAT
# ============================================================================


@pytest.mark.unit
@pytest.mark.persistence
def test_persisted_record_dumps_data_and_version():
    """The stored shape is a JSON object with data and version"""
    raw = PersistedRecord([1, 2], "3").dumps()

    assert json.loads(raw) == {"data": [1, 2], "version": "3"}


@pytest.mark.unit
@pytest.mark.persistence
def test_persisted_record_loads_tracks_missing_data():
    """A record without a data field is recognised as such"""
    record = PersistedRecord.loads('{"version": "1"}')

    assert record.version == "1"
    assert not record.has_data


@pytest.mark.unit
@pytest.mark.persistence
@pytest.mark.parametrize("raw", ["{broken", "[1, 2]", '"text"'])
def test_persisted_record_loads_rejects_malformed(raw):
    """Anything but a JSON object is malformed"""
    with pytest.raises(ValueError):
        PersistedRecord.loads(raw)


# ============================================================================
# HYDRATION
# ============================================================================


@pytest.mark.unit
@pytest.mark.persistence
def test_hydrates_raw_data_without_deserialize():
    """Stored data is committed as is when no deserialize is configured"""
    storage = MemoryStorage()
    storage.set("todos", stored(["a", "b"]))

    todos = Atom([], persist_key="todos", app_version="1.0.0", storage=storage)

    assert todos.value == ["a", "b"]
    assert not todos.hydrating


@pytest.mark.unit
@pytest.mark.persistence
def test_sync_deserialize_commits_before_atom_is_returned():
    """A synchronous deserialize result is visible right after construction"""
    storage = MemoryStorage()
    storage.set("test", stored([{"val": 1}, {"val": 2}, {"val": 3}]))

    a = Atom(
        [],
        persist_key="test",
        app_version="1.0.0",
        deserialize=lambda data: [{"val": v["val"] + 1} for v in data],
        storage=storage,
    )

    assert a.value == [{"val": 2}, {"val": 3}, {"val": 4}]


@pytest.mark.unit
@pytest.mark.persistence
def test_version_mismatch_discards_record_without_writing_initial():
    """A stale record is removed and the initial value is not written back"""
    storage = RecordingStorage({"prefs": stored({"theme": "dark"}, version="0.9")})

    prefs = Atom({"theme": "light"}, persist_key="prefs", app_version="1.0", storage=storage)

    assert prefs.value == {"theme": "light"}
    assert storage.removed == ["prefs"]
    assert storage.writes == []
    assert storage.get("prefs") is None


@pytest.mark.unit
@pytest.mark.persistence
def test_version_mismatch_then_update_writes_new_version():
    """The first commit after invalidation stores the current version"""
    storage = RecordingStorage({"prefs": stored(1, version="0.9")})

    async def scenario():
        prefs = Atom(0, persist_key="prefs", app_version="1.0", storage=storage)
        await prefs.update(5)

    asyncio.run(scenario())
    assert storage.writes == [("prefs", {"data": 5, "version": "1.0"})]


@pytest.mark.unit
@pytest.mark.persistence
def test_cache_miss_persists_initial_value_immediately():
    """Without a stored record the initial value is written at construction"""
    storage = RecordingStorage()

    Atom([{"val": 1}], persist_key="test", app_version="1.0.0", storage=storage)

    assert storage.writes == [("test", {"data": [{"val": 1}], "version": "1.0.0"})]


@pytest.mark.unit
@pytest.mark.persistence
@pytest.mark.parametrize("raw", ["{not json", "[]", "42"])
def test_malformed_record_is_a_cache_miss(raw, caplog):
    """Malformed stored content falls back to the initial value"""
    storage = MemoryStorage()
    storage.set("k", raw)

    with caplog.at_level(logging.WARNING, logger="fluxatom.persistence"):
        a = Atom("initial", persist_key="k", storage=storage)

    assert a.value == "initial"
    assert "Malformed persisted record" in caplog.text


@pytest.mark.unit
@pytest.mark.persistence
@pytest.mark.parametrize("raw", [42, ["data"], {"data": 1, "version": None}])
def test_non_string_record_is_a_cache_miss(raw, caplog):
    """A backend handing back a non-string falls back to the initial value"""

    class LooseStorage(MemoryStorage):
        def get(self, key):
            return raw

    with caplog.at_level(logging.WARNING, logger="fluxatom.persistence"):
        a = Atom("initial", persist_key="k", storage=LooseStorage())

    assert a.value == "initial"
    assert "Malformed persisted record" in caplog.text


@pytest.mark.unit
@pytest.mark.persistence
def test_storage_read_failure_is_a_cache_miss(caplog):
    """A backend failing on read does not prevent construction"""
    with caplog.at_level(logging.WARNING, logger="fluxatom.persistence"):
        a = Atom(7, persist_key="k", storage=FailingStorage())

    assert a.value == 7
    assert "Reading persisted 'k' failed" in caplog.text


@pytest.mark.unit
@pytest.mark.persistence
def test_record_without_data_keeps_initial_value():
    """A matching record with no data field hydrates nothing"""
    storage = MemoryStorage()
    storage.set("k", json.dumps({"version": "1"}))

    a = Atom("initial", persist_key="k", app_version="1", storage=storage)

    assert a.value == "initial"


@pytest.mark.unit
@pytest.mark.persistence
def test_missing_app_version_matches_record_without_version():
    """No app version on either side counts as a match"""
    storage = MemoryStorage()
    storage.set("k", json.dumps({"data": "stored", "version": None}))

    a = Atom("initial", persist_key="k", storage=storage)

    assert a.value == "stored"


@pytest.mark.unit
@pytest.mark.persistence
def test_failing_sync_deserialize_keeps_initial_and_stored_record(caplog):
    """A raising deserialize is logged and the stored record is left alone"""
    storage = RecordingStorage({"k": stored("old")})

    def broken(data):
        raise KeyError("schema")

    with caplog.at_level(logging.ERROR, logger="fluxatom.persistence"):
        a = Atom("initial", persist_key="k", app_version="1.0.0", deserialize=broken, storage=storage)

    assert a.value == "initial"
    assert storage.writes == []
    assert json.loads(storage.get("k"))["data"] == "old"
    assert "Deserializing 'k' failed" in caplog.text


@pytest.mark.unit
@pytest.mark.persistence
def test_async_deserialize_outside_event_loop_is_rejected():
    """Asynchronous hydration needs a running loop to continue on"""
    storage = MemoryStorage()
    storage.set("k", stored([1]))

    async def deserialize(data):
        return data

    with pytest.raises(ConfigurationError, match="running event loop"):
        Atom([], persist_key="k", app_version="1.0.0", deserialize=deserialize, storage=storage)


@pytest.mark.unit
@pytest.mark.persistence
def test_default_storage_is_used_without_explicit_backend():
    """Atoms persisting without a storage argument share the default store"""
    Atom("v", persist_key="shared", app_version="1")

    assert json.loads(get_default_storage().get("shared")) == {"data": "v", "version": "1"}


# ============================================================================
# ASYNCHRONOUS HYDRATION AND THE UPDATE GATE
# ============================================================================


@pytest.mark.unit
@pytest.mark.persistence
def test_async_deserialize_keeps_initial_value_until_resolved():
    """The initial value is visible until the deserialized value commits"""
    storage = RecordingStorage({"test": stored([{"val": 1}, {"val": 2}])})

    async def deserialize(data):
        await asyncio.sleep(0.02)
        return data

    async def scenario():
        a = Atom([], persist_key="test", app_version="1.0.0", deserialize=deserialize, storage=storage)
        before = (a.value, a.hydrating)
        await a.wait_hydrated()
        return before, a.value, a.hydrating

    before, after, hydrating = asyncio.run(scenario())
    assert before == ([], True)
    assert after == [{"val": 1}, {"val": 2}]
    assert hydrating is False
    assert storage.writes == []


@pytest.mark.unit
@pytest.mark.persistence
def test_updates_during_hydration_are_buffered_then_replayed():
    """Buffered updates apply on top of the hydrated state, in arrival order"""
    storage = RecordingStorage({"log": stored(["stored"])})
    reducer_inputs = []

    def reducer(state, action):
        reducer_inputs.append(list(state))
        return [*state, action]

    async def deserialize(data):
        await asyncio.sleep(0.02)
        return data

    async def scenario():
        a = Atom(
            ["initial"],
            reducer=reducer,
            persist_key="log",
            app_version="1.0.0",
            deserialize=deserialize,
            storage=storage,
        )
        first = a.update("first")
        second = a.update("second")
        gated = (a.value, a.persistence.buffered, list(storage.writes), first.done())
        await first
        after_first = a.value
        await second
        return gated, after_first, a.value

    gated, after_first, final = asyncio.run(scenario())
    assert gated == (["initial"], 2, [], False)
    assert after_first == ["stored", "first"]
    assert final == ["stored", "first", "second"]
    assert reducer_inputs == [["stored"], ["stored", "first"]]
    assert [data for _, data in storage.writes] == [
        {"data": ["stored", "first"], "version": "1.0.0"},
        {"data": ["stored", "first", "second"], "version": "1.0.0"},
    ]


@pytest.mark.unit
@pytest.mark.persistence
def test_buffered_update_raises_what_its_replayed_reducer_raised():
    """The caller of a buffered update sees the reducer's failure after replay"""
    storage = RecordingStorage({"k": stored(1)})

    def reducer(state, action):
        if action == "bad":
            raise ValueError("rejected")
        return state + action

    async def deserialize(data):
        await asyncio.sleep(0.01)
        return data

    async def scenario():
        a = Atom(
            0,
            reducer=reducer,
            persist_key="k",
            app_version="1.0.0",
            deserialize=deserialize,
            storage=storage,
        )
        bad = a.update("bad")
        good = a.update(2)
        with pytest.raises(ValueError, match="rejected"):
            await bad
        await good
        return a.value

    assert asyncio.run(scenario()) == 3


@pytest.mark.unit
@pytest.mark.persistence
def test_cancelled_buffered_update_is_not_replayed():
    """Cancelling a buffered update before hydration finishes drops it"""
    storage = RecordingStorage({"k": stored(1)})

    async def deserialize(data):
        await asyncio.sleep(0.01)
        return data

    async def scenario():
        a = Atom(
            0,
            reducer=lambda state, n: state + n,
            persist_key="k",
            app_version="1.0.0",
            deserialize=deserialize,
            storage=storage,
        )
        dropped = a.update(100)
        kept = a.update(2)
        dropped.cancel()
        await kept
        await a.settle()
        return a.value

    assert asyncio.run(scenario()) == 3


@pytest.mark.unit
@pytest.mark.persistence
def test_failed_async_deserialize_opens_gate_on_initial_value(caplog):
    """A failed hydration is logged, then buffered updates apply to the initial value"""
    storage = RecordingStorage({"k": stored(1)})

    async def deserialize(data):
        await asyncio.sleep(0.01)
        raise ValueError("corrupt")

    async def scenario():
        a = Atom(
            10,
            reducer=lambda state, n: state + n,
            persist_key="k",
            app_version="1.0.0",
            deserialize=deserialize,
            storage=storage,
        )
        await a.update(5)
        with pytest.raises(HydrationError):
            await a.wait_hydrated(strict=True)
        await a.settle()
        return a.value

    with caplog.at_level(logging.ERROR, logger="fluxatom.persistence"):
        assert asyncio.run(scenario()) == 15
    assert storage.writes == [("k", {"data": 15, "version": "1.0.0"})]
    assert "Asynchronous deserialize of 'k' failed" in caplog.text


# ============================================================================
# WRITE-BACK
# ============================================================================


@pytest.mark.unit
@pytest.mark.persistence
def test_sync_serialize_is_applied_before_writing():
    """serialize shapes the stored data"""
    storage = RecordingStorage()

    async def scenario():
        a = Atom(
            {1, 2},
            persist_key="ids",
            app_version="1",
            serialize=sorted,
            storage=storage,
        )
        await a.update({3, 1})

    asyncio.run(scenario())
    assert [data["data"] for _, data in storage.writes] == [[1, 2], [1, 3]]


@pytest.mark.unit
@pytest.mark.persistence
def test_async_serialize_writes_land_in_commit_order():
    """Slow and fast asynchronous serializations are stored in commit order"""
    storage = RecordingStorage({"k": stored(0)})

    async def serialize(value):
        await asyncio.sleep(0.03 if value == 1 else 0.0)
        return value

    async def scenario():
        a = Atom(0, persist_key="k", app_version="1.0.0", serialize=serialize, storage=storage)
        await a.update(1)
        await a.update(2)
        await a.settle()

    asyncio.run(scenario())
    assert [data["data"] for _, data in storage.writes] == [0, 1, 2]
    assert json.loads(storage.get("k"))["data"] == 2


@pytest.mark.unit
@pytest.mark.persistence
def test_serialize_failure_is_logged_and_not_retried(caplog):
    """A failing serialize skips that write only"""
    storage = RecordingStorage({"k": stored("ok")})

    def serialize(value):
        if value == "bad":
            raise TypeError("cannot serialize")
        return value

    async def scenario():
        a = Atom("ok", persist_key="k", app_version="1.0.0", serialize=serialize, storage=storage)
        await a.update("bad")
        await a.update("fine")
        return a.value

    with caplog.at_level(logging.ERROR, logger="fluxatom.persistence"):
        assert asyncio.run(scenario()) == "fine"
    assert [data["data"] for _, data in storage.writes] == ["ok", "fine"]
    assert "Serializing 'k' failed" in caplog.text


@pytest.mark.unit
@pytest.mark.persistence
def test_unencodable_value_is_logged_not_raised(caplog):
    """Values JSON cannot encode are reported and the commit still happens"""
    storage = RecordingStorage()

    async def scenario():
        a = Atom(None, persist_key="k", storage=storage)
        await a.update(object())
        return a.value

    with caplog.at_level(logging.ERROR, logger="fluxatom.persistence"):
        value = asyncio.run(scenario())
    assert value is not None
    assert "Writing persisted 'k' failed" in caplog.text


@pytest.mark.unit
@pytest.mark.persistence
def test_equal_commit_is_not_rewritten():
    """Commits suppressed by the comparator produce no write"""
    storage = RecordingStorage()

    async def scenario():
        a = Atom(1, persist_key="k", storage=storage)
        await a.update(1)
        await a.update(2)

    asyncio.run(scenario())
    assert [data["data"] for _, data in storage.writes] == [1, 2]


@pytest.mark.unit
@pytest.mark.persistence
def test_close_detaches_write_back():
    """After close the atom keeps working without persisting"""
    storage = RecordingStorage()

    async def scenario():
        a = Atom(1, persist_key="k", storage=storage)
        a.close()
        await a.update(2)
        return a.value

    assert asyncio.run(scenario()) == 2
    assert [data["data"] for _, data in storage.writes] == [1]
