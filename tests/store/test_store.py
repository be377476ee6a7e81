"""
Write-through persistence and rebuilding of runs, against the memory store and against the redis
store over a fake client
"""

import datetime as dt
from collections import defaultdict

import pytest

from sluice.config import MemoryStorageConfig, RedisStorageConfig
from sluice.scheduler import api
from sluice.scheduler.core import TaskAttempt, TaskState
from sluice.store import build_store
from sluice.store.api import RunStore, collect, flush
from sluice.store.memory import MemoryStore
from sluice.store.redis_store import RedisStore


class FakeRedis:
    """The subset of redis.Redis the store uses, with decode_responses semantics"""

    def __init__(self) -> None:
        self.strings: dict[str, str] = {}
        self.sets: dict[str, set[str]] = defaultdict(set)
        self.hashes: dict[str, dict[str, str]] = defaultdict(dict)
        self.lists: dict[str, list[str]] = defaultdict(list)
        self.executed = 0

    @staticmethod
    def _decode(v: bytes | str) -> str:
        return v.decode() if isinstance(v, bytes) else v

    def pipeline(self, transaction: bool = True) -> "FakePipeline":
        assert transaction
        return FakePipeline(self)

    def sadd(self, key: str, *values: str) -> None:
        self.sets[key].update(values)

    def smembers(self, key: str) -> set[str]:
        return set(self.sets.get(key, set()))

    def set(self, key: str, value: bytes) -> None:
        self.strings[key] = self._decode(value)

    def get(self, key: str) -> str | None:
        return self.strings.get(key)

    def hset(self, key: str, mapping: dict[str, bytes]) -> None:
        self.hashes[key].update({k: self._decode(v) for k, v in mapping.items()})

    def hgetall(self, key: str) -> dict[str, str]:
        return dict(self.hashes.get(key, {}))

    def rpush(self, key: str, *values: bytes) -> None:
        self.lists[key].extend(self._decode(v) for v in values)

    def lrange(self, key: str, start: int, end: int) -> list[str]:
        values = self.lists.get(key, [])
        return values[start:] if end == -1 else values[start : end + 1]


class FakePipeline:
    def __init__(self, client: FakeRedis) -> None:
        self.client = client
        self.ops: list[tuple[str, tuple, dict]] = []

    def __getattr__(self, name: str):
        def queue(*args, **kwargs) -> None:
            self.ops.append((name, args, kwargs))
        return queue

    def execute(self) -> None:
        for name, args, kwargs in self.ops:
            getattr(self.client, name)(*args, **kwargs)
        self.client.executed += 1


now = dt.datetime(2024, 3, 1, 9, 30, tzinfo=dt.timezone.utc)


@pytest.fixture(params=["memory", "redis"])
def store(request) -> RunStore:
    if request.param == "memory":
        return MemoryStore()
    return RedisStore(FakeRedis(), prefix="test")


def complete(run, name: str) -> None:
    candidate = next(c for c in api.candidates(run, now) if c.task == name)
    active = api.start(run, candidate, f"{name}-0", "h0", now)
    attempt = TaskAttempt(
        attempt_id=active.attempt_id,
        instant=active.instant,
        action=active.action,
        start_time=now,
        stop_time=now,
        outcome=TaskState.COMPLETED,
        host="h0",
    )
    api.finish(run, name, attempt, now)


def test_roundtrip(store, world, task):
    w = world(
        {"a": task(provides=["alpha"], times=["09:00", "12:00"]), "b": task(requires=[{"resource": "alpha"}])},
        calendars={"weekdays": {"exclude": ["2024-12-25"]}},
        variables={"base": "/data"},
    )
    run = api.initialize("r1", "roundtrip", w, now)
    flush(store, run)
    complete(run, "a")
    flush(store, run)
    complete(run, "b")
    api.kill_task(run, "a", now)
    flush(store, run)

    (persisted,) = store.load_all()
    restored = api.restore(persisted.header, persisted.tasks, persisted.attempts, persisted.intervals)
    assert restored.header == run.header
    assert restored.tasks == run.tasks
    assert restored.attempts == run.attempts
    assert [e.interval for e in restored.ledger.all()] == [e.interval for e in run.ledger.all()]
    assert restored.state() == run.state()
    assert restored.world.calendars["weekdays"].exclude == [dt.date(2024, 12, 25)]
    assert restored.schedules["a"].first() == run.schedules["a"].first()


def test_attempts_appended_once(store, world, task):
    run = api.initialize("r1", "once", world({"a": task()}), now)
    complete(run, "a")
    flush(store, run)
    flush(store, run)
    (persisted,) = store.load_all()
    assert len(persisted.attempts["a"]) == 1


def test_teardown_overwrites_entry(store, world, task):
    run = api.initialize("r1", "down", world({"a": task(provides=["alpha"], down={"command": "true"})}), now)
    complete(run, "a")
    flush(store, run)
    api.request_down(run, "a", dt.datetime(2024, 3, 1, 9, tzinfo=dt.timezone.utc), now)
    (candidate,) = api.candidates(run, now)
    active = api.start(run, candidate, "a-1", "h0", now)
    api.finish(
        run,
        "a",
        TaskAttempt(
            attempt_id=active.attempt_id,
            instant=active.instant,
            action=active.action,
            start_time=now,
            stop_time=now,
            outcome=TaskState.COMPLETED,
            host="h0",
        ),
        now,
    )
    flush(store, run)
    (persisted,) = store.load_all()
    (entry,) = persisted.intervals
    assert entry.teardowns == [now]


def test_collect_drains(world, task):
    run = api.initialize("r1", "drain", world({"a": task()}), now)
    changes = collect(run)
    assert changes.header is not None
    assert set(changes.tasks) == {"a"}
    assert collect(run).is_empty()


def test_one_transaction_per_commit(world, task):
    client = FakeRedis()
    store = RedisStore(client, prefix="test")
    run = api.initialize("r1", "tx", world({"a": task(provides=["alpha"])}), now)
    complete(run, "a")
    flush(store, run)
    assert client.executed == 1
    assert client.smembers("test:runs") == {"r1"}
    assert set(client.hashes["test:run:r1:ledger"]) == {"alpha|2024-03-01T09:00:00+00:00"}
    assert len(client.lists["test:run:r1:attempts:a"]) == 1


def test_first_commit_needs_header(world, task):
    store = MemoryStore()
    run = api.initialize("r1", "headless", world({"a": task()}), now)
    run.dirty_header = False
    with pytest.raises(KeyError):
        flush(store, run)


def test_build_store():
    assert isinstance(build_store(MemoryStorageConfig()), MemoryStore)
    redis_store = build_store(RedisStorageConfig(type="redis", url="redis://localhost:6379/1", prefix="x"))
    assert isinstance(redis_store, RedisStore)
    assert redis_store.prefix == "x"
