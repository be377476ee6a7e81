"""
Keeps the runs in redis. Layout, under a configurable prefix:
 - `{prefix}:runs`: set of run ids
 - `{prefix}:run:{id}:header`: the header as json
 - `{prefix}:run:{id}:tasks`: hash of task name -> runtime json
 - `{prefix}:run:{id}:attempts:{task}`: list of attempt jsons, appended to only
 - `{prefix}:run:{id}:ledger`: hash of `resource|end` -> ledger entry json
Each commit is a single MULTI/EXEC pipeline
"""

import logging

import orjson
import redis

from sluice.low.core import RunId
from sluice.scheduler.core import RunHeader, TaskAttempt, TaskRuntime
from sluice.scheduler.ledger import ResourceInterval
from sluice.store.api import PersistedRun, RunChanges

logger = logging.getLogger(__name__)


class RedisStore():
    def __init__(self, client: redis.Redis, prefix: str = "sluice") -> None:
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "sluice") -> "RedisStore":
        return cls(redis.Redis.from_url(url, decode_responses=True), prefix)

    def _key(self, run_id: RunId, *parts: str) -> str:
        return ":".join([self.prefix, "run", run_id, *parts])

    def commit(self, changes: RunChanges) -> None:
        pipe = self.client.pipeline(transaction=True)
        pipe.sadd(f"{self.prefix}:runs", changes.run_id)
        if changes.header is not None:
            pipe.set(self._key(changes.run_id, "header"), orjson.dumps(changes.header.model_dump()))
        if changes.tasks:
            pipe.hset(
                self._key(changes.run_id, "tasks"),
                mapping={name: orjson.dumps(rt.model_dump()) for name, rt in changes.tasks.items()},
            )
        for task, attempt in changes.attempts:
            pipe.rpush(self._key(changes.run_id, "attempts", task), orjson.dumps(attempt.model_dump()))
        if changes.intervals:
            pipe.hset(
                self._key(changes.run_id, "ledger"),
                mapping={entry.key: orjson.dumps(entry.model_dump()) for entry in changes.intervals},
            )
        pipe.execute()

    def _load(self, run_id: RunId) -> PersistedRun | None:
        raw_header = self.client.get(self._key(run_id, "header"))
        if raw_header is None:
            logger.warning(f"run {run_id} listed but without a header, skipping")
            return None
        header = RunHeader(**orjson.loads(raw_header))
        tasks = {
            name: TaskRuntime(**orjson.loads(raw))
            for name, raw in self.client.hgetall(self._key(run_id, "tasks")).items()
        }
        attempts = {
            name: [TaskAttempt(**orjson.loads(raw)) for raw in self.client.lrange(self._key(run_id, "attempts", name), 0, -1)]
            for name in header.world.tasks
        }
        intervals = [
            ResourceInterval(**orjson.loads(raw))
            for raw in self.client.hgetall(self._key(run_id, "ledger")).values()
        ]
        return PersistedRun(header=header, tasks=tasks, attempts=attempts, intervals=intervals)

    def load_all(self) -> list[PersistedRun]:
        rv: list[PersistedRun] = []
        for run_id in sorted(self.client.smembers(f"{self.prefix}:runs")):
            if (persisted := self._load(run_id)) is not None:
                rv.append(persisted)
        return rv
