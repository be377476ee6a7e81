"""
Keeps the runs in memory -- for tests and for deployments where a restart may forget everything
"""

import threading

from sluice.low.core import RunId
from sluice.scheduler.ledger import ResourceInterval
from sluice.store.api import PersistedRun, RunChanges


class MemoryStore():
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.runs: dict[RunId, PersistedRun] = {}
        self.ledgers: dict[RunId, dict[str, ResourceInterval]] = {}

    def commit(self, changes: RunChanges) -> None:
        with self.lock:
            if changes.run_id not in self.runs:
                if changes.header is None:
                    raise KeyError(f"first commit of {changes.run_id} without a header")
                self.runs[changes.run_id] = PersistedRun(header=changes.header, tasks={}, attempts={}, intervals=[])
                self.ledgers[changes.run_id] = {}
            persisted = self.runs[changes.run_id]
            if changes.header is not None:
                persisted.header = changes.header
            persisted.tasks.update(changes.tasks)
            for task, attempt in changes.attempts:
                persisted.attempts.setdefault(task, []).append(attempt)
            for entry in changes.intervals:
                self.ledgers[changes.run_id][entry.key] = entry

    def load_all(self) -> list[PersistedRun]:
        with self.lock:
            return [
                PersistedRun(
                    header=p.header.model_copy(deep=True),
                    tasks={k: v.model_copy(deep=True) for k, v in p.tasks.items()},
                    attempts={k: [a.model_copy(deep=True) for a in v] for k, v in p.attempts.items()},
                    intervals=[e.model_copy(deep=True) for e in self.ledgers[run_id].values()],
                )
                for run_id, p in self.runs.items()
            ]
