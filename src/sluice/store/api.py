"""
The persistence boundary. Runs are written through in batches of changes -- header, touched task
runtimes, new attempts and new or updated ledger entries -- and rebuilt wholesale on restart
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol, runtime_checkable

from sluice.low.core import RunId, TaskName
from sluice.scheduler.core import DagRun, RunHeader, TaskAttempt, TaskRuntime
from sluice.scheduler.ledger import ResourceInterval

logger = logging.getLogger(__name__)


@dataclass
class RunChanges:
    run_id: RunId
    header: Optional[RunHeader] = None
    tasks: dict[TaskName, TaskRuntime] = field(default_factory=dict)
    attempts: list[tuple[TaskName, TaskAttempt]] = field(default_factory=list)
    intervals: list[ResourceInterval] = field(default_factory=list)

    def is_empty(self) -> bool:
        return self.header is None and not self.tasks and not self.attempts and not self.intervals


@dataclass
class PersistedRun:
    header: RunHeader
    tasks: dict[TaskName, TaskRuntime]
    attempts: dict[TaskName, list[TaskAttempt]]
    intervals: list[ResourceInterval]


@runtime_checkable
class RunStore(Protocol):
    def commit(self, changes: RunChanges) -> None:
        """Atomically applies the changes"""
        raise NotImplementedError

    def load_all(self) -> list[PersistedRun]:
        raise NotImplementedError


def collect(run: DagRun) -> RunChanges:
    """Drains the changes accumulated in the run since last time"""
    changes = RunChanges(run_id=run.run_id)
    if run.dirty_header:
        changes.header = run.header.model_copy(deep=True)
        run.dirty_header = False
    for name in sorted(run.dirty_tasks):
        changes.tasks[name] = run.tasks[name].model_copy(deep=True)
    run.dirty_tasks = set()
    changes.attempts = run.new_attempts
    run.new_attempts = []
    # NOTE an entry may be dirty twice, eg, recorded and torn down, only the latest matters
    latest = {entry.key: entry.model_copy(deep=True) for entry in run.ledger.drain_dirty()}
    changes.intervals = list(latest.values())
    return changes


def flush(store: RunStore, run: DagRun) -> None:
    changes = collect(run)
    if not changes.is_empty():
        store.commit(changes)
