"""
Run state: per task runtime & attempt history, the ledger, and the aggregates derived from them.

A task without a state is *held*: its next instant has not arrived yet. Aggregates (run state,
progress, counts) are never stored, always derived from the task states.
"""

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from sluice.low.core import AttemptId, HostId, RunId, TaskName, WorldDefinition
from sluice.scheduler.graph import DependencyGraph, build
from sluice.scheduler.ledger import Ledger
from sluice.schedule.core import Schedule


class TaskState(str, Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    ERRORED = "ERRORED"
    COMPLETED = "COMPLETED"
    KILLED = "KILLED"


class ActionKind(str, Enum):
    up = "up"
    down = "down"


class _CamelModel(BaseModel):
    # NOTE the camel case is for the http consumers, python side constructs with field names
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CommandResult(_CamelModel):
    step: str  # check, up or down
    argv: list[str]
    exit_code: Optional[int] = Field(None, description="None when the process never started or was killed")
    killed: bool = False
    timed_out: bool = False
    output: str = ""
    error: str = ""
    start_time: dt.datetime
    stop_time: dt.datetime
    max_cpu: float = Field(0.0, description="percent of one core, summed over the process tree")
    avg_cpu: float = 0.0
    max_rss: int = Field(0, description="bytes, summed over the process tree")
    avg_rss: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.killed


class TaskAttempt(_CamelModel):
    attempt_id: AttemptId
    instant: dt.datetime
    action: ActionKind
    start_time: dt.datetime
    stop_time: dt.datetime
    outcome: TaskState  # one of COMPLETED, ERRORED, KILLED
    host: HostId
    infra_failure: bool = False
    detail: str = ""
    results: list[CommandResult] = Field(default_factory=list)


class ActiveAttempt(BaseModel):
    attempt_id: AttemptId
    action: ActionKind
    instant: dt.datetime
    host: HostId
    resources: dict[str, int]
    start_time: dt.datetime


class TaskRuntime(BaseModel):
    state: Optional[TaskState] = None
    cursor: Optional[dt.datetime] = Field(None, description="next instant to produce, None once exhausted")
    last_produced: Optional[dt.datetime] = None
    rerun: bool = Field(False, description="forced re-run of last_produced")
    pending_down: list[dt.datetime] = Field(default_factory=list)
    active: Optional[ActiveAttempt] = None
    queued_since: Optional[dt.datetime] = None
    stalled: Optional[str] = None

    def next_action(self) -> Optional[tuple[ActionKind, dt.datetime]]:
        """What would run if this task got admitted now"""
        if self.pending_down:
            return ActionKind.down, self.pending_down[0]
        if self.rerun and self.last_produced is not None:
            return ActionKind.up, self.last_produced
        if self.cursor is not None:
            return ActionKind.up, self.cursor
        return None


class RunHeader(BaseModel):
    run_id: RunId
    tag: str
    world: WorldDefinition
    submitted: dt.datetime
    last_update: dt.datetime
    killed: bool = False


@dataclass
class DagRun:
    header: RunHeader
    tasks: dict[TaskName, TaskRuntime]
    attempts: dict[TaskName, list[TaskAttempt]]
    ledger: Ledger = field(default_factory=Ledger)

    # derived from the world, see `scheduler.graph.build`
    graph: DependencyGraph = field(init=False)
    schedules: dict[TaskName, Schedule] = field(init=False)

    # changes not yet persisted, see `store.api.flush`
    dirty_header: bool = field(default=True, init=False)
    dirty_tasks: set[TaskName] = field(default_factory=set, init=False)
    new_attempts: list[tuple[TaskName, TaskAttempt]] = field(default_factory=list, init=False)

    def __post_init__(self) -> None:
        self.graph, self.schedules = build(self.header.world)

    @property
    def run_id(self) -> RunId:
        return self.header.run_id

    @property
    def world(self) -> WorldDefinition:
        return self.header.world

    def touch(self, task: TaskName, now: dt.datetime) -> None:
        self.dirty_tasks.add(task)
        self.header.last_update = max(self.header.last_update, now)
        self.dirty_header = True

    def add_attempt(self, task: TaskName, attempt: TaskAttempt) -> None:
        self.attempts.setdefault(task, []).append(attempt)
        self.new_attempts.append((task, attempt))

    def task_states(self) -> dict[TaskName, TaskState]:
        return {name: rt.state for name, rt in self.tasks.items() if rt.state is not None}

    def task_counts(self) -> dict[str, int]:
        rv = {state.value: 0 for state in TaskState}
        for state in self.task_states().values():
            rv[state.value] += 1
        return rv

    def state(self) -> TaskState:
        if self.header.killed:
            return TaskState.KILLED
        states = list(self.task_states().values())
        if TaskState.RUNNING in states:
            return TaskState.RUNNING
        if TaskState.ERRORED in states:
            return TaskState.ERRORED
        if self.tasks and len(states) == len(self.tasks) and all(s == TaskState.COMPLETED for s in states):
            return TaskState.COMPLETED
        return TaskState.QUEUED

    def progress(self) -> float:
        if not self.tasks:
            return 1.0
        return self.task_counts()[TaskState.COMPLETED.value] / len(self.tasks)

    def is_finished(self) -> bool:
        """Killed, or every task completed with nothing left to produce"""
        if self.header.killed:
            return True
        return all(
            rt.state == TaskState.COMPLETED and rt.next_action() is None
            for rt in self.tasks.values()
        )
