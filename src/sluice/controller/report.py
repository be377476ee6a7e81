"""
Views of the runs for the status api: summaries, full detail, and timeline data
"""

import datetime as dt
import logging
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from sluice.low.core import RunId, TaskDefinition, TaskName
from sluice.low.func import maybe_head
from sluice.low.interval import Interval
from sluice.scheduler.core import ActionKind, DagRun, TaskAttempt, TaskState
from sluice.scheduler.ledger import ResourceInterval

logger = logging.getLogger(__name__)

NO_RESOURCE = "-"


class _View(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RunSummary(_View):
    run_id: RunId = Field(alias="runID")
    tag: str
    state: TaskState
    task_counts: dict[str, int]
    progress: float
    start_time: dt.datetime
    last_update: dt.datetime


class RunDetail(RunSummary):
    tasks: dict[TaskName, TaskDefinition]
    task_states: dict[TaskName, TaskState]
    task_attempts: dict[TaskName, list[TaskAttempt]]
    next_instants: dict[TaskName, Optional[dt.datetime]]
    stalled: dict[TaskName, str]
    ledger: list[ResourceInterval]


class TimelineSegment(_View):
    time_range: tuple[dt.datetime, dt.datetime]
    val: TaskState


class TimelineLabel(_View):
    label: str
    data: list[TimelineSegment]


class TimelineGroup(_View):
    group: str
    data: list[TimelineLabel]


def summarize(run: DagRun) -> RunSummary:
    return RunSummary(
        run_id=run.run_id,
        tag=run.header.tag,
        state=run.state(),
        task_counts=run.task_counts(),
        progress=run.progress(),
        start_time=run.header.submitted,
        last_update=run.header.last_update,
    )


def detail(run: DagRun) -> RunDetail:
    return RunDetail(
        **summarize(run).model_dump(),
        tasks=run.world.tasks,
        task_states=run.task_states(),
        task_attempts=run.attempts,
        next_instants={name: rt.cursor for name, rt in run.tasks.items()},
        stalled={name: rt.stalled for name, rt in run.tasks.items() if rt.stalled is not None},
        ledger=run.ledger.all(),
    )


def progress_text(run: DagRun) -> str:
    return "{:.2%}".format(run.progress())


def _segments(run: DagRun, task: TaskName, window: Interval) -> list[TimelineSegment]:
    definition = run.world.tasks[task]
    schedule = run.schedules[task]
    segments: list[TimelineSegment] = []
    produced: list[Interval]
    if (resource := maybe_head(definition.provides)) is not None:
        # produced intervals are the same for all provided resources, one is enough
        produced = [e.interval for e in run.ledger.all() if e.producer == task and e.resource == resource]
    else:
        # nothing in the ledger, successful attempts tell what was produced
        instants = {
            a.instant for a in run.attempts.get(task, []) if a.action == ActionKind.up and a.outcome == TaskState.COMPLETED
        }
        produced = [schedule.interval_ending(instant) for instant in sorted(instants)]
    for interval in produced:
        if (common := interval.intersection(window)) is not None:
            segments.append(TimelineSegment(time_range=(common.start, common.end), val=TaskState.COMPLETED))
    runtime = run.tasks[task]
    current: Optional[dt.datetime] = None
    if runtime.active is not None:
        current = runtime.active.instant
    elif runtime.state in (TaskState.QUEUED, TaskState.ERRORED, TaskState.KILLED) and (action := runtime.next_action()):
        current = action[1]
    if current is not None and runtime.state is not None:
        interval = schedule.interval_ending(current)
        if (common := interval.intersection(window)) is not None:
            segments.append(TimelineSegment(time_range=(common.start, common.end), val=runtime.state))
    return sorted(segments, key=lambda s: s.time_range)


def timeline(
    runs: Iterable[DagRun],
    start: dt.datetime,
    end: dt.datetime,
    max_intervals: Optional[int] = None,
) -> list[TimelineGroup]:
    """Grouped by resource, then by task label; at most `max_intervals` latest segments per label"""
    window = Interval(start, end)
    runs = list(runs)
    groups: dict[str, list[TimelineLabel]] = {}
    for run in runs:
        for task, definition in run.world.tasks.items():
            segments = _segments(run, task, window)
            if max_intervals is not None:
                segments = segments[-max_intervals:] if max_intervals > 0 else []
            label = task if len(runs) == 1 else f"{run.header.tag}/{task}"
            for resource in definition.provides or [NO_RESOURCE]:
                groups.setdefault(resource, []).append(TimelineLabel(label=label, data=segments))
    return [TimelineGroup(group=group, data=labels) for group, labels in sorted(groups.items())]
