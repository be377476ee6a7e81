"""
Transitions of the run state machine. The only place which mutates a DagRun's tasks, attempts
and ledger -- the controller calls these under its lock, and then flushes the changes to the store.

Task states:
 - held (no state) / COMPLETED -> QUEUED when the next instant arrives, see `schedule_due`
 - QUEUED -> RUNNING on admission, see `start`
 - RUNNING -> COMPLETED | ERRORED when the attempt is reported, see `finish`
 - RUNNING | QUEUED -> KILLED on request, see `kill_task`
 - anything -> QUEUED on request, see `retry_task`
"""

import datetime as dt
import logging
from typing import Optional

from sluice.low.core import RunId, TaskName, WorldDefinition
from sluice.low.errors import DependencyTimeout, OverlapError
from sluice.low.func import pyd_replace
from sluice.scheduler.assign import Candidate
from sluice.scheduler.core import (
    ActionKind,
    ActiveAttempt,
    DagRun,
    RunHeader,
    TaskAttempt,
    TaskRuntime,
    TaskState,
)
from sluice.scheduler.ledger import Ledger, ResourceInterval
from sluice.scheduler.resolve import unmet

logger = logging.getLogger(__name__)


def initialize(run_id: RunId, tag: str, world: WorldDefinition, now: dt.datetime) -> DagRun:
    """Fresh run of a (copy of the) world. Raises ConfigError if the world is invalid"""
    header = RunHeader(run_id=run_id, tag=tag, world=world.model_copy(deep=True), submitted=now, last_update=now)
    run = DagRun(header=header, tasks={}, attempts={name: [] for name in world.tasks})
    for name, schedule in run.schedules.items():
        first = schedule.first()
        if first is None:
            logger.warning(f"{run_id}/{name} has an empty schedule, considering it completed")
            run.tasks[name] = TaskRuntime(state=TaskState.COMPLETED, cursor=None)
        else:
            run.tasks[name] = TaskRuntime(cursor=first)
        run.touch(name, now)
    schedule_due(run, now)
    return run


def restore(
    header: RunHeader,
    tasks: dict[TaskName, TaskRuntime],
    attempts: dict[TaskName, list[TaskAttempt]],
    intervals: list[ResourceInterval],
) -> DagRun:
    run = DagRun(header=header, tasks=tasks, attempts=attempts, ledger=Ledger(intervals))
    run.dirty_header = False
    return run


def recover(run: DagRun, now: dt.datetime) -> None:
    """After a controller restart nothing is running anymore -- requeue what was"""
    for name, runtime in run.tasks.items():
        if runtime.state != TaskState.RUNNING or runtime.active is None:
            continue
        active = runtime.active
        logger.warning(f"{run.run_id}/{name} was running {active.attempt_id} during restart, requeueing")
        attempt = TaskAttempt(
            attempt_id=active.attempt_id,
            instant=active.instant,
            action=active.action,
            start_time=active.start_time,
            stop_time=now,
            outcome=TaskState.ERRORED,
            host=active.host,
            infra_failure=True,
            detail="controller restarted during execution",
        )
        run.add_attempt(name, attempt)
        _queue(runtime, now)
        runtime.active = None
        run.touch(name, now)


def _queue(runtime: TaskRuntime, now: dt.datetime) -> None:
    runtime.state = TaskState.QUEUED
    runtime.queued_since = now
    runtime.stalled = None


def schedule_due(run: DagRun, now: dt.datetime) -> list[TaskName]:
    """Held or caught up tasks whose next instant has arrived become QUEUED, as do completed tasks with
    teardowns requested while they were busy"""
    if run.header.killed:
        return []
    rv: list[TaskName] = []
    for name, runtime in run.tasks.items():
        if runtime.state not in (None, TaskState.COMPLETED):
            continue
        if runtime.pending_down or (runtime.cursor is not None and runtime.cursor <= now):
            _queue(runtime, now)
            run.touch(name, now)
            rv.append(name)
    if rv:
        logger.debug(f"{run.run_id}: due {rv}")
    return rv


def candidates(run: DagRun, now: dt.datetime, dependency_timeout_sec: Optional[float] = None) -> list[Candidate]:
    """QUEUED tasks whose instant arrived and whose dependencies are met. Teardowns need no dependencies"""
    if run.header.killed:
        return []
    rv: list[Candidate] = []
    for name, runtime in run.tasks.items():
        if runtime.state != TaskState.QUEUED:
            continue
        if (action := runtime.next_action()) is None:
            continue
        kind, instant = action
        definition = run.world.tasks[name]
        if kind == ActionKind.up:
            if instant > now:
                continue
            if missing := unmet(run, name, instant):
                _check_stalled(run, name, runtime, instant, [r.resource for r in missing], now, dependency_timeout_sec)
                continue
            command = definition.up
        else:
            if definition.down is None:
                raise ValueError(f"teardown pending for {name} which has no down command")
            command = definition.down
        if runtime.stalled is not None:
            runtime.stalled = None
            run.touch(name, now)
        rv.append(Candidate(run_id=run.run_id, task=name, action=kind, instant=instant, resources=command.resources))
    return rv


def _check_stalled(
    run: DagRun,
    name: TaskName,
    runtime: TaskRuntime,
    instant: dt.datetime,
    missing: list[str],
    now: dt.datetime,
    dependency_timeout_sec: Optional[float],
) -> None:
    if dependency_timeout_sec is None or runtime.stalled is not None:
        return
    since = runtime.queued_since or now
    waited = (now - max(since, instant)).total_seconds()
    if waited > dependency_timeout_sec:
        notice = DependencyTimeout(name, instant, waited, missing)
        logger.warning(f"{run.run_id}: {notice}")
        runtime.stalled = str(notice)
        run.touch(name, now)


def start(run: DagRun, candidate: Candidate, attempt_id: str, host: str, now: dt.datetime) -> ActiveAttempt:
    runtime = run.tasks[candidate.task]
    if runtime.state != TaskState.QUEUED:
        raise ValueError(f"cannot start {candidate.task} in state {runtime.state}")
    active = ActiveAttempt(
        attempt_id=attempt_id,
        action=candidate.action,
        instant=candidate.instant,
        host=host,
        resources=candidate.resources,
        start_time=now,
    )
    runtime.active = active
    runtime.state = TaskState.RUNNING
    runtime.queued_since = None
    run.touch(candidate.task, now)
    return active


def _produced(run: DagRun, name: TaskName, runtime: TaskRuntime, instant: dt.datetime, now: dt.datetime) -> None:
    schedule = run.schedules[name]
    interval = schedule.interval_ending(instant)
    # NOTE a forced re-run of an already recorded interval is fine, it just does not get recorded twice
    fresh = [r for r in run.world.tasks[name].provides if run.ledger.find(r, interval) is None]
    for resource in fresh:
        run.ledger.check(resource, name, interval)
    for resource in fresh:
        run.ledger.record(resource, name, interval, now)
    if runtime.rerun and instant == runtime.last_produced:
        runtime.rerun = False
    else:
        runtime.last_produced = instant if runtime.last_produced is None else max(runtime.last_produced, instant)
        runtime.cursor = schedule.next_time(instant)


def _torn_down(run: DagRun, name: TaskName, runtime: TaskRuntime, instant: dt.datetime, now: dt.datetime) -> None:
    interval = run.schedules[name].interval_ending(instant)
    for resource in run.world.tasks[name].provides:
        run.ledger.mark_teardown(resource, interval, now)
    if instant in runtime.pending_down:
        runtime.pending_down.remove(instant)


def finish(run: DagRun, name: TaskName, attempt: TaskAttempt, now: dt.datetime) -> None:
    """Accounts a reported attempt. Attempts not matching the active one only land in the history"""
    runtime = run.tasks[name]
    active = runtime.active
    if active is None or active.attempt_id != attempt.attempt_id:
        logger.info(f"{run.run_id}/{name}: attempt {attempt.attempt_id} no longer active, only recording")
        run.add_attempt(name, attempt)
        run.touch(name, now)
        return

    runtime.active = None
    if attempt.infra_failure:
        logger.warning(f"{run.run_id}/{name}: infrastructure failure of {attempt.attempt_id}, requeueing")
        _queue(runtime, now)
    elif attempt.outcome == TaskState.COMPLETED:
        try:
            if attempt.action == ActionKind.up:
                _produced(run, name, runtime, attempt.instant, now)
            else:
                _torn_down(run, name, runtime, attempt.instant, now)
            runtime.state = TaskState.COMPLETED
        except OverlapError as e:
            logger.error(f"{run.run_id}/{name}: {e}")
            attempt = pyd_replace(attempt, outcome=TaskState.ERRORED, detail=str(e))
            runtime.state = TaskState.ERRORED
    elif attempt.outcome == TaskState.KILLED:
        runtime.state = TaskState.KILLED
    else:
        runtime.state = TaskState.ERRORED
    logger.info(
        f"{run.run_id}/{name}: {attempt.action.value} at {attempt.instant.isoformat()} -> {attempt.outcome.value}"
    )
    run.add_attempt(name, attempt)
    run.touch(name, now)


def kill_task(run: DagRun, name: TaskName, now: dt.datetime) -> Optional[ActiveAttempt]:
    """Immediately KILLED if running, queued or held. Returns the attempt to signal, if any"""
    runtime = run.tasks[name]
    if runtime.state not in (None, TaskState.QUEUED, TaskState.RUNNING):
        return None
    active = runtime.active
    runtime.active = None
    runtime.state = TaskState.KILLED
    runtime.queued_since = None
    run.touch(name, now)
    logger.info(f"{run.run_id}/{name} killed")
    return active


def retry_task(run: DagRun, name: TaskName, now: dt.datetime) -> Optional[ActiveAttempt]:
    """Back to QUEUED from any state. A running task is killed first, returning the attempt to signal"""
    runtime = run.tasks[name]
    if runtime.state == TaskState.QUEUED:
        return None
    active: Optional[ActiveAttempt] = None
    if runtime.state == TaskState.RUNNING:
        active = runtime.active
        runtime.active = None
    elif runtime.state == TaskState.COMPLETED and not runtime.pending_down:
        runtime.rerun = runtime.last_produced is not None
        if runtime.next_action() is None:
            # empty schedule, there is nothing to re-run
            return None
    _queue(runtime, now)
    run.touch(name, now)
    logger.info(f"{run.run_id}/{name} queued for retry")
    return active


def kill_run(run: DagRun, now: dt.datetime) -> list[ActiveAttempt]:
    run.header.killed = True
    run.dirty_header = True
    rv: list[ActiveAttempt] = []
    for name in run.tasks:
        if (active := kill_task(run, name, now)) is not None:
            rv.append(active)
    return rv


def retry_run(run: DagRun, now: dt.datetime) -> list[ActiveAttempt]:
    run.header.killed = False
    run.dirty_header = True
    rv: list[ActiveAttempt] = []
    for name, runtime in run.tasks.items():
        if runtime.state in (TaskState.ERRORED, TaskState.KILLED):
            if (active := retry_task(run, name, now)) is not None:
                rv.append(active)
    run.header.last_update = max(run.header.last_update, now)
    return rv


def request_down(run: DagRun, name: TaskName, instant: dt.datetime, now: dt.datetime) -> None:
    """Queues a teardown of an interval the task produced earlier"""
    if name not in run.tasks:
        raise KeyError(name)
    if run.world.tasks[name].down is None:
        raise ValueError(f"{name} has no down command")
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=dt.timezone.utc)
    runtime = run.tasks[name]
    schedule = run.schedules[name]
    if runtime.last_produced is None or instant > runtime.last_produced or not schedule.is_instant(instant):
        raise ValueError(f"{name} did not produce an interval ending at {instant.isoformat()}")
    if instant in runtime.pending_down:
        return
    runtime.pending_down = sorted(runtime.pending_down + [instant])
    if runtime.state in (None, TaskState.COMPLETED):
        _queue(runtime, now)
    run.touch(name, now)

