"""
Transitions of the task state machine & the aggregates derived from it
"""

import datetime as dt

import pytest

from sluice.low.interval import Interval
from sluice.scheduler import api
from sluice.scheduler.core import ActionKind, DagRun, TaskAttempt, TaskState


def utc(*args: int) -> dt.datetime:
    return dt.datetime(*args, tzinfo=dt.timezone.utc)


now = utc(2024, 3, 1, 9, 30)


def start_all(run: DagRun, at: dt.datetime = now) -> dict[str, str]:
    rv = {}
    for candidate in api.candidates(run, at):
        attempt_id = f"{candidate.task}-{len(run.attempts[candidate.task])}"
        api.start(run, candidate, attempt_id, "h0", at)
        rv[candidate.task] = attempt_id
    return rv


def report(run: DagRun, name: str, outcome: TaskState, at: dt.datetime = now, **kwargs) -> TaskAttempt:
    active = run.tasks[name].active
    assert active is not None
    attempt = TaskAttempt(
        attempt_id=kwargs.pop("attempt_id", active.attempt_id),
        instant=active.instant,
        action=active.action,
        start_time=active.start_time,
        stop_time=at,
        outcome=outcome,
        host=active.host,
        **kwargs,
    )
    api.finish(run, name, attempt, at)
    return attempt


@pytest.fixture
def run(world, task) -> DagRun:
    w = world({
        "a": task(provides=["alpha"], down={"command": "true"}),
        "b": task(provides=["beta"]),
        "c": task(),
    })
    return api.initialize("r1", "trio", w, now)


def test_initial(run, world, task):
    assert run.task_states() == {"a": TaskState.QUEUED, "b": TaskState.QUEUED, "c": TaskState.QUEUED}
    assert run.state() == TaskState.QUEUED
    assert run.progress() == 0.0

    later = api.initialize("r2", "later", world({"a": task(times=["10:00"])}), now)
    assert later.tasks["a"].state is None
    assert later.task_states() == {}
    assert later.state() == TaskState.QUEUED
    assert api.schedule_due(later, utc(2024, 3, 1, 10)) == ["a"]


def test_progress_while_running(run):
    start_all(run)
    report(run, "a", TaskState.COMPLETED)
    report(run, "b", TaskState.COMPLETED)
    assert run.progress() == pytest.approx(2 / 3)
    assert run.state() == TaskState.RUNNING
    assert run.task_counts() == {"QUEUED": 0, "RUNNING": 1, "ERRORED": 0, "COMPLETED": 2, "KILLED": 0}

    report(run, "c", TaskState.ERRORED)
    assert run.state() == TaskState.ERRORED
    assert not run.is_finished()


def test_completed_records_and_advances(run):
    start_all(run)
    report(run, "a", TaskState.COMPLETED)
    runtime = run.tasks["a"]
    assert runtime.state == TaskState.COMPLETED
    assert runtime.last_produced == utc(2024, 3, 1, 9)
    # friday -> monday
    assert runtime.cursor == utc(2024, 3, 4, 9)
    assert run.ledger.find("alpha", run.schedules["a"].interval_ending(utc(2024, 3, 1, 9))) is not None
    assert run.attempts["a"][-1].outcome == TaskState.COMPLETED

    # due again come monday
    assert api.schedule_due(run, utc(2024, 3, 4, 9)) == ["a"]


def test_all_completed(world, task):
    w = world({"a": task(valid_to="2024-03-02T00:00:00"), "b": task(valid_to="2024-03-02T00:00:00")})
    run = api.initialize("r1", "once", w, now)
    start_all(run)
    report(run, "a", TaskState.COMPLETED)
    report(run, "b", TaskState.COMPLETED)
    assert run.state() == TaskState.COMPLETED
    assert run.progress() == 1.0
    assert run.is_finished()


def test_kill_is_immediate(run):
    attempts = start_all(run)
    active = api.kill_task(run, "a", now)
    assert active is not None and active.attempt_id == attempts["a"]
    assert run.tasks["a"].state == TaskState.KILLED
    assert run.tasks["a"].active is None

    # the late report of the killed process only lands in the history
    late = TaskAttempt(
        attempt_id=attempts["a"],
        instant=active.instant,
        action=ActionKind.up,
        start_time=now,
        stop_time=now,
        outcome=TaskState.ERRORED,
        host="h0",
    )
    api.finish(run, "a", late, now)
    assert run.tasks["a"].state == TaskState.KILLED
    assert run.attempts["a"] == [late]

    # completed tasks are not killed
    report(run, "b", TaskState.COMPLETED)
    assert api.kill_task(run, "b", now) is None
    assert run.tasks["b"].state == TaskState.COMPLETED


def test_retry_keeps_history(run):
    start_all(run)
    report(run, "c", TaskState.ERRORED)
    history = list(run.attempts["c"])

    assert api.retry_task(run, "c", now) is None
    assert run.tasks["c"].state == TaskState.QUEUED
    assert run.attempts["c"] == history

    start_all(run)
    report(run, "c", TaskState.COMPLETED)
    assert run.attempts["c"][: len(history)] == history
    assert len(run.attempts["c"]) == 2


def test_retry_running_kills_first(run):
    attempts = start_all(run)
    active = api.retry_task(run, "b", now)
    assert active is not None and active.attempt_id == attempts["b"]
    assert run.tasks["b"].state == TaskState.QUEUED


def test_retry_completed_reruns(run):
    start_all(run)
    report(run, "a", TaskState.COMPLETED)
    before = run.ledger.all()

    api.retry_task(run, "a", now)
    runtime = run.tasks["a"]
    assert runtime.state == TaskState.QUEUED
    assert runtime.next_action() == (ActionKind.up, utc(2024, 3, 1, 9))

    start_all(run)
    report(run, "a", TaskState.COMPLETED)
    assert runtime.state == TaskState.COMPLETED
    assert not runtime.rerun
    assert runtime.cursor == utc(2024, 3, 4, 9)
    assert run.ledger.all() == before


def test_kill_and_retry_run(run):
    start_all(run)
    report(run, "c", TaskState.COMPLETED)
    signalled = api.kill_run(run, now)
    assert sorted(a.attempt_id for a in signalled) == ["a-0", "b-0"]
    assert run.state() == TaskState.KILLED
    assert run.is_finished()
    assert api.candidates(run, now) == []
    assert api.schedule_due(run, utc(2024, 3, 4, 9)) == []

    api.retry_run(run, now)
    assert run.task_states() == {"a": TaskState.QUEUED, "b": TaskState.QUEUED, "c": TaskState.COMPLETED}
    assert run.state() == TaskState.QUEUED


def test_infra_failure_requeues(run):
    start_all(run)
    report(run, "a", TaskState.ERRORED, infra_failure=True, detail="worker lost")
    assert run.tasks["a"].state == TaskState.QUEUED
    assert run.attempts["a"][-1].infra_failure


def test_recover(run):
    start_all(run)
    api.recover(run, now)
    assert all(rt.state == TaskState.QUEUED for rt in run.tasks.values())
    assert all(rt.active is None for rt in run.tasks.values())
    assert all(run.attempts[name][-1].infra_failure for name in run.tasks)


def test_down(run):
    with pytest.raises(ValueError):
        api.request_down(run, "a", utc(2024, 3, 1, 9), now)
    with pytest.raises(ValueError):
        api.request_down(run, "b", utc(2024, 3, 1, 9), now)

    start_all(run)
    report(run, "a", TaskState.COMPLETED)
    api.request_down(run, "a", utc(2024, 3, 1, 9), now)
    runtime = run.tasks["a"]
    assert runtime.state == TaskState.QUEUED
    assert runtime.next_action() == (ActionKind.down, utc(2024, 3, 1, 9))

    start_all(run)
    report(run, "a", TaskState.COMPLETED)
    assert runtime.pending_down == []
    entry = run.ledger.find("alpha", Interval(run.ledger.all()[0].start, utc(2024, 3, 1, 9)))
    assert entry is not None and entry.teardowns == [now]
    assert run.attempts["a"][-1].action == ActionKind.down


def test_overlap_errors(run):
    start_all(run)
    report(run, "a", TaskState.COMPLETED)
    # someone else recorded the next interval
    upcoming = run.schedules["a"].interval_ending(utc(2024, 3, 4, 9))
    run.ledger.record("alpha", "a", Interval(upcoming.start, utc(2024, 3, 2)), now)

    monday = utc(2024, 3, 4, 9, 30)
    api.schedule_due(run, monday)
    start_all(run, monday)
    report(run, "a", TaskState.COMPLETED, monday)
    assert run.tasks["a"].state == TaskState.ERRORED
    assert run.attempts["a"][-1].outcome == TaskState.ERRORED
    assert "overlaps" in run.attempts["a"][-1].detail


def test_stalled(world, task):
    w = world({
        "a": task(provides=["alpha"], times=["12:00"]),
        "b": task(requires=[{"resource": "alpha"}]),
    })
    run = api.initialize("r1", "stall", w, utc(2024, 3, 1, 13))
    api.candidates(run, utc(2024, 3, 1, 13), dependency_timeout_sec=3600)
    assert run.tasks["b"].stalled is None

    assert [c.task for c in api.candidates(run, utc(2024, 3, 1, 15), dependency_timeout_sec=3600)] == ["a"]
    stalled = run.tasks["b"].stalled
    assert stalled is not None and "alpha" in stalled
    assert run.tasks["b"].state == TaskState.QUEUED


def test_down_requested_while_running(world, task):
    w = world({"a": task(provides=["alpha"], down={"command": "true"}, valid_to="2024-03-02T00:00:00")})
    run = api.initialize("r1", "once", w, now)
    start_all(run)
    report(run, "a", TaskState.COMPLETED)
    runtime = run.tasks["a"]
    assert runtime.cursor is None

    api.retry_task(run, "a", now)
    start_all(run)
    api.request_down(run, "a", utc(2024, 3, 1, 9), now)
    assert runtime.state == TaskState.RUNNING
    report(run, "a", TaskState.COMPLETED)
    assert runtime.state == TaskState.COMPLETED
    assert not run.is_finished()

    later = utc(2030, 1, 1)
    assert api.schedule_due(run, later) == ["a"]
    assert [(c.action, c.instant) for c in api.candidates(run, later)] == [(ActionKind.down, utc(2024, 3, 1, 9))]
    start_all(run, later)
    report(run, "a", TaskState.COMPLETED, later)
    assert runtime.pending_down == []
    assert run.is_finished()


def test_second_down_follows_first(world, task):
    w = world({"a": task(provides=["alpha"], down={"command": "true"})})
    run = api.initialize("r1", "twice", w, now)
    start_all(run)
    report(run, "a", TaskState.COMPLETED)
    monday = utc(2024, 3, 4, 9, 30)
    api.schedule_due(run, monday)
    start_all(run, monday)
    report(run, "a", TaskState.COMPLETED, monday)

    api.request_down(run, "a", utc(2024, 3, 1, 9), monday)
    api.request_down(run, "a", utc(2024, 3, 4, 9), monday)
    start_all(run, monday)
    report(run, "a", TaskState.COMPLETED, monday)
    runtime = run.tasks["a"]
    assert runtime.pending_down == [utc(2024, 3, 4, 9)]

    # the next up is only due tuesday, the teardown goes first anyway
    assert api.schedule_due(run, monday) == ["a"]
    assert runtime.next_action() == (ActionKind.down, utc(2024, 3, 4, 9))
    assert [c.task for c in api.candidates(run, monday)] == ["a"]
