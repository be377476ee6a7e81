"""
Readiness of tasks against the ledger, including offsets into the producer's schedule
"""

import datetime as dt

from sluice.scheduler import api
from sluice.scheduler.core import DagRun, TaskAttempt, TaskState
from sluice.scheduler.resolve import VACUOUS, is_ready, target_interval, unmet


def utc(*args: int) -> dt.datetime:
    return dt.datetime(*args, tzinfo=dt.timezone.utc)


def produce(run: DagRun, name: str, now: dt.datetime) -> dt.datetime:
    """Admits & completes the task's next up action, returns its instant"""
    api.schedule_due(run, now)
    candidate = next(c for c in api.candidates(run, now) if c.task == name)
    active = api.start(run, candidate, f"{name}-{candidate.instant.isoformat()}", "h0", now)
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
    return candidate.instant


def test_friday_afternoon(world, task):
    # 2024-03-01 is a friday, EST is utc-5
    w = world(
        {
            "task_a": task(times=["09:00", "12:00"], timezone="America/New_York", provides=["alpha"]),
            "task_b": task(
                times=["17:00"],
                timezone="America/New_York",
                calendar_name="fridays",
                requires=[{"resource": "alpha", "offset": 0}],
            ),
        },
        calendars={"weekdays": {}, "fridays": {"mask": ["Fri"]}},
    )
    now = utc(2024, 3, 1, 22)
    run = api.initialize("r1", "friday", w, now)
    friday_five = utc(2024, 3, 1, 22)
    assert run.tasks["task_b"].cursor == friday_five
    assert run.tasks["task_b"].state == TaskState.QUEUED
    assert not is_ready(run, "task_b", friday_five)

    assert produce(run, "task_a", now) == utc(2024, 3, 1, 14)
    # the morning interval is not enough
    assert not is_ready(run, "task_b", friday_five)
    assert api.schedule_due(run, now) == ["task_a"]
    assert [c.task for c in api.candidates(run, now)] == ["task_a"]

    assert produce(run, "task_a", now) == utc(2024, 3, 1, 17)
    assert is_ready(run, "task_b", friday_five)
    assert not is_ready(run, "task_b", friday_five, now=utc(2024, 3, 1, 21))
    assert {c.task for c in api.candidates(run, now)} == {"task_b"}


def test_no_requirements(world, task):
    run = api.initialize("r1", "solo", world({"a": task()}), utc(2024, 3, 1, 8))
    assert run.tasks["a"].state is None
    assert is_ready(run, "a", utc(2024, 3, 1, 9))
    assert not is_ready(run, "a", utc(2024, 3, 1, 9), now=utc(2024, 3, 1, 8))


def test_own_previous_interval(world, task):
    w = world({
        "a": task(
            calendar_name="everyday",
            provides=["alpha"],
            requires=[{"resource": "alpha", "offset": -1}],
        ),
    })
    now = utc(2024, 3, 2, 10)
    run = api.initialize("r1", "chain", w, now)
    first = utc(2024, 3, 1, 9)
    second = utc(2024, 3, 2, 9)
    requirement = w.tasks["a"].requires[0]

    # nothing before the first instant to wait for
    assert target_interval(run, requirement, first) is VACUOUS
    assert is_ready(run, "a", first)
    assert not is_ready(run, "a", second)

    assert produce(run, "a", now) == first
    assert is_ready(run, "a", second)
    assert produce(run, "a", now) == second
    assert run.tasks["a"].cursor == utc(2024, 3, 3, 9)


def test_offset_zero_before_producer_starts(world, task):
    w = world({
        "a": task(provides=["alpha"], times=["12:00"]),
        "b": task(requires=[{"resource": "alpha"}], times=["09:00"]),
    })
    run = api.initialize("r1", "early", w, utc(2024, 3, 1, 10))
    assert target_interval(run, w.tasks["b"].requires[0], utc(2024, 3, 1, 9)) is None
    assert [r.resource for r in unmet(run, "b", utc(2024, 3, 1, 9))] == ["alpha"]


def test_offset_past_window(world, task):
    w = world({
        "a": task(calendar_name="everyday", provides=["alpha"], valid_to="2024-03-02T00:00:00"),
        "b": task(calendar_name="everyday", requires=[{"resource": "alpha", "offset": 1}]),
    })
    now = utc(2024, 3, 5)
    run = api.initialize("r1", "late", w, now)
    produce(run, "a", now)
    assert run.tasks["a"].cursor is None
    assert target_interval(run, w.tasks["b"].requires[0], utc(2024, 3, 1, 9)) is None
    assert not is_ready(run, "b", utc(2024, 3, 1, 9))


def test_positive_offset(world, task):
    w = world({
        "a": task(calendar_name="everyday", provides=["alpha"]),
        "b": task(calendar_name="everyday", requires=[{"resource": "alpha", "offset": 1}]),
    })
    now = utc(2024, 3, 5)
    run = api.initialize("r1", "ahead", w, now)
    produce(run, "a", now)
    assert not is_ready(run, "b", utc(2024, 3, 1, 9))
    produce(run, "a", now)
    assert is_ready(run, "b", utc(2024, 3, 1, 9))
