"""
Readiness of a task at an instant, against the ledger of its run.

A requirement `{resource, offset}` of a task at instant T targets an interval of the resource's
producer: take the latest producer instant not after T, step `offset` producer instants from it
(negative being earlier), and require the ledger to cover the producer's interval ending there.

Consequences:
 - with offset 0 and no producer instant up to T, the task is not ready
 - when a negative offset steps before the producer's first instant, the requirement holds
   vacuously -- which is how a task consuming its own previous output gets going
 - when a positive offset steps past the producer's validity window, the task is never ready
"""

import datetime as dt
import logging
from typing import Optional

from sluice.low.core import Requirement, TaskName
from sluice.low.interval import Interval
from sluice.scheduler.core import DagRun

logger = logging.getLogger(__name__)

# sentinel for a requirement which holds no matter what the ledger says
VACUOUS = Interval(dt.datetime.min.replace(tzinfo=dt.timezone.utc), dt.datetime.min.replace(tzinfo=dt.timezone.utc))


def target_interval(run: DagRun, requirement: Requirement, instant: dt.datetime) -> Optional[Interval]:
    """The producer interval a requirement asks for, None if it can never be satisfied"""
    producer = run.graph.producer_of(requirement.resource)
    schedule = run.schedules[producer]
    base = schedule.at_or_before(instant)
    if base is None:
        return VACUOUS if requirement.offset < 0 else None
    target = schedule.step(base, requirement.offset)
    if target is None:
        return VACUOUS if requirement.offset < 0 else None
    return schedule.interval_ending(target)


def unmet(run: DagRun, task: TaskName, instant: dt.datetime) -> list[Requirement]:
    rv: list[Requirement] = []
    for requirement in run.world.tasks[task].requires:
        target = target_interval(run, requirement, instant)
        if target is VACUOUS:
            continue
        if target is None or not run.ledger.covers_interval(requirement.resource, target):
            rv.append(requirement)
    return rv


def is_ready(run: DagRun, task: TaskName, instant: dt.datetime, now: Optional[dt.datetime] = None) -> bool:
    """Instant arrived, if `now` given, and all requirements covered by the ledger"""
    if now is not None and now < instant:
        return False
    return not unmet(run, task, instant)
