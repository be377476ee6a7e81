"""
Implements the mutation of State after Executor has reported some Events
"""

import datetime as dt
import logging
from typing import Iterable

from sluice.controller.core import Event
from sluice.low.core import AttemptId, HostId, RunId
from sluice.scheduler.api import finish
from sluice.scheduler.assign import Resources
from sluice.scheduler.core import DagRun

logger = logging.getLogger(__name__)


def notify(
    runs: dict[RunId, DagRun],
    reservations: dict[AttemptId, tuple[HostId, Resources]],
    events: Iterable[Event],
    now: dt.datetime,
) -> None:
    for event in events:
        # the capacity is released only now, when the executor is done with it, even if the
        # task was killed long ago
        reservations.pop(event.attempt.attempt_id, None)
        run = runs.get(event.run_id)
        if run is None:
            logger.warning(f"event for unknown run {event.run_id}: {event.attempt.attempt_id}")
            continue
        if event.task not in run.tasks:
            logger.warning(f"event for unknown task {event.run_id}/{event.task}")
            continue
        finish(run, event.task, event.attempt, now)
