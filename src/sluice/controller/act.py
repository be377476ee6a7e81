"""
Implements the actions: renders the commands of admitted candidates and submits them to the
executor, or signals kills
"""

import logging
from typing import Iterable

from sluice.controller.core import ActionKill, ActionSubmit
from sluice.controller.executor import Executor
from sluice.executor.varmap import VarMap
from sluice.scheduler.assign import Assignment
from sluice.scheduler.core import ActionKind, ActiveAttempt, DagRun

logger = logging.getLogger(__name__)


def render(run: DagRun, assignment: Assignment, attempt_id: str) -> ActionSubmit:
    candidate = assignment.candidate
    definition = run.world.tasks[candidate.task]
    schedule = run.schedules[candidate.task]
    varmap = VarMap.from_interval(schedule.interval_ending(candidate.instant), schedule.tz, run.world.variables)
    steps = ["up", "check"] if candidate.action == ActionKind.up else ["down", "check"]
    commands = {
        step: varmap.render_command(spec)
        for step, spec in definition.commands().items()
        if step in steps
    }
    return ActionSubmit(
        at=assignment.host,
        attempt_id=attempt_id,
        run_id=run.run_id,
        task=candidate.task,
        kind=candidate.action,
        instant=candidate.instant,
        commands=commands,
        resources=candidate.resources,
        output_options=run.world.output_options,
    )


def act(executor: Executor, run: DagRun, assignment: Assignment, attempt_id: str) -> ActionSubmit:
    action = render(run, assignment, attempt_id)
    logger.debug(f"submitting {action.kind.value} of {action.run_id}/{action.task} at {action.instant.isoformat()} to {action.at}")
    executor.submit(action)
    return action


def signal_kills(executor: Executor, actives: Iterable[ActiveAttempt]) -> None:
    for active in actives:
        logger.debug(f"signalling kill of {active.attempt_id} at {active.host}")
        executor.kill(ActionKill(at=active.host, attempt_id=active.attempt_id))
