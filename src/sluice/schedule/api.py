"""
Builds the per-task schedules of a world, validating everything along the way
"""

import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sluice.low.core import TaskDefinition, TaskName, WorldDefinition
from sluice.low.errors import ConfigError
from sluice.low.func import Either
from sluice.schedule.calendar import Calendar
from sluice.schedule.core import Schedule

logger = logging.getLogger(__name__)


def build_calendars(world: WorldDefinition) -> dict[str, Calendar]:
    return {name: Calendar.from_definition(d) for name, d in world.calendars.items()}


def _schedule_of(name: TaskName, task: TaskDefinition, calendars: dict[str, Calendar]) -> Either[Schedule, list[str]]:
    if task.calendar_name not in calendars:
        return Either.error([f"{name}: unknown calendar {task.calendar_name}"])
    if not task.times:
        return Either.error([f"{name}: no times given"])
    try:
        tz = ZoneInfo(task.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        return Either.error([f"{name}: unknown timezone {task.timezone}"])
    try:
        return Either.ok(Schedule(calendars[task.calendar_name], task.times, tz, task.valid_from, task.valid_to))
    except ValueError as e:
        return Either.error([f"{name}: {e}"])


def build_schedules(world: WorldDefinition) -> Either[dict[TaskName, Schedule], list[str]]:
    calendars = build_calendars(world)
    schedules: dict[TaskName, Schedule] = {}
    rv: Either[dict[TaskName, Schedule], list[str]] = Either.ok(schedules)
    for name, task in world.tasks.items():
        result = _schedule_of(name, task, calendars)
        if result.e:
            rv = rv.append(result.e)
        else:
            schedules[name] = result.get_or_raise()
    return rv


def build_schedule(world: WorldDefinition, name: TaskName) -> Schedule:
    if name not in world.tasks:
        raise ConfigError(f"unknown task {name}")
    return _schedule_of(name, world.tasks[name], build_calendars(world)).get_or_raise(
        lambda errors: ConfigError("; ".join(errors))
    )
