import datetime as dt
from typing import Any, Callable

import pytest

from sluice.low.core import WorldDefinition

UTC = dt.timezone.utc


def utc(*args: int) -> dt.datetime:
    return dt.datetime(*args, tzinfo=UTC)


def _task(**overrides: Any) -> dict[str, Any]:
    task: dict[str, Any] = {
        "up": {"command": "true"},
        "calendar_name": "weekdays",
        "times": ["09:00"],
        "timezone": "UTC",
        "valid_from": "2024-03-01T00:00:00",
    }
    task.update(overrides)
    return task


def _world(tasks: dict[str, dict[str, Any]], **kwargs: Any) -> WorldDefinition:
    calendars = kwargs.pop("calendars", {"weekdays": {}, "everyday": {"mask": ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]}})
    return WorldDefinition(tasks=tasks, calendars=calendars, **kwargs)


@pytest.fixture
def task() -> Callable[..., dict[str, Any]]:
    """Task definition as json, valid from FRIDAY at 09:00 utc on weekdays, overridable by kwargs"""
    return _task


@pytest.fixture
def world() -> Callable[..., WorldDefinition]:
    """World of the given tasks, with `weekdays` and `everyday` calendars unless overridden"""
    return _world


class Clock:
    def __init__(self, now: dt.datetime) -> None:
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += dt.timedelta(**kwargs)


@pytest.fixture
def clock() -> Clock:
    return Clock(utc(2024, 3, 1, 9, 30))
