"""
Instant executor: everything completes immediately, nothing is actually run.

For simulation and tests -- outcomes can be steered per task name
"""

import datetime as dt
import logging
from typing import Callable

from sluice.controller.core import ActionKill, ActionSubmit, Event
from sluice.low.core import Environment, TaskName
from sluice.scheduler.core import TaskAttempt, TaskState

logger = logging.getLogger(__name__)


class InstantExecutor():
    def __init__(
        self,
        hosts: int = 1,
        cores: int = 1,
        failing: set[TaskName] | None = None,
        clock: Callable[[], dt.datetime] = lambda: dt.datetime.now(dt.timezone.utc),
        host_id: str = "hInstant",
    ) -> None:
        self.env = Environment(hosts={f"{host_id}{i}": {"cores": cores} for i in range(hosts)})
        self.failing = failing or set()
        self.clock = clock
        self.pending: list[Event] = []
        self.submitted: list[ActionSubmit] = []
        self.killed: list[ActionKill] = []
        # when held, submitted actions complete only on `release`
        self.held = False
        self.on_hold: list[ActionSubmit] = []

    def get_environment(self) -> Environment:
        return self.env

    def _finish(self, action: ActionSubmit, outcome: TaskState) -> None:
        at = self.clock()
        attempt = TaskAttempt(
            attempt_id=action.attempt_id,
            instant=action.instant,
            action=action.kind,
            start_time=at,
            stop_time=at,
            outcome=outcome,
            host=action.at,
        )
        self.pending.append(Event(at=action.at, run_id=action.run_id, task=action.task, attempt=attempt))

    def _complete(self, action: ActionSubmit) -> None:
        self._finish(action, TaskState.ERRORED if action.task in self.failing else TaskState.COMPLETED)

    def submit(self, action: ActionSubmit) -> None:
        self.submitted.append(action)
        if self.held:
            self.on_hold.append(action)
        else:
            self._complete(action)

    def release(self) -> None:
        for action in self.on_hold:
            self._complete(action)
        self.on_hold = []

    def kill(self, action: ActionKill) -> None:
        self.killed.append(action)
        match = [held for held in self.on_hold if held.attempt_id == action.attempt_id]
        for held in match:
            self.on_hold.remove(held)
            self._finish(held, TaskState.KILLED)

    def wait_some(self, timeout_sec: float | None = None) -> list[Event]:
        events, self.pending = self.pending, []
        return events

    def shutdown(self) -> None:
        pass
