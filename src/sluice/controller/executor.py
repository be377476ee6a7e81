"""
Defines the Executor protocol
"""

from typing import Protocol, runtime_checkable

from sluice.controller.core import ActionKill, ActionSubmit, Event
from sluice.low.core import Environment


@runtime_checkable
class Executor(Protocol):
    def get_environment(self) -> Environment:
        """Hosts and their total capacity, used for admission. May change over time"""
        raise NotImplementedError

    def submit(self, action: ActionSubmit) -> None:
        """Run the action at the host asap. Never blocks on the execution itself"""
        raise NotImplementedError

    def kill(self, action: ActionKill) -> None:
        """Signal the running action to terminate. The outcome is still reported as an event"""
        raise NotImplementedError

    def wait_some(self, timeout_sec: float | None = None) -> list[Event]:
        """Blocks until timeout elapses or some events are emitted"""
        raise NotImplementedError

    def shutdown(self) -> None:
        raise NotImplementedError
