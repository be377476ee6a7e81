"""
Exception taxonomy. Only ConfigError ever escapes to the submitter -- the others are caught by
the scheduler and turned into attempt outcomes or log notices, never aborting a run
"""

from datetime import datetime


class SluiceError(Exception):
    pass


class ConfigError(SluiceError):
    """The world definition is invalid -- unresolvable reference, malformed schedule or command, deadlock"""


class OverlapError(SluiceError):
    """A producer attempted to record an interval overlapping one it already recorded"""

    def __init__(self, resource: str, producer: str, message: str) -> None:
        super().__init__(f"{producer} cannot record {resource}: {message}")
        self.resource = resource
        self.producer = producer


class CommandFailure(SluiceError):
    """A check/up/down command did not behave as required"""

    def __init__(self, step: str, message: str) -> None:
        super().__init__(f"{step}: {message}")
        self.step = step


class DependencyTimeout(SluiceError):
    """Not raised: a notice about a task which waits for its dependencies for too long"""

    def __init__(self, task: str, instant: datetime, waited_sec: float, unmet: list[str]) -> None:
        super().__init__(
            f"{task} at {instant.isoformat()} waits for {', '.join(unmet) or 'nothing'} since {int(waited_sec)}s"
        )
        self.task = task
        self.instant = instant
