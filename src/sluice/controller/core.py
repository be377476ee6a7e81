"""
Core data structures: Event and Action
"""

import datetime as dt

from pydantic import BaseModel, Field

from sluice.low.core import AttemptId, HostId, OutputOptions, RunId, TaskName
from sluice.scheduler.core import ActionKind, TaskAttempt


class RenderedCommand(BaseModel):
    # command of the world with all ${VAR} substituted
    argv: list[str]
    environment: dict[str, str] = Field(default_factory=dict)
    timeout: int = 0


class ActionSubmit(BaseModel):
    at: HostId
    attempt_id: AttemptId
    run_id: RunId
    task: TaskName
    kind: ActionKind
    instant: dt.datetime
    commands: dict[str, RenderedCommand]  # keyed by step: check, up, down
    resources: dict[str, int]
    output_options: OutputOptions = Field(default_factory=OutputOptions)


class ActionKill(BaseModel):
    at: HostId
    attempt_id: AttemptId


Action = ActionSubmit | ActionKill


class Event(BaseModel):
    at: HostId
    run_id: RunId
    task: TaskName
    attempt: TaskAttempt
