"""
Core data structures of the world definition -- prescribes most of the API
"""

import datetime as dt
import shlex
from typing import Literal

from pydantic import BaseModel, Field, field_validator

# NOTE the world is given as json, so all the times and dates are parsed by pydantic. Datetimes
# without tzinfo are understood as wall times in the timezone of the task they belong to

TaskName = str
ResourceName = str
CalendarName = str
RunId = str
HostId = str
AttemptId = str

Weekday = Literal["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
WEEKDAYS: list[Weekday] = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]

EPOCH = dt.datetime(1970, 1, 1, tzinfo=dt.timezone.utc)

# Definitions
class CalendarDefinition(BaseModel):
    mask: list[Weekday] = Field(
        default_factory=lambda: ["Mon", "Tue", "Wed", "Thu", "Fri"],
        description="weekdays on which the calendar is active",
    )
    include: list[dt.date] = Field(default_factory=list, description="dates always active")
    exclude: list[dt.date] = Field(default_factory=list, description="dates never active, wins over include")


class CommandSpec(BaseModel):
    command: str | list[str] = Field(
        description="either a shell-like string split into argv, or argv itself. Supports ${VAR} substitution"
    )
    environment: dict[str, str] = Field(
        default_factory=dict,
        description="extra environment variables on top of the inherited ones. Values support ${VAR}",
    )
    timeout: int = Field(0, description="seconds after which the process is killed, 0 for no timeout")
    resources: dict[str, int] = Field(
        default_factory=lambda: {"cores": 1},
        description="budget reserved at the host while the action runs",
    )

    def argv(self) -> list[str]:
        if isinstance(self.command, str):
            return shlex.split(self.command)
        return list(self.command)


class Requirement(BaseModel):
    resource: ResourceName
    offset: int = Field(
        0, description="steps along the producer's schedule, negative being earlier intervals"
    )


class TaskDefinition(BaseModel):
    up: CommandSpec
    down: CommandSpec | None = None
    check: CommandSpec | None = None
    provides: list[ResourceName] = Field(default_factory=list)
    requires: list[Requirement] = Field(default_factory=list)
    calendar_name: CalendarName
    times: list[dt.time]
    timezone: str = "UTC"
    valid_from: dt.datetime = Field(description="inclusive, wall time in `timezone` unless aware")
    valid_to: dt.datetime | None = Field(None, description="exclusive, None for open ended")

    @field_validator("times")
    @classmethod
    def dedup_times(cls, times: list[dt.time]) -> list[dt.time]:
        return sorted(set(times))

    def commands(self) -> dict[str, CommandSpec]:
        rv = {"up": self.up}
        if self.down is not None:
            rv["down"] = self.down
        if self.check is not None:
            rv["check"] = self.check
        return rv


class OutputOptions(BaseModel):
    discard_successful: bool = Field(True, description="drop captured output of completed attempts")
    truncate: bool = Field(True, description="keep only head and tail of the captured output")
    head_bytes: int = 20480
    tail_bytes: int = 20480


class WorldDefinition(BaseModel):
    variables: dict[str, str] = Field(default_factory=dict)
    calendars: dict[CalendarName, CalendarDefinition] = Field(default_factory=dict)
    tasks: dict[TaskName, TaskDefinition]
    output_options: OutputOptions = Field(default_factory=OutputOptions)


# Execution
class Environment(BaseModel):
    # NOTE resources are free-form, but `cores` is what the default command budget asks for
    hosts: dict[HostId, dict[str, int]]
