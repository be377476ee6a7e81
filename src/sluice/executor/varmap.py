"""
Variable substitution for commands: ${VAR} is replaced by world variables and by fields computed
from the interval being produced. Unknown variables are left untouched
"""

import re
from typing import Mapping
from zoneinfo import ZoneInfo

from sluice.controller.core import RenderedCommand
from sluice.low.core import CommandSpec
from sluice.low.interval import Interval

_pattern = re.compile(r"\$\{(\w+)\}")


class VarMap:
    def __init__(self, variables: Mapping[str, str]) -> None:
        self.variables = dict(variables)

    @classmethod
    def from_interval(cls, interval: Interval, tz: ZoneInfo, variables: Mapping[str, str] | None = None) -> "VarMap":
        """Time fields refer to the end of the interval, ie, the scheduled instant, in the task's timezone"""
        start = interval.start.astimezone(tz)
        end = interval.end.astimezone(tz)
        computed = {
            "PERIOD_START": start.isoformat(),
            "PERIOD_END": end.isoformat(),
            "yyyy": f"{end.year:04d}",
            "mm": f"{end.month:02d}",
            "dd": f"{end.day:02d}",
            "yyyymmdd": end.strftime("%Y%m%d"),
            "hhmmss": end.strftime("%H%M%S"),
        }
        # world variables take precedence over the computed ones
        return cls({**computed, **(variables or {})})

    def render(self, template: str) -> str:
        return _pattern.sub(lambda m: self.variables.get(m.group(1), m.group(0)), template)

    def render_command(self, spec: CommandSpec) -> RenderedCommand:
        return RenderedCommand(
            argv=[self.render(arg) for arg in spec.argv()],
            environment={k: self.render(v) for k, v in spec.environment.items()},
            timeout=spec.timeout,
        )

