"""
Instants of a single task: active calendar dates crossed with the times of day, localized in the
task's timezone, bounded by the validity window [valid_from, valid_to) of wall times.

Instants are always returned as aware datetimes in UTC. Consecutive instants delimit the task's
intervals, the first one starting at the epoch.

Daylight saving: a wall time occurring twice during a fall-back is resolved to the later of the
two instants, a wall time falling into a spring-forward gap does not occur at all.
"""

import datetime as dt
from typing import Iterator, Optional
from zoneinfo import ZoneInfo

from sluice.low.core import EPOCH
from sluice.low.interval import Interval
from sluice.schedule.calendar import Calendar

_day = dt.timedelta(days=1)


def localize(day: dt.date, time: dt.time, tz: ZoneInfo) -> Optional[dt.datetime]:
    """Wall time to utc instant, None if the wall time does not exist"""
    wall = dt.datetime.combine(day, time)
    aware = wall.replace(tzinfo=tz, fold=1)
    instant = aware.astimezone(dt.timezone.utc)
    if instant.astimezone(tz).replace(tzinfo=None) != wall:
        return None
    return instant


class Schedule:
    def __init__(
        self,
        calendar: Calendar,
        times: list[dt.time],
        tz: ZoneInfo,
        valid_from: dt.datetime,
        valid_to: Optional[dt.datetime] = None,
    ) -> None:
        if not times:
            raise ValueError("schedule needs at least one time of day")
        self.calendar = calendar
        self.times = sorted(set(times))
        self.tz = tz
        self.valid_from = self._wall(valid_from)
        self.valid_to = self._wall(valid_to) if valid_to is not None else None
        if self.valid_to is not None and self.valid_from >= self.valid_to:
            raise ValueError(f"empty validity window [{self.valid_from}, {self.valid_to})")

    def _wall(self, d: dt.datetime) -> dt.datetime:
        if d.tzinfo is not None:
            return d.astimezone(self.tz).replace(tzinfo=None)
        return d

    def _in_window(self, day: dt.date, time: dt.time) -> bool:
        wall = dt.datetime.combine(day, time)
        return self.valid_from <= wall and (self.valid_to is None or wall < self.valid_to)

    def _days_forward(self, start: dt.date) -> Iterator[dt.date]:
        day = self.calendar.active_from(max(start, self.valid_from.date()))
        while day is not None:
            if self.valid_to is not None and day > self.valid_to.date():
                return
            yield day
            day = self.calendar.next(day)

    def _days_backward(self, start: dt.date) -> Iterator[dt.date]:
        if self.valid_to is not None:
            start = min(start, self.valid_to.date())
        day = start if self.calendar.includes(start) else self.calendar.prev(start)
        while day is not None and day >= self.valid_from.date():
            yield day
            day = self.calendar.prev(day)

    def next_time(self, after: dt.datetime) -> Optional[dt.datetime]:
        """First instant strictly after `after`"""
        # NOTE one day of slack either way as the local date of `after` may differ from the
        # local date of the instants around it
        start = after.astimezone(self.tz).date() - _day
        for day in self._days_forward(start):
            for time in self.times:
                if not self._in_window(day, time):
                    continue
                instant = localize(day, time, self.tz)
                if instant is not None and instant > after:
                    return instant
        return None

    def prev_time(self, before: dt.datetime) -> Optional[dt.datetime]:
        """Last instant strictly before `before`"""
        start = before.astimezone(self.tz).date() + _day
        for day in self._days_backward(start):
            for time in reversed(self.times):
                if not self._in_window(day, time):
                    continue
                instant = localize(day, time, self.tz)
                if instant is not None and instant < before:
                    return instant
        return None

    def at_or_before(self, at: dt.datetime) -> Optional[dt.datetime]:
        """Latest instant not after `at`"""
        return self.prev_time(at + dt.timedelta(microseconds=1))

    def first(self) -> Optional[dt.datetime]:
        return self.next_time(EPOCH)

    def is_instant(self, at: dt.datetime) -> bool:
        return self.at_or_before(at) == at

    def instants(self, after: dt.datetime, until: dt.datetime) -> list[dt.datetime]:
        """All instants T with after < T <= until"""
        rv: list[dt.datetime] = []
        current = self.next_time(after)
        while current is not None and current <= until:
            rv.append(current)
            current = self.next_time(current)
        return rv

    def interval_ending(self, instant: dt.datetime) -> Interval:
        """The interval closed by `instant`: (previous instant or epoch, instant]"""
        prev = self.prev_time(instant)
        return Interval(prev if prev is not None else EPOCH, instant)

    def step(self, instant: dt.datetime, offset: int) -> Optional[dt.datetime]:
        """Moves `offset` instants away from `instant`, None when running off the schedule"""
        current: Optional[dt.datetime] = instant
        for _ in range(abs(offset)):
            if current is None:
                return None
            current = self.next_time(current) if offset > 0 else self.prev_time(current)
        return current
