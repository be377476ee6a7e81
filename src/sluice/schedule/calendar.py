"""
Calendars: which dates are active. Exclusion wins over inclusion, inclusion wins over the weekday mask
"""

import datetime as dt
from typing import Iterable, Optional

from sluice.low.core import WEEKDAYS, CalendarDefinition

_day = dt.timedelta(days=1)


class Calendar:
    def __init__(
        self,
        mask: Iterable[str],
        include: Iterable[dt.date] = (),
        exclude: Iterable[dt.date] = (),
    ) -> None:
        self.mask = {WEEKDAYS.index(day) for day in mask}  # type: ignore # validated by the Literal
        self.include = frozenset(include)
        self.exclude = frozenset(exclude)

    @classmethod
    def from_definition(cls, definition: CalendarDefinition) -> "Calendar":
        return cls(definition.mask, definition.include, definition.exclude)

    def includes(self, date: dt.date) -> bool:
        if date in self.exclude:
            return False
        if date in self.include:
            return True
        return date.weekday() in self.mask

    def _search_len(self) -> int:
        # each exclusion can swallow at most one occurrence of a mask day
        return 7 * (1 + len(self.exclude))

    def next(self, date: dt.date) -> Optional[dt.date]:
        """First active date strictly after `date`, None if there is none ever"""
        if self.mask:
            candidate = date
            for _ in range(self._search_len()):
                candidate += _day
                if self.includes(candidate):
                    return candidate
        later = [d for d in self.include if d > date and d not in self.exclude]
        return min(later) if later else None

    def prev(self, date: dt.date) -> Optional[dt.date]:
        """Last active date strictly before `date`, None if there is none ever"""
        if self.mask:
            candidate = date
            for _ in range(self._search_len()):
                candidate -= _day
                if self.includes(candidate):
                    return candidate
        earlier = [d for d in self.include if d < date and d not in self.exclude]
        return max(earlier) if earlier else None

    def offset(self, date: dt.date, n: int) -> Optional[dt.date]:
        """Steps `n` active dates from `date`, backwards if negative"""
        step = self.next if n >= 0 else self.prev
        current: Optional[dt.date] = date
        for _ in range(abs(n)):
            if current is None:
                return None
            current = step(current)
        return current

    def active_from(self, date: dt.date) -> Optional[dt.date]:
        """`date` itself if active, otherwise the next active one"""
        return date if self.includes(date) else self.next(date)
