"""
Interval algebra over datetimes. Intervals are half-open on the left, ie, (start, end] --
an instant belongs to the interval that it closes, which is how a producer run at instant T
makes its resource available up to and including T
"""

import datetime as dt
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional


@dataclass(frozen=True, order=True)
class Interval:
    start: dt.datetime
    end: dt.datetime

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"interval start {self.start} after end {self.end}")

    def is_empty(self) -> bool:
        return self.start == self.end

    def contains(self, instant: dt.datetime) -> bool:
        return self.start < instant <= self.end

    def has_subset(self, other: "Interval") -> bool:
        return self.start <= other.start and other.end <= self.end

    def is_contiguous(self, other: "Interval") -> bool:
        return self.end == other.start or other.end == self.start

    def is_disjoint(self, other: "Interval") -> bool:
        return self.end <= other.start or other.end <= self.start

    def intersection(self, other: "Interval") -> Optional["Interval"]:
        if self.is_disjoint(other):
            return None
        return Interval(max(self.start, other.start), min(self.end, other.end))

    def shift(self, delta: dt.timedelta) -> "Interval":
        return Interval(self.start + delta, self.end + delta)


def coalesce(intervals: Iterable[Interval]) -> list[Interval]:
    """Sorts and merges overlapping or contiguous intervals, dropping empty ones"""
    rv: list[Interval] = []
    for interval in sorted(i for i in intervals if not i.is_empty()):
        if rv and interval.start <= rv[-1].end:
            if interval.end > rv[-1].end:
                rv[-1] = Interval(rv[-1].start, interval.end)
        else:
            rv.append(interval)
    return rv


class IntervalSet:
    """Normalized union of intervals: sorted, pairwise disjoint and non-contiguous"""

    def __init__(self, intervals: Iterable[Interval] = ()) -> None:
        self.intervals = coalesce(intervals)

    def __iter__(self) -> Iterator[Interval]:
        return iter(self.intervals)

    def __len__(self) -> int:
        return len(self.intervals)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, IntervalSet) and self.intervals == other.intervals

    def __repr__(self) -> str:
        return f"IntervalSet({self.intervals!r})"

    def insert(self, interval: Interval) -> None:
        self.intervals = coalesce(self.intervals + [interval])

    def union(self, other: "IntervalSet") -> "IntervalSet":
        return IntervalSet(self.intervals + other.intervals)

    def intersection(self, other: "IntervalSet") -> "IntervalSet":
        rv: list[Interval] = []
        i, j = 0, 0
        while i < len(self.intervals) and j < len(other.intervals):
            a, b = self.intervals[i], other.intervals[j]
            if (common := a.intersection(b)) is not None:
                rv.append(common)
            if a.end < b.end:
                i += 1
            else:
                j += 1
        return IntervalSet(rv)

    def complement(self, within: Interval) -> "IntervalSet":
        """Parts of `within` not covered by this set"""
        rv: list[Interval] = []
        cursor = within.start
        for interval in self.intervals:
            if interval.end <= cursor:
                continue
            if interval.start >= within.end:
                break
            if interval.start > cursor:
                rv.append(Interval(cursor, interval.start))
            cursor = max(cursor, interval.end)
        if cursor < within.end:
            rv.append(Interval(cursor, within.end))
        return IntervalSet(rv)

    def difference(self, other: "IntervalSet") -> "IntervalSet":
        if not self.intervals:
            return IntervalSet()
        span = Interval(self.intervals[0].start, self.intervals[-1].end)
        return self.intersection(other.complement(span))

    def contains(self, instant: dt.datetime) -> bool:
        return any(i.contains(instant) for i in self.intervals)

    def has_subset(self, interval: Interval) -> bool:
        # NOTE coalesced, so a covered interval lies within a single member
        return any(i.has_subset(interval) for i in self.intervals)
