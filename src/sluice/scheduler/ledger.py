"""
The resource ledger: per resource, the append-only list of intervals over which a producer made it
available. Teardowns do not remove intervals, they are noted on them instead -- whoever consumed
the interval before consumed a valid one
"""

import bisect
import datetime as dt
import logging
from collections import defaultdict
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from sluice.low.core import ResourceName, TaskName
from sluice.low.errors import OverlapError
from sluice.low.interval import Interval, IntervalSet

logger = logging.getLogger(__name__)


class ResourceInterval(BaseModel):
    resource: ResourceName
    producer: TaskName
    start: dt.datetime = Field(description="exclusive")
    end: dt.datetime = Field(description="inclusive")
    recorded: dt.datetime
    teardowns: list[dt.datetime] = Field(default_factory=list, description="when the down command succeeded")

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)

    @property
    def key(self) -> str:
        return f"{self.resource}|{self.end.isoformat()}"


class Ledger:
    def __init__(self, entries: Iterable[ResourceInterval] = ()) -> None:
        self.entries: dict[ResourceName, list[ResourceInterval]] = defaultdict(list)
        # entries changed since last `drain_dirty`, for persistence
        self.dirty: list[ResourceInterval] = []
        for entry in sorted(entries, key=lambda e: e.end):
            self.entries[entry.resource].append(entry)

    def _check(self, resource: ResourceName, producer: TaskName, interval: Interval) -> None:
        for entry in self.entries.get(resource, []):
            if entry.producer == producer and not entry.interval.is_disjoint(interval):
                raise OverlapError(resource, producer, f"{interval} overlaps {entry.interval}")

    def check(self, resource: ResourceName, producer: TaskName, interval: Interval) -> None:
        """Raises OverlapError if `record` with these arguments would"""
        self._check(resource, producer, interval)

    def record(self, resource: ResourceName, producer: TaskName, interval: Interval, at: dt.datetime) -> ResourceInterval:
        self._check(resource, producer, interval)
        entry = ResourceInterval(resource=resource, producer=producer, start=interval.start, end=interval.end, recorded=at)
        bisect.insort(self.entries[resource], entry, key=lambda e: e.end)
        self.dirty.append(entry)
        logger.debug(f"recorded {resource} over {interval} by {producer}")
        return entry

    def find(self, resource: ResourceName, interval: Interval) -> Optional[ResourceInterval]:
        """The entry recorded over exactly `interval`"""
        for entry in self.entries.get(resource, []):
            if entry.interval == interval:
                return entry
        return None

    def covers(self, resource: ResourceName, instant: dt.datetime) -> bool:
        return self.interval_containing(resource, instant) is not None

    def interval_containing(self, resource: ResourceName, instant: dt.datetime) -> Optional[ResourceInterval]:
        entries = self.entries.get(resource, [])
        # first entry whose end is not before the instant
        i = bisect.bisect_left(entries, instant, key=lambda e: e.end)
        for entry in entries[i:]:
            if entry.interval.contains(instant):
                return entry
            if entry.start >= instant:
                break
        return None

    def availability(self, resource: ResourceName) -> IntervalSet:
        return IntervalSet(e.interval for e in self.entries.get(resource, []))

    def covers_interval(self, resource: ResourceName, interval: Interval) -> bool:
        return self.availability(resource).has_subset(interval)

    def mark_teardown(self, resource: ResourceName, interval: Interval, at: dt.datetime) -> Optional[ResourceInterval]:
        entry = self.find(resource, interval)
        if entry is None:
            logger.warning(f"teardown of {resource} over {interval} which was never recorded")
            return None
        entry.teardowns.append(at)
        self.dirty.append(entry)
        return entry

    def all(self) -> list[ResourceInterval]:
        return [e for entries in self.entries.values() for e in entries]

    def drain_dirty(self) -> list[ResourceInterval]:
        rv = self.dirty
        self.dirty = []
        return rv
