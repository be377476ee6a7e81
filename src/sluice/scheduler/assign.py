"""
Admission control: which of the ready candidates go where, given the hosts' capacity and what is
already reserved there. Capacity is a hard ceiling -- a candidate which does not fit anywhere
stays where it is, and does not block smaller candidates behind it
"""

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Iterable

from sluice.low.core import Environment, HostId, RunId, TaskName
from sluice.scheduler.core import ActionKind

logger = logging.getLogger(__name__)

Resources = dict[str, int]


@dataclass(frozen=True)
class Candidate:
    run_id: RunId
    task: TaskName
    action: ActionKind
    instant: dt.datetime
    resources: Resources

    def sort_key(self) -> tuple[dt.datetime, RunId, TaskName]:
        return (self.instant, self.run_id, self.task)


@dataclass(frozen=True)
class Assignment:
    host: HostId
    candidate: Candidate


def free_capacity(env: Environment, reservations: Iterable[tuple[HostId, Resources]]) -> dict[HostId, Resources]:
    free = {host: dict(capacity) for host, capacity in env.hosts.items()}
    for host, reserved in reservations:
        if host not in free:
            # reservation at a host which is gone, eg a lost worker -- nothing to subtract from
            continue
        for key, amount in reserved.items():
            free[host][key] = free[host].get(key, 0) - amount
    return free


def fits(need: Resources, free: Resources) -> bool:
    return all(free.get(key, 0) >= amount for key, amount in need.items())


def assign(
    candidates: Iterable[Candidate],
    env: Environment,
    reservations: Iterable[tuple[HostId, Resources]],
) -> list[Assignment]:
    """Earliest instant first, each onto the first host (by id) with enough free capacity"""
    free = free_capacity(env, reservations)
    hosts = sorted(free.keys())
    rv: list[Assignment] = []
    for candidate in sorted(candidates, key=Candidate.sort_key):
        for host in hosts:
            if fits(candidate.resources, free[host]):
                for key, amount in candidate.resources.items():
                    free[host][key] = free[host].get(key, 0) - amount
                rv.append(Assignment(host=host, candidate=candidate))
                break
        else:
            logger.debug(f"no capacity for {candidate.run_id}/{candidate.task} at {candidate.instant}")
    return rv
