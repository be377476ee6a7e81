"""
Sluice: runs a declarative world of calendar-scheduled tasks that produce and consume
time-scoped resources.

Packages, leaves first:
 - low: world definition models, interval algebra, errors & functional utilities
 - schedule: calendars & per-task instant generation
 - scheduler: run state, resource ledger, dependency resolution & admission
 - controller: the tick loop binding the scheduler to an executor
 - executor: local, instant & remote-worker implementations of the executor protocol
 - store: persistence of runs, in memory or in redis
 - gateway: the http status/control api, its client and the cli
"""

from sluice.version import __version__
