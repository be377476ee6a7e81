"""
The controller: single owner of all runs. Each tick gathers the executor's events, applies them, moves
due tasks to QUEUED, admits ready candidates onto free capacity, and writes all changes through to the
store. Api calls take the same lock as the tick, so there is never more than one writer.
"""

import datetime as dt
import logging
import threading
import uuid
from typing import Callable, Optional

import randomname

from sluice.controller.act import act, signal_kills
from sluice.controller.executor import Executor
from sluice.controller.notify import notify
from sluice.controller.report import RunDetail, RunSummary, TimelineGroup, detail, progress_text, summarize, timeline
from sluice.low.core import AttemptId, HostId, RunId, TaskName, WorldDefinition
from sluice.low.errors import ConfigError
from sluice.low.func import next_uuid
from sluice.scheduler import api
from sluice.scheduler.assign import Resources, assign
from sluice.scheduler.core import DagRun
from sluice.store.api import RunStore, flush

logger = logging.getLogger(__name__)


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Controller():
    def __init__(
        self,
        executor: Executor,
        store: RunStore,
        tick_sec: float = 1.0,
        dependency_timeout_sec: Optional[float] = None,
        clock: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self.executor = executor
        self.store = store
        self.tick_sec = tick_sec
        self.dependency_timeout_sec = dependency_timeout_sec
        self.clock = clock
        self.lock = threading.RLock()
        self.runs: dict[RunId, DagRun] = {}
        # capacity held at hosts, until the executor reports the attempt finished
        self.reservations: dict[AttemptId, tuple[HostId, Resources]] = {}
        self.stop_event = threading.Event()
        self.thread: Optional[threading.Thread] = None
        self._restore()

    def _restore(self) -> None:
        now = self.clock()
        for persisted in self.store.load_all():
            try:
                run = api.restore(persisted.header, persisted.tasks, persisted.attempts, persisted.intervals)
            except ConfigError:
                logger.exception(f"unable to restore run {persisted.header.run_id}, skipping")
                continue
            api.recover(run, now)
            flush(self.store, run)
            self.runs[run.run_id] = run
        if self.runs:
            logger.info(f"restored {len(self.runs)} runs")

    def _get(self, run_id: RunId) -> DagRun:
        if run_id not in self.runs:
            raise KeyError(f"unknown run {run_id}")
        return self.runs[run_id]

    def _get_task(self, run_id: RunId, task: TaskName) -> DagRun:
        run = self._get(run_id)
        if task not in run.tasks:
            raise KeyError(f"unknown task {task} in run {run_id}")
        return run

    def submit(self, world: WorldDefinition, tag: Optional[str] = None) -> RunId:
        """Raises ConfigError if the world is invalid"""
        with self.lock:
            run_id = next_uuid(self.runs.keys(), lambda: str(uuid.uuid4()))
            run = api.initialize(run_id, tag or randomname.get_name(), world, self.clock())
            self.runs[run_id] = run
            flush(self.store, run)
        logger.info(f"submitted run {run_id} tagged {run.header.tag} with {len(world.tasks)} tasks")
        return run_id

    def step(self, timeout_sec: Optional[float] = 0) -> None:
        """One tick: waits at most `timeout_sec` for events, then applies them and admits what can be"""
        events = self.executor.wait_some(timeout_sec)
        with self.lock:
            now = self.clock()
            notify(self.runs, self.reservations, events, now)
            for run in self.runs.values():
                api.schedule_due(run, now)
            candidates = [
                candidate
                for run in self.runs.values()
                for candidate in api.candidates(run, now, self.dependency_timeout_sec)
            ]
            if candidates:
                env = self.executor.get_environment()
                for assignment in assign(candidates, env, self.reservations.values()):
                    run = self.runs[assignment.candidate.run_id]
                    attempt_id = next_uuid(self.reservations.keys(), lambda: str(uuid.uuid4()))
                    api.start(run, assignment.candidate, attempt_id, assignment.host, now)
                    self.reservations[attempt_id] = (assignment.host, assignment.candidate.resources)
                    act(self.executor, run, assignment, attempt_id)
            for run in self.runs.values():
                if run.new_attempts:
                    logger.debug(f"run {run.run_id} at {progress_text(run)}")
                flush(self.store, run)

    def run_forever(self) -> None:
        logger.debug("controller loop starting")
        try:
            while not self.stop_event.is_set():
                self.step(self.tick_sec)
        except Exception:
            logger.error("crash in controller, shutting down")
            raise
        finally:
            logger.debug("controller loop finished")

    def start(self) -> None:
        self.thread = threading.Thread(target=self.run_forever, name="sluice-controller", daemon=True)
        self.thread.start()

    def stop(self) -> None:
        self.stop_event.set()
        if self.thread is not None:
            self.thread.join()
        logger.debug("shutting down executor")
        self.executor.shutdown()

    def kill_run(self, run_id: RunId) -> None:
        with self.lock:
            run = self._get(run_id)
            signal_kills(self.executor, api.kill_run(run, self.clock()))
            flush(self.store, run)

    def retry_run(self, run_id: RunId) -> None:
        with self.lock:
            run = self._get(run_id)
            signal_kills(self.executor, api.retry_run(run, self.clock()))
            flush(self.store, run)

    def kill_task(self, run_id: RunId, task: TaskName) -> None:
        with self.lock:
            run = self._get_task(run_id, task)
            if (active := api.kill_task(run, task, self.clock())) is not None:
                signal_kills(self.executor, [active])
            flush(self.store, run)

    def retry_task(self, run_id: RunId, task: TaskName) -> None:
        with self.lock:
            run = self._get_task(run_id, task)
            if (active := api.retry_task(run, task, self.clock())) is not None:
                signal_kills(self.executor, [active])
            flush(self.store, run)

    def request_down(self, run_id: RunId, task: TaskName, instant: dt.datetime) -> None:
        with self.lock:
            run = self._get_task(run_id, task)
            api.request_down(run, task, instant, self.clock())
            flush(self.store, run)

    def list_runs(self, include_finished: bool = False) -> list[RunSummary]:
        with self.lock:
            return [
                summarize(run)
                for run in sorted(self.runs.values(), key=lambda r: r.header.submitted)
                if include_finished or not run.is_finished()
            ]

    def get_run(self, run_id: RunId) -> RunDetail:
        with self.lock:
            return detail(self._get(run_id))

    def details(
        self,
        start: dt.datetime,
        end: dt.datetime,
        run_id: Optional[RunId] = None,
        max_intervals: Optional[int] = None,
    ) -> list[TimelineGroup]:
        with self.lock:
            runs = [self._get(run_id)] if run_id is not None else list(self.runs.values())
            return timeline(runs, start, end, max_intervals)
