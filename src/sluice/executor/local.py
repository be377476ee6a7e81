"""
Runs actions as subprocesses of this very process, each in a thread of a pool. A single host, whose
capacity is given at construction -- by default as many cores as there are threads
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor

from sluice.controller.core import ActionKill, ActionSubmit, Event
from sluice.executor.event_queue import Writer, build_queue
from sluice.executor.runner import execute
from sluice.low.core import Environment, HostId

logger = logging.getLogger(__name__)


class LocalExecutor():
    def __init__(self, workers: int, resources: dict[str, int] | None = None, host_id: HostId = "local") -> None:
        self.host_id = host_id
        self.env = Environment(hosts={host_id: resources if resources is not None else {"cores": workers}})
        self.tp = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sluice-local")
        self.writer, self.reader = build_queue()
        self.lock = threading.Lock()
        self.kill_events: dict[str, threading.Event] = {}

    def get_environment(self) -> Environment:
        return self.env

    def _run(self, action: ActionSubmit, kill_event: threading.Event, writer: Writer) -> None:
        try:
            attempt = execute(action, kill_event)
            writer.put(Event(at=self.host_id, run_id=action.run_id, task=action.task, attempt=attempt))
        finally:
            with self.lock:
                self.kill_events.pop(action.attempt_id, None)

    def submit(self, action: ActionSubmit) -> None:
        if action.at != self.host_id:
            raise ValueError(f"action for {action.at} submitted to {self.host_id}")
        kill_event = threading.Event()
        with self.lock:
            self.kill_events[action.attempt_id] = kill_event
        self.tp.submit(self._run, action, kill_event, self.writer)

    def kill(self, action: ActionKill) -> None:
        with self.lock:
            kill_event = self.kill_events.get(action.attempt_id)
        if kill_event is None:
            logger.debug(f"kill of {action.attempt_id} which is no longer running")
        else:
            kill_event.set()

    def wait_some(self, timeout_sec: float | None = None) -> list[Event]:
        return self.reader.get(timeout_sec)

    def shutdown(self) -> None:
        with self.lock:
            for kill_event in self.kill_events.values():
                kill_event.set()
        self.tp.shutdown(wait=True)
