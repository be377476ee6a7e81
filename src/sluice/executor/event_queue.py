"""
Thread-safe channel of `controller.core.Event`s from whoever finishes actions -- the pool threads of the
local executor, the server thread of the remote executor -- to the controller's `wait_some`.

The writer end goes to the producing threads, the reader end stays with the executor.
"""

import logging
from queue import Empty, Queue

from sluice.controller.core import Event

logger = logging.getLogger(__name__)


class Writer():
    def __init__(self, q: "Queue[Event]") -> None:
        self.q = q

    def put(self, e: Event) -> None:
        # unbounded -- the number of events in flight is limited by host capacity anyway
        self.q.put_nowait(e)


class Reader():
    def __init__(self, q: "Queue[Event]") -> None:
        self.q = q

    def get(self, timeout_sec: float | None) -> list[Event]:
        """Waits up to `timeout_sec` for the first event (zero meaning not at all, None forever), then
        takes whatever else is queued already. Empty list if nothing came"""
        try:
            if timeout_sec == 0:
                first = self.q.get_nowait()
            else:
                first = self.q.get(timeout=timeout_sec)
        except Empty:
            return []
        results = [first]
        while True:
            try:
                results.append(self.q.get_nowait())
            except Empty:
                return results


def build_queue() -> tuple[Writer, Reader]:
    q: "Queue[Event]" = Queue()
    return Writer(q), Reader(q)
