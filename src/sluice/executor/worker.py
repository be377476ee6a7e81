"""
A remote worker: registers at the remote executor, then keeps claiming work, executing it in a thread
pool and reporting the results. Runs until the executor tells it to shut down
"""

import logging
import socket
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import sluice.executor.api as api
from sluice.controller.core import ActionSubmit
from sluice.executor.client import request_response
from sluice.executor.runner import execute
from sluice.low.core import AttemptId, HostId

logger = logging.getLogger(__name__)


class Worker():
    def __init__(self, address: str, worker_id: HostId | None = None, cores: int = 1, resources: dict[str, int] | None = None, claim_interval_sec: float = 1.0, report_tries: int = 3) -> None:
        self.address = address
        self.worker_id = worker_id or f"{socket.gethostname()}-{cores}"
        self.resources = resources if resources is not None else {"cores": cores}
        self.claim_interval_sec = claim_interval_sec
        self.report_tries = report_tries
        self.tp = ThreadPoolExecutor(max_workers=max(cores, 1), thread_name_prefix="sluice-worker")
        self.lock = threading.Lock()
        self.kill_events: dict[AttemptId, threading.Event] = {}

    def register(self) -> None:
        response = request_response(api.RegisterWorkerRequest(worker_id=self.worker_id, resources=self.resources), self.address)
        if not isinstance(response, api.RegisterWorkerResponse) or response.error:
            raise ValueError(f"registration failed: {response}")
        logger.info(f"registered as {self.worker_id} with {self.resources}")

    def _send_report(self, request: api.ReportResultRequest) -> None:
        for i in range(1, self.report_tries + 1):
            try:
                response = request_response(request, self.address)
            except ValueError as e:
                logger.warning(f"report of {request.attempt.attempt_id} failed, try {i}/{self.report_tries}: {e}")
                time.sleep(self.claim_interval_sec)
                continue
            if isinstance(response, api.ReportResultResponse) and response.error:
                logger.error(f"report of {request.attempt.attempt_id} rejected: {response.error}")
            return
        # the executor notices at the next claim, as the attempt is then no longer among the running ones
        logger.error(f"giving up on reporting {request.attempt.attempt_id}")

    def _report(self, action: ActionSubmit, kill_event: threading.Event) -> None:
        try:
            attempt = execute(action, kill_event)
            self._send_report(api.ReportResultRequest(worker_id=self.worker_id, run_id=action.run_id, task=action.task, attempt=attempt))
        finally:
            with self.lock:
                self.kill_events.pop(action.attempt_id, None)

    def claim(self) -> bool:
        """One claim round. Returns whether to continue"""
        with self.lock:
            running = list(self.kill_events.keys())
        response = request_response(api.ClaimWorkRequest(worker_id=self.worker_id, running=running), self.address)
        if not isinstance(response, api.ClaimWorkResponse):
            raise TypeError(response)
        if response.error:
            logger.warning(f"claim rejected: {response.error}, registering again")
            self.register()
            return True
        if response.shutdown:
            return False
        with self.lock:
            for attempt_id in response.kill:
                if (kill_event := self.kill_events.get(attempt_id)) is not None:
                    kill_event.set()
            for action in response.work:
                kill_event = threading.Event()
                self.kill_events[action.attempt_id] = kill_event
                self.tp.submit(self._report, action, kill_event)
        return True

    def run(self) -> None:
        self.register()
        try:
            while True:
                try:
                    if not self.claim():
                        logger.info("shutdown requested")
                        break
                except ValueError as e:
                    logger.warning(f"claim failed, will retry: {e}")
                time.sleep(self.claim_interval_sec)
        finally:
            with self.lock:
                for kill_event in self.kill_events.values():
                    kill_event.set()
            self.tp.shutdown(wait=True)
