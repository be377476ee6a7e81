"""
Pull-based remote executor: a zmq REP server thread, to which workers (see `executor.worker`) register
their capacity, from which they claim submitted actions and to which they report results.

Each registered worker is a host of the environment. A worker which did not claim for longer than the
grace period is considered lost -- it is dropped from the environment, and its in-flight actions are
reported as infrastructure failures, so that the controller requeues them. Same for claimed attempts which
a worker no longer lists as running without ever having reported them.
"""

import datetime as dt
import logging
import threading
from collections import defaultdict

import zmq

import sluice.executor.api as api
from sluice.controller.core import ActionKill, ActionSubmit, Event
from sluice.executor.client import parse_request, serialize_response
from sluice.executor.comms import GraceWatcher, get_rep_socket
from sluice.executor.event_queue import build_queue
from sluice.low.core import AttemptId, Environment, HostId
from sluice.scheduler.core import TaskAttempt, TaskState

logger = logging.getLogger(__name__)

poll_interval_ms = 200


class RemoteExecutor():
    def __init__(self, address: str, heartbeat_grace_ms: int = 10_000) -> None:
        self.address = address
        self.heartbeat_grace_ms = heartbeat_grace_ms
        self.lock = threading.Lock()
        self.hosts: dict[HostId, dict[str, int]] = {}
        self.watchers: dict[HostId, GraceWatcher] = {}
        self.pending: dict[HostId, list[ActionSubmit]] = defaultdict(list)
        self.kills: dict[HostId, list[AttemptId]] = defaultdict(list)
        self.inflight: dict[AttemptId, ActionSubmit] = {}
        self.writer, self.reader = build_queue()
        self.shutting_down = threading.Event()
        self.stopped = threading.Event()
        self.server = threading.Thread(target=self._serve, name="sluice-remote", daemon=True)
        self.server.start()

    def get_environment(self) -> Environment:
        with self.lock:
            return Environment(hosts={host: dict(resources) for host, resources in self.hosts.items()})

    def submit(self, action: ActionSubmit) -> None:
        with self.lock:
            if action.at not in self.hosts:
                self._fail(action, f"worker {action.at} is gone")
                return
            self.inflight[action.attempt_id] = action
            self.pending[action.at].append(action)

    def kill(self, action: ActionKill) -> None:
        with self.lock:
            pending = self.pending.get(action.at, [])
            for submitted in pending:
                if submitted.attempt_id == action.attempt_id:
                    # never left, no need to bother the worker
                    pending.remove(submitted)
                    self.inflight.pop(submitted.attempt_id, None)
                    self._fail(submitted, "killed before claimed", outcome=TaskState.KILLED, infra=False)
                    return
            if action.attempt_id in self.inflight:
                self.kills[action.at].append(action.attempt_id)

    def wait_some(self, timeout_sec: float | None = None) -> list[Event]:
        return self.reader.get(timeout_sec)

    def shutdown(self) -> None:
        self.shutting_down.set()
        self.server.join(timeout=(self.heartbeat_grace_ms + poll_interval_ms) / 1_000)
        self.stopped.set()

    def _fail(self, action: ActionSubmit, detail: str, outcome: TaskState = TaskState.ERRORED, infra: bool = True) -> None:
        now = dt.datetime.now(dt.timezone.utc)
        attempt = TaskAttempt(
            attempt_id=action.attempt_id,
            instant=action.instant,
            action=action.kind,
            start_time=now,
            stop_time=now,
            outcome=outcome,
            host=action.at,
            infra_failure=infra,
            detail=detail,
        )
        self.writer.put(Event(at=action.at, run_id=action.run_id, task=action.task, attempt=attempt))

    def _drop_lost(self) -> None:
        with self.lock:
            lost = [host for host, watcher in self.watchers.items() if watcher.is_breach()]
            for host in lost:
                logger.warning(f"worker {host} lost after {self.watchers[host].elapsed_ms()}ms")
                self.hosts.pop(host, None)
                self.watchers.pop(host, None)
                self.pending.pop(host, None)
                self.kills.pop(host, None)
                for action in [a for a in self.inflight.values() if a.at == host]:
                    self.inflight.pop(action.attempt_id)
                    self._fail(action, f"worker {host} lost")

    def _drop_forgotten(self, host: HostId, known: set[AttemptId]) -> None:
        """Claimed attempts the worker does not run anymore, yet never reported -- the report or the claim
        response got lost on the way. Caller holds the lock"""
        for action in [a for a in self.inflight.values() if a.at == host and a.attempt_id not in known]:
            logger.warning(f"worker {host} no longer runs {action.attempt_id}, which was never reported")
            self.inflight.pop(action.attempt_id)
            self._fail(action, f"result of worker {host} lost")

    def _handle(self, m: api.WorkerAPI) -> api.WorkerAPI:
        if isinstance(m, api.RegisterWorkerRequest):
            with self.lock:
                if m.worker_id in self.hosts:
                    logger.warning(f"worker {m.worker_id} registered again, in-flight work is lost")
                    for action in [a for a in self.inflight.values() if a.at == m.worker_id]:
                        self.inflight.pop(action.attempt_id)
                        self._fail(action, f"worker {m.worker_id} restarted")
                    self.pending.pop(m.worker_id, None)
                self.hosts[m.worker_id] = m.resources
                self.watchers[m.worker_id] = GraceWatcher(self.heartbeat_grace_ms)
                self.watchers[m.worker_id].step()
            logger.info(f"worker {m.worker_id} registered with {m.resources}")
            return api.RegisterWorkerResponse()
        elif isinstance(m, api.ClaimWorkRequest):
            if self.shutting_down.is_set():
                return api.ClaimWorkResponse(shutdown=True)
            with self.lock:
                if m.worker_id not in self.hosts:
                    return api.ClaimWorkResponse(error=f"worker {m.worker_id} not registered")
                self.watchers[m.worker_id].step()
                work = self.pending.pop(m.worker_id, [])
                self._drop_forgotten(m.worker_id, set(m.running) | {a.attempt_id for a in work})
                kill = [k for k in self.kills.pop(m.worker_id, []) if k in self.inflight]
            return api.ClaimWorkResponse(work=work, kill=kill)
        elif isinstance(m, api.ReportResultRequest):
            with self.lock:
                self.inflight.pop(m.attempt.attempt_id, None)
                if m.worker_id in self.watchers:
                    self.watchers[m.worker_id].step()
            self.writer.put(Event(at=m.worker_id, run_id=m.run_id, task=m.task, attempt=m.attempt))
            return api.ReportResultResponse()
        else:
            raise TypeError(m)

    def _serve(self) -> None:
        socket = get_rep_socket(self.address)
        poller = zmq.Poller()
        poller.register(socket, flags=zmq.POLLIN)
        logger.debug(f"remote executor listening on {self.address}")
        try:
            while not self.stopped.is_set():
                if self.shutting_down.is_set() and not self.hosts:
                    break
                if poller.poll(poll_interval_ms):
                    raw = socket.recv()
                    try:
                        response = self._handle(parse_request(raw))
                    except (ValueError, TypeError) as e:
                        logger.warning(f"unable to handle a request: {e}")
                        response = api.ClaimWorkResponse(error=repr(e))
                    socket.send(serialize_response(response))
                self._drop_lost()
        finally:
            socket.close(linger=0)
