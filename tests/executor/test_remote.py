"""
The remote executor with workers in threads of this process, talking over localhost
"""

import datetime as dt
import logging
import os
import signal
import threading
import time

import sluice.executor.api as api
from sluice.controller.core import ActionKill, ActionSubmit, RenderedCommand
from sluice.controller.impl import Controller
from sluice.executor.client import request_response
from sluice.executor.remote import RemoteExecutor
from sluice.executor.worker import Worker
from sluice.scheduler.core import ActionKind, TaskState
from sluice.store.memory import MemoryStore

logger = logging.getLogger(__name__)
port_start = 5571


def action(at: str, attempt_id: str) -> ActionSubmit:
    return ActionSubmit(
        at=at,
        attempt_id=attempt_id,
        run_id="r1",
        task="t1",
        kind=ActionKind.up,
        instant=dt.datetime(2024, 3, 1, 9, tzinfo=dt.timezone.utc),
        commands={"up": RenderedCommand(argv=["true"])},
        resources={"cores": 1},
    )


def test_with_worker(world, task, clock):
    address = f"tcp://127.0.0.1:{port_start}"
    executor = RemoteExecutor(address, heartbeat_grace_ms=1_000)
    worker = Worker(address, worker_id="w0", cores=2, claim_interval_sec=0.05)
    tW = threading.Thread(target=worker.run)
    tW.start()
    controller = Controller(executor, MemoryStore(), clock=clock)
    try:
        start = time.monotonic()
        while not executor.get_environment().hosts:
            assert time.monotonic() - start < 5
            time.sleep(0.05)
        assert executor.get_environment().hosts == {"w0": {"cores": 2}}

        run_id = controller.submit(world({
            "a": task(provides=["alpha"]),
            "b": task(up={"command": "false"}, requires=[{"resource": "alpha"}]),
        }))
        run = controller.runs[run_id]
        start = time.monotonic()
        while run.tasks["b"].state not in (TaskState.COMPLETED, TaskState.ERRORED):
            assert time.monotonic() - start < 10
            controller.step(timeout_sec=0.1)
        assert run.task_states() == {"a": TaskState.COMPLETED, "b": TaskState.ERRORED}
        assert run.attempts["a"][0].host == "w0"
    except AssertionError:
        raise
    except Exception:
        logger.exception("test failure, sigint threads")
        os.kill(os.getpid(), signal.SIGINT)
        raise
    finally:
        controller.stop()
        tW.join(5.0)
    assert not tW.is_alive()


def test_lost_worker():
    address = f"tcp://127.0.0.1:{port_start + 1}"
    executor = RemoteExecutor(address, heartbeat_grace_ms=1_000)
    try:
        response = request_response(api.RegisterWorkerRequest(worker_id="w1", resources={"cores": 1}), address)
        assert response == api.RegisterWorkerResponse()

        executor.submit(action("w1", "pending"))
        executor.kill(ActionKill(at="w1", attempt_id="pending"))
        (killed,) = executor.wait_some(1.0)
        assert killed.attempt.outcome == TaskState.KILLED
        assert not killed.attempt.infra_failure

        executor.submit(action("w1", "claimed"))
        claim = request_response(api.ClaimWorkRequest(worker_id="w1"), address)
        assert isinstance(claim, api.ClaimWorkResponse)
        assert [a.attempt_id for a in claim.work] == ["claimed"]

        # never heard of again
        (lost,) = executor.wait_some(5.0)
        assert lost.attempt.attempt_id == "claimed"
        assert lost.attempt.infra_failure
        assert executor.get_environment().hosts == {}

        executor.submit(action("w1", "late"))
        (gone,) = executor.wait_some(1.0)
        assert gone.attempt.infra_failure
    finally:
        executor.shutdown()


def test_unreported_attempt():
    address = f"tcp://127.0.0.1:{port_start + 2}"
    executor = RemoteExecutor(address, heartbeat_grace_ms=2_000)
    try:
        request_response(api.RegisterWorkerRequest(worker_id="w2", resources={"cores": 1}), address)
        executor.submit(action("w2", "claimed"))
        claim = request_response(api.ClaimWorkRequest(worker_id="w2"), address)
        assert isinstance(claim, api.ClaimWorkResponse)
        assert [a.attempt_id for a in claim.work] == ["claimed"]

        # still running at the worker
        request_response(api.ClaimWorkRequest(worker_id="w2", running=["claimed"]), address)
        assert executor.wait_some(0.2) == []
        assert list(executor.inflight) == ["claimed"]

        # finished at the worker, but the report never made it
        executor.kill(ActionKill(at="w2", attempt_id="claimed"))
        claim = request_response(api.ClaimWorkRequest(worker_id="w2", running=[]), address)
        assert isinstance(claim, api.ClaimWorkResponse)
        assert claim.kill == []
        (forgotten,) = executor.wait_some(1.0)
        assert forgotten.attempt.attempt_id == "claimed"
        assert forgotten.attempt.infra_failure
        assert executor.inflight == {}
        assert executor.get_environment().hosts == {"w2": {"cores": 1}}
    finally:
        executor.shutdown()
