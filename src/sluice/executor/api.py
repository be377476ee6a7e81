"""
Messages between the remote executor and its workers. Workers pull: they register their capacity,
then keep claiming work (which doubles as a heartbeat), and report results once finished.
"""

from pydantic import BaseModel, Field

from sluice.controller.core import ActionSubmit
from sluice.low.core import AttemptId, HostId, RunId, TaskName
from sluice.scheduler.core import TaskAttempt

WorkerAPI = BaseModel


class RegisterWorkerRequest(WorkerAPI):
    worker_id: HostId
    resources: dict[str, int]


class RegisterWorkerResponse(WorkerAPI):
    error: str | None = None


class ClaimWorkRequest(WorkerAPI):
    worker_id: HostId
    running: list[AttemptId] = Field(default_factory=list)


class ClaimWorkResponse(WorkerAPI):
    work: list[ActionSubmit] = Field(default_factory=list)
    kill: list[AttemptId] = Field(default_factory=list)
    shutdown: bool = False
    error: str | None = None


class ReportResultRequest(WorkerAPI):
    worker_id: HostId
    run_id: RunId
    task: TaskName
    attempt: TaskAttempt


class ReportResultResponse(WorkerAPI):
    error: str | None = None
