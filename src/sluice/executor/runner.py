"""
Runs a submitted action as a sequence of subprocesses, shared by the local executor and remote workers.

An `up` action runs `check` first -- if that succeeds, the interval is up already and `up` is skipped.
Otherwise `up` runs, followed by `check` again which has to succeed now. A `down` action runs `down`
and then expects `check` to fail. Missing `check` commands are considered agreeing.

Processes get a clean environment: a few inherited variables plus those of the command. They are
terminated when the kill event is set or the timeout elapses. While they run, the cpu and memory usage of
the process and its descendants is sampled at every poll.
"""

import datetime as dt
import logging
import os
import signal
import subprocess
import threading
from typing import Optional

import psutil

from sluice.controller.core import ActionSubmit, RenderedCommand
from sluice.low.core import OutputOptions
from sluice.low.errors import CommandFailure
from sluice.scheduler.core import ActionKind, CommandResult, TaskAttempt, TaskState

logger = logging.getLogger(__name__)

INHERITED_ENV = [
    "LANG",
    "HOSTNAME",
    "LOGNAME",
    "USER",
    "PATH",
    "HOME",
    "XDG_CONFIG_HOME",
    "ALL_PROXY",
    "FTP_PROXY",
    "HTTPS_PROXY",
    "HTTP_PROXY",
    "NO_PROXY",
]

poll_interval_sec = 0.1
kill_grace_sec = 5.0


class Killed(Exception):
    pass


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def build_env(extra: dict[str, str]) -> dict[str, str]:
    env = {k: os.environ[k] for k in INHERITED_ENV if k in os.environ}
    env.update(extra)
    return env


def head_tail(data: bytes, options: OutputOptions) -> str:
    """Keeps only the first head_bytes and the last tail_bytes, if truncating"""
    if options.truncate and len(data) > options.head_bytes + options.tail_bytes:
        skipped = len(data) - options.head_bytes - options.tail_bytes
        head = data[: options.head_bytes]
        tail = data[len(data) - options.tail_bytes :] if options.tail_bytes else b""
        data = head + f"\n... {skipped} bytes skipped ...\n".encode() + tail
    return data.decode("utf-8", errors="replace")


def _terminate(proc: subprocess.Popen) -> None:
    # the process runs in its own session, signal the whole group
    try:
        os.killpg(proc.pid, signal.SIGTERM)
    except ProcessLookupError:
        return
    try:
        proc.wait(timeout=kill_grace_sec)
    except subprocess.TimeoutExpired:
        logger.warning(f"process {proc.pid} ignored SIGTERM, killing")
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass


class _Usage:
    def __init__(self, pid: int) -> None:
        self.processes: dict[int, psutil.Process] = {}
        self.root: Optional[psutil.Process] = None
        try:
            self.root = psutil.Process(pid)
            self.root.cpu_percent(interval=None)
            self.processes[pid] = self.root
        except psutil.Error:
            logger.debug(f"process {pid} gone before first sample")
        self.samples = 0
        self.max_cpu = 0.0
        self.sum_cpu = 0.0
        self.max_rss = 0
        self.sum_rss = 0

    def sample(self) -> None:
        if self.root is None:
            return
        try:
            tree = [self.root] + self.root.children(recursive=True)
        except psutil.Error:
            return
        cpu = 0.0
        rss = 0
        for process in tree:
            # NOTE cpu_percent is relative to the previous call on the same object, hence the cache
            process = self.processes.setdefault(process.pid, process)
            try:
                cpu += process.cpu_percent(interval=None)
                rss += process.memory_info().rss
            except psutil.Error:
                continue
        self.samples += 1
        self.max_cpu = max(self.max_cpu, cpu)
        self.sum_cpu += cpu
        self.max_rss = max(self.max_rss, rss)
        self.sum_rss += rss

    def stats(self) -> dict[str, float]:
        n = max(self.samples, 1)
        return {"max_cpu": self.max_cpu, "avg_cpu": self.sum_cpu / n, "max_rss": self.max_rss, "avg_rss": self.sum_rss / n}


def run_command(step: str, command: RenderedCommand, kill_event: threading.Event, options: OutputOptions) -> CommandResult:
    start = _now()
    logger.debug(f"running {step}: {command.argv}")
    try:
        proc = subprocess.Popen(
            command.argv,
            env=build_env(command.environment),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as e:
        logger.warning(f"failed to launch {step} {command.argv}: {e}")
        return CommandResult(step=step, argv=command.argv, error=repr(e), start_time=start, stop_time=_now())

    usage = _Usage(proc.pid)
    killed = False
    timed_out = False
    deadline: Optional[float] = None
    if command.timeout > 0:
        deadline = start.timestamp() + command.timeout
    while True:
        try:
            stdout, stderr = proc.communicate(timeout=poll_interval_sec)
            break
        except subprocess.TimeoutExpired:
            usage.sample()
        if kill_event.is_set():
            killed = True
        elif deadline is not None and _now().timestamp() > deadline:
            timed_out = True
        if killed or timed_out:
            _terminate(proc)
            stdout, stderr = proc.communicate()
            break

    return CommandResult(
        step=step,
        argv=command.argv,
        exit_code=None if killed else proc.returncode,
        killed=killed,
        timed_out=timed_out,
        output=head_tail(stdout, options),
        error=head_tail(stderr, options),
        start_time=start,
        stop_time=_now(),
        **usage.stats(),
    )


class _Steps:
    """Runs the steps of one action, collecting their results"""

    def __init__(self, action: ActionSubmit, kill_event: threading.Event) -> None:
        self.action = action
        self.kill_event = kill_event
        self.results: list[CommandResult] = []

    def has(self, step: str) -> bool:
        return step in self.action.commands

    def run(self, step: str) -> bool:
        """Whether the step succeeded. Raises Killed if killed meanwhile"""
        if self.kill_event.is_set():
            raise Killed(step)
        result = run_command(step, self.action.commands[step], self.kill_event, self.action.output_options)
        self.results.append(result)
        if result.killed:
            raise Killed(step)
        return result.succeeded

    def require(self, step: str) -> None:
        if not self.run(step):
            result = self.results[-1]
            if result.timed_out:
                raise CommandFailure(step, f"timed out after {self.action.commands[step].timeout}s")
            elif result.exit_code is None:
                raise CommandFailure(step, f"failed to launch: {result.error}")
            raise CommandFailure(step, f"exited with {result.exit_code}")


def _up(steps: _Steps) -> str:
    if steps.has("check") and steps.run("check"):
        return "already up"
    steps.require("up")
    if steps.has("check") and not steps.run("check"):
        raise CommandFailure("check", "failed after a successful up")
    return ""


def _down(steps: _Steps) -> str:
    steps.require("down")
    if steps.has("check") and steps.run("check"):
        raise CommandFailure("check", "still succeeds after a successful down")
    return ""


def execute(action: ActionSubmit, kill_event: threading.Event) -> TaskAttempt:
    """Runs the action to completion, never raises -- the outcome is in the attempt"""
    start = _now()
    steps = _Steps(action, kill_event)
    outcome = TaskState.COMPLETED
    try:
        if action.kind == ActionKind.up:
            detail = _up(steps)
        else:
            detail = _down(steps)
    except Killed as e:
        outcome = TaskState.KILLED
        detail = f"killed during {e}"
    except CommandFailure as e:
        outcome = TaskState.ERRORED
        detail = str(e)
    results = steps.results
    if outcome == TaskState.COMPLETED and action.output_options.discard_successful:
        results = [r.model_copy(update={"output": "", "error": ""}) for r in results]
    logger.debug(f"{action.run_id}/{action.task} {action.kind.value} {action.attempt_id} -> {outcome.value}")
    return TaskAttempt(
        attempt_id=action.attempt_id,
        instant=action.instant,
        action=action.kind,
        start_time=start,
        stop_time=_now(),
        outcome=outcome,
        host=action.at,
        detail=detail,
        results=results,
    )
