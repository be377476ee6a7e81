"""
Zmq plumbing of the worker protocol: sockets, and the liveness watch over workers
"""

import logging
import threading
import time

import zmq

logger = logging.getLogger(__name__)
default_timeout_sec = 5

_local = threading.local()


class GraceWatcher:
    """Tracks when a worker was last heard of, and whether that is longer than `grace_ms` ago"""
    def __init__(self, grace_ms: int):
        self.grace_ms = grace_ms
        self.last_ms = self._now()

    @staticmethod
    def _now() -> int:
        return time.monotonic_ns() // 1_000_000

    def step(self) -> None:
        self.last_ms = self._now()

    def elapsed_ms(self) -> int:
        return self._now() - self.last_ms

    def is_breach(self) -> bool:
        return self.elapsed_ms() > self.grace_ms


def get_context() -> zmq.Context:
    """One context per thread"""
    if not hasattr(_local, "context"):
        _local.context = zmq.Context()
    return _local.context


def get_req_socket(address: str, timeout_sec: int = default_timeout_sec) -> zmq.Socket:
    socket = get_context().socket(zmq.REQ)
    # NOTE a REQ socket is unusable after a lost reply, so we time out and let the caller
    # open a new one instead of hanging indefinitely
    socket.set(zmq.RCVTIMEO, timeout_sec * 1_000)
    socket.set(zmq.SNDTIMEO, timeout_sec * 1_000)
    socket.set(zmq.LINGER, 0)
    socket.connect(address)
    return socket


def get_rep_socket(address: str) -> zmq.Socket:
    socket = get_context().socket(zmq.REP)
    socket.bind(address)
    return socket
