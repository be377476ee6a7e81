"""
Wire format of the worker protocol: the message's fields as json, plus the name of its class under
`clazz`. Requests go one way and responses the other, matched by the common prefix of the names
"""

import logging
from typing import cast

import orjson
import zmq

import sluice.executor.api as api
from sluice.executor.comms import get_req_socket

logger = logging.getLogger(__name__)


def _encode(m: api.WorkerAPI, kind: str) -> bytes:
    try:
        d = m.model_dump()  # NOTE no `mode='json'`, orjson handles datetimes & enums itself
        if "clazz" in d:
            raise ValueError("field `clazz` is reserved")
        d["clazz"] = type(m).__name__
        if not d["clazz"].endswith(kind):
            raise ValueError(f"expected a {kind}, got {d['clazz']}")
        return orjson.dumps(d)
    except Exception as e:
        logger.exception(f"failed to serialize {type(m).__name__}")
        raise ValueError(f"failed to serialize {type(m).__name__} => {repr(e)[:64]}")


def _decode(raw: bytes, kind: str) -> api.WorkerAPI:
    try:
        d = orjson.loads(raw)
        clazz = d.pop("clazz")
        if not clazz.endswith(kind):
            raise ValueError(f"expected a {kind}, got {clazz}")
        if not isinstance(getattr(api, clazz, None), type):
            raise ValueError(f"unknown message {clazz}")
        return cast(api.WorkerAPI, getattr(api, clazz)(**d))
    except Exception as e:
        logger.exception(f"failed to parse message: {raw[:32]!r}")
        raise ValueError(f"failed to parse message: {raw[:32]!r} => {repr(e)[:64]}")


def request_response(m: api.WorkerAPI, url: str) -> api.WorkerAPI:
    """Sends the request and blocks for the response, raising ValueError on any failure"""
    raw = _encode(m, "Request")
    socket = get_req_socket(url)
    try:
        socket.send(raw)
        reply = socket.recv()
    except zmq.ZMQError as e:
        logger.warning(f"no response from {url} to {type(m).__name__}: {e}")
        raise ValueError(f"failed to communicate with {url} => {repr(e)[:64]}")
    finally:
        socket.close()
    response = _decode(reply, "Response")
    if type(m).__name__.removesuffix("Request") != type(response).__name__.removesuffix("Response"):
        raise ValueError(f"{type(response).__name__} is not an answer to {type(m).__name__}")
    return response


def parse_request(raw: bytes) -> api.WorkerAPI:
    return _decode(raw, "Request")


def serialize_response(m: api.WorkerAPI) -> bytes:
    return _encode(m, "Response")
