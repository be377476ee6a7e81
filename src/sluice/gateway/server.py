"""
Http status/control api in front of the `controller.impl.Controller`. The controller's loop is started
and stopped with the app's lifespan, unless the app is built with `run_loop=False` -- then it is up
to the caller to `step` the controller
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, TypedDict

import orjson
from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from sluice.controller.impl import Controller
from sluice.gateway import api
from sluice.low.errors import ConfigError
from sluice.scheduler.core import TaskState

logger = logging.getLogger(__name__)


class OrjsonResponse(JSONResponse):
    def render(self, content: dict | list) -> bytes:
        return orjson.dumps(content)


ok_response = Response()


class State(TypedDict):
    controller: Controller


def _error(status: int, message: str) -> Response:
    return OrjsonResponse(api.ErrorResponse(error=message).model_dump(), status_code=status)


async def _parse(request: Request, clazz: type[api.GatewayAPI]) -> api.GatewayAPI:
    return clazz.model_validate(orjson.loads(await request.body()))


# get, () -> ()
async def ready(request: Request) -> Response:
    return ok_response


# get, (?all=1) -> (list[RunSummary])
async def list_runs(request: Request) -> Response:
    include_finished = request.query_params.get("all", "0") not in ("0", "", "false")
    summaries = request.state.controller.list_runs(include_finished)
    return OrjsonResponse([s.model_dump(by_alias=True) for s in summaries])


# post, (SubmitRunRequest) -> (SubmitRunResponse)
async def submit_run(request: Request) -> Response:
    try:
        body = await _parse(request, api.SubmitRunRequest)
        run_id = request.state.controller.submit(body.world, body.tag)
    except (ValidationError, ConfigError, orjson.JSONDecodeError) as e:
        logger.warning(f"rejected submission: {e}")
        return _error(400, str(e))
    return OrjsonResponse(api.SubmitRunResponse(run_id=run_id).model_dump(by_alias=True))


# get, ({run_id}) -> (RunDetail)
async def get_run(request: Request) -> Response:
    try:
        run = request.state.controller.get_run(request.path_params["run_id"])
    except KeyError as e:
        return _error(404, e.args[0])
    return OrjsonResponse(run.model_dump(by_alias=True))


# delete, ({run_id}) -> ()
async def kill_run(request: Request) -> Response:
    try:
        request.state.controller.kill_run(request.path_params["run_id"])
    except KeyError as e:
        return _error(404, e.args[0])
    return ok_response


def _queued_only(request: Request) -> Response | None:
    if request.path_params["state"] != TaskState.QUEUED.value:
        return _error(400, f"only transition to {TaskState.QUEUED.value} is supported")
    return None


# patch, ({run_id}, {state}) -> ()
async def retry_run(request: Request) -> Response:
    if (rejected := _queued_only(request)) is not None:
        return rejected
    try:
        request.state.controller.retry_run(request.path_params["run_id"])
    except KeyError as e:
        return _error(404, e.args[0])
    return ok_response


# delete, ({run_id}, {task}) -> ()
async def kill_task(request: Request) -> Response:
    try:
        request.state.controller.kill_task(request.path_params["run_id"], request.path_params["task"])
    except KeyError as e:
        return _error(404, e.args[0])
    return ok_response


# patch, ({run_id}, {task}, {state}) -> ()
async def retry_task(request: Request) -> Response:
    if (rejected := _queued_only(request)) is not None:
        return rejected
    try:
        request.state.controller.retry_task(request.path_params["run_id"], request.path_params["task"])
    except KeyError as e:
        return _error(404, e.args[0])
    return ok_response


# post, ({run_id}, {task}, DownRequest) -> ()
async def down_task(request: Request) -> Response:
    try:
        body = await _parse(request, api.DownRequest)
        request.state.controller.request_down(request.path_params["run_id"], request.path_params["task"], body.instant)
    except KeyError as e:
        return _error(404, e.args[0])
    except (ValidationError, ValueError) as e:
        return _error(400, str(e))
    return ok_response


# post, (DetailsRequest, ?max_intervals=N) -> (list[TimelineGroup])
async def details(request: Request) -> Response:
    try:
        body = await _parse(request, api.DetailsRequest)
        raw_max = request.query_params.get("max_intervals")
        max_intervals = int(raw_max) if raw_max is not None else None
        groups = request.state.controller.details(body.start, body.end, body.run_id, max_intervals)
    except KeyError as e:
        return _error(404, e.args[0])
    except (ValidationError, ValueError) as e:
        return _error(400, str(e))
    return OrjsonResponse([g.model_dump(by_alias=True) for g in groups])


def build_app(controller: Controller, run_loop: bool = True, is_debug: bool = False) -> Starlette:

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[State]:
        if run_loop:
            controller.start()
        yield {"controller": controller}
        if run_loop:
            controller.stop()

    return Starlette(
        debug=is_debug,
        routes=[
            Route("/ready", ready, methods=["GET", "HEAD"]),
            Route("/v1/dagruns", list_runs, methods=["GET"]),
            Route("/v1/dagrun", submit_run, methods=["POST"]),
            Route("/v1/dagrun/{run_id}", get_run, methods=["GET"]),
            Route("/v1/dagrun/{run_id}", kill_run, methods=["DELETE"]),
            Route("/v1/dagrun/{run_id}/state/{state}", retry_run, methods=["PATCH"]),
            Route("/v1/dagrun/{run_id}/task/{task}", kill_task, methods=["DELETE"]),
            Route("/v1/dagrun/{run_id}/task/{task}/state/{state}", retry_task, methods=["PATCH"]),
            Route("/v1/dagrun/{run_id}/task/{task}/down", down_task, methods=["POST"]),
            Route("/v1/details", details, methods=["POST"]),
        ],
        lifespan=lifespan,
    )
