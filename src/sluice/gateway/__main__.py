import logging
import logging.config
from typing import Any

import fire
import orjson
import uvicorn

from sluice.config import LocalExecutorConfig, RemoteExecutorConfig, ServiceConfig, load_config, logging_config
from sluice.controller.executor import Executor
from sluice.controller.impl import Controller
from sluice.executor.local import LocalExecutor
from sluice.executor.remote import RemoteExecutor
from sluice.gateway.client import GatewayClient
from sluice.gateway.server import build_app
from sluice.low.core import WorldDefinition
from sluice.low.func import assert_never
from sluice.store import build_store

logger = logging.getLogger(__name__)

default_url = "http://127.0.0.1:2503"


def build_executor(config: LocalExecutorConfig | RemoteExecutorConfig) -> Executor:
    if isinstance(config, LocalExecutorConfig):
        return LocalExecutor(config.workers, config.resources)
    elif isinstance(config, RemoteExecutorConfig):
        return RemoteExecutor(config.address, config.heartbeat_grace_ms)
    else:
        assert_never(config)


def serve(config: str | None = None) -> None:
    """Runs the controller & the http api, configured by a json file"""
    logging.config.dictConfig(logging_config)
    service: ServiceConfig = load_config(config)
    controller = Controller(
        build_executor(service.executor),
        build_store(service.storage),
        tick_sec=service.tick_sec,
        dependency_timeout_sec=service.dependency_timeout_sec,
    )
    app = build_app(controller)
    uvicorn.run(app, host=service.server.ip, port=service.server.port, log_config=None)


def submit(world: str, tag: str | None = None, url: str = default_url) -> str:
    """Submits the world in the given json file, prints the run id"""
    with open(world, "rb") as f:
        definition = WorldDefinition(**orjson.loads(f.read()))
    return GatewayClient(url).submit(definition, tag)


def runs(all: bool = False, url: str = default_url) -> list[dict[str, Any]]:
    return GatewayClient(url).runs(all)


def show(run_id: str, url: str = default_url) -> dict[str, Any]:
    return GatewayClient(url).run(run_id)


def kill(run_id: str, task: str | None = None, url: str = default_url) -> None:
    client = GatewayClient(url)
    if task is None:
        client.kill_run(run_id)
    else:
        client.kill_task(run_id, task)


def retry(run_id: str, task: str | None = None, url: str = default_url) -> None:
    client = GatewayClient(url)
    if task is None:
        client.retry_run(run_id)
    else:
        client.retry_task(run_id, task)


if __name__ == "__main__":
    fire.Fire(
        {
            "serve": serve,
            "submit": submit,
            "runs": runs,
            "show": show,
            "kill": kill,
            "retry": retry,
        }
    )
