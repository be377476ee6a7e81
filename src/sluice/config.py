"""
Configuration of the service: logging, and which store, executor and server to run with
"""

from typing import Literal

import orjson
from pydantic import BaseModel, Field

logging_config = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s %(levelname)s %(name)s %(threadName)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": "ext://sys.stderr",
        },
    },
    "loggers": {
        "sluice": {"level": "DEBUG", "handlers": ["console"], "propagate": False},
        "uvicorn": {"level": "INFO", "handlers": ["console"], "propagate": False},
    },
    "root": {"level": "WARNING", "handlers": ["console"]},
}


class MemoryStorageConfig(BaseModel):
    type: Literal["memory"] = "memory"


class RedisStorageConfig(BaseModel):
    type: Literal["redis"]
    url: str = "redis://localhost:6379/0"
    prefix: str = "sluice"


class LocalExecutorConfig(BaseModel):
    type: Literal["local"] = "local"
    workers: int = 4
    resources: dict[str, int] | None = Field(None, description="capacity of the host, by default `workers` cores")


class RemoteExecutorConfig(BaseModel):
    type: Literal["remote"]
    address: str = "tcp://0.0.0.0:2504"
    heartbeat_grace_ms: int = 10_000


class ServerConfig(BaseModel):
    ip: str = "127.0.0.1"
    port: int = 2503


class ServiceConfig(BaseModel):
    storage: MemoryStorageConfig | RedisStorageConfig = Field(default_factory=MemoryStorageConfig, discriminator="type")
    executor: LocalExecutorConfig | RemoteExecutorConfig = Field(default_factory=LocalExecutorConfig, discriminator="type")
    server: ServerConfig = Field(default_factory=ServerConfig)
    tick_sec: float = 1.0
    dependency_timeout_sec: float | None = Field(3600.0, description="warn about tasks unready for longer, None to never")


def load_config(path: str | None) -> ServiceConfig:
    if path is None:
        return ServiceConfig()
    with open(path, "rb") as f:
        return ServiceConfig(**orjson.loads(f.read()))
