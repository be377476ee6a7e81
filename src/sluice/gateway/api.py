"""
Bodies of the http requests. Responses are the views of `controller.report`, dumped by alias
"""

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field

from sluice.controller.report import RunDetail, RunSummary, TimelineGroup
from sluice.low.core import RunId, WorldDefinition

GatewayAPI = BaseModel


class SubmitRunRequest(GatewayAPI):
    world: WorldDefinition
    tag: str | None = None


class SubmitRunResponse(GatewayAPI):
    model_config = ConfigDict(populate_by_name=True)
    run_id: RunId = Field(alias="runID")


class DownRequest(GatewayAPI):
    instant: dt.datetime


class DetailsRequest(GatewayAPI):
    model_config = ConfigDict(populate_by_name=True)
    start: dt.datetime
    end: dt.datetime
    run_id: RunId | None = Field(None, alias="runID")


class ErrorResponse(GatewayAPI):
    error: str


__all__ = [
    "SubmitRunRequest",
    "SubmitRunResponse",
    "DownRequest",
    "DetailsRequest",
    "ErrorResponse",
    "RunSummary",
    "RunDetail",
    "TimelineGroup",
]
