"""
Client of the http status/control api, used by the cli. Responses are returned as parsed json
"""

import datetime as dt
import logging
from typing import Any

import httpx

from sluice.gateway import api
from sluice.low.core import RunId, TaskName, WorldDefinition

logger = logging.getLogger(__name__)


class GatewayClient():
    def __init__(self, url: str, timeout_sec: float = 10.0, transport: httpx.BaseTransport | None = None) -> None:
        self.client = httpx.Client(base_url=url, timeout=timeout_sec, transport=transport)

    def _check(self, response: httpx.Response) -> httpx.Response:
        if response.is_error:
            try:
                message = response.json().get("error", response.text)
            except ValueError:
                message = response.text
            raise ValueError(f"{response.request.method} {response.request.url.path} -> {response.status_code}: {message}")
        return response

    def ready(self) -> bool:
        try:
            return self.client.get("/ready").status_code == 200
        except httpx.HTTPError:
            return False

    def submit(self, world: WorldDefinition, tag: str | None = None) -> RunId:
        body = api.SubmitRunRequest(world=world, tag=tag).model_dump(mode="json")
        response = self._check(self.client.post("/v1/dagrun", json=body))
        return api.SubmitRunResponse(**response.json()).run_id

    def runs(self, include_finished: bool = False) -> list[dict[str, Any]]:
        params = {"all": "1"} if include_finished else {}
        return self._check(self.client.get("/v1/dagruns", params=params)).json()

    def run(self, run_id: RunId) -> dict[str, Any]:
        return self._check(self.client.get(f"/v1/dagrun/{run_id}")).json()

    def kill_run(self, run_id: RunId) -> None:
        self._check(self.client.delete(f"/v1/dagrun/{run_id}"))

    def retry_run(self, run_id: RunId) -> None:
        self._check(self.client.patch(f"/v1/dagrun/{run_id}/state/QUEUED"))

    def kill_task(self, run_id: RunId, task: TaskName) -> None:
        self._check(self.client.delete(f"/v1/dagrun/{run_id}/task/{task}"))

    def retry_task(self, run_id: RunId, task: TaskName) -> None:
        self._check(self.client.patch(f"/v1/dagrun/{run_id}/task/{task}/state/QUEUED"))

    def down(self, run_id: RunId, task: TaskName, instant: dt.datetime) -> None:
        body = api.DownRequest(instant=instant).model_dump(mode="json")
        self._check(self.client.post(f"/v1/dagrun/{run_id}/task/{task}/down", json=body))

    def details(self, start: dt.datetime, end: dt.datetime, run_id: RunId | None = None, max_intervals: int | None = None) -> list[dict[str, Any]]:
        body = api.DetailsRequest(start=start, end=end, run_id=run_id).model_dump(mode="json", by_alias=True)
        params = {"max_intervals": str(max_intervals)} if max_intervals is not None else {}
        return self._check(self.client.post("/v1/details", json=body, params=params)).json()
