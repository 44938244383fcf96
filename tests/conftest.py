from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from importlib import resources
from pathlib import Path
from typing import Any, Callable, Dict, List

import httpx
import pytest
from typer.testing import CliRunner

from prometheus_bridge.core.context import DataSourceInstanceSettings, PluginContext
from prometheus_bridge.models import Query, QueryDataRequest, TimeRange

START = datetime(2024, 1, 1, tzinfo=UTC)
END = START + timedelta(hours=1)

MATRIX_PAYLOAD: Dict[str, Any] = {
    "status": "success",
    "data": {
        "resultType": "matrix",
        "result": [
            {
                "metric": {"__name__": "up", "instance": "a:9090", "job": "prom"},
                "values": [[1704067200, "1"], [1704067215, "0"]],
            }
        ],
    },
}

BAD_DATA_PAYLOAD: Dict[str, Any] = {
    "status": "error",
    "errorType": "bad_data",
    "error": "invalid expression",
}


def make_settings(
    *,
    id: int = 1,
    json_data: Dict[str, Any] | bytes | str | None = None,
    updated: datetime = START,
    **overrides: Any,
) -> DataSourceInstanceSettings:
    raw = json_data if isinstance(json_data, (bytes, str)) else json.dumps(json_data or {}).encode("utf-8")
    return DataSourceInstanceSettings(
        id=id,
        uid=overrides.pop("uid", f"prom-{id}"),
        url=overrides.pop("url", "http://prom.test"),
        json_data=raw,
        updated=updated,
        **overrides,
    )


def make_request(settings: DataSourceInstanceSettings, *models: Dict[str, Any], query_type: str = "") -> QueryDataRequest:
    queries = [
        Query(
            ref_id=chr(ord("A") + index),
            time_range=TimeRange(start=START, end=END),
            model_json=model,
            query_type=query_type,
            max_data_points=1500,
        )
        for index, model in enumerate(models)
    ]
    return QueryDataRequest(
        plugin_context=PluginContext(plugin_id="prometheus", datasource_instance_settings=settings),
        queries=tuple(queries),
    )


class RecordingTransport(httpx.MockTransport):
    """Mock transport that records requests before delegating to a responder."""

    def __init__(self, responder: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return responder(request)

        super().__init__(handler)


@pytest.fixture()
def matrix_transport() -> RecordingTransport:
    return RecordingTransport(lambda request: httpx.Response(200, json=MATRIX_PAYLOAD))


@pytest.fixture()
def bad_data_transport() -> RecordingTransport:
    return RecordingTransport(lambda request: httpx.Response(400, json=BAD_DATA_PAYLOAD))


@pytest.fixture(scope="session")
def catalog_file() -> Path:
    datasources_pkg = "prometheus_bridge.resources.datasources"
    with resources.as_file(resources.files(datasources_pkg) / "example.yaml") as ref:
        return Path(ref)


@pytest.fixture()
def cli_runner() -> CliRunner:
    return CliRunner()
