from __future__ import annotations

import json
from unittest.mock import patch

import httpx
import pytest
from typer.testing import CliRunner

from conftest import BAD_DATA_PAYLOAD, MATRIX_PAYLOAD, RecordingTransport
from prometheus_bridge.cli.main import app
from prometheus_bridge.httpclient import HTTPClientProvider

RANGE_ARGS = ["--start", "1704067200", "--end", "1704070800"]


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    monkeypatch.delenv("PROMBRIDGE_SECRETS_PATH", raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def config_file(tmp_path):
    path = tmp_path / "bridge.toml"
    path.write_text('[bridge]\nmax_retries = 1\n\n[datasources.prom-gateway]\nbasicAuthPassword = "hunter2"\n', encoding="utf-8")
    return path


def invoke(cli_runner: CliRunner, args: list[str], transport: httpx.BaseTransport | None = None):
    provider = HTTPClientProvider(transport=transport or httpx.MockTransport(lambda request: httpx.Response(200, json=MATRIX_PAYLOAD)))
    with patch("prometheus_bridge.cli.main._build_provider", return_value=provider):
        return cli_runner.invoke(app, args)


def test_datasources_list(cli_runner, catalog_file):
    result = invoke(cli_runner, ["--catalog", str(catalog_file), "datasources", "list"])

    assert result.exit_code == 0
    assert "UID" in result.stdout
    assert "prom-local" in result.stdout
    assert "prom-gateway" in result.stdout


def test_datasources_describe_hides_secret_values(cli_runner, catalog_file, config_file):
    result = invoke(
        cli_runner,
        ["--catalog", str(catalog_file), "--config", str(config_file), "datasources", "describe", "prom-gateway"],
    )

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["uid"] == "prom-gateway"
    assert payload["json_data"]["httpMethod"] == "GET"
    assert payload["secure_fields"] == ["basicAuthPassword"]
    assert "hunter2" not in result.stdout


def test_datasources_describe_unknown_uid(cli_runner, catalog_file):
    result = invoke(cli_runner, ["--catalog", str(catalog_file), "datasources", "describe", "nope"])

    assert result.exit_code == 1
    assert "not in the catalog" in result.output


def test_query_prints_frames(cli_runner, catalog_file, config_file):
    transport = RecordingTransport(lambda request: httpx.Response(200, json=MATRIX_PAYLOAD))

    result = invoke(
        cli_runner,
        ["--catalog", str(catalog_file), "--config", str(config_file), "query", "prom-local", "up", "--legend", "{{job}}", *RANGE_ARGS],
        transport,
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["A"]["frames"][0]["name"] == "prom"
    assert payload["A"]["frames"][0]["values"] == [1.0, 0.0]
    request = transport.requests[0]
    assert request.url.path == "/api/v1/query_range"
    assert str(request.url).startswith("http://localhost:9090")


def test_query_reports_remote_rejection(cli_runner, catalog_file, config_file):
    transport = RecordingTransport(lambda request: httpx.Response(400, json=BAD_DATA_PAYLOAD))

    result = invoke(
        cli_runner,
        ["--catalog", str(catalog_file), "--config", str(config_file), "query", "prom-local", "up{", *RANGE_ARGS],
        transport,
    )

    assert result.exit_code == 1
    assert "Query rejected (A): bad_data: invalid expression" in result.output


def test_query_reports_transport_failure(cli_runner, catalog_file, config_file):
    def responder(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    result = invoke(
        cli_runner,
        ["--catalog", str(catalog_file), "--config", str(config_file), "query", "prom-local", "up", *RANGE_ARGS],
        httpx.MockTransport(responder),
    )

    assert result.exit_code == 1
    assert "Query failed (A)" in result.output


def test_query_reports_invalid_settings(cli_runner, tmp_path, config_file):
    catalog = tmp_path / "catalog.yaml"
    catalog.write_text(
        "- id: 9\n  uid: broken\n  url: http://prom.test\n  json_data:\n    timeInterval: 15\n",
        encoding="utf-8",
    )

    result = invoke(cli_runner, ["--catalog", str(catalog), "--config", str(config_file), "query", "broken", "up", *RANGE_ARGS])

    assert result.exit_code == 1
    assert "Query failed: invalid time-interval provided" in result.output


def test_query_unknown_datasource(cli_runner, catalog_file):
    result = invoke(cli_runner, ["--catalog", str(catalog_file), "query", "nope", "up"])

    assert result.exit_code == 1
    assert "not in the catalog" in result.output


def test_query_rejects_inverted_range(cli_runner, catalog_file):
    result = invoke(cli_runner, ["--catalog", str(catalog_file), "query", "prom-local", "up", "--start", "now", "--end", "now-1h"])

    assert result.exit_code == 2


def test_invalid_catalog_exits(cli_runner, tmp_path):
    catalog = tmp_path / "catalog.yaml"
    catalog.write_text("uid: nope\n", encoding="utf-8")

    result = invoke(cli_runner, ["--catalog", str(catalog), "datasources", "list"])

    assert result.exit_code == 1
    assert "must contain a list" in result.output


def test_query_reports_malformed_datasource_url(cli_runner, tmp_path, config_file):
    catalog = tmp_path / "catalog.yaml"
    catalog.write_text('- id: 9\n  uid: broken\n  url: "http://[::1"\n', encoding="utf-8")

    result = invoke(cli_runner, ["--catalog", str(catalog), "--config", str(config_file), "query", "broken", "up", *RANGE_ARGS])

    assert result.exit_code == 1
    assert "Query failed: error creating client" in result.output
