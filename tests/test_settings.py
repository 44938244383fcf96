from __future__ import annotations

import json
from unittest.mock import MagicMock

import httpx
import pytest

from conftest import RecordingTransport, make_settings
from prometheus_bridge.errors import InstanceSettingsError, QueryValidationError
from prometheus_bridge.httpclient import HTTPClientProvider
from prometheus_bridge.settings import (
    SIGV4_SERVICE_NAMESPACE,
    InstanceSettingsFactory,
    JSONSettings,
    parse_json_settings,
)


def _factory(client_factory=None) -> tuple[InstanceSettingsFactory, MagicMock]:
    recorder = client_factory or MagicMock(name="client_factory")
    return InstanceSettingsFactory(HTTPClientProvider(), client_factory=recorder), recorder


def test_missing_time_interval_defaults_to_empty_string():
    factory, client_factory = _factory()

    info = factory(make_settings(json_data={"httpMethod": "GET"}))

    assert info.time_interval == ""
    assert info.id == 1
    assert info.url == "http://prom.test"
    assert info.client is client_factory.return_value


def test_null_time_interval_is_treated_as_missing():
    factory, _ = _factory()

    info = factory(make_settings(json_data=b'{"timeInterval": null}'))

    assert info.time_interval == ""


def test_time_interval_string_is_kept():
    factory, _ = _factory()

    info = factory(make_settings(json_data={"timeInterval": "30s"}))

    assert info.time_interval == "30s"


@pytest.mark.parametrize("value", [15, 1.5, True, ["15s"], {"value": "15s"}])
def test_non_string_time_interval_fails_without_building_client(value):
    factory, client_factory = _factory()

    with pytest.raises(QueryValidationError, match="invalid time-interval provided"):
        factory(make_settings(json_data={"timeInterval": value}))

    client_factory.assert_not_called()


@pytest.mark.parametrize("service", ["", "es", "aps", "execute-api"])
def test_sigv4_service_is_forced(service):
    factory, client_factory = _factory()
    settings = make_settings(
        json_data={"sigV4Auth": True, "sigV4Region": "eu-west-1", "sigV4Service": service},
        decrypted_secure_json_data={"sigV4AccessKey": "AKIA", "sigV4SecretKey": "secret"},
    )

    factory(settings)

    http_options = client_factory.call_args.args[1]
    assert http_options.sigv4 is not None
    assert http_options.sigv4.service == SIGV4_SERVICE_NAMESPACE
    assert http_options.sigv4.region == "eu-west-1"
    assert http_options.sigv4.access_key == "AKIA"


def test_options_without_sigv4_are_left_alone():
    factory, client_factory = _factory()

    factory(make_settings(json_data={"timeout": 12}))

    http_options = client_factory.call_args.args[1]
    assert http_options.sigv4 is None
    assert http_options.timeout == 12.0


def test_undecodable_json_is_wrapped():
    factory, client_factory = _factory()

    with pytest.raises(InstanceSettingsError, match="error reading settings") as excinfo:
        factory(make_settings(json_data=b"{not json"))

    assert isinstance(excinfo.value.__cause__, json.JSONDecodeError)
    client_factory.assert_not_called()


def test_invalid_transport_options_are_wrapped():
    factory, client_factory = _factory()

    with pytest.raises(InstanceSettingsError, match="error getting http options"):
        factory(make_settings(json_data={"timeout": "soon"}))

    client_factory.assert_not_called()


def test_client_factory_failure_is_wrapped_with_cause():
    boom = ValueError("no route")
    factory, _ = _factory(MagicMock(side_effect=boom))

    with pytest.raises(InstanceSettingsError, match="error creating client: no route") as excinfo:
        factory(make_settings())

    assert excinfo.value.__cause__ is boom


def test_factory_builds_real_client_from_settings():
    transport = RecordingTransport(lambda request: None)
    factory = InstanceSettingsFactory(HTTPClientProvider(transport=transport))

    info = factory(
        make_settings(
            json_data={
                "httpMethod": "get",
                "customQueryParameters": "dedup=true&partial_response=false",
                "queryTimeout": "60s",
            }
        )
    )

    assert info.client.method == "GET"
    assert info.client.query_params == {"dedup": "true", "partial_response": "false"}
    assert info.client.query_timeout == "60s"
    assert info.client.base_url == "http://prom.test"


def test_invalid_custom_query_parameters_fail_construction():
    factory = InstanceSettingsFactory(HTTPClientProvider())

    with pytest.raises(InstanceSettingsError, match="error creating client"):
        factory(make_settings(json_data={"customQueryParameters": "novalue"}))


def test_sigv4_without_signer_fails_construction():
    factory = InstanceSettingsFactory(HTTPClientProvider())

    with pytest.raises(InstanceSettingsError, match="no signer"):
        factory(make_settings(json_data={"sigV4Auth": True}))


def test_parse_json_settings_rejects_unknown_http_method():
    with pytest.raises(QueryValidationError, match="invalid http method"):
        parse_json_settings({"httpMethod": "PUT"})


def test_parse_json_settings_defaults():
    parsed = parse_json_settings(b"")

    assert parsed == JSONSettings()
    assert parsed.http_method == "POST"


def test_malformed_url_is_wrapped():
    factory = InstanceSettingsFactory(HTTPClientProvider(transport=RecordingTransport(lambda request: None)))

    with pytest.raises(InstanceSettingsError, match="error creating client") as excinfo:
        factory(make_settings(url="http://[::1"))

    assert isinstance(excinfo.value.__cause__, httpx.InvalidURL)


def test_signer_failure_is_wrapped():
    boom = RuntimeError("no credentials found")

    def signer(config):
        raise boom

    factory = InstanceSettingsFactory(HTTPClientProvider(sigv4_auth_factory=signer))

    with pytest.raises(InstanceSettingsError, match="error creating client: no credentials found") as excinfo:
        factory(make_settings(json_data={"sigV4Auth": True, "sigV4Region": "eu-west-1"}))

    assert excinfo.value.__cause__ is boom
