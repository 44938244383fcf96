from __future__ import annotations

import httpx
import pytest

from prometheus_bridge.errors import (
    InstanceSettingsError,
    PrometheusAPIError,
    QueryCancelledError,
    RemoteQueryError,
    TransportError,
    convert_api_error,
    find_api_error,
    is_api_error,
)


def _wrapped_api_error() -> TransportError:
    try:
        try:
            raise PrometheusAPIError("bad_data", "invalid expression", status_code=400)
        except PrometheusAPIError as exc:
            raise TransportError("query failed") from exc
    except TransportError as outer:
        return outer


def test_wrapped_api_error_is_classified():
    err = _wrapped_api_error()

    assert is_api_error(err) is True
    converted = convert_api_error(err)
    assert isinstance(converted, RemoteQueryError)
    assert str(converted) == "bad_data: invalid expression"
    assert converted.__cause__ is err


def test_direct_api_error_is_classified():
    err = PrometheusAPIError("timeout", "query timed out in expression evaluation")

    assert is_api_error(err)
    assert str(convert_api_error(err)) == "timeout: query timed out in expression evaluation"
    assert find_api_error(err) is err


def test_api_error_found_through_implicit_context():
    try:
        try:
            raise PrometheusAPIError("bad_data", "parse error")
        except PrometheusAPIError:
            raise RuntimeError("while handling")
    except RuntimeError as exc:
        err = exc

    assert is_api_error(err)


@pytest.mark.parametrize(
    "err",
    [
        httpx.ReadTimeout("timed out"),
        TimeoutError("network timeout"),
        TransportError("connection refused"),
        QueryCancelledError("context canceled"),
        InstanceSettingsError("error reading settings: boom"),
    ],
)
def test_other_errors_pass_through_unchanged(err):
    assert is_api_error(err) is False
    assert convert_api_error(err) is err


def test_is_api_error_accepts_none():
    assert is_api_error(None) is False


def test_cyclic_chain_terminates():
    first = TransportError("first")
    second = TransportError("second")
    first.__cause__ = second
    second.__cause__ = first

    assert is_api_error(first) is False


def test_api_error_message_without_detail():
    err = PrometheusAPIError("server_error")

    assert str(err) == "server_error"
    assert err.detail == ""
