"""
Settings resolution for Prometheus data source instances.

Host settings arrive as opaque JSON plus transport options. The resolver
decodes every recognised key into :class:`JSONSettings`, normalises the
transport options for the Prometheus backend family and hands the result to
the client factory. The output is an immutable :class:`DatasourceInfo`.
"""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass, field
from logging import LoggerAdapter
from typing import Any, Callable, Mapping, Optional

from .client import DEFAULT_MAX_RETRIES, PrometheusClient, create_client
from .core.context import DataSourceInstanceSettings
from .core.logging import get_logger
from .errors import InstanceSettingsError, QueryValidationError
from .httpclient import HTTPClientOptions, HTTPClientProvider

# Amazon Managed Service for Prometheus signing namespace.
SIGV4_SERVICE_NAMESPACE = "aps"
_HTTP_METHODS = ("GET", "POST")


@dataclass(frozen=True, slots=True)
class JSONSettings:
    """Typed view of the custom fields recognised for a Prometheus data source."""

    time_interval: str = ""
    http_method: str = "POST"
    custom_query_parameters: str = ""
    query_timeout: str = ""
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False)


@dataclass(frozen=True, slots=True)
class DatasourceInfo:
    """Resolved, immutable instance for one data source."""

    id: int
    url: str
    time_interval: str
    client: PrometheusClient = field(repr=False, compare=False)


def _optional_string(data: Mapping[str, Any], key: str, error: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise QueryValidationError(error)
    return value


def parse_json_settings(raw: bytes | str | Mapping[str, Any]) -> JSONSettings:
    """
    Decode and validate the custom JSON fields.

    ``timeInterval`` may be missing (empty string) but must be a string when
    present. ``httpMethod`` defaults to ``POST``. Undecodable JSON raises
    ``ValueError``; type mismatches raise :class:`QueryValidationError`.
    """

    if isinstance(raw, Mapping):
        data: Mapping[str, Any] = raw
    else:
        decoded = json.loads(raw or "{}")
        if decoded is None:
            decoded = {}
        if not isinstance(decoded, dict):
            raise ValueError("settings JSON must be an object")
        data = decoded

    time_interval = _optional_string(data, "timeInterval", "invalid time-interval provided")
    http_method = (_optional_string(data, "httpMethod", "invalid http method provided") or "POST").upper()
    if http_method not in _HTTP_METHODS:
        raise QueryValidationError(f"invalid http method provided: {http_method}")

    return JSONSettings(
        time_interval=time_interval,
        http_method=http_method,
        custom_query_parameters=_optional_string(data, "customQueryParameters", "invalid custom query parameters provided"),
        query_timeout=_optional_string(data, "queryTimeout", "invalid query timeout provided"),
        raw=dict(data),
    )


def apply_sigv4_service(options: HTTPClientOptions) -> HTTPClientOptions:
    """Force the SigV4 signing namespace when a SigV4 block is present."""

    if options.sigv4 is None:
        return options
    return dataclasses.replace(options, sigv4=dataclasses.replace(options.sigv4, service=SIGV4_SERVICE_NAMESPACE))


ClientFactory = Callable[..., PrometheusClient]


class InstanceSettingsFactory:
    """
    Build :class:`DatasourceInfo` objects from host settings.

    The instance manager calls this once per data source and settings
    version. Parsing failures and client factory failures are raised with
    context, never swallowed.
    """

    def __init__(
        self,
        provider: HTTPClientProvider,
        *,
        client_factory: ClientFactory = create_client,
        max_retries: int = DEFAULT_MAX_RETRIES,
        logger: Optional[LoggerAdapter] = None,
    ) -> None:
        self.provider = provider
        self.client_factory = client_factory
        self.max_retries = max_retries
        self.logger = logger or get_logger(__name__)

    def __call__(self, settings: DataSourceInstanceSettings) -> DatasourceInfo:
        try:
            json_settings = parse_json_settings(settings.json_data)
        except ValueError as exc:
            raise InstanceSettingsError(f"error reading settings: {exc}") from exc

        try:
            http_options = settings.http_client_options()
        except ValueError as exc:
            raise InstanceSettingsError(f"error getting http options: {exc}") from exc

        http_options = apply_sigv4_service(http_options)

        try:
            client = self.client_factory(
                settings.url,
                http_options,
                self.provider,
                json_settings,
                self.logger,
                max_retries=self.max_retries,
            )
        except Exception as exc:
            raise InstanceSettingsError(f"error creating client: {exc}") from exc

        self.logger.debug(
            "Data source instance created",
            extra={"datasource_id": settings.id, "url": settings.url, "method": json_settings.http_method},
        )
        return DatasourceInfo(
            id=settings.id,
            url=settings.url,
            time_interval=json_settings.time_interval,
            client=client,
        )
