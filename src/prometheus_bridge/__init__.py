"""
Prometheus query bridge.

Resolves per data source client state from host settings, dispatches query
batches to a Prometheus-compatible query API and classifies remote query
errors. Use :func:`provide_service` to assemble and register the handler, or
build :class:`Service` directly around an :class:`InstanceManager`.
"""

from .core.context import DataSourceInstanceSettings, PluginContext, RequestContext
from .errors import (
    BridgeError,
    InstanceSettingsError,
    PrometheusAPIError,
    QueryCancelledError,
    QueryValidationError,
    RemoteQueryError,
    TransportError,
    convert_api_error,
    is_api_error,
)
from .httpclient import HTTPClientOptions, HTTPClientProvider, SigV4Config
from .instances import InstanceManager
from .models import DataFrame, DataResponse, Query, QueryDataRequest, QueryDataResponse, TimeRange
from .plugin import PluginRegistry, provide_service
from .service import PLUGIN_ID, Service
from .settings import DatasourceInfo, InstanceSettingsFactory

__all__ = [
    "BridgeError",
    "DataFrame",
    "DataResponse",
    "DataSourceInstanceSettings",
    "DatasourceInfo",
    "HTTPClientOptions",
    "HTTPClientProvider",
    "InstanceManager",
    "InstanceSettingsError",
    "InstanceSettingsFactory",
    "PLUGIN_ID",
    "PluginContext",
    "PluginRegistry",
    "PrometheusAPIError",
    "Query",
    "QueryCancelledError",
    "QueryDataRequest",
    "QueryDataResponse",
    "QueryValidationError",
    "RemoteQueryError",
    "RequestContext",
    "Service",
    "SigV4Config",
    "TimeRange",
    "TransportError",
    "convert_api_error",
    "is_api_error",
    "provide_service",
]
