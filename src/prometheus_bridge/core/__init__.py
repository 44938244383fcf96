"""
Core infrastructure shared by the bridge components.

Exposes per-call context primitives and the logging helpers. The file-backed
catalog lives in :mod:`prometheus_bridge.core.catalog` and is imported
explicitly by callers that need it.
"""

from .context import DataSourceInstanceSettings, PluginContext, RequestContext
from .logging import StructuredLogFormatter, bind_extra, configure_logging, get_logger, log_progress

__all__ = [
    "DataSourceInstanceSettings",
    "PluginContext",
    "RequestContext",
    "StructuredLogFormatter",
    "bind_extra",
    "configure_logging",
    "get_logger",
    "log_progress",
]
