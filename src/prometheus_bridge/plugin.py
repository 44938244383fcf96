"""
Plugin registry and service assembly.

The host looks request handlers up by plugin id. :func:`provide_service`
wires the settings factory, instance manager and :class:`Service` together and
registers the result under :data:`~prometheus_bridge.service.PLUGIN_ID`.
"""

from __future__ import annotations

from logging import LoggerAdapter
from typing import List, MutableMapping, Optional, Protocol

from .client import DEFAULT_MAX_RETRIES
from .core.context import RequestContext
from .core.logging import get_logger
from .errors import PluginRegistrationError
from .httpclient import HTTPClientProvider
from .instances import InstanceManager
from .models import QueryDataRequest, QueryDataResponse
from .service import PLUGIN_ID, Service
from .settings import DatasourceInfo, InstanceSettingsFactory


class QueryDataHandler(Protocol):
    def query_data(self, request: QueryDataRequest, ctx: Optional[RequestContext] = None) -> QueryDataResponse:
        """Execute a query batch."""


class PluginRegistry:
    """In-memory map of plugin id to query handler."""

    def __init__(self) -> None:
        self._handlers: MutableMapping[str, QueryDataHandler] = {}

    def register(self, plugin_id: str, handler: QueryDataHandler) -> None:
        """Register a handler; a plugin id can only be registered once."""

        if not plugin_id:
            raise PluginRegistrationError("plugin id must not be empty")
        if plugin_id in self._handlers:
            raise PluginRegistrationError(f"plugin '{plugin_id}' is already registered")
        self._handlers[plugin_id] = handler

    def unregister(self, plugin_id: str) -> None:
        self._handlers.pop(plugin_id, None)

    def get(self, plugin_id: str) -> Optional[QueryDataHandler]:
        return self._handlers.get(plugin_id)

    def require(self, plugin_id: str) -> QueryDataHandler:
        handler = self.get(plugin_id)
        if handler is None:
            raise KeyError(f"Plugin '{plugin_id}' is not registered.")
        return handler

    def list(self) -> List[str]:
        return sorted(self._handlers)


def provide_service(
    provider: HTTPClientProvider,
    registry: PluginRegistry,
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    logger: Optional[LoggerAdapter] = None,
) -> Service:
    """Build the Prometheus :class:`Service` and register it with ``registry``."""

    log = logger or get_logger("prometheus_bridge", extra={"plugin": PLUGIN_ID})
    log.debug("Initializing")
    factory = InstanceSettingsFactory(provider, max_retries=max_retries, logger=log)
    instance_manager: InstanceManager[DatasourceInfo] = InstanceManager(factory, logger=log)
    service = Service(instance_manager, logger=log)
    try:
        registry.register(PLUGIN_ID, service)
    except PluginRegistrationError as exc:
        log.error("Failed to register plugin", extra={"error": str(exc)})
        raise
    return service
