"""
Request entry point for the Prometheus data source.

:class:`Service` validates a batch, resolves the data source instance through
the instance manager and hands the batch to the handler registered for the
first query's type. Unknown or empty query types use the time-series handler.
"""

from __future__ import annotations

import logging
from logging import LoggerAdapter
from typing import Callable, Dict, Optional

from .core.context import PluginContext, RequestContext
from .core.logging import get_logger, log_progress
from .errors import QueryValidationError
from .instances import InstanceManager
from .models import QueryDataRequest, QueryDataResponse
from .settings import DatasourceInfo
from .timeseries import TimeSeriesQueryHandler

PLUGIN_ID = "prometheus"
TIME_SERIES_QUERY = "timeSeriesQuery"

QueryHandler = Callable[[RequestContext, QueryDataRequest, DatasourceInfo], QueryDataResponse]


class Service:
    """Query data handler for Prometheus data sources."""

    def __init__(
        self,
        instance_manager: InstanceManager[DatasourceInfo],
        *,
        time_series_handler: Optional[QueryHandler] = None,
        logger: Optional[LoggerAdapter] = None,
    ) -> None:
        self.instance_manager = instance_manager
        self.logger = logger or get_logger(__name__)
        default = time_series_handler or TimeSeriesQueryHandler(logger=self.logger)
        self._default_handler: QueryHandler = default
        self._handlers: Dict[str, QueryHandler] = {TIME_SERIES_QUERY: default}

    def query_data(self, request: QueryDataRequest, ctx: Optional[RequestContext] = None) -> QueryDataResponse:
        """
        Execute a query batch.

        Raises :class:`QueryValidationError` for an empty batch before any
        instance is resolved. Instance resolution errors propagate unchanged.
        """

        if not request.queries:
            raise QueryValidationError("query contains no queries")

        ctx = ctx or RequestContext.background()
        query_type = request.queries[0].query_type
        if any(query.query_type != query_type for query in request.queries[1:]):
            self.logger.debug("Batch mixes query types; dispatching on the first", extra={"query_type": query_type})

        ctx.check()
        ds_info = self.get_datasource_info(request.plugin_context)
        handler = self._handlers.get(query_type, self._default_handler)
        log_progress(
            self.logger,
            "Dispatching query batch",
            phase="dispatch",
            level=logging.DEBUG,
            extra={"datasource_id": ds_info.id, "query_type": query_type or TIME_SERIES_QUERY, "queries": len(request.queries)},
        )
        return handler(ctx, request, ds_info)

    def get_datasource_info(self, plugin_context: PluginContext) -> DatasourceInfo:
        return self.instance_manager.get(plugin_context)

    def close(self) -> None:
        """Release the HTTP clients of every resolved data source."""

        for ds_info in self.instance_manager.drain():
            ds_info.client.close()
