"""
Prometheus HTTP query API client.

:class:`PrometheusClient` wraps ``/api/v1/query`` and ``/api/v1/query_range``
on top of an :class:`httpx.Client` handed out by the shared transport
provider. Transport failures are retried with tenacity; rejections reported by
the backend surface as :class:`~prometheus_bridge.errors.PrometheusAPIError`
and are never retried. Cancelling the request context abandons the
round-trip in flight and the retry backoff.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from logging import LoggerAdapter
from typing import TYPE_CHECKING, Any, Mapping, MutableMapping, Optional
from urllib.parse import parse_qsl

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .core.context import RequestContext
from .core.logging import get_logger
from .errors import PrometheusAPIError, QueryCancelledError, TransportError
from .httpclient import HTTPClientOptions, HTTPClientProvider

if TYPE_CHECKING:
    from .settings import JSONSettings

DEFAULT_MAX_RETRIES = 3
DEFAULT_MAX_CONCURRENCY = 16
CANCEL_POLL_INTERVAL = 0.05
QUERY_PATH = "/api/v1/query"
QUERY_RANGE_PATH = "/api/v1/query_range"


def _format_time(value: datetime) -> str:
    return f"{value.timestamp():.3f}"


def _format_step(step: timedelta) -> str:
    seconds = step.total_seconds()
    return f"{seconds:g}"


@dataclass(slots=True)
class PrometheusClient:
    """
    Query-capable client bound to one Prometheus endpoint.

    Parameters
    ----------
    base_url:
        Root URL of the Prometheus-compatible API.
    http:
        Configured HTTP client. Shared across concurrent queries.
    method:
        ``GET`` or ``POST`` for query endpoints.
    query_params:
        Extra parameters appended to every query call.
    query_timeout:
        Optional server-side evaluation timeout forwarded as ``timeout``.
    max_retries:
        Attempts for transport-level failures.
    max_concurrency:
        Round-trips in flight at once. Each runs on a worker thread so the
        caller can stop waiting as soon as its context is cancelled.
    """

    base_url: str
    http: httpx.Client = field(repr=False)
    method: str = "POST"
    query_params: Mapping[str, str] = field(default_factory=dict)
    query_timeout: str = ""
    max_retries: int = DEFAULT_MAX_RETRIES
    logger: Optional[LoggerAdapter] = field(default=None, repr=False)
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    _executor: ThreadPoolExecutor = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.logger is None:
            self.logger = get_logger(
                f"{self.__class__.__module__}.{self.__class__.__name__}",
                extra={"url": self.base_url},
            )
        self._executor = ThreadPoolExecutor(max_workers=max(1, self.max_concurrency), thread_name_prefix="prometheus-query")

    def query_range(
        self,
        expr: str,
        start: datetime,
        end: datetime,
        step: timedelta,
        *,
        ctx: Optional[RequestContext] = None,
    ) -> Mapping[str, Any]:
        """Evaluate ``expr`` over ``[start, end]`` and return the ``data`` block."""

        params = {
            "query": expr,
            "start": _format_time(start),
            "end": _format_time(end),
            "step": _format_step(step),
        }
        return self._call(QUERY_RANGE_PATH, params, ctx)

    def query_instant(self, expr: str, time: datetime, *, ctx: Optional[RequestContext] = None) -> Mapping[str, Any]:
        """Evaluate ``expr`` at a single instant and return the ``data`` block."""

        return self._call(QUERY_PATH, {"query": expr, "time": _format_time(time)}, ctx)

    def close(self) -> None:
        """Release the HTTP connection pool and abandon queued round-trips."""

        self._executor.shutdown(wait=False, cancel_futures=True)
        self.http.close()

    def _call(self, path: str, params: Mapping[str, str], ctx: Optional[RequestContext]) -> Mapping[str, Any]:
        merged: MutableMapping[str, str] = dict(self.query_params)
        merged.update(params)
        if self.query_timeout:
            merged["timeout"] = self.query_timeout
        response = self._request(path, merged, ctx or RequestContext.background())
        return self._decode(response)

    def _send(self, path: str, params: Mapping[str, str], timeout: Any) -> httpx.Response:
        if self.method == "GET":
            return self.http.get(path, params=params, timeout=timeout)
        return self.http.post(path, data=params, timeout=timeout)

    def _send_interruptible(self, path: str, params: Mapping[str, str], ctx: RequestContext) -> httpx.Response:
        ctx.check()
        remaining = ctx.remaining()
        timeout = httpx.USE_CLIENT_DEFAULT if remaining is None else max(remaining, 0.001)
        future = self._executor.submit(self._send, path, params, timeout)
        while True:
            try:
                return future.result(timeout=CANCEL_POLL_INTERVAL)
            except FutureTimeoutError:
                if ctx.cancelled or ctx.remaining() == 0:
                    # the worker finishes on its own; its response is discarded
                    future.cancel()
                    ctx.check()

    def _request(self, path: str, params: Mapping[str, str], ctx: RequestContext) -> httpx.Response:
        self.logger.debug("HTTP request", extra={"method": self.method, "url": path})

        retryer = Retrying(
            retry=retry_if_exception_type(httpx.TransportError),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            stop=stop_after_attempt(max(1, self.max_retries)),
            sleep=ctx.wait,
            reraise=True,
        )
        try:
            response = retryer(self._send_interruptible, path, params, ctx)
        except httpx.TimeoutException as exc:
            self._raise_if_done(ctx, exc)
            self.logger.error("HTTP request timed out", extra={"method": self.method, "url": path, "error": str(exc)})
            raise TransportError(f"Timed out calling {self.method} {path}: {exc}") from exc
        except httpx.HTTPError as exc:
            self._raise_if_done(ctx, exc)
            self.logger.error("HTTP request failed", extra={"method": self.method, "url": path, "error": str(exc)})
            raise TransportError(f"HTTP error while calling {self.method} {path}: {exc}") from exc

        self.logger.debug("HTTP response", extra={"status_code": response.status_code, "url": str(response.url)})
        return response

    @staticmethod
    def _raise_if_done(ctx: RequestContext, exc: BaseException) -> None:
        if ctx.cancelled:
            raise QueryCancelledError("context canceled") from exc
        if ctx.remaining() == 0:
            raise QueryCancelledError("context deadline exceeded") from exc

    def _decode(self, response: httpx.Response) -> Mapping[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            payload = None

        if isinstance(payload, dict) and payload.get("status") == "error":
            raise PrometheusAPIError(
                str(payload.get("errorType") or "error"),
                str(payload.get("error") or ""),
                status_code=response.status_code,
            )

        if response.is_error:
            code = "server_error" if response.status_code >= 500 else "client_error"
            raise PrometheusAPIError(code, response.text.strip() or response.reason_phrase, status_code=response.status_code)

        if not isinstance(payload, dict) or payload.get("status") != "success":
            raise TransportError(f"Unexpected payload from {response.url}")

        for warning in payload.get("warnings") or ():
            self.logger.warning("Prometheus warning", extra={"warning": warning})

        data = payload.get("data")
        if not isinstance(data, dict):
            raise TransportError(f"Missing data block in response from {response.url}")
        return data


def parse_custom_query_parameters(raw: str) -> Mapping[str, str]:
    """Parse ``customQueryParameters`` (a URL query string) into a mapping."""

    if not raw:
        return {}
    try:
        pairs = parse_qsl(raw.lstrip("?"), keep_blank_values=True, strict_parsing=True)
    except ValueError as exc:
        raise ValueError(f"invalid custom query parameters {raw!r}") from exc
    return dict(pairs)


def create_client(
    url: str,
    http_options: HTTPClientOptions,
    provider: HTTPClientProvider,
    settings: "JSONSettings",
    logger: Optional[LoggerAdapter] = None,
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> PrometheusClient:
    """
    Assemble a :class:`PrometheusClient` for one data source.

    Any failure from the transport provider or parameter parsing propagates to
    the caller with its cause attached.
    """

    query_params = parse_custom_query_parameters(settings.custom_query_parameters)
    http = provider.new_client(http_options, base_url=url)
    return PrometheusClient(
        base_url=url,
        http=http,
        method=settings.http_method,
        query_params=query_params,
        query_timeout=settings.query_timeout,
        max_retries=max_retries,
        logger=logger,
    )
