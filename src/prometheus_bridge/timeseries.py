"""
Time-series query handling.

Each query in a batch is parsed into a :class:`PrometheusQuery`, its step is
picked from the time range and interval hints, template variables are
interpolated, and the range and/or instant endpoints are called. Results are
shaped into one :class:`~prometheus_bridge.models.DataFrame` per series.

Failures are scoped to the query that produced them: validation and remote
errors land on that query's ``DataResponse.error`` (remote rejections after
:func:`~prometheus_bridge.errors.convert_api_error`). Cancellation aborts the
whole batch.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from logging import LoggerAdapter
from typing import Any, List, Mapping, Optional, Sequence

from .core.context import RequestContext
from .core.logging import bind_extra, get_logger
from .errors import (
    BridgeError,
    QueryCancelledError,
    QueryValidationError,
    TransportError,
    convert_api_error,
    is_api_error,
)
from .intervals import SAFE_RESOLUTION, IntervalCalculator, format_duration, parse_duration
from .models import DataFrame, DataResponse, Query, QueryDataRequest, QueryDataResponse, TimeRange
from .settings import DatasourceInfo

LEGEND_FORMAT = re.compile(r"\{\{\s*(.+?)\s*\}\}")
DEFAULT_SCRAPE_INTERVAL = timedelta(seconds=15)


@dataclass(frozen=True, slots=True)
class PrometheusQuery:
    ref_id: str
    expr: str
    step: timedelta
    start: datetime
    end: datetime
    legend_format: str = ""
    range_query: bool = True
    instant_query: bool = False


def interpolate_variables(expr: str, interval: timedelta, time_range: TimeRange, scrape_interval: timedelta) -> str:
    """Substitute the ``$__interval``, ``$__range`` and ``$__rate_interval`` variables."""

    range_seconds = int(time_range.duration.total_seconds())
    rate_interval = max(interval + scrape_interval, 4 * scrape_interval)
    replacements = (
        ("$__interval_ms", str(int(interval / timedelta(milliseconds=1)))),
        ("$__interval", format_duration(interval)),
        ("$__range_ms", str(range_seconds * 1000)),
        ("$__range_s", str(range_seconds)),
        ("$__range", f"{range_seconds}s"),
        ("$__rate_interval", format_duration(rate_interval)),
    )
    for variable, value in replacements:
        expr = expr.replace(variable, value)
    return expr


_EPOCH = datetime.fromtimestamp(0, UTC)


def align_time(value: datetime, step: timedelta, utc_offset: timedelta = timedelta()) -> datetime:
    """Snap ``value`` down to a multiple of ``step`` in the caller's timezone."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    elapsed = value - _EPOCH + utc_offset
    return _EPOCH + (elapsed // step) * step - utc_offset


def _positive_int(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise QueryValidationError(f"invalid interval factor {value!r}") from exc
    return number if number > 0 else default


def parse_query(query: Query, ds_info: DatasourceInfo, calculator: IntervalCalculator) -> PrometheusQuery:
    """Turn a host query into a :class:`PrometheusQuery`, raising :class:`QueryValidationError` on bad input."""

    try:
        model = query.model()
    except ValueError as exc:
        raise QueryValidationError(f"error reading query: {exc}") from exc

    expr = model.get("expr")
    if not isinstance(expr, str) or not expr.strip():
        raise QueryValidationError("query expression is missing")

    interval_hint = model.get("interval") or ds_info.time_interval
    try:
        min_interval = parse_duration(str(interval_hint)) if interval_hint else DEFAULT_SCRAPE_INTERVAL
        scrape_interval = parse_duration(ds_info.time_interval) if ds_info.time_interval else DEFAULT_SCRAPE_INTERVAL
    except (TypeError, ValueError) as exc:
        raise QueryValidationError(f"invalid interval: {exc}") from exc

    time_range = query.time_range
    calculated = calculator.calculate(time_range, min_interval, query.max_data_points)
    safe = calculator.calculate_safe_interval(time_range, SAFE_RESOLUTION)
    step = max(calculated.value, safe.value) * _positive_int(model.get("intervalFactor"), 1)

    try:
        utc_offset = timedelta(seconds=int(model.get("utcOffsetSec") or 0))
    except (TypeError, ValueError) as exc:
        raise QueryValidationError(f"invalid utcOffsetSec {model.get('utcOffsetSec')!r}") from exc

    range_query = bool(model.get("range"))
    instant_query = bool(model.get("instant"))
    if not range_query and not instant_query:
        range_query = True

    return PrometheusQuery(
        ref_id=query.ref_id,
        expr=interpolate_variables(expr, step, time_range, scrape_interval),
        step=step,
        start=align_time(time_range.start, step, utc_offset),
        end=align_time(time_range.end, step, utc_offset),
        legend_format=str(model.get("legendFormat") or ""),
        range_query=range_query,
        instant_query=instant_query,
    )


def format_legend(legend_format: str, labels: Mapping[str, str], expr: str) -> str:
    """Render a series name from ``legend_format`` or, when empty, from its labels."""

    if legend_format:
        return LEGEND_FORMAT.sub(lambda match: labels.get(match.group(1), ""), legend_format)

    name = labels.get("__name__", "")
    pairs = [f'{key}="{value}"' for key, value in sorted(labels.items()) if key != "__name__"]
    if not name and not pairs:
        return expr
    return f"{name}{{{', '.join(pairs)}}}"


def _parse_sample(sample: Sequence[Any]) -> tuple[datetime, Optional[float]]:
    try:
        timestamp = datetime.fromtimestamp(float(sample[0]), UTC)
    except (TypeError, ValueError, IndexError, KeyError, OverflowError, OSError) as exc:
        raise TransportError(f"malformed sample in response: {sample!r}") from exc
    try:
        value: Optional[float] = float(sample[1])
    except (TypeError, ValueError, IndexError):
        value = None
    return timestamp, value


def frames_from_data(data: Mapping[str, Any], query: PrometheusQuery, *, instant: bool = False) -> List[DataFrame]:
    """Shape a Prometheus ``data`` block (matrix, vector or scalar) into frames."""

    result_type = data.get("resultType")
    result = data.get("result") or []
    meta = {
        "executedQueryString": f"Expr: {query.expr}\nStep: {format_duration(query.step)}",
        "resultType": result_type,
        "instant": instant,
    }

    if result_type == "scalar":
        timestamp, value = _parse_sample(result)
        return [DataFrame(name=query.expr, ref_id=query.ref_id, timestamps=[timestamp], values=[value], meta=dict(meta))]

    frames: List[DataFrame] = []
    for series in result:
        if not isinstance(series, Mapping):
            raise TransportError(f"malformed series in response: {series!r}")
        metric = series.get("metric") or {}
        if not isinstance(metric, Mapping):
            raise TransportError(f"malformed metric labels in response: {metric!r}")
        labels = {str(key): str(value) for key, value in metric.items()}
        samples = series.get("values") if result_type == "matrix" else [series.get("value")]
        frame = DataFrame(
            name=format_legend(query.legend_format, labels, query.expr),
            ref_id=query.ref_id,
            labels=labels,
            meta=dict(meta),
        )
        for sample in samples or ():
            if not sample:
                continue
            timestamp, value = _parse_sample(sample)
            frame.timestamps.append(timestamp)
            frame.values.append(value)
        frames.append(frame)
    return frames


class TimeSeriesQueryHandler:
    """Executes every query of a batch against a resolved data source instance."""

    def __init__(self, calculator: Optional[IntervalCalculator] = None, *, logger: Optional[LoggerAdapter] = None) -> None:
        self.calculator = calculator or IntervalCalculator()
        self.logger = logger or get_logger(__name__)

    def __call__(self, ctx: RequestContext, request: QueryDataRequest, ds_info: DatasourceInfo) -> QueryDataResponse:
        response = QueryDataResponse()
        for query in request.queries:
            ctx.check()
            log = bind_extra(self.logger, datasource_id=ds_info.id, ref_id=query.ref_id)
            try:
                prom_query = parse_query(query, ds_info, self.calculator)
            except QueryValidationError as exc:
                log.warning("Rejected query", extra={"error": str(exc)})
                response.responses[query.ref_id] = DataResponse(error=exc)
                continue

            try:
                frames = self._run(ctx, ds_info, prom_query)
            except QueryCancelledError:
                raise
            except BridgeError as exc:
                log.warning(
                    "Query failed",
                    extra={"error": str(exc), "status": "rejected" if is_api_error(exc) else "failed"},
                )
                response.responses[query.ref_id] = DataResponse(error=convert_api_error(exc))
                continue

            log.debug("Query succeeded", extra={"result": f"{len(frames)} frames"})
            response.responses[query.ref_id] = DataResponse(frames=frames)
        return response

    @staticmethod
    def _run(ctx: RequestContext, ds_info: DatasourceInfo, query: PrometheusQuery) -> List[DataFrame]:
        frames: List[DataFrame] = []
        client = ds_info.client
        if query.range_query:
            data = client.query_range(query.expr, query.start, query.end, query.step, ctx=ctx)
            frames.extend(frames_from_data(data, query))
        if query.instant_query:
            data = client.query_instant(query.expr, query.end, ctx=ctx)
            frames.extend(frames_from_data(data, query, instant=True))
        return frames
