"""
Typer application for running the bridge without a host.

The CLI loads data source settings from a YAML catalog, assembles the
Prometheus service exactly as a host would and executes ad-hoc queries
against it. It is primarily a smoke-testing and debugging aid.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from importlib import resources
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from ..config import BridgeConfig, load_config
from ..core.catalog import DataSourceCatalog
from ..core.context import DataSourceInstanceSettings, RequestContext
from ..core.logging import configure_logging
from ..errors import BridgeError, CatalogLoadError, is_api_error
from ..httpclient import HTTPClientProvider
from ..intervals import parse_duration
from ..models import Query, QueryDataRequest, TimeRange
from ..plugin import PluginRegistry, provide_service
from ..service import TIME_SERIES_QUERY

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Prometheus query bridge CLI.\n\n"
        "Command groups:\n"
        "- datasources: inspect catalogued data source settings.\n"
        "- query: run a PromQL expression through the bridge."
    ),
)
datasources_app = typer.Typer(help="Inspect data sources defined in the catalog.")
app.add_typer(datasources_app, name="datasources")


def _load_catalog(catalog_file: Optional[Path], config: BridgeConfig) -> DataSourceCatalog:
    if catalog_file:
        return DataSourceCatalog.from_yaml(catalog_file, config=config)
    datasources_pkg = "prometheus_bridge.resources.datasources"
    with resources.as_file(resources.files(datasources_pkg) / "example.yaml") as resolved:
        return DataSourceCatalog.from_yaml(resolved, config=config)


def _build_provider() -> HTTPClientProvider:
    return HTTPClientProvider()


def _describe(settings: DataSourceInstanceSettings) -> Dict[str, Any]:
    raw = settings.json_data
    json_data = json.loads(raw) if raw else {}
    return {
        "id": settings.id,
        "uid": settings.uid,
        "name": settings.name,
        "url": settings.url,
        "basic_auth": settings.basic_auth_enabled,
        "basic_auth_user": settings.basic_auth_user or None,
        "updated": settings.updated.isoformat(),
        "json_data": json_data,
        "secure_fields": sorted(settings.decrypted_secure_json_data),
    }


def _parse_time(value: str, now: datetime) -> datetime:
    """Accept ``now``, ``now-1h``, unix seconds or ISO 8601 timestamps."""

    text = value.strip()
    if text == "now":
        return now
    if text.startswith("now-"):
        try:
            return now - parse_duration(text[4:])
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc
    try:
        return datetime.fromtimestamp(float(text), UTC)
    except (ValueError, OverflowError, OSError):
        pass
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise typer.BadParameter(f"Unrecognised time '{value}'.") from exc
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


@app.callback(invoke_without_command=False)
def main(
    ctx: typer.Context,
    catalog_file: Optional[Path] = typer.Option(
        None,
        "--catalog",
        "-c",
        help="Data source catalog YAML file. Defaults to the bundled example.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        help="Bridge configuration TOML file holding secrets and runtime knobs.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level, e.g. DEBUG or WARNING."),
) -> None:
    """
    Load configuration and the data source catalog.

    Both are stored in Typer's state so child commands can retrieve them via
    :class:`typer.Context`.
    """

    configure_logging(log_level, force=log_level is not None)
    config = load_config(config_file)
    try:
        catalog = _load_catalog(catalog_file, config)
    except CatalogLoadError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc

    state = ctx.ensure_object(dict)
    state["config"] = config
    state["catalog"] = catalog


def _require_catalog(ctx: typer.Context) -> DataSourceCatalog:
    state = ctx.ensure_object(dict)
    catalog = state.get("catalog")
    if not isinstance(catalog, DataSourceCatalog):
        raise typer.Exit(code=2)
    return catalog


def _require_config(ctx: typer.Context) -> BridgeConfig:
    state = ctx.ensure_object(dict)
    config = state.get("config")
    if not isinstance(config, BridgeConfig):
        raise typer.Exit(code=2)
    return config


@datasources_app.command("list")
def datasources_list(ctx: typer.Context) -> None:
    """List catalogued data sources."""

    catalog = _require_catalog(ctx)
    entries = catalog.list()
    if not entries:
        typer.echo("No data sources are defined in the catalog.")
        raise typer.Exit(code=0)

    header = f"{'ID':<6} {'UID':<20} {'Name':<24} URL"
    typer.echo(header)
    typer.echo("-" * len(header))
    for entry in entries:
        typer.echo(f"{entry.id:<6} {entry.uid:<20} {entry.name:<24} {entry.url}")


@datasources_app.command("describe")
def datasources_describe(
    ctx: typer.Context,
    uid: str = typer.Argument(..., help="UID of the data source."),
) -> None:
    """Show the settings of one data source. Secret values are never printed."""

    catalog = _require_catalog(ctx)
    settings = catalog.get(uid)
    if settings is None:
        typer.echo(f"Data source '{uid}' is not in the catalog.", err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(_describe(settings), ensure_ascii=False, indent=2))


@app.command("query")
def query(
    ctx: typer.Context,
    uid: str = typer.Argument(..., help="UID of the data source to query."),
    expr: str = typer.Argument(..., help="PromQL expression."),
    start: str = typer.Option("now-1h", "--start", help="Range start (now, now-1h, unix seconds or ISO 8601)."),
    end: str = typer.Option("now", "--end", help="Range end."),
    legend: str = typer.Option("", "--legend", help="Legend format such as '{{instance}}'."),
    interval: str = typer.Option("", "--interval", help="Minimum step, e.g. 30s."),
    instant: bool = typer.Option(False, "--instant", help="Run an instant query at --end instead of a range query."),
    max_points: int = typer.Option(1500, "--max-points", min=1, help="Target number of points per series."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Request deadline in seconds."),
) -> None:
    """Run ``expr`` against a catalogued data source and print the frames as JSON."""

    catalog = _require_catalog(ctx)
    config = _require_config(ctx)
    if catalog.get(uid) is None:
        typer.echo(f"Data source '{uid}' is not in the catalog.", err=True)
        raise typer.Exit(code=1)

    now = datetime.now(UTC)
    time_range = TimeRange(start=_parse_time(start, now), end=_parse_time(end, now))
    if time_range.end < time_range.start:
        raise typer.BadParameter("--end must not be earlier than --start.")

    model: Dict[str, Any] = {"expr": expr, "legendFormat": legend, "instant": instant, "range": not instant}
    if interval:
        model["interval"] = interval
    request = QueryDataRequest(
        plugin_context=catalog.plugin_context(uid),
        queries=(
            Query(
                ref_id="A",
                time_range=time_range,
                model_json=model,
                query_type=TIME_SERIES_QUERY,
                interval=timedelta(seconds=1),
                max_data_points=max_points,
            ),
        ),
    )

    service = provide_service(_build_provider(), PluginRegistry(), max_retries=config.bridge.max_retries)
    request_ctx = RequestContext.with_timeout(timeout or config.bridge.request_timeout)
    try:
        response = service.query_data(request, request_ctx)
    except BridgeError as exc:
        typer.echo(f"Query failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    finally:
        service.close()

    typer.echo(json.dumps(response.to_dict(), ensure_ascii=False, indent=2))
    failed = [(ref_id, item.error) for ref_id, item in response.responses.items() if item.error is not None]
    for ref_id, error in failed:
        label = "Query rejected" if is_api_error(error) else "Query failed"
        typer.echo(f"{label} ({ref_id}): {error}", err=True)
    if failed:
        raise typer.Exit(code=1)


if __name__ == "__main__":  # pragma: no cover
    app()
