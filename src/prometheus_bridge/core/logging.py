"""
Logging helpers for the Prometheus query bridge.

Records carry their context (data source id, ref id, phase...) as ``extra``
attributes, and :class:`StructuredLogFormatter` renders them as a
``key=value`` tail after the message. Components receive a
:class:`StructuredLoggerAdapter` when the service is assembled; per-query
context is layered on with :func:`bind_extra`.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from logging import Logger, LoggerAdapter
from typing import Any, Iterator, Mapping, MutableMapping, Optional

DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_LEVEL = "INFO"
LEVEL_ENV = "PROMBRIDGE_LOG_LEVEL"

# Keys rendered first, in this order; anything else follows alphabetically.
LEADING_KEYS = ("datasource_id", "ref_id", "query_type", "phase", "status", "result")

_STANDARD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


def _resolve_level(level: Optional[int | str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName((level or os.getenv(LEVEL_ENV) or DEFAULT_LEVEL).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def record_context(record: logging.LogRecord) -> Iterator[tuple[str, Any]]:
    """Yield the ``extra`` attributes attached to ``record``."""

    context = {
        key: value
        for key, value in vars(record).items()
        if key not in _STANDARD_ATTRS and not key.startswith("_") and value is not None
    }
    for key in LEADING_KEYS:
        if key in context:
            yield key, context.pop(key)
    yield from sorted(context.items())


def _render(value: Any) -> str:
    if isinstance(value, Mapping):
        return json.dumps(value, default=str, sort_keys=True)
    if isinstance(value, (list, tuple, set, frozenset)):
        return "[" + ", ".join(_render(item) for item in value) + "]"
    if isinstance(value, float):
        return f"{value:.4g}"
    return str(value)


class StructuredLogFormatter(logging.Formatter):
    """Standard line format followed by ``| key=value ...`` for the record context."""

    def __init__(self) -> None:
        super().__init__(DEFAULT_FORMAT, datefmt=DEFAULT_DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        tail = " ".join(f"{key}={_render(value)}" for key, value in record_context(record))
        return f"{line} | {tail}" if tail else line


class StructuredLoggerAdapter(LoggerAdapter):
    """Adapter whose bound context is merged under the call-site ``extra``."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **(kwargs.get("extra") or {})}
        return msg, kwargs


def _is_configured(root: Logger) -> bool:
    return any(isinstance(handler.formatter, StructuredLogFormatter) for handler in root.handlers)


def configure_logging(level: Optional[int | str] = None, *, force: bool = False) -> None:
    """
    Install a stderr handler with :class:`StructuredLogFormatter` on the root logger.

    Parameters
    ----------
    level:
        Level override. Defaults to ``PROMBRIDGE_LOG_LEVEL``, then ``INFO``.
    force:
        Replace the existing root handlers even when the bridge already installed one.
    """

    if not force and _is_configured(logging.getLogger()):
        return
    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(StructuredLogFormatter())
    logging.basicConfig(level=_resolve_level(level), handlers=[handler], force=force)


def get_logger(name: str, *, level: Optional[int | str] = None, extra: Optional[Mapping[str, object]] = None) -> LoggerAdapter:
    """Return an adapter for ``name`` that stamps ``extra`` on every record."""

    configure_logging(level)
    base = logging.getLogger(name)
    if level is not None:
        base.setLevel(_resolve_level(level))
    return StructuredLoggerAdapter(base, {key: value for key, value in (extra or {}).items() if value is not None})


def bind_extra(logger: LoggerAdapter, **extra: object) -> LoggerAdapter:
    """Derive an adapter that adds ``extra`` to the context already bound on ``logger``."""

    context = dict(logger.extra or {})
    context.update({key: value for key, value in extra.items() if value is not None})
    return StructuredLoggerAdapter(logger.logger, context)


def log_progress(
    logger: LoggerAdapter | Logger,
    message: str,
    *,
    phase: Optional[str] = None,
    status: Optional[str] = None,
    result: Optional[str] = None,
    level: int = logging.INFO,
    extra: Optional[Mapping[str, object]] = None,
) -> None:
    """Log a step of a request (resolve, dispatch, remote call) with its phase and outcome."""

    payload = dict(extra or {})
    payload.update({key: value for key, value in (("phase", phase), ("status", status), ("result", result)) if value})
    logger.log(level, message, extra=payload or None)
