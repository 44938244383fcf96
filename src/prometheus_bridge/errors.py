"""
Error taxonomy and remote query error classification.

Failures fall into four groups:

* :class:`QueryValidationError` for malformed input detected before any I/O.
* :class:`InstanceSettingsError` for failures while building per data source
  state. These are never cached by the instance manager.
* :class:`PrometheusAPIError` for structured rejections reported by the
  remote query API.
* :class:`TransportError` and :class:`QueryCancelledError` for network and
  deadline failures.

Wrapping always uses ``raise ... from exc`` so callers can inspect the cause
chain. :func:`is_api_error` and :func:`convert_api_error` rely on that chain to
tell "the backend rejected the query" apart from everything else.
"""

from __future__ import annotations

from typing import Iterator, Optional


class BridgeError(RuntimeError):
    """Base class for all errors raised by the bridge."""


class QueryValidationError(BridgeError):
    """Raised when a request or its settings fail validation before any I/O."""


class InstanceSettingsError(BridgeError):
    """Raised when per data source state cannot be constructed."""


class TransportError(BridgeError):
    """Raised when the HTTP round-trip to the backend fails."""


class QueryCancelledError(TransportError):
    """Raised when the caller cancelled the request or its deadline expired."""


class CatalogLoadError(BridgeError):
    """Raised when a data source catalog file cannot be parsed or validated."""


class PluginRegistrationError(BridgeError):
    """Raised when a handler cannot be registered with the plugin registry."""


class PrometheusAPIError(BridgeError):
    """
    Structured error reported by the remote query API.

    Parameters
    ----------
    message:
        Short machine code such as ``bad_data`` or ``timeout``.
    detail:
        Longer human readable explanation supplied by the backend.
    status_code:
        HTTP status of the response that carried the error, when known.
    """

    def __init__(self, message: str, detail: str = "", *, status_code: Optional[int] = None) -> None:
        super().__init__(f"{message}: {detail}" if detail else message)
        self.message = message
        self.detail = detail
        self.status_code = status_code


class RemoteQueryError(BridgeError):
    """Caller-facing form of a :class:`PrometheusAPIError`."""


def _iter_chain(err: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: Optional[BaseException] = err
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def find_api_error(err: Optional[BaseException]) -> Optional[PrometheusAPIError]:
    """Return the first :class:`PrometheusAPIError` in ``err``'s cause chain."""

    if err is None:
        return None
    for candidate in _iter_chain(err):
        if isinstance(candidate, PrometheusAPIError):
            return candidate
    return None


def is_api_error(err: Optional[BaseException]) -> bool:
    """Return whether ``err`` is or wraps a remote query API error."""

    return find_api_error(err) is not None


def convert_api_error(err: BaseException) -> BaseException:
    """
    Fuse a remote API error's code and detail into a single message.

    Errors that do not wrap a :class:`PrometheusAPIError` are returned
    unchanged so transport and programming errors keep their original shape.
    """

    api_error = find_api_error(err)
    if api_error is None:
        return err
    converted = RemoteQueryError(f"{api_error.message}: {api_error.detail}")
    converted.__cause__ = err
    return converted
