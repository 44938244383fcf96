"""
Per-call context primitives handed to the bridge by its host.

:class:`PluginContext` carries the identity and raw settings of the data
source a request targets. :class:`RequestContext` carries the caller's
deadline and cancellation flag so blocking work (client construction and the
remote round-trip) can be aborted instead of hanging.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Mapping, Optional

from ..errors import QueryCancelledError
from ..httpclient import HTTPClientOptions, options_from_settings


@dataclass(frozen=True, slots=True)
class DataSourceInstanceSettings:
    """
    Raw, host-managed configuration for one data source.

    Attributes
    ----------
    id:
        Host-assigned numeric identity. Used as the instance cache key.
    uid:
        Stable string identifier, mostly for display and catalog lookups.
    name:
        Human-friendly display name.
    url:
        Base URL of the remote query API.
    json_data:
        JSON-encoded custom fields exactly as stored by the host.
    decrypted_secure_json_data:
        Secret values (passwords, header values, access keys) already
        decrypted by the host.
    basic_auth_enabled:
        Whether HTTP basic auth should be attached to outgoing requests.
    basic_auth_user:
        Basic auth user name. The password lives in the secure data under
        ``basicAuthPassword``.
    updated:
        Host's settings version stamp. A different value means the settings
        changed and any cached instance is stale.
    """

    id: int
    url: str
    json_data: bytes | str = b"{}"
    uid: str = ""
    name: str = ""
    decrypted_secure_json_data: Mapping[str, str] = field(default_factory=dict)
    basic_auth_enabled: bool = False
    basic_auth_user: str = ""
    updated: datetime = field(default_factory=lambda: datetime.fromtimestamp(0, UTC))

    def http_client_options(self) -> HTTPClientOptions:
        """Derive transport options from the custom and secure fields."""

        return options_from_settings(self)


@dataclass(frozen=True, slots=True)
class PluginContext:
    """Identity of the plugin and data source a request is addressed to."""

    plugin_id: str
    org_id: int = 1
    datasource_instance_settings: Optional[DataSourceInstanceSettings] = None


class RequestContext:
    """
    Caller-supplied deadline and cancellation flag.

    The context never interrupts work by itself; blocking operations call
    :meth:`check` before starting and use :meth:`remaining` to bound their
    network timeouts.
    """

    __slots__ = ("_deadline", "_cancelled")

    def __init__(self, *, deadline: Optional[float] = None) -> None:
        self._deadline = deadline
        self._cancelled = threading.Event()

    @classmethod
    def background(cls) -> "RequestContext":
        """Return a context without deadline."""

        return cls()

    @classmethod
    def with_timeout(cls, seconds: float) -> "RequestContext":
        """Return a context whose deadline is ``seconds`` from now."""

        return cls(deadline=time.monotonic() + seconds)

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``, returning early with ``True`` once cancelled."""

        return self._cancelled.wait(seconds)

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, ``None`` when unbounded."""

        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def check(self) -> None:
        """Raise :class:`QueryCancelledError` if the context is no longer live."""

        if self._cancelled.is_set():
            raise QueryCancelledError("context canceled")
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise QueryCancelledError("context deadline exceeded")
