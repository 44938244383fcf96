"""
Shared HTTP transport provider.

Data source settings are translated into :class:`HTTPClientOptions`, which the
:class:`HTTPClientProvider` turns into a configured :class:`httpx.Client`. The
provider is shared by every data source instance; each instance receives its
own client bound to its endpoint.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Mapping, MutableMapping, Optional

import httpx

if TYPE_CHECKING:
    from .core.context import DataSourceInstanceSettings

DEFAULT_TIMEOUT = 30.0
_MAX_CUSTOM_HEADERS = 100


@dataclass(frozen=True, slots=True)
class BasicAuth:
    user: str
    password: str


@dataclass(frozen=True, slots=True)
class SigV4Config:
    """
    Signed-request (AWS SigV4) settings.

    ``service`` is the signing namespace. The settings resolver overwrites it
    for Prometheus data sources, so whatever the host stored is ignored.
    """

    auth_type: str = ""
    region: str = ""
    service: str = ""
    profile: str = ""
    assume_role_arn: str = ""
    external_id: str = ""
    access_key: str = field(default="", repr=False)
    secret_key: str = field(default="", repr=False)


@dataclass(frozen=True, slots=True)
class HTTPClientOptions:
    timeout: float = DEFAULT_TIMEOUT
    headers: Mapping[str, str] = field(default_factory=dict)
    basic_auth: Optional[BasicAuth] = None
    sigv4: Optional[SigV4Config] = None
    tls_skip_verify: bool = False


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return False


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _decode_json_data(raw: bytes | str | Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(raw, Mapping):
        return raw
    payload = json.loads(raw or "{}")
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValueError("settings JSON must be an object")
    return payload


def options_from_settings(settings: "DataSourceInstanceSettings") -> HTTPClientOptions:
    """
    Build transport options from data source settings.

    Raises ``ValueError`` when the custom fields cannot be decoded or a
    transport field has the wrong shape.
    """

    data = _decode_json_data(settings.json_data)
    secure = settings.decrypted_secure_json_data

    timeout = DEFAULT_TIMEOUT
    raw_timeout = data.get("timeout")
    if raw_timeout not in (None, ""):
        try:
            timeout = float(raw_timeout)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"invalid timeout {raw_timeout!r}") from exc
        if timeout <= 0:
            raise ValueError(f"invalid timeout {raw_timeout!r}")

    headers: MutableMapping[str, str] = {}
    for index in range(1, _MAX_CUSTOM_HEADERS + 1):
        name = data.get(f"httpHeaderName{index}")
        if not name:
            break
        headers[str(name)] = secure.get(f"httpHeaderValue{index}", "")

    basic_auth = None
    if settings.basic_auth_enabled:
        basic_auth = BasicAuth(user=settings.basic_auth_user, password=secure.get("basicAuthPassword", ""))

    sigv4 = None
    if _as_bool(data.get("sigV4Auth")):
        sigv4 = SigV4Config(
            auth_type=_as_str(data.get("sigV4AuthType")),
            region=_as_str(data.get("sigV4Region")),
            service=_as_str(data.get("sigV4Service")),
            profile=_as_str(data.get("sigV4Profile")),
            assume_role_arn=_as_str(data.get("sigV4AssumeRoleArn")),
            external_id=_as_str(data.get("sigV4ExternalId")),
            access_key=secure.get("sigV4AccessKey", ""),
            secret_key=secure.get("sigV4SecretKey", ""),
        )

    return HTTPClientOptions(
        timeout=timeout,
        headers=headers,
        basic_auth=basic_auth,
        sigv4=sigv4,
        tls_skip_verify=_as_bool(data.get("tlsSkipVerify")),
    )


SigV4AuthFactory = Callable[[SigV4Config], httpx.Auth]


@dataclass(slots=True)
class HTTPClientProvider:
    """
    Factory for :class:`httpx.Client` instances configured from options.

    Parameters
    ----------
    sigv4_auth_factory:
        Builds an :class:`httpx.Auth` that signs requests. Required when any
        data source enables SigV4; the bridge does not obtain credentials
        itself.
    transport:
        Optional transport shared by every client, e.g. ``httpx.MockTransport``
        in tests.
    default_headers:
        Headers attached to every client before per data source headers.
    """

    sigv4_auth_factory: Optional[SigV4AuthFactory] = None
    transport: Optional[httpx.BaseTransport] = None
    default_headers: Mapping[str, str] = field(default_factory=lambda: {"Accept": "application/json"})

    def new_client(self, options: HTTPClientOptions, *, base_url: str) -> httpx.Client:
        auth: Optional[httpx.Auth] = None
        if options.sigv4 is not None:
            if self.sigv4_auth_factory is None:
                raise ValueError("SigV4 authentication is enabled but no signer is configured")
            auth = self.sigv4_auth_factory(options.sigv4)
        elif options.basic_auth is not None:
            auth = httpx.BasicAuth(options.basic_auth.user, options.basic_auth.password)

        headers = dict(self.default_headers)
        headers.update(options.headers)
        kwargs: dict[str, Any] = {
            "base_url": base_url,
            "timeout": options.timeout,
            "headers": headers,
            "auth": auth,
            "follow_redirects": True,
        }
        if self.transport is not None:
            kwargs["transport"] = self.transport
        else:
            kwargs["verify"] = not options.tls_skip_verify
        return httpx.Client(**kwargs)
