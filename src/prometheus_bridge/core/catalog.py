"""
File-backed data source catalog.

The bridge normally receives instance settings from its host. The catalog
stands in for the host when the bridge runs on its own (CLI, smoke tests): it
loads data source definitions from a YAML document, merges secure fields from
the bridge configuration and builds :class:`PluginContext` objects.
"""

from __future__ import annotations

import json
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any, Dict, List, MutableMapping, Optional

import yaml

from ..config import BridgeConfig
from ..errors import CatalogLoadError
from .context import DataSourceInstanceSettings, PluginContext

_EPOCH = datetime.fromtimestamp(0, UTC)


class DataSourceCatalog:
    """In-memory catalogue of :class:`DataSourceInstanceSettings` keyed by uid."""

    def __init__(self, plugin_id: str = "prometheus") -> None:
        self.plugin_id = plugin_id
        self._entries: MutableMapping[str, DataSourceInstanceSettings] = {}

    def register(self, settings: DataSourceInstanceSettings) -> None:
        """Register or overwrite a data source."""

        if not settings.uid:
            raise CatalogLoadError(f"Data source {settings.id} is missing a uid.")
        for existing in self._entries.values():
            if existing.id == settings.id and existing.uid != settings.uid:
                raise CatalogLoadError(f"Data source id {settings.id} is used by both '{existing.uid}' and '{settings.uid}'.")
        self._entries[settings.uid] = settings

    def get(self, uid: str) -> Optional[DataSourceInstanceSettings]:
        return self._entries.get(uid)

    def require(self, uid: str) -> DataSourceInstanceSettings:
        """Retrieve a data source or raise an informative error."""

        settings = self.get(uid)
        if settings is None:
            raise KeyError(f"Data source '{uid}' is not in the catalog.")
        return settings

    def list(self) -> List[DataSourceInstanceSettings]:
        return sorted(self._entries.values(), key=lambda item: item.id)

    def plugin_context(self, uid: str, *, org_id: int = 1) -> PluginContext:
        return PluginContext(plugin_id=self.plugin_id, org_id=org_id, datasource_instance_settings=self.require(uid))

    @classmethod
    def from_yaml(cls, path: Path | str, *, config: Optional[BridgeConfig] = None) -> "DataSourceCatalog":
        """Load data sources from a YAML list, merging secure fields from ``config``."""

        location = Path(path)
        if not location.exists():
            raise CatalogLoadError(f"Catalog file '{location}' does not exist.")

        try:
            with location.open("r", encoding="utf-8") as handle:
                payload = yaml.safe_load(handle)
        except yaml.YAMLError as exc:
            raise CatalogLoadError(f"Failed to parse '{location}': {exc}") from exc

        if not isinstance(payload, list):
            raise CatalogLoadError(f"Catalog file '{location}' must contain a list of data sources.")

        catalog = cls()
        for entry in payload:
            catalog.register(_settings_from_payload(entry, origin=location, config=config))
        return catalog


def _parse_updated(value: Any, *, origin: Path) -> datetime:
    if value is None:
        return _EPOCH
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError as exc:
        raise CatalogLoadError(f"Invalid 'updated' value {value!r} in '{origin}'.") from exc
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _settings_from_payload(entry: Any, *, origin: Path, config: Optional[BridgeConfig]) -> DataSourceInstanceSettings:
    if not isinstance(entry, dict):
        raise CatalogLoadError(f"Invalid entry in '{origin}': expected mapping, got {type(entry)!r}")

    try:
        uid = str(entry["uid"])
        json_data = entry.get("json_data") or {}
        if not isinstance(json_data, dict):
            raise CatalogLoadError(f"Data source '{uid}' json_data must be a mapping in '{origin}'.")
        secure: Dict[str, str] = {}
        inline_secure = entry.get("secure_json_data") or {}
        if isinstance(inline_secure, dict):
            secure.update({str(key): str(value) for key, value in inline_secure.items()})
        if config is not None:
            secure.update(config.datasource_secrets(uid))
        return DataSourceInstanceSettings(
            id=int(entry["id"]),
            uid=uid,
            name=str(entry.get("name", uid)),
            url=str(entry["url"]),
            json_data=json.dumps(json_data).encode("utf-8"),
            decrypted_secure_json_data=secure,
            basic_auth_enabled=bool(entry.get("basic_auth", False)),
            basic_auth_user=str(entry.get("basic_auth_user", "")),
            updated=_parse_updated(entry.get("updated"), origin=origin),
        )
    except KeyError as exc:
        raise CatalogLoadError(f"Missing required key {exc!s} in '{origin}'.") from exc
    except (TypeError, ValueError) as exc:
        raise CatalogLoadError(f"Invalid field in '{origin}': {exc}") from exc
