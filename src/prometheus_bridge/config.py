"""
Bridge configuration and secret loading.

Secrets and bridge-wide knobs are read from a TOML file. The lookup order is:

1. Explicit ``PROMBRIDGE_SECRETS_PATH`` environment variable.
2. ``.secrets/secrets.toml`` relative to the current working directory.
3. ``.secrets/secrets.toml`` relative to the project root.

Expected layout::

    [bridge]
    max_retries = 3
    request_timeout = 60

    [datasources.prom-main]
    basicAuthPassword = "..."
    httpHeaderValue1 = "Bearer ..."

Call :func:`load_config` to obtain a :class:`BridgeConfig`.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

from .client import DEFAULT_MAX_RETRIES

DEFAULT_REQUEST_TIMEOUT = 60.0
_ENV_PATH = "PROMBRIDGE_SECRETS_PATH"


@dataclass(slots=True)
class BridgeSettings:
    """Bridge-wide runtime knobs."""

    max_retries: int = DEFAULT_MAX_RETRIES
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT


@dataclass(slots=True)
class BridgeConfig:
    """Parsed configuration file plus derived settings."""

    source_path: Optional[Path]
    data: Dict[str, Any]
    bridge: BridgeSettings = field(default_factory=BridgeSettings)

    def datasource_secrets(self, uid: str) -> Dict[str, str]:
        """Return decrypted secure fields for the data source ``uid``."""

        section = self.data.get("datasources", {})
        if not isinstance(section, dict):
            return {}
        entry = section.get(uid)
        if not isinstance(entry, dict):
            return {}
        return {str(key): str(value) for key, value in entry.items() if isinstance(value, (str, int, float))}


def _discover_project_root() -> Optional[Path]:
    for parent in Path(__file__).resolve().parents:
        if (parent / "pyproject.toml").is_file():
            return parent
    return None


def _candidate_paths() -> Iterable[Path]:
    env_override = os.getenv(_ENV_PATH)
    if env_override:
        yield Path(env_override).expanduser()
    yield Path.cwd() / ".secrets" / "secrets.toml"
    project_root = _discover_project_root()
    if project_root and project_root != Path.cwd():
        yield project_root / ".secrets" / "secrets.toml"


def _extract_bridge_settings(raw: Mapping[str, Any]) -> BridgeSettings:
    section = raw.get("bridge", {})
    if not isinstance(section, dict):
        section = {}

    settings = BridgeSettings()
    retries = section.get("max_retries")
    if isinstance(retries, int) and not isinstance(retries, bool) and retries > 0:
        settings.max_retries = retries
    timeout = section.get("request_timeout")
    if isinstance(timeout, (int, float)) and not isinstance(timeout, bool) and timeout > 0:
        settings.request_timeout = float(timeout)
    return settings


def load_config(path: Optional[Path] = None, *, strict: bool = False) -> BridgeConfig:
    """
    Load bridge configuration.

    Parameters
    ----------
    path:
        Explicit file to read. Skips the search order when provided.
    strict:
        When ``True`` raise ``FileNotFoundError`` if no file is found.
        Defaults to ``False`` so the bridge runs with defaults in development.
    """

    candidates = [path] if path is not None else list(_candidate_paths())
    for candidate in candidates:
        if candidate.is_file():
            with candidate.open("rb") as handle:
                data = tomllib.load(handle)
            return BridgeConfig(source_path=candidate, data=data, bridge=_extract_bridge_settings(data))

    if strict:
        raise FileNotFoundError(f"No configuration file found. Configure {_ENV_PATH} or .secrets/secrets.toml.")
    return BridgeConfig(source_path=None, data={})
