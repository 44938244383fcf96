from __future__ import annotations

import pytest

from prometheus_bridge.client import DEFAULT_MAX_RETRIES
from prometheus_bridge.config import DEFAULT_REQUEST_TIMEOUT, load_config

SECRETS = """
[bridge]
max_retries = 5
request_timeout = 12.5

[datasources.prom-gateway]
basicAuthPassword = "hunter2"
httpHeaderValue1 = "tenant-a"
nested = { ignored = true }
"""


def test_load_config_from_explicit_path(tmp_path):
    path = tmp_path / "secrets.toml"
    path.write_text(SECRETS, encoding="utf-8")

    config = load_config(path)

    assert config.source_path == path
    assert config.bridge.max_retries == 5
    assert config.bridge.request_timeout == 12.5
    assert config.datasource_secrets("prom-gateway") == {"basicAuthPassword": "hunter2", "httpHeaderValue1": "tenant-a"}
    assert config.datasource_secrets("unknown") == {}


def test_load_config_honours_environment_override(tmp_path, monkeypatch):
    path = tmp_path / "custom.toml"
    path.write_text("[bridge]\nmax_retries = 2\n", encoding="utf-8")
    monkeypatch.setenv("PROMBRIDGE_SECRETS_PATH", str(path))

    config = load_config()

    assert config.source_path == path
    assert config.bridge.max_retries == 2
    assert config.bridge.request_timeout == DEFAULT_REQUEST_TIMEOUT


def test_load_config_searches_working_directory(tmp_path, monkeypatch):
    secrets_dir = tmp_path / ".secrets"
    secrets_dir.mkdir()
    (secrets_dir / "secrets.toml").write_text("[bridge]\nrequest_timeout = 5\n", encoding="utf-8")
    monkeypatch.delenv("PROMBRIDGE_SECRETS_PATH", raising=False)
    monkeypatch.chdir(tmp_path)

    config = load_config()

    assert config.bridge.request_timeout == 5.0


def test_invalid_bridge_values_fall_back_to_defaults(tmp_path):
    path = tmp_path / "secrets.toml"
    path.write_text("[bridge]\nmax_retries = 0\nrequest_timeout = true\n", encoding="utf-8")

    config = load_config(path)

    assert config.bridge.max_retries == DEFAULT_MAX_RETRIES
    assert config.bridge.request_timeout == DEFAULT_REQUEST_TIMEOUT


def test_missing_config_uses_defaults_unless_strict(tmp_path):
    missing = tmp_path / "missing.toml"

    config = load_config(missing)

    assert config.source_path is None
    assert config.data == {}
    with pytest.raises(FileNotFoundError):
        load_config(missing, strict=True)
