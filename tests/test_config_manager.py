"""
Unit tests for configuration loading and request context building.
"""

import pytest
import yaml

from config_manager import (
    BASE_URL_ENV,
    DEFAULT_CONFIG,
    build_request_context,
    get_preference,
    load_config,
    save_config,
)
from exceptions import ConfigError


@pytest.fixture(autouse=True)
def clear_env(monkeypatch):
    monkeypatch.delenv(BASE_URL_ENV, raising=False)


class TestLoadConfig:
    """Test load_config."""

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")
        assert config == DEFAULT_CONFIG
        assert config is not DEFAULT_CONFIG

    def test_partial_file_is_merged(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"session": {"token": "abc"}, "reports": {"iva_rate": 0.19}}))
        config = load_config(path)
        assert config["session"]["token"] == "abc"
        assert config["session"]["tenant_slug"] is None
        assert config["reports"]["iva_rate"] == 0.19
        assert config["reports"]["output_dir"] == "reports"

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("api: [unclosed")
        with pytest.raises(ConfigError) as exc_info:
            load_config(path)
        assert exc_info.value.details["config_path"] == str(path)

    def test_non_mapping_root(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_env_overrides_base_url(self, tmp_path, monkeypatch):
        monkeypatch.setenv(BASE_URL_ENV, " https://pos.example.com ")
        assert load_config(tmp_path / "missing.yaml")["api"]["base_url"] == "https://pos.example.com"


class TestSaveConfig:
    """Test save_config."""

    def test_save_preserves_existing_keys(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"custom": {"keep": True}}))
        assert save_config({"session": {"user_name": "ana"}}, path) is True
        saved = yaml.safe_load(path.read_text())
        assert saved["custom"]["keep"] is True
        assert saved["session"]["user_name"] == "ana"

    def test_save_failure_returns_false(self, tmp_path):
        assert save_config({"a": 1}, tmp_path / "missing_dir" / "config.yaml") is False


class TestRequestContext:
    """Test build_request_context and get_preference."""

    def test_context_from_config(self):
        config = {
            "api": {"base_url": "http://api.test", "timeout": "12"},
            "session": {"token": "tok", "tenant_slug": "acme", "user_name": "ana"},
        }
        context = build_request_context(config)
        assert context.base_url == "http://api.test"
        assert context.timeout == 12.0
        assert context.token == "tok"
        assert context.tenant_slug == "acme"
        assert context.user_name == "ana"

    def test_explicit_base_url_wins(self):
        context = build_request_context({"api": {"base_url": "http://a"}}, base_url="http://b")
        assert context.base_url == "http://b"
        assert context.token is None

    def test_missing_base_url(self):
        with pytest.raises(ConfigError):
            build_request_context({"api": {}})

    def test_bad_timeout(self):
        with pytest.raises(ConfigError):
            build_request_context({"api": {"base_url": "http://a", "timeout": "soon"}})

    def test_get_preference(self):
        config = {"display": {"timezone": None}}
        assert get_preference(config, "display", "timezone", "UTC") == "UTC"
        assert get_preference(config, "missing", "key", 3) == 3
