"""
Tests for engine configuration.
"""

import json

import pytest
import yaml

from abac_authz.config import ABACConfig, BatchConfig, CacheConfig, SecurityLoggingConfig
from abac_authz.exceptions import ConfigurationError


class TestABACConfig:
    """Test cases for ABACConfig."""

    def test_defaults(self):
        config = ABACConfig()

        assert config.role_attributes_override is True
        assert config.strict_rule_references is False
        assert config.validate_operators is False
        assert config.request_timeout is None
        assert config.cache.enabled is False
        assert config.batch.width == 10
        assert config.audit.enabled is True
        assert config.logging.log_format == "json"

    def test_sections_from_dicts(self):
        config = ABACConfig(cache={"enabled": True, "max_size": 50}, batch={"width": 2})

        assert isinstance(config.cache, CacheConfig)
        assert config.cache.max_size == 50
        assert config.cache.ttl_seconds == 60.0
        assert config.batch.width == 2

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ConfigurationError, match="Unknown configuration keys: colour"):
            ABACConfig.from_dict({"colour": "blue"})

    def test_section_rejects_unknown_keys(self):
        with pytest.raises(ConfigurationError, match="Unknown cache configuration keys") as exc_info:
            ABACConfig.from_dict({"cache": {"size": 5}})
        assert exc_info.value.config_key == "cache"

    @pytest.mark.parametrize("kwargs,key", [
        ({"cache": {"max_size": 0}}, "cache.max_size"),
        ({"cache": {"ttl_seconds": -1}}, "cache.ttl_seconds"),
        ({"batch": {"width": 0}}, "batch.width"),
        ({"batch": {"pause_seconds": -0.5}}, "batch.pause_seconds"),
        ({"audit": {"queue_size": 0}}, "audit.queue_size"),
        ({"logging": {"log_level": "LOUD"}}, "logging.log_level"),
        ({"logging": {"log_format": "xml"}}, "logging.log_format"),
        ({"request_timeout": 0}, "request_timeout"),
    ])
    def test_validation(self, kwargs, key):
        with pytest.raises(ConfigurationError) as exc_info:
            ABACConfig(**kwargs)
        assert exc_info.value.details["config_key"] == key

    def test_invalid_section_type(self):
        with pytest.raises(ConfigurationError, match="Invalid cache configuration section"):
            ABACConfig(cache="yes")

    def test_log_level_is_normalized(self):
        assert SecurityLoggingConfig(log_level="debug").log_level == "DEBUG"

    def test_to_dict(self):
        data = ABACConfig(batch=BatchConfig(width=4)).to_dict()
        assert data["batch"] == {"width": 4, "pause_seconds": 0.0}
        assert data["cache"]["enabled"] is False


class TestABACConfigSources:
    """Test cases for loading configuration from files and the environment."""

    def test_from_yaml_file(self, tmp_path):
        path = tmp_path / "abac.yaml"
        path.write_text(yaml.safe_dump({
            "strict_rule_references": True,
            "cache": {"enabled": True, "ttl_seconds": 5},
            "logging": {"log_format": "text"},
        }))

        config = ABACConfig.from_file(path)

        assert config.strict_rule_references is True
        assert config.cache.enabled is True
        assert config.cache.ttl_seconds == 5
        assert config.logging.log_format == "text"

    def test_from_json_file(self, tmp_path):
        path = tmp_path / "abac.json"
        path.write_text(json.dumps({"request_timeout": 2.5, "batch": {"width": 3}}))

        config = ABACConfig.from_file(str(path))

        assert config.request_timeout == 2.5
        assert config.batch.width == 3

    def test_empty_yaml_file_gives_defaults(self, tmp_path):
        path = tmp_path / "abac.yml"
        path.write_text("")
        assert ABACConfig.from_file(path) == ABACConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            ABACConfig.from_file(tmp_path / "missing.yaml")

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "abac.toml"
        path.write_text("")
        with pytest.raises(ConfigurationError, match="Unsupported configuration file format"):
            ABACConfig.from_file(path)

    def test_malformed_file(self, tmp_path):
        path = tmp_path / "abac.json"
        path.write_text("{not json")
        with pytest.raises(ConfigurationError, match="Failed to load configuration"):
            ABACConfig.from_file(path)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("ABAC_ROLE_ATTRIBUTES_OVERRIDE", "false")
        monkeypatch.setenv("ABAC_VALIDATE_OPERATORS", "yes")
        monkeypatch.setenv("ABAC_REQUEST_TIMEOUT", "1.5")
        monkeypatch.setenv("ABAC_CACHE_ENABLED", "1")
        monkeypatch.setenv("ABAC_CACHE_MAX_SIZE", "25")
        monkeypatch.setenv("ABAC_BATCH_WIDTH", "4")
        monkeypatch.setenv("ABAC_LOG_LEVEL", "warning")

        config = ABACConfig.from_env()

        assert config.role_attributes_override is False
        assert config.validate_operators is True
        assert config.request_timeout == 1.5
        assert config.cache.enabled is True
        assert config.cache.max_size == 25
        assert config.batch.width == 4
        assert config.logging.log_level == "WARNING"

    def test_from_env_with_custom_prefix(self, monkeypatch):
        monkeypatch.setenv("AUTHZ_BATCH_WIDTH", "7")
        assert ABACConfig.from_env(prefix="AUTHZ_").batch.width == 7

    def test_from_env_invalid_number(self, monkeypatch):
        monkeypatch.setenv("ABAC_CACHE_MAX_SIZE", "lots")
        with pytest.raises(ConfigurationError, match="Invalid value for ABAC_CACHE_MAX_SIZE"):
            ABACConfig.from_env()
