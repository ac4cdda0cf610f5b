"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for gateway configs.
"""

import os
import shutil
import tempfile
from decimal import Decimal

import pytest
import yaml

from quota_guard.config.loader import (
    BillingConfig,
    GatewayConfig,
    LoggingConfig,
    load_gateway_config,
)
from quota_guard.storage.db import DEFAULT_DB_PATH


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data: dict, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_defaults_without_file(self):
        config = load_gateway_config(None)

        assert config == GatewayConfig()
        assert config.database.path == DEFAULT_DB_PATH
        assert config.billing.markup_percent == Decimal("20")
        assert config.simulation.provider_failure_rate == 0.01
        assert config.geolocation.cache_ttl_hours == 24

    def test_valid_config_loads_correctly(self):
        config_path = self._write_config({
            "database": {"path": "/tmp/gateway.db"},
            "billing": {"markup_percent": 12.5},
            "simulation": {"provider_failure_rate": 0, "cache_hit_rate": 0.5},
            "geolocation": {"enabled": False, "ipinfo_token": "tok", "cache_ttl_hours": 1},
            "notifications": {"smtp_host": "mail.local", "smtp_port": 2525, "from_email": "a@b.c"},
            "logging": {"level": "debug", "format": "JSON"},
        })

        config = load_gateway_config(config_path)

        assert config.database.path == "/tmp/gateway.db"
        assert config.billing.markup_percent == Decimal("12.5")
        assert config.simulation.provider_failure_rate == 0
        assert config.simulation.cache_hit_rate == 0.5
        assert config.geolocation.enabled is False
        assert config.geolocation.ipinfo_token == "tok"
        assert config.notifications.smtp_port == 2525
        assert config.logging.level == "DEBUG"
        assert config.logging.format == "json"

    def test_partial_config_keeps_defaults(self):
        config_path = self._write_config({"billing": {"markup_percent": 0}})

        config = load_gateway_config(config_path)

        assert config.billing.markup_percent == Decimal("0")
        assert config.simulation == GatewayConfig().simulation

    def test_missing_file_raises_error(self):
        with pytest.raises(FileNotFoundError):
            load_gateway_config(os.path.join(self.temp_dir, "missing.yaml"))

    def test_empty_config_raises_error(self):
        config_path = os.path.join(self.temp_dir, "empty.yaml")
        open(config_path, 'w').close()

        with pytest.raises(ValueError, match="empty"):
            load_gateway_config(config_path)

    def test_invalid_yaml_raises_error(self):
        config_path = os.path.join(self.temp_dir, "bad.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("billing: [unclosed")

        with pytest.raises(yaml.YAMLError):
            load_gateway_config(config_path)

    def test_unknown_top_level_keys_raise_error(self):
        config_path = self._write_config({"billing": {}, "features": {}})

        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_gateway_config(config_path)

    def test_unknown_section_keys_raise_error(self):
        config_path = self._write_config({"billing": {"markup": 20}})

        with pytest.raises(ValueError, match="Unknown keys in billing"):
            load_gateway_config(config_path)

    def test_section_must_be_mapping(self):
        config_path = self._write_config({"database": "sqlite.db"})

        with pytest.raises(ValueError, match="must be a dictionary"):
            load_gateway_config(config_path)

    def test_negative_markup_raises_error(self):
        config_path = self._write_config({"billing": {"markup_percent": -1}})

        with pytest.raises(ValueError, match="markup_percent"):
            load_gateway_config(config_path)

    def test_non_numeric_markup_raises_error(self):
        config_path = self._write_config({"billing": {"markup_percent": "lots"}})

        with pytest.raises(ValueError, match="must be a number"):
            load_gateway_config(config_path)

    def test_failure_rate_out_of_range(self):
        config_path = self._write_config({"simulation": {"provider_failure_rate": 1.5}})

        with pytest.raises(ValueError, match="between 0 and 1"):
            load_gateway_config(config_path)

    def test_boolean_is_not_a_number(self):
        config_path = self._write_config({"simulation": {"cache_hit_rate": True}})

        with pytest.raises(ValueError, match="must be a number"):
            load_gateway_config(config_path)

    def test_enabled_must_be_boolean(self):
        config_path = self._write_config({"geolocation": {"enabled": "yes"}})

        with pytest.raises(ValueError, match="must be a boolean"):
            load_gateway_config(config_path)

    def test_invalid_log_level(self):
        config_path = self._write_config({"logging": {"level": "chatty"}})

        with pytest.raises(ValueError, match="Invalid log level"):
            load_gateway_config(config_path)

    def test_invalid_port(self):
        config_path = self._write_config({"notifications": {"smtp_port": 70000}})

        with pytest.raises(ValueError, match="port"):
            load_gateway_config(config_path)


class TestConfigDataclasses:
    """Test dataclass-level validation."""

    def test_billing_rejects_negative(self):
        with pytest.raises(ValueError):
            BillingConfig(markup_percent=Decimal("-0.01"))

    def test_logging_rejects_unknown_format(self):
        with pytest.raises(ValueError, match="Invalid log format"):
            LoggingConfig(format="xml")
