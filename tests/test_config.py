"""Unit tests for configuration loading and validation."""

from datetime import timedelta
from pathlib import Path

import pytest

from activity_notify.config import (
    AppConfig,
    ConfigurationError,
    DurationParseError,
    MissingDelayPolicy,
    load_config,
    load_environment_config,
    parse_config,
    parse_duration,
    to_seconds,
)
from activity_notify.config.duration import is_duration


@pytest.fixture
def clean_env(monkeypatch):
    """Remove configuration variables from the environment."""
    for name in (
        "DATABASE_URL",
        "LOG_LEVEL",
        "SMTP_HOST",
        "SMTP_PORT",
        "SMTP_USER",
        "SMTP_PASS",
        "SMTP_SENDER_NAME",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def mock_env_vars(clean_env, monkeypatch):
    """Mock SMTP environment variables for testing."""
    monkeypatch.setenv("SMTP_HOST", "smtp.test.com")
    monkeypatch.setenv("SMTP_PORT", "587")
    monkeypatch.setenv("SMTP_USER", "user@test.com")
    monkeypatch.setenv("SMTP_PASS", "testpass123")


class TestConfigurationLoading:
    """Tests for loading configuration files."""

    def test_load_valid_config(self, tmp_path, mock_env_vars):
        """Test loading a complete configuration file."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            """
notifications:
  opened_index_limit: 20
  email_enabled: true
  rescue_optional_target_errors: false
subscriptions:
  subscribe_to_email_as_default: false
cascade:
  missing_delay_policy: immediate
email:
  max_retries: 1
logging:
  level: DEBUG
  format: json
"""
        )

        app_config, env_config = load_config(config_file)

        assert app_config.notifications.opened_index_limit == 20
        assert app_config.notifications.email_enabled is True
        assert app_config.notifications.rescue_optional_target_errors is False
        assert app_config.subscriptions.subscribe_as_default is True
        assert app_config.subscriptions.subscribe_to_email_as_default is False
        assert app_config.cascade.missing_delay_policy == MissingDelayPolicy.IMMEDIATE.value
        assert app_config.email.max_retries == 1
        assert app_config.logging.format == "json"
        assert env_config.smtp_configured is True

    def test_empty_config_file_uses_defaults(self, tmp_path, mock_env_vars):
        """Test an empty file gives the default configuration."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("")

        app_config, _ = load_config(config_file)

        assert app_config == AppConfig()

    def test_config_file_not_found(self, mock_env_vars):
        """Test that a missing file raises ConfigurationError."""
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(Path("/nonexistent/config.yaml"))

        assert "not found" in str(exc_info.value)

    def test_invalid_yaml_syntax(self, tmp_path, mock_env_vars):
        """Test that invalid YAML raises ConfigurationError."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text("notifications: [unclosed")

        with pytest.raises(ConfigurationError) as exc_info:
            load_config(config_file)

        assert "YAML" in str(exc_info.value)

    def test_log_level_env_overrides_file(self, tmp_path, mock_env_vars, monkeypatch):
        """Test LOG_LEVEL takes precedence over the file."""
        monkeypatch.setenv("LOG_LEVEL", "warning")
        config_file = tmp_path / "config.yaml"
        config_file.write_text("logging:\n  level: DEBUG\n")

        app_config, env_config = load_config(config_file)

        assert env_config.log_level == "WARNING"
        assert app_config.logging.level == "WARNING"


class TestConfigurationValidation:
    """Tests for schema validation."""

    def test_defaults(self):
        """Test the documented defaults."""
        config = AppConfig()

        assert config.notifications.email_enabled is False
        assert config.notifications.rescue_optional_target_errors is True
        assert config.notifications.opened_index_limit == 10
        assert config.subscriptions.subscribe_to_optional_targets_as_default is True
        assert config.cascade.missing_delay_policy == "legacy"

    def test_collects_every_error(self):
        """Test validation reports all invalid fields."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_config(
                {
                    "notifications": {"opened_index_limit": 0},
                    "cascade": {"missing_delay_policy": "sometimes"},
                }
            )

        errors = exc_info.value.errors
        assert len(errors) == 2
        assert any("opened_index_limit" in error for error in errors)
        assert any("missing_delay_policy" in error for error in errors)

    def test_error_message_lists_suggestions(self):
        """Test the formatted message includes errors and suggestions."""
        error = ConfigurationError("Broken", errors=["a"], suggestions=["b"])

        assert "1. a" in str(error)
        assert "- b" in str(error)


class TestDurationParsing:
    """Tests for duration parsing."""

    def test_parse_human_readable(self):
        assert parse_duration("15m") == 900
        assert parse_duration("1h30m") == 5400
        assert parse_duration("2d") == 172800

    def test_parse_iso8601(self):
        assert parse_duration("PT15M") == 900
        assert parse_duration("P1DT1H") == 90000

    def test_parse_invalid_format(self):
        with pytest.raises(DurationParseError):
            parse_duration("soon")
        with pytest.raises(DurationParseError):
            parse_duration("15x")

    def test_parse_zero_needs_allow_zero(self):
        with pytest.raises(DurationParseError):
            parse_duration("0s")
        assert parse_duration("0s", allow_zero=True) == 0

    def test_to_seconds_accepts_every_form(self):
        assert to_seconds(timedelta(minutes=2)) == 120.0
        assert to_seconds(30) == 30.0
        assert to_seconds(1.5) == 1.5
        assert to_seconds("1h") == 3600.0
        assert to_seconds(0) == 0.0

    def test_to_seconds_rejects_invalid_values(self):
        for value in (-1, True, None, [], "later"):
            with pytest.raises(DurationParseError):
                to_seconds(value)
        assert is_duration("5m") is True
        assert is_duration(-5) is False


class TestEnvironmentVariables:
    """Tests for environment variable loading."""

    def test_load_valid_environment_config(self, mock_env_vars):
        env_config = load_environment_config(dotenv=False)

        assert env_config.smtp_host == "smtp.test.com"
        assert env_config.smtp_port == 587
        assert env_config.smtp_sender_name == "Notifications"
        assert env_config.database_url.startswith("sqlite:///")

    def test_everything_optional(self, clean_env):
        env_config = load_environment_config(dotenv=False)

        assert env_config.smtp_configured is False
        assert env_config.log_level is None

    def test_invalid_smtp_port(self, mock_env_vars, monkeypatch):
        monkeypatch.setenv("SMTP_PORT", "not-a-number")

        with pytest.raises(ConfigurationError) as exc_info:
            load_environment_config(dotenv=False)

        assert "SMTP_PORT" in str(exc_info.value)

    def test_user_without_password(self, mock_env_vars, monkeypatch):
        monkeypatch.delenv("SMTP_PASS")

        with pytest.raises(ConfigurationError) as exc_info:
            load_environment_config(dotenv=False)

        assert "SMTP_PASS" in str(exc_info.value)

    def test_invalid_log_level(self, clean_env, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "LOUD")

        with pytest.raises(ConfigurationError):
            load_environment_config(dotenv=False)
