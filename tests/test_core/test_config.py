"""Tests for src/core/config.py: YAML loading, defaults, SecretStr."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from src.core.config import (
    AlertsConfig,
    DatabaseConfig,
    LoggingConfig,
    ScanConfig,
    SearchConfig,
    Settings,
    TelegramConfig,
    get_settings,
    load_settings,
    reset_settings,
)


@pytest.fixture(autouse=True)
def _clean_settings() -> None:
    """Reset the global settings cache before each test."""
    reset_settings()


class TestDefaults:
    """Settings should have sensible defaults when no YAML is provided."""

    def test_default_search_config(self) -> None:
        cfg = SearchConfig()
        assert cfg.url == "http://elasticsearch:9200"
        assert cfg.collections == []
        assert "core" in cfg.collection_keywords
        assert cfg.timestamp_field == "@timestamp"
        assert cfg.tiebreak_field == "_id"
        assert cfg.password.get_secret_value() == ""

    def test_default_scan_config(self) -> None:
        cfg = ScanConfig()
        assert cfg.batch_size == 500
        assert cfg.job_name == "log_alert_scanner"
        assert cfg.lock_ttl_secs > cfg.max_run_secs

    def test_default_alerts_config(self) -> None:
        cfg = AlertsConfig()
        assert cfg.context_preview_chars == 1200
        assert cfg.send_timeout_secs == 10.0
        assert cfg.telegram.enabled is False
        assert cfg.email.enabled is False
        assert cfg.email.smtp_port == 587

    def test_default_database_config(self) -> None:
        cfg = DatabaseConfig()
        assert cfg.url.startswith("sqlite")
        assert cfg.echo is False

    def test_default_logging_config(self) -> None:
        cfg = LoggingConfig()
        assert cfg.level == "INFO"
        assert cfg.format == "json"

    def test_default_settings(self) -> None:
        s = Settings()
        assert s.scan.batch_size == 500
        assert s.search.duration_field == "extra.duration_ms"
        assert s.logging.level == "INFO"


class TestYamlLoading:
    """Settings should load correctly from YAML files."""

    def test_load_from_yaml(self, tmp_path: Path) -> None:
        config_data = {
            "search": {
                "url": "http://search.internal:9200",
                "username": "reader",
                "password": "s3cret",
                "collections": ["core-logs", "vendor-logs"],
            },
            "scan": {"batch_size": 50, "max_run_secs": 30},
            "alerts": {
                "telegram": {"enabled": True, "bot_token": "tok", "chat_id": "-100"},
                "email": {"recipients": ["ops@example.com"]},
            },
            "logging": {"level": "DEBUG", "format": "console"},
        }
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(yaml.dump(config_data))

        settings = load_settings(config_file)

        assert settings.search.url == "http://search.internal:9200"
        assert settings.search.password.get_secret_value() == "s3cret"
        assert settings.search.collections == ["core-logs", "vendor-logs"]
        assert settings.scan.batch_size == 50
        assert settings.scan.max_run_secs == 30
        assert settings.alerts.telegram.bot_token.get_secret_value() == "tok"
        assert settings.alerts.telegram.chat_id == "-100"
        assert settings.alerts.email.recipients == ["ops@example.com"]
        assert settings.logging.format == "console"

    def test_load_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        settings = load_settings(tmp_path / "nonexistent.yaml")
        assert settings.scan.batch_size == 500

    def test_load_empty_file_uses_defaults(self, tmp_path: Path) -> None:
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")
        settings = load_settings(config_file)
        assert settings.scan.batch_size == 500

    def test_partial_yaml_merges_with_defaults(self, tmp_path: Path) -> None:
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(yaml.dump({"scan": {"batch_size": 10}}))

        settings = load_settings(config_file)
        assert settings.scan.batch_size == 10
        # Other defaults still intact
        assert settings.scan.job_name == "log_alert_scanner"
        assert settings.search.app_field == "app_name"

    def test_get_settings_caches(self, tmp_path: Path) -> None:
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(yaml.dump({"scan": {"batch_size": 7}}))
        load_settings(config_file)
        assert get_settings().scan.batch_size == 7
        assert get_settings() is get_settings()


class TestSecretStr:
    """Sensitive fields should use SecretStr to prevent leaking."""

    def test_secret_str_repr_does_not_leak(self) -> None:
        cfg = TelegramConfig(bot_token="super-secret")  # type: ignore[arg-type]
        repr_str = repr(cfg)
        assert "super-secret" not in repr_str
        assert "**********" in repr_str

    def test_search_password_hidden(self) -> None:
        cfg = SearchConfig(password="hunter2")  # type: ignore[arg-type]
        assert "hunter2" not in repr(cfg)
        assert cfg.password.get_secret_value() == "hunter2"
