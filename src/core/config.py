"""Pydantic settings loaded from YAML configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, SecretStr

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")


class SearchConfig(BaseModel):
    """Log search backend (Elasticsearch-compatible) configuration."""

    url: str = "http://elasticsearch:9200"
    username: str = ""
    password: SecretStr = SecretStr("")
    timeout_secs: float = 15.0
    collections: list[str] = []
    collection_keywords: list[str] = ["core", "merchant", "transaction", "vendor"]
    timestamp_field: str = "@timestamp"
    fallback_timestamp_field: str = "datetime"
    tiebreak_field: str = "_id"
    duration_field: str = "extra.duration_ms"
    app_field: str = "app_name"


class ScanConfig(BaseModel):
    """Scan orchestrator configuration."""

    job_name: str = "log_alert_scanner"
    batch_size: int = 500
    max_run_secs: float = 600.0
    lock_ttl_secs: float = 900.0
    interval_secs: float = 120.0


class DatabaseConfig(BaseModel):
    """Persistence for checkpoints, rules, audit, rate limits and run records."""

    url: str = "sqlite:///./storage/sentinel.db"
    echo: bool = False
    timeout_secs: float = 15.0


class TelegramConfig(BaseModel):
    """Telegram bot credentials and legacy default chats."""

    enabled: bool = False
    bot_token: SecretStr = SecretStr("")
    chat_id: str = ""
    group_id: str = ""
    api_base: str = "https://api.telegram.org"


class EmailConfig(BaseModel):
    """SMTP delivery configuration."""

    enabled: bool = False
    smtp_host: str = ""
    smtp_port: int = 587
    username: str = ""
    password: SecretStr = SecretStr("")
    from_address: str = ""
    recipients: list[str] = []
    use_tls: bool = True


class AlertsConfig(BaseModel):
    """Alert dispatch configuration."""

    send_timeout_secs: float = 10.0
    context_preview_chars: int = 1200
    telegram: TelegramConfig = TelegramConfig()
    email: EmailConfig = EmailConfig()


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"


class Settings(BaseModel):
    """Root settings container."""

    search: SearchConfig = SearchConfig()
    scan: ScanConfig = ScanConfig()
    database: DatabaseConfig = DatabaseConfig()
    alerts: AlertsConfig = AlertsConfig()
    logging: LoggingConfig = LoggingConfig()


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.

    Returns:
        Parsed Settings instance.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    _settings = Settings(**data)
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
