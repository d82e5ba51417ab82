"""Configuration management for the media watcher."""

from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from media_watcher.errors import ConfigurationError


class WatcherConfig(BaseModel):
    """Runtime configuration, loaded once at startup."""

    # Zabbix API
    zabbix_api_url: str = Field(description="Zabbix frontend base URL (without /api_jsonrpc.php)")
    zabbix_api_token: str = Field(default="", description="Static API token sent with every request")
    http_timeout_seconds: float = Field(default=30.0, gt=0, description="Transport timeout for outbound requests")

    # Media remediation
    check_interval_minutes: int = Field(gt=0, description="Minutes between poll cycles")
    off_duration_minutes: int = Field(ge=0, description="Minutes a media type may stay disabled")
    media_names: list[str] = Field(default_factory=list, description="Media type names to watch (empty = all)")

    # Output settings
    state_dir: str = Field(default=".", description="Directory holding the state snapshots")
    mattermost_webhook_url: Optional[str] = Field(default=None, description="Incoming webhook for alerts")
    syslog_enabled: bool = Field(default=True, description="Mirror key events to the system log")
    syslog_address: str = Field(default="/dev/log", description="Syslog socket path or host:port")
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("zabbix_api_url")
    @classmethod
    def _strip_url(cls, value: str) -> str:
        cleaned = str(value or "").strip().rstrip("/")
        if not cleaned:
            raise ValueError("ZABBIX_API_URL must not be empty")
        if not cleaned.startswith(("http://", "https://")):
            raise ValueError(f"ZABBIX_API_URL must be an http(s) URL, got {cleaned!r}")
        return cleaned

    @field_validator("media_names", mode="before")
    @classmethod
    def _split_names(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        return [str(v).strip() for v in value if str(v or "").strip()]

    @field_validator("mattermost_webhook_url", mode="before")
    @classmethod
    def _blank_webhook_is_none(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        cleaned = str(value).strip()
        return cleaned or None

    @property
    def check_interval(self) -> timedelta:
        return timedelta(minutes=self.check_interval_minutes)

    @property
    def off_duration(self) -> timedelta:
        return timedelta(minutes=self.off_duration_minutes)


# env var -> config field
ENV_FIELDS = {
    "ZABBIX_API_URL": "zabbix_api_url",
    "ZABBIX_API_TOKEN": "zabbix_api_token",
    "HTTP_TIMEOUT_SECONDS": "http_timeout_seconds",
    "MEDIA_CHECK_INTERVAL": "check_interval_minutes",
    "MEDIA_OFF_DURATION": "off_duration_minutes",
    "MEDIA_NAMES": "media_names",
    "STATE_DIR": "state_dir",
    "MM_WEBHOOK_URL": "mattermost_webhook_url",
    "SYSLOG_ENABLED": "syslog_enabled",
    "SYSLOG_ADDRESS": "syslog_address",
    "LOG_LEVEL": "log_level",
}


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Cannot read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config YAML must be a mapping: {path}")
    return data


def load_config(
    config_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> WatcherConfig:
    """Load configuration from an optional YAML file overridden by environment variables."""
    env = os.environ if environ is None else environ
    if config_path is None:
        config_path = env.get("MEDIA_WATCHER_CONFIG")

    config_data: dict[str, Any] = {}
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        config_data = _read_yaml(path)

    for env_key, field in ENV_FIELDS.items():
        value = env.get(env_key)
        if value is not None:
            config_data[field] = value

    try:
        return WatcherConfig(**config_data)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}" for err in exc.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from exc
