from __future__ import annotations

import logging
import logging.handlers
import os
from dataclasses import dataclass
from typing import Protocol

import httpx
import structlog

logger = structlog.get_logger(__name__)

SYSLOG_TAG = "zabbix-media-watcher"


class AlertSink(Protocol):
    async def notify(self, text: str) -> bool: ...


class SystemLog(Protocol):
    def info(self, text: str) -> None: ...

    def warning(self, text: str) -> None: ...


@dataclass(frozen=True)
class WebhookConfig:
    url: str
    timeout_seconds: float = 30.0


def redact_webhook_url(text: str, url: str) -> str:
    # Incoming webhook URLs embed their secret in the path.
    return text.replace(url, "<webhook>") if url else text


async def send_webhook_message(client: httpx.AsyncClient, config: WebhookConfig, text: str) -> tuple[bool, str]:
    try:
        resp = await client.post(config.url, json={"text": text}, timeout=config.timeout_seconds)
    except Exception as e:
        return False, redact_webhook_url(f"{type(e).__name__}: {e}", config.url)
    if resp.status_code != 200:
        return False, f"HTTP {resp.status_code}: {resp.text[:300]}"
    return True, ""


class WebhookAlertSink:
    def __init__(self, client: httpx.AsyncClient, config: WebhookConfig) -> None:
        self.client = client
        self.config = config

    async def notify(self, text: str) -> bool:
        ok, error = await send_webhook_message(self.client, self.config, text)
        if not ok:
            logger.error("Failed to deliver webhook notification", error=error)
        return ok


class NullAlertSink:
    async def notify(self, text: str) -> bool:
        logger.debug("Webhook not configured; notification skipped", text=text)
        return True


def build_alert_sink(client: httpx.AsyncClient, webhook_url: str | None, timeout_seconds: float = 30.0) -> AlertSink:
    if webhook_url:
        return WebhookAlertSink(client, WebhookConfig(url=webhook_url, timeout_seconds=timeout_seconds))
    logger.warning("MM_WEBHOOK_URL not set; alerts will only be logged")
    return NullAlertSink()


class SyslogSystemLog:
    def __init__(self, handler: logging.Handler, tag: str = SYSLOG_TAG) -> None:
        handler.setFormatter(logging.Formatter(f"{tag}: %(message)s"))
        self._logger = logging.getLogger(f"media_watcher.syslog.{tag}")
        self._logger.propagate = False
        self._logger.setLevel(logging.INFO)
        self._logger.handlers = [handler]

    def info(self, text: str) -> None:
        self._logger.info(text)

    def warning(self, text: str) -> None:
        self._logger.warning(text)


class NullSystemLog:
    def info(self, text: str) -> None:
        return None

    def warning(self, text: str) -> None:
        return None


def _parse_syslog_address(address: str) -> str | tuple[str, int]:
    if address.startswith("/"):
        return address
    host, sep, port = address.rpartition(":")
    if sep and host and port.isdigit():
        return host, int(port)
    return address, logging.handlers.SYSLOG_UDP_PORT


def open_system_log(*, enabled: bool, address: str, tag: str = SYSLOG_TAG) -> SystemLog:
    if not enabled:
        return NullSystemLog()
    if address.startswith("/") and not os.path.exists(address):
        logger.warning("Syslog socket not found; continuing without it", address=address)
        return NullSystemLog()
    try:
        handler = logging.handlers.SysLogHandler(
            address=_parse_syslog_address(address),
            facility=logging.handlers.SysLogHandler.LOG_LOCAL0,
        )
    except OSError as exc:
        logger.warning("Could not connect to syslog; continuing without it", address=address, error=str(exc))
        return NullSystemLog()
    return SyslogSystemLog(handler, tag=tag)
