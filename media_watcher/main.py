from __future__ import annotations

import argparse
import asyncio
import logging
import os
import time
from datetime import datetime, timezone

import httpx
import structlog
from dotenv import find_dotenv, load_dotenv

from media_watcher.alerts import build_alert_sink, open_system_log
from media_watcher.config import WatcherConfig, load_config
from media_watcher.errors import ConfigurationError
from media_watcher.groups import load_group_snapshot, process_user_groups
from media_watcher.media import load_media_state, process_media_types
from media_watcher.store import SnapshotStore
from media_watcher.zabbix_client import ZabbixClient, ZabbixConfig

logger = structlog.get_logger("media_watcher")


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    numeric_level = getattr(logging, str(level).upper(), logging.INFO)
    renderer = structlog.dev.ConsoleRenderer() if fmt == "console" else structlog.processors.JSONRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    # The API token travels in request bodies; keep the HTTP client libraries quiet.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def run_loop(
    config: WatcherConfig,
    once: bool = False,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    store = SnapshotStore(config.state_dir)
    media_state = load_media_state(store)
    group_snapshot = load_group_snapshot(store)
    system_log = open_system_log(enabled=config.syslog_enabled, address=config.syslog_address)

    interval_seconds = config.check_interval.total_seconds()

    async with httpx.AsyncClient(timeout=config.http_timeout_seconds, transport=transport) as http_client:
        zabbix = ZabbixClient(
            http_client,
            ZabbixConfig(
                base_url=config.zabbix_api_url,
                token=config.zabbix_api_token,
                timeout_seconds=config.http_timeout_seconds,
            ),
        )
        alerts = build_alert_sink(http_client, config.mattermost_webhook_url, config.http_timeout_seconds)

        while True:
            start = time.monotonic()
            logger.info("Cycle started", group_mode=group_snapshot.mode.value)

            try:
                media_result = await process_media_types(
                    zabbix,
                    media_state,
                    now=_utcnow(),
                    off_duration=config.off_duration,
                    media_names=config.media_names,
                    store=store,
                    alerts=alerts,
                    system_log=system_log,
                )
                logger.info(
                    "Media check complete",
                    alerts=len(media_result.alerts),
                    remediated=media_result.remediated,
                    tracked=len(media_state),
                )
            except Exception:
                logger.exception("Media check crashed; continuing with next check")

            try:
                group_result = await process_user_groups(
                    zabbix,
                    group_snapshot,
                    store=store,
                    alerts=alerts,
                    system_log=system_log,
                )
                logger.info(
                    "User group check complete",
                    changes=len(group_result.changes),
                    baseline_captured=group_result.baseline_captured,
                )
            except Exception:
                logger.exception("User group check crashed; continuing with next check")

            elapsed = time.monotonic() - start
            if once:
                logger.info("Single cycle complete", elapsed_seconds=round(elapsed, 3))
                return 0

            logger.info(
                "Cycle complete",
                elapsed_seconds=round(elapsed, 3),
                sleep_seconds=round(interval_seconds, 3),
            )
            await asyncio.sleep(interval_seconds)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Zabbix media type and user group watcher")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to an optional YAML config (environment variables take precedence)",
    )
    parser.add_argument("--once", action="store_true", help="Run one check cycle and exit")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (INFO, WARNING, ...); defaults to LOG_LEVEL or the config value",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        choices=["json", "console"],
        help="Log renderer; defaults to LOG_FORMAT or json",
    )
    args = parser.parse_args(argv)

    # .env is looked up from the working directory, not from the installed package.
    load_dotenv(find_dotenv(usecwd=True))
    log_format = args.log_format or os.getenv("LOG_FORMAT", "json")
    configure_logging(args.log_level or os.getenv("LOG_LEVEL", "INFO"), log_format)

    try:
        config = load_config(args.config)
    except ConfigurationError as exc:
        logger.error("Failed to load configuration", error=str(exc))
        return 2

    if args.log_level is None:
        configure_logging(config.log_level, log_format)

    logger.info(
        "Configuration loaded",
        api_url=config.zabbix_api_url,
        check_interval_minutes=config.check_interval_minutes,
        off_duration_minutes=config.off_duration_minutes,
        media_names=config.media_names,
        state_dir=config.state_dir,
        webhook_configured=bool(config.mattermost_webhook_url),
    )

    try:
        return asyncio.run(run_loop(config, once=bool(args.once)))
    except KeyboardInterrupt:
        logger.info("Interrupted; exiting")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
