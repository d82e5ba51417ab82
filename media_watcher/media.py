"""
Media type remediation.

Each cycle compares the watched media types against the watch-state:
a media type seen disabled is tracked from that moment, re-enabled once it has
stayed disabled for `off_duration`, and forgotten again as soon as it is seen
enabled. Operators get a webhook message at every transition and a reminder on
every cycle once a media type has been disabled for REMINDER_AFTER.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Protocol

import structlog

from media_watcher.alerts import AlertSink, SystemLog
from media_watcher.errors import PersistenceError, RemoteAPIError, TransportError
from media_watcher.models import MediaChannel, MediaWatchState
from media_watcher.store import MEDIA_STATE_KEY, SnapshotStore

logger = structlog.get_logger(__name__)

# Fixed; not part of the configuration surface.
REMINDER_AFTER = timedelta(minutes=30)


class MediaDirectory(Protocol):
    async def list_media_types(self, names: Iterable[str] = ()) -> list[MediaChannel]: ...

    async def enable_media_type(self, media_type_id: str) -> None: ...


@dataclass
class MediaCycleResult:
    alerts: list[str] = field(default_factory=list)
    remediated: list[str] = field(default_factory=list)
    remediation_failed: list[str] = field(default_factory=list)
    state_changed: bool = False
    found_disabled: bool = False
    persist_error: str | None = None
    error: str | None = None


def format_duration(delta: timedelta) -> str:
    minutes = max(0, int(round(delta.total_seconds() / 60.0)))
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes:02}m"
    return f"{minutes}m"


def build_disabled_message(name: str, remaining: timedelta) -> str:
    return f"Disabled media type detected: {name}\nWill be re-enabled automatically in: {format_duration(remaining)}"


def build_reminder_message(name: str, elapsed: timedelta, remaining: timedelta) -> str:
    return (
        f"Media type still disabled: {name}\n"
        f"Disabled for: {format_duration(elapsed)}\n"
        f"Automatic re-enable in: {format_duration(remaining)}"
    )


def build_remediated_message(name: str) -> str:
    return f"Media type {name} was re-enabled automatically."


def build_remediation_failed_message(name: str, error: Exception) -> str:
    return f"Failed to re-enable media type: {name}\nError: {error}"


def build_restored_message(name: str) -> str:
    return f"Media type restored: {name}"


async def process_media_types(
    client: MediaDirectory,
    state: MediaWatchState,
    *,
    now: datetime,
    off_duration: timedelta,
    media_names: Iterable[str],
    store: SnapshotStore,
    alerts: AlertSink,
    system_log: SystemLog,
) -> MediaCycleResult:
    result = MediaCycleResult()

    try:
        media_types = await client.list_media_types(list(media_names))
    except (TransportError, RemoteAPIError) as exc:
        logger.error("Failed to fetch media types", error=str(exc))
        result.error = str(exc)
        return result

    if not media_types:
        logger.warning("No media types received; nothing to process")
        return result

    async def alert(text: str) -> None:
        result.alerts.append(text)
        await alerts.notify(text)

    for media in media_types:
        log = logger.bind(media_id=media.id, media_name=media.name, status=media.status.name)
        log.info("Checking media type")

        if not media.disabled:
            if media.id in state:
                del state.first_seen[media.id]
                result.state_changed = True
                log.info("Media type enabled again; removed from state")
                await alert(build_restored_message(media.name))
            continue

        result.found_disabled = True
        first_seen = state.first_seen.get(media.id)
        if first_seen is None:
            state.first_seen[media.id] = now
            result.state_changed = True
            log.warning("Disabled media type detected", action="state_recorded")
            system_log.warning(f"Disabled media type detected: id={media.id} name={media.name}")
            await alert(build_disabled_message(media.name, off_duration))
            continue

        elapsed = now - first_seen
        log = log.bind(disabled_for_seconds=int(elapsed.total_seconds()))
        if elapsed >= off_duration:
            log.warning("Media type disabled longer than allowed")
            system_log.warning(
                f"Media type id={media.id} name={media.name} disabled for {format_duration(elapsed)}; "
                f"threshold {format_duration(off_duration)} exceeded"
            )
            try:
                await client.enable_media_type(media.id)
            except (TransportError, RemoteAPIError) as exc:
                log.error("Failed to re-enable media type", error=str(exc))
                result.remediation_failed.append(media.id)
                await alert(build_remediation_failed_message(media.name, exc))
                continue

            del state.first_seen[media.id]
            result.state_changed = True
            result.remediated.append(media.id)
            log.info("Media type re-enabled")
            system_log.info(f"Watcher re-enabled media type id={media.id} name={media.name}")
            await alert(build_remediated_message(media.name))
        else:
            log.info("Media type disabled but still within the allowed time")
            # Repeats on every cycle past the mark; there is no "last reminder" bookkeeping.
            if elapsed >= REMINDER_AFTER:
                await alert(build_reminder_message(media.name, elapsed, off_duration - elapsed))

    if not result.found_disabled:
        logger.info("All watched media types are enabled")

    if result.state_changed:
        try:
            store.save(MEDIA_STATE_KEY, state.to_json())
        except PersistenceError as exc:
            logger.error("Failed to save media state", error=str(exc))
            result.persist_error = str(exc)

    return result


def load_media_state(store: SnapshotStore) -> MediaWatchState:
    """Absent or unreadable state starts empty."""
    try:
        raw = store.load(MEDIA_STATE_KEY)
    except PersistenceError as exc:
        logger.warning("Failed to load media state; starting empty", error=str(exc))
        return MediaWatchState()
    state = MediaWatchState.from_json(raw) if raw is not None else MediaWatchState()
    logger.info("Media state loaded", entries=len(state))
    return state
