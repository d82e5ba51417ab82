from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

import structlog

from media_watcher.alerts import AlertSink, SystemLog
from media_watcher.errors import PersistenceError, RemoteAPIError, TransportError
from media_watcher.models import GroupSnapshot, TrackingMode, UserGroup
from media_watcher.store import GROUP_STATE_KEY, SnapshotStore

logger = structlog.get_logger(__name__)


class GroupDirectory(Protocol):
    async def list_user_groups(self) -> list[UserGroup]: ...


@dataclass
class GroupCycleResult:
    changes: list[str] = field(default_factory=list)
    baseline_captured: bool = False
    persist_error: str | None = None
    error: str | None = None


def diff_groups(prev: dict[str, UserGroup], current: dict[str, UserGroup]) -> list[str]:
    """
    Structural diff keyed by group id. Member lists are compared as sets;
    the order of the returned descriptions carries no meaning.
    """
    changes: list[str] = []
    for group_id, cur in current.items():
        old = prev.get(group_id)
        if old is None:
            changes.append(f"group added: {cur.name}")
            continue
        if old.name != cur.name:
            changes.append(f"group renamed: {old.name} → {cur.name}")
        if set(old.members) != set(cur.members):
            changes.append(f"membership changed in group: {cur.name}")

    for group_id, old in prev.items():
        if group_id not in current:
            changes.append(f"group removed: {old.name}")
    return changes


async def process_user_groups(
    client: GroupDirectory,
    snapshot: GroupSnapshot,
    *,
    store: SnapshotStore,
    alerts: AlertSink,
    system_log: SystemLog,
) -> GroupCycleResult:
    result = GroupCycleResult()

    try:
        groups = await client.list_user_groups()
    except (TransportError, RemoteAPIError) as exc:
        # A failed baseline fetch leaves the mode alone, so the next cycle is still silent.
        logger.error("Failed to fetch user groups", error=str(exc), mode=snapshot.mode.value)
        result.error = str(exc)
        return result

    current = {group.id: group for group in groups}

    if snapshot.mode is TrackingMode.BASELINE:
        snapshot.replace(current)
        snapshot.mode = TrackingMode.STEADY
        result.baseline_captured = True
        try:
            store.save(GROUP_STATE_KEY, snapshot.to_json())
        except PersistenceError as exc:
            logger.error("Failed to save user group baseline", error=str(exc))
            result.persist_error = str(exc)
        else:
            logger.info("User group baseline captured; no notifications sent", groups=len(current))
        return result

    changes = diff_groups(snapshot.groups, current)
    if not changes:
        return result

    for change in changes:
        system_log.warning(f"UserGroup change detected: {change}")
        await alerts.notify(f"User group change: {change}")
        logger.warning("User group change", change=change)
    result.changes = changes

    # Replaced wholesale so ids that disappeared cannot linger.
    snapshot.replace(current)
    try:
        store.save(GROUP_STATE_KEY, snapshot.to_json())
    except PersistenceError as exc:
        logger.error("Failed to save user group state", error=str(exc))
        result.persist_error = str(exc)
    return result


def load_group_snapshot(store: SnapshotStore) -> GroupSnapshot:
    """A missing or unreadable snapshot puts the detector in baseline mode."""
    try:
        raw = store.load(GROUP_STATE_KEY)
    except PersistenceError as exc:
        logger.warning("Failed to load user group state; capturing a new baseline", error=str(exc))
        return GroupSnapshot(mode=TrackingMode.BASELINE)

    if raw is None:
        logger.info("No user group state found; the first check captures a baseline without notifications")
        return GroupSnapshot(mode=TrackingMode.BASELINE)

    try:
        snapshot = GroupSnapshot.from_json(raw, mode=TrackingMode.STEADY)
    except ValueError as exc:
        logger.warning("Unreadable user group state; capturing a new baseline", error=str(exc))
        return GroupSnapshot(mode=TrackingMode.BASELINE)

    logger.info("User group state loaded", groups=len(snapshot.groups))
    return snapshot
