from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class MediaStatus(str, Enum):
    ENABLED = "0"
    DISABLED = "1"

    @classmethod
    def from_api(cls, value: Any) -> "MediaStatus":
        # Zabbix only knows 0/1; anything unexpected is left alone as enabled.
        return cls.DISABLED if str(value).strip() == cls.DISABLED.value else cls.ENABLED


@dataclass(frozen=True)
class MediaChannel:
    id: str
    name: str
    status: MediaStatus

    @property
    def disabled(self) -> bool:
        return self.status is MediaStatus.DISABLED


@dataclass(frozen=True)
class UserGroup:
    id: str
    name: str
    members: frozenset[str] = frozenset()

    def to_json(self) -> dict[str, Any]:
        return {"usrgrpid": self.id, "name": self.name, "users": sorted(self.members)}

    @classmethod
    def from_json(cls, group_id: str, raw: Any) -> "UserGroup":
        if not isinstance(raw, dict):
            raise ValueError(f"group {group_id!r} is not a mapping")
        users = raw.get("users") or []
        if not isinstance(users, list):
            raise ValueError(f"group {group_id!r} users is not a list")
        return cls(
            id=str(raw.get("usrgrpid") or group_id),
            name=str(raw.get("name") or ""),
            members=frozenset(str(u) for u in users),
        )


# Go's time.Time marshals 1 to 9 fractional digits; older fromisoformat wants exactly 3 or 6.
_FRACTION_RE = re.compile(r"\.(\d+)")


def _six_digit_fraction(match: re.Match) -> str:
    return "." + match.group(1)[:6].ljust(6, "0")


def parse_timestamp(value: Any) -> datetime:
    s = str(value or "").strip()
    if not s:
        raise ValueError("empty timestamp")
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    s = _FRACTION_RE.sub(_six_digit_fraction, s, count=1)
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class MediaWatchState:
    """
    Media type id -> when it was first seen disabled.

    An id is present only while the media type is disabled and has been neither
    seen enabled again nor re-enabled by the watcher.
    """

    first_seen: dict[str, datetime] = field(default_factory=dict)

    def __contains__(self, media_id: object) -> bool:
        return media_id in self.first_seen

    def __len__(self) -> int:
        return len(self.first_seen)

    def to_json(self) -> dict[str, str]:
        return {media_id: ts.isoformat() for media_id, ts in sorted(self.first_seen.items())}

    @classmethod
    def from_json(cls, raw: Any) -> "MediaWatchState":
        """Best-effort decode; entries with unreadable timestamps are dropped."""
        if not isinstance(raw, dict):
            return cls()
        first_seen: dict[str, datetime] = {}
        for media_id, value in raw.items():
            if not isinstance(media_id, str) or not media_id:
                continue
            try:
                first_seen[media_id] = parse_timestamp(value)
            except ValueError:
                logger.warning("Dropping unreadable media state entry", media_id=media_id, value=value)
        return cls(first_seen=first_seen)


class TrackingMode(Enum):
    # No trusted snapshot yet: the next observation becomes ground truth silently.
    BASELINE = "baseline"
    STEADY = "steady"


@dataclass
class GroupSnapshot:
    groups: dict[str, UserGroup] = field(default_factory=dict)
    mode: TrackingMode = TrackingMode.STEADY

    def replace(self, groups: dict[str, UserGroup]) -> None:
        self.groups = dict(groups)

    def to_json(self) -> dict[str, dict[str, Any]]:
        return {group_id: group.to_json() for group_id, group in self.groups.items()}

    @classmethod
    def from_json(cls, raw: Any, *, mode: TrackingMode = TrackingMode.STEADY) -> "GroupSnapshot":
        if not isinstance(raw, dict):
            raise ValueError("group snapshot must be a mapping")
        groups = {str(group_id): UserGroup.from_json(str(group_id), item) for group_id, item in raw.items()}
        return cls(groups=groups, mode=mode)
