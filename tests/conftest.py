from __future__ import annotations

from typing import Iterable

import pytest

from media_watcher.models import MediaChannel, MediaStatus, UserGroup
from media_watcher.store import SnapshotStore


class RecordingAlertSink:
    def __init__(self) -> None:
        self.texts: list[str] = []

    async def notify(self, text: str) -> bool:
        self.texts.append(text)
        return True


class RecordingSystemLog:
    def __init__(self) -> None:
        self.lines: list[tuple[str, str]] = []

    def info(self, text: str) -> None:
        self.lines.append(("info", text))

    def warning(self, text: str) -> None:
        self.lines.append(("warning", text))


class FakeZabbix:
    """In-memory stand-in for ZabbixClient."""

    def __init__(
        self,
        channels: Iterable[MediaChannel] = (),
        groups: Iterable[UserGroup] = (),
    ) -> None:
        self.channels = list(channels)
        self.groups = list(groups)
        self.list_error: Exception | None = None
        self.enable_error: Exception | None = None
        self.group_error: Exception | None = None
        self.enable_calls: list[str] = []
        self.names_seen: list[list[str]] = []

    async def list_media_types(self, names: Iterable[str] = ()) -> list[MediaChannel]:
        self.names_seen.append(list(names))
        if self.list_error is not None:
            raise self.list_error
        return list(self.channels)

    async def enable_media_type(self, media_type_id: str) -> None:
        self.enable_calls.append(media_type_id)
        if self.enable_error is not None:
            raise self.enable_error
        self.channels = [
            MediaChannel(c.id, c.name, MediaStatus.ENABLED) if c.id == media_type_id else c for c in self.channels
        ]

    async def list_user_groups(self) -> list[UserGroup]:
        if self.group_error is not None:
            raise self.group_error
        return list(self.groups)


@pytest.fixture()
def store(tmp_path) -> SnapshotStore:
    return SnapshotStore(tmp_path / "state")


@pytest.fixture()
def sink() -> RecordingAlertSink:
    return RecordingAlertSink()


@pytest.fixture()
def system_log() -> RecordingSystemLog:
    return RecordingSystemLog()


@pytest.fixture()
def zabbix() -> FakeZabbix:
    return FakeZabbix()
