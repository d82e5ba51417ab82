from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import structlog

from media_watcher.errors import PersistenceError

logger = structlog.get_logger(__name__)

MEDIA_STATE_KEY = "media_state.json"
GROUP_STATE_KEY = "usergroup_state.json"


class SnapshotStore:
    """JSON blobs on disk, one file per key, replaced atomically on save."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        if not key or "/" in key or key in {".", ".."}:
            raise ValueError(f"Invalid snapshot key: {key!r}")
        return self.directory / key

    def exists(self, key: str) -> bool:
        return self.path_for(key).exists()

    def load(self, key: str) -> Any | None:
        """
        Returns the decoded blob, or None when the key has never been saved.
        An empty file decodes as {} (a snapshot that exists but holds nothing).
        """
        path = self.path_for(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise PersistenceError(f"Failed to read {path}: {exc}") from exc

        if not raw.strip():
            return {}
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise PersistenceError(f"Corrupt snapshot {path}: {exc}") from exc

    def save(self, key: str, blob: Any) -> None:
        path = self.path_for(key)
        tmp = path.with_name(f"{path.name}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(blob, ensure_ascii=False, sort_keys=True, indent=2), encoding="utf-8")
            tmp.replace(path)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Failed to write {path}: {exc}") from exc
        logger.info("State saved", path=str(path))
