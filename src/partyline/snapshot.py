from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict

from .durations import _now_ms
from .errors import PersistenceError
from .lines import LineDirectory

logger = logging.getLogger(__name__)

DEFAULT_SAVE_INTERVAL_S = 15 * 60


class SnapshotStore:
    """Reads and writes the membership snapshot as a JSON document."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> Dict[str, Any] | None:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.info("No preexisting state found to load at %s", self.path)
            return None
        except (OSError, ValueError):
            logger.exception("unreadable state file %s, starting empty", self.path)
            return None
        if not isinstance(data, dict):
            logger.error("state file %s does not hold an object, starting empty", self.path)
            return None
        return data

    def save(self, snapshot: Dict[str, Any]) -> None:
        path = self.path.expanduser()
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        content = json.dumps(snapshot, indent=2, sort_keys=True)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, path)
        except OSError as exc:
            raise PersistenceError(f"failed to write state to {path}") from exc


def load_directory(store: SnapshotStore, *, now_func=_now_ms) -> LineDirectory:
    snapshot = store.load()
    try:
        return LineDirectory.from_snapshot(snapshot, now_func=now_func)
    except (KeyError, TypeError, ValueError):
        logger.exception("invalid state in %s, starting empty", store.path)
        return LineDirectory(now_func=now_func)


class StateSaver:
    """Writes directory snapshots on a timer and once more at shutdown."""

    def __init__(
        self,
        directory: LineDirectory,
        store: SnapshotStore,
        interval_s: float = DEFAULT_SAVE_INTERVAL_S,
    ) -> None:
        self._directory = directory
        self._store = store
        self.interval_s = interval_s
        self._task: asyncio.Task | None = None

    def run(self) -> bool:
        logger.info("saving state...")
        snapshot = self._directory.snapshot()
        try:
            self._store.save(snapshot)
        except PersistenceError:
            logger.exception("error trying to save state")
            return False
        logger.info("state successfully stored to %s", self._store.path)
        return True

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop())

    async def stop(self, *, final_save: bool = True) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if final_save:
            await asyncio.to_thread(self.run)

    async def _loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.interval_s)
                await asyncio.to_thread(self.run)
        except asyncio.CancelledError:
            return
