"""Directory of extracted audio files with age-based cleanup."""
from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Optional

from starlette.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)

AUDIO_EXT = "mp3"
RETENTION_SECONDS = 60 * 60
SWEEP_INTERVAL_SECONDS = 30 * 60


class AssetStore:
    """Flat directory of `<id>.mp3` files; disk presence and mtime are the only state."""

    def __init__(self, directory: str, ext: str = AUDIO_EXT) -> None:
        self.directory = directory
        self.ext = ext

    def ensure_directory(self) -> None:
        os.makedirs(self.directory, exist_ok=True)

    def filename(self, asset_id: str) -> str:
        return f"{asset_id}.{self.ext}"

    def resolve_path(self, asset_id: str) -> str:
        return os.path.join(self.directory, self.filename(asset_id))

    def exists(self, asset_id: str) -> bool:
        return os.path.isfile(self.resolve_path(asset_id))

    def delete(self, asset_id: str) -> None:
        """Remove the asset file; a missing file is not an error."""
        try:
            os.remove(self.resolve_path(asset_id))
        except FileNotFoundError:
            pass

    def sweep(self, max_age: float = RETENTION_SECONDS, now: Optional[float] = None) -> int:
        """Delete every entry older than max_age seconds. Returns the number removed.

        Best effort: entries that fail to stat or delete are skipped.
        """
        cutoff = (time.time() if now is None else now) - max_age
        try:
            names = os.listdir(self.directory)
        except OSError:
            return 0

        removed = 0
        for name in names:
            path = os.path.join(self.directory, name)
            try:
                if os.stat(path).st_mtime < cutoff:
                    os.remove(path)
                    removed += 1
            except OSError:
                continue
        if removed:
            logger.info("Removed %d expired audio file(s) from %s", removed, self.directory)
        return removed


class AssetSweeper:
    """Repeating cleanup task owned by the application lifespan."""

    def __init__(
        self,
        store: AssetStore,
        interval: float = SWEEP_INTERVAL_SECONDS,
        max_age: float = RETENTION_SECONDS,
    ) -> None:
        self._store = store
        self._interval = interval
        self._max_age = max_age
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Audio sweeper started (every %ss, max age %ss)", self._interval, self._max_age)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Audio sweeper stopped")

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await run_in_threadpool(self._store.sweep, self._max_age)
            except Exception:
                logger.exception("Audio sweep failed")
