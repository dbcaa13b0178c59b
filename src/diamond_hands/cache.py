from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Dict, Optional

import aiofiles

from .project_constants import CACHE_DEBOUNCE_S, CACHE_FILENAME

log = logging.getLogger(__name__)


class PersistentKeyValueCache:
    """
    JSON-serializable key/value store mirrored to a single file.

    The whole mapping is rewritten on every flush; set() only schedules a flush
    after `debounce_s` of quiet. No TTL, no eviction, last writer wins.
    Writes still pending when the process dies are lost.
    """

    def __init__(
        self,
        cache_dir: str,
        filename: str = CACHE_FILENAME,
        debounce_s: float = CACHE_DEBOUNCE_S,
    ) -> None:
        self.cache_dir = cache_dir
        self.path = os.path.join(cache_dir, filename)
        self.debounce_s = debounce_s
        self._data: Dict[str, Any] = {}
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._write_task: Optional[asyncio.Task] = None
        self._dirty = False

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    async def init(self) -> None:
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            os.makedirs(self.cache_dir, exist_ok=True)
            try:
                async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                    raw = await f.read()
                loaded = json.loads(raw) if raw.strip() else {}
                if not isinstance(loaded, dict):
                    raise ValueError("cache file does not hold a JSON object")
                self._data = loaded
            except FileNotFoundError:
                self._data = {}
            except ValueError as e:
                log.error("Cache file %s unreadable, starting empty: %s", self.path, e)
                self._data = {}
            log.debug("Cache loaded: %d entries from %s", len(self._data), self.path)
            self._initialized = True

    async def get(self, key: str) -> Any:
        await self.init()
        return self._data.get(key)

    async def set(self, key: str, value: Any) -> None:
        await self.init()
        self._data[key] = value
        self._dirty = True
        self._schedule_write()

    def _schedule_write(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce_s, self._start_write)

    def _start_write(self) -> None:
        self._timer = None
        self._write_task = asyncio.ensure_future(self._write())

    async def _write(self) -> None:
        async with self._write_lock:
            if not self._dirty:
                return
            self._dirty = False
            # Snapshot before the first await so concurrent sets land in the next write.
            payload = json.dumps(self._data)
            tmp_path = self.path + ".tmp"
            try:
                async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                    await f.write(payload)
                os.replace(tmp_path, self.path)
                log.debug("Cache written: %d entries", len(self._data))
            except OSError as e:
                self._dirty = True
                log.error("Cache write error for %s: %s", self.path, e)

    async def flush(self) -> None:
        """Write pending changes now instead of waiting for the debounce timer."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        await self._write()

    async def aclose(self) -> None:
        if self._write_task is not None:
            await self._write_task
            self._write_task = None
        await self.flush()
