"""Process-wide keyed registries guarded by an asyncio lock.

SessionRegistry holds one handle per user (e.g. a Matrix client) and
TaskRegistry tracks the per-event pipeline tasks so they can be listed or
cancelled. Entries go in when work is scheduled and come out on completion
or explicit release.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Generic, Hashable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class KeyedRegistry(Generic[K, V]):
    def __init__(self):
        self._items: Dict[K, V] = {}
        self._lock = asyncio.Lock()

    async def register(self, key: K, value: V) -> Optional[V]:
        """Store `value` under `key`, returning whatever it replaced."""
        async with self._lock:
            previous = self._items.get(key)
            self._items[key] = value
            return previous

    async def release(self, key: K) -> Optional[V]:
        async with self._lock:
            return self._items.pop(key, None)

    async def get(self, key: K) -> Optional[V]:
        async with self._lock:
            return self._items.get(key)

    async def keys(self) -> List[K]:
        async with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        return len(self._items)


class SessionRegistry(KeyedRegistry[int, Any]):
    """user_id -> live session handle."""

    async def release(self, key: int) -> Optional[Any]:
        handle = await super().release(key)
        if handle is not None:
            close = getattr(handle, "close", None)
            if close is not None:
                result = close()
                if asyncio.iscoroutine(result):
                    await result
            logger.debug("Released session for user %s", key)
        return handle


class TaskRegistry(KeyedRegistry[tuple, asyncio.Task]):
    """(user_id, event_id) -> in-flight pipeline task."""
