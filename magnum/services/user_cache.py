# magnum/services/user_cache.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from ..database.models import User

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    user: User
    expires_at: float


class UserCache:
    """
    Read-through user cache with a TTL.

    Never written back to the store. ``invalidate`` drops the entry and bumps
    the key's generation; a fill that started before the bump is discarded.
    """

    def __init__(self, users, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.users = users
        self.ttl = float(ttl_seconds)
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._generations: Dict[str, int] = {}
        self._fills: Dict[str, int] = {}
        self._stats = {"hits": 0, "misses": 0, "invalidations": 0, "stale_fills": 0}

    @staticmethod
    def _key(user_id: int) -> str:
        return str(user_id)

    def get_cached(self, user_id: int) -> Optional[User]:
        entry = self._entries.get(self._key(user_id))
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            self._entries.pop(self._key(user_id), None)
            return None
        return entry.user

    def set(self, user: User) -> None:
        self._entries[self._key(user.id)] = _Entry(user, self._clock() + self.ttl)

    async def get_user(self, user_id: int) -> Optional[User]:
        cached = self.get_cached(user_id)
        if cached is not None:
            self._stats["hits"] += 1
            return cached

        self._stats["misses"] += 1
        key = self._key(user_id)
        generation = self._generations.get(key, 0)
        self._fills[key] = self._fills.get(key, 0) + 1
        try:
            user = await self.users.get_user(user_id)
        finally:
            self._fills[key] -= 1
            if not self._fills[key]:
                del self._fills[key]
        if user is None:
            return None

        if self._generations.get(key, 0) == generation:
            self.set(user)
        else:
            self._stats["stale_fills"] += 1
            logger.debug(f"Discarded stale cache fill for user {user_id}")
        return user

    def invalidate(self, user_id: int) -> None:
        key = self._key(user_id)
        self._entries.pop(key, None)
        self._generations[key] = self._generations.get(key, 0) + 1
        self._stats["invalidations"] += 1

    def cleanup(self) -> int:
        """Drop expired entries, return how many were removed"""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for k in expired:
            del self._entries[k]
        # a generation only matters to a fill that is still running
        for k in [k for k in self._generations if k not in self._fills]:
            del self._generations[k]
        if expired:
            logger.debug(f"User cache cleanup removed {len(expired)} entries")
        return len(expired)

    def stats(self) -> dict:
        return {"size": len(self._entries), "ttl": self.ttl, "generations": len(self._generations), **self._stats}
