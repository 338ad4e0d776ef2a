# magnum/services/user_service.py
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from ..database.models import MinerState, User
from ..utils.config import Config
from .user_cache import UserCache

logger = logging.getLogger(__name__)


class UserService:
    """First-contact user bootstrap; the engines never create users themselves."""

    def __init__(self, users, cache: UserCache, config: Config, clock: Callable[[], float] = time.time):
        self.users = users
        self.cache = cache
        self.config = config
        self._clock = clock

    def new_user(self, user_id: int, username: str = "", first_name: str = "") -> User:
        now = int(self._clock())
        return User(
            id=int(user_id),
            username=username or "",
            first_name=first_name or "",
            magnum_coins=float(self.config.new_user_magnum_coins),
            stars=float(self.config.new_user_stars),
            miner=MinerState(active=False, total_earned=0.0, last_reward=0, level=1, efficiency=1.0),
            created=now,
            last_seen=now,
        )

    async def get_or_create(self, user_id: int, username: str = "", first_name: str = "") -> User:
        user = await self.cache.get_user(user_id)
        if user is not None:
            return user

        stored = await self.users.create_user(self.new_user(user_id, username, first_name))
        self.cache.invalidate(user_id)
        logger.info(f"Registered user {user_id} ({username or first_name or 'no name'})")
        return stored

    async def get_user(self, user_id: int) -> Optional[User]:
        return await self.cache.get_user(user_id)
