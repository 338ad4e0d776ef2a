# magnum/services/notification_service.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import aiohttp

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send_message(self, chat_id: int, text: str) -> bool:
        ...

    async def close(self) -> None:
        ...


class TelegramNotifier:
    """
    Minimal Telegram Bot API client, only what the economy core needs.
    Docs: https://core.telegram.org/bots/api#sendmessage
    """
    BASE_URL = "https://api.telegram.org"

    def __init__(self, token: str, *, timeout: float = 8.0, parse_mode: str = "HTML"):
        self.token = token.strip()
        self.parse_mode = parse_mode
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def is_enabled(self) -> bool:
        return bool(self.token)

    async def _post(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        url = f"{self.BASE_URL}/bot{self.token}/{method}"
        async with self._session.post(url, json=payload) as resp:
            resp.raise_for_status()
            return await resp.json()

    async def send_message(self, chat_id: int, text: str) -> bool:
        if not self.is_enabled:
            return False

        payload = {
            "chat_id": chat_id,
            "text": text[:4096],
            "parse_mode": self.parse_mode,
            "disable_web_page_preview": True,
        }
        try:
            data = await self._post("sendMessage", payload)
        except Exception as e:
            logger.warning(f"Telegram sendMessage to {chat_id} failed: {e}")
            return False
        return bool(data.get("ok"))

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None


class LogNotifier:
    """Used when no bot token is configured; messages only go to the log."""

    async def send_message(self, chat_id: int, text: str) -> bool:
        logger.info(f"[notify {chat_id}] {text}")
        return True

    async def close(self) -> None:
        return None


@dataclass
class Notification:
    chat_id: int
    text: str


class NotificationDispatcher:
    """
    Hands notifications to a background worker over an asyncio.Queue.
    ``publish`` never blocks and never raises; delivery is best effort.
    """

    def __init__(self, notifier: Notifier, *, max_queue: int = 1000):
        self.notifier = notifier
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self._task: Optional[asyncio.Task] = None
        self.stats = {"published": 0, "delivered": 0, "failed": 0, "dropped": 0}

    def publish(self, chat_id: int, text: str) -> bool:
        try:
            self._queue.put_nowait(Notification(chat_id, text))
        except asyncio.QueueFull:
            self.stats["dropped"] += 1
            logger.warning(f"Notification queue full, dropping message for {chat_id}")
            return False
        self.stats["published"] += 1
        return True

    async def start(self):
        if self._task:
            return
        self._task = asyncio.create_task(self._runner(), name="notification-dispatcher")

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.notifier.close()

    async def drain(self):
        """Deliver everything queued so far in the calling task."""
        while not self._queue.empty():
            await self._deliver(self._queue.get_nowait())
            self._queue.task_done()

    async def _runner(self):
        while True:
            item = await self._queue.get()
            try:
                await self._deliver(item)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("Notification worker failed: %s", e)
            finally:
                self._queue.task_done()

    async def _deliver(self, item: Notification):
        try:
            ok = await self.notifier.send_message(item.chat_id, item.text)
        except Exception as e:
            logger.warning(f"Notification to {item.chat_id} failed: {e}")
            ok = False
        if ok:
            self.stats["delivered"] += 1
        else:
            self.stats["failed"] += 1

    def pending(self) -> int:
        return self._queue.qsize()

    def get_stats(self) -> Dict[str, int]:
        return dict(self.stats, pending=self.pending())

