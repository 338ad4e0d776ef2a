"""
magnum/services/logging_service.py
Admin monitoring log delivered to a Telegram chat
"""

from datetime import datetime
from enum import Enum
from html import escape
from typing import Any, Dict, List, Optional, Union
import logging
import traceback

logger = logging.getLogger(__name__)

Fields = Optional[Union[List[tuple], Dict[str, Any]]]


class LogLevel(Enum):
    """Log level emojis"""
    INFO = "ℹ️"
    SUCCESS = "✅"
    WARNING = "⚠️"
    ERROR = "❌"
    CRITICAL = "🚨"
    DATABASE = "🗄️"
    ECONOMY = "💱"
    MINER = "⛏️"
    SYSTEM = "🔧"


class LogCategory(Enum):
    """Categories for different services"""
    DATABASE = "Database"
    EXCHANGE = "Exchange"
    MINER = "Miner"
    SCHEDULER = "Scheduler"
    SYSTEM = "System"
    MIGRATION = "Data Migration"


class AdminLogger:
    """Formats monitoring events and sends them to the admin chat"""

    MAX_TEXT = 4000
    MAX_FIELDS = 25

    def __init__(self, notifier, admin_chat_id: int, *, clock=datetime.utcnow):
        self.notifier = notifier
        self.admin_chat_id = int(admin_chat_id or 0)
        self._clock = clock

        # Statistics tracking
        self.stats = {
            "logs_sent": 0,
            "logs_failed": 0,
            "logs_suppressed": 0,
            "logs_by_level": {level.name: 0 for level in LogLevel},
            "logs_by_service": {},
            "start_time": clock(),
        }

        # Rate limiting to prevent spam
        self.rate_limit = {
            "messages": [],
            "max_per_minute": 30,
            "similar_message_cache": {},
            "similar_window_s": 10,
        }

    @property
    def is_enabled(self) -> bool:
        return bool(self.admin_chat_id)

    def _should_rate_limit(self, content_hash: str) -> bool:
        """Check if message should be rate limited"""
        now = self._clock()

        self.rate_limit["messages"] = [
            msg_time for msg_time in self.rate_limit["messages"]
            if (now - msg_time).total_seconds() < 60
        ]

        if len(self.rate_limit["messages"]) >= self.rate_limit["max_per_minute"]:
            return True

        # Same message within the similarity window
        last_sent = self.rate_limit["similar_message_cache"].get(content_hash)
        if last_sent and (now - last_sent).total_seconds() < self.rate_limit["similar_window_s"]:
            return True

        self.rate_limit["messages"].append(now)
        self.rate_limit["similar_message_cache"][content_hash] = now
        return False

    def _format(self, title: str, description: str, level: LogLevel, fields: Fields, footer: Optional[str]) -> str:
        lines = [f"{level.value} <b>{escape(title)}</b>"]
        if description:
            lines.append(escape(description[:1500]))

        if fields:
            items = fields.items() if isinstance(fields, dict) else [f[:2] for f in fields if len(f) >= 2]
            lines.append("")
            for i, (name, value) in enumerate(items):
                if i >= self.MAX_FIELDS:
                    break
                value = str(value)[:1024] if value not in (None, "") else "N/A"
                lines.append(f"<b>{escape(str(name)[:256])}:</b> {escape(value)}")

        lines.append("")
        lines.append(f"<i>{escape(footer or 'Magnum Stars Monitor')} • {self._clock().strftime('%H:%M:%S UTC')}</i>")
        return "\n".join(lines)[: self.MAX_TEXT]

    async def _safe_send(self, text: str, level: LogLevel, content_hash: Optional[str] = None) -> bool:
        """Send if an admin chat is configured and rate limiting allows."""
        self.stats["logs_by_level"][level.name] += 1

        if not self.is_enabled:
            return False

        if content_hash and self._should_rate_limit(content_hash):
            logger.debug("Rate limiting admin log message")
            self.stats["logs_suppressed"] += 1
            return False

        try:
            ok = await self.notifier.send_message(self.admin_chat_id, text)
        except Exception as e:
            logger.debug(f"Failed to send admin log: {e}")
            ok = False

        if ok:
            self.stats["logs_sent"] += 1
        else:
            self.stats["logs_failed"] += 1
        return ok

    def _track_service(self, service: str):
        self.stats["logs_by_service"][service] = self.stats["logs_by_service"].get(service, 0) + 1

    # --------------- Generic logging ---------------

    async def log_custom(
        self,
        service: str,
        title: str,
        description: str,
        level: LogLevel = LogLevel.INFO,
        fields: Fields = None,
        footer: Optional[str] = None,
    ) -> bool:
        """Log custom events with flexible formatting"""
        self._track_service(service)
        text = self._format(f"[{service}] {title}", description, level, fields, footer or f"{service} Monitor")
        content_hash = f"custom_{service}_{title}".lower().replace(" ", "_")
        return await self._safe_send(text, level, content_hash)

    async def log_error(self, service: str, error: Exception, context: Optional[str] = None) -> bool:
        """Log errors with context and the traceback tail"""
        self._track_service(service)
        error_type = type(error).__name__
        fields = {
            "Service": service,
            "Error Type": error_type,
            "Error": str(error)[:1000],
        }
        if context:
            fields["Context"] = context[:500]

        tb = traceback.format_exc()
        if tb and tb != "NoneType: None\n":
            fields["Traceback (tail)"] = tb[-800:]

        text = self._format("Service Error", f"Error occurred in {service}", LogLevel.CRITICAL, fields, "Error Monitor")
        return await self._safe_send(text, LogLevel.CRITICAL, f"error_{service}_{error_type}".lower())

    # --------------- Economy events ---------------

    async def log_ledger_failure(self, ledger: str, record: Dict[str, Any], error: Exception) -> bool:
        """A completed balance mutation whose audit record could not be written"""
        return await self.log_custom(
            service=LogCategory.EXCHANGE.value if ledger == "exchange_history" else LogCategory.MINER.value,
            title="Ledger Append Failed",
            description=f"Balance change applied but the {ledger} record was not stored",
            level=LogLevel.ERROR,
            fields={**{k: str(v) for k, v in record.items()}, "Error": f"{type(error).__name__}: {error}"},
        )

    async def log_miner_batch(self, summary: Dict[str, Any]) -> bool:
        level = LogLevel.MINER if not summary.get("errors") else LogLevel.WARNING
        return await self.log_custom(
            service=LogCategory.MINER.value,
            title="Miner Rewards Processed",
            description="Scheduled accrual pass finished",
            level=level,
            fields={
                "Active Miners": summary.get("activeMiners", 0),
                "Paid": summary.get("processedCount", 0),
                "Total Reward": f"{summary.get('totalRewards', 0):.4f} ⭐",
                "Errors": summary.get("errors", 0),
                "Duration": f"{summary.get('durationSeconds', 0):.2f}s",
            },
        )

    async def log_warning(self, title: str, description: str, fields: Fields = None) -> bool:
        return await self.log_custom("System", title, description, LogLevel.WARNING, fields)

    async def log_info(self, title: str, description: str, fields: Fields = None) -> bool:
        return await self.log_custom("System", title, description, LogLevel.INFO, fields)

    # --------------- Statistics ---------------

    def get_logging_stats(self) -> Dict[str, Any]:
        """Get logging statistics"""
        uptime = (self._clock() - self.stats["start_time"]).total_seconds()
        sent, failed = self.stats["logs_sent"], self.stats["logs_failed"]
        return {
            "uptime_seconds": uptime,
            "total_logs_sent": sent,
            "total_logs_failed": failed,
            "total_logs_suppressed": self.stats["logs_suppressed"],
            "success_rate": round(sent / max(1, sent + failed) * 100, 2),
            "logs_by_level": dict(self.stats["logs_by_level"]),
            "logs_by_service": dict(self.stats["logs_by_service"]),
            "rate_limit_status": {
                "recent_messages": len(self.rate_limit["messages"]),
                "max_per_minute": self.rate_limit["max_per_minute"],
                "cached_messages": len(self.rate_limit["similar_message_cache"]),
            },
            "admin_chat_id": self.admin_chat_id,
        }
