"""Operational utilities: logging setup, structured event log and health."""

from __future__ import annotations

import json
import logging
import sys
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Deque, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
EVENT_TAIL_SIZE = 500

_REDACTED_FIELDS = {"password", "pin", "token", "password_hash", "transaction_pin"}


def configure_logging(level: str = "INFO") -> None:
    """Configure process-wide logging for the web application."""

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        stream=sys.stdout,
        force=True,
    )
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


class StructuredLogger:
    """Write JSON lines log entries for admin inspection."""

    def __init__(
        self,
        *,
        path: Path | None = None,
        logger_name: str = "brokerage.events",
        max_entries: int = EVENT_TAIL_SIZE,
    ) -> None:
        self.path = path
        self._entries: Deque[dict] = deque(maxlen=max_entries)
        self._logger = logging.getLogger(logger_name)

    def log(self, event_type: str, **fields: object) -> dict:
        safe = {key: ("***" if key in _REDACTED_FIELDS else value) for key, value in fields.items()}
        entry = {"timestamp": datetime.utcnow().isoformat(), "event": event_type, **safe}
        self._entries.append(entry)
        if self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry, default=str) + "\n")
        self._logger.info("%s %s", event_type, json.dumps(safe, default=str, sort_keys=True))
        return entry

    def tail(self, limit: int = 50) -> tuple[dict, ...]:
        return tuple(self._entries)[-limit:]

    def clear(self) -> None:
        self._entries.clear()


class HealthMonitor:
    """Aggregate runtime health information for the status endpoint."""

    def __init__(self) -> None:
        self.database_online = True
        self.migrations: list[str] = []
        self.price_timestamp: Optional[datetime] = None

    def set_price_timestamp(self, timestamp: Optional[datetime]) -> None:
        self.price_timestamp = timestamp

    def add_migration(self, name: str) -> None:
        if name not in self.migrations:
            self.migrations.append(name)

    def status(self) -> dict:
        return {
            "status": "ok" if self.database_online else "degraded",
            "database": "ok" if self.database_online else "down",
            "migrations": list(self.migrations),
            "btc_price_age_seconds": self.price_age_seconds(),
        }

    def price_age_seconds(self) -> Optional[int]:
        if not self.price_timestamp:
            return None
        return int((datetime.utcnow() - self.price_timestamp).total_seconds())


__all__ = ["HealthMonitor", "StructuredLogger", "configure_logging"]
