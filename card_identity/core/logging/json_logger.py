# card_identity/core/logging/json_logger.py
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List

from card_identity.core.logging.icons import get_event_icon


class JSONLineFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, event_type, data."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "event_type": getattr(record, "event_type", record.levelname.lower()),
            "data": getattr(record, "data", None),
        }
        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    """'ICON [event_type] preview-of-data'"""

    def format(self, record: logging.LogRecord) -> str:
        event_type = getattr(record, "event_type", record.levelname.lower())
        return f"{get_event_icon(event_type)} [{event_type}] {str(getattr(record, 'data', ''))[:100]}"


class JSONLogger:
    """
    Structured event logger for card events.

    Every call names an event (`CardCreated`, `CardCacheError`, ...) and carries a
    dict payload. Events go to the console with an icon and to a rotating JSONL
    file that `get_logs_by_type` reads back.
    """

    def __init__(
        self,
        log_path: str = "logs/card_identity.jsonl",
        *,
        level: int | str = logging.INFO,
        rotate_bytes: int = 10_000_000,
        rotate_backups: int = 5,
        logger_name: str = "card_identity",
        enable_console: bool = True,
        enable_jsonl: bool = True,
    ):
        self.log_path = Path(log_path)
        if isinstance(level, str):
            level = logging.getLevelName(level.upper())

        self._logger = logging.getLogger(logger_name)
        self._logger.setLevel(level)
        self._logger.propagate = False

        # several facades may share a logger name
        if self._logger.handlers:
            return
        if enable_console:
            self._add_handler(logging.StreamHandler(), ConsoleFormatter(), level)
        if enable_jsonl:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            fh = RotatingFileHandler(
                filename=str(self.log_path),
                maxBytes=rotate_bytes,
                backupCount=rotate_backups,
                encoding="utf-8",
            )
            self._add_handler(fh, JSONLineFormatter(), level)

    def _add_handler(self, handler: logging.Handler, formatter: logging.Formatter, level) -> None:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        self._logger.addHandler(handler)

    def log(self, event_type: str, data: dict | None = None, *, level: int = logging.INFO):
        if not data:
            return
        self._logger.log(level, event_type, extra={"event_type": event_type, "data": data})

    def warning(self, event_type: str, data: dict | None = None):
        self.log(event_type, data, level=logging.WARNING)

    def close(self) -> None:
        for handler in list(self._logger.handlers):
            handler.close()
            self._logger.removeHandler(handler)

    def get_logs_by_type(self, event_type: str) -> List[dict]:
        if not self.log_path.exists():
            return []
        with self.log_path.open("r", encoding="utf-8") as f:
            entries = [json.loads(line) for line in f if line.strip()]
        return [e for e in entries if e.get("event_type") == event_type]
