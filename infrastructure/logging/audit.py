"""Append-only JSON audit trail for session and mutation outcomes."""

import json
import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict

from plantbuddy.utils.time import iso_now

# Metadata keys that are never written, whatever the caller passes
REDACTED_KEYS = frozenset({"password", "secret", "token", "authorization"})


class AuditLogger:
    """Structured audit logger that writes one JSON record per line."""

    def __init__(self, log_path: str, level: str = "INFO", logger_name: str = "plantbuddy.audit") -> None:
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

        self.logger = logging.getLogger(logger_name)
        self.logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        self.logger.propagate = False

        # One handler per file, even when several clients share a process
        target = os.path.abspath(self.log_path)
        if not any(getattr(handler, "baseFilename", None) == target for handler in self.logger.handlers):
            handler = RotatingFileHandler(
                filename=str(self.log_path),
                maxBytes=5 * 1024 * 1024,  # 5 MB
                backupCount=10,
                encoding="utf-8",
                delay=True,
            )
            handler.setFormatter(logging.Formatter(fmt="%(message)s"))
            self.logger.addHandler(handler)

    @staticmethod
    def _redact(metadata: Dict[str, Any]) -> Dict[str, Any]:
        return {key: ("***" if key.lower() in REDACTED_KEYS else value) for key, value in metadata.items()}

    def log_event(self, actor: str, action: str, resource: str, outcome: str, **metadata: Any) -> None:
        payload: Dict[str, Any] = {
            "ts": iso_now(timespec="milliseconds"),
            "actor": actor,
            "action": action,
            "resource": resource,
            "outcome": outcome,
        }
        if metadata:
            payload["meta"] = self._redact(metadata)

        self.logger.info(json.dumps(payload, default=str))

    def close(self) -> None:
        for handler in list(self.logger.handlers):
            if getattr(handler, "baseFilename", None) == os.path.abspath(self.log_path):
                handler.close()
                self.logger.removeHandler(handler)
