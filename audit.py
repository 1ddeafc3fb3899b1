"""
audit.py - Append-only audit trail.

Events are kept in memory and, when a path is configured, appended to a
JSON-lines file. Writing an audit event must never break the request that
produced it, so `AuditLog.log` is wrapped with `graceful`.
"""

from __future__ import annotations

import json
import logging
import os
import secrets
import threading
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from logging_config import get_logger, graceful
from models import AuditEvent, AuditSeverity

logger = get_logger(__name__)

MAX_LIST_LIMIT = 100


class AuditLog:
    """In-memory audit trail with optional JSONL persistence."""

    def __init__(self, path: Optional[str] = None) -> None:
        target = path if path is not None else os.getenv("AUDIT_LOG_FILE", "")
        self.path = Path(target).resolve() if target else None
        self._events: list[AuditEvent] = []
        self._lock = threading.Lock()
        if self.path is not None:
            self._events = self._load(self.path)

    @staticmethod
    def _load(path: Path) -> list[AuditEvent]:
        if not path.exists():
            return []
        events: list[AuditEvent] = []
        for line_no, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
            if not line.strip():
                continue
            try:
                events.append(AuditEvent.model_validate_json(line))
            except ValidationError as exc:
                logger.warning(
                    "audit_load_warning | path=%s | line=%s | errors=%s | fallback='skip line'",
                    path,
                    line_no,
                    exc.error_count(),
                )
        return events

    @graceful(default_factory=lambda: "", log_level=logging.ERROR)
    def log(
        self,
        action: str,
        details: dict[str, Any],
        severity: AuditSeverity = AuditSeverity.INFO,
        seller_id: Optional[str] = None,
        user_id: Optional[str] = None,
        verification_id: Optional[str] = None,
        processing_time_ms: Optional[float] = None,
    ) -> str:
        """Record one event and return its id ("" if recording failed)."""
        event = AuditEvent(
            event_id=f"evt_{secrets.token_hex(6)}",
            action=action,
            severity=severity,
            details=details,
            seller_id=seller_id,
            user_id=user_id,
            verification_id=verification_id,
            processing_time_ms=processing_time_ms,
        )
        with self._lock:
            if self.path is not None:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(event.model_dump_json(by_alias=True) + "\n")
            self._events.append(event)

        logger.debug("audit_event | action=%s | severity=%s | id=%s", action, severity.value, event.event_id)
        return event.event_id

    def list_events(
        self,
        limit: int = 20,
        action: Optional[str] = None,
        seller_id: Optional[str] = None,
    ) -> list[AuditEvent]:
        """Newest first, optionally filtered."""
        limit = max(1, min(MAX_LIST_LIMIT, int(limit)))
        with self._lock:
            events = list(self._events)
        matched = [
            event
            for event in reversed(events)
            if (action is None or event.action == action)
            and (seller_id is None or event.seller_id == seller_id)
        ]
        return matched[:limit]

    def purge(self) -> int:
        """Drop every event. Returns how many were removed."""
        with self._lock:
            removed = len(self._events)
            self._events.clear()
            if self.path is not None and self.path.exists():
                self.path.unlink()
        logger.info("audit_purged | removed=%s", removed)
        return removed

    def __len__(self) -> int:
        return len(self._events)
