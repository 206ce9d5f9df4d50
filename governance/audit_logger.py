"""Structured JSONL audit log of interpreter channel calls."""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from core.event_bus import EventBus


class AuditLogger:
    """Writes one JSON line per settled channel call.

    Payloads are recorded as a SHA-256 digest only; script and code text never
    reaches the log file.
    """

    def __init__(self, log_path: Path) -> None:
        self.log_path = log_path
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self.logger = logging.getLogger("rd.audit")

    @staticmethod
    def _hash_payload(payload: str) -> str:
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def attach(self, event_bus: EventBus) -> None:
        """Record every ``call.settled`` event emitted on the bus."""
        event_bus.subscribe("call.settled", self.record)

    def record(self, event: dict[str, Any]) -> None:
        self.log(
            channel=str(event.get("channel", "unknown")),
            token=int(event.get("token", 0)),
            payload=str(event.get("payload", "")),
            ok=bool(event.get("ok", False)),
            kind=event.get("kind"),
            duration=float(event.get("duration", 0.0)),
        )

    def log(
        self,
        *,
        channel: str,
        token: int,
        payload: str,
        ok: bool,
        kind: str | None = None,
        duration: float = 0.0,
    ) -> None:
        """Append one JSONL audit event."""
        event = {
            "timestamp": datetime.now(UTC).isoformat(),
            "channel": channel,
            "token": token,
            "payload_hash": self._hash_payload(payload),
            "ok": ok,
            "kind": kind,
            "duration_ms": round(duration * 1000, 1),
        }
        with self.log_path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(event, ensure_ascii=True) + "\n")
        self.logger.info(json.dumps(event, ensure_ascii=True))
