"""
Audit trail for denied access attempts.
Created: 2026-10-17

Every rejected request (path traversal, permission denied, symlink escape)
is recorded with the raw request path and the client address. Events always
go to the ``treeserve.audit`` logger; when a log path is configured they are
also appended to it as JSON lines.
"""

import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger("treeserve.audit")


class AuditSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"  # Filesystem refused access
    ALERT = "alert"  # Path-safety violation


@dataclass
class AuditEvent:
    """A single audit log entry."""

    id: str
    timestamp: str
    severity: AuditSeverity
    action: str  # e.g. "path_traversal", "permission_denied"
    target: str  # raw request path, never the resolved filesystem path
    status: str  # "block" or "error"
    client: str = ""
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        severity: AuditSeverity,
        action: str,
        target: str,
        status: str = "block",
        client: str = "",
        **context: Any,
    ) -> "AuditEvent":
        return cls(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(tz=UTC).isoformat(),
            severity=severity,
            action=action,
            target=target,
            status=status,
            client=client,
            context=context,
        )


class AuditLogger:
    """Append-only audit logger (JSONL when *log_path* is given)."""

    def __init__(self, log_path: Path | None = None):
        self.log_path = log_path
        if self.log_path is not None:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, event: AuditEvent) -> None:
        """Record *event*. Write failures are logged, never raised."""
        level = logging.WARNING if event.severity == AuditSeverity.ALERT else logging.INFO
        logger.log(
            level,
            "%s %s: %s (client=%s)",
            event.status.upper(),
            event.action,
            event.target,
            event.client or "-",
        )
        if self.log_path is None:
            return
        try:
            event_dict = asdict(event)
            event_dict["severity"] = event.severity.value
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(event_dict) + "\n")
        except OSError as e:
            logger.critical("FAILED TO WRITE AUDIT LOG: %s | Event: %s", e, event.id)

    def log_denied(
        self,
        action: str,
        request_path: str,
        *,
        client: str = "",
        severity: AuditSeverity = AuditSeverity.ALERT,
        **context: Any,
    ) -> AuditEvent:
        """Helper to record a blocked request."""
        event = AuditEvent.create(
            severity=severity,
            action=action,
            target=request_path,
            status="block",
            client=client,
            **context,
        )
        self.log(event)
        return event
