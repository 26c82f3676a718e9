from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from docproc.logging.logger import Log


@dataclass(frozen=True)
class AuditEvent:
    """One state change worth keeping in the audit trail."""

    action: str
    tenant_id: str
    actor_id: str
    entity_id: str
    entity_type: str = "ProcessingDocument"
    details: dict[str, Any] = field(default_factory=dict)


class BaseAuditSink(ABC):
    """Port for the audit trail. Recording is fire-and-forget."""

    @abstractmethod
    def record(self, event: AuditEvent) -> None:
        """Persist one audit event."""


def record_safely(sink: BaseAuditSink, event: AuditEvent) -> None:
    """Record an audit event; a failing sink is logged and never breaks the caller."""
    try:
        sink.record(event)
    except Exception:
        Log.exception(
            "Failed to record audit event",
            action=event.action,
            entity_id=event.entity_id,
        )
