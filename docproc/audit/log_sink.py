from docproc.audit.base import AuditEvent, BaseAuditSink
from docproc.logging.logger import Log


class LogAuditSink(BaseAuditSink):
    """Writes audit events to the application log."""

    def record(self, event: AuditEvent) -> None:
        Log.info(
            f"audit {event.action}",
            tenant_id=event.tenant_id,
            actor_id=event.actor_id,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            details=event.details,
        )
