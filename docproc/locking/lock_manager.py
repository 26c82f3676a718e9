from dataclasses import dataclass
from datetime import datetime, timezone

from docproc.audit.base import AuditEvent, BaseAuditSink, record_safely
from docproc.config.settings import Settings
from docproc.database.connection import get_connection
from docproc.database.models import ProcessingDocument
from docproc.database.repositories.processing_document_repository import (
    ProcessingDocumentRepository,
)
from docproc.logging.logger import Log
from docproc.processor.exceptions import LockConflictError
from docproc.processor.models import RequestContext


@dataclass(frozen=True)
class LockResult:
    granted: bool
    lock_version: int
    expires_at: datetime | None
    locked_by: str | None


def require_lock(
    document: ProcessingDocument,
    actor_id: str,
    expected_version: int,
    now: datetime | None = None,
) -> None:
    """Check that `actor_id` may mutate `document` at `expected_version`.

    Raises:
        LockConflictError: if the version is stale, or the lock is not held
            by the actor, or it has expired.
    """
    if document.lock_version != expected_version:
        raise LockConflictError(
            "Document was modified by another user. Please refresh and try again.",
            current_version=document.lock_version,
            expires_at=document.lock_expires_at,
        )
    if not document.lock_held_by(actor_id, now or datetime.now(timezone.utc)):
        raise LockConflictError(
            "You must hold an unexpired lock on this document.",
            current_version=document.lock_version,
            expires_at=document.lock_expires_at,
        )


class LockManager:
    """Optimistic, lease-based document locks embedded in processing_documents.

    Every successful acquire or release bumps lock_version, so any request
    prepared against an older version is rejected.
    """

    def __init__(
        self,
        documents: ProcessingDocumentRepository,
        audit: BaseAuditSink,
        settings: Settings,
    ) -> None:
        self._documents = documents
        self._audit = audit
        self._settings = settings

    def acquire(
        self,
        ctx: RequestContext,
        document_id: str,
        expected_version: int | None = None,
    ) -> LockResult:
        """Take or renew the lock for `ctx.actor_id`.

        Raises:
            DocumentNotFoundError: if the document is not visible to the tenant.
        """
        with get_connection() as conn:
            document = self._documents.get_live(conn, ctx.tenant_id, document_id)
            version = document.lock_version if expected_version is None else expected_version
            updated = self._documents.try_acquire_lock(
                conn,
                ctx.tenant_id,
                document_id,
                version,
                ctx.actor_id,
                self._settings.lock_ttl_seconds,
            )
            if updated is None:
                current = self._documents.get_live(conn, ctx.tenant_id, document_id)
                conn.commit()
                Log.info(
                    "Lock denied",
                    document_id=document_id,
                    actor_id=ctx.actor_id,
                    expected_version=version,
                    lock_version=current.lock_version,
                )
                return LockResult(
                    granted=False,
                    lock_version=current.lock_version,
                    expires_at=current.lock_expires_at,
                    locked_by=current.locked_by,
                )
            conn.commit()

        Log.info(
            "Lock acquired",
            document_id=document_id,
            actor_id=ctx.actor_id,
            lock_version=updated.lock_version,
        )
        record_safely(
            self._audit,
            AuditEvent(
                action="LOCK_ACQUIRED",
                tenant_id=ctx.tenant_id,
                actor_id=ctx.actor_id,
                entity_id=document_id,
                details={"lockVersion": updated.lock_version},
            ),
        )
        return LockResult(
            granted=True,
            lock_version=updated.lock_version,
            expires_at=updated.lock_expires_at,
            locked_by=updated.locked_by,
        )

    def release(self, ctx: RequestContext, document_id: str) -> int:
        """Release the actor's lock early. Returns the new lock_version.

        Raises:
            DocumentNotFoundError: if the document is not visible to the tenant.
            LockConflictError: if the actor does not hold the lock.
        """
        with get_connection() as conn:
            released = self._documents.release_lock(conn, ctx.tenant_id, document_id, ctx.actor_id)
            if released is None:
                current = self._documents.get_live(conn, ctx.tenant_id, document_id)
                raise LockConflictError(
                    "Lock is not held by you",
                    current_version=current.lock_version,
                    expires_at=current.lock_expires_at,
                )
            conn.commit()

        Log.info("Lock released", document_id=document_id, actor_id=ctx.actor_id)
        record_safely(
            self._audit,
            AuditEvent(
                action="LOCK_RELEASED",
                tenant_id=ctx.tenant_id,
                actor_id=ctx.actor_id,
                entity_id=document_id,
                details={"lockVersion": released.lock_version},
            ),
        )
        return released.lock_version
