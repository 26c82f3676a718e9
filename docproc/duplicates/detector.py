from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from docproc.audit.base import AuditEvent, BaseAuditSink, record_safely
from docproc.config.settings import Settings
from docproc.database.connection import get_connection
from docproc.database.repositories.duplicate_repository import DuplicateRepository
from docproc.database.repositories.processing_document_repository import (
    ProcessingDocumentRepository,
)
from docproc.database.repositories.revision_repository import RevisionRepository
from docproc.duplicates.comparator import DuplicateComparison, compare_revisions
from docproc.duplicates.fingerprint import is_valid_hash, normalize_hash
from docproc.logging.logger import Log
from docproc.processor.exceptions import InvalidStateError, ProcessingValidationError
from docproc.processor.models import RequestContext

Decision = Literal["CONFIRMED", "CLEARED"]
DECISIONS: tuple[Decision, ...] = ("CONFIRMED", "CLEARED")


@dataclass(frozen=True)
class ExactMatch:
    hash: str
    document_id: str
    file_name: str
    uploaded_at: datetime


def exact_match_from_row(row: dict[str, Any]) -> ExactMatch:
    return ExactMatch(
        hash=row["file_hash"],
        document_id=row["id"],
        file_name=row["file_name"],
        uploaded_at=row["created_at"],
    )


@dataclass(frozen=True)
class ExactDuplicateResult:
    duplicates: list[ExactMatch]
    duplicate_hashes: list[str]


@dataclass(frozen=True)
class DuplicateCheckResult:
    document_id: str
    duplicate_status: str
    duplicate_of_id: str | None = None
    score: Decimal | None = None
    reason: str | None = None
    comparison: DuplicateComparison | None = None


@dataclass(frozen=True)
class DuplicateResolution:
    document_id: str
    decision: Decision
    duplicate_of_id: str | None
    references_cleared: int = 0


class DuplicateDetector:
    """Exact (file hash) and fuzzy (revision field) duplicate detection.

    Suspicions are only ever raised automatically; confirming or clearing
    one is always a human decision recorded through `resolve`.
    """

    def __init__(
        self,
        documents: ProcessingDocumentRepository,
        revisions: RevisionRepository,
        duplicates: DuplicateRepository,
        audit: BaseAuditSink,
        settings: Settings,
    ) -> None:
        self._documents = documents
        self._revisions = revisions
        self._duplicates = duplicates
        self._audit = audit
        self._settings = settings

    def check_exact(
        self,
        ctx: RequestContext,
        file_hashes: Sequence[object],
        company_id: str | None = None,
    ) -> ExactDuplicateResult:
        """Find live documents in the tenant whose whole-file hash is in `file_hashes`."""
        if not isinstance(file_hashes, (list, tuple)) or not file_hashes:
            raise ProcessingValidationError("fileHashes must be a non-empty list")
        hashes: list[str] = []
        for value in file_hashes:
            if not isinstance(value, str) or not is_valid_hash(normalize_hash(value)):
                raise ProcessingValidationError(f"Invalid SHA-256 hash: {value!r}")
            normalized = normalize_hash(value)
            if normalized not in hashes:
                hashes.append(normalized)

        rows = self._duplicates.find_by_hashes(ctx.tenant_id, hashes, company_id)
        matches = [exact_match_from_row(row) for row in rows]
        found = {match.hash for match in matches}
        return ExactDuplicateResult(
            duplicates=matches,
            duplicate_hashes=[value for value in hashes if value in found],
        )

    def check_document(
        self,
        tenant_id: str,
        document_id: str,
        candidate_ids: Sequence[str] | None = None,
    ) -> DuplicateCheckResult:
        """Compare the document's latest revision against candidates' current revisions.

        A best score at or above the threshold marks the document SUSPECTED.
        CONFIRMED or CLEARED documents are left alone, and a low score never
        clears an existing suspicion.
        """
        threshold = Decimal(str(self._settings.duplicate_threshold))
        with get_connection() as conn:
            document = self._documents.lock_for_update(conn, tenant_id, document_id)
            unchanged = DuplicateCheckResult(
                document_id=document_id,
                duplicate_status=document.duplicate_status,
                duplicate_of_id=document.duplicate_of_id,
                score=document.duplicate_score,
                reason=document.duplicate_reason,
            )
            if document.duplicate_status in ("CONFIRMED", "CLEARED"):
                conn.commit()
                return unchanged

            source = self._revisions.find_latest(conn, document_id)
            if source is None:
                conn.commit()
                return unchanged

            if candidate_ids is None:
                ids = self._duplicates.find_candidate_ids(
                    conn,
                    tenant_id,
                    document.company_id,
                    document_id,
                    self._settings.duplicate_lookback_days,
                    self._settings.duplicate_max_candidates,
                )
            else:
                ids = self._duplicates.filter_live_ids(
                    conn, tenant_id, [c for c in candidate_ids if c != document_id]
                )
            targets = self._revisions.find_current_for_documents(conn, ids)

            best_id: str | None = None
            best: DuplicateComparison | None = None
            for candidate_id in ids:
                target = targets.get(candidate_id)
                if target is None:
                    continue
                comparison = compare_revisions(source, target)
                if best is None or comparison.score > best.score:
                    best_id, best = candidate_id, comparison

            if best is None or best_id is None or best.score < threshold:
                conn.commit()
                return unchanged

            self._duplicates.mark_suspected(conn, document_id, best_id, best.score, best.reason)
            conn.commit()

        Log.warning(
            "Suspected duplicate",
            document_id=document_id,
            duplicate_of_id=best_id,
            score=str(best.score),
        )
        return DuplicateCheckResult(
            document_id=document_id,
            duplicate_status="SUSPECTED",
            duplicate_of_id=best_id,
            score=best.score,
            reason=best.reason,
            comparison=best,
        )

    def resolve(
        self,
        ctx: RequestContext,
        document_id: str,
        decision: str,
        reason: str | None = None,
    ) -> DuplicateResolution:
        """Record a human decision on a SUSPECTED document.

        CONFIRMED soft-deletes the document and clears links pointing at it;
        CLEARED drops its own duplicate link.

        Raises:
            ProcessingValidationError: for an unknown decision.
            InvalidStateError: if the document is not SUSPECTED.
        """
        if decision not in DECISIONS:
            raise ProcessingValidationError(f"decision must be one of {list(DECISIONS)}")

        cleared = 0
        with get_connection() as conn:
            document = self._documents.lock_for_update(conn, ctx.tenant_id, document_id)
            if document.duplicate_status != "SUSPECTED":
                raise InvalidStateError(
                    f"Document is not a suspected duplicate (status {document.duplicate_status})"
                )
            self._duplicates.record_decision(
                conn, document_id, document.duplicate_of_id, decision, ctx.actor_id, reason
            )
            if decision == "CONFIRMED":
                self._duplicates.mark_confirmed(
                    conn, document_id, reason or f"Confirmed duplicate of {document.duplicate_of_id}"
                )
                cleared = self._duplicates.clear_references_to(conn, document_id)
            else:
                self._duplicates.mark_cleared(conn, document_id, reason)
            conn.commit()

        Log.info("Duplicate resolved", document_id=document_id, decision=decision)
        record_safely(
            self._audit,
            AuditEvent(
                action=f"DUPLICATE_{decision}",
                tenant_id=ctx.tenant_id,
                actor_id=ctx.actor_id,
                entity_id=document_id,
                details={"duplicateOfId": document.duplicate_of_id, "reason": reason},
            ),
        )
        return DuplicateResolution(
            document_id=document_id,
            decision=decision,
            duplicate_of_id=document.duplicate_of_id,
            references_cleared=cleared,
        )
