import uuid
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Any

import psycopg

from docproc.audit.base import AuditEvent, BaseAuditSink, record_safely
from docproc.database.connection import get_connection
from docproc.database.models import DocumentRevision, ProcessingDocument, RevisionLineItem
from docproc.database.repositories.processing_document_repository import (
    ProcessingDocumentRepository,
)
from docproc.database.repositories.revision_repository import RevisionRepository
from docproc.logging.logger import Log
from docproc.processor.exceptions import InvalidStateError, ProcessingValidationError
from docproc.processor.models import RequestContext
from docproc.revisions.models import PATCHABLE_FIELDS, ApprovalResult, RevisionInput, RevisionPatch
from docproc.revisions.validation import to_decimal, validate_revision

AMOUNT_FIELDS = ("subtotal", "tax_amount", "total_amount")


def _require_amount(value: Any) -> Decimal:
    amount = to_decimal(value, "amount")
    if amount is None:
        raise ProcessingValidationError("Line item amount is required")
    return amount


def renumber_line_items(items: list[RevisionLineItem]) -> list[RevisionLineItem]:
    """Sort by line_no and renumber densely from 1."""
    ordered = sorted(items, key=lambda item: item.line_no)
    return [replace(item, line_no=index + 1) for index, item in enumerate(ordered)]


def approval_blocker(document: ProcessingDocument) -> str | None:
    """Reason the document's revisions cannot be approved right now, if any."""
    if document.duplicate_status == "SUSPECTED":
        return "Duplicate decision required before approval"
    if document.duplicate_status == "CONFIRMED":
        return "Confirmed duplicates cannot be approved"
    return None


class RevisionManager:
    """Immutable structured-data revisions: DRAFT -> APPROVED -> SUPERSEDED.

    At most one revision per document is APPROVED. Approvals serialize on
    the document row, and a partial unique index backs that up.
    """

    def __init__(
        self,
        documents: ProcessingDocumentRepository,
        revisions: RevisionRepository,
        audit: BaseAuditSink,
    ) -> None:
        self._documents = documents
        self._revisions = revisions
        self._audit = audit

    def create_draft(
        self,
        ctx: RequestContext,
        document_id: str,
        data: RevisionInput,
        based_on_revision_id: str | None = None,
    ) -> DocumentRevision:
        with get_connection() as conn:
            self._documents.lock_for_update(conn, ctx.tenant_id, document_id)
            revision = self._insert_draft(conn, ctx, document_id, data, based_on_revision_id)
            conn.commit()

        Log.info(
            "Created draft revision",
            document_id=document_id,
            revision_id=revision.id,
            revision_number=revision.revision_number,
            validation_status=revision.validation_status,
        )
        self._record(ctx, "REVISION_CREATED", revision)
        return revision

    def create_from_edit(
        self, ctx: RequestContext, base_revision_id: str, patch: RevisionPatch
    ) -> DocumentRevision:
        """New DRAFT copying `base_revision_id` with the patch applied."""
        unknown = set(patch.set) - PATCHABLE_FIELDS
        if unknown:
            raise ProcessingValidationError(f"Fields cannot be edited: {sorted(unknown)}")

        with get_connection() as conn:
            base = self._revisions.get(conn, ctx.tenant_id, base_revision_id)
            self._documents.lock_for_update(conn, ctx.tenant_id, base.processing_document_id)

            fields: dict[str, Any] = {name: getattr(base, name) for name in PATCHABLE_FIELDS}
            fields.update(patch.set)
            deleted = set(patch.items_to_delete)
            items = {item.line_no: item for item in base.line_items if item.line_no not in deleted}
            for item in patch.items_to_upsert:
                items[item.line_no] = item

            data = RevisionInput(
                line_items=list(items.values()),
                reason=patch.reason,
                **fields,
            )
            revision = self._insert_draft(
                conn, ctx, base.processing_document_id, data, base.id
            )
            conn.commit()

        Log.info(
            "Created revision from edit",
            revision_id=revision.id,
            based_on_revision_id=base_revision_id,
        )
        self._record(ctx, "REVISION_EDITED", revision)
        return revision

    def approve(self, ctx: RequestContext, revision_id: str) -> ApprovalResult:
        """Approve a DRAFT, superseding any previously approved revision.

        Raises:
            RevisionNotFoundError: if the revision is not visible to the tenant.
            InvalidStateError: if the revision is not a DRAFT or the document
                has an unresolved or confirmed duplicate.
        """
        with get_connection() as conn:
            found = self._revisions.get(conn, ctx.tenant_id, revision_id)
            document = self._documents.lock_for_update(
                conn, ctx.tenant_id, found.processing_document_id
            )
            revision = self._revisions.get(conn, ctx.tenant_id, revision_id)
            if revision.status != "DRAFT":
                raise InvalidStateError(f"Cannot approve revision in {revision.status} status")
            blocker = approval_blocker(document)
            if blocker is not None:
                raise InvalidStateError(blocker)

            superseded = self._revisions.supersede_approved(conn, document.id)
            self._revisions.mark_approved(conn, revision_id, ctx.actor_id)
            lock_version = self._documents.set_current_revision(conn, document.id, revision_id)
            approved = self._revisions.get(conn, ctx.tenant_id, revision_id)
            conn.commit()

        Log.info(
            "Approved revision",
            document_id=document.id,
            revision_id=revision_id,
            superseded=superseded,
            lock_version=lock_version,
        )
        self._record(ctx, "REVISION_APPROVED", approved)
        return ApprovalResult(revision=approved, lock_version=lock_version, superseded_count=superseded)

    def supersede(self, ctx: RequestContext, revision_id: str) -> DocumentRevision:
        """Discard a DRAFT by marking it SUPERSEDED."""
        with get_connection() as conn:
            found = self._revisions.get(conn, ctx.tenant_id, revision_id)
            self._documents.lock_for_update(conn, ctx.tenant_id, found.processing_document_id)
            revision = self._revisions.get(conn, ctx.tenant_id, revision_id)
            if revision.status != "DRAFT":
                raise InvalidStateError(f"Only DRAFT revisions can be superseded, got {revision.status}")
            self._revisions.mark_superseded(conn, revision_id)
            superseded = self._revisions.get(conn, ctx.tenant_id, revision_id)
            conn.commit()

        Log.info("Superseded draft revision", revision_id=revision_id)
        self._record(ctx, "REVISION_SUPERSEDED", superseded)
        return superseded

    def get(self, ctx: RequestContext, revision_id: str) -> DocumentRevision:
        return self._revisions.find_by_id(ctx.tenant_id, revision_id)

    def history(self, ctx: RequestContext, document_id: str) -> list[DocumentRevision]:
        """Every revision of the document, newest first."""
        with get_connection() as conn:
            self._documents.get_live(conn, ctx.tenant_id, document_id)
            return self._revisions.list_for_document(conn, document_id)

    def latest_draft(self, ctx: RequestContext, document_id: str) -> DocumentRevision | None:
        with get_connection() as conn:
            self._documents.get_live(conn, ctx.tenant_id, document_id)
            return self._revisions.find_latest(conn, document_id, "DRAFT")

    def current(self, ctx: RequestContext, document_id: str) -> DocumentRevision | None:
        """The document's APPROVED revision, if there is one."""
        with get_connection() as conn:
            self._documents.get_live(conn, ctx.tenant_id, document_id)
            return self._revisions.find_latest(conn, document_id, "APPROVED")

    def _insert_draft(
        self,
        conn: psycopg.Connection[Any],
        ctx: RequestContext,
        document_id: str,
        data: RevisionInput,
        based_on_revision_id: str | None,
    ) -> DocumentRevision:
        """Caller holds the document row lock."""
        amounts = {name: to_decimal(getattr(data, name), name) for name in AMOUNT_FIELDS}
        items = renumber_line_items(
            [
                replace(
                    item,
                    amount=_require_amount(item.amount),
                    quantity=to_decimal(item.quantity, "quantity"),
                    unit_price=to_decimal(item.unit_price, "unitPrice"),
                    tax_amount=to_decimal(item.tax_amount, "taxAmount"),
                )
                for item in data.line_items
            ]
        )
        document_date = data.document_date
        if isinstance(document_date, str):
            try:
                document_date = date.fromisoformat(document_date)
            except ValueError as exc:
                raise ProcessingValidationError(f"Invalid documentDate: {document_date}") from exc
        currency = data.currency.strip().upper() if data.currency else None

        status, issues = validate_revision(
            document_category=data.document_category,
            vendor_name=data.vendor_name,
            document_date=document_date,
            currency=currency,
            line_items=items,
            **amounts,
        )
        revision = DocumentRevision(
            id=str(uuid.uuid4()),
            processing_document_id=document_id,
            revision_number=self._revisions.next_revision_number(conn, document_id),
            status="DRAFT",
            created_by=ctx.actor_id,
            based_on_revision_id=based_on_revision_id,
            document_category=data.document_category,
            vendor_name=data.vendor_name,
            document_number=data.document_number,
            document_date=document_date,
            currency=currency,
            validation_status=status,
            validation_issues=issues,
            reason=data.reason,
            line_items=items,
            **amounts,
        )
        self._revisions.insert(conn, revision)
        return self._revisions.get(conn, ctx.tenant_id, revision.id)

    def _record(self, ctx: RequestContext, action: str, revision: DocumentRevision) -> None:
        record_safely(
            self._audit,
            AuditEvent(
                action=action,
                tenant_id=ctx.tenant_id,
                actor_id=ctx.actor_id,
                entity_type="DocumentRevision",
                entity_id=revision.id,
                details={
                    "documentId": revision.processing_document_id,
                    "revisionNumber": revision.revision_number,
                    "status": revision.status,
                },
            ),
        )
