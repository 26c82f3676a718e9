"""Collaborator-facing operations.

Each operation returns an ApiResponse carrying an HTTP-equivalent status
and a camelCase JSON-safe body: ``{"success": True, "data": {...}}`` on
success, ``{"success": False, "error": {"code", "message"}}`` otherwise.
"""

from collections.abc import Callable, Sequence
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from docproc.api.response import ApiResponse
from docproc.audit.base import BaseAuditSink
from docproc.audit.log_sink import LogAuditSink
from docproc.config.settings import Settings
from docproc.database.models import DocumentRevision
from docproc.database.repositories.document_page_repository import DocumentPageRepository
from docproc.database.repositories.duplicate_repository import DuplicateRepository
from docproc.database.repositories.idempotency_repository import IdempotencyRepository
from docproc.database.repositories.processing_document_repository import (
    ProcessingDocumentRepository,
)
from docproc.database.repositories.review_queue_repository import (
    ReviewFilter,
    ReviewQueueRepository,
)
from docproc.database.repositories.revision_repository import RevisionRepository
from docproc.duplicates.detector import DuplicateDetector, ExactMatch
from docproc.locking.idempotency import IdempotencyGuard
from docproc.locking.lock_manager import LockManager
from docproc.logging.logger import Log
from docproc.pdf.base import AppendSource
from docproc.pdf.factory import PdfAdapterFactory
from docproc.processor.exceptions import LockConflictError, ProcessingError
from docproc.processor.ingestion import IngestionService
from docproc.processor.models import RequestContext
from docproc.processor.page_service import PageService
from docproc.review.navigator import ReviewNavigator
from docproc.revisions.manager import RevisionManager
from docproc.storage.base import BaseBlobStorage
from docproc.storage.factory import BlobStorageFactory


def to_json(value: Any) -> Any:
    """Make datetimes, dates and Decimals JSON-safe, recursively."""
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {key: to_json(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [to_json(item) for item in value]
    return value


def ok(data: dict[str, Any], status_code: int = 200) -> ApiResponse:
    return ApiResponse(status_code=status_code, body={"success": True, "data": to_json(data)})


def error(status_code: int, code: str, message: str, **extra: Any) -> ApiResponse:
    body: dict[str, Any] = {"success": False, "error": {"code": code, "message": message}}
    if extra:
        body["error"].update(to_json(extra))
    return ApiResponse(status_code=status_code, body=body)


def handle(operation: Callable[[], ApiResponse]) -> ApiResponse:
    """Run an operation, mapping processing errors to error responses."""
    try:
        return operation()
    except LockConflictError as exc:
        return error(
            exc.status_code,
            exc.code,
            str(exc),
            currentLockVersion=exc.current_version,
            expiresAt=exc.expires_at,
        )
    except ProcessingError as exc:
        return error(exc.status_code, exc.code, str(exc))
    except Exception:
        Log.exception("Unhandled error in operation")
        return error(500, ProcessingError.code, "Internal error")


def exact_match_body(match: ExactMatch) -> dict[str, Any]:
    return {
        "hash": match.hash,
        "documentId": match.document_id,
        "fileName": match.file_name,
        "uploadedAt": match.uploaded_at,
    }


def revision_body(revision: DocumentRevision) -> dict[str, Any]:
    return {
        "id": revision.id,
        "processingDocumentId": revision.processing_document_id,
        "revisionNumber": revision.revision_number,
        "status": revision.status,
        "basedOnRevisionId": revision.based_on_revision_id,
        "documentCategory": revision.document_category,
        "vendorName": revision.vendor_name,
        "documentNumber": revision.document_number,
        "documentDate": revision.document_date,
        "currency": revision.currency,
        "subtotal": revision.subtotal,
        "taxAmount": revision.tax_amount,
        "totalAmount": revision.total_amount,
        "validationStatus": revision.validation_status,
        "validationIssues": revision.validation_issues,
        "approvedBy": revision.approved_by,
        "approvedAt": revision.approved_at,
        "items": [
            {
                "lineNo": item.line_no,
                "description": item.description,
                "quantity": item.quantity,
                "unitPrice": item.unit_price,
                "amount": item.amount,
                "taxAmount": item.tax_amount,
                "taxCode": item.tax_code,
            }
            for item in revision.line_items
        ],
    }


class DocumentOperations:
    """Entry points used by the surrounding application (HTTP handlers, jobs)."""

    def __init__(
        self,
        locks: LockManager,
        pages: PageService,
        detector: DuplicateDetector,
        navigator: ReviewNavigator,
        revisions: RevisionManager,
        guard: IdempotencyGuard,
        ingestion: IngestionService,
    ) -> None:
        self._locks = locks
        self._pages = pages
        self._detector = detector
        self._navigator = navigator
        self._revisions = revisions
        self._guard = guard
        self._ingestion = ingestion

    def upload(
        self, ctx: RequestContext, file_name: str, data: bytes, mime_type: str
    ) -> ApiResponse:
        def run() -> ApiResponse:
            result = self._ingestion.upload(ctx, file_name, data, mime_type)
            return ok(
                {
                    "documentId": result.document.id,
                    "pageCount": result.document.page_count,
                    "fileHash": result.document.file_hash,
                    "exactDuplicates": [
                        exact_match_body(match) for match in result.exact_duplicates
                    ],
                },
                status_code=201,
            )

        return handle(run)

    def acquire_lock(
        self,
        ctx: RequestContext,
        document_id: str,
        expected_version: int | None = None,
        idempotency_key: str | None = None,
    ) -> ApiResponse:
        def run() -> ApiResponse:
            result = self._locks.acquire(ctx, document_id, expected_version)
            if not result.granted:
                return error(
                    409,
                    LockConflictError.code,
                    "Document is locked by another user or was modified",
                    currentLockVersion=result.lock_version,
                    expiresAt=result.expires_at,
                )
            return ok(
                {
                    "lockVersion": result.lock_version,
                    "expiresAt": result.expires_at,
                    "lockedBy": result.locked_by,
                }
            )

        return handle(lambda: self._guard.run(ctx, idempotency_key, "acquire_lock", run))

    def release_lock(self, ctx: RequestContext, document_id: str) -> ApiResponse:
        return handle(
            lambda: ok({"lockVersion": self._locks.release(ctx, document_id)})
        )

    def delete_pages(
        self,
        ctx: RequestContext,
        document_id: str,
        page_numbers: Sequence[object],
        lock_version: object,
        idempotency_key: str | None = None,
    ) -> ApiResponse:
        def run() -> ApiResponse:
            result = self._pages.delete_pages(ctx, document_id, page_numbers, lock_version)
            return ok(
                {
                    "pagesDeleted": result.pages_deleted,
                    "newPageCount": result.new_page_count,
                    "deletedPageNumbers": result.deleted_page_numbers,
                    "lockVersion": result.lock_version,
                }
            )

        return handle(lambda: self._guard.run(ctx, idempotency_key, "delete_pages", run))

    def reorder_pages(
        self,
        ctx: RequestContext,
        document_id: str,
        new_order: Sequence[object],
        lock_version: object,
        idempotency_key: str | None = None,
    ) -> ApiResponse:
        def run() -> ApiResponse:
            result = self._pages.reorder_pages(ctx, document_id, new_order, lock_version)
            data: dict[str, Any] = {
                "reordered": result.reordered,
                "pageMapping": [
                    {"oldPageNumber": move.old_page_number, "newPageNumber": move.new_page_number}
                    for move in result.page_mapping
                ],
                "lockVersion": result.lock_version,
            }
            if not result.reordered:
                data["message"] = "Page order unchanged"
            return ok(data)

        return handle(lambda: self._guard.run(ctx, idempotency_key, "reorder_pages", run))

    def append_pages(
        self,
        ctx: RequestContext,
        document_id: str,
        files: Sequence[AppendSource],
        lock_version: object,
        idempotency_key: str | None = None,
    ) -> ApiResponse:
        def run() -> ApiResponse:
            result = self._pages.append_pages(ctx, document_id, files, lock_version)
            return ok(
                {
                    "documentId": result.document_id,
                    "pagesAdded": result.pages_added,
                    "newPageCount": result.new_page_count,
                    "newPages": [
                        {"id": page.id, "pageNumber": page.page_number}
                        for page in result.new_pages
                    ],
                    "lockVersion": result.lock_version,
                }
            )

        return handle(lambda: self._guard.run(ctx, idempotency_key, "append_pages", run))

    def rotate_page(
        self,
        ctx: RequestContext,
        document_id: str,
        page_number: object,
        rotation: object,
        lock_version: object,
        idempotency_key: str | None = None,
    ) -> ApiResponse:
        def run() -> ApiResponse:
            result = self._pages.rotate_page(
                ctx, document_id, page_number, rotation, lock_version
            )
            page = result.page
            return ok(
                {
                    "id": page.id,
                    "pageNumber": page.page_number,
                    "width": page.width_px,
                    "height": page.height_px,
                    "rotation": page.rotation_deg,
                    "lockVersion": result.lock_version,
                }
            )

        return handle(lambda: self._guard.run(ctx, idempotency_key, "rotate_page", run))

    def merge(
        self,
        ctx: RequestContext,
        document_ids: Sequence[object],
        idempotency_key: str | None = None,
    ) -> ApiResponse:
        def run() -> ApiResponse:
            result = self._pages.merge(ctx, document_ids)
            return ok(
                {
                    "mergedDocumentId": result.merged_document_id,
                    "pageCount": result.page_count,
                    "sourceDocumentIds": result.source_document_ids,
                    "sourceDocumentsDeleted": result.source_documents_deleted,
                },
                status_code=201,
            )

        return handle(lambda: self._guard.run(ctx, idempotency_key, "merge", run))

    def split(
        self,
        ctx: RequestContext,
        document_id: str,
        ranges: Sequence[tuple[object, object]],
        lock_version: object,
        idempotency_key: str | None = None,
    ) -> ApiResponse:
        def run() -> ApiResponse:
            result = self._pages.split(ctx, document_id, ranges, lock_version)
            return ok(
                {
                    "originalDocumentId": result.original_document_id,
                    "createdDocumentIds": result.created_document_ids,
                    "splitCount": result.split_count,
                    "lockVersion": result.lock_version,
                },
                status_code=201,
            )

        return handle(lambda: self._guard.run(ctx, idempotency_key, "split", run))

    def check_duplicates(
        self,
        ctx: RequestContext,
        file_hashes: Sequence[object],
        company_id: str | None = None,
    ) -> ApiResponse:
        def run() -> ApiResponse:
            result = self._detector.check_exact(ctx, file_hashes, company_id)
            return ok(
                {
                    "duplicates": [exact_match_body(match) for match in result.duplicates],
                    "duplicateHashes": result.duplicate_hashes,
                }
            )

        return handle(run)

    def navigate(
        self,
        ctx: RequestContext,
        current_id: str | None = None,
        company_ids: list[str] | None = None,
        needs_review: bool = True,
    ) -> ApiResponse:
        def run() -> ApiResponse:
            review_filter = ReviewFilter(ctx.tenant_id, company_ids, needs_review)
            if current_id is None:
                result = self._navigator.start(review_filter)
            else:
                result = self._navigator.navigate(review_filter, current_id)
            return ok(
                {
                    "total": result.total,
                    "currentIndex": result.current_index,
                    "currentDocumentId": result.current_document_id,
                    "prevId": result.prev_id,
                    "nextId": result.next_id,
                }
            )

        return handle(run)

    def approve_revision(self, ctx: RequestContext, revision_id: str) -> ApiResponse:
        def run() -> ApiResponse:
            result = self._revisions.approve(ctx, revision_id)
            return ok(
                {
                    "revision": revision_body(result.revision),
                    "lockVersion": result.lock_version,
                }
            )

        return handle(run)

    def resolve_duplicate(
        self,
        ctx: RequestContext,
        document_id: str,
        decision: str,
        reason: str | None = None,
    ) -> ApiResponse:
        def run() -> ApiResponse:
            result = self._detector.resolve(ctx, document_id, decision, reason)
            return ok(
                {
                    "documentId": result.document_id,
                    "decision": result.decision,
                    "duplicateOfId": result.duplicate_of_id,
                    "referencesCleared": result.references_cleared,
                }
            )

        return handle(run)


def build_operations(
    settings: Settings,
    storage: BaseBlobStorage | None = None,
    audit: BaseAuditSink | None = None,
) -> DocumentOperations:
    """Wire every service from settings. The connection pool must be initialized."""
    audit = audit if audit is not None else LogAuditSink()
    storage = storage if storage is not None else BlobStorageFactory.create(settings)
    documents = ProcessingDocumentRepository()
    revisions = RevisionRepository()
    duplicates = DuplicateRepository()
    pages = DocumentPageRepository()
    inspector = PdfAdapterFactory.create_inspector(settings)
    return DocumentOperations(
        locks=LockManager(documents, audit, settings),
        pages=PageService(
            documents,
            pages,
            duplicates,
            storage,
            PdfAdapterFactory.create_editor(settings),
            inspector,
            audit,
            settings,
        ),
        detector=DuplicateDetector(documents, revisions, duplicates, audit, settings),
        navigator=ReviewNavigator(ReviewQueueRepository()),
        revisions=RevisionManager(documents, revisions, audit),
        guard=IdempotencyGuard(IdempotencyRepository(), settings),
        ingestion=IngestionService(
            documents,
            pages,
            duplicates,
            storage,
            inspector,
            audit,
            settings,
        ),
    )
