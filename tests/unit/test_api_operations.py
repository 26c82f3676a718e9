from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

from docproc.api.operations import DocumentOperations, error, handle, ok, to_json
from docproc.api.response import ApiResponse
from docproc.database.models import DocumentPage, ProcessingDocument
from docproc.duplicates.detector import DuplicateDetector, ExactDuplicateResult, ExactMatch
from docproc.locking.idempotency import IdempotencyGuard
from docproc.locking.lock_manager import LockManager, LockResult
from docproc.pages.manipulator import PageMove
from docproc.processor.exceptions import (
    DocumentNotFoundError,
    LockConflictError,
    PageNotFoundError,
    ProcessingValidationError,
)
from docproc.processor.ingestion import IngestionService, UploadResult
from docproc.processor.models import RequestContext
from docproc.pdf.base import AppendSource
from docproc.processor.page_service import (
    AppendPagesResult,
    DeletePagesResult,
    PageService,
    ReorderPagesResult,
    RotatePageResult,
)
from docproc.review.navigator import NavigationResult, ReviewNavigator
from docproc.revisions.manager import RevisionManager

CTX = RequestContext(tenant_id="tenant-1", actor_id="alice")
EXPIRES = datetime(2026, 3, 1, 12, 5, tzinfo=timezone.utc)


class _Harness:
    def __init__(self) -> None:
        self.locks = MagicMock(spec=LockManager)
        self.pages = MagicMock(spec=PageService)
        self.detector = MagicMock(spec=DuplicateDetector)
        self.navigator = MagicMock(spec=ReviewNavigator)
        self.revisions = MagicMock(spec=RevisionManager)
        self.guard = MagicMock(spec=IdempotencyGuard)
        self.guard.run.side_effect = lambda ctx, key, endpoint, operation: operation()
        self.ingestion = MagicMock(spec=IngestionService)
        self.operations = DocumentOperations(
            self.locks,
            self.pages,
            self.detector,
            self.navigator,
            self.revisions,
            self.guard,
            self.ingestion,
        )


class TestEnvelope:
    def test_to_json_converts_nested_values(self) -> None:
        value = {"at": EXPIRES, "amounts": [Decimal("1.50")], "n": 1}
        assert to_json(value) == {"at": EXPIRES.isoformat(), "amounts": ["1.50"], "n": 1}

    def test_ok_and_error_bodies(self) -> None:
        assert ok({"a": 1}).body == {"success": True, "data": {"a": 1}}
        response = error(404, "NOT_FOUND", "missing", detail="x")
        assert response.status_code == 404
        assert response.body == {
            "success": False,
            "error": {"code": "NOT_FOUND", "message": "missing", "detail": "x"},
        }

    def test_handle_maps_processing_errors(self) -> None:
        def fail() -> ApiResponse:
            raise ProcessingValidationError("bad input")

        response = handle(fail)

        assert response.status_code == 400
        assert response.body["error"] == {"code": "VALIDATION_ERROR", "message": "bad input"}

    def test_handle_adds_lock_details(self) -> None:
        def fail() -> ApiResponse:
            raise LockConflictError("stale", current_version=7, expires_at=EXPIRES)

        response = handle(fail)

        assert response.status_code == 409
        assert response.body["error"]["currentLockVersion"] == 7
        assert response.body["error"]["expiresAt"] == EXPIRES.isoformat()

    def test_handle_hides_unexpected_errors(self) -> None:
        def fail() -> ApiResponse:
            raise RuntimeError("secret detail")

        response = handle(fail)

        assert response.status_code == 500
        assert response.body["error"] == {"code": "INTERNAL_ERROR", "message": "Internal error"}


class TestAcquireLock:
    def test_granted(self) -> None:
        h = _Harness()
        h.locks.acquire.return_value = LockResult(True, 5, EXPIRES, "alice")

        response = h.operations.acquire_lock(CTX, "doc-1", idempotency_key="k1")

        assert response.status_code == 200
        assert response.body["data"] == {
            "lockVersion": 5,
            "expiresAt": EXPIRES.isoformat(),
            "lockedBy": "alice",
        }
        assert h.guard.run.call_args.args[1:3] == ("k1", "acquire_lock")

    def test_denied_is_conflict_with_current_version(self) -> None:
        h = _Harness()
        h.locks.acquire.return_value = LockResult(False, 6, EXPIRES, "bob")

        response = h.operations.acquire_lock(CTX, "doc-1", expected_version=5)

        assert response.status_code == 409
        assert response.body["error"]["code"] == "CONFLICT"
        assert response.body["error"]["currentLockVersion"] == 6


class TestPageOperations:
    def test_delete_pages_body(self) -> None:
        h = _Harness()
        h.pages.delete_pages.return_value = DeletePagesResult(2, 3, [2, 4], 8)

        response = h.operations.delete_pages(CTX, "doc-1", [2, 4], 7)

        assert response.body["data"] == {
            "pagesDeleted": 2,
            "newPageCount": 3,
            "deletedPageNumbers": [2, 4],
            "lockVersion": 8,
        }

    def test_unchanged_reorder_has_message(self) -> None:
        h = _Harness()
        h.pages.reorder_pages.return_value = ReorderPagesResult(
            reordered=False, page_mapping=[PageMove("p1", 1, 1)], lock_version=7
        )

        response = h.operations.reorder_pages(CTX, "doc-1", [1], 7)

        assert response.body["data"]["message"] == "Page order unchanged"
        assert response.body["data"]["pageMapping"] == [{"oldPageNumber": 1, "newPageNumber": 1}]

    def test_append_pages_body(self) -> None:
        h = _Harness()
        new_pages = [
            DocumentPage("p4", "doc-1", page_number=4, width_px=612, height_px=792),
            DocumentPage("p5", "doc-1", page_number=5, width_px=200, height_px=100),
        ]
        h.pages.append_pages.return_value = AppendPagesResult("doc-1", new_pages, 5, 8)
        files = [AppendSource(b"%PDF", "application/pdf", "extra.pdf")]

        response = h.operations.append_pages(CTX, "doc-1", files, 7, idempotency_key="k2")

        assert response.status_code == 200
        assert response.body["data"] == {
            "documentId": "doc-1",
            "pagesAdded": 2,
            "newPageCount": 5,
            "newPages": [{"id": "p4", "pageNumber": 4}, {"id": "p5", "pageNumber": 5}],
            "lockVersion": 8,
        }
        h.pages.append_pages.assert_called_once_with(CTX, "doc-1", files, 7)
        assert h.guard.run.call_args.args[1:3] == ("k2", "append_pages")

    def test_rotate_page_body(self) -> None:
        h = _Harness()
        page = DocumentPage(
            id="p2",
            processing_document_id="doc-1",
            page_number=2,
            width_px=612,
            height_px=792,
            rotation_deg=90,
        )
        h.pages.rotate_page.return_value = RotatePageResult(page, rotated=True, lock_version=8)

        response = h.operations.rotate_page(CTX, "doc-1", 2, 90, 7, idempotency_key="k3")

        assert response.body["data"] == {
            "id": "p2",
            "pageNumber": 2,
            "width": 612,
            "height": 792,
            "rotation": 90,
            "lockVersion": 8,
        }
        assert h.guard.run.call_args.args[1:3] == ("k3", "rotate_page")

    def test_rotate_missing_page_maps_to_404(self) -> None:
        h = _Harness()
        h.pages.rotate_page.side_effect = PageNotFoundError("Page 9 not found")

        response = h.operations.rotate_page(CTX, "doc-1", 9, 90, 7)

        assert response.status_code == 404
        assert response.body["error"] == {"code": "NOT_FOUND", "message": "Page 9 not found"}

    def test_not_found_maps_to_404(self) -> None:
        h = _Harness()
        h.pages.split.side_effect = DocumentNotFoundError("Document doc-9 not found")

        response = h.operations.split(CTX, "doc-9", [(1, 1), (2, 2)], 1)

        assert response.status_code == 404
        assert response.body["success"] is False


class TestCheckDuplicates:
    def test_lists_matches(self) -> None:
        h = _Harness()
        h.detector.check_exact.return_value = ExactDuplicateResult(
            duplicates=[ExactMatch("ab" * 32, "doc-9", "old.pdf", EXPIRES)],
            duplicate_hashes=["ab" * 32],
        )

        response = h.operations.check_duplicates(CTX, ["ab" * 32])

        assert response.body["data"]["duplicates"][0]["documentId"] == "doc-9"
        assert response.body["data"]["duplicates"][0]["uploadedAt"] == EXPIRES.isoformat()
        assert response.body["data"]["duplicateHashes"] == ["ab" * 32]


class TestUpload:
    def test_exact_duplicates_use_the_check_duplicates_shape(self) -> None:
        h = _Harness()
        match = ExactMatch("ab" * 32, "doc-9", "old.pdf", EXPIRES)
        document = ProcessingDocument(
            id="doc-new",
            tenant_id="tenant-1",
            company_id=None,
            file_name="new.pdf",
            storage_key="documents/tenant-1/n.pdf",
            source_storage_key="documents/tenant-1/n.pdf",
            mime_type="application/pdf",
            file_size_bytes=10,
            page_count=1,
            file_hash="ab" * 32,
        )
        h.ingestion.upload.return_value = UploadResult(
            document=document, pages=[], exact_duplicates=[match]
        )
        h.detector.check_exact.return_value = ExactDuplicateResult(
            duplicates=[match], duplicate_hashes=["ab" * 32]
        )

        uploaded = h.operations.upload(CTX, "new.pdf", b"%PDF", "application/pdf")
        checked = h.operations.check_duplicates(CTX, ["ab" * 32])

        assert uploaded.status_code == 201
        assert uploaded.body["data"]["exactDuplicates"] == [
            {
                "hash": "ab" * 32,
                "documentId": "doc-9",
                "fileName": "old.pdf",
                "uploadedAt": EXPIRES.isoformat(),
            }
        ]
        assert uploaded.body["data"]["exactDuplicates"] == checked.body["data"]["duplicates"]


class TestNavigate:
    def test_starts_without_current_id(self) -> None:
        h = _Harness()
        h.navigator.start.return_value = NavigationResult(5, 0, "doc-5", None, "doc-4")

        response = h.operations.navigate(CTX)

        assert response.body["data"] == {
            "total": 5,
            "currentIndex": 0,
            "currentDocumentId": "doc-5",
            "prevId": None,
            "nextId": "doc-4",
        }
        h.navigator.navigate.assert_not_called()
