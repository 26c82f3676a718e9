from unittest.mock import MagicMock

from docproc.database.models import DocumentRevision, ProcessingDocument
from docproc.duplicates.detector import DuplicateCheckResult, DuplicateDetector
from docproc.extraction.client_base import BaseExtractionClient
from docproc.processor.models import RequestContext
from docproc.processor.processor import Processor
from docproc.revisions.manager import RevisionManager
from docproc.revisions.models import RevisionInput
from docproc.storage.base import BaseBlobStorage
from docproc.worker.job_runner import JobRunner


def _make_runner(
    max_attempts: int = 3,
) -> tuple[JobRunner, MagicMock, MagicMock]:
    """Create a JobRunner with mocked dependencies."""
    mock_processor = MagicMock()
    mock_repo = MagicMock()
    settings = MagicMock(max_pipeline_attempts=max_attempts)
    runner = JobRunner(mock_processor, mock_repo, settings)
    return runner, mock_processor, mock_repo


def _make_document(attempts: int = 0) -> ProcessingDocument:
    return ProcessingDocument(
        id="doc-1",
        tenant_id="tenant-1",
        company_id="company-1",
        file_name="invoice.pdf",
        storage_key="documents/tenant-1/a.pdf",
        source_storage_key="documents/tenant-1/a.pdf",
        mime_type="application/pdf",
        file_size_bytes=1024,
        page_count=1,
        file_hash="a" * 64,
        pipeline_status="PROCESSING",
        pipeline_attempts=attempts,
    )


class TestSuccessfulProcessing:
    def test_calls_processor(self) -> None:
        runner, mock_processor, _repo = _make_runner()
        document = _make_document()

        runner.run(document)

        mock_processor.process.assert_called_once_with(document)

    def test_marks_document_ready(self) -> None:
        runner, _processor, mock_repo = _make_runner()

        runner.run(_make_document())

        mock_repo.mark_ready.assert_called_once_with("doc-1")


class TestFailureBelowMax:
    def test_returns_document_to_queue(self) -> None:
        runner, mock_processor, mock_repo = _make_runner(max_attempts=3)
        mock_processor.process.side_effect = Exception("boom")

        runner.run(_make_document(attempts=0))

        mock_repo.return_to_queue.assert_called_once_with("doc-1", "boom")
        mock_repo.mark_failed.assert_not_called()

    def test_does_not_mark_ready(self) -> None:
        runner, mock_processor, mock_repo = _make_runner(max_attempts=3)
        mock_processor.process.side_effect = Exception("boom")

        runner.run(_make_document(attempts=1))

        mock_repo.mark_ready.assert_not_called()


class TestFailureAtMax:
    def test_marks_failed(self) -> None:
        runner, mock_processor, mock_repo = _make_runner(max_attempts=3)
        mock_processor.process.side_effect = Exception("boom")

        runner.run(_make_document(attempts=2))

        mock_repo.mark_failed.assert_called_once_with("doc-1", "boom")
        mock_repo.return_to_queue.assert_not_called()

    def test_marks_failed_when_over_max(self) -> None:
        runner, mock_processor, mock_repo = _make_runner(max_attempts=3)
        mock_processor.process.side_effect = Exception("boom")

        runner.run(_make_document(attempts=5))

        mock_repo.mark_failed.assert_called_once_with("doc-1", "boom")


class TestRetryAfterDuplicateCheckFailure:
    def test_retry_keeps_a_single_pipeline_draft(self) -> None:
        drafts: list[DocumentRevision] = []

        def create_draft(ctx: RequestContext, document_id: str, data: object) -> DocumentRevision:
            revision = DocumentRevision(
                id=f"rev-{len(drafts) + 1}",
                processing_document_id=document_id,
                revision_number=len(drafts) + 1,
                status="DRAFT",
                created_by=ctx.actor_id,
            )
            drafts.append(revision)
            return revision

        storage = MagicMock(spec=BaseBlobStorage)
        storage.download.return_value = b"%PDF-1.4"
        extraction = MagicMock(spec=BaseExtractionClient)
        extraction.run.return_value = RevisionInput(vendor_name="Acme")
        revisions = MagicMock(spec=RevisionManager)
        revisions.create_draft.side_effect = create_draft
        revisions.latest_draft.side_effect = lambda ctx, document_id: (
            drafts[-1] if drafts else None
        )
        detector = MagicMock(spec=DuplicateDetector)
        detector.check_document.side_effect = [
            RuntimeError("connection reset"),
            DuplicateCheckResult(document_id="doc-1", duplicate_status="NONE"),
        ]
        repo = MagicMock()
        runner = JobRunner(
            Processor(storage, extraction, revisions, detector),
            repo,
            MagicMock(max_pipeline_attempts=3),
        )

        runner.run(_make_document(attempts=0))
        runner.run(_make_document(attempts=1))

        repo.return_to_queue.assert_called_once_with("doc-1", "connection reset")
        repo.mark_ready.assert_called_once_with("doc-1")
        assert [revision.id for revision in drafts] == ["rev-1"]
        extraction.run.assert_called_once()
