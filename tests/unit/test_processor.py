from unittest.mock import MagicMock, patch

import pytest

from docproc.database.models import DocumentRevision, ProcessingDocument
from docproc.duplicates.detector import DuplicateCheckResult, DuplicateDetector
from docproc.extraction.client_base import BaseExtractionClient
from docproc.processor.exceptions import StorageError
from docproc.processor.processor import PIPELINE_ACTOR, Processor, build_processor
from docproc.revisions.manager import RevisionManager
from docproc.revisions.models import RevisionInput
from docproc.storage.base import BaseBlobStorage


def _make_document() -> ProcessingDocument:
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
    )


def _draft(created_by: str) -> DocumentRevision:
    return DocumentRevision(
        id="rev-1",
        processing_document_id="doc-1",
        revision_number=1,
        status="DRAFT",
        created_by=created_by,
    )


def _make_pipeline() -> tuple[Processor, MagicMock, MagicMock, MagicMock, MagicMock]:
    storage = MagicMock(spec=BaseBlobStorage)
    storage.download.return_value = b"%PDF-1.4"
    extraction = MagicMock(spec=BaseExtractionClient)
    extraction.run.return_value = RevisionInput(vendor_name="Acme")
    revisions = MagicMock(spec=RevisionManager)
    revisions.latest_draft.return_value = None
    detector = MagicMock(spec=DuplicateDetector)
    detector.check_document.return_value = DuplicateCheckResult(
        document_id="doc-1", duplicate_status="NONE"
    )
    processor = Processor(storage, extraction, revisions, detector)
    return processor, storage, extraction, revisions, detector


class TestProcess:
    def test_runs_steps_in_order(self) -> None:
        processor, storage, extraction, revisions, detector = _make_pipeline()
        document = _make_document()

        processor.process(document)

        storage.download.assert_called_once_with("documents/tenant-1/a.pdf")
        extraction.run.assert_called_once_with(document, b"%PDF-1.4")
        ctx, document_id, data = revisions.create_draft.call_args.args
        assert ctx.actor_id == PIPELINE_ACTOR
        assert ctx.tenant_id == "tenant-1"
        assert document_id == "doc-1"
        assert data == RevisionInput(vendor_name="Acme")
        detector.check_document.assert_called_once_with("tenant-1", "doc-1")

    def test_storage_failure_stops_pipeline(self) -> None:
        processor, storage, extraction, revisions, _detector = _make_pipeline()
        storage.download.side_effect = StorageError("Blob not found: x")

        with pytest.raises(StorageError):
            processor.process(_make_document())

        extraction.run.assert_not_called()
        revisions.create_draft.assert_not_called()

    def test_reuses_pipeline_draft_from_earlier_attempt(self) -> None:
        processor, storage, extraction, revisions, detector = _make_pipeline()
        revisions.latest_draft.return_value = _draft(created_by=PIPELINE_ACTOR)

        processor.process(_make_document())

        storage.download.assert_not_called()
        extraction.run.assert_not_called()
        revisions.create_draft.assert_not_called()
        detector.check_document.assert_called_once_with("tenant-1", "doc-1")

    def test_human_draft_does_not_skip_extraction(self) -> None:
        processor, _storage, extraction, revisions, _detector = _make_pipeline()
        revisions.latest_draft.return_value = _draft(created_by="alice")

        processor.process(_make_document())

        extraction.run.assert_called_once()
        revisions.create_draft.assert_called_once()


class TestBuildProcessor:
    def test_wires_adapters_from_settings(self) -> None:
        settings = MagicMock(extraction_provider="example")
        storage = MagicMock(spec=BaseBlobStorage)

        processor = build_processor(settings, MagicMock(), storage=storage)

        assert isinstance(processor, Processor)

    @patch("docproc.processor.processor.ExtractionClientFactory.create")
    def test_unknown_provider_propagates(self, mock_create: MagicMock) -> None:
        mock_create.side_effect = ValueError("Unknown extraction provider 'x'")

        with pytest.raises(ValueError, match="Unknown extraction provider"):
            build_processor(MagicMock(), MagicMock(), storage=MagicMock())
