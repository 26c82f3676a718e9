from docproc.config.settings import Settings
from docproc.database.models import ProcessingDocument
from docproc.database.repositories.processing_document_repository import (
    ProcessingDocumentRepository,
)
from docproc.logging.logger import Log
from docproc.processor.processor import Processor


class JobRunner:
    """Run the pipeline for one document, catch exceptions, and apply retry logic."""

    def __init__(
        self,
        processor: Processor,
        documents: ProcessingDocumentRepository,
        settings: Settings,
    ) -> None:
        self._processor = processor
        self._documents = documents
        self._settings = settings

    def run(self, document: ProcessingDocument) -> None:
        """Execute the pipeline with error handling."""
        attempt = document.pipeline_attempts + 1
        Log.info(f"Running pipeline for document {document.id} (attempt {attempt})")
        try:
            self._processor.process(document)
            self._documents.mark_ready(document.id)
            Log.info(f"Document {document.id} is ready for review")
        except Exception as exc:
            self._handle_failure(document, exc)

    def _handle_failure(self, document: ProcessingDocument, exc: Exception) -> None:
        """Increment attempts; mark failed if at max, otherwise back to QUEUED."""
        attempt = document.pipeline_attempts + 1
        Log.error(f"Pipeline failed for document {document.id}: {exc}")
        if attempt >= self._settings.max_pipeline_attempts:
            self._documents.mark_failed(document.id, str(exc))
            Log.error(f"Document {document.id} permanently failed after {attempt} attempts")
        else:
            self._documents.return_to_queue(document.id, str(exc))
            Log.warning(f"Document {document.id} will be retried (attempt {attempt})")
