import time

from docproc.config.settings import Settings
from docproc.database.connection import get_connection
from docproc.database.models import ProcessingDocument
from docproc.database.repositories.processing_document_repository import (
    ProcessingDocumentRepository,
)
from docproc.logging.logger import Log
from docproc.worker.job_runner import JobRunner


class Worker:
    """Poll loop: claim a QUEUED document -> run its pipeline -> sleep when idle."""

    def __init__(
        self,
        documents: ProcessingDocumentRepository,
        job_runner: JobRunner,
        settings: Settings,
    ) -> None:
        self._documents = documents
        self._job_runner = job_runner
        self._settings = settings

    def run(self, max_documents: int | None = None) -> None:
        """Main poll loop. Runs forever until interrupted.

        If max_documents is set, stop after processing that many (for testing).
        """
        Log.info("Worker started, polling for queued documents")
        processed = 0
        try:
            while max_documents is None or processed < max_documents:
                document = self._try_claim()
                if document is None:
                    Log.debug("No queued documents, sleeping")
                    time.sleep(self._settings.job_poll_interval_seconds)
                    continue
                self._job_runner.run(document)
                processed += 1
        except KeyboardInterrupt:
            Log.info("Worker shutting down gracefully")

    def _try_claim(self) -> ProcessingDocument | None:
        """Claim the next queued document. Database errors are logged and retried."""
        try:
            with get_connection() as conn:
                return self._documents.claim_next_queued(
                    conn, self._settings.max_pipeline_attempts
                )
        except Exception as exc:
            Log.warning(f"Database error, will retry: {exc}")
            return None
