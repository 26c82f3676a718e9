from docproc.audit.log_sink import LogAuditSink
from docproc.config.settings import Settings
from docproc.database.connection import apply_schema, close_pool, init_pool
from docproc.database.repositories.processing_document_repository import (
    ProcessingDocumentRepository,
)
from docproc.logging.logger import Log
from docproc.processor.processor import build_processor
from docproc.worker.job_runner import JobRunner
from docproc.worker.worker import Worker


def main() -> None:
    """Entry point: initialize pool -> build dependencies -> start worker loop."""
    settings = Settings()
    Log.configure(settings.log_level)
    init_pool(settings)

    try:
        if settings.db_apply_schema:
            apply_schema()
        processor = build_processor(settings, LogAuditSink())
        documents = ProcessingDocumentRepository()
        job_runner = JobRunner(processor, documents, settings)
        worker = Worker(documents, job_runner, settings)
        worker.run()
    finally:
        close_pool()


if __name__ == "__main__":
    main()
