from docproc.audit.base import BaseAuditSink
from docproc.config.settings import Settings
from docproc.database.models import ProcessingDocument
from docproc.database.repositories.duplicate_repository import DuplicateRepository
from docproc.database.repositories.processing_document_repository import (
    ProcessingDocumentRepository,
)
from docproc.database.repositories.revision_repository import RevisionRepository
from docproc.duplicates.detector import DuplicateDetector
from docproc.extraction.client_base import BaseExtractionClient
from docproc.extraction.factory import ExtractionClientFactory
from docproc.logging.logger import Log
from docproc.processor.models import RequestContext
from docproc.revisions.manager import RevisionManager
from docproc.storage.base import BaseBlobStorage
from docproc.storage.factory import BlobStorageFactory

PIPELINE_ACTOR = "system:pipeline"


class Processor:
    """Runs the pipeline for one claimed document.

    Pipeline: load -> extract -> store DRAFT revision -> fuzzy duplicate check.
    A retry reuses the pipeline DRAFT stored by an earlier attempt instead of
    extracting again.
    """

    def __init__(
        self,
        storage: BaseBlobStorage,
        extraction: BaseExtractionClient,
        revisions: RevisionManager,
        detector: DuplicateDetector,
    ) -> None:
        self._storage = storage
        self._extraction = extraction
        self._revisions = revisions
        self._detector = detector

    def process(self, document: ProcessingDocument) -> None:
        Log.info(f"Processing document {document.id}")
        ctx = RequestContext(
            tenant_id=document.tenant_id,
            actor_id=PIPELINE_ACTOR,
            company_id=document.company_id,
        )

        previous = self._revisions.latest_draft(ctx, document.id)
        if previous is not None and previous.created_by == PIPELINE_ACTOR:
            Log.info(
                f"Reusing revision {previous.revision_number} for document {document.id}",
                pipeline_attempts=document.pipeline_attempts,
            )
        else:
            # Step 1: Load file
            raw_bytes = self._storage.download(document.storage_key)
            Log.info(f"Loaded {len(raw_bytes)} bytes for document {document.id}")

            # Step 2: Extract and keep the result as a DRAFT
            extracted = self._extraction.run(document, raw_bytes)
            revision = self._revisions.create_draft(ctx, document.id, extracted)
            Log.info(
                f"Stored revision {revision.revision_number} for document {document.id}",
                validation_status=revision.validation_status,
            )

        # Step 3: Near-duplicate check against recent documents
        check = self._detector.check_document(document.tenant_id, document.id)
        Log.info(
            f"Duplicate check for document {document.id}: {check.duplicate_status}"
        )


def build_processor(
    settings: Settings,
    audit: BaseAuditSink,
    storage: BaseBlobStorage | None = None,
) -> Processor:
    """Build a Processor with all required adapters."""
    documents = ProcessingDocumentRepository()
    revisions = RevisionRepository()
    return Processor(
        storage=storage if storage is not None else BlobStorageFactory.create(settings),
        extraction=ExtractionClientFactory.create(settings),
        revisions=RevisionManager(documents, revisions, audit),
        detector=DuplicateDetector(
            documents, revisions, DuplicateRepository(), audit, settings
        ),
    )
