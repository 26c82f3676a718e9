import uuid
from dataclasses import dataclass

from docproc.audit.base import AuditEvent, BaseAuditSink, record_safely
from docproc.config.settings import Settings
from docproc.database.connection import get_connection
from docproc.database.models import PDF_MIME_TYPE, DocumentPage, ProcessingDocument
from docproc.database.repositories.document_page_repository import DocumentPageRepository
from docproc.database.repositories.duplicate_repository import DuplicateRepository
from docproc.database.repositories.processing_document_repository import (
    ProcessingDocumentRepository,
)
from docproc.duplicates.detector import ExactMatch, exact_match_from_row
from docproc.duplicates.fingerprint import file_hash
from docproc.logging.logger import Log
from docproc.pages.manipulator import page_fingerprint
from docproc.pdf.base import BasePdfInspector, PageInfo
from docproc.pdf.exceptions import PdfProcessingError
from docproc.processor.exceptions import ProcessingValidationError
from docproc.processor.models import RequestContext
from docproc.storage.base import EXTENSIONS, BaseBlobStorage, build_storage_key

# US Letter in PDF points, used when no engine can read the PDF.
PLACEHOLDER_PAGE = PageInfo(page_number=1, width=612, height=792)
IMAGE_PAGE = PageInfo(page_number=1, width=0, height=0)


@dataclass(frozen=True)
class UploadResult:
    document: ProcessingDocument
    pages: list[DocumentPage]
    exact_duplicates: list[ExactMatch]


class IngestionService:
    """Accepts an uploaded file and queues it for the pipeline."""

    def __init__(
        self,
        documents: ProcessingDocumentRepository,
        pages: DocumentPageRepository,
        duplicates: DuplicateRepository,
        storage: BaseBlobStorage,
        inspector: BasePdfInspector,
        audit: BaseAuditSink,
        settings: Settings,
    ) -> None:
        self._documents = documents
        self._pages = pages
        self._duplicates = duplicates
        self._storage = storage
        self._inspector = inspector
        self._audit = audit
        self._settings = settings

    def upload(
        self, ctx: RequestContext, file_name: str, data: bytes, mime_type: str
    ) -> UploadResult:
        """Store the file and create a QUEUED document with its page rows.

        An identical file already in the tenant is reported, not rejected.
        """
        if not file_name or not file_name.strip():
            raise ProcessingValidationError("file_name is required")
        if not data:
            raise ProcessingValidationError("File is empty")
        if len(data) > self._settings.max_file_size_bytes:
            raise ProcessingValidationError(
                f"File exceeds the maximum size of {self._settings.max_file_size_bytes} bytes"
            )
        if mime_type not in EXTENSIONS:
            raise ProcessingValidationError(
                f"Unsupported file type {mime_type}. Allowed: {sorted(EXTENSIONS)}"
            )

        digest = file_hash(data)
        existing = [
            exact_match_from_row(row)
            for row in self._duplicates.find_by_hashes(ctx.tenant_id, [digest], ctx.company_id)
        ]
        if existing:
            Log.warning(
                "Uploaded file matches existing documents",
                file_hash=digest,
                document_ids=[item.document_id for item in existing],
            )

        key = build_storage_key(ctx.tenant_id, mime_type)
        self._storage.upload(key, data, mime_type)
        infos = self._page_infos(data, mime_type)

        document_id = str(uuid.uuid4())
        document = ProcessingDocument(
            id=document_id,
            tenant_id=ctx.tenant_id,
            company_id=ctx.company_id,
            file_name=file_name.strip(),
            storage_key=key,
            source_storage_key=key,
            mime_type=mime_type,
            file_size_bytes=len(data),
            page_count=len(infos),
            file_hash=digest,
        )
        pages = [
            DocumentPage(
                id=str(uuid.uuid4()),
                processing_document_id=document_id,
                page_number=info.page_number,
                width_px=info.width,
                height_px=info.height,
                rotation_deg=info.rotation,
                image_fingerprint=page_fingerprint(key, info.page_number),
            )
            for info in infos
        ]
        with get_connection() as conn:
            self._documents.insert(conn, document)
            self._pages.insert_many(conn, pages)
            conn.commit()

        Log.info(
            "Document uploaded",
            document_id=document_id,
            page_count=len(pages),
            file_size_bytes=len(data),
        )
        record_safely(
            self._audit,
            AuditEvent(
                action="DOCUMENT_UPLOADED",
                tenant_id=ctx.tenant_id,
                actor_id=ctx.actor_id,
                entity_id=document_id,
                details={"fileName": document.file_name, "pageCount": len(pages)},
            ),
        )
        return UploadResult(document=document, pages=pages, exact_duplicates=existing)

    def _page_infos(self, data: bytes, mime_type: str) -> list[PageInfo]:
        if mime_type != PDF_MIME_TYPE:
            return [IMAGE_PAGE]
        try:
            infos = self._inspector.inspect(data)
        except PdfProcessingError as exc:
            Log.warning(f"Could not read PDF pages, using a placeholder page: {exc}")
            return [PLACEHOLDER_PAGE]
        return infos or [PLACEHOLDER_PAGE]
