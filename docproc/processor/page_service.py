import uuid
from collections.abc import Sequence
from dataclasses import dataclass, replace
from pathlib import PurePath
from typing import Any

import psycopg

from docproc.audit.base import AuditEvent, BaseAuditSink, record_safely
from docproc.config.settings import Settings
from docproc.database.connection import get_connection
from docproc.database.models import DocumentPage, ProcessingDocument
from docproc.database.repositories.document_page_repository import DocumentPageRepository
from docproc.database.repositories.duplicate_repository import DuplicateRepository
from docproc.database.repositories.processing_document_repository import (
    ProcessingDocumentRepository,
)
from docproc.duplicates.fingerprint import file_hash
from docproc.locking.lock_manager import require_lock
from docproc.logging.logger import Log
from docproc.pages.manipulator import (
    PageMove,
    PageRecord,
    check_append_sources,
    page_fingerprint,
    plan_append,
    plan_delete,
    plan_reorder,
    plan_rotation,
    plan_split,
    two_phase_renumber,
)
from docproc.pdf.base import BasePdfEditor, BasePdfInspector
from docproc.processor.exceptions import (
    DocumentNotFoundError,
    InvalidStateError,
    ProcessingValidationError,
)
from docproc.processor.models import RequestContext
from docproc.storage.base import BaseBlobStorage, build_storage_key


@dataclass(frozen=True)
class DeletePagesResult:
    pages_deleted: int
    new_page_count: int
    deleted_page_numbers: list[int]
    lock_version: int


@dataclass(frozen=True)
class ReorderPagesResult:
    reordered: bool
    page_mapping: list[PageMove]
    lock_version: int


@dataclass(frozen=True)
class AppendPagesResult:
    document_id: str
    new_pages: list[DocumentPage]
    new_page_count: int
    lock_version: int

    @property
    def pages_added(self) -> int:
        return len(self.new_pages)


@dataclass(frozen=True)
class RotatePageResult:
    page: DocumentPage
    rotated: bool
    lock_version: int


@dataclass(frozen=True)
class MergeResult:
    merged_document_id: str
    page_count: int
    source_document_ids: list[str]
    source_documents_deleted: bool = True


@dataclass(frozen=True)
class SplitResult:
    original_document_id: str
    created_document_ids: list[str]
    split_count: int
    lock_version: int


def _require_version(expected_version: object) -> int:
    if isinstance(expected_version, bool) or not isinstance(expected_version, int):
        raise ProcessingValidationError("lockVersion must be an integer")
    if expected_version < 0:
        raise ProcessingValidationError("lockVersion must not be negative")
    return expected_version


def _require_list(value: object, what: str) -> list[object]:
    if not isinstance(value, (list, tuple)) or not value:
        raise ProcessingValidationError(f"{what} must be a non-empty list")
    return list(value)


class PageService:
    """Structural changes to a document's pages and documents built from them.

    The new binary is always written under a fresh storage key before the
    metadata transaction, so a failure at any step leaves the stored
    document untouched.
    """

    def __init__(
        self,
        documents: ProcessingDocumentRepository,
        pages: DocumentPageRepository,
        duplicates: DuplicateRepository,
        storage: BaseBlobStorage,
        editor: BasePdfEditor,
        inspector: BasePdfInspector,
        audit: BaseAuditSink,
        settings: Settings,
    ) -> None:
        self._documents = documents
        self._pages = pages
        self._duplicates = duplicates
        self._storage = storage
        self._editor = editor
        self._inspector = inspector
        self._audit = audit
        self._settings = settings

    def delete_pages(
        self,
        ctx: RequestContext,
        document_id: str,
        page_numbers: Sequence[object],
        expected_version: object,
    ) -> DeletePagesResult:
        requested = _require_list(page_numbers, "pageNumbers")
        version = _require_version(expected_version)

        document = self._documents.find_by_id(ctx.tenant_id, document_id)
        self._check_editable(document)
        require_lock(document, ctx.actor_id, version)
        pages = self._pages.find_for_document(document_id)
        plan = plan_delete(self._records(pages), requested)

        original = self._storage.download(document.storage_key)
        rewritten = self._editor.delete_pages(original, plan.deleted_page_numbers)
        new_key = self._upload(ctx, document, rewritten)

        with get_connection() as conn:
            locked = self._documents.lock_for_update(conn, ctx.tenant_id, document_id)
            require_lock(locked, ctx.actor_id, version)
            self._pages.delete_by_ids(conn, plan.deleted_page_ids)
            self._renumber(conn, document, plan.moves)
            new_version = self._documents.update_after_page_change(
                conn, document_id, new_key, len(rewritten), plan.new_page_count
            )
            conn.commit()

        Log.info(
            "Deleted pages",
            document_id=document_id,
            pages_deleted=len(plan.deleted_page_numbers),
            new_page_count=plan.new_page_count,
        )
        self._record(
            ctx,
            "PAGES_DELETED",
            document_id,
            {"deletedPageNumbers": plan.deleted_page_numbers, "newPageCount": plan.new_page_count},
        )
        return DeletePagesResult(
            pages_deleted=len(plan.deleted_page_numbers),
            new_page_count=plan.new_page_count,
            deleted_page_numbers=plan.deleted_page_numbers,
            lock_version=new_version,
        )

    def reorder_pages(
        self,
        ctx: RequestContext,
        document_id: str,
        new_order: Sequence[object],
        expected_version: object,
    ) -> ReorderPagesResult:
        requested = _require_list(new_order, "newOrder")
        version = _require_version(expected_version)

        document = self._documents.find_by_id(ctx.tenant_id, document_id)
        self._check_editable(document)
        require_lock(document, ctx.actor_id, version)
        pages = self._pages.find_for_document(document_id)
        plan = plan_reorder(self._records(pages), requested)

        if plan.is_identity:
            Log.info("Page order unchanged", document_id=document_id)
            return ReorderPagesResult(
                reordered=False, page_mapping=plan.mapping, lock_version=document.lock_version
            )

        original = self._storage.download(document.storage_key)
        rewritten = self._editor.reorder_pages(original, plan.new_order)
        new_key = self._upload(ctx, document, rewritten)

        with get_connection() as conn:
            locked = self._documents.lock_for_update(conn, ctx.tenant_id, document_id)
            require_lock(locked, ctx.actor_id, version)
            self._renumber(conn, document, plan.moves)
            new_version = self._documents.update_after_page_change(
                conn, document_id, new_key, len(rewritten), len(plan.mapping)
            )
            conn.commit()

        Log.info("Reordered pages", document_id=document_id, new_order=plan.new_order)
        self._record(ctx, "PAGES_REORDERED", document_id, {"newOrder": plan.new_order})
        return ReorderPagesResult(
            reordered=True, page_mapping=plan.mapping, lock_version=new_version
        )

    def append_pages(
        self,
        ctx: RequestContext,
        document_id: str,
        files: Sequence[object],
        expected_version: object,
    ) -> AppendPagesResult:
        """Append the pages of PDF and image files after the document's last page."""
        version = _require_version(expected_version)
        sources = check_append_sources(
            _require_list(files, "files"), self._settings.max_file_size_bytes
        )

        document = self._documents.find_by_id(ctx.tenant_id, document_id)
        self._check_editable(document)
        require_lock(document, ctx.actor_id, version)
        pages = self._pages.find_for_document(document_id)

        original = self._storage.download(document.storage_key)
        combined = self._editor.append(original, sources)
        infos = self._inspector.inspect(combined)
        new_numbers = plan_append(self._records(pages), len(infos))
        new_key = self._upload(ctx, document, combined)
        added = [
            DocumentPage(
                id=str(uuid.uuid4()),
                processing_document_id=document_id,
                page_number=number,
                width_px=infos[number - 1].width,
                height_px=infos[number - 1].height,
                rotation_deg=infos[number - 1].rotation,
                image_fingerprint=page_fingerprint(document.source_storage_key, number),
            )
            for number in new_numbers
        ]

        with get_connection() as conn:
            locked = self._documents.lock_for_update(conn, ctx.tenant_id, document_id)
            require_lock(locked, ctx.actor_id, version)
            self._pages.insert_many(conn, added)
            new_version = self._documents.update_after_page_change(
                conn, document_id, new_key, len(combined), len(infos)
            )
            conn.commit()

        Log.info(
            "Appended pages",
            document_id=document_id,
            pages_added=len(added),
            new_page_count=len(infos),
        )
        self._record(
            ctx,
            "PAGES_APPENDED",
            document_id,
            {
                "pagesAdded": len(added),
                "newPageCount": len(infos),
                "fileNames": [source.file_name for source in sources],
            },
        )
        return AppendPagesResult(
            document_id=document_id,
            new_pages=added,
            new_page_count=len(infos),
            lock_version=new_version,
        )

    def rotate_page(
        self,
        ctx: RequestContext,
        document_id: str,
        page_number: object,
        rotation: object,
        expected_version: object,
    ) -> RotatePageResult:
        """Set one page's rotation, in degrees clockwise, in the binary and its page row."""
        version = _require_version(expected_version)

        document = self._documents.find_by_id(ctx.tenant_id, document_id)
        self._check_editable(document)
        require_lock(document, ctx.actor_id, version)
        pages = self._pages.find_for_document(document_id)
        plan = plan_rotation(self._records(pages), page_number, rotation)
        page = next(item for item in pages if item.id == plan.page_id)

        if page.rotation_deg == plan.rotation:
            Log.info(
                "Page rotation unchanged", document_id=document_id, page_number=plan.page_number
            )
            return RotatePageResult(page=page, rotated=False, lock_version=document.lock_version)

        original = self._storage.download(document.storage_key)
        rewritten = self._editor.rotate_page(original, plan.page_number, plan.rotation)
        new_key = self._upload(ctx, document, rewritten)

        with get_connection() as conn:
            locked = self._documents.lock_for_update(conn, ctx.tenant_id, document_id)
            require_lock(locked, ctx.actor_id, version)
            self._pages.set_rotation(conn, plan.page_id, plan.rotation)
            new_version = self._documents.update_after_page_change(
                conn, document_id, new_key, len(rewritten), len(pages)
            )
            conn.commit()

        Log.info(
            "Rotated page",
            document_id=document_id,
            page_number=plan.page_number,
            rotation=plan.rotation,
        )
        self._record(
            ctx,
            "PAGE_ROTATED",
            document_id,
            {"pageNumber": plan.page_number, "rotation": plan.rotation},
        )
        return RotatePageResult(
            page=replace(page, rotation_deg=plan.rotation), rotated=True, lock_version=new_version
        )

    def merge(self, ctx: RequestContext, document_ids: Sequence[object]) -> MergeResult:
        """Concatenate documents, in caller order, into a new container document.

        Sources need no lock; they are soft-deleted in the same transaction
        that creates the merged document.
        """
        requested = _require_list(document_ids, "documentIds")
        if not all(isinstance(value, str) and value for value in requested):
            raise ProcessingValidationError("documentIds must be non-empty strings")
        ids = [str(value) for value in requested]
        if len(ids) < 2:
            raise ProcessingValidationError("At least 2 documents are required to merge")
        if len(set(ids)) != len(ids):
            raise ProcessingValidationError("documentIds must be distinct")

        found = {doc.id: doc for doc in self._documents.find_many(ctx.tenant_id, ids)}
        missing = [doc_id for doc_id in ids if doc_id not in found]
        if missing:
            raise DocumentNotFoundError(f"Documents not found: {', '.join(missing)}")
        sources = [found[doc_id] for doc_id in ids]

        companies = {doc.company_id for doc in sources if doc.company_id is not None}
        if len(companies) > 1:
            raise ProcessingValidationError("Cannot merge documents from different companies")
        company_id = next(iter(companies), ctx.company_id)
        for doc in sources:
            if not doc.is_pdf:
                raise InvalidStateError(f"Document {doc.id} is not a PDF and cannot be merged")
        if company_id is None:
            raise InvalidStateError("Merged document has no company context")

        source_pages = {doc.id: self._pages.find_for_document(doc.id) for doc in sources}
        merged = self._editor.merge([self._storage.download(doc.storage_key) for doc in sources])
        new_key = build_storage_key(ctx.tenant_id, sources[0].mime_type)
        self._storage.upload(new_key, merged, sources[0].mime_type)

        merged_id = str(uuid.uuid4())
        geometry = [page for doc in sources for page in source_pages[doc.id]]
        merged_document = ProcessingDocument(
            id=merged_id,
            tenant_id=ctx.tenant_id,
            company_id=company_id,
            file_name=f"Merged - {sources[0].file_name}",
            storage_key=new_key,
            source_storage_key=new_key,
            mime_type=sources[0].mime_type,
            file_size_bytes=len(merged),
            page_count=len(geometry),
            file_hash=file_hash(merged),
            is_container=True,
        )

        with get_connection() as conn:
            self._documents.insert(conn, merged_document)
            self._pages.insert_many(conn, self._copy_pages(merged_id, new_key, geometry))
            for doc in sources:
                if self._documents.soft_delete(conn, doc.id, f"Merged into {merged_id}"):
                    self._duplicates.clear_references_to(conn, doc.id)
            conn.commit()

        Log.info(
            "Merged documents",
            merged_document_id=merged_id,
            source_document_ids=ids,
            page_count=len(geometry),
        )
        self._record(
            ctx, "DOCUMENTS_MERGED", merged_id, {"sourceDocumentIds": ids, "pageCount": len(geometry)}
        )
        return MergeResult(
            merged_document_id=merged_id,
            page_count=len(geometry),
            source_document_ids=ids,
        )

    def split(
        self,
        ctx: RequestContext,
        document_id: str,
        ranges: Sequence[tuple[object, object]],
        expected_version: object,
    ) -> SplitResult:
        """Create one QUEUED child per range; the parent becomes a container."""
        if not isinstance(ranges, (list, tuple)) or not all(
            isinstance(item, (list, tuple)) and len(item) == 2 for item in ranges
        ):
            raise ProcessingValidationError("ranges must be a list of [pageFrom, pageTo] pairs")
        version = _require_version(expected_version)

        document = self._documents.find_by_id(ctx.tenant_id, document_id)
        self._check_editable(document)
        require_lock(document, ctx.actor_id, version)
        pages = self._pages.find_for_document(document_id)
        planned = plan_split(len(pages), ranges)

        original = self._storage.download(document.storage_key)
        children: list[tuple[ProcessingDocument, list[DocumentPage]]] = []
        stem = PurePath(document.file_name).stem
        for split_range in planned:
            data = self._editor.extract_range(original, split_range.page_from, split_range.page_to)
            child_key = self._upload(ctx, document, data)
            child_id = str(uuid.uuid4())
            child = ProcessingDocument(
                id=child_id,
                tenant_id=document.tenant_id,
                company_id=document.company_id,
                file_name=f"{stem} (pages {split_range.page_from}-{split_range.page_to}).pdf",
                storage_key=child_key,
                source_storage_key=child_key,
                mime_type=document.mime_type,
                file_size_bytes=len(data),
                page_count=split_range.page_count,
                file_hash=file_hash(data),
                parent_id=document.id,
                page_from=split_range.page_from,
                page_to=split_range.page_to,
            )
            geometry = pages[split_range.page_from - 1 : split_range.page_to]
            children.append((child, self._copy_pages(child_id, child_key, geometry)))

        with get_connection() as conn:
            locked = self._documents.lock_for_update(conn, ctx.tenant_id, document_id)
            require_lock(locked, ctx.actor_id, version)
            for child, child_pages in children:
                self._documents.insert(conn, child)
                self._pages.insert_many(conn, child_pages)
            new_version = self._documents.mark_container(conn, document_id)
            conn.commit()

        created_ids = [child.id for child, _ in children]
        Log.info("Split document", document_id=document_id, created_document_ids=created_ids)
        self._record(
            ctx,
            "DOCUMENT_SPLIT",
            document_id,
            {
                "createdDocumentIds": created_ids,
                "ranges": [[r.page_from, r.page_to] for r in planned],
            },
        )
        return SplitResult(
            original_document_id=document_id,
            created_document_ids=created_ids,
            split_count=len(created_ids),
            lock_version=new_version,
        )

    def _check_editable(self, document: ProcessingDocument) -> None:
        if not document.is_pdf:
            raise InvalidStateError("Page operations are only supported for PDF documents")
        if document.company_id is None:
            raise InvalidStateError("Document has no company context")

    def _records(self, pages: list[DocumentPage]) -> list[PageRecord]:
        return [PageRecord(id=page.id, page_number=page.page_number) for page in pages]

    def _upload(self, ctx: RequestContext, document: ProcessingDocument, data: bytes) -> str:
        key = build_storage_key(ctx.tenant_id, document.mime_type)
        self._storage.upload(key, data, document.mime_type)
        return key

    def _renumber(
        self, conn: psycopg.Connection[Any], document: ProcessingDocument, moves: list[PageMove]
    ) -> None:
        phase_one, phase_two = two_phase_renumber(moves)
        fingerprints = {
            page_id: page_fingerprint(document.source_storage_key, number)
            for page_id, number in phase_two.items()
        }
        self._pages.apply_numbers(conn, phase_one)
        self._pages.apply_numbers(conn, phase_two, fingerprints)

    def _copy_pages(
        self, document_id: str, seed_key: str, geometry: list[DocumentPage]
    ) -> list[DocumentPage]:
        """Fresh page rows numbered 1..n, keeping each source page's geometry."""
        return [
            DocumentPage(
                id=str(uuid.uuid4()),
                processing_document_id=document_id,
                page_number=index + 1,
                width_px=page.width_px,
                height_px=page.height_px,
                rotation_deg=page.rotation_deg,
                image_fingerprint=page_fingerprint(seed_key, index + 1),
            )
            for index, page in enumerate(geometry)
        ]

    def _record(
        self, ctx: RequestContext, action: str, document_id: str, details: dict[str, object]
    ) -> None:
        record_safely(
            self._audit,
            AuditEvent(
                action=action,
                tenant_id=ctx.tenant_id,
                actor_id=ctx.actor_id,
                entity_id=document_id,
                details=details,
            ),
        )
