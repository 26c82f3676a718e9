import os
import uuid
from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from docproc.api.operations import DocumentOperations, build_operations
from docproc.audit.log_sink import LogAuditSink
from docproc.config.settings import Settings
from docproc.database.connection import apply_schema, close_pool, get_connection, init_pool
from docproc.database.models import ProcessingDocument
from docproc.database.repositories.document_page_repository import DocumentPageRepository
from docproc.database.repositories.processing_document_repository import (
    ProcessingDocumentRepository,
)
from docproc.database.repositories.revision_repository import RevisionRepository
from docproc.processor.models import RequestContext
from docproc.revisions.manager import RevisionManager
from docproc.storage.local_storage import LocalBlobStorage

TENANT_PREFIX = "itest-"


def _test_settings() -> Settings:
    os.environ.setdefault("DB_DATABASE", "docproc_test")
    return Settings()


def _purge_tenants(pattern: str) -> None:
    """Delete every row owned by tenants matching the LIKE `pattern`."""
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                DELETE FROM duplicate_decisions
                WHERE processing_document_id IN (
                    SELECT id FROM processing_documents WHERE tenant_id LIKE %s
                )
                """,
                (pattern,),
            )
            cur.execute(
                """
                UPDATE processing_documents
                SET parent_id = NULL, duplicate_of_id = NULL
                WHERE tenant_id LIKE %s
                """,
                (pattern,),
            )
            cur.execute("DELETE FROM processing_documents WHERE tenant_id LIKE %s", (pattern,))
            cur.execute("DELETE FROM idempotency_records WHERE tenant_id LIKE %s", (pattern,))
        conn.commit()


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    return _test_settings()


@pytest.fixture(scope="session")
def integration_pool(test_settings: Settings) -> Generator[None, None, None]:
    try:
        init_pool(test_settings)
        apply_schema()
    except Exception as e:
        close_pool()
        pytest.skip(
            f"PostgreSQL test DB not available: {e}. "
            "Set DB_* env to point at a disposable database"
        )
    _purge_tenants(f"{TENANT_PREFIX}%")
    try:
        yield
    finally:
        close_pool()


@pytest.fixture
def tenant_id(integration_pool: None) -> Generator[str, None, None]:
    tenant = f"{TENANT_PREFIX}{uuid.uuid4().hex[:12]}"
    yield tenant
    _purge_tenants(f"{tenant}%")


@pytest.fixture
def ctx(tenant_id: str) -> RequestContext:
    return RequestContext(tenant_id=tenant_id, actor_id="alice", company_id="company-1")


@pytest.fixture
def storage(tmp_path: Path) -> LocalBlobStorage:
    return LocalBlobStorage(tmp_path / "files")


@pytest.fixture
def operations(
    integration_pool: None, test_settings: Settings, storage: LocalBlobStorage
) -> DocumentOperations:
    return build_operations(test_settings, storage=storage)


@pytest.fixture
def revision_manager(integration_pool: None) -> RevisionManager:
    return RevisionManager(ProcessingDocumentRepository(), RevisionRepository(), LogAuditSink())


@pytest.fixture
def upload_pdf(
    operations: DocumentOperations, ctx: RequestContext, make_pdf: Callable[..., bytes]
) -> Callable[[list[str]], str]:
    """Upload a PDF with one page per label and return the new document id."""

    def upload(labels: list[str]) -> str:
        response = operations.upload(ctx, "scan.pdf", make_pdf(labels), "application/pdf")
        assert response.status_code == 201, response.body
        return response.body["data"]["documentId"]

    return upload


@pytest.fixture
def load_document(tenant_id: str) -> Callable[[str], ProcessingDocument]:
    def load(document_id: str) -> ProcessingDocument:
        document = ProcessingDocumentRepository().find_including_deleted(document_id)
        assert document is not None
        return document

    return load


@pytest.fixture
def page_numbers() -> Callable[[str], list[tuple[str, int, str | None]]]:
    """(page id, page number, fingerprint) rows of a document in page order."""

    def read(document_id: str) -> list[tuple[str, int, str | None]]:
        return [
            (page.id, page.page_number, page.image_fingerprint)
            for page in DocumentPageRepository().find_for_document(document_id)
        ]

    return read
