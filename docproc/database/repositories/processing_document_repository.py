from typing import Any

import psycopg
from psycopg.rows import dict_row

from docproc.database.connection import get_connection
from docproc.database.models import ProcessingDocument
from docproc.processor.exceptions import DocumentNotFoundError

DOCUMENT_COLUMNS = """
    id, tenant_id, company_id, file_name, storage_key, source_storage_key,
    mime_type, file_size_bytes, page_count, file_hash, is_container, parent_id,
    page_from, page_to, pipeline_status, pipeline_attempts, pipeline_error,
    duplicate_status, duplicate_of_id, duplicate_score, duplicate_reason,
    current_revision_id, lock_version, locked_by, lock_expires_at,
    deleted_at, deleted_reason, created_at, updated_at
"""


def document_from_row(row: dict[str, Any]) -> ProcessingDocument:
    return ProcessingDocument(**row)


class ProcessingDocumentRepository:
    """Database operations for the processing_documents table.

    Methods taking a `conn` run inside the caller's transaction and never
    commit; the others open their own connection.
    """

    def find_by_id(self, tenant_id: str, document_id: str) -> ProcessingDocument:
        """Find a live document in the tenant.

        Raises:
            DocumentNotFoundError: if the document is missing, soft-deleted or
                belongs to another tenant.
        """
        with get_connection() as conn:
            return self.get_live(conn, tenant_id, document_id)

    def get_live(
        self, conn: psycopg.Connection[Any], tenant_id: str, document_id: str
    ) -> ProcessingDocument:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                SELECT {DOCUMENT_COLUMNS}
                FROM processing_documents
                WHERE id = %s AND tenant_id = %s AND deleted_at IS NULL
                """,
                (document_id, tenant_id),
            )
            row = cur.fetchone()
        if row is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return document_from_row(row)

    def find_including_deleted(self, document_id: str) -> ProcessingDocument | None:
        """Find a document regardless of tenant or deletion. Useful for tests."""
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"SELECT {DOCUMENT_COLUMNS} FROM processing_documents WHERE id = %s",
                    (document_id,),
                )
                row = cur.fetchone()
        return document_from_row(row) if row is not None else None

    def find_many(self, tenant_id: str, document_ids: list[str]) -> list[ProcessingDocument]:
        """Live documents of the tenant among `document_ids`, in no particular order."""
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"""
                    SELECT {DOCUMENT_COLUMNS}
                    FROM processing_documents
                    WHERE id = ANY(%s) AND tenant_id = %s AND deleted_at IS NULL
                    """,
                    (document_ids, tenant_id),
                )
                rows = cur.fetchall()
        return [document_from_row(row) for row in rows]

    def lock_for_update(
        self, conn: psycopg.Connection[Any], tenant_id: str, document_id: str
    ) -> ProcessingDocument:
        """Read a live document and hold its row lock until the transaction ends.

        Raises:
            DocumentNotFoundError: if the document is missing or soft-deleted.
        """
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                SELECT {DOCUMENT_COLUMNS}
                FROM processing_documents
                WHERE id = %s AND tenant_id = %s AND deleted_at IS NULL
                FOR UPDATE
                """,
                (document_id, tenant_id),
            )
            row = cur.fetchone()
        if row is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return document_from_row(row)

    def insert(self, conn: psycopg.Connection[Any], document: ProcessingDocument) -> None:
        conn.execute(
            """
            INSERT INTO processing_documents (
                id, tenant_id, company_id, file_name, storage_key, source_storage_key,
                mime_type, file_size_bytes, page_count, file_hash, is_container,
                parent_id, page_from, page_to, pipeline_status
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                document.id,
                document.tenant_id,
                document.company_id,
                document.file_name,
                document.storage_key,
                document.source_storage_key,
                document.mime_type,
                document.file_size_bytes,
                document.page_count,
                document.file_hash,
                document.is_container,
                document.parent_id,
                document.page_from,
                document.page_to,
                document.pipeline_status,
            ),
        )

    def update_after_page_change(
        self,
        conn: psycopg.Connection[Any],
        document_id: str,
        storage_key: str,
        file_size_bytes: int,
        page_count: int,
    ) -> int:
        """Point the document at its new binary and bump lock_version. Returns the new version."""
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE processing_documents
                SET storage_key = %s, file_size_bytes = %s, page_count = %s,
                    lock_version = lock_version + 1, updated_at = NOW()
                WHERE id = %s
                RETURNING lock_version
                """,
                (storage_key, file_size_bytes, page_count, document_id),
            )
            row = cur.fetchone()
        if row is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return int(row[0])

    def mark_container(self, conn: psycopg.Connection[Any], document_id: str) -> int:
        """Flag a split parent as a container and bump lock_version. Returns the new version."""
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE processing_documents
                SET is_container = TRUE, lock_version = lock_version + 1, updated_at = NOW()
                WHERE id = %s
                RETURNING lock_version
                """,
                (document_id,),
            )
            row = cur.fetchone()
        if row is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return int(row[0])

    def set_current_revision(
        self, conn: psycopg.Connection[Any], document_id: str, revision_id: str
    ) -> int:
        """Record the approved revision and bump lock_version. Returns the new version."""
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE processing_documents
                SET current_revision_id = %s, lock_version = lock_version + 1,
                    updated_at = NOW()
                WHERE id = %s
                RETURNING lock_version
                """,
                (revision_id, document_id),
            )
            row = cur.fetchone()
        if row is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return int(row[0])

    def soft_delete(self, conn: psycopg.Connection[Any], document_id: str, reason: str) -> bool:
        """Soft-delete a live document. Returns False when it was already deleted."""
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE processing_documents
                SET deleted_at = NOW(), deleted_reason = %s, updated_at = NOW()
                WHERE id = %s AND deleted_at IS NULL
                """,
                (reason, document_id),
            )
            return cur.rowcount > 0

    def try_acquire_lock(
        self,
        conn: psycopg.Connection[Any],
        tenant_id: str,
        document_id: str,
        expected_version: int,
        actor_id: str,
        ttl_seconds: int,
    ) -> ProcessingDocument | None:
        """Take the lock when the version matches and the lock is free, ours or expired.

        Returns the updated document, or None when the conditions do not hold.
        """
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                UPDATE processing_documents
                SET locked_by = %s,
                    lock_expires_at = NOW() + make_interval(secs => %s),
                    lock_version = lock_version + 1,
                    updated_at = NOW()
                WHERE id = %s AND tenant_id = %s AND deleted_at IS NULL
                  AND lock_version = %s
                  AND (locked_by IS NULL OR locked_by = %s OR lock_expires_at <= NOW())
                RETURNING {DOCUMENT_COLUMNS}
                """,
                (actor_id, ttl_seconds, document_id, tenant_id, expected_version, actor_id),
            )
            row = cur.fetchone()
        return document_from_row(row) if row is not None else None

    def release_lock(
        self, conn: psycopg.Connection[Any], tenant_id: str, document_id: str, actor_id: str
    ) -> ProcessingDocument | None:
        """Release a lock held by `actor_id`. Returns None when the actor does not hold it."""
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                UPDATE processing_documents
                SET locked_by = NULL, lock_expires_at = NULL,
                    lock_version = lock_version + 1, updated_at = NOW()
                WHERE id = %s AND tenant_id = %s AND deleted_at IS NULL
                  AND locked_by = %s
                RETURNING {DOCUMENT_COLUMNS}
                """,
                (document_id, tenant_id, actor_id),
            )
            row = cur.fetchone()
        return document_from_row(row) if row is not None else None

    def claim_next_queued(
        self, conn: psycopg.Connection[Any], max_attempts: int
    ) -> ProcessingDocument | None:
        """Claim the oldest QUEUED document using SELECT FOR UPDATE SKIP LOCKED."""
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT id
                FROM processing_documents
                WHERE pipeline_status = 'QUEUED'
                  AND pipeline_attempts < %s
                  AND deleted_at IS NULL
                  AND is_container = FALSE
                ORDER BY created_at
                LIMIT 1
                FOR UPDATE SKIP LOCKED
                """,
                (max_attempts,),
            )
            row = cur.fetchone()
            if row is None:
                conn.commit()
                return None
            cur.execute(
                f"""
                UPDATE processing_documents
                SET pipeline_status = 'PROCESSING', updated_at = NOW()
                WHERE id = %s
                RETURNING {DOCUMENT_COLUMNS}
                """,
                (row["id"],),
            )
            claimed = cur.fetchone()
        conn.commit()
        return document_from_row(claimed) if claimed is not None else None

    def mark_ready(self, document_id: str) -> None:
        """Mark a document's pipeline as finished."""
        with get_connection() as conn:
            conn.execute(
                """
                UPDATE processing_documents
                SET pipeline_status = 'READY', pipeline_error = NULL, updated_at = NOW()
                WHERE id = %s
                """,
                (document_id,),
            )
            conn.commit()

    def mark_failed(self, document_id: str, error: str) -> None:
        """Mark a document's pipeline as permanently failed."""
        with get_connection() as conn:
            conn.execute(
                """
                UPDATE processing_documents
                SET pipeline_status = 'FAILED', pipeline_attempts = pipeline_attempts + 1,
                    pipeline_error = %s, updated_at = NOW()
                WHERE id = %s
                """,
                (error, document_id),
            )
            conn.commit()

    def return_to_queue(self, document_id: str, error: str) -> None:
        """Increment attempt count and put the document back on the queue."""
        with get_connection() as conn:
            conn.execute(
                """
                UPDATE processing_documents
                SET pipeline_status = 'QUEUED', pipeline_attempts = pipeline_attempts + 1,
                    pipeline_error = %s, updated_at = NOW()
                WHERE id = %s
                """,
                (error, document_id),
            )
            conn.commit()
