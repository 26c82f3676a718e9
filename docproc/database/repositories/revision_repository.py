import uuid
from dataclasses import replace
from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from docproc.database.connection import get_connection
from docproc.database.models import DocumentRevision, RevisionLineItem
from docproc.processor.exceptions import RevisionNotFoundError

REVISION_COLUMNS = """
    r.id, r.processing_document_id, r.revision_number, r.status, r.created_by,
    r.based_on_revision_id, r.document_category, r.vendor_name, r.document_number,
    r.document_date, r.currency, r.subtotal, r.tax_amount, r.total_amount,
    r.validation_status, r.validation_issues, r.reason, r.approved_by,
    r.approved_at, r.superseded_at, r.created_at
"""


class RevisionRepository:
    """Database operations for document_revisions and their line items."""

    def next_revision_number(self, conn: psycopg.Connection[Any], document_id: str) -> int:
        """Caller must hold the document row lock, or two drafts could share a number."""
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT COALESCE(MAX(revision_number), 0) + 1
                FROM document_revisions
                WHERE processing_document_id = %s
                """,
                (document_id,),
            )
            row = cur.fetchone()
        return int(row[0]) if row is not None else 1

    def insert(self, conn: psycopg.Connection[Any], revision: DocumentRevision) -> None:
        conn.execute(
            """
            INSERT INTO document_revisions (
                id, processing_document_id, revision_number, based_on_revision_id,
                status, document_category, vendor_name, document_number, document_date,
                currency, subtotal, tax_amount, total_amount, validation_status,
                validation_issues, reason, created_by
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                revision.id,
                revision.processing_document_id,
                revision.revision_number,
                revision.based_on_revision_id,
                revision.status,
                revision.document_category,
                revision.vendor_name,
                revision.document_number,
                revision.document_date,
                revision.currency,
                revision.subtotal,
                revision.tax_amount,
                revision.total_amount,
                revision.validation_status,
                Jsonb(revision.validation_issues),
                revision.reason,
                revision.created_by,
            ),
        )
        if revision.line_items:
            with conn.cursor() as cur:
                cur.executemany(
                    """
                    INSERT INTO document_revision_line_items (
                        id, revision_id, line_no, description, quantity, unit_price,
                        amount, tax_amount, tax_code
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    [
                        (
                            str(uuid.uuid4()),
                            revision.id,
                            item.line_no,
                            item.description,
                            item.quantity,
                            item.unit_price,
                            item.amount,
                            item.tax_amount,
                            item.tax_code,
                        )
                        for item in revision.line_items
                    ],
                )

    def get(
        self,
        conn: psycopg.Connection[Any],
        tenant_id: str,
        revision_id: str,
    ) -> DocumentRevision:
        """Load a revision of a live document in the tenant.

        Raises:
            RevisionNotFoundError: if no such revision is visible to the tenant.
        """
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                SELECT {REVISION_COLUMNS}
                FROM document_revisions r
                JOIN processing_documents d ON d.id = r.processing_document_id
                WHERE r.id = %s AND d.tenant_id = %s AND d.deleted_at IS NULL
                """,
                (revision_id, tenant_id),
            )
            row = cur.fetchone()
        if row is None:
            raise RevisionNotFoundError(f"Revision {revision_id} not found")
        return self._with_items(conn, [DocumentRevision(**row)])[0]

    def find_by_id(self, tenant_id: str, revision_id: str) -> DocumentRevision:
        with get_connection() as conn:
            return self.get(conn, tenant_id, revision_id)

    def list_for_document(
        self, conn: psycopg.Connection[Any], document_id: str
    ) -> list[DocumentRevision]:
        """All revisions of a document, newest first."""
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                SELECT {REVISION_COLUMNS}
                FROM document_revisions r
                WHERE r.processing_document_id = %s
                ORDER BY r.revision_number DESC
                """,
                (document_id,),
            )
            rows = cur.fetchall()
        return self._with_items(conn, [DocumentRevision(**row) for row in rows])

    def find_latest(
        self,
        conn: psycopg.Connection[Any],
        document_id: str,
        status: str | None = None,
    ) -> DocumentRevision | None:
        """Highest-numbered revision of a document, optionally restricted to a status."""
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                SELECT {REVISION_COLUMNS}
                FROM document_revisions r
                WHERE r.processing_document_id = %s
                  AND (%s::text IS NULL OR r.status = %s)
                ORDER BY r.revision_number DESC
                LIMIT 1
                """,
                (document_id, status, status),
            )
            row = cur.fetchone()
        if row is None:
            return None
        return self._with_items(conn, [DocumentRevision(**row)])[0]

    def find_current_for_documents(
        self, conn: psycopg.Connection[Any], document_ids: list[str]
    ) -> dict[str, DocumentRevision]:
        """Per document: the APPROVED revision if any, otherwise the latest one."""
        if not document_ids:
            return {}
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                SELECT DISTINCT ON (r.processing_document_id) {REVISION_COLUMNS}
                FROM document_revisions r
                WHERE r.processing_document_id = ANY(%s)
                  AND r.status <> 'SUPERSEDED'
                ORDER BY r.processing_document_id,
                         (r.status = 'APPROVED') DESC,
                         r.revision_number DESC
                """,
                (document_ids,),
            )
            rows = cur.fetchall()
        revisions = self._with_items(conn, [DocumentRevision(**row) for row in rows])
        return {revision.processing_document_id: revision for revision in revisions}

    def mark_approved(
        self, conn: psycopg.Connection[Any], revision_id: str, actor_id: str
    ) -> None:
        conn.execute(
            """
            UPDATE document_revisions
            SET status = 'APPROVED', approved_by = %s, approved_at = NOW()
            WHERE id = %s AND status = 'DRAFT'
            """,
            (actor_id, revision_id),
        )

    def supersede_approved(self, conn: psycopg.Connection[Any], document_id: str) -> int:
        """Flip the document's APPROVED revision, if any, to SUPERSEDED."""
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE document_revisions
                SET status = 'SUPERSEDED', superseded_at = NOW()
                WHERE processing_document_id = %s AND status = 'APPROVED'
                """,
                (document_id,),
            )
            return cur.rowcount

    def mark_superseded(self, conn: psycopg.Connection[Any], revision_id: str) -> None:
        conn.execute(
            """
            UPDATE document_revisions
            SET status = 'SUPERSEDED', superseded_at = NOW()
            WHERE id = %s
            """,
            (revision_id,),
        )

    def _with_items(
        self, conn: psycopg.Connection[Any], revisions: list[DocumentRevision]
    ) -> list[DocumentRevision]:
        if not revisions:
            return revisions
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT revision_id, line_no, description, quantity, unit_price,
                       amount, tax_amount, tax_code
                FROM document_revision_line_items
                WHERE revision_id = ANY(%s)
                ORDER BY revision_id, line_no
                """,
                ([revision.id for revision in revisions],),
            )
            rows = cur.fetchall()
        items: dict[str, list[RevisionLineItem]] = {}
        for row in rows:
            revision_id = row.pop("revision_id")
            items.setdefault(revision_id, []).append(RevisionLineItem(**row))
        return [replace(revision, line_items=items.get(revision.id, [])) for revision in revisions]
