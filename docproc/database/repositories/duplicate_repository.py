import uuid
from decimal import Decimal
from typing import Any

import psycopg
from psycopg.rows import dict_row

from docproc.database.connection import get_connection
from docproc.logging.logger import Log


class DuplicateRepository:
    """Duplicate links on processing_documents and the duplicate_decisions log."""

    def find_by_hashes(
        self, tenant_id: str, file_hashes: list[str], company_id: str | None = None
    ) -> list[dict[str, Any]]:
        """Live documents in the tenant whose file_hash is in `file_hashes`, oldest first."""
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    """
                    SELECT id, file_hash, file_name, created_at
                    FROM processing_documents
                    WHERE tenant_id = %s
                      AND file_hash = ANY(%s)
                      AND deleted_at IS NULL
                      AND (%s::text IS NULL OR company_id = %s)
                    ORDER BY created_at, id
                    """,
                    (tenant_id, file_hashes, company_id, company_id),
                )
                return cur.fetchall()

    def find_candidate_ids(
        self,
        conn: psycopg.Connection[Any],
        tenant_id: str,
        company_id: str | None,
        exclude_id: str,
        lookback_days: int,
        limit: int,
    ) -> list[str]:
        """Recent live documents of the same tenant and company, newest first."""
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id
                FROM processing_documents
                WHERE tenant_id = %s
                  AND company_id IS NOT DISTINCT FROM %s
                  AND id <> %s
                  AND deleted_at IS NULL
                  AND is_container = FALSE
                  AND created_at >= NOW() - make_interval(days => %s)
                ORDER BY created_at DESC, id DESC
                LIMIT %s
                """,
                (tenant_id, company_id, exclude_id, lookback_days, limit),
            )
            return [row[0] for row in cur.fetchall()]

    def mark_suspected(
        self,
        conn: psycopg.Connection[Any],
        document_id: str,
        duplicate_of_id: str,
        score: Decimal,
        reason: str,
    ) -> None:
        conn.execute(
            """
            UPDATE processing_documents
            SET duplicate_status = 'SUSPECTED', duplicate_of_id = %s,
                duplicate_score = %s, duplicate_reason = %s, updated_at = NOW()
            WHERE id = %s
            """,
            (duplicate_of_id, score, reason, document_id),
        )

    def mark_confirmed(self, conn: psycopg.Connection[Any], document_id: str, reason: str) -> None:
        """Confirmed duplicates are soft-deleted in the same statement."""
        conn.execute(
            """
            UPDATE processing_documents
            SET duplicate_status = 'CONFIRMED', deleted_at = NOW(),
                deleted_reason = %s, updated_at = NOW()
            WHERE id = %s
            """,
            (reason, document_id),
        )

    def mark_cleared(
        self, conn: psycopg.Connection[Any], document_id: str, reason: str | None
    ) -> None:
        conn.execute(
            """
            UPDATE processing_documents
            SET duplicate_status = 'CLEARED', duplicate_of_id = NULL,
                duplicate_score = NULL, duplicate_reason = %s, updated_at = NOW()
            WHERE id = %s
            """,
            (reason, document_id),
        )

    def record_decision(
        self,
        conn: psycopg.Connection[Any],
        document_id: str,
        suspected_of_id: str | None,
        decision: str,
        actor_id: str,
        reason: str | None,
    ) -> str:
        decision_id = str(uuid.uuid4())
        conn.execute(
            """
            INSERT INTO duplicate_decisions (
                id, processing_document_id, suspected_of_id, decision, reason, decided_by
            )
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (decision_id, document_id, suspected_of_id, decision, reason, actor_id),
        )
        return decision_id

    def list_decisions(self, document_id: str) -> list[dict[str, Any]]:
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    """
                    SELECT id, suspected_of_id, decision, reason, decided_by, decided_at
                    FROM duplicate_decisions
                    WHERE processing_document_id = %s
                    ORDER BY decided_at
                    """,
                    (document_id,),
                )
                return cur.fetchall()

    def clear_references_to(self, conn: psycopg.Connection[Any], document_id: str) -> int:
        """Reset the duplicate link of every live document pointing at `document_id`."""
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE processing_documents
                SET duplicate_status = 'NONE', duplicate_of_id = NULL,
                    duplicate_score = NULL, duplicate_reason = NULL, updated_at = NOW()
                WHERE duplicate_of_id = %s AND deleted_at IS NULL
                """,
                (document_id,),
            )
            cleared = cur.rowcount
        if cleared > 0:
            Log.info(
                "Cleared duplicate references to deleted document",
                document_id=document_id,
                cleared=cleared,
            )
        return cleared

    def filter_live_ids(
        self, conn: psycopg.Connection[Any], tenant_id: str, document_ids: list[str]
    ) -> list[str]:
        """The ids among `document_ids` that are live in the tenant, in input order."""
        if not document_ids:
            return []
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id FROM processing_documents
                WHERE id = ANY(%s) AND tenant_id = %s AND deleted_at IS NULL
                """,
                (document_ids, tenant_id),
            )
            live = {row[0] for row in cur.fetchall()}
        return [document_id for document_id in document_ids if document_id in live]
