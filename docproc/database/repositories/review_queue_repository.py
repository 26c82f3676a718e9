from dataclasses import dataclass
from datetime import datetime
from typing import Any

import psycopg

NEEDS_REVIEW_CLAUSE = """
    AND (
        d.duplicate_status = 'SUSPECTED'
        OR EXISTS (
            SELECT 1 FROM document_revisions r
            WHERE r.processing_document_id = d.id AND r.status = 'DRAFT'
        )
    )
"""


@dataclass(frozen=True)
class ReviewFilter:
    """Which documents make up a review queue."""

    tenant_id: str
    company_ids: list[str] | None = None
    needs_review: bool = True


@dataclass(frozen=True)
class QueuePosition:
    """Sort key of a document in the queue: (created_at DESC, id DESC)."""

    created_at: datetime
    id: str


class ReviewQueueRepository:
    """Keyset queries over processing_documents ordered by (created_at DESC, id DESC)."""

    def count(self, conn: psycopg.Connection[Any], queue: ReviewFilter) -> int:
        where, params = self._where(queue)
        with conn.cursor() as cur:
            cur.execute(f"SELECT COUNT(*) FROM processing_documents d WHERE {where}", params)
            row = cur.fetchone()
        return int(row[0]) if row is not None else 0

    def head(self, conn: psycopg.Connection[Any], queue: ReviewFilter, limit: int) -> list[str]:
        where, params = self._where(queue)
        params["limit"] = limit
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT d.id FROM processing_documents d
                WHERE {where}
                ORDER BY d.created_at DESC, d.id DESC
                LIMIT %(limit)s
                """,
                params,
            )
            return [row[0] for row in cur.fetchall()]

    def position_of(
        self, conn: psycopg.Connection[Any], queue: ReviewFilter, document_id: str
    ) -> QueuePosition | None:
        """Sort key of a live document in the queue's tenant/company scope.

        The needs-review condition is not applied, so a document that was just
        resolved can still be navigated away from.
        """
        where, params = self._where(ReviewFilter(queue.tenant_id, queue.company_ids, False))
        params["document_id"] = document_id
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT d.created_at, d.id FROM processing_documents d
                WHERE {where} AND d.id = %(document_id)s
                """,
                params,
            )
            row = cur.fetchone()
        return QueuePosition(created_at=row[0], id=row[1]) if row is not None else None

    def count_before(
        self, conn: psycopg.Connection[Any], queue: ReviewFilter, position: QueuePosition
    ) -> int:
        where, params = self._where(queue)
        params.update(created_at=position.created_at, current_id=position.id)
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT COUNT(*) FROM processing_documents d
                WHERE {where}
                  AND (d.created_at, d.id) > (%(created_at)s, %(current_id)s)
                """,
                params,
            )
            row = cur.fetchone()
        return int(row[0]) if row is not None else 0

    def previous_id(
        self, conn: psycopg.Connection[Any], queue: ReviewFilter, position: QueuePosition
    ) -> str | None:
        """Closest document sorting before `position`."""
        return self._neighbour(conn, queue, position, ">", "ASC")

    def next_id(
        self, conn: psycopg.Connection[Any], queue: ReviewFilter, position: QueuePosition
    ) -> str | None:
        """Closest document sorting after `position`."""
        return self._neighbour(conn, queue, position, "<", "DESC")

    def _neighbour(
        self,
        conn: psycopg.Connection[Any],
        queue: ReviewFilter,
        position: QueuePosition,
        comparison: str,
        direction: str,
    ) -> str | None:
        where, params = self._where(queue)
        params.update(created_at=position.created_at, current_id=position.id)
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT d.id FROM processing_documents d
                WHERE {where}
                  AND (d.created_at, d.id) {comparison} (%(created_at)s, %(current_id)s)
                ORDER BY d.created_at {direction}, d.id {direction}
                LIMIT 1
                """,
                params,
            )
            row = cur.fetchone()
        return row[0] if row is not None else None

    def _where(self, queue: ReviewFilter) -> tuple[str, dict[str, Any]]:
        clause = "d.tenant_id = %(tenant_id)s AND d.deleted_at IS NULL"
        params: dict[str, Any] = {"tenant_id": queue.tenant_id}
        if queue.company_ids is not None:
            clause += " AND d.company_id = ANY(%(company_ids)s)"
            params["company_ids"] = list(queue.company_ids)
        if queue.needs_review:
            clause += NEEDS_REVIEW_CLAUSE
        return clause, params
