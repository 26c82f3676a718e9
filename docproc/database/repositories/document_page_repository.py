import uuid
from typing import Any

import psycopg
from psycopg.rows import dict_row

from docproc.database.connection import get_connection
from docproc.database.models import DocumentPage


class DocumentPageRepository:
    """Database operations for the document_pages table."""

    def list_for_document(
        self, conn: psycopg.Connection[Any], document_id: str
    ) -> list[DocumentPage]:
        """Pages of a document ordered by page number."""
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT id, processing_document_id, page_number, width_px, height_px,
                       rotation_deg, image_fingerprint, image_path
                FROM document_pages
                WHERE processing_document_id = %s
                ORDER BY page_number
                """,
                (document_id,),
            )
            rows = cur.fetchall()
        return [DocumentPage(**row) for row in rows]

    def find_for_document(self, document_id: str) -> list[DocumentPage]:
        with get_connection() as conn:
            return self.list_for_document(conn, document_id)

    def insert_many(self, conn: psycopg.Connection[Any], pages: list[DocumentPage]) -> None:
        with conn.cursor() as cur:
            cur.executemany(
                """
                INSERT INTO document_pages (
                    id, processing_document_id, page_number, width_px, height_px,
                    rotation_deg, image_fingerprint, image_path
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                [
                    (
                        page.id or str(uuid.uuid4()),
                        page.processing_document_id,
                        page.page_number,
                        page.width_px,
                        page.height_px,
                        page.rotation_deg,
                        page.image_fingerprint,
                        page.image_path,
                    )
                    for page in pages
                ],
            )

    def delete_by_ids(self, conn: psycopg.Connection[Any], page_ids: list[str]) -> int:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM document_pages WHERE id = ANY(%s)", (page_ids,))
            return cur.rowcount

    def apply_numbers(
        self,
        conn: psycopg.Connection[Any],
        numbers: dict[str, int],
        fingerprints: dict[str, str] | None = None,
    ) -> None:
        """Set page_number (and optionally image_fingerprint) per page id.

        Callers use this twice per renumber, first with negated numbers, so the
        unique (document, page_number) constraint never sees a collision.
        """
        if not numbers:
            return
        with conn.cursor() as cur:
            if fingerprints is None:
                cur.executemany(
                    "UPDATE document_pages SET page_number = %s WHERE id = %s",
                    [(number, page_id) for page_id, number in numbers.items()],
                )
            else:
                cur.executemany(
                    """
                    UPDATE document_pages
                    SET page_number = %s, image_fingerprint = %s
                    WHERE id = %s
                    """,
                    [
                        (number, fingerprints.get(page_id), page_id)
                        for page_id, number in numbers.items()
                    ],
                )

    def set_rotation(self, conn: psycopg.Connection[Any], page_id: str, rotation: int) -> None:
        conn.execute(
            "UPDATE document_pages SET rotation_deg = %s WHERE id = %s", (rotation, page_id)
        )
