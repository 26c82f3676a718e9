from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from docproc.database.models import IdempotencyRecord


class IdempotencyRepository:
    """Database operations for the idempotency_records table.

    A key is claimed with a PENDING row before its request runs and completed
    with the stored response afterwards. Every method runs in the caller's
    transaction; callers commit right away so no row lock outlives the call.
    """

    def claim(
        self,
        conn: psycopg.Connection[Any],
        key: str,
        tenant_id: str,
        endpoint: str,
        ttl_seconds: int,
    ) -> bool:
        """Insert a PENDING record for `key`, taking over an expired one.

        Returns False when an unexpired record already holds the key.
        """
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO idempotency_records (key, tenant_id, endpoint, state, expires_at)
                VALUES (%s, %s, %s, 'PENDING', NOW() + make_interval(secs => %s))
                ON CONFLICT (tenant_id, key) DO UPDATE
                SET endpoint = EXCLUDED.endpoint,
                    state = 'PENDING',
                    response = NULL,
                    status_code = NULL,
                    expires_at = EXCLUDED.expires_at,
                    created_at = NOW()
                WHERE idempotency_records.expires_at <= NOW()
                RETURNING key
                """,
                (key, tenant_id, endpoint, ttl_seconds),
            )
            return cur.fetchone() is not None

    def find_active(
        self, conn: psycopg.Connection[Any], key: str, tenant_id: str
    ) -> IdempotencyRecord | None:
        """Unexpired record for `key` within the tenant."""
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT key, tenant_id, endpoint, state, response, status_code, expires_at
                FROM idempotency_records
                WHERE key = %s AND tenant_id = %s AND expires_at > NOW()
                """,
                (key, tenant_id),
            )
            row = cur.fetchone()
        return IdempotencyRecord(**row) if row is not None else None

    def complete(
        self,
        conn: psycopg.Connection[Any],
        key: str,
        tenant_id: str,
        response: dict[str, Any],
        status_code: int,
        ttl_seconds: int,
    ) -> None:
        """Store the response of a claimed key and keep it for `ttl_seconds`."""
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE idempotency_records
                SET state = 'COMPLETED', response = %s, status_code = %s,
                    expires_at = NOW() + make_interval(secs => %s)
                WHERE tenant_id = %s AND key = %s
                """,
                (Jsonb(response), status_code, ttl_seconds, tenant_id, key),
            )
            if cur.rowcount == 0:
                raise RuntimeError(f"Idempotency record {key} was not written")

    def release(self, conn: psycopg.Connection[Any], key: str, tenant_id: str) -> None:
        """Drop an unfinished claim so the next caller with `key` runs the request."""
        conn.execute(
            """
            DELETE FROM idempotency_records
            WHERE tenant_id = %s AND key = %s AND state = 'PENDING'
            """,
            (tenant_id, key),
        )

    def purge_expired(self, conn: psycopg.Connection[Any]) -> int:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM idempotency_records WHERE expires_at <= NOW()")
            return cur.rowcount
