import time
from collections.abc import Callable

from docproc.api.response import ApiResponse
from docproc.config.settings import Settings
from docproc.database.connection import get_connection
from docproc.database.models import IdempotencyRecord
from docproc.database.repositories.idempotency_repository import IdempotencyRepository
from docproc.logging.logger import Log
from docproc.processor.exceptions import ProcessingValidationError
from docproc.processor.models import RequestContext

MAX_KEY_LENGTH = 255


class IdempotencyGuard:
    """Runs an operation at most once per (tenant, idempotency key).

    The key is claimed with a PENDING record in its own short transaction,
    the operation runs without any guard connection held, and the response
    is stored afterwards. Callers arriving while the key is PENDING poll
    until it completes, is released, or its claim expires.
    """

    def __init__(self, repo: IdempotencyRepository, settings: Settings) -> None:
        self._repo = repo
        self._settings = settings

    def run(
        self,
        ctx: RequestContext,
        key: str | None,
        endpoint: str,
        operation: Callable[[], ApiResponse],
    ) -> ApiResponse:
        """Replay a stored response for `key`, or run `operation` and store its success.

        Raises:
            ProcessingValidationError: if the key is malformed or was used for
                a different endpoint.
        """
        if key is None:
            return operation()
        if not key.strip() or len(key) > MAX_KEY_LENGTH:
            raise ProcessingValidationError(
                f"Idempotency key must be 1-{MAX_KEY_LENGTH} non-blank characters"
            )

        stored = self._claim_or_wait(ctx, key, endpoint)
        if stored is not None:
            Log.info("Replaying stored response", idempotency_key=key, endpoint=endpoint)
            return ApiResponse(
                status_code=stored.status_code or 200,
                body=stored.response or {},
                replayed=True,
            )

        try:
            response = operation()
        except Exception:
            self._release(ctx, key)
            raise

        if not response.is_success:
            self._release(ctx, key)
            return response
        with get_connection() as conn:
            self._repo.complete(
                conn,
                key,
                ctx.tenant_id,
                response.body,
                response.status_code,
                self._settings.idempotency_ttl_seconds,
            )
            conn.commit()
        return response

    def _claim_or_wait(
        self, ctx: RequestContext, key: str, endpoint: str
    ) -> IdempotencyRecord | None:
        """Claim `key` and return None, or return the COMPLETED record holding it."""
        while True:
            with get_connection() as conn:
                claimed = self._repo.claim(
                    conn,
                    key,
                    ctx.tenant_id,
                    endpoint,
                    self._settings.idempotency_pending_ttl_seconds,
                )
                existing = None if claimed else self._repo.find_active(conn, key, ctx.tenant_id)
                conn.commit()

            if claimed:
                return None
            if existing is None:
                # Released or expired between the two statements; claim again.
                continue
            if existing.endpoint != endpoint:
                raise ProcessingValidationError(
                    f"Idempotency key was already used for {existing.endpoint}"
                )
            if existing.state == "COMPLETED":
                return existing
            Log.debug("Waiting for in-flight request", idempotency_key=key, endpoint=endpoint)
            time.sleep(self._settings.idempotency_poll_interval_seconds)

    def _release(self, ctx: RequestContext, key: str) -> None:
        with get_connection() as conn:
            self._repo.release(conn, key, ctx.tenant_id)
            conn.commit()
