from dataclasses import dataclass

from docproc.database.connection import get_connection
from docproc.database.repositories.review_queue_repository import (
    ReviewFilter,
    ReviewQueueRepository,
)
from docproc.processor.exceptions import DocumentNotFoundError


@dataclass(frozen=True)
class NavigationResult:
    total: int
    current_index: int
    current_document_id: str | None
    prev_id: str | None
    next_id: str | None


class ReviewNavigator:
    """Stable prev/next navigation over the review queue.

    The queue is ordered by (created_at DESC, id DESC). Positions are found
    with keyset comparisons, so concurrent inserts or resolutions never make
    the cursor skip or repeat a document.
    """

    def __init__(self, queue: ReviewQueueRepository) -> None:
        self._queue = queue

    def start(self, review_filter: ReviewFilter) -> NavigationResult:
        with get_connection() as conn:
            total = self._queue.count(conn, review_filter)
            head = self._queue.head(conn, review_filter, limit=2)
        return NavigationResult(
            total=total,
            current_index=0,
            current_document_id=head[0] if head else None,
            prev_id=None,
            next_id=head[1] if len(head) > 1 else None,
        )

    def navigate(self, review_filter: ReviewFilter, current_id: str) -> NavigationResult:
        """Neighbours of `current_id`, which need not still match the filter.

        Raises:
            DocumentNotFoundError: if `current_id` is not a live document in
                the filter's tenant and company scope.
        """
        with get_connection() as conn:
            position = self._queue.position_of(conn, review_filter, current_id)
            if position is None:
                raise DocumentNotFoundError(f"Document {current_id} not found")
            total = self._queue.count(conn, review_filter)
            index = self._queue.count_before(conn, review_filter, position)
            prev_id = self._queue.previous_id(conn, review_filter, position)
            next_id = self._queue.next_id(conn, review_filter, position)
        return NavigationResult(
            total=total,
            current_index=index,
            current_document_id=current_id,
            prev_id=prev_id,
            next_id=next_id,
        )
