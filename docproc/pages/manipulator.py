"""Pure planning for page-structure changes.

Nothing here touches storage or the database: functions take the current
page table and the caller's request and return what has to change, raising
ProcessingValidationError for requests that cannot be applied.
"""

import hashlib
from collections.abc import Sequence
from dataclasses import dataclass

from docproc.pdf.base import AppendSource
from docproc.processor.exceptions import PageNotFoundError, ProcessingValidationError

FINGERPRINT_LENGTH = 16
APPENDABLE_MIME_TYPES = frozenset(
    {"application/pdf", "image/png", "image/jpeg", "image/jpg", "image/tiff"}
)
ROTATIONS = (0, 90, 180, 270)


@dataclass(frozen=True)
class PageRecord:
    """The parts of a page row that planning needs."""

    id: str
    page_number: int


@dataclass(frozen=True)
class PageMove:
    page_id: str
    old_page_number: int
    new_page_number: int


@dataclass(frozen=True)
class DeletePlan:
    deleted_page_numbers: list[int]
    deleted_page_ids: list[str]
    moves: list[PageMove]
    new_page_count: int


@dataclass(frozen=True)
class ReorderPlan:
    new_order: list[int]
    mapping: list[PageMove]
    is_identity: bool

    @property
    def moves(self) -> list[PageMove]:
        """Only the pages whose number changes."""
        return [move for move in self.mapping if move.old_page_number != move.new_page_number]


@dataclass(frozen=True)
class RotationPlan:
    page_id: str
    page_number: int
    rotation: int


@dataclass(frozen=True)
class SplitRange:
    page_from: int
    page_to: int

    @property
    def page_count(self) -> int:
        return self.page_to - self.page_from + 1


def page_fingerprint(seed_key: str, page_number: int) -> str:
    """Position-sensitive page fingerprint: sha256("{seed_key}:{page_number}")[:16]."""
    digest = hashlib.sha256(f"{seed_key}:{page_number}".encode()).hexdigest()
    return digest[:FINGERPRINT_LENGTH]


def _require_int(value: object, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ProcessingValidationError(f"{what} must be integers, got {value!r}")
    return value


def _ordered(pages: Sequence[PageRecord]) -> list[PageRecord]:
    ordered = sorted(pages, key=lambda page: page.page_number)
    expected = list(range(1, len(ordered) + 1))
    if [page.page_number for page in ordered] != expected:
        raise ValueError("page table is not a dense 1..n sequence")
    return ordered


def plan_delete(pages: Sequence[PageRecord], page_numbers: Sequence[object]) -> DeletePlan:
    """Plan removal of `page_numbers`; survivors keep their relative order."""
    if not page_numbers:
        raise ProcessingValidationError("No page numbers provided")
    ordered = _ordered(pages)
    page_count = len(ordered)
    to_delete = sorted({_require_int(number, "Page numbers") for number in page_numbers})

    out_of_range = [number for number in to_delete if number < 1 or number > page_count]
    if out_of_range:
        raise ProcessingValidationError(
            f"Invalid page numbers: {out_of_range}. Document has {page_count} pages."
        )
    if len(to_delete) >= page_count:
        raise ProcessingValidationError(
            "Cannot delete all pages. Document must have at least one page."
        )

    deleted = set(to_delete)
    survivors = [page for page in ordered if page.page_number not in deleted]
    moves = [
        PageMove(page.id, page.page_number, index + 1)
        for index, page in enumerate(survivors)
        if page.page_number != index + 1
    ]
    return DeletePlan(
        deleted_page_numbers=to_delete,
        deleted_page_ids=[page.id for page in ordered if page.page_number in deleted],
        moves=moves,
        new_page_count=len(survivors),
    )


def plan_reorder(pages: Sequence[PageRecord], new_order: Sequence[object]) -> ReorderPlan:
    """Plan a reorder where position i (0-based) receives old page `new_order[i]`."""
    ordered = _ordered(pages)
    page_count = len(ordered)
    order = [_require_int(number, "Page order entries") for number in new_order]

    if len(order) != page_count:
        raise ProcessingValidationError(
            f"Page order must include all {page_count} pages. Got {len(order)} pages."
        )
    if sorted(order) != list(range(1, page_count + 1)):
        raise ProcessingValidationError(
            f"Page order must contain each page number from 1 to {page_count} exactly once."
        )

    by_number = {page.page_number: page for page in ordered}
    mapping = [
        PageMove(by_number[old_number].id, old_number, index + 1)
        for index, old_number in enumerate(order)
    ]
    return ReorderPlan(
        new_order=order,
        mapping=mapping,
        is_identity=all(move.old_page_number == move.new_page_number for move in mapping),
    )


def plan_split(page_count: int, ranges: Sequence[tuple[object, object]]) -> list[SplitRange]:
    """Validate split ranges against a document of `page_count` pages. Ranges may overlap."""
    if page_count < 2:
        raise ProcessingValidationError("Document must have at least 2 pages to split")
    if len(ranges) < 2:
        raise ProcessingValidationError("At least 2 page ranges are required to split")

    planned: list[SplitRange] = []
    for raw_from, raw_to in ranges:
        page_from = _require_int(raw_from, "Page ranges")
        page_to = _require_int(raw_to, "Page ranges")
        if page_from < 1 or page_to > page_count or page_from > page_to:
            raise ProcessingValidationError(
                f"Invalid range {page_from}-{page_to}. Document has {page_count} pages."
            )
        planned.append(SplitRange(page_from, page_to))
    return planned


def check_append_sources(sources: Sequence[object], max_file_size: int) -> list[AppendSource]:
    """Validate files to append: non-empty PDFs or images within the size cap."""
    if not sources:
        raise ProcessingValidationError("At least one file is required")
    checked: list[AppendSource] = []
    for source in sources:
        if not isinstance(source, AppendSource):
            raise ProcessingValidationError(f"Files must be AppendSource values, got {source!r}")
        if source.mime_type not in APPENDABLE_MIME_TYPES:
            raise ProcessingValidationError(f"Unsupported file type: {source.mime_type}")
        if not source.data:
            raise ProcessingValidationError(f"File \"{source.file_name}\" is empty")
        if len(source.data) > max_file_size:
            raise ProcessingValidationError(
                f"File \"{source.file_name}\" exceeds the maximum size of {max_file_size} bytes"
            )
        checked.append(source)
    return checked


def plan_append(pages: Sequence[PageRecord], new_page_count: int) -> list[int]:
    """Numbers for the pages appended after the current ones, given the new total."""
    current = len(_ordered(pages))
    if new_page_count <= current:
        raise ValueError(f"append produced {new_page_count} pages from {current}")
    return list(range(current + 1, new_page_count + 1))


def plan_rotation(
    pages: Sequence[PageRecord], page_number: object, rotation: object
) -> RotationPlan:
    """Resolve the page to rotate; rotation must be 0, 90, 180 or 270."""
    if isinstance(rotation, bool) or not isinstance(rotation, int) or rotation not in ROTATIONS:
        raise ProcessingValidationError("Rotation must be 0, 90, 180, or 270 degrees")
    if isinstance(page_number, bool) or not isinstance(page_number, int) or page_number < 1:
        raise ProcessingValidationError("Invalid page number")
    for page in pages:
        if page.page_number == page_number:
            return RotationPlan(page.id, page.page_number, rotation)
    raise PageNotFoundError(f"Page {page_number} not found")


def two_phase_renumber(moves: Sequence[PageMove]) -> tuple[dict[str, int], dict[str, int]]:
    """Split a renumber into two collision-free steps.

    Phase one parks every moving page on the negation of its current number,
    phase two writes the final numbers. Both map page id to page number.
    """
    phase_one = {move.page_id: -move.old_page_number for move in moves}
    phase_two = {move.page_id: move.new_page_number for move in moves}
    return phase_one, phase_two
