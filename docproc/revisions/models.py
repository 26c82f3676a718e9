from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from docproc.database.models import DocumentRevision, RevisionLineItem

PATCHABLE_FIELDS = frozenset(
    {
        "document_category",
        "vendor_name",
        "document_number",
        "document_date",
        "currency",
        "subtotal",
        "tax_amount",
        "total_amount",
    }
)


@dataclass(frozen=True)
class RevisionInput:
    """Structured fields of a new revision, as produced by extraction or an operator."""

    document_category: str | None = None
    vendor_name: str | None = None
    document_number: str | None = None
    document_date: date | None = None
    currency: str | None = None
    subtotal: Decimal | None = None
    tax_amount: Decimal | None = None
    total_amount: Decimal | None = None
    line_items: list[RevisionLineItem] = field(default_factory=list)
    reason: str | None = None


@dataclass(frozen=True)
class RevisionPatch:
    """Edits applied on top of a base revision.

    `set` overrides header fields (see PATCHABLE_FIELDS); line items are
    matched by line_no for upserts and deletes.
    """

    set: dict[str, Any] = field(default_factory=dict)
    items_to_upsert: list[RevisionLineItem] = field(default_factory=list)
    items_to_delete: list[int] = field(default_factory=list)
    reason: str | None = None


@dataclass(frozen=True)
class ApprovalResult:
    revision: DocumentRevision
    lock_version: int
    superseded_count: int
