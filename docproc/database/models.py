from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal

PipelineStatus = Literal["QUEUED", "PROCESSING", "READY", "FAILED"]
DuplicateStatus = Literal["NONE", "SUSPECTED", "CONFIRMED", "CLEARED"]
RevisionStatus = Literal["DRAFT", "APPROVED", "SUPERSEDED"]
ValidationStatus = Literal["VALID", "WARNINGS", "INVALID"]
IdempotencyState = Literal["PENDING", "COMPLETED"]

PDF_MIME_TYPE = "application/pdf"


@dataclass(frozen=True)
class ProcessingDocument:
    """Represents a row from the processing_documents table."""

    id: str
    tenant_id: str
    company_id: str | None
    file_name: str
    storage_key: str
    source_storage_key: str
    mime_type: str
    file_size_bytes: int
    page_count: int
    file_hash: str
    is_container: bool = False
    parent_id: str | None = None
    page_from: int | None = None
    page_to: int | None = None
    pipeline_status: PipelineStatus = "QUEUED"
    pipeline_attempts: int = 0
    pipeline_error: str | None = None
    duplicate_status: DuplicateStatus = "NONE"
    duplicate_of_id: str | None = None
    duplicate_score: Decimal | None = None
    duplicate_reason: str | None = None
    current_revision_id: str | None = None
    lock_version: int = 0
    locked_by: str | None = None
    lock_expires_at: datetime | None = None
    deleted_at: datetime | None = None
    deleted_reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_pdf(self) -> bool:
        return self.mime_type == PDF_MIME_TYPE

    def lock_held_by(self, actor_id: str, now: datetime) -> bool:
        """True when `actor_id` holds an unexpired lock."""
        return (
            self.locked_by == actor_id
            and self.lock_expires_at is not None
            and self.lock_expires_at > now
        )


@dataclass(frozen=True)
class DocumentPage:
    """Represents a row from the document_pages table."""

    id: str
    processing_document_id: str
    page_number: int
    width_px: int
    height_px: int
    rotation_deg: int = 0
    image_fingerprint: str | None = None
    image_path: str | None = None


@dataclass(frozen=True)
class RevisionLineItem:
    """Represents a row from the document_revision_line_items table."""

    line_no: int
    description: str
    amount: Decimal
    quantity: Decimal | None = None
    unit_price: Decimal | None = None
    tax_amount: Decimal | None = None
    tax_code: str | None = None


@dataclass(frozen=True)
class DocumentRevision:
    """Represents a row from document_revisions together with its line items."""

    id: str
    processing_document_id: str
    revision_number: int
    status: RevisionStatus
    created_by: str
    based_on_revision_id: str | None = None
    document_category: str | None = None
    vendor_name: str | None = None
    document_number: str | None = None
    document_date: date | None = None
    currency: str | None = None
    subtotal: Decimal | None = None
    tax_amount: Decimal | None = None
    total_amount: Decimal | None = None
    validation_status: ValidationStatus = "VALID"
    validation_issues: list[dict[str, Any]] = field(default_factory=list)
    reason: str | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    superseded_at: datetime | None = None
    created_at: datetime | None = None
    line_items: list[RevisionLineItem] = field(default_factory=list)


@dataclass(frozen=True)
class IdempotencyRecord:
    """Represents a row from the idempotency_records table."""

    key: str
    tenant_id: str
    endpoint: str
    state: IdempotencyState
    response: dict[str, Any] | None
    status_code: int | None
    expires_at: datetime
