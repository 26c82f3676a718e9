"""Field-by-field comparison of two revisions for near-duplicate scoring."""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from docproc.database.models import DocumentRevision

FIELD_WEIGHTS: dict[str, Decimal] = {
    "document_number": Decimal("0.25"),
    "vendor_name": Decimal("0.20"),
    "document_date": Decimal("0.20"),
    "total_amount": Decimal("0.15"),
    "subtotal": Decimal("0.05"),
    "tax_amount": Decimal("0.05"),
    "currency": Decimal("0.05"),
    "document_category": Decimal("0.05"),
}

TEXT_FIELDS = ("vendor_name", "document_number")
AMOUNT_FIELDS = ("subtotal", "tax_amount", "total_amount")
SCORE_QUANTUM = Decimal("0.0001")


@dataclass(frozen=True)
class FieldMatch:
    field: str
    source_value: Any
    target_value: Any
    matched: bool
    weight: Decimal


@dataclass(frozen=True)
class DuplicateComparison:
    fields: list[FieldMatch]
    score: Decimal
    reason: str

    @property
    def matched_fields(self) -> list[str]:
        return [match.field for match in self.fields if match.matched]


def normalize_text(value: str) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    return " ".join(value.lower().split())


def normalize_amount(value: Any) -> Decimal | None:
    if value is None or isinstance(value, float):
        return None
    try:
        return Decimal(str(value)).normalize()
    except InvalidOperation:
        return None


def _comparable(field: str, value: Any) -> Any:
    if value is None:
        return None
    if field in TEXT_FIELDS:
        text = normalize_text(str(value))
        return text or None
    if field in AMOUNT_FIELDS:
        return normalize_amount(value)
    if isinstance(value, str):
        return value.strip().upper() or None
    return value


def compare_revisions(source: DocumentRevision, target: DocumentRevision) -> DuplicateComparison:
    """Score how likely `source` and `target` describe the same document.

    A field matches only when both sides have a value and the normalized
    values are equal; the score is the sum of matched field weights.
    """
    fields: list[FieldMatch] = []
    for field, weight in FIELD_WEIGHTS.items():
        source_value = getattr(source, field)
        target_value = getattr(target, field)
        left = _comparable(field, source_value)
        right = _comparable(field, target_value)
        matched = left is not None and right is not None and left == right
        fields.append(FieldMatch(field, source_value, target_value, matched, weight))

    score = sum((match.weight for match in fields if match.matched), Decimal("0"))
    score = score.quantize(SCORE_QUANTUM)
    matched_names = [match.field for match in fields if match.matched]
    if matched_names:
        reason = f"Matched {', '.join(matched_names)} ({score * 100:.0f}%)"
    else:
        reason = "No matching fields"
    return DuplicateComparison(fields=fields, score=score, reason=reason)
