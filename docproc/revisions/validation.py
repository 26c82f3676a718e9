import re
from collections.abc import Sequence
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from docproc.database.models import RevisionLineItem, ValidationStatus
from docproc.processor.exceptions import ProcessingValidationError

CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")

VALIDATION_CODES: dict[str, tuple[str, str]] = {
    "MISSING_VENDOR": ("WARN", "Vendor name is missing"),
    "FUTURE_DATE": ("WARN", "Document date is in the future"),
    "LINE_SUM_MISMATCH": ("WARN", "Sum of line items does not match subtotal"),
    "HEADER_ARITHMETIC_MISMATCH": ("WARN", "Header amounts do not compute correctly"),
    "CREDIT_NOTE_TOTAL_NOT_NEGATIVE": ("ERROR", "Credit note total should be negative"),
    "INVALID_CURRENCY": ("ERROR", "Currency code is invalid"),
}


def to_decimal(value: Any, field: str) -> Decimal | None:
    """Coerce an amount to Decimal via its string form; None stays None."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ProcessingValidationError(f"{field} must be a number")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ProcessingValidationError(f"{field} must be a number, got {value!r}") from exc


def _issue(code: str, field: str | None = None) -> dict[str, Any]:
    severity, message = VALIDATION_CODES[code]
    issue: dict[str, Any] = {"code": code, "severity": severity, "message": message}
    if field is not None:
        issue["field"] = field
    return issue


def validate_revision(
    *,
    document_category: str | None,
    vendor_name: str | None,
    document_date: date | None,
    currency: str | None,
    subtotal: Decimal | None,
    tax_amount: Decimal | None,
    total_amount: Decimal | None,
    line_items: Sequence[RevisionLineItem],
    today: date | None = None,
) -> tuple[ValidationStatus, list[dict[str, Any]]]:
    """Run the extraction sanity rules. Any ERROR makes the revision INVALID."""
    today = today or date.today()
    issues: list[dict[str, Any]] = []

    if not vendor_name or not vendor_name.strip():
        issues.append(_issue("MISSING_VENDOR", "vendorName"))

    if document_date is not None and document_date > today:
        issues.append(_issue("FUTURE_DATE", "documentDate"))

    if document_category == "CREDIT_NOTE" and total_amount is not None and total_amount > 0:
        issues.append(_issue("CREDIT_NOTE_TOTAL_NOT_NEGATIVE", "totalAmount"))

    if line_items and subtotal is not None:
        line_sum = sum((item.amount for item in line_items), Decimal("0"))
        if line_sum != subtotal:
            issues.append(_issue("LINE_SUM_MISMATCH", "subtotal"))

    if subtotal is not None and tax_amount is not None and total_amount is not None:
        if subtotal + tax_amount != total_amount:
            issues.append(_issue("HEADER_ARITHMETIC_MISMATCH"))

    if currency is not None and not CURRENCY_PATTERN.match(currency):
        issues.append(_issue("INVALID_CURRENCY", "currency"))

    if any(issue["severity"] == "ERROR" for issue in issues):
        return "INVALID", issues
    if issues:
        return "WARNINGS", issues
    return "VALID", issues
