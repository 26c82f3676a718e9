from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from docproc.database.repositories.revision_repository import RevisionRepository
from docproc.processor.exceptions import RevisionNotFoundError


def _mock_conn() -> tuple[MagicMock, MagicMock]:
    mock_cursor = MagicMock()
    mock_conn = MagicMock()
    mock_conn.cursor.return_value.__enter__ = MagicMock(return_value=mock_cursor)
    mock_conn.cursor.return_value.__exit__ = MagicMock(return_value=False)
    return mock_conn, mock_cursor


def _make_row(**overrides: object) -> dict:
    row = {
        "id": "rev-1",
        "processing_document_id": "doc-1",
        "revision_number": 2,
        "status": "DRAFT",
        "created_by": "alice",
        "based_on_revision_id": None,
        "document_category": "INVOICE",
        "vendor_name": "Acme",
        "document_number": "INV-1",
        "document_date": None,
        "currency": "EUR",
        "subtotal": Decimal("100.00"),
        "tax_amount": Decimal("19.00"),
        "total_amount": Decimal("119.00"),
        "validation_status": "VALID",
        "validation_issues": [],
        "reason": None,
        "approved_by": None,
        "approved_at": None,
        "superseded_at": None,
        "created_at": None,
    }
    row.update(overrides)
    return row


class TestGet:
    def test_loads_revision_with_line_items(self) -> None:
        conn, cursor = _mock_conn()
        cursor.fetchone.return_value = _make_row()
        cursor.fetchall.return_value = [
            {
                "revision_id": "rev-1",
                "line_no": 1,
                "description": "Widgets",
                "quantity": Decimal("2"),
                "unit_price": Decimal("50"),
                "amount": Decimal("100.00"),
                "tax_amount": None,
                "tax_code": None,
            }
        ]

        revision = RevisionRepository().get(conn, "tenant-1", "rev-1")

        assert revision.revision_number == 2
        assert [item.description for item in revision.line_items] == ["Widgets"]
        sql, params = cursor.execute.call_args_list[0].args
        assert params == ("rev-1", "tenant-1")
        assert "d.deleted_at IS NULL" in sql

    def test_plain_read_takes_no_row_lock(self) -> None:
        conn, cursor = _mock_conn()
        cursor.fetchone.return_value = _make_row()
        cursor.fetchall.return_value = []

        RevisionRepository().get(conn, "tenant-1", "rev-1")

        assert all("FOR UPDATE" not in call.args[0] for call in cursor.execute.call_args_list)

    def test_missing_revision_raises(self) -> None:
        conn, cursor = _mock_conn()
        cursor.fetchone.return_value = None

        with pytest.raises(RevisionNotFoundError, match="Revision rev-9 not found"):
            RevisionRepository().get(conn, "tenant-1", "rev-9")
