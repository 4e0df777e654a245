"""Tests for Pydantic models"""
from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from invoice_uploader.models import (
    ExtractedInvoice,
    ExtractedLineItem,
    InvoiceStatus,
    InvoiceUpdate,
)


def test_invoice_status_enum():
    """Test InvoiceStatus enum"""
    assert InvoiceStatus.UPLOADED == "UPLOADED"
    assert InvoiceStatus.EXTRACTED == "EXTRACTED"
    assert InvoiceStatus.NEEDS_REVIEW == "NEEDS_REVIEW"


def test_line_item_defaults():
    item = ExtractedLineItem()

    assert item.description == ""
    assert item.quantity == 0
    assert item.line_total == 0
    assert item.confidence is None


def test_extracted_invoice_model():
    """Test ExtractedInvoice model"""
    data = ExtractedInvoice(
        invoice_number="INV-001",
        invoice_date="2024-01-15",
        supplier_name="Test Vendor",
        currency="USD",
        total=Decimal("100.00"),
        line_items=[ExtractedLineItem(description="Item 1", quantity=1, unit_price=100, line_total=100)],
    )

    assert data.subtotal is None
    assert data.total == Decimal("100.00")
    assert len(data.line_items) == 1
    assert data.model_dump(mode="json")["line_items"][0]["unit_price"] == "100"


def test_invoice_update_parses_dates_and_amounts():
    update = InvoiceUpdate(invoice_date="2025-02-01", subtotal="9.99", line_items=[{"quantity": "2"}])

    assert update.invoice_date == date(2025, 2, 1)
    assert update.subtotal == Decimal("9.99")
    assert update.line_items[0].quantity == 2
    assert update.line_items[0].unit_price is None
    assert update.status is None


def test_invoice_update_rejects_bad_date():
    with pytest.raises(ValidationError):
        InvoiceUpdate(invoice_date="31/01/2025")


def test_invoice_update_rejects_negative_amounts():
    with pytest.raises(ValidationError):
        InvoiceUpdate(subtotal=-5)
    with pytest.raises(ValidationError):
        InvoiceUpdate(total="-0.01")


def test_invoice_update_rejects_amounts_beyond_storage():
    with pytest.raises(ValidationError):
        InvoiceUpdate(total="1.005")
    with pytest.raises(ValidationError):
        InvoiceUpdate(line_items=[{"quantity": "123456789012345"}])
