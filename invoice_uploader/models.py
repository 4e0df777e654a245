"""Pydantic models shared by the pipeline, the database layer and the API"""
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class InvoiceStatus(str, Enum):
    UPLOADED = "UPLOADED"
    EXTRACTED = "EXTRACTED"
    NEEDS_REVIEW = "NEEDS_REVIEW"


class ExtractedLineItem(BaseModel):
    description: str = ""
    quantity: Decimal = Decimal(0)
    unit_price: Decimal = Decimal(0)
    line_total: Decimal = Decimal(0)
    confidence: Optional[float] = None


class ExtractedInvoice(BaseModel):
    """Canonical, coerced view of what the model returned.

    Amounts left as ``None`` were absent from the model output; the
    reconciliation step keeps the stored value for those.
    """

    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None  # YYYY-MM-DD
    supplier_name: Optional[str] = None
    currency: Optional[str] = None
    subtotal: Optional[Decimal] = None
    total: Optional[Decimal] = None
    confidence: Optional[float] = None
    line_items: List[ExtractedLineItem] = Field(default_factory=list)


class ExtractionOutcome(BaseModel):
    """Result of one extraction attempt: either ``data`` or ``error``/``code``"""

    ok: bool
    data: Optional[ExtractedInvoice] = None
    raw: Optional[str] = None
    model: Optional[str] = None
    error: Optional[str] = None
    code: Optional[str] = None


class LineItemInput(BaseModel):
    description: Optional[str] = None
    quantity: Optional[Decimal] = Field(default=None, max_digits=18, decimal_places=4)
    unit_price: Optional[Decimal] = Field(default=None, max_digits=18, decimal_places=4)
    line_total: Optional[Decimal] = Field(default=None, max_digits=38, decimal_places=8)


class InvoiceUpdate(BaseModel):
    """Body of a manual review edit"""

    supplier_name: Optional[str] = None
    invoice_number: Optional[str] = None
    invoice_date: Optional[date] = None
    currency: Optional[str] = None
    subtotal: Optional[Decimal] = Field(default=None, ge=0, max_digits=18, decimal_places=2)
    total: Optional[Decimal] = Field(default=None, ge=0, max_digits=18, decimal_places=2)
    status: Optional[str] = None
    line_items: List[LineItemInput] = Field(default_factory=list)
