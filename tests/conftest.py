"""Pytest configuration and fixtures"""
import io
import json

import fitz  # PyMuPDF
import pytest
from PIL import Image

from invoice_uploader.config import Settings
from invoice_uploader.database import create_invoice, init_database


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary database for testing"""
    conn = init_database(str(tmp_path / "test_invoices.duckdb"))
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment and any .env file"""
    return Settings(
        _env_file=None,
        gemini_api_key="test-key",
        openai_api_key="test-openai-key",
        upload_dir=str(tmp_path / "uploads"),
        database_path=str(tmp_path / "test_invoices.duckdb"),
    )


@pytest.fixture
def uploaded_invoice(temp_db):
    """An invoice row in its initial UPLOADED state"""
    return create_invoice(temp_db, "uploads/test.pdf", "USD")


@pytest.fixture
def sample_model_output():
    """Model output as a well-behaved LLM would return it"""
    return {
        "invoice_number": "INV-1001",
        "invoice_date": "2025-11-01",
        "supplier_name": "Acme Inc.",
        "currency": "eur",
        "subtotal": 1000.00,
        "total": 1200.00,
        "confidence": 0.92,
        "line_items": [
            {
                "description": "Consulting Services",
                "quantity": 10,
                "unit_price": 100.0,
                "line_total": 1000.0,
                "confidence": 0.9,
            },
            {
                "description": "Travel",
                "quantity": "2",
                "unit_price": "50",
            },
        ],
    }


@pytest.fixture
def sample_model_text(sample_model_output):
    return json.dumps(sample_model_output)


@pytest.fixture
def text_pdf_bytes():
    """A one-page PDF with a real text layer"""
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), "INVOICE INV-1001")
    page.insert_text((72, 96), "Acme Inc.")
    page.insert_text((72, 120), "Total: 1200.00 EUR")
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def text_pdf_file(tmp_path, text_pdf_bytes):
    path = tmp_path / "invoice.pdf"
    path.write_bytes(text_pdf_bytes)
    return path


@pytest.fixture
def blank_pdf_file(tmp_path):
    """A valid PDF whose only page has no text"""
    doc = fitz.open()
    doc.new_page()
    path = tmp_path / "blank.pdf"
    path.write_bytes(doc.tobytes())
    doc.close()
    return path


@pytest.fixture
def sample_image_bytes():
    """Create a simple PNG image for testing"""
    img = Image.new("RGB", (200, 100), color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def image_file(tmp_path, sample_image_bytes):
    path = tmp_path / "scan.png"
    path.write_bytes(sample_image_bytes)
    return path
