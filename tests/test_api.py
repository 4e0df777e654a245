"""Tests for FastAPI endpoints"""
import os
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

import invoice_uploader.main
from invoice_uploader.errors import ConfigurationError
from invoice_uploader.extraction import parse_model_output
from invoice_uploader.main import app
from invoice_uploader.models import ExtractionOutcome


@pytest.fixture
def client(temp_db, settings):
    """Test client backed by a temporary database and upload dir"""
    os.makedirs(settings.upload_dir, exist_ok=True)
    invoice_uploader.main.db_conn = temp_db
    with patch.object(invoice_uploader.main, "settings", settings):
        yield TestClient(app)
    invoice_uploader.main.db_conn = None


@pytest.fixture
def uploaded(client, text_pdf_bytes):
    """Upload a PDF through the API and return the response body"""
    files = {"file": ("invoice.pdf", text_pdf_bytes, "application/pdf")}
    response = client.post("/api/invoices/upload", files=files)
    assert response.status_code == 201
    return response.json()


def test_health_check(client):
    """Test health check endpoint"""
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    assert data["uptime"] >= 0
    assert "timestamp" in data


def test_root(client):
    data = client.get("/").json()
    assert data["endpoints"]["invoices"] == "/api/invoices"


def test_upload(client, uploaded, settings, text_pdf_bytes):
    assert uploaded["status"] == "UPLOADED"
    assert uploaded["message"] == "File uploaded successfully"
    assert uploaded["file_path"].startswith(settings.upload_dir)
    assert uploaded["file_path"].endswith(".pdf")

    with open(uploaded["file_path"], "rb") as f:
        assert f.read() == text_pdf_bytes


def test_upload_image(client, sample_image_bytes):
    files = {"file": ("scan.PNG", sample_image_bytes, "image/png")}
    response = client.post("/api/invoices/upload", files=files)

    assert response.status_code == 201
    assert response.json()["file_path"].endswith(".png")


def test_upload_invalid_file_type(client):
    """Test upload endpoint with invalid file type"""
    files = {"file": ("test.txt", b"text content", "text/plain")}
    response = client.post("/api/invoices/upload", files=files)

    assert response.status_code == 400
    assert response.json()["detail"] == "Only PDF, PNG, and JPEG files are allowed"


def test_upload_empty_file(client):
    files = {"file": ("empty.pdf", b"", "application/pdf")}
    response = client.post("/api/invoices/upload", files=files)

    assert response.status_code == 400
    assert response.json()["detail"] == "File is required"


def test_upload_file_too_large(client):
    """Test upload endpoint with file too large"""
    large_content = b"x" * (11 * 1024 * 1024)  # 11MB
    files = {"file": ("large.pdf", large_content, "application/pdf")}
    response = client.post("/api/invoices/upload", files=files)

    assert response.status_code == 400
    assert "exceeds 10MB" in response.json()["detail"]


def test_list_invoices(client, uploaded):
    """Test list invoices endpoint"""
    response = client.get("/api/invoices")

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    assert data["offset"] == 0
    assert data["limit"] == 100
    assert data["invoices"][0]["id"] == uploaded["id"]


def test_list_invoices_status_filter(client, uploaded):
    assert client.get("/api/invoices", params={"status": "UPLOADED"}).json()["total"] == 1
    assert client.get("/api/invoices", params={"status": "EXTRACTED"}).json()["total"] == 0
    assert client.get("/api/invoices", params={"status": "BOGUS"}).status_code == 422


def test_get_invoice(client, uploaded):
    response = client.get(f"/api/invoices/{uploaded['id']}")

    assert response.status_code == 200
    assert response.json()["line_items"] == []


def test_get_invoice_not_found(client):
    """Test get invoice endpoint with non-existent ID"""
    response = client.get("/api/invoices/non-existent-id")

    assert response.status_code == 404
    assert response.json()["detail"] == "Invoice not found"


def test_update_invoice(client, uploaded):
    body = {
        "supplier_name": "Reviewed GmbH",
        "invoice_date": "2025-03-04",
        "total": "42.50",
        "status": "EXTRACTED",
        "line_items": [{"description": "Item", "quantity": 5, "unit_price": "8.5"}],
    }
    response = client.put(f"/api/invoices/{uploaded['id']}", json=body)

    assert response.status_code == 200
    data = response.json()
    assert data["supplier_name"] == "Reviewed GmbH"
    assert data["invoice_date"] == "2025-03-04"
    assert data["total"] == 42.5
    assert data["status"] == "EXTRACTED"
    assert data["line_items"][0]["line_total"] == 42.5


def test_update_invoice_not_found(client):
    response = client.put("/api/invoices/non-existent-id", json={})
    assert response.status_code == 404


def test_update_invoice_invalid_date(client, uploaded):
    response = client.put(f"/api/invoices/{uploaded['id']}", json={"invoice_date": "yesterday"})
    assert response.status_code == 422


@pytest.mark.parametrize("body", [{"subtotal": -5}, {"total": "-0.01"}, {"total": "12345678901234567.00"}])
def test_update_invoice_rejects_unstorable_amounts(client, uploaded, body):
    response = client.put(f"/api/invoices/{uploaded['id']}", json=body)

    assert response.status_code == 422
    assert client.get(f"/api/invoices/{uploaded['id']}").json()["subtotal"] == 0


def test_update_invoice_line_total_is_exact(client, uploaded):
    body = {"line_items": [{"quantity": "99999999999999.9999", "unit_price": "3.0001"}]}
    response = client.put(f"/api/invoices/{uploaded['id']}", json=body)

    assert response.status_code == 200
    item = response.json()["line_items"][0]
    assert item["line_total"] == pytest.approx(float(Decimal("99999999999999.9999") * Decimal("3.0001")))


def test_delete_invoice(client, uploaded):
    response = client.delete(f"/api/invoices/{uploaded['id']}")

    assert response.status_code == 200
    assert response.json() == {"message": "Invoice deleted successfully", "id": uploaded["id"]}
    assert client.get(f"/api/invoices/{uploaded['id']}").status_code == 404
    assert client.delete(f"/api/invoices/{uploaded['id']}").status_code == 404


def test_extract_success(client, uploaded, sample_model_text):
    outcome = ExtractionOutcome(
        ok=True,
        data=parse_model_output(sample_model_text),
        raw=sample_model_text,
        model="test-model",
    )
    with patch("invoice_uploader.main.extract_invoice_from_file", AsyncMock(return_value=outcome)) as extract:
        response = client.post(f"/api/invoices/{uploaded['id']}/extract")

    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    invoice = data["invoice"]
    assert invoice["status"] == "EXTRACTED"
    assert invoice["supplier_name"] == "Acme Inc."
    assert invoice["currency"] == "EUR"
    assert invoice["total"] == 1200
    assert invoice["llm_model"] == "test-model"
    assert invoice["raw_llm_json"]["invoice_number"] == "INV-1001"
    assert len(invoice["line_items"]) == 2
    assert extract.await_args.args[0] == uploaded["file_path"]


def test_extract_failure_flags_for_review(client, uploaded):
    outcome = ExtractionOutcome(
        ok=False,
        raw="I cannot help with that.",
        model="test-model",
        error="No JSON found in model output",
        code="no_json_found",
    )
    with patch("invoice_uploader.main.extract_invoice_from_file", AsyncMock(return_value=outcome)):
        response = client.post(f"/api/invoices/{uploaded['id']}/extract")

    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is False
    assert data["status"] == "NEEDS_REVIEW"
    assert data["code"] == "no_json_found"
    assert data["raw"] == "I cannot help with that."
    assert data["invoice"]["status"] == "NEEDS_REVIEW"
    assert data["invoice"]["raw_llm_json"] == {
        "error": "No JSON found in model output",
        "code": "no_json_found",
        "raw": "I cannot help with that.",
    }


def test_extract_end_to_end_with_missing_file(client, temp_db, settings):
    """The real pipeline records an unreadable file as NEEDS_REVIEW"""
    from invoice_uploader.database import create_invoice

    invoice = create_invoice(temp_db, f"{settings.upload_dir}/gone.pdf")
    response = client.post(f"/api/invoices/{invoice['id']}/extract")

    assert response.status_code == 200
    assert response.json()["code"] == "file_unavailable"
    assert response.json()["invoice"]["status"] == "NEEDS_REVIEW"


def test_extract_not_found(client):
    response = client.post("/api/invoices/non-existent-id/extract")
    assert response.status_code == 404


def test_extract_misconfigured(client, uploaded):
    with patch(
        "invoice_uploader.main.extract_invoice_from_file",
        AsyncMock(side_effect=ConfigurationError("GENAI_API_KEY environment variable not set")),
    ):
        response = client.post(f"/api/invoices/{uploaded['id']}/extract")

    assert response.status_code == 500
    assert response.json() == {
        "error": "Server misconfigured",
        "details": "GENAI_API_KEY environment variable not set",
    }
    assert client.get(f"/api/invoices/{uploaded['id']}").json()["status"] == "UPLOADED"
