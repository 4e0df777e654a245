"""FastAPI backend for invoice upload, review and LLM extraction"""
import logging
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .config import get_settings
from .database import (
    create_invoice,
    delete_invoice,
    get_invoice,
    init_database,
    list_invoices,
    update_invoice,
)
from .errors import ConfigurationError, PersistenceError
from .extraction import extract_invoice_from_file, reconcile_extraction
from .models import InvoiceStatus, InvoiceUpdate

settings = get_settings()

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()

# Created at import so the static mount below has a directory to serve
Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)

app = FastAPI(title=settings.app_name, version=settings.version)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/uploads", StaticFiles(directory=settings.upload_dir), name="uploads")

db_conn = None


@app.on_event("startup")
async def startup_event():
    """Initialize database on startup"""
    global db_conn
    db_conn = init_database(settings.database_path)
    logger.info("Database initialized at %s; upload dir: %s", settings.database_path, settings.upload_dir)


@app.on_event("shutdown")
async def shutdown_event():
    """Close database connection on shutdown"""
    global db_conn
    if db_conn:
        db_conn.close()


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error("Configuration error: %s", exc)
    return JSONResponse(status_code=500, content={"error": "Server misconfigured", "details": str(exc)})


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    return JSONResponse(status_code=500, content={"error": "Database operation failed", "details": str(exc)})


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "ok": True,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": time.monotonic() - STARTED_AT,
    }


@app.get("/")
async def root():
    return {
        "message": settings.app_name,
        "version": settings.version,
        "endpoints": {
            "health": "/health",
            "invoices": "/api/invoices",
            "upload": "/api/invoices/upload",
        },
    }


@app.post("/api/invoices/upload", status_code=201)
async def upload_invoice(file: UploadFile = File(...)):
    """Store an uploaded invoice document and create its UPLOADED record"""
    if file.content_type not in settings.allowed_mime_types:
        raise HTTPException(status_code=400, detail="Only PDF, PNG, and JPEG files are allowed")

    file_bytes = await file.read()
    if not file_bytes:
        raise HTTPException(status_code=400, detail="File is required")

    if len(file_bytes) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=400,
            detail=f"File size exceeds {settings.max_upload_bytes // (1024 * 1024)}MB limit",
        )

    suffix = Path(file.filename or "").suffix.lower()
    stored_path = Path(settings.upload_dir) / f"{int(time.time() * 1000)}-{uuid.uuid4()}{suffix}"
    stored_path.write_bytes(file_bytes)

    invoice = create_invoice(db_conn, str(stored_path), settings.default_currency)
    logger.info("Stored upload %s as invoice %s", file.filename, invoice["id"])

    return {
        "id": invoice["id"],
        "file_path": invoice["file_path"],
        "status": invoice["status"],
        "message": "File uploaded successfully",
    }


@app.get("/api/invoices")
async def list_invoices_endpoint(
    status: Optional[InvoiceStatus] = Query(None, description="Filter by status"),
    offset: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
):
    """List invoices with pagination"""
    invoices, total = list_invoices(
        db_conn,
        status=status.value if status else None,
        offset=offset,
        limit=limit,
    )
    return {
        "invoices": invoices,
        "total": total,
        "offset": offset,
        "limit": limit,
    }


@app.get("/api/invoices/{invoice_id}")
async def get_invoice_endpoint(invoice_id: str):
    """Get single invoice with line items"""
    invoice = get_invoice(db_conn, invoice_id)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return invoice


@app.put("/api/invoices/{invoice_id}")
async def update_invoice_endpoint(invoice_id: str, update: InvoiceUpdate):
    """Manual review edit of an invoice and its line items"""
    invoice = update_invoice(db_conn, invoice_id, update, settings.default_currency)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return invoice


@app.delete("/api/invoices/{invoice_id}")
async def delete_invoice_endpoint(invoice_id: str):
    if not delete_invoice(db_conn, invoice_id):
        raise HTTPException(status_code=404, detail="Invoice not found")
    return {"message": "Invoice deleted successfully", "id": invoice_id}


@app.post("/api/invoices/{invoice_id}/extract")
async def extract_invoice_endpoint(invoice_id: str):
    """Run LLM extraction for a stored invoice and persist the outcome"""
    invoice = get_invoice(db_conn, invoice_id, include_line_items=False)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")

    outcome = await extract_invoice_from_file(invoice["file_path"], settings)
    updated = reconcile_extraction(db_conn, invoice_id, outcome, settings)
    if not updated:
        raise HTTPException(status_code=404, detail="Invoice not found")

    if outcome.ok:
        return {"ok": True, "invoice": updated}

    return {
        "ok": False,
        "status": InvoiceStatus.NEEDS_REVIEW.value,
        "error": outcome.error,
        "code": outcome.code,
        "raw": outcome.raw,
        "invoice": updated,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=4000)
