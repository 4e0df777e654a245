"""DuckDB database operations for invoices and their line items"""
import json
import logging
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal, localcontext
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

import duckdb

from .errors import PersistenceError
from .models import (
    ExtractedInvoice,
    ExtractedLineItem,
    InvoiceStatus,
    InvoiceUpdate,
    LineItemInput,
)

logger = logging.getLogger(__name__)


DB_PATH = "invoices.duckdb"


def init_database(db_path: str = DB_PATH) -> duckdb.DuckDBPyConnection:
    """Initialize database and create tables if they don't exist"""
    conn = duckdb.connect(str(db_path))

    conn.execute("""
        CREATE TABLE IF NOT EXISTS invoices (
            id VARCHAR PRIMARY KEY,
            file_path VARCHAR,
            supplier_name VARCHAR,
            invoice_number VARCHAR,
            invoice_date DATE,
            currency VARCHAR,
            subtotal DECIMAL(18,2) DEFAULT 0,
            total DECIMAL(18,2) DEFAULT 0,
            confidence DOUBLE,
            status VARCHAR DEFAULT 'UPLOADED',
            raw_llm_json JSON,
            llm_model VARCHAR,
            extraction_at TIMESTAMP,
            created_at TIMESTAMP,
            updated_at TIMESTAMP
        )
    """)

    # No foreign key: line items are only ever deleted with, or replaced
    # under, their invoice inside one transaction (see _replace_line_items).
    conn.execute("""
        CREATE TABLE IF NOT EXISTS line_items (
            id VARCHAR PRIMARY KEY,
            invoice_id VARCHAR NOT NULL,
            position INTEGER,
            description VARCHAR,
            quantity DECIMAL(18,4) DEFAULT 0,
            unit_price DECIMAL(18,4) DEFAULT 0,
            line_total DECIMAL(38,8) DEFAULT 0,
            confidence DOUBLE,
            created_at TIMESTAMP
        )
    """)

    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_line_items_invoice_id ON line_items(invoice_id)
    """)

    return conn


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_date(value: Optional[Any]) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def _isoformat(value: Any) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _fetch_dicts(cursor: duckdb.DuckDBPyConnection) -> List[Dict[str, Any]]:
    columns = [col[0] for col in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


def _serialize_invoice(row: Dict[str, Any]) -> Dict[str, Any]:
    invoice = dict(row)
    for key in ("invoice_date", "extraction_at", "created_at", "updated_at"):
        if key in invoice:
            invoice[key] = _isoformat(invoice[key])
    if invoice.get("raw_llm_json") is not None:
        invoice["raw_llm_json"] = json.loads(invoice["raw_llm_json"])
    return invoice


@contextmanager
def transaction(conn: duckdb.DuckDBPyConnection) -> Iterator[duckdb.DuckDBPyConnection]:
    """Run statements on a dedicated cursor inside one transaction.

    Commits on success, rolls back on any exception, and always closes the
    cursor.
    """
    cursor = conn.cursor()
    try:
        cursor.begin()
        try:
            yield cursor
            cursor.commit()
        except BaseException:
            try:
                cursor.rollback()
            except duckdb.Error as rollback_error:
                logger.debug("Rollback after failed transaction raised: %s", rollback_error)
            raise
    finally:
        cursor.close()


def _insert_line_item(
    cursor: duckdb.DuckDBPyConnection,
    invoice_id: str,
    position: int,
    item: ExtractedLineItem,
    created_at: datetime,
) -> None:
    cursor.execute("""
        INSERT INTO line_items (
            id, invoice_id, position, description, quantity,
            unit_price, line_total, confidence, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, [
        str(uuid.uuid4()),
        invoice_id,
        position,
        item.description,
        item.quantity,
        item.unit_price,
        item.line_total,
        item.confidence,
        created_at,
    ])


def _replace_line_items(
    cursor: duckdb.DuckDBPyConnection,
    invoice_id: str,
    items: Iterable[ExtractedLineItem],
) -> None:
    """Delete every line item of the invoice and insert ``items`` in order"""
    cursor.execute("DELETE FROM line_items WHERE invoice_id = ?", [invoice_id])
    now = _utcnow()
    for position, item in enumerate(items):
        _insert_line_item(cursor, invoice_id, position, item, now)


def create_invoice(conn: duckdb.DuckDBPyConnection, file_path: str, currency: str = "USD") -> Dict[str, Any]:
    """Create the initial UPLOADED row for a stored file"""
    invoice_id = str(uuid.uuid4())
    now = _utcnow()
    conn.execute("""
        INSERT INTO invoices (
            id, file_path, currency, subtotal, total, status, created_at, updated_at
        ) VALUES (?, ?, ?, 0, 0, ?, ?, ?)
    """, [invoice_id, file_path, currency, InvoiceStatus.UPLOADED.value, now, now])
    return get_invoice(conn, invoice_id, include_line_items=False)


def get_line_items(conn: duckdb.DuckDBPyConnection, invoice_id: str) -> List[Dict[str, Any]]:
    cursor = conn.execute("""
        SELECT id, description, quantity, unit_price, line_total, confidence, created_at
        FROM line_items
        WHERE invoice_id = ?
        ORDER BY position
    """, [invoice_id])
    items = _fetch_dicts(cursor)
    for item in items:
        item["created_at"] = _isoformat(item["created_at"])
    return items


def get_invoice(
    conn: duckdb.DuckDBPyConnection,
    invoice_id: str,
    include_line_items: bool = True,
) -> Optional[Dict[str, Any]]:
    """Get invoice by ID, with its line items unless told otherwise"""
    rows = _fetch_dicts(conn.execute("SELECT * FROM invoices WHERE id = ?", [invoice_id]))
    if not rows:
        return None

    invoice = _serialize_invoice(rows[0])
    if include_line_items:
        invoice["line_items"] = get_line_items(conn, invoice_id)
    return invoice


def list_invoices(
    conn: duckdb.DuckDBPyConnection,
    status: Optional[str] = None,
    offset: int = 0,
    limit: int = 100,
) -> Tuple[List[Dict[str, Any]], int]:
    """List invoices newest first, with the total count for pagination"""
    where_clause = "status = ?" if status else "1=1"
    params: List[Any] = [status] if status else []

    count_result = conn.execute(f"""
        SELECT COUNT(*) FROM invoices WHERE {where_clause}
    """, params).fetchone()
    total = count_result[0] if count_result else 0

    cursor = conn.execute(f"""
        SELECT id, supplier_name, invoice_number, invoice_date, currency,
               subtotal, total, status, created_at, updated_at
        FROM invoices
        WHERE {where_clause}
        ORDER BY created_at DESC
        LIMIT ? OFFSET ?
    """, params + [limit, offset])

    return [_serialize_invoice(row) for row in _fetch_dicts(cursor)], total


def _edited_line_item(item: LineItemInput) -> ExtractedLineItem:
    quantity = item.quantity or Decimal(0)
    unit_price = item.unit_price or Decimal(0)
    line_total = item.line_total
    if line_total is None:
        # exact product; DECIMAL(38,8) holds any DECIMAL(18,4) x DECIMAL(18,4)
        with localcontext() as ctx:
            ctx.prec = 38
            line_total = quantity * unit_price
    return ExtractedLineItem(
        description=item.description or "",
        quantity=quantity,
        unit_price=unit_price,
        line_total=line_total,
    )


def update_invoice(
    conn: duckdb.DuckDBPyConnection,
    invoice_id: str,
    update: InvoiceUpdate,
    default_currency: str = "USD",
) -> Optional[Dict[str, Any]]:
    """Apply a manual review edit: overwrite the fields, replace the line items.

    ``status`` is taken as given when supplied and left alone otherwise.
    Returns None if the invoice does not exist.
    """
    items = [_edited_line_item(item) for item in update.line_items]

    try:
        with transaction(conn) as cursor:
            existing = cursor.execute("SELECT id FROM invoices WHERE id = ?", [invoice_id]).fetchone()
            if existing is None:
                return None

            cursor.execute("""
                UPDATE invoices SET
                    supplier_name = ?,
                    invoice_number = ?,
                    invoice_date = ?,
                    currency = ?,
                    subtotal = ?,
                    total = ?,
                    status = COALESCE(?, status),
                    updated_at = ?
                WHERE id = ?
            """, [
                update.supplier_name or None,
                update.invoice_number or None,
                update.invoice_date,
                update.currency or default_currency,
                update.subtotal or Decimal(0),
                update.total or Decimal(0),
                update.status,
                _utcnow(),
                invoice_id,
            ])
            _replace_line_items(cursor, invoice_id, items)
    except duckdb.Error as e:
        logger.error("Failed to update invoice %s: %s", invoice_id, e)
        raise PersistenceError(f"Failed to update invoice {invoice_id}: {e}") from e

    return get_invoice(conn, invoice_id)


def delete_invoice(conn: duckdb.DuckDBPyConnection, invoice_id: str) -> bool:
    """Delete an invoice and all of its line items. False if it did not exist."""
    try:
        with transaction(conn) as cursor:
            existing = cursor.execute("SELECT id FROM invoices WHERE id = ?", [invoice_id]).fetchone()
            if existing is None:
                return False
            cursor.execute("DELETE FROM line_items WHERE invoice_id = ?", [invoice_id])
            cursor.execute("DELETE FROM invoices WHERE id = ?", [invoice_id])
    except duckdb.Error as e:
        logger.error("Failed to delete invoice %s: %s", invoice_id, e)
        raise PersistenceError(f"Failed to delete invoice {invoice_id}: {e}") from e
    return True


def save_extraction(
    conn: duckdb.DuckDBPyConnection,
    invoice_id: str,
    data: ExtractedInvoice,
    audit_payload: Dict[str, Any],
    model: Optional[str],
    default_currency: str = "USD",
) -> Optional[Dict[str, Any]]:
    """Persist a successful extraction atomically.

    Updates the extracted fields, marks the invoice EXTRACTED and replaces its
    line items, all in one transaction. Currency and amounts the model left
    out keep their stored values. Raises PersistenceError after rolling back
    if any statement fails; returns None if the invoice does not exist.
    """
    try:
        with transaction(conn) as cursor:
            existing = cursor.execute(
                "SELECT currency, subtotal, total FROM invoices WHERE id = ?", [invoice_id]
            ).fetchone()
            if existing is None:
                return None
            current_currency, current_subtotal, current_total = existing

            now = _utcnow()
            cursor.execute("""
                UPDATE invoices SET
                    supplier_name = ?,
                    invoice_number = ?,
                    invoice_date = ?,
                    currency = ?,
                    subtotal = ?,
                    total = ?,
                    confidence = ?,
                    raw_llm_json = ?,
                    llm_model = ?,
                    extraction_at = ?,
                    status = ?,
                    updated_at = ?
                WHERE id = ?
            """, [
                data.supplier_name,
                data.invoice_number,
                _as_date(data.invoice_date),
                data.currency or current_currency or default_currency,
                data.subtotal if data.subtotal is not None else (current_subtotal or Decimal(0)),
                data.total if data.total is not None else (current_total or Decimal(0)),
                data.confidence,
                json.dumps(audit_payload),
                model,
                now,
                InvoiceStatus.EXTRACTED.value,
                now,
                invoice_id,
            ])
            _replace_line_items(cursor, invoice_id, data.line_items)
    except duckdb.Error as e:
        logger.error("Failed to save extraction for invoice %s: %s", invoice_id, e)
        raise PersistenceError(f"Failed to save extraction for invoice {invoice_id}: {e}") from e

    return get_invoice(conn, invoice_id)


def mark_needs_review(
    conn: duckdb.DuckDBPyConnection,
    invoice_id: str,
    audit_payload: Dict[str, Any],
    model: Optional[str],
) -> Optional[Dict[str, Any]]:
    """Record a failed extraction; every other extracted field is untouched"""
    now = _utcnow()
    try:
        conn.execute("""
            UPDATE invoices SET
                raw_llm_json = ?,
                status = ?,
                llm_model = ?,
                extraction_at = ?,
                updated_at = ?
            WHERE id = ?
        """, [
            json.dumps(audit_payload),
            InvoiceStatus.NEEDS_REVIEW.value,
            model,
            now,
            now,
            invoice_id,
        ])
    except duckdb.Error as e:
        logger.error("Failed to flag invoice %s for review: %s", invoice_id, e)
        raise PersistenceError(f"Failed to flag invoice {invoice_id} for review: {e}") from e

    return get_invoice(conn, invoice_id)
