"""LLM extraction pipeline: document -> prompt -> model -> coerced invoice"""
import json
import logging
import re
from collections.abc import Mapping
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Any, Dict, Optional

import duckdb

from .config import Settings
from .database import mark_needs_review, save_extraction
from .errors import ExtractionFailure, MalformedJson, NoJsonFound, NoUsableTextError
from .llm import ModelBackend, create_model_backend
from .models import ExtractedInvoice, ExtractedLineItem, ExtractionOutcome
from .pdf_parser import read_document
from .prompt import build_prompt
from .responses import resolve_response_text

logger = logging.getLogger(__name__)

# Greedy on purpose: first "{" through the last "}" in the text
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_ISO_DATE_PREFIX = re.compile(r"^(\d{4}-\d{2}-\d{2})(?:$|[T ])")

# Storage scales and exclusive magnitude limits, matching the column types:
# DECIMAL(18,2) amounts, DECIMAL(18,4) quantity/unit_price, DECIMAL(38,8) line_total
AMOUNT_SCALE = Decimal("0.01")
AMOUNT_LIMIT = Decimal(10) ** 16
ITEM_SCALE = Decimal("0.0001")
ITEM_LIMIT = Decimal(10) ** 14
LINE_TOTAL_SCALE = Decimal("0.00000001")
LINE_TOTAL_LIMIT = Decimal(10) ** 30
# Enough digits for an exact quantity * unit_price within the limits above
_PRECISION = 38


def to_decimal(value: Any) -> Optional[Decimal]:
    """Loose numeric conversion; None for anything that is not a finite number"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, int):
        number = Decimal(value)
    elif isinstance(value, float):
        number = Decimal(str(value))
    elif isinstance(value, str):
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            return None
    else:
        return None
    return number if number.is_finite() else None


def to_stored_decimal(value: Any, scale: Decimal, limit: Decimal) -> Optional[Decimal]:
    """Round to the column scale; None when the column cannot hold the value"""
    number = to_decimal(value)
    if number is None or abs(number) >= limit:
        return None
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        number = number.quantize(scale, rounding=ROUND_HALF_UP)
    return number if abs(number) < limit else None


def coerce_number(value: Any) -> Decimal:
    """Line-item quantity or unit price, 0 when missing, invalid or too large"""
    number = to_stored_decimal(value, ITEM_SCALE, ITEM_LIMIT)
    return number if number is not None else Decimal(0)


def coerce_amount(value: Any) -> Decimal:
    """Invoice-level amount: non-negative, 0 when missing, invalid or too large"""
    number = to_stored_decimal(value, AMOUNT_SCALE, AMOUNT_LIMIT)
    if number is None or number < 0:
        return Decimal(0)
    return number


def coerce_confidence(value: Any) -> Optional[float]:
    number = to_decimal(value)
    if number is None:
        return None
    return float(min(max(number, Decimal(0)), Decimal(1)))


def coerce_date(value: Any) -> Optional[str]:
    """Canonical YYYY-MM-DD, or None for anything that is not a real date"""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str):
        return None
    match = _ISO_DATE_PREFIX.match(value.strip())
    if not match:
        return None
    try:
        return date.fromisoformat(match.group(1)).isoformat()
    except ValueError:
        return None


def coerce_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (Mapping, list)):
        return None
    text = str(value).strip()
    return text or None


def coerce_line_item(item: Mapping) -> ExtractedLineItem:
    quantity = coerce_number(item.get("quantity"))
    unit_price = coerce_number(item.get("unit_price"))
    line_total = to_stored_decimal(item.get("line_total"), LINE_TOTAL_SCALE, LINE_TOTAL_LIMIT)
    if line_total is None:
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            line_total = quantity * unit_price
    description = item.get("description")
    return ExtractedLineItem(
        description="" if description is None else str(description),
        quantity=quantity,
        unit_price=unit_price,
        line_total=line_total,
        confidence=coerce_confidence(item.get("confidence")),
    )


def coerce_extraction(parsed: Mapping) -> ExtractedInvoice:
    """Normalize a parsed model object into the canonical extraction record.

    Applying this to its own (dumped) output gives the same values back.
    """
    subtotal = parsed.get("subtotal")
    total = parsed.get("total")
    currency = coerce_text(parsed.get("currency"))

    line_items = parsed.get("line_items")
    if not isinstance(line_items, list):
        line_items = []

    return ExtractedInvoice(
        invoice_number=coerce_text(parsed.get("invoice_number")),
        invoice_date=coerce_date(parsed.get("invoice_date")),
        supplier_name=coerce_text(parsed.get("supplier_name")),
        currency=currency.upper() if currency else None,
        subtotal=coerce_amount(subtotal) if subtotal is not None else None,
        total=coerce_amount(total) if total is not None else None,
        confidence=coerce_confidence(parsed.get("confidence")),
        line_items=[coerce_line_item(li) for li in line_items if isinstance(li, Mapping)],
    )


def find_json_object(text: str) -> Optional[str]:
    match = _JSON_OBJECT.search(text or "")
    return match.group(0) if match else None


def parse_model_output(text: str) -> ExtractedInvoice:
    """Locate, parse and coerce the JSON object in resolved model text.

    Raises NoJsonFound when there is no brace-delimited span and MalformedJson
    when the span does not parse; both carry the full text for audit.
    """
    candidate = find_json_object(text)
    if candidate is None:
        raise NoJsonFound("No JSON found in model output", raw=text)

    try:
        parsed = json.loads(candidate, parse_float=Decimal)
    except ValueError as e:
        raise MalformedJson("Model returned malformed JSON", raw=text) from e

    return coerce_extraction(parsed)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Non-standard JSON constant: {name}")


def build_audit_payload(
    raw: Optional[str],
    data: Optional[ExtractedInvoice] = None,
    error: Optional[str] = None,
    code: Optional[str] = None,
) -> Dict[str, Any]:
    """JSON object stored in raw_llm_json.

    A successful extraction whose raw text is itself a JSON object stores that
    object as-is; otherwise the raw text is wrapped with the parsed fields, or
    with the error for failed attempts.
    """
    if data is None:
        return {"error": error, "code": code, "raw": raw}

    try:
        parsed = json.loads(raw or "", parse_constant=_reject_constant)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict):
        return parsed
    return {"parsed": data.model_dump(mode="json"), "raw": raw}


async def extract_invoice_from_file(
    file_path: Optional[str],
    settings: Settings,
    backend: Optional[ModelBackend] = None,
) -> ExtractionOutcome:
    """
    Run one extraction attempt for a stored file

    Args:
        file_path: Path of the stored upload
        settings: Application settings
        backend: Model backend; built from settings when omitted

    Returns:
        ExtractionOutcome; failures a reviewer can act on come back with
        ok=False instead of raising

    Raises:
        ConfigurationError: If the backend's credentials are missing
    """
    backend = backend or create_model_backend(settings)
    backend.check_configuration()

    raw: Optional[str] = None
    try:
        document = read_document(
            file_path,
            mode=settings.document_mode,
            max_chars=settings.max_prompt_chars,
            attach_images=backend.accepts_images,
        )
        if not document.is_inline and not document.text.strip():
            raise NoUsableTextError(f"No usable text extracted from {document.mime} document")

        response = await backend.generate(build_prompt(document), document)
        raw = resolve_response_text(response)
        data = parse_model_output(raw)
    except ExtractionFailure as e:
        logger.warning("Extraction of %s failed (%s): %s", file_path, e.code, e.message)
        return ExtractionOutcome(
            ok=False,
            raw=e.raw if e.raw is not None else raw,
            model=backend.model,
            error=e.message,
            code=e.code,
        )

    logger.info("Extracted %d line items from %s", len(data.line_items), file_path)
    return ExtractionOutcome(ok=True, data=data, raw=raw, model=backend.model)


def reconcile_extraction(
    conn: duckdb.DuckDBPyConnection,
    invoice_id: str,
    outcome: ExtractionOutcome,
    settings: Settings,
) -> Optional[Dict[str, Any]]:
    """Apply an extraction outcome to the stored invoice.

    Success replaces the extracted fields and line items in one transaction
    and sets EXTRACTED; failure records the diagnostic and sets NEEDS_REVIEW.
    Returns the updated invoice, or None if it does not exist.
    """
    if outcome.ok and outcome.data is not None:
        payload = build_audit_payload(outcome.raw, data=outcome.data)
        return save_extraction(
            conn, invoice_id, outcome.data, payload, outcome.model, settings.default_currency
        )

    payload = build_audit_payload(outcome.raw, error=outcome.error, code=outcome.code)
    return mark_needs_review(conn, invoice_id, payload, outcome.model)
