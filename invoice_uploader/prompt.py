"""Prompt construction for invoice extraction"""
import json

from .pdf_parser import DocumentContent

INVOICE_SCHEMA = {
    "invoice_number": "string|null",
    "invoice_date": "YYYY-MM-DD|null",
    "supplier_name": "string|null",
    "currency": "string|null",
    "subtotal": "number|null",
    "total": "number|null",
    "confidence": "number|null (0.0-1.0 overall confidence estimate)",
    "line_items": [
        {
            "description": "string",
            "quantity": "number",
            "unit_price": "number",
            "line_total": "number",
            "confidence": "number|null",
        }
    ],
}

EXTRACTION_PROMPT = """
You are an invoice extraction engine. {intro}
Return ONLY a JSON object (no prose, no markdown) that strictly matches the schema described below.
If a field is not present, return null. Numeric values must be numbers, dates must be YYYY-MM-DD.
Provide a "confidence" (0.0-1.0) for the overall extraction, and optional confidences for each line item.
Look for invoice number and invoice date patterns; take the supplier name from the header or footer if possible.

Schema:
{schema}

MIME type of original file: {mime}

{document}

Return only the JSON now (no explanation).
"""


def build_prompt(document: DocumentContent) -> str:
    """Render the extraction instructions plus the document content"""
    if document.images:
        intro = f"The invoice is attached as {len(document.images)} page image(s)."
        body = "The document content is provided in the attached images."
    elif document.payload_b64 is not None:
        intro = "I will provide a file encoded in base64."
        body = f"File content (base64): (BEGIN_BASE64){document.payload_b64}(END_BASE64)"
    else:
        intro = "I will provide the extracted text content of an invoice."
        body = f"BEGIN_EXTRACTED_TEXT:\n{document.text}\nEND_EXTRACTED_TEXT"

    return EXTRACTION_PROMPT.format(
        intro=intro,
        schema=json.dumps(INVOICE_SCHEMA, indent=2),
        mime=document.mime,
        document=body,
    ).strip()
