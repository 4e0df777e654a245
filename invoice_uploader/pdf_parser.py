"""Document reading utilities using PyMuPDF, pdfplumber, and pdf2image"""
import base64
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

import fitz  # PyMuPDF
import pdfplumber
from pdf2image import convert_from_bytes
from PIL import Image

from .errors import FileUnavailableError
from .normalizer import MAX_PROMPT_CHARS, normalize_text

logger = logging.getLogger(__name__)

MIME_TYPES = {
    ".pdf": "application/pdf",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
}
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg")
OCTET_STREAM = "application/octet-stream"


@dataclass
class DocumentContent:
    """What the prompt builder gets to see of a stored file"""

    mime: str
    text: str = ""
    payload_b64: Optional[str] = None
    images: List[str] = field(default_factory=list)

    @property
    def is_inline(self) -> bool:
        return self.payload_b64 is not None or bool(self.images)


def detect_mime(path: Union[str, Path]) -> str:
    """Map a file extension to one of the accepted MIME types"""
    return MIME_TYPES.get(Path(path).suffix.lower(), OCTET_STREAM)


def read_file(path: Union[str, Path, None]) -> bytes:
    """Read a stored upload, failing with FileUnavailableError"""
    if not path:
        raise FileUnavailableError("filePath missing or not found")
    file_path = Path(path)
    if not file_path.is_file():
        raise FileUnavailableError(f"File not found: {file_path}")
    try:
        return file_path.read_bytes()
    except OSError as e:
        raise FileUnavailableError(f"File not readable: {file_path}: {e}") from e


def extract_text(pdf_bytes: bytes) -> List[str]:
    """Extract text from PDF using PyMuPDF (fast)"""
    doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    try:
        return [page.get_text() for page in doc]
    finally:
        doc.close()


def extract_text_pdfplumber(pdf_bytes: bytes) -> List[str]:
    """Extract text from PDF using pdfplumber (slower, layout-aware)"""
    with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
        return [page.extract_text() or "" for page in pdf.pages]


def extract_pdf_text(pdf_bytes: bytes) -> str:
    """Extract all page text from a PDF.

    Tries PyMuPDF first and pdfplumber when that fails or finds nothing.
    Library errors never propagate; an unreadable PDF yields "".
    """
    pages: List[str] = []
    try:
        pages = extract_text(pdf_bytes)
    except Exception as e:
        logger.warning("PyMuPDF text extraction failed: %s", e)

    if not any(page.strip() for page in pages):
        try:
            pages = extract_text_pdfplumber(pdf_bytes)
        except Exception as e:
            logger.warning("pdfplumber text extraction failed: %s", e)
            pages = []

    return "\n".join(pages)


def pdf_to_images(pdf_bytes: bytes, dpi: int = 200) -> List[Image.Image]:
    """Convert PDF pages to PIL Images for vision LLM processing"""
    try:
        return convert_from_bytes(pdf_bytes, dpi=dpi)
    except Exception as e:
        raise ValueError(f"Failed to convert PDF to images: {e}") from e


def image_to_base64(image: Image.Image) -> str:
    """Convert PIL Image to base64 PNG string"""
    buffered = io.BytesIO()
    image.save(buffered, format="PNG")
    return base64.b64encode(buffered.getvalue()).decode("utf-8")


def extract_text_from_file(path: Union[str, Path], max_chars: int = MAX_PROMPT_CHARS) -> DocumentContent:
    """Text mode: PDF text, or a best-effort decoding of plain files.

    PNG/JPEG carry no text layer and come back with empty text.
    """
    file_bytes = read_file(path)
    suffix = Path(path).suffix.lower()

    if suffix == ".pdf":
        return DocumentContent(
            mime="application/pdf",
            text=normalize_text(extract_pdf_text(file_bytes), max_chars),
        )

    if suffix in IMAGE_EXTENSIONS:
        return DocumentContent(mime=detect_mime(path))

    try:
        decoded = file_bytes.decode("utf-8")
    except UnicodeDecodeError:
        return DocumentContent(mime=OCTET_STREAM)
    return DocumentContent(mime="text/plain", text=normalize_text(decoded, max_chars))


def encode_file_inline(path: Union[str, Path], attach_images: bool = False) -> DocumentContent:
    """Inline mode: forward the raw file instead of extracting text.

    With ``attach_images`` the document is sent as base64 PNG/JPEG pages for
    backends that take image attachments; PDFs are rendered page by page.
    """
    file_bytes = read_file(path)
    mime = detect_mime(path)

    if attach_images:
        if mime.startswith("image/"):
            return DocumentContent(mime=mime, images=[base64.b64encode(file_bytes).decode("utf-8")])
        if mime == "application/pdf":
            try:
                pages = pdf_to_images(file_bytes)
            except ValueError as e:
                logger.warning("%s; sending the PDF inline instead", e)
            else:
                return DocumentContent(mime=mime, images=[image_to_base64(img) for img in pages])

    return DocumentContent(mime=mime, payload_b64=base64.b64encode(file_bytes).decode("utf-8"))


def read_document(
    path: Union[str, Path],
    mode: str = "text",
    max_chars: int = MAX_PROMPT_CHARS,
    attach_images: bool = False,
) -> DocumentContent:
    """
    Read a stored document for the LLM

    Args:
        path: Stored file path
        mode: "text" or "inline"
        max_chars: Character budget for extracted text
        attach_images: Render pages to images (inline mode only)

    Returns:
        DocumentContent ready for prompt building
    """
    if mode == "inline":
        return encode_file_inline(path, attach_images=attach_images)
    return extract_text_from_file(path, max_chars=max_chars)
