"""Exceptions raised by the extraction pipeline and the storage layer"""
from typing import Optional


class InvoiceUploaderError(Exception):
    """Base class for all errors raised by this package"""


class ConfigurationError(InvoiceUploaderError):
    """A required credential or setting is missing"""


class PersistenceError(InvoiceUploaderError):
    """The database rejected a write; the transaction was rolled back"""


class ExtractionFailure(InvoiceUploaderError):
    """An extraction attempt failed in a way a human reviewer can resolve.

    Carries a short machine-readable ``code`` and whatever raw model text was
    obtained before the failure, so it can be kept for audit.
    """

    code = "extraction_failed"

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.raw = raw


class FileUnavailableError(ExtractionFailure):
    code = "file_unavailable"


class NoUsableTextError(ExtractionFailure):
    code = "no_usable_text"


class ModelCallError(ExtractionFailure):
    code = "model_call_failed"

    def __init__(self, message: str, status_code: Optional[int] = None, raw: Optional[str] = None):
        super().__init__(message, raw=raw)
        self.status_code = status_code


class NoJsonFound(ExtractionFailure):
    code = "no_json_found"


class MalformedJson(ExtractionFailure):
    code = "malformed_json"
