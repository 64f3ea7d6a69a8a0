from __future__ import annotations

from typing import Dict, List, Optional


class ServiceError(Exception):
    """Domain specific error that can be translated to HTTP responses."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class MissingContentError(ServiceError):
    def __init__(self, message: str = "No content provided"):
        super().__init__(message, status_code=400)


class MissingInstructionsError(ServiceError):
    def __init__(self, message: str = "No instructions provided. Please enter instructions first."):
        super().__init__(message, status_code=400)


class NoRateDocumentsError(ServiceError):
    def __init__(self, message: str = "No rate files uploaded. Please upload rate files first."):
        super().__init__(message, status_code=400)


class AllUploadsFailedError(ServiceError):
    """Every rate document failed to upload; ``errors`` holds one entry per file."""

    def __init__(self, message: str, errors: List[Dict[str, str]]):
        super().__init__(message, status_code=502)
        self.errors = list(errors)


class MalformedAIResponseError(ServiceError):
    def __init__(self, message: str = "Failed to parse AI response as JSON", raw: str = ""):
        super().__init__(message, status_code=502)
        self.raw = raw


class InferenceError(ServiceError):
    def __init__(self, message: str, status_code: int = 502, upstream_status: Optional[int] = None):
        super().__init__(message, status_code=status_code)
        self.upstream_status = upstream_status


class FileHandleNotFoundError(InferenceError):
    """The inference service no longer recognises one of the referenced file handles."""


class RateDocumentNotFoundError(ServiceError):
    def __init__(self, filename: str):
        super().__init__("File not found", status_code=404)
        self.filename = filename


class InvalidRateDocumentError(ServiceError):
    def __init__(self, message: str, filename: str = ""):
        super().__init__(message, status_code=400)
        self.filename = filename


# Per-email ingestion failures; the message is what lands in the batch ``errors`` list.
class IngestError(ServiceError):
    default_message = "Unknown error"

    def __init__(self, message: Optional[str] = None, email_id: Optional[str] = None):
        super().__init__(message or self.default_message, status_code=400)
        self.email_id = email_id


class MissingEmailIdError(IngestError):
    default_message = "Missing email id"


class DuplicateEmailError(IngestError):
    default_message = "Already imported (duplicate)"


class NoInstructionsConfiguredError(IngestError):
    default_message = "No instructions configured on server"


class EmptyEmailError(IngestError):
    default_message = "Email has no body and no PDF attachment"


class DuplicateQuotationError(ServiceError):
    """Another quotation already references the same source email."""

    def __init__(self, message: str = "Already imported (duplicate)"):
        super().__init__(message, status_code=409)
