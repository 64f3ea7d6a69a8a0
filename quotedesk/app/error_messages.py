"""Operator-facing texts for rate upload and rebuild failures.

Each helper returns plain English so the HTTP layer, the CLI and the
ingestion error list report the same wording.
"""

from __future__ import annotations

from typing import Iterable, Mapping

UPLOAD_SIZE_HINTS = ("413", "capacity limit", "too large", "exceeds the capacity")


def _size_mb(size_bytes: int | None) -> str:
    if size_bytes is None:
        return "unknown"
    return f"{size_bytes / (1024 * 1024):.2f}"


def looks_like_size_error(message: str, status_code: int | None = None) -> bool:
    if status_code == 413:
        return True
    lowered = (message or "").lower()
    return any(hint in lowered for hint in UPLOAD_SIZE_HINTS)


def upload_error_message(message: str, *, size_bytes: int | None, status_code: int | None = None) -> str:
    """Text recorded for one rate document that could not be uploaded."""
    if looks_like_size_error(message, status_code):
        return (
            f"File too large: {_size_mb(size_bytes)} MB. The inference service rejected the upload. "
            "Please compress the PDF to under 50 MB or split it into smaller files."
        )
    base = message or "Failed to upload to the inference service"
    if size_bytes is None:
        return base
    return f"{base} (File size: {_size_mb(size_bytes)} MB)"


def no_rate_documents_message(total_files: int = 0) -> str:
    if total_files <= 0:
        return "No rate files uploaded. Please upload rate files first."
    return (
        "No PDF rate files found. Please upload PDF rate files. "
        f"Found {total_files} file(s) in storage, but 0 PDF file(s)."
    )


def all_uploads_failed_message(errors: Iterable[Mapping[str, str]]) -> str:
    details = "; ".join(f"{err.get('filename', '?')}: {err.get('error', '')}" for err in errors)
    return f"Failed to upload rate files to the inference service. {details}".strip()


def invalid_rate_type_message(extension: str) -> str:
    return f"Invalid file type: {extension or '(none)'}. Only PDF files are allowed for rate uploads."
