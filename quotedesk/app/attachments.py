"""Decode base64 mail attachments and pick the first PDF."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, Iterable, Mapping, Optional

PDF_MIME_TYPES = {"application/pdf"}
PDF_EXTENSIONS = {".pdf"}


@dataclass
class DecodedAttachment:
    name: str
    content_type: str
    data: bytes


def decode_base64_attachment(payload: Any) -> bytes:
    if not payload or not isinstance(payload, str):
        raise ValueError("Invalid base64 attachment: missing or not a string")
    # Apps Script may emit the URL-safe alphabet and drop padding.
    cleaned = "".join(payload.split()).replace("-", "+").replace("_", "/")
    cleaned += "=" * (-len(cleaned) % 4)
    try:
        return base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Invalid base64 attachment: {exc}") from exc


def is_pdf_attachment(attachment: Optional[Mapping[str, Any]]) -> bool:
    if not attachment:
        return False
    name = str(attachment.get("name") or "").lower()
    content_type = str(attachment.get("contentType") or "").lower()
    return content_type in PDF_MIME_TYPES or PurePosixPath(name).suffix in PDF_EXTENSIONS


def first_pdf_attachment(attachments: Optional[Iterable[Any]]) -> Optional[DecodedAttachment]:
    """Return the first decodable PDF attachment, skipping broken entries."""
    if not attachments or not isinstance(attachments, (list, tuple)):
        return None
    for attachment in attachments:
        if not isinstance(attachment, Mapping) or not attachment.get("base64"):
            continue
        if not is_pdf_attachment(attachment):
            continue
        try:
            data = decode_base64_attachment(attachment["base64"])
        except ValueError:
            continue
        return DecodedAttachment(
            name=str(attachment.get("name") or "enquiry.pdf"),
            content_type=str(attachment.get("contentType") or "application/pdf"),
            data=data,
        )
    return None
