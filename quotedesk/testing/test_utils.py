import base64

import pytest

from quotedesk.app.attachments import decode_base64_attachment, first_pdf_attachment, is_pdf_attachment
from quotedesk.app.error_messages import (
    all_uploads_failed_message,
    invalid_rate_type_message,
    no_rate_documents_message,
    upload_error_message,
)
from quotedesk.app.utils import extract_json_object, format_number, parse_json_object, parse_number


@pytest.mark.parametrize(
    "value, expected",
    [
        ("10", 10.0),
        ("1,250.50", 1250.5),
        ("₹ 90/mtr", 90.0),
        ("Rs. 12", 12.0),
        ("abc", 0.0),
        ("", 0.0),
        (None, 0.0),
        (True, 0.0),
        (7, 7.0),
        (float("nan"), 0.0),
    ],
)
def test_parse_number(value, expected):
    assert parse_number(value) == expected


def test_format_number():
    assert format_number(10.0) == "10"
    assert format_number(2.5) == "2.5"


def test_parse_json_object_from_fenced_reply():
    text = 'Sure!\n```json\n{"a": 1, "b": {"c": 2}}\n```'
    assert parse_json_object(text) == {"a": 1, "b": {"c": 2}}


def test_parse_json_object_rejects_arrays_and_prose():
    with pytest.raises(ValueError):
        parse_json_object("[1, 2]")
    with pytest.raises(ValueError):
        parse_json_object("no braces here")
    with pytest.raises(ValueError):
        extract_json_object("")


def test_decode_base64_attachment_handles_urlsafe_unpadded():
    payload = base64.urlsafe_b64encode(b"\xfb\xff%PDF").decode("ascii").rstrip("=")
    assert decode_base64_attachment(payload) == b"\xfb\xff%PDF"
    with pytest.raises(ValueError):
        decode_base64_attachment("!!!")
    with pytest.raises(ValueError):
        decode_base64_attachment(None)


def test_first_pdf_attachment_skips_broken_entries():
    good = base64.b64encode(b"%PDF-good").decode("ascii")
    attachments = [
        "not a dict",
        {"name": "photo.png", "contentType": "image/png", "base64": good},
        {"name": "broken.pdf", "contentType": "application/pdf", "base64": "!!!"},
        {"name": "empty.pdf", "contentType": "application/pdf"},
        {"name": "Enquiry.PDF", "contentType": "application/octet-stream", "base64": good},
    ]
    found = first_pdf_attachment(attachments)
    assert found.name == "Enquiry.PDF"
    assert found.data == b"%PDF-good"
    assert first_pdf_attachment(None) is None


def test_is_pdf_attachment():
    assert is_pdf_attachment({"name": "x.bin", "contentType": "application/pdf"})
    assert not is_pdf_attachment({"name": "x.txt", "contentType": "text/plain"})
    assert not is_pdf_attachment(None)


def test_upload_error_messages():
    too_large = upload_error_message("boom", size_bytes=60 * 1024 * 1024, status_code=413)
    assert too_large.startswith("File too large: 60.00 MB.")
    assert upload_error_message("timeout", size_bytes=1024 * 1024) == "timeout (File size: 1.00 MB)"
    assert upload_error_message("", size_bytes=None) == "Failed to upload to the inference service"


def test_rate_document_messages():
    assert no_rate_documents_message(0) == "No rate files uploaded. Please upload rate files first."
    assert "Found 3 file(s)" in no_rate_documents_message(3)
    assert "a.pdf: boom" in all_uploads_failed_message([{"filename": "a.pdf", "error": "boom"}])
    assert ".xlsx" in invalid_rate_type_message(".xlsx")
