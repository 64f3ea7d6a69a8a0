"""Mailbox ingestion: turn a batch of emails into saved, unapproved quotations.

Emails are processed one at a time. A failing email is recorded in the
result's ``errors`` list and never stops the rest of the batch. Only the
attachment upload and the quote-number allocation are best-effort.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from jinja2 import Environment

from quotedesk.app.attachments import first_pdf_attachment
from quotedesk.app.render import build_header_html, build_table_html
from quotedesk.app.services.errors import (
    DuplicateEmailError,
    EmptyEmailError,
    IngestError,
    MissingEmailIdError,
    NoInstructionsConfiguredError,
    ServiceError,
)
from quotedesk.app.services.quote_service import QuotationGenerator, generator_from_context
from quotedesk.store.quotation_store import iso_now

logger = logging.getLogger("quotedesk.ingest")

GMAIL_INBOX_URL = "https://mail.google.com/mail/u/0/#inbox/"
QUOTE_NUMBER_PREFIX = "DSC-"
INVALID_BATCH_MESSAGE = "Missing or invalid emails array"

_ID_LOCK = threading.Lock()
_LAST_ID = 0


def next_quotation_id() -> int:
    """Millisecond timestamp, bumped when needed so ids never repeat in this process."""
    global _LAST_ID
    with _ID_LOCK:
        candidate = int(time.time() * 1000)
        if candidate <= _LAST_ID:
            candidate = _LAST_ID + 1
        _LAST_ID = candidate
        return candidate


def format_quote_number(value: Any, prefix: str = QUOTE_NUMBER_PREFIX) -> str:
    if value is None or value == "":
        return ""
    return f"{prefix}{value}"


@dataclass
class EmailRecord:
    id: str
    subject: str = ""
    sender: str = ""
    date: str = ""
    body: str = ""
    attachments: List[Any] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Any) -> "EmailRecord":
        if not isinstance(raw, dict):
            return cls(id="")
        attachments = raw.get("attachments")
        return cls(
            id=str(raw.get("id") or "").strip(),
            subject=str(raw.get("subject") or ""),
            sender=str(raw.get("from") or ""),
            date=str(raw.get("date") or ""),
            body=str(raw.get("body") or ""),
            attachments=attachments if isinstance(attachments, list) else [],
        )


@dataclass
class IngestOutcome:
    success: bool
    email_id: Optional[str] = None
    quotation_id: Optional[int] = None
    error: Optional[str] = None


@dataclass
class IngestResult:
    created_count: int = 0
    created_ids: List[int] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"created": self.created_count, "ids": list(self.created_ids), "errors": list(self.errors)}


def build_quotation_to_save(
    *,
    ai_result: Dict[str, Any],
    quote_number: str,
    terms_text: str,
    email_content: str,
    gmail_message_id: str,
    email_link: str,
    env: Environment,
) -> Dict[str, Any]:
    line_items = ai_result.get("lineItems") or []
    table_html, _, grand_total = build_table_html(line_items, env)
    header_html = build_header_html(ai_result, env, quote_number=quote_number)
    now = iso_now()
    return {
        "id": next_quotation_id(),
        "createdAt": now,
        "updatedAt": now,
        "customerName": ai_result.get("customerName"),
        "companyName": ai_result.get("companyName"),
        "projectName": ai_result.get("projectName"),
        "quotationDate": ai_result.get("quotationDate"),
        "phoneNumber": ai_result.get("phoneNumber"),
        "mobileNumber": ai_result.get("mobileNumber"),
        "lineItems": line_items,
        "quoteNumber": quote_number,
        "termsText": terms_text or "",
        "grandTotal": grand_total,
        "tableHTML": table_html,
        "headerHTML": header_html,
        "emailContent": email_content or "",
        "emailLink": email_link,
        "gmailMessageId": gmail_message_id or "",
        "saved": False,
    }


class IngestPipeline:
    def __init__(
        self,
        *,
        generator: QuotationGenerator,
        quotations: Any,
        quote_numbers: Any,
        shared_texts: Any,
        inference: Any,
        env: Environment,
        quote_number_prefix: str = QUOTE_NUMBER_PREFIX,
        inbox_url: str = GMAIL_INBOX_URL,
    ):
        self.generator = generator
        self.quotations = quotations
        self.quote_numbers = quote_numbers
        self.shared_texts = shared_texts
        self.inference = inference
        self.env = env
        self.quote_number_prefix = quote_number_prefix
        self.inbox_url = inbox_url

    def _upload_enquiry_attachment(self, email: EmailRecord) -> Optional[str]:
        attachment = first_pdf_attachment(email.attachments)
        if attachment is None or self.inference is None:
            return None
        try:
            return self.inference.upload_file(attachment.data, attachment.name)
        except Exception as exc:
            logger.warning("failed to upload attachment %s for email %s: %s", attachment.name, email.id, exc)
            return None

    def _allocate_quote_number(self) -> str:
        if self.quote_numbers is None:
            return ""
        try:
            return format_quote_number(self.quote_numbers.next(), self.quote_number_prefix)
        except Exception as exc:
            logger.warning("quote number allocation failed: %s", exc)
            return ""

    def _process(self, email: EmailRecord) -> int:
        if not email.id:
            raise MissingEmailIdError()
        if self.quotations.find_by_external_id(email.id):
            raise DuplicateEmailError(email_id=email.id)

        instructions = self.shared_texts.get_instructions() or ""
        if not instructions.strip():
            raise NoInstructionsConfiguredError(email_id=email.id)
        default_terms = self.shared_texts.get_default_terms() or ""

        enquiry_file_id = self._upload_enquiry_attachment(email)
        if not email.body.strip() and not enquiry_file_id:
            raise EmptyEmailError(email_id=email.id)

        ai_result = self.generator.generate(
            enquiry_text=email.body,
            enquiry_file_id=enquiry_file_id,
            instructions=instructions,
        )
        quote_number = self._allocate_quote_number()
        quotation = build_quotation_to_save(
            ai_result=ai_result,
            quote_number=quote_number,
            terms_text=default_terms,
            email_content=email.body,
            gmail_message_id=email.id,
            email_link=f"{self.inbox_url}{email.id}",
            env=self.env,
        )
        self.quotations.save(quotation)
        return quotation["id"]

    def process_one(self, raw_email: Any) -> IngestOutcome:
        email = raw_email if isinstance(raw_email, EmailRecord) else EmailRecord.from_dict(raw_email)
        email_id = email.id or None
        try:
            quotation_id = self._process(email)
        except IngestError as exc:
            logger.info("email %s skipped: %s", email_id, exc.message)
            return IngestOutcome(success=False, email_id=email_id, error=exc.message)
        except ServiceError as exc:
            logger.warning("email %s failed: %s", email_id, exc.message)
            return IngestOutcome(success=False, email_id=email_id, error=exc.message)
        except Exception as exc:
            logger.exception("email %s failed", email_id)
            return IngestOutcome(success=False, email_id=email_id, error=str(exc) or exc.__class__.__name__)
        logger.info("email %s imported as quotation %s", email_id, quotation_id)
        return IngestOutcome(success=True, email_id=email_id, quotation_id=quotation_id)

    def process_all(self, emails: Any) -> IngestResult:
        result = IngestResult()
        if not isinstance(emails, list):
            result.errors.append({"error": INVALID_BATCH_MESSAGE})
            return result
        for raw_email in emails:
            outcome = self.process_one(raw_email)
            if outcome.success:
                result.created_ids.append(outcome.quotation_id)
            else:
                result.errors.append({"emailId": outcome.email_id, "error": outcome.error or "Unknown error"})
        result.created_count = len(result.created_ids)
        logger.info("ingest batch size=%d created=%d errors=%d", len(emails), result.created_count, len(result.errors))
        return result


def ingest_pipeline_from_context(ctx) -> IngestPipeline:
    return IngestPipeline(
        generator=generator_from_context(ctx),
        quotations=ctx.quotations,
        quote_numbers=ctx.quote_numbers,
        shared_texts=ctx.shared_texts,
        inference=ctx.inference,
        env=ctx.env,
        quote_number_prefix=ctx.quote_number_prefix,
        inbox_url=ctx.gmail_inbox_url,
    )
