from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List

from jinja2 import Environment

from quotedesk.store import (
    QuotationStore,
    QuoteNumberAllocator,
    RateMappingStore,
    SharedTextStore,
    StorageBackend,
)


@dataclass
class QuoteServiceContext:
    storage: StorageBackend
    rate_index: RateMappingStore
    shared_texts: SharedTextStore
    inference: Any | None
    quotations: QuotationStore | None
    quote_numbers: QuoteNumberAllocator | None
    env: Environment
    rates_folder: str = "rates"
    quote_number_prefix: str = "DSC-"
    gmail_inbox_url: str = "https://mail.google.com/mail/u/0/#inbox/"
    ingest_secret: str | None = None
    max_upload_bytes: int = 10 * 1024 * 1024
    retention_days: int = 365
    allowed_origins: List[str] | None = None
    model_extraction: str = "gpt-4.1"
