"""Environment configuration and composition of the service context."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional

from quotedesk.app.render import create_template_env
from quotedesk.app.services.context import QuoteServiceContext
from quotedesk.store import (
    QuotationStore,
    QuoteNumberAllocator,
    RateMappingStore,
    SharedTextStore,
    create_db_engine,
    create_storage_backend,
)

logger = logging.getLogger("quotedesk")

_DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


def _origins(value: Optional[str]) -> List[str]:
    if not (value or "").strip():
        return list(_DEFAULT_ALLOWED_ORIGINS)
    return [origin.strip() for origin in value.split(",") if origin.strip()]


@dataclass
class Settings:
    data_root: Path
    db_url: str
    s3_bucket: Optional[str] = None
    aws_region: str = "us-east-1"
    openai_api_key: Optional[str] = None
    model_extraction: str = "gpt-4.1"
    model_chat: str = "gpt-4.1"
    skip_llm_setup: bool = False
    ingest_secret: Optional[str] = None
    quote_number_start: int = 107
    quote_number_prefix: str = "DSC-"
    gmail_inbox_url: str = "https://mail.google.com/mail/u/0/#inbox/"
    max_upload_mb: int = 10
    retention_days: int = 365
    allowed_origins: List[str] = field(default_factory=lambda: list(_DEFAULT_ALLOWED_ORIGINS))
    log_level: str = "INFO"

    @property
    def uploads_dir(self) -> Path:
        return self.data_root / "uploads"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        data_root = Path(env.get("DATA_ROOT") or "./var")
        db_url = (
            env.get("QUOTEDESK_DB_URL")
            or env.get("DB_URL")
            or f"sqlite:///{(data_root / 'quotedesk.db').as_posix()}"
        )
        model_extraction = env.get("MODEL_EXTRACTION") or "gpt-4.1"
        return cls(
            data_root=data_root,
            db_url=db_url,
            s3_bucket=(env.get("AWS_S3_BUCKET_NAME") or "").strip() or None,
            aws_region=env.get("AWS_REGION") or env.get("AWS_DEFAULT_REGION") or "us-east-1",
            openai_api_key=(env.get("OPENAI_API_KEY") or "").strip() or None,
            model_extraction=model_extraction,
            model_chat=env.get("MODEL_CHAT") or model_extraction,
            skip_llm_setup=_flag(env.get("SKIP_LLM_SETUP")),
            ingest_secret=(env.get("INGEST_SECRET") or "").strip() or None,
            quote_number_start=int(env.get("QUOTE_NUMBER_START") or 107),
            quote_number_prefix=env.get("QUOTE_NUMBER_PREFIX") or "DSC-",
            gmail_inbox_url=env.get("GMAIL_INBOX_URL") or "https://mail.google.com/mail/u/0/#inbox/",
            max_upload_mb=max(1, int(env.get("MAX_UPLOAD_MB") or 10)),
            retention_days=max(1, int(env.get("QUOTATION_RETENTION_DAYS") or 365)),
            allowed_origins=_origins(env.get("FRONTEND_ORIGINS")),
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        )


def build_inference(settings: Settings):
    if settings.skip_llm_setup:
        logger.info("SKIP_LLM_SETUP=1, inference service disabled")
        return None
    from quotedesk.app.llm import OpenAIInference

    return OpenAIInference(
        api_key=settings.openai_api_key,
        model_extraction=settings.model_extraction,
        model_chat=settings.model_chat,
    )


def build_service_context(settings: Optional[Settings] = None, *, inference=None) -> QuoteServiceContext:
    settings = settings or Settings.from_env()
    storage = create_storage_backend(
        bucket=settings.s3_bucket, region=settings.aws_region, local_root=settings.uploads_dir
    )
    engine = create_db_engine(settings.db_url)
    quotations = QuotationStore(engine)
    quotations.init_db()
    if inference is None:
        inference = build_inference(settings)
    logger.info(
        "Config: storage=%s db=%s model=%s skip_llm=%s",
        "s3" if settings.s3_bucket else "local",
        engine.url.render_as_string(hide_password=True),
        settings.model_extraction,
        settings.skip_llm_setup,
    )
    return QuoteServiceContext(
        storage=storage,
        rate_index=RateMappingStore(storage),
        shared_texts=SharedTextStore(storage),
        inference=inference,
        quotations=quotations,
        quote_numbers=QuoteNumberAllocator(engine, start_value=settings.quote_number_start),
        env=create_template_env(),
        quote_number_prefix=settings.quote_number_prefix,
        gmail_inbox_url=settings.gmail_inbox_url,
        ingest_secret=settings.ingest_secret,
        max_upload_bytes=settings.max_upload_mb * 1024 * 1024,
        retention_days=settings.retention_days,
        allowed_origins=settings.allowed_origins,
        model_extraction=settings.model_extraction,
    )
