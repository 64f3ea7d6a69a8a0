from __future__ import annotations

from pathlib import Path

import pytest

from fakes import FakeInference
from quotedesk.app.render import create_template_env
from quotedesk.app.services.context import QuoteServiceContext
from quotedesk.store import (
    LocalStorage,
    QuotationStore,
    QuoteNumberAllocator,
    RateMappingStore,
    SharedTextStore,
    create_db_engine,
)


@pytest.fixture()
def storage(tmp_path: Path) -> LocalStorage:
    return LocalStorage(tmp_path / "uploads")


@pytest.fixture()
def engine(tmp_path: Path):
    return create_db_engine(f"sqlite:///{(tmp_path / 'quotedesk.db').as_posix()}")


@pytest.fixture()
def inference() -> FakeInference:
    return FakeInference()


@pytest.fixture()
def ctx(storage, engine, inference) -> QuoteServiceContext:
    quotations = QuotationStore(engine)
    quotations.init_db()
    return QuoteServiceContext(
        storage=storage,
        rate_index=RateMappingStore(storage),
        shared_texts=SharedTextStore(storage),
        inference=inference,
        quotations=quotations,
        quote_numbers=QuoteNumberAllocator(engine, start_value=107),
        env=create_template_env(),
        allowed_origins=["http://test.local"],
    )
