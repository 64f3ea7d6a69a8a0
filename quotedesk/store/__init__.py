from .quotation_store import (
    DuplicateQuotationError,
    QuotationStore,
    QuoteNumberAllocator,
    create_db_engine,
    init_db,
)
from .rate_index import RateMapping, RateMappingStore
from .shared_texts import SharedTextStore
from .storage import (
    LocalStorage,
    S3Storage,
    StorageBackend,
    StorageError,
    StorageNotFoundError,
    StoredFile,
    create_storage_backend,
)

__all__ = [
    "DuplicateQuotationError",
    "LocalStorage",
    "QuotationStore",
    "QuoteNumberAllocator",
    "RateMapping",
    "RateMappingStore",
    "S3Storage",
    "SharedTextStore",
    "StorageBackend",
    "StorageError",
    "StorageNotFoundError",
    "StoredFile",
    "create_db_engine",
    "create_storage_backend",
    "init_db",
]
