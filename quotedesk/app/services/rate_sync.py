"""Keep stored rate documents and inference file handles in sync.

Generation only ever needs the list of handles. The fast path reads them
from the JSON index with no network calls; the slow path (``rebuild``)
re-uploads every PDF rate document and rewrites the index.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional

from quotedesk.app.error_messages import (
    all_uploads_failed_message,
    invalid_rate_type_message,
    no_rate_documents_message,
    upload_error_message,
)
from quotedesk.app.services.errors import (
    AllUploadsFailedError,
    InferenceError,
    InvalidRateDocumentError,
    NoRateDocumentsError,
    RateDocumentNotFoundError,
)
from quotedesk.store import RateMapping, RateMappingStore, StorageBackend, StorageNotFoundError, StoredFile

logger = logging.getLogger("quotedesk.rates")

RATE_EXTENSIONS = {".pdf"}


@dataclass
class RateHandle:
    file_id: str
    name: str


@dataclass
class SyncReport:
    uploaded: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    pruned: List[str] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uploaded": list(self.uploaded),
            "skipped": list(self.skipped),
            "pruned": list(self.pruned),
            "errors": list(self.errors),
        }


def is_rate_document(name: str) -> bool:
    return PurePosixPath(name or "").suffix.lower() in RATE_EXTENSIONS


def timestamped_name(original_name: str, now_ms: Optional[int] = None) -> str:
    """``price list.pdf`` -> ``price list_1718000000000.pdf``."""
    path = PurePosixPath(PurePosixPath(original_name or "rates.pdf").name)
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{path.stem}_{stamp}{path.suffix}"


class RateSyncEngine:
    def __init__(
        self,
        storage: StorageBackend,
        rate_index: RateMappingStore,
        inference: Any,
        folder: str = "rates",
    ):
        self.storage = storage
        self.rate_index = rate_index
        self.inference = inference
        self.folder = folder

    def list_documents(self) -> List[StoredFile]:
        index_name = PurePosixPath(self.rate_index.index_key).name
        return [f for f in self.storage.list(self.folder) if f.name != index_name]

    def get_or_build_handles(self) -> List[RateHandle]:
        mappings = self.rate_index.load()
        if mappings:
            logger.info("using %d rate file(s) from index (no upload needed)", len(mappings))
            return [RateHandle(m.inference_file_id, m.display_name) for m in mappings]
        logger.info("rate index empty, rebuilding from storage")
        return [RateHandle(m.inference_file_id, m.display_name) for m in self.rebuild()]

    def _upload_one(self, doc: StoredFile, errors: List[Dict[str, str]]) -> Optional[RateMapping]:
        data: Optional[bytes] = None
        try:
            data = self.storage.read(doc.path)
            file_id = self.inference.upload_file(data, doc.name)
        except Exception as exc:
            status = getattr(exc, "upstream_status", None)
            message = upload_error_message(
                str(getattr(exc, "message", "") or exc),
                size_bytes=len(data) if data is not None else doc.size,
                status_code=status,
            )
            logger.error("failed to upload rate file %s: %s", doc.name, message)
            errors.append({"filename": doc.name, "error": message})
            return None
        mapping = RateMapping(storage_key=doc.path, inference_file_id=file_id, original_name=doc.name)
        self.rate_index.upsert(mapping)
        return mapping

    def rebuild(self) -> List[RateMapping]:
        """Upload every PDF rate document and record one mapping per success.

        Mappings for documents that are gone from storage, or whose upload
        failed this time, are dropped so the index never points at a handle
        that was just reported stale.
        """
        documents = self.list_documents()
        if not documents:
            raise NoRateDocumentsError(no_rate_documents_message(0))
        pdfs = [doc for doc in documents if is_rate_document(doc.name)]
        if not pdfs:
            raise NoRateDocumentsError(no_rate_documents_message(len(documents)))

        errors: List[Dict[str, str]] = []
        built: List[RateMapping] = []
        for doc in pdfs:
            mapping = self._upload_one(doc, errors)
            if mapping is not None:
                built.append(mapping)

        if not built:
            raise AllUploadsFailedError(all_uploads_failed_message(errors), errors)
        if errors:
            logger.warning("some rate files failed to upload: %s", errors)

        self.rate_index.retain_keys(m.storage_key for m in built)
        logger.info("rate index rebuilt: %d mapping(s), %d error(s)", len(built), len(errors))
        return built

    def sync(self) -> SyncReport:
        """Upload PDFs that have no mapping yet and prune mappings for deleted files."""
        report = SyncReport()
        documents = self.list_documents()
        stored_keys = {doc.path for doc in documents}
        report.pruned = [m.storage_key for m in self.rate_index.retain_keys(stored_keys)]
        mapped_keys = {m.storage_key for m in self.rate_index.load()}

        for doc in documents:
            if not is_rate_document(doc.name) or doc.path in mapped_keys:
                report.skipped.append(doc.name)
                continue
            if self._upload_one(doc, report.errors) is not None:
                report.uploaded.append(doc.name)
        logger.info(
            "rate sync uploaded=%d skipped=%d pruned=%d errors=%d",
            len(report.uploaded),
            len(report.skipped),
            len(report.pruned),
            len(report.errors),
        )
        return report

    def register_upload(self, data: bytes, original_name: str) -> Dict[str, Any]:
        """Store an uploaded rate document and register it with the inference service.

        A failed registration is logged only; ``sync``/``rebuild`` picks the
        document up later.
        """
        extension = PurePosixPath(original_name or "").suffix.lower()
        if extension not in RATE_EXTENSIONS:
            raise InvalidRateDocumentError(invalid_rate_type_message(extension), filename=original_name)

        saved_name = timestamped_name(original_name)
        storage_key = self.storage.write(data, saved_name, self.folder)
        registered = False
        if self.inference is not None:
            try:
                file_id = self.inference.upload_file(data, saved_name)
            except InferenceError as exc:
                logger.error("error uploading %s to inference service: %s", saved_name, exc.message)
            else:
                self.rate_index.upsert(
                    RateMapping(storage_key=storage_key, inference_file_id=file_id, original_name=original_name)
                )
                registered = True
        return {
            "filename": saved_name,
            "originalName": original_name,
            "size": len(data),
            "registered": registered,
        }

    def remove_document(self, filename: str) -> None:
        name = PurePosixPath(filename or "").name
        if not name:
            raise RateDocumentNotFoundError(filename)
        mapping = self.rate_index.find_by_filename(name)
        if mapping is not None:
            if self.inference is not None:
                try:
                    self.inference.delete_file(mapping.inference_file_id)
                except InferenceError as exc:
                    logger.warning("failed to delete inference file %s: %s", mapping.inference_file_id, exc.message)
            self.rate_index.remove_by_key(mapping.storage_key)
            logger.info("removed mapping for %s from index", name)
        try:
            self.storage.delete(f"{self.folder}/{name}")
        except StorageNotFoundError as exc:
            raise RateDocumentNotFoundError(name) from exc

    def read_document(self, filename: str) -> bytes:
        name = PurePosixPath(filename or "").name
        try:
            return self.storage.read(f"{self.folder}/{name}")
        except StorageNotFoundError as exc:
            raise RateDocumentNotFoundError(name) from exc


def rate_sync_from_context(ctx) -> RateSyncEngine:
    return RateSyncEngine(ctx.storage, ctx.rate_index, ctx.inference, folder=ctx.rates_folder)
