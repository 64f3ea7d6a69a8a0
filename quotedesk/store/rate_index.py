from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .storage import StorageBackend, StorageNotFoundError

logger = logging.getLogger("quotedesk.store")

DEFAULT_INDEX_KEY = "rates/index.json"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class RateMapping:
    storage_key: str
    inference_file_id: str
    original_name: str = ""
    created_at: str = field(default_factory=_utcnow_iso)

    @property
    def filename(self) -> str:
        return self.storage_key.replace("\\", "/").rsplit("/", 1)[-1]

    @property
    def display_name(self) -> str:
        return self.original_name or self.filename

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> Optional["RateMapping"]:
        """Build a mapping from an index entry; ``None`` if required keys are missing.

        Entries written by the previous server use ``s3Key``/``openaiFileId``
        and are accepted as-is.
        """
        if not isinstance(raw, dict):
            return None
        storage_key = raw.get("storage_key") or raw.get("s3Key")
        file_id = raw.get("inference_file_id") or raw.get("openaiFileId")
        if not storage_key or not file_id:
            return None
        return cls(
            storage_key=str(storage_key),
            inference_file_id=str(file_id),
            original_name=str(raw.get("original_name") or raw.get("originalName") or ""),
            created_at=str(raw.get("created_at") or raw.get("createdAt") or _utcnow_iso()),
        )


class RateMappingStore:
    """JSON index mapping stored rate documents to inference file handles.

    Every mutation is a full read-modify-write of the index file, serialised
    per store instance. Writers in different processes are last-writer-wins.
    """

    def __init__(self, storage: StorageBackend, index_key: str = DEFAULT_INDEX_KEY):
        self.storage = storage
        self.index_key = index_key
        self._lock = threading.RLock()

    def load(self) -> List[RateMapping]:
        try:
            raw = self.storage.read(self.index_key)
        except StorageNotFoundError:
            return []
        except Exception as exc:
            logger.warning("rate index unreadable, treating as empty: %s", exc)
            return []
        try:
            data = json.loads(raw.decode("utf-8") or "[]")
        except (UnicodeDecodeError, ValueError) as exc:
            logger.warning("rate index malformed, treating as empty: %s", exc)
            return []
        if not isinstance(data, list):
            logger.warning("rate index is not a list, treating as empty")
            return []
        mappings: List[RateMapping] = []
        for entry in data:
            mapping = RateMapping.from_dict(entry)
            if mapping is None:
                logger.warning("skipping malformed rate index entry: %r", entry)
                continue
            mappings.append(mapping)
        return mappings

    def save(self, mappings: List[RateMapping]) -> None:
        payload = json.dumps([m.to_dict() for m in mappings], indent=2)
        folder, _, name = self.index_key.rpartition("/")
        with self._lock:
            self.storage.write(payload.encode("utf-8"), name, folder)

    def upsert(self, mapping: RateMapping) -> None:
        with self._lock:
            mappings = [m for m in self.load() if m.storage_key != mapping.storage_key]
            mappings.append(mapping)
            self.save(mappings)

    def remove_by_key(self, storage_key: str) -> None:
        with self._lock:
            mappings = self.load()
            remaining = [m for m in mappings if m.storage_key != storage_key]
            if len(remaining) == len(mappings):
                return
            self.save(remaining)

    def retain_keys(self, storage_keys) -> List[RateMapping]:
        """Drop every mapping whose key is not in *storage_keys*; returns the dropped ones."""
        keep = set(storage_keys)
        with self._lock:
            mappings = self.load()
            dropped = [m for m in mappings if m.storage_key not in keep]
            if dropped:
                self.save([m for m in mappings if m.storage_key in keep])
            return dropped

    def find_by_filename(self, filename: str) -> Optional[RateMapping]:
        for mapping in self.load():
            if mapping.filename == filename:
                return mapping
        return None
