from __future__ import annotations

from typing import Optional

from .storage import StorageBackend, StorageNotFoundError

INSTRUCTIONS_KEY = "instructions.txt"
DEFAULT_TERMS_KEY = "default-terms.txt"


class SharedTextStore:
    """Instructions and default terms shared by every user, kept next to the rate files."""

    def __init__(self, storage: StorageBackend):
        self.storage = storage

    def _read(self, key: str) -> Optional[str]:
        try:
            return self.storage.read(key).decode("utf-8")
        except StorageNotFoundError:
            return None

    def _write(self, key: str, content: str) -> None:
        self.storage.write(content.encode("utf-8"), key, "")

    def get_instructions(self) -> Optional[str]:
        return self._read(INSTRUCTIONS_KEY)

    def save_instructions(self, content: str) -> None:
        self._write(INSTRUCTIONS_KEY, content)

    def get_default_terms(self) -> Optional[str]:
        return self._read(DEFAULT_TERMS_KEY)

    def save_default_terms(self, content: str) -> None:
        self._write(DEFAULT_TERMS_KEY, content)
