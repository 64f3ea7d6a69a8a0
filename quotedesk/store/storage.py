"""Blob storage for rate documents and shared text files.

One backend is chosen at composition time (``create_storage_backend``) and
injected everywhere else; callers only see the ``StorageBackend`` protocol.
Keys are POSIX-style paths relative to the storage root (``rates/x.pdf``).
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any, List, Optional, Protocol

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger("quotedesk.store")

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
_CONTENT_TYPES = {
    ".pdf": "application/pdf",
    ".json": "application/json",
    ".txt": "text/plain; charset=utf-8",
}


class StorageError(Exception):
    """Raised when a storage operation fails."""


class StorageNotFoundError(StorageError):
    """Raised when the requested key does not exist."""


@dataclass
class StoredFile:
    name: str
    path: str
    modified: Optional[datetime] = None
    size: Optional[int] = None


class StorageBackend(Protocol):
    def list(self, folder: str) -> List[StoredFile]: ...

    def read(self, path: str) -> bytes: ...

    def write(self, data: bytes, name: str, folder: str = "") -> str: ...

    def delete(self, path: str) -> None: ...


def _join_key(folder: str, name: str) -> str:
    folder = (folder or "").strip("/")
    return f"{folder}/{name}" if folder else name


def _clean_key(path: str) -> str:
    key = str(PurePosixPath("/", path or "")).lstrip("/")
    if not key or ".." in PurePosixPath(key).parts:
        raise StorageError(f"Invalid storage key: {path!r}")
    return key


class LocalStorage:
    """Filesystem backend rooted at a directory (``DATA_ROOT/uploads`` by default)."""

    def __init__(self, root: Path):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        target = (self.root / _clean_key(path)).resolve()
        if self.root not in target.parents:
            raise StorageError(f"Path escapes storage root: {path!r}")
        return target

    def list(self, folder: str) -> List[StoredFile]:
        base = self.root / folder.strip("/") if folder else self.root
        if not base.is_dir():
            return []
        files: List[StoredFile] = []
        for entry in base.iterdir():
            # Skip in-flight temp files from write().
            if not entry.is_file() or entry.name.startswith("."):
                continue
            stat = entry.stat()
            files.append(
                StoredFile(
                    name=entry.name,
                    path=_join_key(folder, entry.name),
                    modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    size=stat.st_size,
                )
            )
        files.sort(key=lambda f: f.modified or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
        return files

    def read(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise StorageNotFoundError(path)
        return target.read_bytes()

    def write(self, data: bytes, name: str, folder: str = "") -> str:
        key = _clean_key(_join_key(folder, name))
        target = self._resolve(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        # Unique temp name per writer; concurrent writes of one key are last-writer-wins.
        with tempfile.NamedTemporaryFile(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp", delete=False) as tmp:
            tmp.write(data)
        try:
            os.replace(tmp.name, target)
        except OSError:
            Path(tmp.name).unlink(missing_ok=True)
            raise
        return key

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        if not target.is_file():
            raise StorageNotFoundError(path)
        target.unlink()


class S3Storage:
    """AWS S3 backend; keys map 1:1 to object keys in ``bucket``."""

    def __init__(self, bucket: str, region: str = "us-east-1", client: Any | None = None):
        self.bucket = bucket
        self.client = client or boto3.client("s3", region_name=region)

    @staticmethod
    def _is_not_found(exc: ClientError) -> bool:
        error = exc.response.get("Error", {})
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        return str(error.get("Code", "")) in _NOT_FOUND_CODES or status == 404

    def list(self, folder: str) -> List[StoredFile]:
        prefix = f"{folder.strip('/')}/" if folder else ""
        paginator = self.client.get_paginator("list_objects_v2")
        files: List[StoredFile] = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for obj in page.get("Contents", []) or []:
                key = obj.get("Key", "")
                name = key[len(prefix):]
                # Nested "directories" are not part of a folder listing.
                if not name or "/" in name:
                    continue
                files.append(
                    StoredFile(name=name, path=key, modified=obj.get("LastModified"), size=obj.get("Size"))
                )
        files.sort(key=lambda f: f.modified or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
        return files

    def read(self, path: str) -> bytes:
        key = _clean_key(path)
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if self._is_not_found(exc):
                raise StorageNotFoundError(path) from exc
            raise StorageError(f"S3 read failed for {key}: {exc}") from exc
        return response["Body"].read()

    def write(self, data: bytes, name: str, folder: str = "") -> str:
        key = _clean_key(_join_key(folder, name))
        content_type = _CONTENT_TYPES.get(PurePosixPath(key).suffix.lower(), "application/octet-stream")
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except ClientError as exc:
            raise StorageError(f"S3 write failed for {key}: {exc}") from exc
        logger.info("s3 put bucket=%s key=%s bytes=%d", self.bucket, key, len(data))
        return key

    def delete(self, path: str) -> None:
        key = _clean_key(path)
        # delete_object succeeds for missing keys, so check existence first.
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if self._is_not_found(exc):
                raise StorageNotFoundError(path) from exc
            raise StorageError(f"S3 head failed for {key}: {exc}") from exc
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            raise StorageError(f"S3 delete failed for {key}: {exc}") from exc


def create_storage_backend(
    *, bucket: Optional[str], region: str, local_root: Path
) -> StorageBackend:
    if bucket:
        logger.info("storage backend=s3 bucket=%s region=%s", bucket, region)
        return S3Storage(bucket, region=region)
    logger.info("storage backend=local root=%s", local_root)
    return LocalStorage(local_root)
