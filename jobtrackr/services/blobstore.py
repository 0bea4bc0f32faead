# =============================================================================
# Blob Store Abstraction — Attachment Bytes
# =============================================================================
#
# Attachments live outside the relational store, addressed by an opaque
# storage key that the `files` row records. The blob store is NOT
# transactional: a put cannot be rolled back with the database, and a
# delete cannot be undone. The coordinators order their calls around that
# (blob first on upload, blob last on deletion).
#
# DESIGN DECISION: Protocol (structural typing) over ABC.
# Same pattern as the inference provider in llm.py. Tests pass any object
# with put/read/delete; production uses the local-disk store below.
#
# ARCHITECTURE:
#   BlobStore (Protocol)
#   ├── LocalBlobStore     — files under settings.upload_dir
#   ├── make_storage_key() — application-files/{user}/{millis}-{rand}-{name}
#   └── get_blob_store()   — lazy singleton
# =============================================================================

from __future__ import annotations

import logging
import re
import time
import uuid
from pathlib import Path
from typing import Protocol

from jobtrackr.config import settings
from jobtrackr.services.errors import StorageFailure

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class BlobStore(Protocol):
    """
    Protocol defining the blob store interface.

    Every method raises StorageFailure when the backend fails.
    """

    def put(self, key: str, data: bytes) -> str:
        """Store `data` under `key` and return the key."""
        ...

    def read(self, key: str) -> bytes:
        """Return the bytes stored under `key`."""
        ...

    def delete(self, key: str) -> None:
        """Remove the blob. Deleting a missing key is not an error."""
        ...


def make_storage_key(user_id: str, filename: str, folder: str = "application-files") -> str:
    """
    Build a unique, path-safe storage key for an upload.

    The original filename is kept (sanitised) at the end of the key so
    operators can recognise blobs when reconciling orphans by hand.
    """
    sanitized = _UNSAFE_CHARS.sub("_", filename) or "upload"
    safe_user = _UNSAFE_CHARS.sub("_", user_id)
    millis = int(time.time() * 1000)
    return f"{folder}/{safe_user}/{millis}-{uuid.uuid4().hex[:8]}-{sanitized}"


# ---------------------------------------------------------------------------
# Implementation: Local Disk
# ---------------------------------------------------------------------------


class LocalBlobStore:
    """
    Blob store backed by a directory on local disk.

    Keys map to relative paths below `root`. Keys that would resolve
    outside the root are refused.
    """

    def __init__(self, root: str | Path | None = None) -> None:
        self._root = Path(root or settings.upload_dir).resolve()
        logger.info("Initialized LocalBlobStore (root=%s)", self._root)

    def _path_for(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if not path.is_relative_to(self._root):
            raise StorageFailure(f"Storage key escapes blob root: {key!r}")
        return path

    def put(self, key: str, data: bytes) -> str:
        path = self._path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise StorageFailure(f"Failed to write blob {key}: {exc}") from exc

        logger.info("Stored blob %s (%d bytes)", key, len(data))
        return key

    def read(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise StorageFailure(f"Failed to read blob {key}: {exc}") from exc

    def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageFailure(f"Failed to delete blob {key}: {exc}") from exc

        logger.info("Deleted blob %s", key)


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

_blob_store: LocalBlobStore | None = None


def get_blob_store() -> BlobStore:
    """Return the process-wide blob store, creating it on first use."""
    global _blob_store
    if _blob_store is None:
        _blob_store = LocalBlobStore()
    return _blob_store
