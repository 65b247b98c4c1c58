"""
Content-addressed deduplication.

Content is keyed by its SHA-256 digest so that identical bytes are
analysed (and paid for) only once. The backing store's uniqueness
constraint on the hash is the authority; the re-check before inserting
only narrows the race window.
"""

import asyncio
import hashlib
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

from .errors import DuplicateContentError
from ai_vision_guard.storage.models import ContentFields, ContentRecord

logger = logging.getLogger(__name__)

_HASH_PATTERN = re.compile(r"^[0-9a-f]{64}$")
_CHUNK_SIZE = 81920


def compute_content_hash(data: bytes) -> str:
    """SHA-256 digest of raw bytes as 64 lowercase hex characters."""
    if data is None:
        raise ValueError("data cannot be None")
    return hashlib.sha256(data).hexdigest()


def compute_file_hash(path: Union[str, Path]) -> str:
    """SHA-256 digest of a file's contents, read in chunks.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    file_path = Path(path)
    if not file_path.is_file():
        raise FileNotFoundError(f"File not found: {path}")

    digest = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def normalize_hash(value: str) -> str:
    """Canonical form of a content hash: stripped lowercase hex.

    Raises:
        ValueError: If the value is not a 64-character hex digest
    """
    if not isinstance(value, str):
        raise ValueError("content hash must be a string")
    normalized = value.strip().lower()
    if not _HASH_PATTERN.match(normalized):
        raise ValueError(f"content hash must be 64 hex characters: {value!r}")
    return normalized


class ContentBackend(ABC):
    """Hash-indexed persistent store for content records.

    Implementations must enforce uniqueness of content_hash themselves
    and report a violation as DuplicateContentError.
    """

    @abstractmethod
    def find_by_hash(self, content_hash: str) -> Optional[ContentRecord]:
        """Return the record for a normalized hash, or None if unseen."""
        ...

    @abstractmethod
    def get_by_id(self, record_id: str) -> Optional[ContentRecord]:
        """Return the record with this assigned identifier, or None."""
        ...

    @abstractmethod
    def insert(self, content_hash: str, fields: ContentFields) -> ContentRecord:
        """Insert a new record, assigning its identifier.

        Raises:
            DuplicateContentError: If a record with this hash already exists
        """
        ...


class ContentAddressedDedupStore:
    """Async lookup and idempotent insert on top of a ContentBackend."""

    def __init__(self, backend: ContentBackend):
        self.backend = backend

    async def find_by_hash(self, content_hash: str) -> Optional[ContentRecord]:
        """Look up a previously stored record by content hash."""
        normalized = normalize_hash(content_hash)
        return await asyncio.to_thread(self.backend.find_by_hash, normalized)

    async def get_by_id(self, record_id: str) -> Optional[ContentRecord]:
        if not record_id or not record_id.strip():
            raise ValueError("record_id cannot be empty")
        return await asyncio.to_thread(self.backend.get_by_id, record_id.strip())

    async def insert_if_absent(self, content_hash: str, fields: ContentFields) -> ContentRecord:
        """Store a record unless one already exists for this hash.

        The caller's earlier lookup may be stale, so the hash is looked up
        again right before inserting. If another caller wins the race the
        existing record is returned and these fields are discarded.

        Returns:
            The stored record for this hash, whoever inserted it
        """
        normalized = normalize_hash(content_hash)

        existing = await asyncio.to_thread(self.backend.find_by_hash, normalized)
        if existing is not None:
            logger.debug("Record for %s already stored, discarding new fields", normalized)
            return existing

        try:
            record = await asyncio.to_thread(self.backend.insert, normalized, fields)
        except DuplicateContentError:
            winner = await asyncio.to_thread(self.backend.find_by_hash, normalized)
            if winner is None:
                raise
            logger.warning("Lost insert race for %s, using record %s", normalized, winner.id)
            return winner

        logger.info("Stored content record %s for %s", record.id, normalized)
        return record
