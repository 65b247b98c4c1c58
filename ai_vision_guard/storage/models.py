"""
Data models for storage layer.

Defines stored content records and the fields callers supply for them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple

from ai_vision_guard.core.subjects import Subject

CONTENT_HASH_LENGTH = 64
MAX_URL_LENGTH = 2048
MAX_FILE_NAME_LENGTH = 255
MAX_AI_RESPONSE_LENGTH = 100_000


@dataclass(frozen=True)
class ContentFields:
    """Caller-supplied part of a content record.

    Everything except the identifier and timestamp, which the store assigns.
    """
    source_url: str
    file_name: str
    file_id: Optional[str] = None
    ai_response: Optional[str] = None
    subjects: Tuple[Subject, ...] = field(default_factory=tuple)

    def __post_init__(self):
        """Validate field lengths."""
        if not self.source_url or len(self.source_url) > MAX_URL_LENGTH:
            raise ValueError(f"source_url must be 1..{MAX_URL_LENGTH} characters")
        if not self.file_name or len(self.file_name) > MAX_FILE_NAME_LENGTH:
            raise ValueError(f"file_name must be 1..{MAX_FILE_NAME_LENGTH} characters")
        if self.ai_response is not None and len(self.ai_response) > MAX_AI_RESPONSE_LENGTH:
            raise ValueError(f"ai_response cannot exceed {MAX_AI_RESPONSE_LENGTH} characters")


@dataclass(frozen=True)
class ContentRecord:
    """Immutable record of one analysed piece of content.

    Exactly one record exists per distinct content hash; the store's
    uniqueness constraint enforces it. Records are never updated.
    """
    id: str
    content_hash: str
    source_url: str
    file_name: str
    created_at: datetime
    file_id: Optional[str] = None
    ai_response: Optional[str] = None
    subjects: Tuple[Subject, ...] = ()
