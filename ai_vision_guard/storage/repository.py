"""
Repository pattern for data access.

Handles database operations and data persistence logic.
"""

import sqlite3
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import ContentFields, ContentRecord
from ai_vision_guard.core.dedup import ContentBackend
from ai_vision_guard.core.errors import DuplicateContentError
from ai_vision_guard.core.subjects import subjects_from_json, subjects_to_json

_SELECT_COLUMNS = """
    SELECT id, content_hash, source_url, file_name, file_id,
           ai_response, subjects, created_at
    FROM content_record
"""


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the content_record table if it doesn't exist.

    The UNIQUE constraint on content_hash is what guarantees a single
    record per distinct content, even when two writers race.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS content_record (
                id TEXT PRIMARY KEY,
                content_hash TEXT NOT NULL UNIQUE COLLATE NOCASE,
                source_url TEXT NOT NULL,
                file_name TEXT NOT NULL,
                file_id TEXT,
                ai_response TEXT,
                subjects TEXT NOT NULL DEFAULT '[]',
                created_at TEXT NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()


def _row_to_record(row) -> ContentRecord:
    return ContentRecord(
        id=row[0],
        content_hash=row[1],
        source_url=row[2],
        file_name=row[3],
        file_id=row[4],
        ai_response=row[5],
        subjects=subjects_from_json(row[6]),
        created_at=datetime.fromisoformat(row[7]),
    )


class ContentRepository(ContentBackend):
    """SQLite-backed store of content records keyed by content hash.

    Opens one connection per call so it can be used from worker threads.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def find_by_hash(self, content_hash: str) -> Optional[ContentRecord]:
        """Find a record by content hash (case-insensitive).

        Args:
            content_hash: Hex digest of the content

        Returns:
            The stored record, or None if the hash is unseen
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                _SELECT_COLUMNS + " WHERE content_hash = ? COLLATE NOCASE",
                (content_hash.strip(),),
            )
            row = cursor.fetchone()
            return _row_to_record(row) if row else None
        finally:
            conn.close()

    def insert(self, content_hash: str, fields: ContentFields) -> ContentRecord:
        """Insert a new record with a freshly assigned identifier.

        Args:
            content_hash: Normalized hex digest of the content
            fields: Caller-supplied record fields

        Returns:
            The stored record

        Raises:
            DuplicateContentError: If the hash is already stored
        """
        record = ContentRecord(
            id=uuid.uuid4().hex,
            content_hash=content_hash,
            source_url=fields.source_url,
            file_name=fields.file_name,
            created_at=datetime.now(timezone.utc),
            file_id=fields.file_id,
            ai_response=fields.ai_response,
            subjects=tuple(fields.subjects),
        )

        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO content_record
                (id, content_hash, source_url, file_name, file_id,
                 ai_response, subjects, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.id,
                record.content_hash,
                record.source_url,
                record.file_name,
                record.file_id,
                record.ai_response,
                subjects_to_json(record.subjects),
                record.created_at.isoformat(),
            ))
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            if "content_record.content_hash" in str(e):
                raise DuplicateContentError(content_hash) from e
            raise
        finally:
            conn.close()

        return record

    def get_by_id(self, record_id: str) -> Optional[ContentRecord]:
        """Fetch a record by its assigned identifier."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(_SELECT_COLUMNS + " WHERE id = ?", (record_id,))
            row = cursor.fetchone()
            return _row_to_record(row) if row else None
        finally:
            conn.close()

    def list_recent(self, limit: int = 100) -> List[ContentRecord]:
        """Fetch the most recently stored records, newest first."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                _SELECT_COLUMNS + " ORDER BY created_at DESC LIMIT ?",
                (limit,),
            )
            return [_row_to_record(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def count(self) -> int:
        conn = get_connection(self.db_path)
        try:
            return conn.execute("SELECT COUNT(*) FROM content_record").fetchone()[0]
        finally:
            conn.close()
