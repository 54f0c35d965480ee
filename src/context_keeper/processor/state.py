"""Processed-transcript state tracking with SQLite persistence."""

import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Self


@dataclass
class ProcessedTranscript:
    """State information for an archived transcript."""

    path: str
    session_id: str = ""
    last_size: int = 0
    last_processed: int | None = None
    archive_path: str = ""


class ProcessorState:
    """Manages processor state persistence in SQLite database.

    Tracks which transcripts were archived and their size at the time, so
    an unchanged transcript is not extracted twice.
    """

    _COLUMNS = ("session_id", "last_size", "last_processed", "archive_path")

    def __init__(self, db_path: Path) -> None:
        """Initialize processor state with database path.

        Args:
            db_path: Path to SQLite database file. Parent directories
                     will be created if they don't exist.
        """
        self._db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self.ensure_schema()

    def ensure_schema(self) -> None:
        """Create the processed_transcripts table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS processed_transcripts (
                path TEXT PRIMARY KEY,
                session_id TEXT DEFAULT '',
                last_size INTEGER DEFAULT 0,
                last_processed INTEGER,
                archive_path TEXT DEFAULT ''
            )
        """)
        self._conn.commit()

    @staticmethod
    def _from_row(row: sqlite3.Row) -> ProcessedTranscript:
        return ProcessedTranscript(
            path=row["path"],
            session_id=row["session_id"] or "",
            last_size=row["last_size"] or 0,
            last_processed=row["last_processed"],
            archive_path=row["archive_path"] or "",
        )

    def get(self, path: str) -> ProcessedTranscript | None:
        """Get the state of a transcript, or None if it was never archived."""
        cursor = self._conn.execute(
            """
            SELECT path, session_id, last_size, last_processed, archive_path
            FROM processed_transcripts
            WHERE path = ?
            """,
            (path,),
        )
        row = cursor.fetchone()
        return None if row is None else self._from_row(row)

    def is_unchanged(self, path: str, size: int) -> bool:
        state = self.get(path)
        return state is not None and state.last_size == size

    def record(self, path: str, **attrs: str | int | None) -> None:
        """Insert or update the state of a transcript.

        Args:
            path: Transcript path
            **attrs: Columns to set (session_id, last_size, last_processed, archive_path)

        Raises:
            ValueError: If an unknown column is given
        """
        invalid = set(attrs) - set(self._COLUMNS)
        if invalid:
            raise ValueError(f"Invalid attributes: {invalid}")

        if self.get(path) is None:
            values = ProcessedTranscript(path=path, **attrs)  # type: ignore[arg-type]
            self._conn.execute(
                """
                INSERT INTO processed_transcripts
                    (path, session_id, last_size, last_processed, archive_path)
                VALUES (?, ?, ?, ?, ?)
                """,
                (path, values.session_id, values.last_size, values.last_processed, values.archive_path),
            )
        elif attrs:
            set_clauses = ", ".join(f"{key} = ?" for key in attrs)
            self._conn.execute(
                f"UPDATE processed_transcripts SET {set_clauses} WHERE path = ?",
                [*attrs.values(), path],
            )
        self._conn.commit()

    def list_transcripts(self) -> list[ProcessedTranscript]:
        cursor = self._conn.execute(
            """
            SELECT path, session_id, last_size, last_processed, archive_path
            FROM processed_transcripts
            ORDER BY path
            """
        )
        return [self._from_row(row) for row in cursor]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> Self:
        """Enter context manager."""
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        """Exit context manager, closing database connection."""
        self.close()
