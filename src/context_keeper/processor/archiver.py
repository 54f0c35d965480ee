"""Archiving pipeline: transcript file -> parse -> extract -> store -> index."""

import time
from dataclasses import dataclass
from pathlib import Path

from context_keeper.logging import get_logger
from context_keeper.models import ExtractedContext
from context_keeper.processor.extractor import ContextExtractor
from context_keeper.processor.indexer import SearchIndex, SearchIndexer
from context_keeper.processor.parsers import parse_transcript
from context_keeper.processor.state import ProcessorState
from context_keeper.storage.file_store import CleanupResult, FileStore

logger = get_logger("archiver")


@dataclass
class ArchiveResult:
    """Outcome of archiving one transcript."""

    transcript: Path
    session_id: str = ""
    archive_path: Path | None = None
    skipped_reason: str | None = None  # "unchanged" or "empty" when nothing was written
    entries: int = 0
    skipped_lines: int = 0
    relevance: float = 0.0

    @property
    def archived(self) -> bool:
        return self.archive_path is not None


class ContextArchiver:
    """Runs the extraction pipeline and persists its result."""

    def __init__(
        self,
        store: FileStore,
        indexer: SearchIndexer,
        extractor: ContextExtractor,
        state: ProcessorState | None = None,
        source: str = "claude_code",
    ) -> None:
        self.store = store
        self.indexer = indexer
        self.extractor = extractor
        self.state = state
        self.source = source

    def archive(self, context: ExtractedContext) -> Path:
        """Store a context, add it to the search index and apply retention.

        Raises:
            StorageError: If the archive entry or the index cannot be written
        """
        path = self.store.store(context)
        self.indexer.update(context)
        if self.store.retention_days > 0:
            self.expire(self.store.retention_days)
        return path

    def expire(self, retention_days: int) -> CleanupResult:
        """Delete expired archive entries and unindex sessions left without one."""
        result = self.store.cleanup(retention_days)
        for session_id in result.sessions:
            self.indexer.remove(session_id)
        return result

    def archive_transcript(
        self,
        transcript: Path,
        force: bool = False,
        project_path: str | None = None,
        extracted_at: str = "manual",
    ) -> ArchiveResult:
        """Archive one transcript file.

        Args:
            transcript: Path to the JSONL transcript
            force: Re-archive even if the file is unchanged since the last run
            project_path: Overrides the project taken from the transcript
            extracted_at: Trigger recorded in the context

        Returns:
            ArchiveResult describing what was written (or why nothing was)

        Raises:
            FileNotFoundError: If the transcript does not exist
            StorageError: If the archive cannot be written
        """
        transcript = Path(transcript)
        size = transcript.stat().st_size
        key = str(transcript.resolve())

        if not force and self.state is not None and self.state.is_unchanged(key, size):
            logger.info("Transcript unchanged, skipping: path=%s", transcript)
            return ArchiveResult(transcript=transcript, skipped_reason="unchanged")

        parsed = parse_transcript(transcript, source=self.source)
        if not parsed.entries:
            logger.warning("No usable entries in transcript: path=%s skipped=%d", transcript, parsed.skipped)
            return ArchiveResult(transcript=transcript, skipped_reason="empty", skipped_lines=parsed.skipped)

        context = self.extractor.extract(
            parsed.entries,
            project_path=project_path,
            extracted_at=extracted_at,
            skipped_lines=parsed.skipped,
        )
        archive_path = self.archive(context)

        if self.state is not None:
            self.state.record(
                key,
                session_id=context.session_id,
                last_size=size,
                last_processed=int(time.time()),
                archive_path=str(archive_path),
            )

        logger.info(
            "Archived transcript: path=%s session=%s entries=%d relevance=%.2f",
            transcript,
            context.session_id,
            len(parsed.entries),
            context.metadata.relevance_score,
        )
        return ArchiveResult(
            transcript=transcript,
            session_id=context.session_id,
            archive_path=archive_path,
            entries=len(parsed.entries),
            skipped_lines=parsed.skipped,
            relevance=context.metadata.relevance_score,
        )

    def rebuild_index(self) -> SearchIndex:
        """Rebuild the search index from every archived context."""
        return self.indexer.rebuild(self.store.iter_contexts())
