"""Base parser interface and registry."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from context_keeper.logging import get_logger
from context_keeper.models import TranscriptEntry, parse_timestamp

__all__ = ["ParseResult", "Parser", "ParserRegistry", "TranscriptEntry", "validate_entries"]

logger = get_logger("parser")


@dataclass
class ParseResult:
    """Outcome of normalizing a transcript.

    Attributes:
        entries: Normalized entries in transcript order
        skipped: Lines that could not be parsed (malformed JSON, non-object records)
        ignored: Well-formed records of kinds the pipeline does not use
        offset: Byte offset after the last consumed line (0 for in-memory input)
    """

    entries: list[TranscriptEntry] = field(default_factory=list)
    skipped: int = 0
    ignored: int = 0
    offset: int = 0


class Parser(ABC):
    """Base class for line-oriented transcript parsers.

    Subclasses must set the `source_name` class attribute and implement
    `parse_record()`, which turns one decoded JSON object into zero or more
    TranscriptEntry instances. Reading, decoding and error accounting are
    shared.
    """

    source_name: str

    @abstractmethod
    def parse_record(self, record: dict[str, Any]) -> list[TranscriptEntry] | None:
        """Normalize a single decoded record.

        Args:
            record: One decoded JSON object

        Returns:
            List of entries (possibly empty), or None if the record is of a
            kind this parser ignores
        """

    def parse_lines(self, lines: Iterable[str]) -> ParseResult:
        """Normalize transcript lines held in memory.

        Pure transform: blank lines are dropped, malformed lines are counted
        in ``skipped`` and never abort the run.
        """
        result = ParseResult()
        for line in lines:
            self._consume_line(line.strip(), result)
        return result

    def parse(self, path: Path, from_offset: int = 0) -> ParseResult:
        """Parse a transcript file into normalized entries.

        Args:
            path: Path to the transcript file
            from_offset: Byte offset to start parsing from

        Returns:
            ParseResult whose ``offset`` is where the next parse should start
        """
        result = ParseResult()

        with open(path, "rb") as f:
            # Seek to the starting offset for incremental parsing
            f.seek(from_offset)

            for line in f:
                try:
                    line_text = line.decode("utf-8").strip()
                except UnicodeDecodeError:
                    result.skipped += 1
                    continue
                self._consume_line(line_text, result)

            result.offset = f.tell()

        if result.skipped:
            logger.warning("Skipped malformed transcript lines: path=%s count=%d", path, result.skipped)

        return result

    def _consume_line(self, line_text: str, result: ParseResult) -> None:
        if not line_text:
            return

        try:
            record = json.loads(line_text)
        except json.JSONDecodeError:
            result.skipped += 1
            logger.debug("Malformed transcript line: %.80s", line_text)
            return

        if not isinstance(record, dict):
            result.skipped += 1
            return

        entries = self.parse_record(record)
        if entries is None:
            result.ignored += 1
            return
        result.entries.extend(entries)


class ParserRegistry:
    """Registry of parsers by source name."""

    _parsers: dict[str, Parser] = {}

    @classmethod
    def register(cls, parser: Parser) -> None:
        """Register a parser."""
        cls._parsers[parser.source_name] = parser

    @classmethod
    def get(cls, source_name: str) -> Parser | None:
        """Get parser by source name."""
        return cls._parsers.get(source_name)

    @classmethod
    def all_sources(cls) -> list[str]:
        """List all registered source names."""
        return list(cls._parsers.keys())


def validate_entries(entries: list[TranscriptEntry]) -> list[str]:
    """Report data-quality problems in a normalized transcript.

    Mixed session ids and timestamps that go backwards are reported, never
    raised.

    Args:
        entries: Normalized entries

    Returns:
        Human-readable warnings (empty when the transcript is clean)
    """
    warnings: list[str] = []

    session_ids = sorted({e.session_id for e in entries if e.session_id})
    if len(session_ids) > 1:
        warnings.append(f"Multiple session ids in transcript: {', '.join(session_ids)}")

    previous = None
    regressions = 0
    for entry in entries:
        current = parse_timestamp(entry.timestamp)
        if current is None:
            continue
        if previous is not None and current < previous:
            regressions += 1
        previous = current
    if regressions:
        warnings.append(f"Timestamps went backwards {regressions} time(s)")

    return warnings
