"""Parsers that normalize raw transcript records into TranscriptEntry sequences."""

from pathlib import Path

from .base import ParseResult, Parser, ParserRegistry, TranscriptEntry, validate_entries
from .claude_code import ClaudeCodeParser

__all__ = [
    "ClaudeCodeParser",
    "ParseResult",
    "Parser",
    "ParserRegistry",
    "TranscriptEntry",
    "parse_transcript",
    "validate_entries",
]

# Register parsers
ParserRegistry.register(ClaudeCodeParser())


def parse_transcript(path: Path, source: str = "claude_code", from_offset: int = 0) -> ParseResult:
    """Parse a transcript file with the parser registered for ``source``.

    Raises:
        ValueError: If no parser is registered for ``source``
    """
    parser = ParserRegistry.get(source)
    if parser is None:
        raise ValueError(f"No parser registered for source: {source}")
    return parser.parse(Path(path), from_offset=from_offset)
