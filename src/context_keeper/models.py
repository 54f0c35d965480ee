"""Canonical data models.

``ExtractedContext.to_dict()`` produces the archive document shape (camelCase
keys) and ``ExtractedContext.from_dict()`` reads it back; the pair round-trips
losslessly through JSON.
"""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from context_keeper.tools import GenericInput, ToolInput, parse_tool_input

EXTRACTION_VERSION = "1.0.0"


class EntryKind(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_USE = "tool_use"
    SYSTEM = "system"


def parse_timestamp(timestamp_str: str | None) -> datetime | None:
    """Parse an ISO 8601 timestamp into an aware datetime.

    Args:
        timestamp_str: ISO 8601 timestamp string (e.g., "2026-01-26T00:38:34.590Z")

    Returns:
        Timezone-aware datetime (naive values are taken as UTC), or None
    """
    if not timestamp_str:
        return None

    try:
        if timestamp_str.endswith("Z"):
            timestamp_str = timestamp_str[:-1] + "+00:00"
        dt = datetime.fromisoformat(timestamp_str)
    except (ValueError, TypeError, AttributeError):
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def utc_now_iso() -> str:
    """Current time as an ISO 8601 UTC string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def generate_id(*parts: str) -> str:
    """Stable short id derived from the given parts."""
    return hashlib.sha256("\x1f".join(parts).encode()).hexdigest()[:16]


@dataclass
class Message:
    role: str
    text: str = ""


@dataclass
class ToolUse:
    name: str
    input: ToolInput = field(default_factory=GenericInput)

    @classmethod
    def from_raw(cls, name: str, raw_input: Any) -> "ToolUse":
        return cls(name=name, input=parse_tool_input(name, raw_input))


@dataclass
class ToolResult:
    output: str = ""
    error: str = ""


@dataclass
class TranscriptEntry:
    """One normalized turn of a transcript."""

    kind: EntryKind
    timestamp: str
    session_id: str
    cwd: str = ""
    message: Message | None = None
    tool_use: ToolUse | None = None
    tool_result: ToolResult | None = None

    @property
    def text(self) -> str:
        """Message text, or an empty string for entries without a message."""
        return self.message.text if self.message else ""


@dataclass
class Solution:
    approach: str
    files: list[str] = field(default_factory=list)
    successful: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"approach": self.approach, "files": list(self.files), "successful": self.successful}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Solution":
        return cls(
            approach=data.get("approach", ""),
            files=list(data.get("files", [])),
            successful=bool(data.get("successful", True)),
        )


@dataclass
class Problem:
    id: str
    question: str
    timestamp: str
    tags: list[str] = field(default_factory=list)
    solution: Solution | None = None
    relevance: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "question": self.question,
            "timestamp": self.timestamp,
            "tags": list(self.tags),
            "relevance": self.relevance,
        }
        if self.solution is not None:
            data["solution"] = self.solution.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Problem":
        solution = data.get("solution")
        return cls(
            id=data.get("id", ""),
            question=data.get("question", ""),
            timestamp=data.get("timestamp", ""),
            tags=list(data.get("tags", [])),
            solution=Solution.from_dict(solution) if isinstance(solution, dict) else None,
            relevance=data.get("relevance", 0.0),
        )


@dataclass
class CodeChange:
    type: str  # addition, deletion, modification
    line_start: int = 0
    line_end: int = 0
    content: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "lineStart": self.line_start,
            "lineEnd": self.line_end,
            "content": self.content,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CodeChange":
        return cls(
            type=data.get("type", "modification"),
            line_start=data.get("lineStart", 0),
            line_end=data.get("lineEnd", 0),
            content=data.get("content", ""),
        )


@dataclass
class Implementation:
    id: str
    tool: str
    file: str
    description: str
    timestamp: str
    changes: list[CodeChange] | None = None
    relevance: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "tool": self.tool,
            "file": self.file,
            "description": self.description,
            "timestamp": self.timestamp,
            "relevance": self.relevance,
        }
        if self.changes is not None:
            data["changes"] = [change.to_dict() for change in self.changes]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Implementation":
        changes = data.get("changes")
        return cls(
            id=data.get("id", ""),
            tool=data.get("tool", ""),
            file=data.get("file", ""),
            description=data.get("description", ""),
            timestamp=data.get("timestamp", ""),
            changes=[CodeChange.from_dict(c) for c in changes] if isinstance(changes, list) else None,
            relevance=data.get("relevance", 0.0),
        )


@dataclass
class Decision:
    id: str
    decision: str
    context: str
    timestamp: str
    impact: str = "medium"  # high, medium, low
    rationale: str | None = None
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "decision": self.decision,
            "context": self.context,
            "timestamp": self.timestamp,
            "impact": self.impact,
            "tags": list(self.tags),
        }
        if self.rationale is not None:
            data["rationale"] = self.rationale
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Decision":
        return cls(
            id=data.get("id", ""),
            decision=data.get("decision", ""),
            context=data.get("context", ""),
            timestamp=data.get("timestamp", ""),
            impact=data.get("impact", "medium"),
            rationale=data.get("rationale"),
            tags=list(data.get("tags", [])),
        )


@dataclass
class Pattern:
    id: str
    type: str  # code, command, architecture
    value: str
    frequency: int = 1
    first_seen: str = ""
    last_seen: str = ""
    examples: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "value": self.value,
            "frequency": self.frequency,
            "firstSeen": self.first_seen,
            "lastSeen": self.last_seen,
            "examples": list(self.examples),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Pattern":
        return cls(
            id=data.get("id", ""),
            type=data.get("type", "code"),
            value=data.get("value", ""),
            frequency=int(data.get("frequency", 1)),
            first_seen=data.get("firstSeen", ""),
            last_seen=data.get("lastSeen", ""),
            examples=list(data.get("examples", [])),
        )


@dataclass
class ContextMetadata:
    entry_count: int = 0
    duration: int = 0  # milliseconds
    tools_used: list[str] = field(default_factory=list)
    files_modified: list[str] = field(default_factory=list)
    relevance_score: float = 0.0
    extraction_version: str = EXTRACTION_VERSION
    warnings: list[str] = field(default_factory=list)
    redacted_count: int = 0
    skipped_lines: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "entryCount": self.entry_count,
            "duration": self.duration,
            "toolsUsed": list(self.tools_used),
            "filesModified": list(self.files_modified),
            "relevanceScore": self.relevance_score,
            "extractionVersion": self.extraction_version,
            "warnings": list(self.warnings),
            "redactedCount": self.redacted_count,
            "skippedLines": self.skipped_lines,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ContextMetadata":
        return cls(
            entry_count=data.get("entryCount", 0),
            duration=data.get("duration", 0),
            tools_used=list(data.get("toolsUsed", [])),
            files_modified=list(data.get("filesModified", [])),
            relevance_score=data.get("relevanceScore", 0.0),
            extraction_version=data.get("extractionVersion", EXTRACTION_VERSION),
            warnings=list(data.get("warnings", [])),
            redacted_count=data.get("redactedCount", 0),
            skipped_lines=data.get("skippedLines", 0),
        )


@dataclass
class ExtractedContext:
    """The unit of archival: everything kept from one session."""

    session_id: str
    project_path: str
    timestamp: str  # extraction time
    extracted_at: str = "manual"
    problems: list[Problem] = field(default_factory=list)
    implementations: list[Implementation] = field(default_factory=list)
    decisions: list[Decision] = field(default_factory=list)
    patterns: list[Pattern] = field(default_factory=list)
    metadata: ContextMetadata = field(default_factory=ContextMetadata)

    @property
    def timestamp_dt(self) -> datetime | None:
        return parse_timestamp(self.timestamp)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the archive document format."""
        return {
            "sessionId": self.session_id,
            "projectPath": self.project_path,
            "timestamp": self.timestamp,
            "extractedAt": self.extracted_at,
            "problems": [p.to_dict() for p in self.problems],
            "implementations": [i.to_dict() for i in self.implementations],
            "decisions": [d.to_dict() for d in self.decisions],
            "patterns": [p.to_dict() for p in self.patterns],
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExtractedContext":
        """Build from an archive document.

        Raises:
            KeyError: If ``sessionId`` is missing
        """
        return cls(
            session_id=data["sessionId"],
            project_path=data.get("projectPath", ""),
            timestamp=data.get("timestamp", ""),
            extracted_at=data.get("extractedAt", "manual"),
            problems=[Problem.from_dict(p) for p in data.get("problems", [])],
            implementations=[Implementation.from_dict(i) for i in data.get("implementations", [])],
            decisions=[Decision.from_dict(d) for d in data.get("decisions", [])],
            patterns=[Pattern.from_dict(p) for p in data.get("patterns", [])],
            metadata=ContextMetadata.from_dict(data.get("metadata", {}) or {}),
        )


@dataclass
class Match:
    field: str
    snippet: str


@dataclass
class SearchResult:
    context: ExtractedContext
    relevance: float
    matches: list[Match] = field(default_factory=list)
