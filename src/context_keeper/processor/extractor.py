"""Heuristic extraction of problems, implementations, decisions and patterns.

A single forward pass over the normalized entries. All state (the open
problem, the last assistant text, observation counters) is local to one
``extract()`` call so independent transcripts can be processed in parallel.

Every text that reaches the context is redacted first and truncated second,
so a secret can never survive by being cut in half.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime

from context_keeper.config import ContentLimits
from context_keeper.logging import get_logger
from context_keeper.models import (
    EXTRACTION_VERSION,
    CodeChange,
    ContextMetadata,
    Decision,
    EntryKind,
    ExtractedContext,
    Implementation,
    Pattern,
    Problem,
    Solution,
    TranscriptEntry,
    generate_id,
    parse_timestamp,
    utc_now_iso,
)
from context_keeper.processor.filter import SecurityFilter
from context_keeper.processor.parsers.base import validate_entries
from context_keeper.processor.scorer import RelevanceScorer
from context_keeper.processor.text import extract_tags, truncate_text
from context_keeper.processor.vocabulary import DEFAULT_VOCABULARY, ExtractionVocabulary
from context_keeper.tools import (
    FILE_MUTATING_TOOLS,
    SHELL_TOOLS,
    BashInput,
    EditInput,
    MultiEditInput,
    NotebookEditInput,
    WriteInput,
)

logger = get_logger("extractor")

UNKNOWN_PROJECT = "unknown"
DECISION_CONTEXT_WIDTH = 100
OBSERVATION_VALUE_LENGTH = 50
MAX_PATTERN_EXAMPLES = 10

_PATH = re.compile(r"/[^\s]+")
_NUMBER = re.compile(r"\d+")
_SPACES = re.compile(r"\s+")
_SENTENCE_END = re.compile(r"[.!?\n]")


def normalize_command(command: str) -> str:
    """Reduce a shell command to its shape: paths and numbers become placeholders."""
    shape = _PATH.sub("<path>", command.strip())
    shape = _NUMBER.sub("<number>", shape)
    return _SPACES.sub(" ", shape)[:OBSERVATION_VALUE_LENGTH]


def normalize_phrase(text: str) -> str:
    return _SPACES.sub(" ", text.strip().lower()).rstrip(" .,;:")[:OBSERVATION_VALUE_LENGTH]


@dataclass
class _Observations:
    """Per-session pattern occurrences keyed by (type, value)."""

    patterns: dict[tuple[str, str], Pattern] = field(default_factory=dict)

    def add(self, pattern_type: str, value: str, timestamp: str, example: str) -> None:
        if not value:
            return
        key = (pattern_type, value)
        pattern = self.patterns.get(key)
        if pattern is None:
            self.patterns[key] = Pattern(
                id=generate_id(pattern_type, value),
                type=pattern_type,
                value=value,
                frequency=1,
                first_seen=timestamp,
                last_seen=timestamp,
                examples=[example] if example else [],
            )
            return
        pattern.frequency += 1
        if timestamp and (not pattern.first_seen or timestamp < pattern.first_seen):
            pattern.first_seen = timestamp
        if timestamp and timestamp > pattern.last_seen:
            pattern.last_seen = timestamp
        if example and example not in pattern.examples and len(pattern.examples) < MAX_PATTERN_EXAMPLES:
            pattern.examples.append(example)


class ContextExtractor:
    """Turns a transcript into an ExtractedContext."""

    def __init__(
        self,
        vocabulary: ExtractionVocabulary = DEFAULT_VOCABULARY,
        scorer: RelevanceScorer | None = None,
        security_filter: SecurityFilter | None = None,
        limits: ContentLimits | None = None,
        max_context_items: int = 50,
        tag_limit: int = 5,
    ) -> None:
        self.vocabulary = vocabulary
        self.scorer = scorer or RelevanceScorer(vocabulary=vocabulary)
        self.security_filter = security_filter
        self.limits = limits or ContentLimits()
        self.max_context_items = max_context_items
        self.tag_limit = tag_limit

    def extract(
        self,
        entries: list[TranscriptEntry],
        project_path: str | None = None,
        extracted_at: str = "manual",
        skipped_lines: int = 0,
    ) -> ExtractedContext:
        """Extract a context from normalized entries.

        Args:
            entries: Transcript entries in transcript order
            project_path: Project the session belongs to; defaults to the
                first entry's working directory
            extracted_at: What triggered the extraction (manual, preCompact, scheduled)
            skipped_lines: Unparseable lines reported by the parser

        Returns:
            The extracted context. An empty transcript yields an empty
            context with relevance 0.
        """
        session_id = next((e.session_id for e in entries if e.session_id), "")
        if not session_id:
            session_id = "session-" + generate_id(utc_now_iso(), str(id(entries)))
        if project_path is None:
            project_path = next((e.cwd for e in entries if e.cwd), UNKNOWN_PROJECT)

        run = _ExtractionRun(self, session_id)
        for entry in entries:
            run.consume(entry)
        run.finish()

        problems = run.problems[: self.max_context_items]
        implementations = run.implementations[: self.max_context_items]
        decisions = run.decisions[: self.max_context_items]
        patterns = list(run.observations.patterns.values())[: self.max_context_items]

        scores = [p.relevance for p in problems]
        scores += [i.relevance for i in implementations]
        scores += run.decision_scores[: self.max_context_items]

        warnings = validate_entries(entries) + run.warnings
        metadata = ContextMetadata(
            entry_count=len(entries),
            duration=_duration_ms(entries),
            tools_used=run.tools_used,
            files_modified=run.files_modified,
            relevance_score=RelevanceScorer.context_relevance(scores),
            extraction_version=EXTRACTION_VERSION,
            warnings=warnings,
            redacted_count=run.redacted_count,
            skipped_lines=skipped_lines,
        )

        logger.debug(
            "Extracted context: session=%s problems=%d implementations=%d decisions=%d patterns=%d",
            session_id,
            len(problems),
            len(implementations),
            len(decisions),
            len(patterns),
        )
        return ExtractedContext(
            session_id=session_id,
            project_path=project_path,
            timestamp=utc_now_iso(),
            extracted_at=extracted_at,
            problems=problems,
            implementations=implementations,
            decisions=decisions,
            patterns=patterns,
            metadata=metadata,
        )


class _ExtractionRun:
    """Mutable state of one extraction pass."""

    def __init__(self, extractor: ContextExtractor, session_id: str) -> None:
        self.extractor = extractor
        self.vocab = extractor.vocabulary
        self.limits = extractor.limits
        self.session_id = session_id

        self.problems: list[Problem] = []
        self.implementations: list[Implementation] = []
        self.decisions: list[Decision] = []
        self.decision_scores: list[float] = []
        self.observations = _Observations()
        self.warnings: list[str] = []
        self.tools_used: list[str] = []
        self.files_modified: list[str] = []
        self.redacted_count = 0

        self.open_problem: Problem | None = None
        self.open_files: list[str] = []
        self.open_failed = False
        self.last_assistant_text = ""

    def redact(self, text: str) -> str:
        if self.extractor.security_filter is None or not text:
            return text
        result = self.extractor.security_filter.filter_text(text)
        self.redacted_count += result.count
        return result.text

    def consume(self, entry: TranscriptEntry) -> None:
        if entry.kind is EntryKind.USER:
            self._user(entry)
        elif entry.kind is EntryKind.ASSISTANT:
            self._assistant(entry)
        elif entry.kind is EntryKind.TOOL_USE:
            self._tool(entry)

    def finish(self) -> None:
        if self.open_problem is not None:
            self.warnings.append(
                f"Problem left open at end of transcript was omitted: {self.open_problem.id}"
            )
            self.open_problem = None

    def _user(self, entry: TranscriptEntry) -> None:
        text = entry.text
        self.last_assistant_text = ""
        if not text.strip():
            return

        clean = self.redact(text)
        self._scan_decisions(clean, entry.timestamp)

        if not self.vocab.is_problem_indicator(text):
            return
        if self.open_problem is not None:
            self.warnings.append(
                f"Problem replaced before it was answered was discarded: {self.open_problem.id}"
            )

        problem = Problem(
            id=generate_id(self.session_id, "problem", str(len(self.problems)), entry.timestamp),
            question=truncate_text(clean, self.limits.question),
            timestamp=entry.timestamp,
            tags=extract_tags(clean, limit=self.extractor.tag_limit, vocabulary=self.vocab),
        )
        self.open_problem = problem
        self.open_files = []
        self.open_failed = False

    def _assistant(self, entry: TranscriptEntry) -> None:
        text = entry.text
        if not text.strip():
            return

        clean = self.redact(text)
        self.last_assistant_text = clean
        self._scan_decisions(clean, entry.timestamp)

        problem = self.open_problem
        if problem is None:
            return
        problem.solution = Solution(
            approach=truncate_text(clean, self.limits.solution),
            files=list(self.open_files),
            successful=not (self.open_failed or self.vocab.admits_failure(text)),
        )
        problem.relevance = self.extractor.scorer.score(problem)
        self.problems.append(problem)
        self.open_problem = None

    def _tool(self, entry: TranscriptEntry) -> None:
        if entry.tool_result is not None and entry.tool_result.error and self.open_problem is not None:
            self.open_failed = True

        tool_use = entry.tool_use
        if tool_use is None or not tool_use.name:
            return
        name = tool_use.name
        if name not in self.tools_used:
            self.tools_used.append(name)

        if name in SHELL_TOOLS and isinstance(tool_use.input, BashInput):
            command = self.redact(tool_use.input.command).strip()
            if command and not self.vocab.is_trivial_command(command):
                self.observations.add(
                    "command",
                    normalize_command(command),
                    entry.timestamp,
                    truncate_text(command, self.limits.decision),
                )
            return

        if name not in FILE_MUTATING_TOOLS:
            return
        target = tool_use.input.target_file
        if not target:
            return
        target = self.redact(target)

        if target not in self.files_modified:
            self.files_modified.append(target)
        if self.open_problem is not None and target not in self.open_files:
            self.open_files.append(target)

        description = self.last_assistant_text or f"{name} {target}"
        implementation = Implementation(
            id=generate_id(self.session_id, "implementation", str(len(self.implementations)), entry.timestamp),
            tool=name,
            file=target,
            description=truncate_text(description, self.limits.implementation),
            timestamp=entry.timestamp,
            changes=self._changes(tool_use.input),
        )
        implementation.relevance = self.extractor.scorer.score(implementation)
        self.implementations.append(implementation)

        self.observations.add("code", f"{name}:{target}", entry.timestamp, target)

    def _changes(self, payload: object) -> list[CodeChange] | None:
        limit = self.limits.implementation
        if isinstance(payload, WriteInput):
            content = self.redact(payload.content)
            return [
                CodeChange(
                    type="addition",
                    line_start=1,
                    line_end=max(1, content.count("\n") + 1),
                    content=truncate_text(content, limit),
                )
            ]
        if isinstance(payload, EditInput):
            return [CodeChange(type="modification", content=truncate_text(self.redact(payload.new_string), limit))]
        if isinstance(payload, MultiEditInput):
            return [
                CodeChange(type="modification", content=truncate_text(self.redact(edit.new_string), limit))
                for edit in payload.edits
            ]
        if isinstance(payload, NotebookEditInput):
            change_type = "deletion" if payload.edit_mode == "delete" else "modification"
            return [CodeChange(type=change_type, content=truncate_text(self.redact(payload.new_source), limit))]
        return None

    def _scan_decisions(self, text: str, timestamp: str) -> None:
        """Find decision statements in already-redacted text."""
        matches: list[re.Match[str]] = []
        for regex in self.vocab.decision_regexes:
            matches.extend(regex.finditer(text))
        # Earliest first; on equal starts the longer statement wins
        matches.sort(key=lambda m: (m.start(), -(m.end() - m.start())))

        covered_until = -1
        for match in matches:
            if match.start() < covered_until:
                continue
            covered_until = match.end()
            statement = match.group(0).strip()
            if not statement:
                continue
            self._add_decision(text, match, statement, timestamp)

    def _add_decision(self, text: str, match: re.Match[str], statement: str, timestamp: str) -> None:
        start = max(0, match.start() - DECISION_CONTEXT_WIDTH)
        end = min(len(text), match.end() + DECISION_CONTEXT_WIDTH)
        context = text[start:end].strip()

        decision = Decision(
            id=generate_id(self.session_id, "decision", str(len(self.decisions)), timestamp),
            decision=truncate_text(statement, self.limits.decision),
            context=truncate_text(context, self.limits.decision),
            timestamp=timestamp,
            impact=self._impact(f"{statement} {context}"),
            rationale=self._rationale(text, match),
            tags=extract_tags(statement, limit=self.extractor.tag_limit, vocabulary=self.vocab),
        )
        self.decisions.append(decision)
        self.decision_scores.append(self.extractor.scorer.score(decision))
        self.observations.add("architecture", normalize_phrase(statement), timestamp, decision.decision)

    def _rationale(self, text: str, match: re.Match[str]) -> str | None:
        """The "because ..." clause of the sentence holding the decision, if any."""
        sentence_end = _SENTENCE_END.search(text, match.end())
        end = sentence_end.start() if sentence_end else len(text)
        following = text[match.start():end]
        marker = self.vocab.rationale_regex.search(following)
        if marker is None:
            return None
        return truncate_text(following[marker.start():].strip(), self.limits.decision)

    def _impact(self, text: str) -> str:
        if self.vocab.high_impact_regex.search(text):
            return "high"
        if self.vocab.low_impact_regex.search(text):
            return "low"
        return "medium"


def _duration_ms(entries: list[TranscriptEntry]) -> int:
    """Milliseconds between the first and last parseable timestamps."""
    times: list[datetime] = [t for t in (parse_timestamp(e.timestamp) for e in entries) if t is not None]
    if len(times) < 2:
        return 0
    return max(0, int((times[-1] - times[0]).total_seconds() * 1000))
