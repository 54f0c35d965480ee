"""Relevance scoring for transcript entries and extracted items.

Scores are a weighted sum of factors clamped to [0, 1]. The phrasing of a
user turn sets the base (a literal question outranks a request, which
outranks a bare problem statement; only the strongest applies); code
changes, error-resolution phrasing and architectural phrasing add on top.
Bookkeeping tool calls get small fixed weights so they can still surface.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

from context_keeper.models import (
    Decision,
    EntryKind,
    Implementation,
    Problem,
    TranscriptEntry,
    parse_timestamp,
)
from context_keeper.processor.vocabulary import DEFAULT_VOCABULARY, ExtractionVocabulary
from context_keeper.tools import FILE_MUTATING_TOOLS, SEARCH_TOOLS, SHELL_TOOLS, TODO_TOOLS

DEFAULT_HALF_LIFE_DAYS = 60.0

ScorableItem = str | TranscriptEntry | Problem | Implementation | Decision


@dataclass
class ScoringWeights:
    question: float = 1.0
    request: float = 0.9
    problem_statement: float = 0.8
    code_change: float = 0.8
    error_resolution: float = 0.7
    architecture: float = 0.6
    todo: float = 0.5
    shell: float = 0.4
    lookup: float = 0.3


@dataclass
class ScoreHints:
    """Facts about an item the scorer cannot see in the item itself."""

    user_authored: bool = False
    has_code_change: bool = False
    has_error_resolution: bool = False


@dataclass
class RelevanceFactors:
    base: float = 0.0
    has_code_change: bool = False
    has_error_resolution: bool = False
    has_architecture: bool = False
    tool_weight: float = 0.0


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class RelevanceScorer:
    """Assigns 0-1 relevance scores."""

    def __init__(
        self,
        weights: ScoringWeights | None = None,
        vocabulary: ExtractionVocabulary = DEFAULT_VOCABULARY,
    ) -> None:
        self.weights = weights or ScoringWeights()
        self.vocabulary = vocabulary

    def score(self, item: ScorableItem, hints: ScoreHints | None = None) -> float:
        """Score an item in [0, 1].

        Plain strings are scored as user-authored text. Empty or
        whitespace-only text scores 0.
        """
        factors = self.factors(item, hints)
        if factors is None:
            return 0.0

        w = self.weights
        total = factors.base + factors.tool_weight
        if factors.has_code_change:
            total += w.code_change
        if factors.has_error_resolution:
            total += w.error_resolution
        if factors.has_architecture:
            total += w.architecture

        if not math.isfinite(total):
            return 0.0
        return clamp(total)

    def factors(self, item: ScorableItem, hints: ScoreHints | None = None) -> RelevanceFactors | None:
        """Break an item down into scoring factors; None means "scores zero"."""
        hints = hints or ScoreHints()

        if isinstance(item, str):
            factors = self._text_factors(item, user_authored=True)
        elif isinstance(item, TranscriptEntry):
            factors = self._entry_factors(item)
        elif isinstance(item, Problem):
            factors = self._problem_factors(item)
        elif isinstance(item, Implementation):
            factors = self._implementation_factors(item)
        elif isinstance(item, Decision):
            factors = self._text_factors(item.decision, user_authored=False)
        else:
            return None

        if factors is None:
            return None
        if hints.user_authored and factors.base == 0.0 and isinstance(item, str):
            factors.base = self._phrasing_base(item)
        factors.has_code_change = factors.has_code_change or hints.has_code_change
        factors.has_error_resolution = factors.has_error_resolution or hints.has_error_resolution
        return factors

    def _phrasing_base(self, text: str) -> float:
        vocab = self.vocabulary
        if vocab.is_question(text):
            return self.weights.question
        if vocab.is_request(text):
            return self.weights.request
        if vocab.is_problem_statement(text):
            return self.weights.problem_statement
        return 0.0

    def _text_factors(self, text: str, user_authored: bool) -> RelevanceFactors | None:
        if not text or not text.strip():
            return None
        vocab = self.vocabulary
        return RelevanceFactors(
            base=self._phrasing_base(text) if user_authored else 0.0,
            has_code_change="```" in text,
            has_error_resolution=vocab.mentions_resolution(text),
            has_architecture=vocab.mentions_architecture(text),
        )

    def _entry_factors(self, entry: TranscriptEntry) -> RelevanceFactors | None:
        if entry.kind is EntryKind.USER:
            factors = self._text_factors(entry.text, user_authored=True)
            if factors is not None:
                # A user pasting a resolution phrase is reporting, not resolving
                factors.has_error_resolution = False
            return factors

        if entry.kind is EntryKind.ASSISTANT:
            return self._text_factors(entry.text, user_authored=False)

        if entry.kind is EntryKind.TOOL_USE and entry.tool_use is not None:
            return RelevanceFactors(
                has_code_change=entry.tool_use.name in FILE_MUTATING_TOOLS,
                tool_weight=self._tool_weight(entry.tool_use.name),
            )

        return None

    def _problem_factors(self, problem: Problem) -> RelevanceFactors | None:
        if not problem.question or not problem.question.strip():
            return None
        vocab = self.vocabulary
        base = max(self._phrasing_base(problem.question), self.weights.problem_statement)
        approach = problem.solution.approach if problem.solution else ""
        return RelevanceFactors(
            base=base,
            has_code_change=bool(problem.solution and (problem.solution.files or "```" in approach)),
            has_error_resolution=bool(approach) and vocab.mentions_resolution(approach),
            has_architecture=vocab.mentions_architecture(problem.question)
            or (bool(approach) and vocab.mentions_architecture(approach)),
        )

    def _implementation_factors(self, implementation: Implementation) -> RelevanceFactors:
        description = implementation.description or ""
        return RelevanceFactors(
            has_code_change=implementation.tool in FILE_MUTATING_TOOLS or bool(implementation.changes),
            has_architecture=bool(description) and self.vocabulary.mentions_architecture(description),
            tool_weight=self._tool_weight(implementation.tool),
        )

    def _tool_weight(self, tool_name: str) -> float:
        if tool_name in FILE_MUTATING_TOOLS:
            return 0.0  # counted through the code-change factor
        if tool_name in TODO_TOOLS:
            return self.weights.todo
        if tool_name in SHELL_TOOLS:
            return self.weights.shell
        if tool_name in SEARCH_TOOLS or tool_name:
            return self.weights.lookup
        return 0.0

    @staticmethod
    def context_relevance(scores: Iterable[float]) -> float:
        """Context-level relevance: the best item score, 0 when there are none."""
        return clamp(max(scores, default=0.0))


def temporal_decay(
    timestamp: str | datetime | None,
    now: datetime | None = None,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
) -> float:
    """Exponential recency multiplier in (0, 1].

    A context exactly one half-life old scores 0.5. Timestamps in the future
    count as brand new; unparseable ones are treated as one half-life old.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    when = timestamp if isinstance(timestamp, datetime) else parse_timestamp(timestamp)
    if when is None:
        return 0.5
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)

    age_days = (now - when).total_seconds() / 86400
    if age_days <= 0:
        return 1.0
    return math.pow(0.5, age_days / half_life_days)
