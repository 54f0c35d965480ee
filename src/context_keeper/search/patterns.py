"""Cross-session pattern analysis.

Each archived context carries per-session observations (normalized shell
commands, ``tool:file`` operations, decision phrases). The analyzer merges
the observations of the latest context of every session and keeps only those
seen at least ``min_frequency`` times in total. On top of that table it finds
similar patterns, follows one pattern across sessions and summarizes a
project.
"""

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable

from context_keeper.logging import get_logger
from context_keeper.models import ExtractedContext, Pattern, generate_id
from context_keeper.storage.file_store import FileStore
from context_keeper.storage.kv import KeyValueStore

logger = get_logger("patterns")

PATTERN_TYPES = ("code", "command", "architecture")
MAX_EXAMPLES = 10
CACHE_KEY = "pattern-cache"
SIMILARITY_THRESHOLD = 0.7
# Regression slopes smaller than this in magnitude count as a stable trend
STABLE_SLOPE = 0.1
HOTSPOT_COUNT = 5
_ALL_PROJECTS = "*"
_NON_WORD = re.compile(r"\W+")


@dataclass
class Occurrence:
    """A pattern as observed in one session."""

    session_id: str
    timestamp: str
    frequency: int


@dataclass
class PatternEvolution:
    occurrences: list[Occurrence] = field(default_factory=list)  # oldest first
    trend: str = "stable"  # increasing, stable or decreasing


@dataclass
class Insight:
    """Observation about a project derived from its patterns."""

    type: str  # hotspot or workflow
    title: str
    description: str
    severity: str
    patterns: list[Pattern] = field(default_factory=list)
    data: list[tuple[str, int]] = field(default_factory=list)


@dataclass
class ProjectAnalysis:
    patterns: list[Pattern] = field(default_factory=list)
    insights: list[Insight] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


def pattern_similarity(first: Pattern, second: Pattern) -> float:
    """1.0 for equal values, 0.8 when one contains the other, else word overlap.

    Patterns of different types are never similar.
    """
    if first.type != second.type:
        return 0.0
    a, b = first.value.lower(), second.value.lower()
    if a == b:
        return 1.0
    if a in b or b in a:
        return 0.8
    words_a = {w for w in _NON_WORD.split(a) if w}
    words_b = {w for w in _NON_WORD.split(b) if w}
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def trend(values: list[int]) -> str:
    """Direction of a series from the slope of its least-squares line."""
    n = len(values)
    if n < 2:
        return "stable"
    sum_x = n * (n - 1) / 2
    sum_x2 = (n - 1) * n * (2 * n - 1) / 6
    sum_y = sum(values)
    sum_xy = sum(i * value for i, value in enumerate(values))
    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_x2 - sum_x * sum_x)
    if abs(slope) < STABLE_SLOPE:
        return "stable"
    return "increasing" if slope > 0 else "decreasing"


def merge_patterns(contexts: Iterable[ExtractedContext]) -> list[Pattern]:
    """Merge observations by (type, value) without any frequency threshold."""
    merged: dict[tuple[str, str], Pattern] = {}
    for context in contexts:
        for observed in context.patterns:
            key = (observed.type, observed.value)
            pattern = merged.get(key)
            if pattern is None:
                merged[key] = Pattern(
                    id=generate_id(observed.type, observed.value),
                    type=observed.type,
                    value=observed.value,
                    frequency=observed.frequency,
                    first_seen=observed.first_seen,
                    last_seen=observed.last_seen,
                    examples=list(dict.fromkeys(observed.examples))[:MAX_EXAMPLES],
                )
                continue

            pattern.frequency += observed.frequency
            if observed.first_seen and (not pattern.first_seen or observed.first_seen < pattern.first_seen):
                pattern.first_seen = observed.first_seen
            if observed.last_seen > pattern.last_seen:
                pattern.last_seen = observed.last_seen
            for example in observed.examples:
                if len(pattern.examples) >= MAX_EXAMPLES:
                    break
                if example not in pattern.examples:
                    pattern.examples.append(example)
    return list(merged.values())


class PatternAnalyzer:
    """Serves thresholded recurring patterns, caching the merged table."""

    def __init__(self, store: FileStore, cache: KeyValueStore | None = None, cache_key: str = CACHE_KEY) -> None:
        self.store = store
        self.cache = cache
        self.cache_key = cache_key

    def get_patterns(
        self,
        type: str | None = None,
        min_frequency: int = 2,
        limit: int = 10,
        project_path: str | None = None,
    ) -> list[Pattern]:
        """Recurring patterns, most frequent first (ties: most recently seen).

        Raises:
            ValueError: If ``type`` is not a known pattern type
        """
        _check_type(type)
        patterns = [
            p
            for p in self._merged(project_path)
            if p.frequency >= min_frequency and (type is None or p.type == type)
        ]
        patterns.sort(key=lambda p: (p.frequency, p.last_seen), reverse=True)
        return patterns[:limit]

    def find_similar(self, pattern: Pattern, limit: int = 10) -> list[Pattern]:
        """Patterns of the same type, across all projects, similar to ``pattern``.

        Similarity must exceed ``SIMILARITY_THRESHOLD``; the pattern itself is
        excluded. Most similar first, then most frequent.
        """
        scored = [
            (pattern_similarity(pattern, candidate), candidate)
            for candidate in self._merged(None)
            if candidate.id != pattern.id
        ]
        similar = [(score, p) for score, p in scored if score > SIMILARITY_THRESHOLD]
        similar.sort(key=lambda item: (item[0], item[1].frequency), reverse=True)
        return [p for _, p in similar[:limit]]

    def pattern_evolution(self, value: str, type: str) -> PatternEvolution:
        """Per-session occurrences of one pattern, oldest first, with their trend.

        Raises:
            ValueError: If ``type`` is not a known pattern type
        """
        _check_type(type)
        occurrences = [
            Occurrence(session_id=context.session_id, timestamp=context.timestamp, frequency=observed.frequency)
            for context in self.store.latest_contexts()
            for observed in context.patterns
            if observed.type == type and observed.value == value
        ]
        occurrences.sort(key=lambda o: (o.timestamp, o.session_id))
        return PatternEvolution(occurrences=occurrences, trend=trend([o.frequency for o in occurrences]))

    def analyze_project(self, project_path: str, min_frequency: int = 2) -> ProjectAnalysis:
        """Recurring patterns of one project with insights and recommendations."""
        patterns = self.get_patterns(min_frequency=min_frequency, limit=50, project_path=project_path)
        contexts = self.store.latest_contexts(project_path)
        insights = _insights(patterns, contexts)
        return ProjectAnalysis(
            patterns=patterns,
            insights=insights,
            recommendations=_recommendations(patterns, insights),
        )

    def _merged(self, project_path: str | None) -> list[Pattern]:
        scope = project_path if project_path is not None else _ALL_PROJECTS
        if self.cache is None:
            return merge_patterns(self.store.latest_contexts(project_path))

        with self.cache.lock(self.cache_key):
            fingerprint = self.store.fingerprint()
            document: Any = self.cache.get(self.cache_key)
            if not isinstance(document, dict) or document.get("fingerprint") != fingerprint:
                document = {"fingerprint": fingerprint, "tables": {}}

            table = document["tables"].get(scope)
            if isinstance(table, list):
                return [Pattern.from_dict(p) for p in table]

            patterns = merge_patterns(self.store.latest_contexts(project_path))
            document["tables"][scope] = [p.to_dict() for p in patterns]
            self.cache.put(self.cache_key, document)
        logger.debug("Pattern table cached: scope=%s patterns=%d", scope, len(patterns))
        return patterns


def _check_type(type: str | None) -> None:
    if type is not None and type not in PATTERN_TYPES:
        raise ValueError(f"Unknown pattern type: {type}")


def _insights(patterns: list[Pattern], contexts: list[ExtractedContext]) -> list[Insight]:
    insights: list[Insight] = []

    modified = Counter(path for context in contexts for path in context.metadata.files_modified)
    hotspots = sorted(modified.items(), key=lambda item: (-item[1], item[0]))[:HOTSPOT_COUNT]
    if hotspots:
        insights.append(
            Insight(
                type="hotspot",
                title="Frequently Modified Files",
                description="These files are modified most often and may need refactoring",
                severity="low",
                data=hotspots,
            )
        )

    commands = [p for p in patterns if p.type == "command"]
    if len(commands) > 3:
        insights.append(
            Insight(
                type="workflow",
                title="Common Workflows",
                description=f"Identified {len(commands)} recurring command patterns",
                severity="info",
                patterns=commands[:5],
            )
        )
    return insights


def _recommendations(patterns: list[Pattern], insights: list[Insight]) -> list[str]:
    recommendations: list[str] = []

    frequent_commands = [p.value for p in patterns if p.type == "command" and p.frequency > 5]
    if frequent_commands:
        recommendations.append(f"Automate frequent commands: {', '.join(frequent_commands[:3])}")

    if any(p.type == "code" and p.frequency > 10 for p in patterns):
        recommendations.append("Extract common code patterns into reusable functions or utilities")

    hotspot = next((i for i in insights if i.type == "hotspot"), None)
    if hotspot is not None and hotspot.data[0][1] > 10:
        path, count = hotspot.data[0]
        recommendations.append(f"Consider refactoring {path} - modified {count} times")
    return recommendations
