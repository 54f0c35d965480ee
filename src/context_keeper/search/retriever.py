"""Query the archive through the inverted index."""

import fnmatch
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone

from context_keeper.logging import get_logger
from context_keeper.models import ExtractedContext, Match, SearchResult, parse_timestamp
from context_keeper.processor.indexer import SearchIndex, SearchIndexer, resolve_field
from context_keeper.processor.scorer import DEFAULT_HALF_LIFE_DAYS, temporal_decay
from context_keeper.search.tokenize import expand_term, query_terms
from context_keeper.storage.file_store import FileStore

logger = get_logger("retriever")

DEFAULT_LIMIT = 10
DEFAULT_SNIPPET_WIDTH = 50

# Term overlap dominates; raw hit count only separates contexts that match
# the same number of query terms
OVERLAP_WEIGHT = 0.75
FREQUENCY_WEIGHT = 0.25
HITS_PER_TERM_CAP = 5

_WORD_AT = re.compile(r"\w+")


@dataclass
class SearchFilters:
    project_path: str | None = None
    since: datetime | str | None = None
    until: datetime | str | None = None
    file_pattern: str | None = None  # glob over touched files
    min_relevance: float | None = None


@dataclass
class _Candidate:
    matched_terms: set[int] = field(default_factory=set)
    hits: int = 0
    locations: list[tuple[str, int]] = field(default_factory=list)


def _as_datetime(value: datetime | str | None) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
    return parse_timestamp(value)


def make_snippet(text: str, offset: int, width: int = DEFAULT_SNIPPET_WIDTH) -> str:
    """About ``width`` characters either side of the word at ``offset``."""
    word = _WORD_AT.match(text, offset)
    word_end = word.end() if word else offset
    start = max(0, offset - width)
    end = min(len(text), word_end + width)
    snippet = text[start:end].strip()
    if start > 0:
        snippet = "..." + snippet
    if end < len(text):
        snippet = snippet + "..."
    return snippet


class ContextRetriever:
    """Ranks archived contexts against a free-text query."""

    def __init__(
        self,
        store: FileStore,
        indexer: SearchIndexer,
        half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
        snippet_width: int = DEFAULT_SNIPPET_WIDTH,
    ) -> None:
        self.store = store
        self.indexer = indexer
        self.half_life_days = half_life_days
        self.snippet_width = snippet_width

    def search(
        self,
        query: str,
        filters: SearchFilters | None = None,
        limit: int = DEFAULT_LIMIT,
        now: datetime | None = None,
    ) -> list[SearchResult]:
        """Search archived contexts.

        Args:
            query: Free text; an empty query returns the most recent contexts
            filters: Optional project/time/file/relevance restrictions
            limit: Maximum number of results
            now: Reference time for temporal decay (defaults to the current time)

        Returns:
            Results ranked by relevance, ties broken by recency
        """
        filters = filters or SearchFilters()
        terms = query_terms(query or "")
        if not terms:
            return self.recent(limit=limit, filters=filters)

        index = self._index()
        candidates = self._collect(index, terms)

        results: list[SearchResult] = []
        for session_id, candidate in candidates.items():
            summary = index.sessions.get(session_id, {})
            if filters.project_path is not None and summary.get("project") != filters.project_path:
                continue

            context = self.store.load_context(session_id)
            if context is None:
                logger.debug("Skipping postings of missing session: session=%s", session_id)
                continue
            if not self._passes(context, filters):
                continue

            matches = self._matches(context, candidate)
            if not matches:
                continue  # every posting was stale

            overlap = len(candidate.matched_terms) / len(terms)
            frequency = min(1.0, candidate.hits / (len(terms) * HITS_PER_TERM_CAP))
            decay = temporal_decay(context.timestamp, now=now, half_life_days=self.half_life_days)
            relevance = (OVERLAP_WEIGHT * overlap + FREQUENCY_WEIGHT * frequency) * decay
            results.append(SearchResult(context=context, relevance=relevance, matches=matches))

        results.sort(key=lambda r: (r.relevance, r.context.timestamp), reverse=True)
        logger.debug("Search finished: query=%r terms=%d results=%d", query, len(terms), len(results))
        return results[:limit]

    def recent(self, limit: int = DEFAULT_LIMIT, filters: SearchFilters | None = None) -> list[SearchResult]:
        """Most recent contexts, newest first."""
        filters = filters or SearchFilters()
        results: list[SearchResult] = []
        for context in self.store.latest_contexts(filters.project_path):
            if not self._passes(context, filters):
                continue
            results.append(SearchResult(context=context, relevance=context.metadata.relevance_score))
            if len(results) >= limit:
                break
        return results

    def _index(self) -> SearchIndex:
        index = self.indexer.load()
        if index is None:
            logger.info("Search index missing, rebuilding from archive: root=%s", self.store.root)
            index = self.indexer.rebuild(self.store.iter_contexts())
        return index

    def _collect(self, index: SearchIndex, terms: list[str]) -> dict[str, _Candidate]:
        candidates: dict[str, _Candidate] = {}
        for position, term in enumerate(terms):
            seen: set[tuple[str, str, int]] = set()
            for variant in sorted(expand_term(term)):
                for posting in index.lookup(variant):
                    if posting in seen:
                        continue
                    seen.add(posting)
                    session_id, path, offset = posting
                    candidate = candidates.setdefault(session_id, _Candidate())
                    candidate.matched_terms.add(position)
                    candidate.hits += 1
                    candidate.locations.append((path, offset))
        return candidates

    def _matches(self, context: ExtractedContext, candidate: _Candidate) -> list[Match]:
        matches: list[Match] = []
        seen_fields: set[str] = set()
        for path, offset in sorted(candidate.locations):
            if path in seen_fields:
                continue
            text = resolve_field(context, path)
            if text is None or offset >= len(text):
                continue
            seen_fields.add(path)
            matches.append(Match(field=path, snippet=make_snippet(text, offset, self.snippet_width)))
        return matches

    def _passes(self, context: ExtractedContext, filters: SearchFilters) -> bool:
        if filters.project_path is not None and context.project_path != filters.project_path:
            return False
        if filters.min_relevance is not None and context.metadata.relevance_score < filters.min_relevance:
            return False

        since = _as_datetime(filters.since)
        until = _as_datetime(filters.until)
        if since is not None or until is not None:
            when = context.timestamp_dt
            if when is None:
                return False
            if since is not None and when < since:
                return False
            if until is not None and when > until:
                return False

        if filters.file_pattern:
            files = list(context.metadata.files_modified)
            files += [i.file for i in context.implementations]
            files += [f for p in context.problems if p.solution for f in p.solution.files]
            if not any(fnmatch.fnmatch(f, filters.file_pattern) for f in files):
                return False
        return True
