"""Inverted index over archived contexts.

The index maps a term to postings ``(session_id, field, offset)`` where
``field`` is a path such as ``problems[0].question`` that resolves back into
the context and ``offset`` is the character position of the word in that
field. Only the latest context of each session is indexed.

The index is a plain JSON document kept in a ``KeyValueStore``; every
load-modify-save cycle runs under the store's lock for the index key.
Incremental ``update``/``remove`` calls always leave the same document that
``rebuild`` would produce from the same contexts.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

from context_keeper.logging import get_logger
from context_keeper.models import ExtractedContext
from context_keeper.processor.text import extract_keywords, truncate_text
from context_keeper.search.tokenize import tokenize
from context_keeper.storage.kv import KeyValueStore

logger = get_logger("indexer")

INDEX_VERSION = 1
INDEX_KEY = "search-index"
SUMMARY_LENGTH = 120

# (list attribute, item attribute) pairs that are searchable
INDEXED_FIELDS: tuple[tuple[str, str], ...] = (
    ("problems", "question"),
    ("problems", "solution"),
    ("implementations", "description"),
    ("implementations", "file"),
    ("decisions", "decision"),
    ("decisions", "context"),
    ("patterns", "value"),
)

_FIELD_PATH = re.compile(r"^(\w+)\[(\d+)\]\.(\w+)$")

Posting = tuple[str, str, int]


def _item_text(item: Any, attribute: str) -> str:
    if attribute == "solution":
        return item.solution.approach if item.solution is not None else ""
    value = getattr(item, attribute, "")
    return value if isinstance(value, str) else ""


def context_fields(context: ExtractedContext) -> Iterator[tuple[str, str]]:
    """Yield ``(field path, text)`` for every searchable field of a context."""
    for collection, attribute in INDEXED_FIELDS:
        for i, item in enumerate(getattr(context, collection)):
            text = _item_text(item, attribute)
            if text:
                yield f"{collection}[{i}].{attribute}", text


def resolve_field(context: ExtractedContext, path: str) -> str | None:
    """Text at a field path, or None if the path no longer resolves."""
    match = _FIELD_PATH.match(path)
    if match is None:
        return None
    collection, index, attribute = match.group(1), int(match.group(2)), match.group(3)
    if (collection, attribute) not in INDEXED_FIELDS:
        return None
    items = getattr(context, collection)
    if index >= len(items):
        return None
    return _item_text(items[index], attribute) or None


def session_summary(context: ExtractedContext) -> dict[str, Any]:
    """Per-session entry of the index: enough to rank and filter without the archive."""
    headline = next((text for _, text in context_fields(context)), "")
    all_text = " ".join(text for _, text in context_fields(context))
    return {
        "timestamp": context.timestamp,
        "project": context.project_path,
        "relevance": context.metadata.relevance_score,
        "keywords": extract_keywords(all_text, limit=10),
        "summary": truncate_text(headline, SUMMARY_LENGTH),
    }


@dataclass
class SearchIndex:
    """Deserialized index document."""

    sessions: dict[str, dict[str, Any]] = field(default_factory=dict)
    postings: dict[str, list[Posting]] = field(default_factory=dict)
    version: int = INDEX_VERSION

    def add(self, context: ExtractedContext) -> None:
        self.sessions[context.session_id] = session_summary(context)
        touched: set[str] = set()
        for path, text in context_fields(context):
            for token in tokenize(text):
                self.postings.setdefault(token.term, []).append((context.session_id, path, token.offset))
                touched.add(token.term)
        for term in touched:
            self.postings[term].sort()

    def discard(self, session_id: str) -> bool:
        if session_id not in self.sessions:
            return False
        del self.sessions[session_id]
        for term in list(self.postings):
            kept = [p for p in self.postings[term] if p[0] != session_id]
            if kept:
                self.postings[term] = kept
            else:
                del self.postings[term]
        return True

    def lookup(self, term: str) -> list[Posting]:
        return list(self.postings.get(term, []))

    def top_keywords(self, limit: int = 10) -> list[tuple[str, int]]:
        """Terms found in the most sessions, with their session counts."""
        counts = [(term, len({p[0] for p in postings})) for term, postings in self.postings.items()]
        counts.sort(key=lambda item: (-item[1], item[0]))
        return counts[:limit]

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "sessions": {sid: self.sessions[sid] for sid in sorted(self.sessions)},
            "postings": {term: [list(p) for p in self.postings[term]] for term in sorted(self.postings)},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SearchIndex":
        return cls(
            sessions=dict(data.get("sessions", {})),
            postings={
                term: [(str(p[0]), str(p[1]), int(p[2])) for p in postings]
                for term, postings in data.get("postings", {}).items()
            },
            version=int(data.get("version", INDEX_VERSION)),
        )


def build_index(contexts: Iterable[ExtractedContext]) -> SearchIndex:
    """Build an index from scratch; the newest context of each session wins."""
    latest: dict[str, ExtractedContext] = {}
    for context in contexts:
        current = latest.get(context.session_id)
        if current is None or context.timestamp >= current.timestamp:
            latest[context.session_id] = context

    index = SearchIndex()
    for session_id in sorted(latest):
        index.add(latest[session_id])
    return index


class SearchIndexer:
    """Maintains the search index document in a key-value store."""

    def __init__(self, store: KeyValueStore, key: str = INDEX_KEY) -> None:
        self._store = store
        self._key = key

    def load(self) -> SearchIndex | None:
        """Current index, or None if it was never built or cannot be read."""
        data = self._store.get(self._key)
        if not isinstance(data, dict):
            return None
        if data.get("version") != INDEX_VERSION:
            logger.info("Ignoring index with unexpected version: version=%s", data.get("version"))
            return None
        try:
            return SearchIndex.from_dict(data)
        except (TypeError, ValueError, IndexError, AttributeError) as e:
            logger.warning("Malformed search index ignored: error=%s", e)
            return None

    def save(self, index: SearchIndex) -> None:
        self._store.put(self._key, index.to_dict())

    def update(self, context: ExtractedContext) -> SearchIndex:
        """Index a context, replacing any older entry for its session.

        A context older than the indexed one for the same session is ignored.
        """
        with self._store.lock(self._key):
            index = self.load() or SearchIndex()
            existing = index.sessions.get(context.session_id)
            if existing is not None and existing.get("timestamp", "") > context.timestamp:
                logger.debug("Skipped stale context: session=%s", context.session_id)
                return index

            index.discard(context.session_id)
            index.add(context)
            self.save(index)
        logger.debug("Indexed context: session=%s terms=%d", context.session_id, len(index.postings))
        return index

    def remove(self, session_id: str) -> bool:
        with self._store.lock(self._key):
            index = self.load()
            if index is None or not index.discard(session_id):
                return False
            self.save(index)
        logger.debug("Removed session from index: session=%s", session_id)
        return True

    def rebuild(self, contexts: Iterable[ExtractedContext]) -> SearchIndex:
        with self._store.lock(self._key):
            index = build_index(contexts)
            self.save(index)
        logger.info("Rebuilt search index: sessions=%d terms=%d", len(index.sessions), len(index.postings))
        return index

    def lookup(self, term: str) -> list[Posting]:
        index = self.load()
        return index.lookup(term) if index is not None else []

    def stats(self, top: int = 10) -> dict[str, Any]:
        """Size of the index and its most widespread keywords."""
        index = self.load()
        if index is None:
            return {"version": None, "sessions": 0, "terms": 0, "postings": 0, "top_keywords": []}
        return {
            "version": index.version,
            "sessions": len(index.sessions),
            "terms": len(index.postings),
            "postings": sum(len(p) for p in index.postings.values()),
            "top_keywords": index.top_keywords(top),
        }
