"""Public operations.

Each function wires the components from configuration (``load_config()``
unless a ``Config`` is passed) and delegates; ``root`` overrides the
configured storage root.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from context_keeper.config import Config, load_config
from context_keeper.logging import setup_logging
from context_keeper.models import ExtractedContext, Pattern, SearchResult, TranscriptEntry
from context_keeper.processor import parsers
from context_keeper.processor.archiver import ArchiveResult, ContextArchiver
from context_keeper.processor.extractor import ContextExtractor
from context_keeper.processor.filter import RedactingLogFilter, SecurityFilter
from context_keeper.processor.indexer import SearchIndex, SearchIndexer
from context_keeper.processor.parsers import ParseResult
from context_keeper.processor.scorer import RelevanceScorer, ScorableItem
from context_keeper.processor.state import ProcessorState
from context_keeper.search.patterns import PatternAnalyzer, PatternEvolution, ProjectAnalysis
from context_keeper.search.retriever import ContextRetriever, SearchFilters
from context_keeper.storage.file_store import CleanupResult, FileStore
from context_keeper.storage.kv import JsonFileStore

# Directory under the storage root holding the search index and pattern cache
CACHE_DIR = "cache"


@dataclass
class Components:
    config: Config
    store: FileStore
    indexer: SearchIndexer
    scorer: RelevanceScorer
    security_filter: SecurityFilter | None
    extractor: ContextExtractor
    retriever: ContextRetriever
    analyzer: PatternAnalyzer


def build_components(config: Config | None = None, root: Path | None = None) -> Components:
    config = config or load_config()
    storage_root = Path(root) if root is not None else config.storage.root

    store = FileStore(storage_root, retention_days=config.storage.retention_days)
    cache = JsonFileStore(storage_root / CACHE_DIR)
    indexer = SearchIndexer(cache)
    scorer = RelevanceScorer()
    security_filter = (
        SecurityFilter(custom_patterns=config.security.custom_patterns)
        if config.security.filter_sensitive_data
        else None
    )
    extractor = ContextExtractor(
        scorer=scorer,
        security_filter=security_filter,
        limits=config.extraction.content_limits,
        max_context_items=config.extraction.max_context_items,
        tag_limit=config.extraction.tag_limit,
    )
    retriever = ContextRetriever(
        store,
        indexer,
        half_life_days=config.search.half_life_days,
        snippet_width=config.search.snippet_width,
    )
    return Components(
        config=config,
        store=store,
        indexer=indexer,
        scorer=scorer,
        security_filter=security_filter,
        extractor=extractor,
        retriever=retriever,
        analyzer=PatternAnalyzer(store, cache=cache),
    )


def configure_logging(name: str, config: Config, debug: bool = False) -> None:
    """Set up command logging from the logging section of the configuration."""
    settings = config.logging
    filters = [RedactingLogFilter(SecurityFilter(config.security.custom_patterns))] if settings.redact else []
    setup_logging(name, log_dir=settings.log_dir, level="DEBUG" if debug else settings.level, filters=filters)


def parse_transcript(path: Path) -> ParseResult:
    return parsers.parse_transcript(Path(path))


def get_storage_path(config: Config | None = None) -> Path:
    return (config or load_config()).storage.root


def load_context(session_id: str, root: Path | None = None, config: Config | None = None) -> ExtractedContext | None:
    """Newest archived context of a session, or None."""
    return build_components(config, root).store.load_context(session_id)


def store_context(context: ExtractedContext, root: Path | None = None, config: Config | None = None) -> Path:
    """Archive a context and index it.

    Raises:
        StorageError: If the archive cannot be written
    """
    components = build_components(config, root)
    return ContextArchiver(components.store, components.indexer, components.extractor).archive(context)


def extract(
    entries: Iterable[TranscriptEntry],
    project_path: str | None = None,
    config: Config | None = None,
) -> ExtractedContext:
    return build_components(config).extractor.extract(list(entries), project_path=project_path)


def score(item: ScorableItem) -> float:
    return RelevanceScorer().score(item)


def redact(text: str, config: Config | None = None) -> str:
    custom = (config or Config()).security.custom_patterns
    return SecurityFilter(custom_patterns=custom).redact(text)


def search(
    query: str,
    filters: SearchFilters | None = None,
    limit: int | None = None,
    root: Path | None = None,
    config: Config | None = None,
) -> list[SearchResult]:
    components = build_components(config, root)
    if limit is None:
        limit = components.config.search.default_limit
    return components.retriever.search(query, filters=filters, limit=limit)


def get_patterns(
    type: str | None = None,
    min_frequency: int = 2,
    limit: int = 10,
    root: Path | None = None,
    project_path: str | None = None,
    config: Config | None = None,
) -> list[Pattern]:
    return build_components(config, root).analyzer.get_patterns(
        type=type,
        min_frequency=min_frequency,
        limit=limit,
        project_path=project_path,
    )


def archive_transcript(
    path: Path,
    force: bool = False,
    root: Path | None = None,
    project_path: str | None = None,
    extracted_at: str = "manual",
    config: Config | None = None,
) -> ArchiveResult:
    """Parse, extract, store and index one transcript file.

    With an explicit ``root`` the processed-transcript state lives under it
    instead of at the configured state database.
    """
    components = build_components(config, root)
    state_db = components.config.storage.state_db if root is None else Path(root) / "state" / "processor.db"
    with ProcessorState(state_db) as state:
        archiver = ContextArchiver(components.store, components.indexer, components.extractor, state=state)
        return archiver.archive_transcript(
            Path(path),
            force=force,
            project_path=project_path,
            extracted_at=extracted_at,
        )


def rebuild_index(root: Path | None = None, config: Config | None = None) -> SearchIndex:
    components = build_components(config, root)
    return components.indexer.rebuild(components.store.iter_contexts())


def cleanup(
    retention_days: int | None = None, root: Path | None = None, config: Config | None = None
) -> CleanupResult:
    """Delete archive entries past retention and unindex sessions left without one.

    ``retention_days`` defaults to the configured retention.
    """
    components = build_components(config, root)
    days = retention_days if retention_days is not None else components.config.storage.retention_days
    return ContextArchiver(components.store, components.indexer, components.extractor).expire(days)


def index_stats(top: int = 10, root: Path | None = None, config: Config | None = None) -> dict[str, Any]:
    return build_components(config, root).indexer.stats(top)


def find_similar_patterns(
    pattern: Pattern, limit: int = 10, root: Path | None = None, config: Config | None = None
) -> list[Pattern]:
    return build_components(config, root).analyzer.find_similar(pattern, limit=limit)


def pattern_evolution(
    value: str, type: str, root: Path | None = None, config: Config | None = None
) -> PatternEvolution:
    return build_components(config, root).analyzer.pattern_evolution(value, type)


def analyze_project(project_path: str, root: Path | None = None, config: Config | None = None) -> ProjectAnalysis:
    return build_components(config, root).analyzer.analyze_project(project_path)
