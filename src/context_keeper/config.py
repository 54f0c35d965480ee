"""Configuration loading and management."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

CONFIG_ENV_VAR = "CONTEXT_KEEPER_CONFIG"


@dataclass
class StorageConfig:
    root: Path = field(default_factory=lambda: Path.home() / ".context-keeper" / "archive")
    state_db: Path = field(default_factory=lambda: Path.home() / ".context-keeper" / "state" / "processor.db")
    retention_days: int = 90  # 0 disables cleanup


@dataclass
class ContentLimits:
    question: int = 2000
    solution: int = 2000
    implementation: int = 1000
    decision: int = 500


@dataclass
class ExtractionConfig:
    max_context_items: int = 50
    tag_limit: int = 5
    content_limits: ContentLimits = field(default_factory=ContentLimits)


@dataclass
class SearchConfig:
    default_limit: int = 10
    half_life_days: float = 60.0
    snippet_width: int = 50


@dataclass
class SecurityConfig:
    filter_sensitive_data: bool = True
    custom_patterns: dict[str, str] = field(default_factory=dict)


@dataclass
class LoggingConfig:
    level: str = "INFO"
    log_dir: Path = field(default_factory=lambda: Path.home() / ".context-keeper" / "logs")
    redact: bool = True  # pass log messages through the security filter


@dataclass
class Config:
    storage: StorageConfig = field(default_factory=StorageConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def expand_env_var(value: str) -> str:
    """Expand environment variables in string (e.g. ${VAR})."""
    if value.startswith("${") and value.endswith("}"):
        env_var = value[2:-1]
        return os.environ.get(env_var, value)
    return value


def expand_path(path_str: str) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expandvars(os.path.expanduser(path_str)))


def find_config_file() -> Path | None:
    """Locate a config file in the standard search locations."""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return expand_path(env_path)

    search_paths = [
        Path.cwd() / "context-keeper.yaml",
        Path.home() / ".config" / "context-keeper" / "config.yaml",
        Path("/etc/context-keeper/config.yaml"),
    ]
    for path in search_paths:
        if path.exists():
            return path
    return None


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from YAML file.

    Missing sections and keys fall back to defaults; unknown keys are ignored.
    """
    if config_path is None:
        config_path = find_config_file()

    if config_path is None or not config_path.exists():
        return Config()

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    defaults = Config()

    # Parse storage config
    storage_data = data.get("storage", {}) or {}
    storage = StorageConfig(
        root=expand_path(storage_data.get("root", "~/.context-keeper/archive")),
        state_db=expand_path(storage_data.get("state_db", "~/.context-keeper/state/processor.db")),
        retention_days=int(storage_data.get("retention_days", defaults.storage.retention_days)),
    )

    # Parse extraction config
    extraction_data = data.get("extraction", {}) or {}
    limits_data = extraction_data.get("content_limits", {}) or {}
    default_limits = defaults.extraction.content_limits
    extraction = ExtractionConfig(
        max_context_items=int(
            extraction_data.get("max_context_items", defaults.extraction.max_context_items)
        ),
        tag_limit=int(extraction_data.get("tag_limit", defaults.extraction.tag_limit)),
        content_limits=ContentLimits(
            question=int(limits_data.get("question", default_limits.question)),
            solution=int(limits_data.get("solution", default_limits.solution)),
            implementation=int(limits_data.get("implementation", default_limits.implementation)),
            decision=int(limits_data.get("decision", default_limits.decision)),
        ),
    )

    # Parse search config
    search_data = data.get("search", {}) or {}
    search = SearchConfig(
        default_limit=int(search_data.get("default_limit", defaults.search.default_limit)),
        half_life_days=float(search_data.get("half_life_days", defaults.search.half_life_days)),
        snippet_width=int(search_data.get("snippet_width", defaults.search.snippet_width)),
    )

    # Parse security config
    security_data = data.get("security", {}) or {}
    custom_patterns = {
        str(name): expand_env_var(str(pattern))
        for name, pattern in (security_data.get("custom_patterns", {}) or {}).items()
    }
    security = SecurityConfig(
        filter_sensitive_data=bool(security_data.get("filter_sensitive_data", True)),
        custom_patterns=custom_patterns,
    )

    # Parse logging config
    logging_data = data.get("logging", {}) or {}
    logging_config = LoggingConfig(
        level=str(logging_data.get("level", defaults.logging.level)),
        log_dir=expand_path(logging_data.get("log_dir", "~/.context-keeper/logs")),
        redact=bool(logging_data.get("redact", defaults.logging.redact)),
    )

    return Config(
        storage=storage,
        extraction=extraction,
        search=search,
        security=security,
        logging=logging_config,
    )
