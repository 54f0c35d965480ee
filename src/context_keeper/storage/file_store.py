"""File-based archive of extracted contexts.

Layout under the storage root::

    projects/<project hash>/sessions/<stamp>-<session id>.json
    projects/<project hash>/index.json      # recent session summaries + totals
    global/index.json                       # one entry per project

The project hash is the first 8 hex digits of the MD5 of the project path.
An archive entry is never rewritten; a later extraction of the same session
adds a newer file and the newest one wins on read. Both index files are
updated under a sidecar file lock.
"""

import hashlib
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

from context_keeper.logging import get_logger
from context_keeper.models import ExtractedContext, utc_now_iso
from context_keeper.storage.kv import file_lock, read_json, write_json_atomic

logger = get_logger("file_store")

MAX_INDEXED_SESSIONS = 100

# (project index total, per-session stats key)
_TOTALS = (
    ("totalProblems", "problems"),
    ("totalImplementations", "implementations"),
    ("totalDecisions", "decisions"),
    ("totalPatterns", "patterns"),
)

_UNSAFE_NAME = re.compile(r"[^A-Za-z0-9._-]")
_STAMP_DROP = re.compile(r"[^0-9TZ]")


def project_hash(project_path: str) -> str:
    return hashlib.md5(project_path.encode("utf-8")).hexdigest()[:8]


def session_file_name(context: ExtractedContext) -> str:
    """``<compact extraction time>-<session id>.json``; names sort oldest first."""
    stamp = _STAMP_DROP.sub("", context.timestamp or utc_now_iso())
    return f"{stamp}-{_UNSAFE_NAME.sub('_', context.session_id)}.json"


@dataclass
class StoredContext:
    """A context together with the file it was read from."""

    context: ExtractedContext
    path: Path

    @property
    def sort_key(self) -> tuple[str, str]:
        return (self.context.timestamp, self.path.name)


@dataclass
class CleanupResult:
    """What a retention pass deleted."""

    files: list[Path] = field(default_factory=list)
    sessions: list[str] = field(default_factory=list)  # sessions left without any archive entry


class FileStore:
    """Reads and writes archive entries below a storage root."""

    def __init__(self, root: Path, retention_days: int = 0) -> None:
        """Initialize the store.

        Args:
            root: Storage root directory (created on first write)
            retention_days: Retention the archiver applies after each write;
                0 disables cleanup
        """
        self.root = Path(root)
        self.retention_days = retention_days

    @property
    def projects_dir(self) -> Path:
        return self.root / "projects"

    @property
    def global_index_path(self) -> Path:
        return self.root / "global" / "index.json"

    def project_dir(self, project_path: str) -> Path:
        return self.projects_dir / project_hash(project_path)

    def store(self, context: ExtractedContext) -> Path:
        """Write an archive entry and update the project and global indexes.

        Returns:
            Path of the new session file

        Raises:
            StorageError: If any file cannot be written
        """
        project_dir = self.project_dir(context.project_path)
        file_name = session_file_name(context)
        session_path = project_dir / "sessions" / file_name

        write_json_atomic(session_path, context.to_dict())
        self._update_project_index(project_dir, context, file_name)
        self._update_global_index(context)
        logger.info(
            "Stored context: session=%s project=%s path=%s",
            context.session_id,
            context.project_path,
            session_path,
        )
        return session_path

    def load_context(self, session_id: str) -> ExtractedContext | None:
        """Newest archive entry for a session, or None if there is none readable."""
        suffix = f"-{_UNSAFE_NAME.sub('_', session_id)}.json"
        candidates = [
            stored
            for stored in self._read_files(p for p in self._session_files() if p.name.endswith(suffix))
            if stored.context.session_id == session_id
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda s: s.sort_key).context

    def iter_contexts(self, project_path: str | None = None) -> Iterator[ExtractedContext]:
        """Every readable archive entry, superseded ones included."""
        for stored in self._read_files(self._session_files(project_path)):
            yield stored.context

    def latest_contexts(self, project_path: str | None = None) -> list[ExtractedContext]:
        """Newest entry per session, most recent first."""
        latest: dict[str, StoredContext] = {}
        for stored in self._read_files(self._session_files(project_path)):
            current = latest.get(stored.context.session_id)
            if current is None or stored.sort_key > current.sort_key:
                latest[stored.context.session_id] = stored
        ordered = sorted(latest.values(), key=lambda s: s.sort_key, reverse=True)
        return [stored.context for stored in ordered]

    def fingerprint(self) -> str:
        """Digest of the session file listing; changes whenever the archive does."""
        digest = hashlib.sha256()
        for path in sorted(self._session_files()):
            try:
                stat = path.stat()
            except FileNotFoundError:
                continue
            digest.update(f"{path.relative_to(self.root)}:{stat.st_size}:{stat.st_mtime_ns}\n".encode())
        return digest.hexdigest()[:16]

    def project_index(self, project_path: str) -> dict[str, Any] | None:
        return read_json(self.project_dir(project_path) / "index.json")

    def global_index(self) -> dict[str, Any] | None:
        return read_json(self.global_index_path)

    def stats(self) -> dict[str, Any]:
        """Totals across the archive: projects, sessions, bytes, oldest/newest."""
        project_dirs = self._project_dirs()
        sessions = 0
        total_size = 0
        timestamps: list[str] = []

        for project_dir in project_dirs:
            index = read_json(project_dir / "index.json") or {}
            for summary in index.get("sessions", []):
                sessions += 1
                if summary.get("timestamp"):
                    timestamps.append(summary["timestamp"])
            for path in project_dir.rglob("*.json"):
                try:
                    total_size += path.stat().st_size
                except FileNotFoundError:
                    continue

        return {
            "total_projects": len(project_dirs),
            "total_sessions": sessions,
            "total_size": total_size,
            "oldest_session": min(timestamps) if timestamps else None,
            "newest_session": max(timestamps) if timestamps else None,
        }

    def cleanup(self, retention_days: int) -> CleanupResult:
        """Delete session files last modified more than ``retention_days`` ago.

        Deleted files are also dropped from their project index and from the
        global session counts.

        Returns:
            Deleted files and the sessions that no longer have any entry

        Raises:
            StorageError: If an index cannot be rewritten
        """
        result = CleanupResult()
        if retention_days <= 0:
            return result
        cutoff = time.time() - retention_days * 86400
        expired_ids: dict[str, None] = {}
        by_project: dict[Path, list[Path]] = {}
        for path in self._session_files():
            try:
                if path.stat().st_mtime >= cutoff:
                    continue
                data = read_json(path)
                path.unlink()
            except FileNotFoundError:
                continue
            result.files.append(path)
            by_project.setdefault(path.parent.parent, []).append(path)
            if isinstance(data, dict) and isinstance(data.get("sessionId"), str):
                expired_ids[data["sessionId"]] = None

        if not result.files:
            return result

        for project_dir, removed in by_project.items():
            self._prune_project_index(project_dir, {p.name for p in removed})
        self._prune_global_index(by_project)
        result.sessions = [sid for sid in expired_ids if self.load_context(sid) is None]
        logger.info(
            "Removed expired sessions: files=%d sessions=%d retention_days=%d",
            len(result.files),
            len(result.sessions),
            retention_days,
        )
        return result

    def _project_dirs(self) -> list[Path]:
        if not self.projects_dir.is_dir():
            return []
        return sorted(p for p in self.projects_dir.iterdir() if p.is_dir())

    def _session_files(self, project_path: str | None = None) -> list[Path]:
        dirs = [self.project_dir(project_path)] if project_path is not None else self._project_dirs()
        files: list[Path] = []
        for project_dir in dirs:
            files.extend(self._session_files_in(project_dir))
        return files

    def _session_files_in(self, project_dir: Path) -> list[Path]:
        sessions_dir = project_dir / "sessions"
        if not sessions_dir.is_dir():
            return []
        return [p for p in sessions_dir.glob("*.json") if not p.name.startswith(".")]

    def _read_files(self, paths: Iterator[Path] | list[Path]) -> Iterator[StoredContext]:
        for path in paths:
            data = read_json(path)
            if not isinstance(data, dict):
                continue
            try:
                context = ExtractedContext.from_dict(data)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning("Corrupt archive entry skipped: path=%s error=%s", path, e)
                continue
            yield StoredContext(context=context, path=path)

    def _update_project_index(self, project_dir: Path, context: ExtractedContext, file_name: str) -> None:
        index_path = project_dir / "index.json"
        with file_lock(index_path):
            self._add_to_project_index(index_path, context, file_name)

    def _add_to_project_index(self, index_path: Path, context: ExtractedContext, file_name: str) -> None:
        index = read_json(index_path)
        now = utc_now_iso()
        if not isinstance(index, dict):
            index = {
                "projectPath": context.project_path,
                "projectHash": index_path.parent.name,
                "sessions": [],
                "totalProblems": 0,
                "totalImplementations": 0,
                "totalDecisions": 0,
                "totalPatterns": 0,
                "created": now,
            }

        index["sessions"].append(
            {
                "sessionId": context.session_id,
                "timestamp": context.timestamp,
                "file": file_name,
                "stats": {
                    "problems": len(context.problems),
                    "implementations": len(context.implementations),
                    "decisions": len(context.decisions),
                    "patterns": len(context.patterns),
                },
                "relevanceScore": context.metadata.relevance_score,
            }
        )
        index["sessions"] = index["sessions"][-MAX_INDEXED_SESSIONS:]
        index["totalProblems"] += len(context.problems)
        index["totalImplementations"] += len(context.implementations)
        index["totalDecisions"] += len(context.decisions)
        index["totalPatterns"] += len(context.patterns)
        index["lastUpdated"] = now

        write_json_atomic(index_path, index)

    def _update_global_index(self, context: ExtractedContext) -> None:
        with file_lock(self.global_index_path):
            index = read_json(self.global_index_path)
            if not isinstance(index, dict):
                index = {}
            projects = index.setdefault("projects", {})
            key = project_hash(context.project_path)
            previous = projects.get(key) or {}
            projects[key] = {
                "path": context.project_path,
                "lastActive": context.timestamp,
                "sessionCount": previous.get("sessionCount", 0) + 1,
            }
            index["lastUpdated"] = utc_now_iso()

            write_json_atomic(self.global_index_path, index)

    def _prune_project_index(self, project_dir: Path, file_names: set[str]) -> None:
        index_path = project_dir / "index.json"
        with file_lock(index_path):
            index = read_json(index_path)
            if not isinstance(index, dict):
                return
            kept = []
            for summary in index.get("sessions", []):
                if summary.get("file") not in file_names:
                    kept.append(summary)
                    continue
                counts = summary.get("stats", {})
                for total, stat in _TOTALS:
                    index[total] = max(0, index.get(total, 0) - counts.get(stat, 0))
            index["sessions"] = kept
            index["lastUpdated"] = utc_now_iso()

            write_json_atomic(index_path, index)

    def _prune_global_index(self, removed: dict[Path, list[Path]]) -> None:
        with file_lock(self.global_index_path):
            index = read_json(self.global_index_path)
            if not isinstance(index, dict):
                return
            projects = index.setdefault("projects", {})
            for project_dir, files in removed.items():
                entry = projects.get(project_dir.name)
                if entry is None:
                    continue
                if not self._session_files_in(project_dir):
                    del projects[project_dir.name]
                else:
                    entry["sessionCount"] = max(0, entry.get("sessionCount", 0) - len(files))
            index["lastUpdated"] = utc_now_iso()

            write_json_atomic(self.global_index_path, index)
