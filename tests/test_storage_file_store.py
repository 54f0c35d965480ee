"""Tests for the file-based archive."""

import json
import os
import threading
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from context_keeper.models import ContextMetadata, ExtractedContext, Problem
from context_keeper.storage import file_store
from context_keeper.storage.file_store import (
    MAX_INDEXED_SESSIONS,
    FileStore,
    project_hash,
    session_file_name,
)


def make_context(
    session_id: str = "sess-1",
    timestamp: str = "2026-05-01T10:00:00.000Z",
    project_path: str = "/home/user/project",
    question: str = "Why is auth failing?",
) -> ExtractedContext:
    return ExtractedContext(
        session_id=session_id,
        project_path=project_path,
        timestamp=timestamp,
        problems=[Problem(id="p1", question=question, timestamp=timestamp, relevance=1.0)],
        metadata=ContextMetadata(entry_count=2, relevance_score=1.0),
    )


@pytest.fixture
def store(tmp_path: Path) -> FileStore:
    return FileStore(tmp_path / "archive")


class TestLayout:
    """Tests for on-disk layout."""

    def test_project_hash(self) -> None:
        assert project_hash("/home/user/project") == project_hash("/home/user/project")
        assert len(project_hash("/x")) == 8

    def test_session_file_name(self) -> None:
        name = session_file_name(make_context(session_id="a/b c"))
        assert name == "20260501T100000000Z-a_b_c.json"

    def test_store_writes_session_file(self, store: FileStore) -> None:
        path = store.store(make_context())
        assert path.parent == store.root / "projects" / project_hash("/home/user/project") / "sessions"
        assert json.loads(path.read_text())["sessionId"] == "sess-1"


class TestReadBack:
    """Tests for loading contexts."""

    def test_round_trip(self, store: FileStore) -> None:
        context = make_context()
        store.store(context)
        assert store.load_context("sess-1") == context

    def test_missing_session(self, store: FileStore) -> None:
        assert store.load_context("nope") is None

    def test_newest_entry_wins(self, store: FileStore) -> None:
        store.store(make_context(timestamp="2026-05-01T10:00:00Z", question="old"))
        store.store(make_context(timestamp="2026-05-02T10:00:00Z", question="new"))
        loaded = store.load_context("sess-1")
        assert loaded is not None
        assert loaded.problems[0].question == "new"

    def test_suffix_collision(self, store: FileStore) -> None:
        """A session id that ends with another id is not confused with it."""
        store.store(make_context(session_id="x-abc"))
        assert store.load_context("abc") is None

    def test_corrupt_file_is_no_context(self, store: FileStore) -> None:
        path = store.store(make_context())
        path.write_text("{broken")
        assert store.load_context("sess-1") is None
        assert store.latest_contexts() == []

    def test_latest_contexts(self, store: FileStore) -> None:
        store.store(make_context("a", "2026-05-01T10:00:00Z"))
        store.store(make_context("b", "2026-05-03T10:00:00Z"))
        store.store(make_context("a", "2026-05-04T10:00:00Z", question="newer"))
        store.store(make_context("c", "2026-05-02T10:00:00Z", project_path="/other"))

        latest = store.latest_contexts()
        assert [c.session_id for c in latest] == ["a", "b", "c"]
        assert latest[0].problems[0].question == "newer"

        assert [c.session_id for c in store.latest_contexts("/other")] == ["c"]
        assert len(list(store.iter_contexts())) == 4


class TestIndexes:
    """Tests for project and global indexes."""

    def test_project_index_totals(self, store: FileStore) -> None:
        store.store(make_context("a"))
        store.store(make_context("b"))
        index = store.project_index("/home/user/project")
        assert index is not None
        assert [s["sessionId"] for s in index["sessions"]] == ["a", "b"]
        assert index["totalProblems"] == 2
        assert index["sessions"][0]["stats"]["problems"] == 1
        assert index["projectHash"] == project_hash("/home/user/project")

    def test_project_index_capped(self, store: FileStore) -> None:
        for i in range(MAX_INDEXED_SESSIONS + 3):
            store.store(make_context(f"s{i}", f"2026-05-01T10:00:{i % 60:02d}.{i:03d}Z"))
        index = store.project_index("/home/user/project")
        assert index is not None
        assert len(index["sessions"]) == MAX_INDEXED_SESSIONS
        assert index["sessions"][-1]["sessionId"] == f"s{MAX_INDEXED_SESSIONS + 2}"

    def test_global_index(self, store: FileStore) -> None:
        store.store(make_context("a"))
        store.store(make_context("b", project_path="/other"))
        store.store(make_context("c"))
        projects = store.global_index()["projects"]
        assert projects[project_hash("/home/user/project")]["sessionCount"] == 2
        assert projects[project_hash("/other")]["path"] == "/other"


class TestMaintenance:
    """Tests for stats, fingerprint and retention cleanup."""

    def test_stats(self, store: FileStore) -> None:
        store.store(make_context("a", "2026-05-01T10:00:00Z"))
        store.store(make_context("b", "2026-05-03T10:00:00Z", project_path="/other"))
        stats = store.stats()
        assert stats["total_projects"] == 2
        assert stats["total_sessions"] == 2
        assert stats["total_size"] > 0
        assert stats["oldest_session"] == "2026-05-01T10:00:00Z"
        assert stats["newest_session"] == "2026-05-03T10:00:00Z"

    def test_stats_empty(self, store: FileStore) -> None:
        assert store.stats()["total_sessions"] == 0

    def test_fingerprint_changes(self, store: FileStore) -> None:
        empty = store.fingerprint()
        store.store(make_context())
        assert store.fingerprint() != empty
        assert store.fingerprint() == store.fingerprint()

    def test_cleanup_removes_old_files(self, store: FileStore) -> None:
        old = store.store(make_context("old"))
        new = store.store(make_context("new"))
        stale = time.time() - 100 * 86400
        os.utime(old, (stale, stale))

        removed = store.cleanup(90)
        assert removed.files == [old]
        assert removed.sessions == ["old"]
        assert not old.exists()
        assert new.exists()

    def test_cleanup_disabled(self, store: FileStore) -> None:
        path = store.store(make_context())
        os.utime(path, (0, 0))
        assert store.cleanup(0).files == []
        assert path.exists()

    def test_cleanup_prunes_indexes(self, store: FileStore) -> None:
        """Expired sessions disappear from the project index, totals and stats."""
        old = store.store(make_context("old", "2026-01-01T10:00:00Z"))
        store.store(make_context("new", "2026-05-01T10:00:00Z"))
        os.utime(old, (0, 0))

        store.cleanup(90)

        index = store.project_index("/home/user/project")
        assert index is not None
        assert [s["sessionId"] for s in index["sessions"]] == ["new"]
        assert index["totalProblems"] == 1
        stats = store.stats()
        assert stats["total_sessions"] == 1
        assert stats["oldest_session"] == "2026-05-01T10:00:00Z"
        global_index = store.global_index()
        assert global_index is not None
        assert global_index["projects"][project_hash("/home/user/project")]["sessionCount"] == 1

    def test_cleanup_drops_empty_project(self, store: FileStore) -> None:
        old = store.store(make_context("old", project_path="/gone"))
        store.store(make_context("new"))
        os.utime(old, (0, 0))

        store.cleanup(90)

        global_index = store.global_index()
        assert global_index is not None
        assert project_hash("/gone") not in global_index["projects"]
        assert store.stats()["total_sessions"] == 1

    def test_session_with_newer_entry_is_kept(self, store: FileStore) -> None:
        """Expiring an old entry of a session that has a newer one keeps the session."""
        old = store.store(make_context("s", "2026-01-01T10:00:00Z"))
        store.store(make_context("s", "2026-05-01T10:00:00Z"))
        os.utime(old, (0, 0))

        removed = store.cleanup(90)
        assert removed.files == [old]
        assert removed.sessions == []
        assert store.load_context("s") is not None

    def test_stats_tolerates_vanishing_files(self, store: FileStore) -> None:
        """A file removed between listing and stat is skipped."""
        path = store.store(make_context())
        original_stat = Path.stat

        def stat(self: Path, *args: object, **kwargs: object) -> os.stat_result:
            if self == path:
                raise FileNotFoundError(self)
            return original_stat(self, *args, **kwargs)

        with patch.object(Path, "stat", stat):
            stats = store.stats()
        assert stats["total_sessions"] == 1
        assert stats["total_size"] > 0


class TestConcurrentWrites:
    """Tests for index updates from parallel writers."""

    def test_parallel_stores_keep_every_session(self, store: FileStore) -> None:
        """Index updates that overlap in time still record both sessions."""
        read_json = file_store.read_json

        def slow_read(path: Path) -> object:
            data = read_json(path)
            time.sleep(0.05)
            return data

        with patch("context_keeper.storage.file_store.read_json", side_effect=slow_read):
            threads = [
                threading.Thread(target=store.store, args=(make_context(session_id),))
                for session_id in ("alpha", "beta")
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        index = store.project_index("/home/user/project")
        assert index is not None
        assert sorted(s["sessionId"] for s in index["sessions"]) == ["alpha", "beta"]
        assert index["totalProblems"] == 2
        global_index = store.global_index()
        assert global_index is not None
        assert global_index["projects"][project_hash("/home/user/project")]["sessionCount"] == 2
