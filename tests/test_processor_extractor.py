"""Tests for the context extractor."""

from typing import Any

import pytest

from context_keeper.config import ContentLimits
from context_keeper.models import EntryKind, Message, ToolResult, ToolUse, TranscriptEntry
from context_keeper.processor.extractor import ContextExtractor, normalize_command
from context_keeper.processor.filter import REDACTION_MARKER, SecurityFilter
from context_keeper.processor.text import TRUNCATION_MARKER

SESSION = "sess-extract"
CWD = "/home/user/webapp"


class TranscriptBuilder:
    """Builds entries with increasing timestamps."""

    def __init__(self) -> None:
        self.entries: list[TranscriptEntry] = []

    def _ts(self) -> str:
        return f"2026-05-01T10:00:{len(self.entries):02d}.000Z"

    def user(self, text: str) -> "TranscriptBuilder":
        self.entries.append(
            TranscriptEntry(EntryKind.USER, self._ts(), SESSION, CWD, message=Message("user", text))
        )
        return self

    def assistant(self, text: str) -> "TranscriptBuilder":
        self.entries.append(
            TranscriptEntry(EntryKind.ASSISTANT, self._ts(), SESSION, CWD, message=Message("assistant", text))
        )
        return self

    def tool(self, name: str, raw: dict[str, Any]) -> "TranscriptBuilder":
        self.entries.append(
            TranscriptEntry(EntryKind.TOOL_USE, self._ts(), SESSION, CWD, tool_use=ToolUse.from_raw(name, raw))
        )
        return self

    def tool_error(self, error: str) -> "TranscriptBuilder":
        self.entries.append(
            TranscriptEntry(EntryKind.TOOL_USE, self._ts(), SESSION, CWD, tool_result=ToolResult(error=error))
        )
        return self


@pytest.fixture
def extractor() -> ContextExtractor:
    return ContextExtractor(security_filter=SecurityFilter())


@pytest.fixture
def builder() -> TranscriptBuilder:
    return TranscriptBuilder()


class TestProblems:
    """Tests for problem/solution extraction."""

    def test_question_with_answer(self, extractor: ContextExtractor, builder: TranscriptBuilder) -> None:
        builder.user("Why is auth failing?").assistant("The token expired, so I refresh it on startup.")
        context = extractor.extract(builder.entries)

        assert len(context.problems) == 1
        problem = context.problems[0]
        assert problem.question == "Why is auth failing?"
        assert problem.tags == ["auth"]
        assert problem.solution is not None
        assert problem.solution.approach.startswith("The token expired")
        assert problem.solution.successful is True
        assert problem.relevance == pytest.approx(1.0)
        assert context.metadata.relevance_score == pytest.approx(1.0)

    def test_solution_files_from_tools(self, extractor: ContextExtractor, builder: TranscriptBuilder) -> None:
        builder.user("Please fix the login bug")
        builder.tool("Edit", {"file_path": "/src/login.py", "old_string": "a", "new_string": "b"})
        builder.tool("Read", {"file_path": "/src/other.py"})
        builder.assistant("Fixed the comparison in the login check.")
        context = extractor.extract(builder.entries)

        solution = context.problems[0].solution
        assert solution is not None
        assert solution.files == ["/src/login.py"]

    def test_failure_admission(self, extractor: ContextExtractor, builder: TranscriptBuilder) -> None:
        builder.user("The build is broken").assistant("I tried pinning it but that didn't work.")
        context = extractor.extract(builder.entries)
        assert context.problems[0].solution is not None
        assert context.problems[0].solution.successful is False

    def test_tool_error_marks_unsuccessful(self, extractor: ContextExtractor, builder: TranscriptBuilder) -> None:
        builder.user("Please migrate the users table").tool_error("relation does not exist")
        builder.assistant("Here is what happened.")
        context = extractor.extract(builder.entries)
        assert context.problems[0].solution is not None
        assert context.problems[0].solution.successful is False

    def test_open_problem_omitted_with_warning(
        self, extractor: ContextExtractor, builder: TranscriptBuilder
    ) -> None:
        builder.user("Why is the cache slow?")
        context = extractor.extract(builder.entries)
        assert context.problems == []
        assert any("left open" in w for w in context.metadata.warnings)

    def test_replaced_problem_discarded(self, extractor: ContextExtractor, builder: TranscriptBuilder) -> None:
        builder.user("Why is the cache slow?").user("Actually, fix the login bug first")
        builder.assistant("Done, the login works now.")
        context = extractor.extract(builder.entries)
        assert [p.question for p in context.problems] == ["Actually, fix the login bug first"]
        assert any("replaced" in w for w in context.metadata.warnings)

    def test_chatter_is_not_a_problem(self, extractor: ContextExtractor, builder: TranscriptBuilder) -> None:
        builder.user("thanks").assistant("You're welcome.")
        assert extractor.extract(builder.entries).problems == []


class TestImplementations:
    """Tests for implementation extraction."""

    def test_write_with_preceding_description(
        self, extractor: ContextExtractor, builder: TranscriptBuilder
    ) -> None:
        builder.user("thanks")
        builder.assistant("Adding a health endpoint.")
        builder.tool("Write", {"file_path": "/src/health.py", "content": "def ok():\n    return True\n"})
        context = extractor.extract(builder.entries)

        implementation = context.implementations[0]
        assert implementation.tool == "Write"
        assert implementation.file == "/src/health.py"
        assert implementation.description == "Adding a health endpoint."
        assert implementation.changes is not None
        assert implementation.changes[0].type == "addition"
        assert implementation.changes[0].line_end == 3
        assert implementation.relevance == pytest.approx(0.8)

    def test_synthesized_description(self, extractor: ContextExtractor, builder: TranscriptBuilder) -> None:
        builder.tool("Edit", {"file_path": "/src/a.py", "new_string": "x = 2"})
        context = extractor.extract(builder.entries)
        assert context.implementations[0].description == "Edit /src/a.py"
        assert context.implementations[0].changes[0].type == "modification"

    def test_multi_edit_changes(self, extractor: ContextExtractor, builder: TranscriptBuilder) -> None:
        builder.tool("MultiEdit", {"file_path": "/a.py", "edits": [{"new_string": "1"}, {"new_string": "2"}]})
        context = extractor.extract(builder.entries)
        assert [c.content for c in context.implementations[0].changes] == ["1", "2"]

    def test_non_mutating_tools_ignored(self, extractor: ContextExtractor, builder: TranscriptBuilder) -> None:
        builder.tool("Read", {"file_path": "/a.py"}).tool("Bash", {"command": "npm test"})
        context = extractor.extract(builder.entries)
        assert context.implementations == []
        assert context.metadata.tools_used == ["Read", "Bash"]

    def test_written_secrets_are_redacted(self, extractor: ContextExtractor, builder: TranscriptBuilder) -> None:
        builder.tool("Write", {"file_path": "/.env", "content": "password=hunter22"})
        change = extractor.extract(builder.entries).implementations[0].changes[0]
        assert "hunter22" not in change.content


class TestDecisions:
    """Tests for decision extraction."""

    def test_decision_with_rationale(self, extractor: ContextExtractor, builder: TranscriptBuilder) -> None:
        builder.assistant("We should use Redis because it supports TTLs. Next step is wiring.")
        decision = extractor.extract(builder.entries).decisions[0]
        assert decision.decision == "We should use Redis because it supports TTLs"
        assert decision.rationale == "because it supports TTLs"
        assert decision.impact == "medium"
        assert "redis" in decision.tags
        assert "Next step" in decision.context

    def test_high_impact(self, extractor: ContextExtractor, builder: TranscriptBuilder) -> None:
        builder.user("We decided to migrate the database schema tonight.")
        assert extractor.extract(builder.entries).decisions[0].impact == "high"

    def test_low_impact(self, extractor: ContextExtractor, builder: TranscriptBuilder) -> None:
        builder.assistant("I'm going with a minor rename of the helper.")
        decision = extractor.extract(builder.entries).decisions[0]
        assert decision.impact == "low"
        assert decision.rationale is None

    def test_overlapping_patterns_yield_one_decision(
        self, extractor: ContextExtractor, builder: TranscriptBuilder
    ) -> None:
        builder.assistant("It's better to cache the result.")
        decisions = extractor.extract(builder.entries).decisions
        assert len(decisions) == 1
        assert decisions[0].decision == "It's better to cache the result"

    def test_decision_observation(self, extractor: ContextExtractor, builder: TranscriptBuilder) -> None:
        builder.assistant("We should use Redis.")
        patterns = extractor.extract(builder.entries).patterns
        assert [(p.type, p.value) for p in patterns] == [("architecture", "we should use redis")]


class TestRedactionAndLimits:
    """Tests for redaction-before-truncation and content limits."""

    def test_api_key_redacted_in_question(self, extractor: ContextExtractor, builder: TranscriptBuilder) -> None:
        builder.user("My api_key=sk-abcdef1234567890abcdef is rejected, why?").assistant("It was revoked.")
        context = extractor.extract(builder.entries)
        question = context.problems[0].question
        assert "sk-abcdef" not in question
        assert REDACTION_MARKER in question
        assert context.metadata.redacted_count >= 1

    def test_email_domain_survives(self, extractor: ContextExtractor, builder: TranscriptBuilder) -> None:
        builder.user("Why does mail to jane@example.com bounce?").assistant("The MX record is missing.")
        question = extractor.extract(builder.entries).problems[0].question
        assert "jane@" not in question
        assert "***@example.com" in question

    def test_redaction_precedes_truncation(self, builder: TranscriptBuilder) -> None:
        extractor = ContextExtractor(security_filter=SecurityFilter(), limits=ContentLimits(question=50))
        builder.user("x " * 20 + "password=supersecretvalue123 and more words here?")
        builder.assistant("ok")
        question = extractor.extract(builder.entries).problems[0].question
        assert len(question) <= 50
        assert question.endswith(TRUNCATION_MARKER)
        assert "supersecr" not in question

    def test_without_filter_text_is_kept(self, builder: TranscriptBuilder) -> None:
        builder.user("Why does mail to jane@example.com bounce?").assistant("ok")
        context = ContextExtractor().extract(builder.entries)
        assert "jane@example.com" in context.problems[0].question
        assert context.metadata.redacted_count == 0

    def test_max_context_items(self, builder: TranscriptBuilder) -> None:
        for i in range(5):
            builder.tool("Write", {"file_path": f"/f{i}.py", "content": ""})
        context = ContextExtractor(max_context_items=3).extract(builder.entries)
        assert [i.file for i in context.implementations] == ["/f0.py", "/f1.py", "/f2.py"]


class TestObservationsAndMetadata:
    """Tests for per-session observations and metadata."""

    def test_command_observations(self, extractor: ContextExtractor, builder: TranscriptBuilder) -> None:
        builder.tool("Bash", {"command": "npm test"}).tool("Bash", {"command": "ls -la"})
        builder.tool("Bash", {"command": "npm test"})
        patterns = {(p.type, p.value): p for p in extractor.extract(builder.entries).patterns}
        assert ("command", "ls -la") not in patterns
        npm = patterns[("command", "npm test")]
        assert npm.frequency == 2
        assert npm.first_seen < npm.last_seen
        assert npm.examples == ["npm test"]

    def test_code_observation(self, extractor: ContextExtractor, builder: TranscriptBuilder) -> None:
        builder.tool("Edit", {"file_path": "/src/a.py"}).tool("Edit", {"file_path": "/src/a.py"})
        patterns = extractor.extract(builder.entries).patterns
        assert [(p.type, p.value, p.frequency) for p in patterns] == [("code", "Edit:/src/a.py", 2)]

    def test_normalize_command(self) -> None:
        assert normalize_command("pytest /repo/tests/test_a.py -k 12") == "pytest <path> -k <number>"
        assert len(normalize_command("echo " + "a" * 100)) == 50

    def test_metadata(self, extractor: ContextExtractor, builder: TranscriptBuilder) -> None:
        builder.user("Please add logging")
        builder.tool("Write", {"file_path": "/src/log.py", "content": "x"})
        builder.tool("Bash", {"command": "pytest"})
        builder.assistant("Added logging.")
        context = extractor.extract(builder.entries, extracted_at="preCompact", skipped_lines=2)

        assert context.session_id == SESSION
        assert context.project_path == CWD
        assert context.extracted_at == "preCompact"
        metadata = context.metadata
        assert metadata.entry_count == 4
        assert metadata.duration == 3000
        assert metadata.tools_used == ["Write", "Bash"]
        assert metadata.files_modified == ["/src/log.py"]
        assert metadata.skipped_lines == 2
        assert metadata.relevance_score == max(
            [p.relevance for p in context.problems] + [i.relevance for i in context.implementations]
        )

    def test_explicit_project_path(self, extractor: ContextExtractor, builder: TranscriptBuilder) -> None:
        builder.user("hello")
        assert extractor.extract(builder.entries, project_path="/other").project_path == "/other"

    def test_empty_transcript(self, extractor: ContextExtractor) -> None:
        context = extractor.extract([])
        assert context.session_id.startswith("session-")
        assert context.project_path == "unknown"
        assert context.problems == []
        assert context.implementations == []
        assert context.decisions == []
        assert context.patterns == []
        assert context.metadata.relevance_score == 0.0
        assert context.metadata.entry_count == 0
        assert context.metadata.duration == 0

    def test_extraction_is_repeatable(self, extractor: ContextExtractor, builder: TranscriptBuilder) -> None:
        builder.user("Why is auth failing?").assistant("Token expired.")
        first = extractor.extract(builder.entries)
        second = extractor.extract(builder.entries)
        assert first.problems == second.problems
