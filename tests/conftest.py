"""Shared fixtures for transcript-level tests."""

import json
from pathlib import Path
from typing import Any, Callable

import pytest

CWD = "/home/user/webapp"


def user_record(session_id: str, timestamp: str, text: str) -> dict[str, Any]:
    return {
        "type": "user",
        "cwd": CWD,
        "sessionId": session_id,
        "timestamp": timestamp,
        "message": {"role": "user", "content": text},
    }


def assistant_record(
    session_id: str,
    timestamp: str,
    text: str = "",
    tools: list[tuple[str, dict[str, Any]]] | None = None,
) -> dict[str, Any]:
    content: list[dict[str, Any]] = [{"type": "text", "text": text}] if text else []
    for i, (name, tool_input) in enumerate(tools or []):
        content.append({"type": "tool_use", "id": f"toolu_{i}", "name": name, "input": tool_input})
    return {
        "type": "assistant",
        "cwd": CWD,
        "sessionId": session_id,
        "timestamp": timestamp,
        "message": {"role": "assistant", "content": content},
    }


def tool_result_record(session_id: str, timestamp: str, output: str, is_error: bool = False) -> dict[str, Any]:
    return {
        "type": "user",
        "cwd": CWD,
        "sessionId": session_id,
        "timestamp": timestamp,
        "message": {
            "role": "user",
            "content": [{"type": "tool_result", "tool_use_id": "toolu_0", "content": output, "is_error": is_error}],
        },
    }


def default_records(session_id: str, question: str) -> list[dict[str, Any]]:
    """Question, an edit, its result, then the answer and a test run (5 entries)."""
    return [
        user_record(session_id, "2026-05-01T10:00:00.000Z", question),
        assistant_record(
            session_id,
            "2026-05-01T10:00:02.000Z",
            tools=[("Edit", {"file_path": f"{CWD}/src/cache.py", "old_string": "1", "new_string": "5"})],
        ),
        tool_result_record(session_id, "2026-05-01T10:00:03.000Z", "ok"),
        assistant_record(
            session_id,
            "2026-05-01T10:00:05.000Z",
            "The root cause was a short socket timeout, so I raised it.",
            tools=[("Bash", {"command": f"pytest {CWD}/tests/test_cache.py -q"})],
        ),
    ]


@pytest.fixture
def write_transcript(tmp_path: Path) -> Callable[..., Path]:
    """Write a Claude Code JSONL transcript and return its path."""

    def write(
        session_id: str = "sess-1",
        records: list[dict[str, Any]] | None = None,
        question: str = "Why does the redis cache time out?",
    ) -> Path:
        path = tmp_path / "transcripts" / f"{session_id}.jsonl"
        path.parent.mkdir(parents=True, exist_ok=True)
        lines = records if records is not None else default_records(session_id, question)
        path.write_text("".join(json.dumps(line) + "\n" for line in lines))
        return path

    return write
