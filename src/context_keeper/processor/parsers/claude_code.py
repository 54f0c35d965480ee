"""Parser for Claude Code conversation transcripts.

Claude Code stores conversations as JSONL files at:
    ~/.claude/projects/<encoded-project-path>/<session-id>.jsonl

Each line is a JSON object with:
- type: "user", "assistant", "system" or bookkeeping kinds ("queue-operation", "summary")
- message.role: "user" or "assistant"
- message.content: string or array of content blocks (text, tool_use, tool_result)
- timestamp: ISO 8601 timestamp
- sessionId: UUID session identifier
- cwd: Working directory (project path)

Flattened exports written by hooks use top-level ``toolUse``/``toolResult``
objects and snake_case variants of the same keys; both shapes normalize to
the same TranscriptEntry sequence.
"""

from typing import Any

from context_keeper.models import EntryKind, Message, ToolResult, ToolUse, TranscriptEntry
from context_keeper.processor.parsers.base import Parser

KIND_ALIASES: dict[str, EntryKind] = {
    "user": EntryKind.USER,
    "human": EntryKind.USER,
    "assistant": EntryKind.ASSISTANT,
    "system": EntryKind.SYSTEM,
    "tool_use": EntryKind.TOOL_USE,
    "tool-use": EntryKind.TOOL_USE,
    "tooluse": EntryKind.TOOL_USE,
    "tool-invocation": EntryKind.TOOL_USE,
    "tool_invocation": EntryKind.TOOL_USE,
    "tool": EntryKind.TOOL_USE,
    "tool_result": EntryKind.TOOL_USE,
}


def _first(record: dict[str, Any], *keys: str) -> Any:
    """Return the first present, non-None value among key spellings."""
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


def _as_text(value: Any) -> str:
    """Flatten tool output (string or list of text blocks) into a string."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        parts: list[str] = []
        for item in value:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
        return "\n".join(parts)
    return str(value)


class ClaudeCodeParser(Parser):
    """Parser for Claude Code JSONL transcript files."""

    source_name = "claude_code"

    def parse_record(self, record: dict[str, Any]) -> list[TranscriptEntry] | None:
        """Normalize one Claude Code record.

        Content blocks are split out: text becomes the message text, each
        tool_use block and each tool_result block becomes its own tool_use
        entry so later passes never have to look inside message content.

        Args:
            record: Decoded JSONL record

        Returns:
            Entries in block order, or None for record kinds that are ignored
        """
        raw_kind = _first(record, "type", "kind")
        kind = KIND_ALIASES.get(str(raw_kind).lower()) if raw_kind is not None else None
        if kind is None:
            return None

        session_id = str(_first(record, "sessionId", "session_id", "sessionID") or "")
        timestamp = str(record.get("timestamp") or "")
        cwd = str(record.get("cwd") or "")

        def make(**kwargs: Any) -> TranscriptEntry:
            return TranscriptEntry(timestamp=timestamp, session_id=session_id, cwd=cwd, **kwargs)

        entries: list[TranscriptEntry] = []

        message = record.get("message")
        if isinstance(message, dict):
            role = str(message.get("role") or kind.value)
            content = _first(message, "content", "text")
            text, block_entries = self._split_content(content, make)
            if text and kind is not EntryKind.TOOL_USE:
                entries.append(make(kind=kind, message=Message(role=role, text=text)))
            entries.extend(block_entries)
        elif isinstance(message, str) and message and kind is not EntryKind.TOOL_USE:
            entries.append(make(kind=kind, message=Message(role=kind.value, text=message)))

        raw_tool_use = _first(record, "toolUse", "tool_use")
        raw_tool_result = _first(record, "toolResult", "tool_result")
        tool_use = self._tool_use(raw_tool_use)
        tool_result = self._tool_result(raw_tool_result)

        if tool_use is not None or tool_result is not None:
            entries.append(make(kind=EntryKind.TOOL_USE, tool_use=tool_use, tool_result=tool_result))
        elif kind is EntryKind.TOOL_USE and not entries:
            # Bare tool record without payloads; keep it so entry counts stay honest
            entries.append(make(kind=EntryKind.TOOL_USE))

        return entries

    def _split_content(self, content: Any, make: Any) -> tuple[str, list[TranscriptEntry]]:
        """Extract message text and tool entries from a content field.

        Args:
            content: Either a string or array of content blocks
            make: Factory binding the record's timestamp/session/cwd

        Returns:
            Tuple of (joined text, tool entries in block order)
        """
        if content is None:
            return "", []

        if isinstance(content, str):
            return content, []

        if not isinstance(content, list):
            return "", []

        text_parts: list[str] = []
        tool_entries: list[TranscriptEntry] = []
        for block in content:
            if isinstance(block, str):
                text_parts.append(block)
                continue
            if not isinstance(block, dict):
                continue

            block_type = block.get("type")
            if block_type == "text":
                text_parts.append(str(block.get("text", "")))
            elif block_type == "tool_use":
                tool_entries.append(
                    make(
                        kind=EntryKind.TOOL_USE,
                        tool_use=ToolUse.from_raw(str(block.get("name") or "unknown"), block.get("input")),
                    )
                )
            elif block_type == "tool_result":
                output = _as_text(block.get("content"))
                is_error = bool(block.get("is_error", False))
                tool_entries.append(
                    make(
                        kind=EntryKind.TOOL_USE,
                        tool_result=ToolResult(output="" if is_error else output, error=output if is_error else ""),
                    )
                )

        text = "\n".join(part for part in text_parts if part)
        return text, tool_entries

    def _tool_use(self, raw: Any) -> ToolUse | None:
        if not isinstance(raw, dict):
            return None
        return ToolUse.from_raw(str(raw.get("name") or "unknown"), raw.get("input"))

    def _tool_result(self, raw: Any) -> ToolResult | None:
        if isinstance(raw, str):
            return ToolResult(output=raw)
        if not isinstance(raw, dict):
            return None
        error = _as_text(raw.get("error"))
        output = _as_text(_first(raw, "output", "content", "stdout"))
        if not error and raw.get("is_error"):
            error, output = output, ""
        return ToolResult(output=output, error=error)
