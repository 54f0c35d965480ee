"""Typed tool-invocation payloads.

Tool inputs in a transcript are free-form JSON objects. Each known tool gets
its own dataclass; anything else is kept verbatim in ``GenericInput``.
``parse_tool_input`` picks the variant from the tool name.
"""

from dataclasses import dataclass, field
from typing import Any, Callable

FILE_MUTATING_TOOLS = frozenset({"Write", "Edit", "MultiEdit", "NotebookEdit"})
SHELL_TOOLS = frozenset({"Bash"})
TODO_TOOLS = frozenset({"TodoWrite"})
SEARCH_TOOLS = frozenset({"Grep", "Glob", "Search"})


def _file_path(raw: dict[str, Any]) -> str:
    """Return the target path using the field names tools have used over time."""
    for key in ("file_path", "filePath", "path", "notebook_path"):
        value = raw.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _str(raw: dict[str, Any], key: str) -> str:
    value = raw.get(key)
    return value if isinstance(value, str) else ""


@dataclass
class WriteInput:
    file_path: str = ""
    content: str = ""

    @property
    def target_file(self) -> str | None:
        return self.file_path or None

    def to_dict(self) -> dict[str, Any]:
        return {"file_path": self.file_path, "content": self.content}


@dataclass
class EditInput:
    file_path: str = ""
    old_string: str = ""
    new_string: str = ""
    replace_all: bool = False

    @property
    def target_file(self) -> str | None:
        return self.file_path or None

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_path": self.file_path,
            "old_string": self.old_string,
            "new_string": self.new_string,
            "replace_all": self.replace_all,
        }


@dataclass
class MultiEditInput:
    file_path: str = ""
    edits: list[EditInput] = field(default_factory=list)

    @property
    def target_file(self) -> str | None:
        return self.file_path or None

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_path": self.file_path,
            "edits": [
                {
                    "old_string": edit.old_string,
                    "new_string": edit.new_string,
                    "replace_all": edit.replace_all,
                }
                for edit in self.edits
            ],
        }


@dataclass
class NotebookEditInput:
    notebook_path: str = ""
    new_source: str = ""
    edit_mode: str = "replace"

    @property
    def target_file(self) -> str | None:
        return self.notebook_path or None

    def to_dict(self) -> dict[str, Any]:
        return {
            "notebook_path": self.notebook_path,
            "new_source": self.new_source,
            "edit_mode": self.edit_mode,
        }


@dataclass
class BashInput:
    command: str = ""
    description: str = ""

    @property
    def target_file(self) -> str | None:
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"command": self.command, "description": self.description}


@dataclass
class TodoWriteInput:
    todos: list[dict[str, Any]] = field(default_factory=list)

    @property
    def target_file(self) -> str | None:
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"todos": list(self.todos)}


@dataclass
class ReadInput:
    file_path: str = ""

    @property
    def target_file(self) -> str | None:
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"file_path": self.file_path}


@dataclass
class SearchInput:
    pattern: str = ""
    path: str = ""

    @property
    def target_file(self) -> str | None:
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"pattern": self.pattern, "path": self.path}


@dataclass
class GenericInput:
    """Fallback for tools without a dedicated payload type."""

    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def target_file(self) -> str | None:
        return None

    def to_dict(self) -> dict[str, Any]:
        return dict(self.payload)


ToolInput = (
    WriteInput
    | EditInput
    | MultiEditInput
    | NotebookEditInput
    | BashInput
    | TodoWriteInput
    | ReadInput
    | SearchInput
    | GenericInput
)


def _parse_edit(raw: dict[str, Any]) -> EditInput:
    return EditInput(
        file_path=_file_path(raw),
        old_string=_str(raw, "old_string"),
        new_string=_str(raw, "new_string") or _str(raw, "new_content"),
        replace_all=bool(raw.get("replace_all", False)),
    )


def _parse_multi_edit(raw: dict[str, Any]) -> MultiEditInput:
    edits = raw.get("edits")
    return MultiEditInput(
        file_path=_file_path(raw),
        edits=[_parse_edit(edit) for edit in edits if isinstance(edit, dict)]
        if isinstance(edits, list)
        else [],
    )


def _parse_todos(raw: dict[str, Any]) -> TodoWriteInput:
    todos = raw.get("todos")
    return TodoWriteInput(
        todos=[todo for todo in todos if isinstance(todo, dict)] if isinstance(todos, list) else []
    )


_PARSERS: dict[str, Callable[[dict[str, Any]], ToolInput]] = {
    "Write": lambda raw: WriteInput(file_path=_file_path(raw), content=_str(raw, "content")),
    "Edit": _parse_edit,
    "MultiEdit": _parse_multi_edit,
    "NotebookEdit": lambda raw: NotebookEditInput(
        notebook_path=_file_path(raw),
        new_source=_str(raw, "new_source"),
        edit_mode=_str(raw, "edit_mode") or "replace",
    ),
    "Bash": lambda raw: BashInput(command=_str(raw, "command"), description=_str(raw, "description")),
    "TodoWrite": _parse_todos,
    "Read": lambda raw: ReadInput(file_path=_file_path(raw)),
    "Grep": lambda raw: SearchInput(pattern=_str(raw, "pattern"), path=_str(raw, "path")),
    "Glob": lambda raw: SearchInput(pattern=_str(raw, "pattern"), path=_str(raw, "path")),
    "Search": lambda raw: SearchInput(pattern=_str(raw, "pattern"), path=_str(raw, "path")),
}


def parse_tool_input(name: str, raw: Any) -> ToolInput:
    """Build the typed payload for a tool call.

    Args:
        name: Tool name as it appears in the transcript
        raw: Raw input object (anything that is not a dict is treated as empty)

    Returns:
        The dataclass variant registered for ``name``, or GenericInput
    """
    if not isinstance(raw, dict):
        raw = {}
    parser = _PARSERS.get(name)
    if parser is None:
        return GenericInput(payload=dict(raw))
    return parser(raw)
