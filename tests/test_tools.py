"""Tests for typed tool payloads."""

import pytest

from context_keeper.tools import (
    BashInput,
    EditInput,
    GenericInput,
    MultiEditInput,
    NotebookEditInput,
    ReadInput,
    SearchInput,
    TodoWriteInput,
    WriteInput,
    parse_tool_input,
)


class TestParseToolInput:
    """Tests for parse_tool_input."""

    def test_write(self) -> None:
        payload = parse_tool_input("Write", {"file_path": "/src/a.py", "content": "x = 1"})
        assert payload == WriteInput(file_path="/src/a.py", content="x = 1")
        assert payload.target_file == "/src/a.py"

    def test_edit_accepts_camel_case_path(self) -> None:
        payload = parse_tool_input("Edit", {"filePath": "/src/a.py", "old_string": "a", "new_string": "b"})
        assert isinstance(payload, EditInput)
        assert payload.target_file == "/src/a.py"
        assert payload.new_string == "b"

    def test_multi_edit(self) -> None:
        payload = parse_tool_input(
            "MultiEdit",
            {
                "file_path": "/src/a.py",
                "edits": [{"old_string": "a", "new_string": "b"}, "junk", {"new_string": "c"}],
            },
        )
        assert isinstance(payload, MultiEditInput)
        assert [e.new_string for e in payload.edits] == ["b", "c"]

    def test_notebook_edit(self) -> None:
        payload = parse_tool_input("NotebookEdit", {"notebook_path": "/nb.ipynb", "new_source": "print(1)"})
        assert isinstance(payload, NotebookEditInput)
        assert payload.target_file == "/nb.ipynb"
        assert payload.edit_mode == "replace"

    def test_bash_has_no_target_file(self) -> None:
        payload = parse_tool_input("Bash", {"command": "npm test", "description": "run tests"})
        assert payload == BashInput(command="npm test", description="run tests")
        assert payload.target_file is None

    def test_todo_write_drops_non_objects(self) -> None:
        payload = parse_tool_input("TodoWrite", {"todos": [{"content": "a"}, 3]})
        assert payload == TodoWriteInput(todos=[{"content": "a"}])

    def test_read_is_not_a_mutation(self) -> None:
        payload = parse_tool_input("Read", {"file_path": "/a.py"})
        assert isinstance(payload, ReadInput)
        assert payload.target_file is None

    @pytest.mark.parametrize("name", ["Grep", "Glob"])
    def test_search_tools(self, name: str) -> None:
        payload = parse_tool_input(name, {"pattern": "TODO", "path": "src"})
        assert payload == SearchInput(pattern="TODO", path="src")

    def test_unknown_tool_falls_back_to_generic(self) -> None:
        payload = parse_tool_input("WebFetch", {"url": "https://example.com"})
        assert isinstance(payload, GenericInput)
        assert payload.to_dict() == {"url": "https://example.com"}
        assert payload.target_file is None

    def test_non_dict_input_treated_as_empty(self) -> None:
        payload = parse_tool_input("Write", "oops")
        assert payload == WriteInput()
        assert payload.target_file is None

    def test_wrong_field_types_default(self) -> None:
        payload = parse_tool_input("Bash", {"command": ["not", "a", "string"]})
        assert payload == BashInput()
