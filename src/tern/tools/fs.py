"""Filesystem tools."""

from __future__ import annotations

from pathlib import Path

from tern.errors import ToolExecutionError
from tern.tools.inputs import EditFileInput, ListDirInput, ReadFileInput, WriteFileInput
from tern.tools.schema import ToolSchema

MAX_LIST_ENTRIES = 500

READ_FILE = ToolSchema("read_file", "Read a text file with optional line offset and limit", ReadFileInput)
WRITE_FILE = ToolSchema("write_file", "Write content to a file, creating parent directories", WriteFileInput)
EDIT_FILE = ToolSchema("edit_file", "Replace text in a file", EditFileInput)
LIST_DIR = ToolSchema("list_dir", "List the entries of a directory", ListDirInput)


def resolve_path(workspace: Path, raw_path: str, *, restrict: bool = False) -> Path:
    path = Path(raw_path).expanduser()
    if not path.is_absolute():
        path = workspace / path
    path = path.resolve()
    if restrict and not path.is_relative_to(workspace.resolve()):
        raise ToolExecutionError(f"path is outside the workspace: {raw_path}")
    return path


class FileTools:
    """File tools bound to one workspace."""

    def __init__(self, workspace: Path, *, restrict: bool = False) -> None:
        self.workspace = workspace
        self.restrict = restrict

    def _path(self, raw_path: str) -> Path:
        return resolve_path(self.workspace, raw_path, restrict=self.restrict)

    def read_file(self, params: ReadFileInput) -> str:
        file_path = self._path(params.path)
        try:
            lines = file_path.read_text(encoding="utf-8").splitlines()
        except (OSError, UnicodeError) as exc:
            raise ToolExecutionError(str(exc)) from exc

        offset = params.offset
        limit = len(lines) if params.limit is None else params.limit
        selected = lines[offset : offset + limit]
        if not selected:
            return "(empty)"
        return "\n".join(f"{idx:4}| {line}" for idx, line in enumerate(selected, start=offset + 1))

    def write_file(self, params: WriteFileInput) -> str:
        file_path = self._path(params.path)
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_text(params.content, encoding="utf-8")
        except OSError as exc:
            raise ToolExecutionError(str(exc)) from exc
        return f"wrote {len(params.content)} chars to {file_path}"

    def edit_file(self, params: EditFileInput) -> str:
        file_path = self._path(params.path)
        try:
            content = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeError) as exc:
            raise ToolExecutionError(str(exc)) from exc

        old, new = params.old, params.new
        if old not in content:
            raise ToolExecutionError("old text not found")
        count = content.count(old)
        if count > 1 and not params.all:
            raise ToolExecutionError(f"old text appears {count} times, must be unique (use all=true)")

        updated = content.replace(old, new) if params.all else content.replace(old, new, 1)
        try:
            file_path.write_text(updated, encoding="utf-8")
        except OSError as exc:
            raise ToolExecutionError(str(exc)) from exc
        return "ok"

    def list_dir(self, params: ListDirInput) -> str:
        base = self._path(params.path)
        if not base.is_dir():
            raise ToolExecutionError(f"not a directory: {base}")
        try:
            entries = sorted(base.iterdir(), key=lambda item: (not item.is_dir(), item.name))
        except OSError as exc:
            raise ToolExecutionError(str(exc)) from exc
        if not entries:
            return "(empty)"
        rows = [f"{entry.name}/" if entry.is_dir() else entry.name for entry in entries[:MAX_LIST_ENTRIES]]
        if len(entries) > MAX_LIST_ENTRIES:
            rows.append(f"... {len(entries) - MAX_LIST_ENTRIES} more")
        return "\n".join(rows)
