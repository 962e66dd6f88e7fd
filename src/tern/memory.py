"""Workspace memory notes."""

from __future__ import annotations

from datetime import date
from pathlib import Path

LONG_TERM_TEMPLATE = "# Long-term Memory\n\nThis file stores important information across sessions.\n"


class MemoryStore:
    """Long-term notes in ``memory/MEMORY.md`` plus one file of notes per day."""

    def __init__(self, workspace: Path) -> None:
        self.workspace = workspace
        self.memory_dir = workspace / "memory"
        self.memory_file = self.memory_dir / "MEMORY.md"

    def today_file(self, today: date | None = None) -> Path:
        return self.memory_dir / f"{(today or date.today()).isoformat()}.md"

    def read_today(self, today: date | None = None) -> str:
        return _read(self.today_file(today))

    def append_today(self, content: str, today: date | None = None) -> None:
        path = self.today_file(today)
        self.memory_dir.mkdir(parents=True, exist_ok=True)
        existing = _read(path)
        if existing:
            path.write_text(f"{existing}\n{content}", encoding="utf-8")
        else:
            path.write_text(f"# {(today or date.today()).isoformat()}\n\n{content}", encoding="utf-8")

    def read_long_term(self) -> str:
        return _read(self.memory_file)

    def write_long_term(self, content: str) -> None:
        self.memory_dir.mkdir(parents=True, exist_ok=True)
        self.memory_file.write_text(content, encoding="utf-8")

    def context(self, today: date | None = None) -> str:
        parts: list[str] = []
        if long_term := self.read_long_term().strip():
            parts.append(f"## Long-term Memory\n{long_term}")
        if notes := self.read_today(today).strip():
            parts.append(f"## Today's Notes\n{notes}")
        return "\n\n".join(parts)


def _read(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeError):
        return ""
