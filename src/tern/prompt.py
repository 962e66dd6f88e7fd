"""System prompt assembly from workspace files."""

from __future__ import annotations

import platform
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

from tern.memory import MemoryStore
from tern.tools.schema import ToolSchema

BOOTSTRAP_FILES = ("AGENTS.md", "SOUL.md", "USER.md")
MAX_BOOTSTRAP_CHARS = 12_000

BASE_PROMPT = (
    "You are tern, a helpful assistant running in a local workspace.\n"
    "Use tool calls for actions: reading and writing files, running shell commands, searching and fetching "
    "web pages, and messaging the user. When enough evidence is collected, reply in plain natural language.\n"
    "If a tool returns an error, read it and retry with corrected arguments when it makes sense."
)


def truncate_middle(content: str, limit: int = MAX_BOOTSTRAP_CHARS, *, label: str = "file") -> str:
    if len(content) <= limit:
        return content

    marker = f"\n\n[{label} truncated: middle content removed]\n\n"
    head_len = (limit - len(marker)) // 2
    tail_len = limit - len(marker) - head_len
    if head_len <= 0 or tail_len <= 0:
        return content[:limit]
    return f"{content[:head_len]}{marker}{content[-tail_len:]}"


class PromptBuilder:
    """Builds the system prompt for one workspace."""

    def __init__(self, workspace: Path, *, base_prompt: str = BASE_PROMPT) -> None:
        self.workspace = workspace
        self.base_prompt = base_prompt.strip()
        self.memory = MemoryStore(workspace)

    def read_bootstrap(self) -> str:
        blocks: list[str] = []
        for name in BOOTSTRAP_FILES:
            path = self.workspace / name
            if not path.is_file():
                continue
            try:
                content = path.read_text(encoding="utf-8").strip()
            except OSError:
                continue
            if content:
                blocks.append(f"## {name}\n\n{truncate_middle(content, label=name)}")
        return "\n\n".join(blocks)

    def build(self, tools: Sequence[ToolSchema] = (), *, now: datetime | None = None) -> str:
        now = now or datetime.now().astimezone()
        blocks = [
            self.base_prompt,
            "<runtime>\n"
            f"time: {now.strftime('%Y-%m-%d %H:%M (%A) %Z')}\n"
            f"platform: {platform.system()} {platform.machine()}\n"
            f"workspace: {self.workspace}\n"
            "</runtime>",
        ]
        if tools:
            rows = "\n".join(f"- {schema.name}: {schema.description}" for schema in tools)
            blocks.append(f"<tools>\n{rows}\n</tools>")
        if bootstrap := self.read_bootstrap():
            blocks.append(bootstrap)
        if memory := self.memory.context():
            blocks.append(f"# Memory\n\n{memory}")
        return "\n\n".join(block for block in blocks if block.strip())
