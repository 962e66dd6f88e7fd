from datetime import date, datetime
from pathlib import Path

from tern.memory import MemoryStore
from tern.prompt import PromptBuilder, truncate_middle
from tern.tools.schema import ToolSchema

TODAY = date(2026, 1, 2)


def test_memory_daily_notes_append(tmp_path: Path) -> None:
    memory = MemoryStore(tmp_path)

    memory.append_today("first", today=TODAY)
    memory.append_today("second", today=TODAY)

    assert memory.today_file(TODAY).name == "2026-01-02.md"
    assert memory.read_today(TODAY) == "# 2026-01-02\n\nfirst\nsecond"


def test_memory_context_combines_sections(tmp_path: Path) -> None:
    memory = MemoryStore(tmp_path)
    assert memory.context(TODAY) == ""

    memory.write_long_term("likes tea")
    memory.append_today("met alice", today=TODAY)

    context = memory.context(TODAY)
    assert context.startswith("## Long-term Memory\nlikes tea")
    assert "## Today's Notes\n# 2026-01-02\n\nmet alice" in context


def test_truncate_middle_keeps_head_and_tail() -> None:
    content = "a" * 100 + "b" * 100

    truncated = truncate_middle(content, 120, label="AGENTS.md")

    assert len(truncated) == 120
    assert truncated.startswith("a")
    assert truncated.endswith("b")
    assert "[AGENTS.md truncated: middle content removed]" in truncated
    assert truncate_middle("short", 120) == "short"


def test_prompt_includes_tools_bootstrap_and_memory(tmp_path: Path) -> None:
    (tmp_path / "AGENTS.md").write_text("Always answer in haiku.", encoding="utf-8")
    (tmp_path / "USER.md").write_text("   ", encoding="utf-8")
    MemoryStore(tmp_path).write_long_term("user prefers metric units")
    tools = [ToolSchema(name="list_dir", description="List a directory")]

    prompt = PromptBuilder(tmp_path).build(tools, now=datetime(2026, 1, 2, 9, 30))

    assert "time: 2026-01-02 09:30 (Friday)" in prompt
    assert f"workspace: {tmp_path}" in prompt
    assert "<tools>\n- list_dir: List a directory\n</tools>" in prompt
    assert "## AGENTS.md\n\nAlways answer in haiku." in prompt
    assert "## USER.md" not in prompt
    assert "user prefers metric units" in prompt


def test_prompt_without_workspace_files(tmp_path: Path) -> None:
    prompt = PromptBuilder(tmp_path, base_prompt="base").build()

    assert prompt.startswith("base\n\n<runtime>")
    assert "<tools>" not in prompt
    assert "# Memory" not in prompt
