"""Explicit dependencies handed to the agent loop."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from tern.prompt import PromptBuilder
from tern.session.store import SessionStore
from tern.tools.registry import ToolRegistry


@dataclass(frozen=True)
class AgentContext:
    """Registry and store handles plus workspace information.

    The loop only reads the registry and is the sole writer of each session it
    processes.
    """

    registry: ToolRegistry
    store: SessionStore
    workspace: Path
    prompt: PromptBuilder | None = None

    def system_prompt(self) -> str | None:
        if self.prompt is None:
            return None
        return self.prompt.build(self.registry.schemas())
