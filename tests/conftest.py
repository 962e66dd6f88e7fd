from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from tern.agent.context import AgentContext
from tern.agent.loop import AgentLoop
from tern.bus import MessageBus
from tern.errors import ProviderError
from tern.providers.base import RetryPolicy
from tern.session.store import InMemorySessionStore
from tern.tools.registry import ToolRegistry
from tern.tools.schema import ToolInput, ToolSchema
from tern.types import ConversationTurn, ProviderResult


class ListDirInput(ToolInput):
    path: str


LIST_DIR = ToolSchema(name="list_dir", description="List a directory", input_model=ListDirInput)


@dataclass
class ScriptedProvider:
    """Returns (or raises) scripted results in order and records each call."""

    script: list[ProviderResult | ProviderError]
    calls: list[list[ConversationTurn]] = field(default_factory=list)
    system_prompts: list[str | None] = field(default_factory=list)

    async def complete(
        self,
        history: Sequence[ConversationTurn],
        tools: Sequence[ToolSchema],
        *,
        system_prompt: str | None = None,
    ) -> ProviderResult:
        self.calls.append(list(history))
        self.system_prompts.append(system_prompt)
        item = self.script.pop(0)
        if isinstance(item, ProviderError):
            raise item
        return item


@dataclass
class RecordingSleep:
    delays: list[float] = field(default_factory=list)

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@dataclass
class ListDirHandler:
    calls: list[dict[str, object]] = field(default_factory=list)

    def __call__(self, params: ListDirInput) -> str:
        self.calls.append(params.model_dump())
        return "<listing>"


@pytest.fixture
def list_dir_handler() -> ListDirHandler:
    return ListDirHandler()


@pytest.fixture
def registry(list_dir_handler: ListDirHandler) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(LIST_DIR, list_dir_handler)
    return registry


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def bus() -> MessageBus:
    return MessageBus()


@pytest.fixture
def make_loop(bus: MessageBus, registry: ToolRegistry, store: InMemorySessionStore, tmp_path: Path):
    def _make(provider: ScriptedProvider, **kwargs: object) -> AgentLoop:
        kwargs.setdefault("retry_policy", RetryPolicy.immediate(3))
        context = AgentContext(registry=registry, store=store, workspace=tmp_path)
        return AgentLoop(bus=bus, provider=provider, context=context, **kwargs)  # type: ignore[arg-type]

    return _make
