"""Runtime wiring: builds the loop from settings and runs the bus tasks."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import suppress

from loguru import logger

from tern.agent.context import AgentContext
from tern.agent.loop import AgentLoop
from tern.agent.turn_guard import TurnGuard
from tern.bus import MessageBus, OutboundHandler
from tern.config import Settings
from tern.errors import ConfigurationError
from tern.events import InboundMessage, OutboundMessage
from tern.prompt import PromptBuilder
from tern.providers.base import Provider, RetryPolicy
from tern.providers.openai import OpenAIProvider
from tern.providers.registry import resolve_provider
from tern.session.store import FileSessionStore, SessionStore
from tern.tools.builtin import register_builtin_tools
from tern.tools.registry import ToolRegistry


def build_provider(settings: Settings) -> OpenAIProvider:
    """Build the Chat Completions provider, failing early on missing credentials."""
    resolved = resolve_provider(settings)
    local = resolved.spec is not None and resolved.spec.is_local
    if local and not resolved.api_base:
        raise ConfigurationError(f"Provider '{resolved.name}' needs TERN_API_BASE pointing at the local server.")
    if not resolved.api_key and not settings.api_base and not local:
        raise ConfigurationError(
            "API key not configured. Set TERN_API_KEY or a provider key such as TERN_OPENROUTER_API_KEY "
            "(or TERN_API_BASE for a local server)."
        )
    logger.debug(
        "provider.resolved name={} model={} api_base={}",
        resolved.name,
        resolved.model,
        resolved.api_base or "(default)",
    )
    return OpenAIProvider(
        model=resolved.model,
        api_key=resolved.api_key or "EMPTY",
        api_base=resolved.api_base,
        max_tokens=settings.max_tokens,
        temperature=resolved.temperature,
    )


class AgentRuntime:
    """Owns the bus, the loop task and the outbound dispatcher task."""

    def __init__(
        self,
        settings: Settings,
        *,
        provider: Provider | None = None,
        store: SessionStore | None = None,
        registry: ToolRegistry | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.settings = settings
        self.workspace = settings.resolve_workspace()
        self.bus = MessageBus()
        if registry is None:
            registry = register_builtin_tools(ToolRegistry(), settings, self.workspace)
        self.registry = registry
        self.store = store or FileSessionStore(settings.sessions_path)
        self.context = AgentContext(
            registry=self.registry,
            store=self.store,
            workspace=self.workspace,
            prompt=PromptBuilder(self.workspace),
        )
        provider = provider or build_provider(settings)
        self.loop = AgentLoop(
            bus=self.bus,
            provider=provider,
            context=self.context,
            retry_policy=retry_policy
            or RetryPolicy(
                max_attempts=settings.retry_max_attempts,
                base_delay=settings.retry_base_delay,
                max_delay=settings.retry_max_delay,
            ),
            max_rounds=settings.max_rounds,
            provider_timeout_seconds=settings.provider_timeout_seconds,
            tool_timeout_seconds=settings.tool_timeout_seconds,
            emit_tool_notices=settings.emit_tool_notices,
            turn_guard=TurnGuard(provider, timeout_seconds=settings.provider_timeout_seconds)
            if settings.turn_guard
            else None,
        )
        self._tasks: list[asyncio.Task[None]] = []
        self._waiters: dict[str, asyncio.Future[OutboundMessage]] = {}
        self.bus.on_outbound(self._resolve_waiter)

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        if self._tasks:
            return
        self.workspace.mkdir(parents=True, exist_ok=True)
        self._tasks = [
            asyncio.create_task(self.loop.run(), name="tern.agent.loop"),
            asyncio.create_task(self.bus.dispatch_outbound(), name="tern.bus.outbound"),
        ]

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
        for waiter in self._waiters.values():
            waiter.cancel()
        self._waiters.clear()

    async def __aenter__(self) -> AgentRuntime:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def subscribe(self, handler: OutboundHandler) -> Callable[[], None]:
        return self.bus.on_outbound(handler)

    async def submit(self, session_id: str, text: str) -> OutboundMessage:
        """Publish one inbound message and wait for its final or error reply."""
        if not self._tasks:
            raise RuntimeError("AgentRuntime is not started. Call start() first.")
        if session_id in self._waiters:
            raise RuntimeError(f"session {session_id} already has a message in flight")
        waiter: asyncio.Future[OutboundMessage] = asyncio.get_running_loop().create_future()
        self._waiters[session_id] = waiter
        try:
            await self.bus.publish_inbound(InboundMessage(session_id=session_id, text=text))
            return await waiter
        finally:
            self._waiters.pop(session_id, None)

    async def _resolve_waiter(self, message: OutboundMessage) -> None:
        if not message.terminal:
            return
        waiter = self._waiters.get(message.session_id)
        if waiter is None or waiter.done():
            logger.debug("runtime.outbound.unclaimed session={} kind={}", message.session_id, message.kind)
            return
        waiter.set_result(message)
