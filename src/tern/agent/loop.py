"""Agent execution loop."""

from __future__ import annotations

import asyncio
from enum import StrEnum

from loguru import logger

from tern.agent.context import AgentContext
from tern.agent.turn_guard import TurnGuard
from tern.bus import MessageBus
from tern.errors import (
    MaxRoundsExceeded,
    ProtocolViolation,
    ProviderError,
    ProviderErrorKind,
    ProviderUnavailable,
    ToolError,
    TurnFailure,
)
from tern.events import InboundMessage, OutboundKind, OutboundMessage
from tern.providers.base import Provider, RetryPolicy
from tern.tools.registry import ToolContext
from tern.types import (
    ConversationTurn,
    Failure,
    FinalMessage,
    ProviderResult,
    ToolCallBatch,
    ToolCallRequest,
    ToolOutcome,
    pending_tool_calls,
)

CANCELLED_TOOL_RESULT = Failure("cancelled", "tool call was not executed because the previous turn was interrupted")


class LoopState(StrEnum):
    IDLE = "idle"
    LOADING_HISTORY = "loading_history"
    AWAITING_PROVIDER = "awaiting_provider"
    EXECUTING_TOOLS = "executing_tools"
    FINALIZING = "finalizing"


class AgentLoop:
    """Single-worker loop: one inbound message is processed end to end at a time.

    For each message the loop loads the session, calls the provider, runs any
    requested tools in request order and feeds their results back until the
    provider answers with a final message. Every turn is persisted before the
    next provider call. Terminal failures are reported on the bus as error
    messages; cancellation leaves committed turns in place and publishes nothing.
    """

    def __init__(
        self,
        *,
        bus: MessageBus,
        provider: Provider,
        context: AgentContext,
        retry_policy: RetryPolicy | None = None,
        max_rounds: int | None = None,
        provider_timeout_seconds: float | None = None,
        tool_timeout_seconds: float | None = None,
        emit_tool_notices: bool = False,
        turn_guard: TurnGuard | None = None,
    ) -> None:
        self._bus = bus
        self._provider = provider
        self._context = context
        self._retry = retry_policy or RetryPolicy()
        self._max_rounds = max_rounds
        self._provider_timeout = provider_timeout_seconds
        self._tool_timeout = tool_timeout_seconds
        self._emit_tool_notices = emit_tool_notices
        self._turn_guard = turn_guard
        self._state = LoopState.IDLE

    @property
    def state(self) -> LoopState:
        return self._state

    async def run(self) -> None:
        """Consume inbound messages until cancelled."""
        logger.info("agent.loop.start tools={}", len(self._context.registry.schemas()))
        try:
            while True:
                self._transition(LoopState.IDLE)
                message = await self._bus.next_inbound()
                if message is None:
                    continue
                await self.process(message)
        finally:
            self._state = LoopState.IDLE
            logger.info("agent.loop.stop")

    async def process(self, message: InboundMessage) -> OutboundMessage:
        """Handle one inbound message and publish exactly one final or error message."""
        with logger.contextualize(session=message.session_id):
            try:
                outbound = await self._handle(message)
            except TurnFailure as exc:
                logger.error("agent.turn.failed error_type={} error={}", type(exc).__name__, exc)
                outbound = _failure_message(message.session_id, exc)
            except asyncio.CancelledError:
                logger.warning("agent.turn.cancelled state={}", self._state)
                self._state = LoopState.IDLE
                raise
            except Exception as exc:
                logger.exception("agent.turn.error")
                outbound = _failure_message(message.session_id, exc)
            self._state = LoopState.IDLE
            await self._bus.publish_outbound(outbound)
            return outbound

    async def _handle(self, message: InboundMessage) -> OutboundMessage:
        session_id = message.session_id
        self._transition(LoopState.LOADING_HISTORY)
        history = await self._context.store.load(session_id)
        await self._close_interrupted_calls(session_id, history)
        await self._append(session_id, history, ConversationTurn.user(message.text))

        rounds = 0
        guarded = False
        correction: str | None = None
        while True:
            self._transition(LoopState.AWAITING_PROVIDER)
            result = await self._complete(history, correction)
            correction = None

            if isinstance(result, FinalMessage):
                if not guarded and self._room_for(rounds) and await self._denies_tools(result.text):
                    # The false reply is dropped and the round is retried once with a correction.
                    guarded = True
                    rounds += 1
                    correction = TurnGuard.correction(self._context.registry.names())
                    logger.warning("agent.turn_guard.retry round={}", rounds)
                    continue
                await self._append(session_id, history, ConversationTurn.assistant(result.text))
                self._transition(LoopState.FINALIZING)
                return OutboundMessage(session_id=session_id, text=result.text, kind=OutboundKind.FINAL)

            self._check_batch(result, history)
            if not self._room_for(rounds):
                raise MaxRoundsExceeded(self._max_rounds)
            rounds += 1

            await self._append(session_id, history, ConversationTurn.assistant(result.text, result.requests))
            self._transition(LoopState.EXECUTING_TOOLS)
            for request in result.requests:
                outcome = await self._run_tool(session_id, request)
                await self._append(session_id, history, ConversationTurn.tool_result(request.id, outcome.render()))

    def _room_for(self, rounds: int) -> bool:
        return self._max_rounds is None or rounds < self._max_rounds

    async def _denies_tools(self, text: str) -> bool:
        if self._turn_guard is None:
            return False
        return await self._turn_guard.claims_no_tools(text, self._context.registry.names())

    async def _complete(self, history: list[ConversationTurn], correction: str | None = None) -> ProviderResult:
        schemas = self._context.registry.schemas()
        system_prompt = self._context.system_prompt()
        if correction:
            system_prompt = f"{system_prompt}\n\n{correction}" if system_prompt else correction
        attempt = 0
        while True:
            attempt += 1
            try:
                async with asyncio.timeout(self._provider_timeout):
                    return await self._provider.complete(list(history), schemas, system_prompt=system_prompt)
            except TimeoutError:
                error = ProviderError(ProviderErrorKind.NETWORK, f"no response within {self._provider_timeout}s")
            except ProviderError as exc:
                error = exc

            if not error.retryable:
                raise error
            if attempt >= self._retry.max_attempts:
                raise ProviderUnavailable(attempt, error) from error
            delay = self._retry.delay_for(attempt)
            logger.warning(
                "agent.provider.retry attempt={} max_attempts={} delay={:.2f}s error={}",
                attempt,
                self._retry.max_attempts,
                delay,
                error,
            )
            await self._retry.sleep(delay)

    @staticmethod
    def _check_batch(batch: ToolCallBatch, history: list[ConversationTurn]) -> None:
        if not batch.requests:
            raise ProviderError(ProviderErrorKind.INVALID_RESPONSE, "empty tool call batch")
        used = {call.id for turn in history for call in turn.tool_calls}
        seen: set[str] = set()
        for request in batch.requests:
            if request.id in seen:
                raise ProtocolViolation(f"duplicate tool call id in batch: {request.id}")
            if request.id in used:
                raise ProtocolViolation(f"tool call id already used in this session: {request.id}")
            seen.add(request.id)

    async def _run_tool(self, session_id: str, request: ToolCallRequest) -> ToolOutcome:
        registry = self._context.registry
        try:
            validated = registry.validate(request.name, request.arguments)
        except ToolError as exc:
            logger.info("agent.tool.rejected name={} id={} kind={} error={}", request.name, request.id, exc.kind, exc)
            return Failure(exc.kind, str(exc))

        if self._emit_tool_notices:
            await self._bus.publish_outbound(
                OutboundMessage(session_id=session_id, text=f"running {request.name}", kind=OutboundKind.NOTICE)
            )
        context = ToolContext(
            session_id=session_id,
            workspace=self._context.workspace,
            publish=self._bus.publish_outbound,
        )
        return await registry.execute(request.name, validated, context=context, timeout_seconds=self._tool_timeout)

    async def _close_interrupted_calls(self, session_id: str, history: list[ConversationTurn]) -> None:
        pending = pending_tool_calls(history)
        if not pending:
            return
        logger.warning("agent.history.interrupted pending={}", list(pending))
        for call_id in pending:
            await self._append(session_id, history, ConversationTurn.tool_result(call_id, CANCELLED_TOOL_RESULT.render()))

    async def _append(self, session_id: str, history: list[ConversationTurn], turn: ConversationTurn) -> None:
        await self._context.store.append(session_id, turn)
        history.append(turn)

    def _transition(self, state: LoopState) -> None:
        if state != self._state:
            logger.debug("agent.state from={} to={}", self._state, state)
        self._state = state


def _failure_message(session_id: str, exc: BaseException) -> OutboundMessage:
    return OutboundMessage(session_id=session_id, text=f"error: {exc}", kind=OutboundKind.ERROR)
