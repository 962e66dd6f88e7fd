"""Tests for the agent loop state machine."""

from __future__ import annotations

import asyncio

import pytest
from conftest import ListDirHandler, RecordingSleep, ScriptedProvider

from tern.agent.loop import LoopState
from tern.bus import MessageBus
from tern.errors import PersistenceError, ProviderError, ProviderErrorKind
from tern.events import InboundMessage, OutboundKind
from tern.providers.base import RetryPolicy
from tern.session.store import InMemorySessionStore
from tern.tools.registry import ToolRegistry
from tern.tools.schema import ToolSchema
from tern.types import (
    ConversationTurn,
    FinalMessage,
    Role,
    ToolCallBatch,
    ToolCallRequest,
    pending_tool_calls,
)


def _batch(*requests: ToolCallRequest) -> ToolCallBatch:
    return ToolCallBatch(requests=tuple(requests))


@pytest.mark.asyncio
async def test_tool_call_round_trip_produces_four_turns(make_loop, store: InMemorySessionStore, bus: MessageBus) -> None:
    provider = ScriptedProvider(
        script=[
            _batch(ToolCallRequest(id="t1", name="list_dir", arguments={"path": "/tmp"})),
            FinalMessage("Here are the files: ..."),
        ]
    )
    loop = make_loop(provider)

    outbound = await loop.process(InboundMessage(session_id="s1", text="List files in /tmp"))

    assert outbound.kind == OutboundKind.FINAL
    assert outbound.text == "Here are the files: ..."
    assert await bus.next_outbound(timeout_seconds=0.1) == outbound
    turns = await store.load("s1")
    assert [turn.role for turn in turns] == [Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT]
    assert turns[1].tool_calls[0].id == "t1"
    assert turns[2].tool_call_id == "t1"
    assert turns[2].content == "<listing>"
    assert len(provider.calls) == 2
    assert [turn.role for turn in provider.calls[1]] == [Role.USER, Role.ASSISTANT, Role.TOOL]
    assert loop.state == LoopState.IDLE


@pytest.mark.asyncio
async def test_unknown_tool_degrades_to_failure_result(
    make_loop, store: InMemorySessionStore, list_dir_handler: ListDirHandler
) -> None:
    provider = ScriptedProvider(
        script=[
            _batch(ToolCallRequest(id="t2", name="delete_everything", arguments={})),
            FinalMessage("I cannot do that."),
        ]
    )
    loop = make_loop(provider)

    outbound = await loop.process(InboundMessage(session_id="s1", text="wipe it"))

    assert outbound.kind == OutboundKind.FINAL
    turns = await store.load("s1")
    assert turns[2].tool_call_id == "t2"
    assert "unknown tool" in (turns[2].content or "")
    assert list_dir_handler.calls == []


@pytest.mark.asyncio
async def test_schema_violation_is_reported_without_calling_handler(
    make_loop, store: InMemorySessionStore, list_dir_handler: ListDirHandler
) -> None:
    provider = ScriptedProvider(
        script=[
            _batch(ToolCallRequest(id="t1", name="list_dir", arguments={"path": 42})),
            _batch(ToolCallRequest(id="t2", name="list_dir", arguments={"path": "/tmp"})),
            FinalMessage("done"),
        ]
    )
    loop = make_loop(provider)

    outbound = await loop.process(InboundMessage(session_id="s1", text="list"))

    assert outbound.text == "done"
    turns = await store.load("s1")
    assert "schema_validation" in (turns[2].content or "")
    assert "path" in (turns[2].content or "")
    assert turns[4].content == "<listing>"
    assert list_dir_handler.calls == [{"path": "/tmp"}]


@pytest.mark.asyncio
async def test_batch_results_follow_request_order(registry: ToolRegistry, make_loop, store: InMemorySessionStore) -> None:
    async def slow(args) -> str:
        await asyncio.sleep(0.02)
        return "slow"

    registry.register(ToolSchema(name="slow", description="slow"), slow)
    provider = ScriptedProvider(
        script=[
            _batch(
                ToolCallRequest(id="a", name="slow", arguments={}),
                ToolCallRequest(id="b", name="list_dir", arguments={"path": "."}),
                ToolCallRequest(id="c", name="missing", arguments={}),
            ),
            FinalMessage("ok"),
        ]
    )
    loop = make_loop(provider)

    await loop.process(InboundMessage(session_id="s1", text="go"))

    turns = await store.load("s1")
    assert len(turns[1].tool_calls) == 3
    assert [turn.tool_call_id for turn in turns if turn.role == Role.TOOL] == ["a", "b", "c"]
    assert len(provider.calls[1]) == 5


@pytest.mark.asyncio
async def test_handler_exception_becomes_tool_result(registry: ToolRegistry, make_loop, store: InMemorySessionStore) -> None:
    def broken(args) -> str:
        raise RuntimeError("disk on fire")

    registry.register(ToolSchema(name="broken", description="broken"), broken)
    provider = ScriptedProvider(
        script=[_batch(ToolCallRequest(id="t1", name="broken", arguments={})), FinalMessage("sorry")]
    )
    loop = make_loop(provider)

    outbound = await loop.process(InboundMessage(session_id="s1", text="go"))

    assert outbound.kind == OutboundKind.FINAL
    turns = await store.load("s1")
    assert "execution_failure" in (turns[2].content or "")
    assert "disk on fire" in (turns[2].content or "")


@pytest.mark.asyncio
async def test_rate_limited_then_success_does_not_duplicate_turns(make_loop, store: InMemorySessionStore) -> None:
    sleep = RecordingSleep()
    provider = ScriptedProvider(
        script=[
            ProviderError(ProviderErrorKind.RATE_LIMITED, "slow down"),
            ProviderError(ProviderErrorKind.RATE_LIMITED, "slow down"),
            FinalMessage("hello"),
        ]
    )
    loop = make_loop(provider, retry_policy=RetryPolicy(max_attempts=3, base_delay=0.5, multiplier=2.0, sleep=sleep))

    outbound = await loop.process(InboundMessage(session_id="s1", text="hi"))

    assert outbound.kind == OutboundKind.FINAL
    assert outbound.text == "hello"
    assert sleep.delays == [0.5, 1.0]
    assert len(provider.calls) == 3
    turns = await store.load("s1")
    assert [turn.role for turn in turns] == [Role.USER, Role.ASSISTANT]


@pytest.mark.asyncio
async def test_retry_exhaustion_reports_provider_unavailable(make_loop, store: InMemorySessionStore) -> None:
    provider = ScriptedProvider(script=[ProviderError(ProviderErrorKind.NETWORK, "down")] * 2)
    loop = make_loop(provider, retry_policy=RetryPolicy.immediate(2))

    outbound = await loop.process(InboundMessage(session_id="s1", text="hi"))

    assert outbound.kind == OutboundKind.ERROR
    assert "provider unavailable after 2 attempts" in outbound.text
    assert [turn.role for turn in await store.load("s1")] == [Role.USER]


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", [ProviderErrorKind.AUTH_FAILURE, ProviderErrorKind.INVALID_RESPONSE])
async def test_terminal_provider_errors_are_not_retried(make_loop, kind: ProviderErrorKind) -> None:
    provider = ScriptedProvider(script=[ProviderError(kind, "nope"), FinalMessage("unused")])
    loop = make_loop(provider)

    outbound = await loop.process(InboundMessage(session_id="s1", text="hi"))

    assert outbound.kind == OutboundKind.ERROR
    assert kind.value in outbound.text
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_empty_batch_is_invalid_response(make_loop, store: InMemorySessionStore, bus: MessageBus) -> None:
    provider = ScriptedProvider(script=[ToolCallBatch(requests=()), FinalMessage("unused")])
    loop = make_loop(provider)

    outbound = await loop.process(InboundMessage(session_id="s1", text="hi"))

    assert outbound.kind == OutboundKind.ERROR
    assert "invalid_response" in outbound.text
    assert len(provider.calls) == 1
    assert [turn.role for turn in await store.load("s1")] == [Role.USER]
    assert await bus.next_outbound(timeout_seconds=0.1) == outbound
    assert await bus.next_outbound(timeout_seconds=0.01) is None


@pytest.mark.asyncio
async def test_duplicate_request_ids_are_a_protocol_violation(make_loop, store: InMemorySessionStore) -> None:
    request = ToolCallRequest(id="t1", name="list_dir", arguments={"path": "."})
    provider = ScriptedProvider(script=[_batch(request, request)])
    loop = make_loop(provider)

    outbound = await loop.process(InboundMessage(session_id="s1", text="hi"))

    assert outbound.kind == OutboundKind.ERROR
    assert "duplicate tool call id" in outbound.text
    assert [turn.role for turn in await store.load("s1")] == [Role.USER]


@pytest.mark.asyncio
async def test_tool_call_id_reused_from_earlier_turn_is_a_protocol_violation(
    make_loop, store: InMemorySessionStore, list_dir_handler: ListDirHandler
) -> None:
    request = ToolCallRequest(id="t1", name="list_dir", arguments={"path": "."})
    provider = ScriptedProvider(script=[_batch(request), FinalMessage("done"), _batch(request)])
    loop = make_loop(provider)
    await loop.process(InboundMessage(session_id="s1", text="first"))

    outbound = await loop.process(InboundMessage(session_id="s1", text="second"))

    assert outbound.kind == OutboundKind.ERROR
    assert "already used" in outbound.text
    turns = await store.load("s1")
    assert [turn.role for turn in turns] == [Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT, Role.USER]
    assert len(list_dir_handler.calls) == 1


@pytest.mark.asyncio
async def test_max_rounds_exceeded_leaves_consistent_history(make_loop, store: InMemorySessionStore) -> None:
    provider = ScriptedProvider(
        script=[
            _batch(ToolCallRequest(id="t1", name="list_dir", arguments={"path": "."})),
            _batch(ToolCallRequest(id="t2", name="list_dir", arguments={"path": "."})),
        ]
    )
    loop = make_loop(provider, max_rounds=1)

    outbound = await loop.process(InboundMessage(session_id="s1", text="loop forever"))

    assert outbound.kind == OutboundKind.ERROR
    assert "max_rounds_exceeded=1" in outbound.text
    turns = await store.load("s1")
    assert [turn.role for turn in turns] == [Role.USER, Role.ASSISTANT, Role.TOOL]
    assert pending_tool_calls(turns) == {}


@pytest.mark.asyncio
async def test_provider_timeout_counts_as_network_error(make_loop) -> None:
    class SlowProvider(ScriptedProvider):
        async def complete(self, history, tools, *, system_prompt=None):  # type: ignore[no-untyped-def]
            self.calls.append(list(history))
            await asyncio.sleep(1)
            return FinalMessage("late")

    provider = SlowProvider(script=[])
    loop = make_loop(provider, provider_timeout_seconds=0.01, retry_policy=RetryPolicy.immediate(2))

    outbound = await loop.process(InboundMessage(session_id="s1", text="hi"))

    assert outbound.kind == OutboundKind.ERROR
    assert "network" in outbound.text
    assert len(provider.calls) == 2


@pytest.mark.asyncio
async def test_persistence_failure_is_terminal(registry: ToolRegistry, bus: MessageBus, tmp_path) -> None:
    from tern.agent.context import AgentContext
    from tern.agent.loop import AgentLoop

    class FailingStore(InMemorySessionStore):
        async def append(self, session_id: str, turn: ConversationTurn) -> None:
            if turn.role == Role.ASSISTANT:
                raise PersistenceError("disk full")
            await super().append(session_id, turn)

    provider = ScriptedProvider(script=[FinalMessage("hello")])
    loop = AgentLoop(
        bus=bus,
        provider=provider,
        context=AgentContext(registry=registry, store=FailingStore(), workspace=tmp_path),
    )

    outbound = await loop.process(InboundMessage(session_id="s1", text="hi"))

    assert outbound.kind == OutboundKind.ERROR
    assert "disk full" in outbound.text


@pytest.mark.asyncio
async def test_interrupted_tool_calls_are_closed_before_new_input(make_loop, store: InMemorySessionStore) -> None:
    await store.append("s1", ConversationTurn.user("first"))
    await store.append(
        "s1",
        ConversationTurn.assistant(None, (ToolCallRequest(id="old", name="list_dir", arguments={"path": "."}),)),
    )
    provider = ScriptedProvider(script=[FinalMessage("fresh start")])
    loop = make_loop(provider)

    await loop.process(InboundMessage(session_id="s1", text="second"))

    turns = await store.load("s1")
    assert [turn.role for turn in turns] == [Role.USER, Role.ASSISTANT, Role.TOOL, Role.USER, Role.ASSISTANT]
    assert turns[2].tool_call_id == "old"
    assert "cancelled" in (turns[2].content or "")


@pytest.mark.asyncio
async def test_cancelled_turn_keeps_committed_turns_and_emits_nothing(
    registry: ToolRegistry, make_loop, store: InMemorySessionStore, bus: MessageBus
) -> None:
    started = asyncio.Event()

    async def hang(args) -> str:
        started.set()
        await asyncio.sleep(10)
        return "never"

    registry.register(ToolSchema(name="hang", description="hang"), hang)
    provider = ScriptedProvider(
        script=[
            _batch(
                ToolCallRequest(id="t1", name="list_dir", arguments={"path": "."}),
                ToolCallRequest(id="t2", name="hang", arguments={}),
            )
        ]
    )
    loop = make_loop(provider)

    task = asyncio.create_task(loop.process(InboundMessage(session_id="s1", text="go")))
    await asyncio.wait_for(started.wait(), timeout=1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    turns = await store.load("s1")
    assert [turn.role for turn in turns] == [Role.USER, Role.ASSISTANT, Role.TOOL]
    assert turns[2].tool_call_id == "t1"
    assert await bus.next_outbound(timeout_seconds=0.01) is None
    assert loop.state == LoopState.IDLE


@pytest.mark.asyncio
async def test_tool_notices_are_published_before_final_reply(make_loop, bus: MessageBus) -> None:
    provider = ScriptedProvider(
        script=[_batch(ToolCallRequest(id="t1", name="list_dir", arguments={"path": "."})), FinalMessage("done")]
    )
    loop = make_loop(provider, emit_tool_notices=True)

    await loop.process(InboundMessage(session_id="s1", text="go"))

    first = await bus.next_outbound(timeout_seconds=0.1)
    second = await bus.next_outbound(timeout_seconds=0.1)
    assert first is not None and first.kind == OutboundKind.NOTICE
    assert "list_dir" in first.text
    assert second is not None and second.kind == OutboundKind.FINAL


@pytest.mark.asyncio
async def test_run_processes_inbound_messages_in_order(make_loop, bus: MessageBus, store: InMemorySessionStore) -> None:
    provider = ScriptedProvider(
        script=[
            FinalMessage("one"),
            _batch(ToolCallRequest(id="t1", name="list_dir", arguments={"path": "."})),
            FinalMessage("two"),
            FinalMessage("three"),
        ]
    )
    loop = make_loop(provider)
    for session_id, text in [("s1", "a"), ("s1", "b"), ("s2", "c")]:
        await bus.publish_inbound(InboundMessage(session_id=session_id, text=text))

    task = asyncio.create_task(loop.run())
    replies = [await bus.next_outbound(timeout_seconds=1) for _ in range(3)]
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert [(reply.session_id, reply.text) for reply in replies if reply is not None] == [
        ("s1", "one"),
        ("s1", "two"),
        ("s2", "three"),
    ]
    s1 = await store.load("s1")
    assert [turn.role for turn in s1] == [Role.USER, Role.ASSISTANT, Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT]
    assert pending_tool_calls(s1) == {}
    assert [turn.timestamp for turn in s1] == sorted(turn.timestamp for turn in s1)


@pytest.mark.asyncio
async def test_system_prompt_is_passed_to_provider(registry: ToolRegistry, bus: MessageBus, store, tmp_path) -> None:
    from tern.agent.context import AgentContext
    from tern.agent.loop import AgentLoop
    from tern.prompt import PromptBuilder

    (tmp_path / "AGENTS.md").write_text("Always answer in haiku.", encoding="utf-8")
    provider = ScriptedProvider(script=[FinalMessage("ok")])
    loop = AgentLoop(
        bus=bus,
        provider=provider,
        context=AgentContext(registry=registry, store=store, workspace=tmp_path, prompt=PromptBuilder(tmp_path)),
    )

    await loop.process(InboundMessage(session_id="s1", text="hi"))

    prompt = provider.system_prompts[0]
    assert prompt is not None
    assert "Always answer in haiku." in prompt
    assert "- list_dir: List a directory" in prompt


@pytest.mark.asyncio
async def test_message_tool_publishes_interim_notice(bus: MessageBus, store, tmp_path) -> None:
    from tern.agent.context import AgentContext
    from tern.agent.loop import AgentLoop
    from tern.tools.builtin import MESSAGE, send_message

    registry = ToolRegistry()
    registry.register(MESSAGE, send_message, context=True)
    provider = ScriptedProvider(
        script=[
            _batch(ToolCallRequest(id="m1", name="message", arguments={"content": "working on it"})),
            FinalMessage("finished"),
        ]
    )
    loop = AgentLoop(bus=bus, provider=provider, context=AgentContext(registry=registry, store=store, workspace=tmp_path))

    await loop.process(InboundMessage(session_id="s9", text="go"))

    notice = await bus.next_outbound(timeout_seconds=0.1)
    final = await bus.next_outbound(timeout_seconds=0.1)
    assert notice is not None and (notice.session_id, notice.text, notice.kind) == ("s9", "working on it", OutboundKind.NOTICE)
    assert final is not None and final.text == "finished"
