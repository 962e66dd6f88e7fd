from __future__ import annotations

import pytest
from conftest import ScriptedProvider

from tern.agent.turn_guard import CLASSIFIER_PROMPT, TurnGuard, extract_json_object
from tern.errors import ProviderError, ProviderErrorKind
from tern.events import InboundMessage, OutboundKind
from tern.session.store import InMemorySessionStore
from tern.types import FinalMessage, Role, ToolCallBatch, ToolCallRequest

CLAIM = "Sorry, I have no tools in this environment, so I cannot list files."


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ('{"claims_no_tools": true}', {"claims_no_tools": True}),
        ('```json\n{"claims_no_tools": false}\n```', {"claims_no_tools": False}),
        (
            'Verdict: {"claims_no_tools": true, "note": "a } brace"} done',
            {"claims_no_tools": True, "note": "a } brace"},
        ),
        ('{broken {"claims_no_tools": true}', {"claims_no_tools": True}),
    ],
)
def test_extract_json_object(raw: str, expected: dict[str, object]) -> None:
    assert extract_json_object(raw) == expected


@pytest.mark.parametrize("raw", ["", "no json here", "[1, 2]", "{not json}"])
def test_extract_json_object_without_object(raw: str) -> None:
    assert extract_json_object(raw) is None


def test_correction_lists_tools() -> None:
    assert "Available tools: list_dir, exec." in TurnGuard.correction(["list_dir", "exec"])
    assert "Available tools: (none)." in TurnGuard.correction([])


@pytest.mark.asyncio
async def test_classifier_sees_reply_and_tools() -> None:
    classifier = ScriptedProvider([FinalMessage('{"claims_no_tools": true}')])

    assert await TurnGuard(classifier).claims_no_tools(CLAIM, ["list_dir"])
    assert classifier.system_prompts == [CLASSIFIER_PROMPT]
    question = classifier.calls[0][0].content or ""
    assert "list_dir" in question
    assert CLAIM in question


@pytest.mark.asyncio
async def test_no_tools_or_empty_reply_skips_classifier() -> None:
    classifier = ScriptedProvider([])
    guard = TurnGuard(classifier)

    assert not await guard.claims_no_tools(CLAIM, [])
    assert not await guard.claims_no_tools("   ", ["list_dir"])
    assert classifier.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "verdict",
    [
        FinalMessage('{"claims_no_tools": false}'),
        FinalMessage('{"claims_no_tools": "yes"}'),
        FinalMessage("I think so"),
        ToolCallBatch((ToolCallRequest(id="x", name="list_dir"),)),
        ProviderError(ProviderErrorKind.NETWORK, "down"),
    ],
)
async def test_unclear_or_failed_verdict_is_no_claim(verdict: object) -> None:
    classifier = ScriptedProvider([verdict])  # type: ignore[list-item]

    assert not await TurnGuard(classifier).claims_no_tools(CLAIM, ["list_dir"])


@pytest.mark.asyncio
async def test_false_claim_is_retried_with_correction(make_loop, store: InMemorySessionStore) -> None:
    provider = ScriptedProvider([
        FinalMessage(CLAIM),
        ToolCallBatch((ToolCallRequest(id="t1", name="list_dir", arguments={"path": "."}),)),
        FinalMessage("done"),
    ])
    classifier = ScriptedProvider([FinalMessage('```json\n{"claims_no_tools": true}\n```')])
    loop = make_loop(provider, turn_guard=TurnGuard(classifier))

    outbound = await loop.process(InboundMessage(session_id="s1", text="list files"))

    assert outbound.kind == OutboundKind.FINAL
    assert outbound.text == "done"
    turns = await store.load("s1")
    assert [turn.role for turn in turns] == [Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT]
    assert all(turn.content != CLAIM for turn in turns)
    assert provider.system_prompts[0] is None
    assert "Correction: tools are available" in (provider.system_prompts[1] or "")
    assert provider.system_prompts[2] is None
    assert len(classifier.calls) == 1


@pytest.mark.asyncio
async def test_correction_is_applied_once_per_message(make_loop) -> None:
    provider = ScriptedProvider([FinalMessage(CLAIM), FinalMessage("Still no tools, sorry.")])
    classifier = ScriptedProvider([FinalMessage('{"claims_no_tools": true}')])
    loop = make_loop(provider, turn_guard=TurnGuard(classifier))

    outbound = await loop.process(InboundMessage(session_id="s1", text="list files"))

    assert outbound.text == "Still no tools, sorry."
    assert len(provider.calls) == 2


@pytest.mark.asyncio
async def test_correction_respects_round_cap(make_loop) -> None:
    provider = ScriptedProvider([
        ToolCallBatch((ToolCallRequest(id="t1", name="list_dir", arguments={"path": "."}),)),
        FinalMessage(CLAIM),
    ])
    classifier = ScriptedProvider([FinalMessage('{"claims_no_tools": true}')])
    loop = make_loop(provider, max_rounds=1, turn_guard=TurnGuard(classifier))

    outbound = await loop.process(InboundMessage(session_id="s1", text="list files"))

    assert outbound.kind == OutboundKind.FINAL
    assert outbound.text == CLAIM
    assert classifier.calls == []


@pytest.mark.asyncio
async def test_honest_reply_is_accepted(make_loop) -> None:
    provider = ScriptedProvider([FinalMessage("Hello!")])
    classifier = ScriptedProvider([FinalMessage('{"claims_no_tools": false}')])
    loop = make_loop(provider, turn_guard=TurnGuard(classifier))

    outbound = await loop.process(InboundMessage(session_id="s1", text="hi"))

    assert outbound.text == "Hello!"
    assert len(provider.calls) == 1
