"""Catch final replies that wrongly claim the runtime has no tools."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from typing import Any

from loguru import logger

from tern.errors import ProviderError
from tern.providers.base import Provider
from tern.types import ConversationTurn, FinalMessage

CLASSIFIER_PROMPT = (
    "You are a strict classifier. Return ONLY one JSON object with boolean key claims_no_tools. "
    "If the assistant response explicitly or implicitly claims that tools are unavailable in the current runtime, "
    "set claims_no_tools=true. Otherwise false. Do not output markdown or extra text."
)


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Return the first JSON object in ``text``, also when wrapped in prose or a code fence."""
    try:
        value = json.loads(text.strip())
    except json.JSONDecodeError:
        pass
    else:
        if isinstance(value, dict):
            return value

    decoder = json.JSONDecoder()
    for index, char in enumerate(text):
        if char != "{":
            continue
        try:
            value, _ = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    return None


def tools_text(tool_names: Sequence[str]) -> str:
    return ", ".join(tool_names) if tool_names else "(none)"


class TurnGuard:
    """Asks the provider whether a final reply denies having tools, and builds the correction.

    The classifier call carries no tools. A failed classifier call counts as
    no claim.
    """

    def __init__(self, provider: Provider, *, timeout_seconds: float | None = None) -> None:
        self._provider = provider
        self._timeout = timeout_seconds

    @staticmethod
    def correction(tool_names: Sequence[str]) -> str:
        return (
            f"Correction: tools are available in this runtime. Available tools: {tools_text(tool_names)}. "
            "Do not claim tools are unavailable; call the appropriate tool directly."
        )

    async def claims_no_tools(self, text: str, tool_names: Sequence[str]) -> bool:
        if not text.strip() or not tool_names:
            return False
        question = ConversationTurn.user(
            f"Runtime tools are available: {tools_text(tool_names)}.\nAssistant response:\n{text}"
        )
        try:
            async with asyncio.timeout(self._timeout):
                result = await self._provider.complete([question], [], system_prompt=CLASSIFIER_PROMPT)
        except (ProviderError, TimeoutError) as exc:
            logger.warning("agent.turn_guard.classifier_failed error={}", exc)
            return False
        if not isinstance(result, FinalMessage):
            return False
        verdict = extract_json_object(result.text)
        return verdict is not None and verdict.get("claims_no_tools") is True
