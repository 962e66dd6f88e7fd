"""OpenAI-compatible Chat Completions provider."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any, ClassVar

import openai
from loguru import logger
from openai import AsyncOpenAI

from tern.errors import ProviderError, ProviderErrorKind
from tern.tools.schema import ToolSchema
from tern.types import ConversationTurn, FinalMessage, ProviderResult, Role, ToolCallBatch, ToolCallRequest


def to_chat_messages(history: Sequence[ConversationTurn], system_prompt: str | None = None) -> list[dict[str, Any]]:
    """Encode turns per the Chat Completions message contract."""
    messages: list[dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    for turn in history:
        if turn.role == Role.USER:
            messages.append({"role": "user", "content": turn.content or ""})
        elif turn.role == Role.ASSISTANT:
            message: dict[str, Any] = {"role": "assistant", "content": turn.content}
            if turn.tool_calls:
                message["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": call.name,
                            "arguments": json.dumps(dict(call.arguments), ensure_ascii=False),
                        },
                    }
                    for call in turn.tool_calls
                ]
            messages.append(message)
        else:
            messages.append({"role": "tool", "tool_call_id": turn.tool_call_id, "content": turn.content or ""})
    return messages


def parse_completion(response: Any) -> ProviderResult:
    """Turn a chat completion into a final message or a tool-call batch."""
    choices = getattr(response, "choices", None)
    if not choices:
        raise ProviderError(ProviderErrorKind.INVALID_RESPONSE, "response has no choices")

    choice = choices[0]
    message = getattr(choice, "message", None)
    if message is None:
        raise ProviderError(ProviderErrorKind.INVALID_RESPONSE, "choice has no message")

    content = getattr(message, "content", None)
    raw_calls = getattr(message, "tool_calls", None)
    finish_reason = getattr(choice, "finish_reason", None)
    if raw_calls is not None and (raw_calls or finish_reason == "tool_calls"):
        return ToolCallBatch(requests=tuple(_parse_tool_call(call) for call in raw_calls), text=content or None)

    if not isinstance(content, str):
        raise ProviderError(ProviderErrorKind.INVALID_RESPONSE, "response has neither content nor tool calls")
    return FinalMessage(text=content)


def _parse_tool_call(call: Any) -> ToolCallRequest:
    function = getattr(call, "function", None)
    call_id = getattr(call, "id", None)
    name = getattr(function, "name", None)
    if not isinstance(call_id, str) or not call_id or not isinstance(name, str) or not name:
        raise ProviderError(ProviderErrorKind.INVALID_RESPONSE, "tool call without id or name")

    raw_arguments = getattr(function, "arguments", None) or "{}"
    try:
        arguments = json.loads(raw_arguments)
    except (TypeError, json.JSONDecodeError) as exc:
        raise ProviderError(
            ProviderErrorKind.INVALID_RESPONSE, f"tool call '{call_id}' has malformed arguments: {exc}"
        ) from exc
    if not isinstance(arguments, dict):
        raise ProviderError(ProviderErrorKind.INVALID_RESPONSE, f"tool call '{call_id}' arguments are not an object")
    return ToolCallRequest(id=call_id, name=name, arguments=arguments)


def classify_error(exc: openai.OpenAIError) -> ProviderError:
    """Map SDK exceptions onto provider error kinds."""
    match exc:
        case openai.RateLimitError():
            kind = ProviderErrorKind.RATE_LIMITED
        case openai.AuthenticationError() | openai.PermissionDeniedError():
            kind = ProviderErrorKind.AUTH_FAILURE
        case openai.APIConnectionError() | openai.InternalServerError():
            kind = ProviderErrorKind.NETWORK
        case _:
            kind = ProviderErrorKind.INVALID_RESPONSE
    return ProviderError(kind, str(exc))


class OpenAIProvider:
    """Provider speaking the OpenAI-compatible Chat Completions API."""

    DEFAULT_HEADERS: ClassVar[dict[str, str]] = {"X-Title": "Tern"}

    def __init__(
        self,
        *,
        model: str,
        api_key: str | None = None,
        api_base: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        client: Any | None = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        # SDK retries are disabled, the agent loop owns the retry policy.
        self._client = client or AsyncOpenAI(
            api_key=api_key,
            base_url=api_base,
            max_retries=0,
            default_headers=self.DEFAULT_HEADERS,
        )

    async def complete(
        self,
        history: Sequence[ConversationTurn],
        tools: Sequence[ToolSchema],
        *,
        system_prompt: str | None = None,
    ) -> ProviderResult:
        request: dict[str, Any] = {
            "model": self.model,
            "messages": to_chat_messages(history, system_prompt),
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        if tools:
            request["tools"] = [schema.to_function() for schema in tools]
            request["tool_choice"] = "auto"

        logger.debug("provider.request model={} messages={} tools={}", self.model, len(history), len(tools))
        try:
            response = await self._client.chat.completions.create(**request)
        except openai.OpenAIError as exc:
            error = classify_error(exc)
            logger.warning("provider.error model={} kind={} error={}", self.model, error.kind, exc)
            raise error from exc
        return parse_completion(response)
