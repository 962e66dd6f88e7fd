"""Conversation data model shared by the loop, providers and stores."""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any, TypeAlias

JSONValue: TypeAlias = None | bool | int | float | str | list["JSONValue"] | dict[str, "JSONValue"]


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class ToolCallRequest:
    """One tool invocation requested by the model."""

    id: str
    name: str
    arguments: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "arguments", MappingProxyType(dict(self.arguments)))

    def to_payload(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": dict(self.arguments)}


@dataclass(frozen=True)
class ConversationTurn:
    """One persisted step of a conversation."""

    role: Role
    content: str | None = None
    tool_calls: tuple[ToolCallRequest, ...] = ()
    tool_call_id: str | None = None
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def user(cls, content: str) -> ConversationTurn:
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str | None, tool_calls: tuple[ToolCallRequest, ...] = ()) -> ConversationTurn:
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tuple(tool_calls))

    @classmethod
    def tool_result(cls, tool_call_id: str, content: str) -> ConversationTurn:
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id)

    def same_as(self, other: ConversationTurn) -> bool:
        """Compare turns ignoring the timestamp."""
        return (
            self.role == other.role
            and self.content == other.content
            and self.tool_call_id == other.tool_call_id
            and [call.to_payload() for call in self.tool_calls] == [call.to_payload() for call in other.tool_calls]
        )


def pending_tool_calls(turns: list[ConversationTurn]) -> dict[str, ToolCallRequest]:
    """Return tool calls that have no tool result yet, in request order."""
    pending: dict[str, ToolCallRequest] = {}
    for turn in turns:
        if turn.role == Role.ASSISTANT:
            for call in turn.tool_calls:
                pending[call.id] = call
        elif turn.role == Role.TOOL and turn.tool_call_id is not None:
            pending.pop(turn.tool_call_id, None)
    return pending


@dataclass(frozen=True)
class Success:
    text: str

    @property
    def ok(self) -> bool:
        return True

    def render(self) -> str:
        return self.text


@dataclass(frozen=True)
class Failure:
    kind: str
    message: str

    @property
    def ok(self) -> bool:
        return False

    def render(self) -> str:
        return f"error: {self.kind}: {self.message}"


ToolOutcome: TypeAlias = Success | Failure


@dataclass(frozen=True)
class FinalMessage:
    text: str


@dataclass(frozen=True)
class ToolCallBatch:
    requests: tuple[ToolCallRequest, ...]
    text: str | None = None


ProviderResult: TypeAlias = FinalMessage | ToolCallBatch
