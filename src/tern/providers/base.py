"""Provider contract and retry policy."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from tern.tools.schema import ToolSchema
from tern.types import ConversationTurn, ProviderResult


class Provider(Protocol):
    """Sends a conversation and returns a final message or a tool-call batch.

    Implementations raise ``ProviderError`` with one of the provider error
    kinds; anything that is neither a final message nor well-formed tool-call
    JSON is ``invalid_response``.
    """

    async def complete(
        self,
        history: Sequence[ConversationTurn],
        tools: Sequence[ToolSchema],
        *,
        system_prompt: str | None = None,
    ) -> ProviderResult: ...


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded-attempt policy with exponential backoff for retryable provider errors."""

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def immediate(cls, max_attempts: int = 3) -> RetryPolicy:
        return cls(max_attempts=max_attempts, base_delay=0.0, max_delay=0.0)

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)
