"""Bus message models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum


class OutboundKind(StrEnum):
    FINAL = "final"
    NOTICE = "notice"
    ERROR = "error"


@dataclass(frozen=True)
class InboundMessage:
    """User input addressed to one session."""

    session_id: str
    text: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class OutboundMessage:
    """Agent output for one session: a final reply, an interim notice or a failure report."""

    session_id: str
    text: str
    kind: OutboundKind = OutboundKind.FINAL
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def terminal(self) -> bool:
        return self.kind != OutboundKind.NOTICE
