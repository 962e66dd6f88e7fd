"""Application-level exception types for Tern."""

from __future__ import annotations

from enum import StrEnum


class TernError(Exception):
    """Base exception for Tern."""


class ConfigurationError(TernError):
    """Raised when configuration or startup validation fails."""


class DuplicateToolError(TernError):
    """Raised when a tool name is registered twice."""

    def __init__(self, name: str) -> None:
        super().__init__(f"tool already registered: {name}")
        self.name = name


class ToolErrorKind(StrEnum):
    UNKNOWN_TOOL = "unknown_tool"
    SCHEMA_VALIDATION = "schema_validation"
    EXECUTION_FAILURE = "execution_failure"


class ToolError(TernError):
    """Base class for errors recovered locally as tool results."""

    kind: ToolErrorKind = ToolErrorKind.EXECUTION_FAILURE


class UnknownToolError(ToolError):
    kind = ToolErrorKind.UNKNOWN_TOOL

    def __init__(self, name: str) -> None:
        super().__init__(f"unknown tool: {name}")
        self.name = name


class SchemaValidationError(ToolError):
    kind = ToolErrorKind.SCHEMA_VALIDATION

    def __init__(self, parameter: str, reason: str) -> None:
        super().__init__(f"invalid argument '{parameter}': {reason}")
        self.parameter = parameter
        self.reason = reason


class ToolExecutionError(ToolError):
    """Raised by tool handlers to report a failure to the model."""

    kind = ToolErrorKind.EXECUTION_FAILURE


class TurnFailure(TernError):
    """Terminal failure for the inbound message being processed."""


class ProviderErrorKind(StrEnum):
    NETWORK = "network"
    RATE_LIMITED = "rate_limited"
    INVALID_RESPONSE = "invalid_response"
    AUTH_FAILURE = "auth_failure"


_RETRYABLE_KINDS = frozenset({ProviderErrorKind.NETWORK, ProviderErrorKind.RATE_LIMITED})


class ProviderError(TurnFailure):
    """Raised by providers; network and rate-limit errors are retryable."""

    def __init__(self, kind: ProviderErrorKind, message: str = "") -> None:
        super().__init__(f"{kind.value}: {message}" if message else kind.value)
        self.kind = kind
        self.message = message

    @property
    def retryable(self) -> bool:
        return self.kind in _RETRYABLE_KINDS


class ProviderUnavailable(TurnFailure):
    """Raised when retryable provider errors exhaust the retry policy."""

    def __init__(self, attempts: int, last_error: ProviderError) -> None:
        super().__init__(f"provider unavailable after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class PersistenceError(TurnFailure):
    """Raised when a session turn cannot be written durably."""


class ProtocolViolation(TurnFailure):
    """Raised when the conversation protocol is broken, e.g. an orphan tool result."""


class MaxRoundsExceeded(TurnFailure):
    """Raised when a turn asks for more tool-call rounds than allowed."""

    def __init__(self, max_rounds: int) -> None:
        super().__init__(f"max_rounds_exceeded={max_rounds}")
        self.max_rounds = max_rounds
