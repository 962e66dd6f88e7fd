"""Tool registry: registration, argument validation and guarded execution."""

from __future__ import annotations

import asyncio
import inspect
import json
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

from tern.errors import DuplicateToolError, ToolError, ToolErrorKind, UnknownToolError
from tern.events import OutboundMessage
from tern.tools.schema import ToolSchema, ValidatedArguments
from tern.types import Failure, Success, ToolOutcome

ToolHandler = Callable[..., Any]

PREVIEW_WIDTH = 30
_CLOSERS = {'"': '"', "{": "}", "[": "]"}


def _preview(value: Any, width: int = PREVIEW_WIDTH) -> str:
    """Render one argument for logs, cut to ``width`` with the opening bracket or quote closed again."""
    try:
        rendered = json.dumps(value, ensure_ascii=False)
    except TypeError:
        rendered = repr(value)
    if len(rendered) <= width:
        return rendered
    cut = rendered[: max(width - 3, 0)] + "..."
    return cut + _CLOSERS.get(rendered[0], "")


@dataclass(frozen=True)
class ToolContext:
    """Per-call context for tools registered with ``context=True``."""

    session_id: str
    workspace: Path
    publish: Callable[[OutboundMessage], Awaitable[None]] | None = None


class Tool(Protocol):
    """Object-style tool: a schema plus an invoke callable taking the validated input model."""

    def schema(self) -> ToolSchema: ...

    def invoke(self, params: Any, *args: Any) -> Any: ...


@dataclass(frozen=True)
class ToolDescriptor:
    """Tool schema and runtime handle."""

    schema: ToolSchema
    handler: ToolHandler
    context: bool = False

    @property
    def name(self) -> str:
        return self.schema.name


class ToolRegistry:
    """Registry of tool schemas and handlers.

    Schemas are immutable and names are unique. Validation and execution are
    separate steps so callers can turn validation errors into tool results
    without ever touching a handler.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDescriptor] = {}

    def register(self, schema: ToolSchema, handler: ToolHandler, *, context: bool = False) -> ToolDescriptor:
        if schema.name in self._tools:
            raise DuplicateToolError(schema.name)
        descriptor = ToolDescriptor(schema=schema, handler=handler, context=context)
        self._tools[schema.name] = descriptor
        return descriptor

    def register_tool(self, tool: Tool) -> ToolDescriptor:
        wants_context = len(inspect.signature(tool.invoke).parameters) > 1
        return self.register(tool.schema(), tool.invoke, context=wants_context)

    def has(self, name: str) -> bool:
        return name in self._tools

    def get(self, name: str) -> ToolDescriptor | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def schemas(self) -> list[ToolSchema]:
        return [descriptor.schema for descriptor in self._tools.values()]

    def function_declarations(self) -> list[dict[str, Any]]:
        return [descriptor.schema.to_function() for descriptor in self._tools.values()]

    def validate(self, name: str, arguments: Mapping[str, Any]) -> ValidatedArguments:
        descriptor = self._tools.get(name)
        if descriptor is None:
            raise UnknownToolError(name)
        return descriptor.schema.validate(arguments)

    async def execute(
        self,
        name: str,
        arguments: ValidatedArguments,
        *,
        context: ToolContext | None = None,
        timeout_seconds: float | None = None,
    ) -> ToolOutcome:
        descriptor = self._tools.get(name)
        if descriptor is None:
            raise UnknownToolError(name)

        self._log_tool_call(name, arguments, context)
        start = time.monotonic()
        try:
            async with asyncio.timeout(timeout_seconds):
                result = await self._invoke(descriptor, arguments, context)
        except TimeoutError:
            logger.warning("tool.call.timeout name={} timeout={}s", name, timeout_seconds)
            return Failure(ToolErrorKind.EXECUTION_FAILURE, f"timed out after {timeout_seconds}s")
        except ToolError as exc:
            logger.info("tool.call.failed name={} kind={} error={}", name, exc.kind, exc)
            return Failure(exc.kind, str(exc))
        except Exception as exc:
            logger.exception("tool.call.error name={}", name)
            return Failure(ToolErrorKind.EXECUTION_FAILURE, f"{type(exc).__name__}: {exc}")
        finally:
            duration = time.monotonic() - start
            logger.info("tool.call.end name={} duration={:.3f}ms", name, duration * 1000)

        if isinstance(result, (Success, Failure)):
            return result
        if result is None:
            return Success("(empty)")
        return Success(result if isinstance(result, str) else str(result))

    @staticmethod
    async def _invoke(descriptor: ToolDescriptor, arguments: ValidatedArguments, context: ToolContext | None) -> Any:
        params = arguments.params
        args: tuple[Any, ...] = (params, context) if descriptor.context else (params,)
        if inspect.iscoroutinefunction(descriptor.handler):
            return await descriptor.handler(*args)
        result = await asyncio.to_thread(descriptor.handler, *args)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _log_tool_call(self, name: str, arguments: Mapping[str, Any], context: ToolContext | None) -> None:
        rendered = ", ".join(f"{key}={_preview(value)}" for key, value in arguments.items())
        session_id = context.session_id if context is not None else "-"
        logger.info("tool.call.start name={} session={} {{ {} }}", name, session_id, rendered)
