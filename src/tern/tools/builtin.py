"""Built-in tool registration."""

from __future__ import annotations

from pathlib import Path

from tern.config import Settings
from tern.errors import ToolExecutionError
from tern.events import OutboundKind, OutboundMessage
from tern.tools.fs import EDIT_FILE, LIST_DIR, READ_FILE, WRITE_FILE, FileTools
from tern.tools.registry import ToolContext, ToolRegistry
from tern.tools.inputs import MessageInput
from tern.tools.schema import ToolSchema
from tern.tools.shell import ShellTool
from tern.tools.web import WEB_FETCH, WebSearchTool, web_fetch

MESSAGE = ToolSchema("message", "Send a message to the user right away, before the final reply", MessageInput)


async def send_message(params: MessageInput, context: ToolContext | None) -> str:
    if context is None or context.publish is None:
        raise ToolExecutionError("no outbound channel available")
    await context.publish(OutboundMessage(session_id=context.session_id, text=params.content, kind=OutboundKind.NOTICE))
    return "message sent"


def register_builtin_tools(registry: ToolRegistry, settings: Settings, workspace: Path | None = None) -> ToolRegistry:
    """Register file, shell, web and message tools for one workspace."""
    workspace = workspace or settings.resolve_workspace()
    files = FileTools(workspace, restrict=settings.restrict_to_workspace)
    registry.register(READ_FILE, files.read_file)
    registry.register(WRITE_FILE, files.write_file)
    registry.register(EDIT_FILE, files.edit_file)
    registry.register(LIST_DIR, files.list_dir)
    registry.register_tool(
        ShellTool(workspace, timeout_seconds=settings.exec_timeout_seconds, restrict=settings.restrict_to_workspace)
    )
    registry.register_tool(WebSearchTool(settings.web_search_api_key))
    registry.register(WEB_FETCH, web_fetch)
    registry.register(MESSAGE, send_message, context=True)
    return registry
