"""Input models for the built-in tools."""

from __future__ import annotations

from pydantic import Field

from tern.tools.schema import ToolInput


class ReadFileInput(ToolInput):
    """Read a text file with optional line offset and limit."""

    path: str = Field(..., description="Path to the file")
    offset: int = Field(default=0, ge=0, description="Line offset (0-based)")
    limit: int | None = Field(default=None, ge=1, description="Maximum number of lines to read")


class WriteFileInput(ToolInput):
    """Write content to a file."""

    path: str = Field(..., description="Path to the file")
    content: str = Field(..., description="File contents")


class EditFileInput(ToolInput):
    """Replace text in a file."""

    path: str = Field(..., description="Path to the file")
    old: str = Field(..., description="Text to replace")
    new: str = Field(..., description="Replacement text")
    all: bool = Field(default=False, description="Replace all occurrences")


class ListDirInput(ToolInput):
    path: str = Field(default=".", description="Directory path")


class ExecInput(ToolInput):
    """Run a shell command."""

    command: str = Field(..., description="Shell command to run")
    cwd: str | None = Field(default=None, description="Working directory")


class WebSearchInput(ToolInput):
    """Search the web via the Brave Search API."""

    query: str = Field(..., description="Search query")
    count: int = Field(default=5, ge=1, le=10, description="Number of results")


class WebFetchInput(ToolInput):
    """Fetch a web page and convert the HTML body to markdown."""

    url: str = Field(..., description="URL to fetch")


class MessageInput(ToolInput):
    content: str = Field(..., description="Message text")
