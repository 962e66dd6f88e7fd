"""Shell execution tool."""

from __future__ import annotations

import asyncio
import contextlib
import os
import re
import signal
from pathlib import Path

from loguru import logger

from tern.errors import ToolExecutionError
from tern.tools.fs import resolve_path
from tern.tools.inputs import ExecInput
from tern.tools.schema import ToolSchema

MAX_OUTPUT_CHARS = 10_000

DENY_PATTERNS = (
    r"\brm\s+-[rf]{1,2}\b\s+/(\s|$)",
    r"\brm\s+-[rf]{1,2}\s+~",
    r"\bmkfs(\.\w+)?\b",
    r"\bdd\s+if=",
    r">\s*/dev/sd[a-z]",
    r"\b(shutdown|reboot|poweroff|halt)\b",
    r":\(\)\s*\{\s*:\|:&\s*\};:",
)

EXEC = ToolSchema("exec", "Run a shell command and return its combined output", ExecInput)


class ShellTool:
    """Runs shell commands in the workspace with a timeout and a deny-list."""

    def __init__(self, workspace: Path, *, timeout_seconds: float = 60.0, restrict: bool = False) -> None:
        self.workspace = workspace
        self.timeout_seconds = timeout_seconds
        self.restrict = restrict
        self._deny = [re.compile(pattern) for pattern in DENY_PATTERNS]

    def schema(self) -> ToolSchema:
        return EXEC

    def guard(self, command: str) -> None:
        lowered = command.strip().lower()
        for pattern in self._deny:
            if pattern.search(lowered):
                raise ToolExecutionError("command blocked by safety guard")
        if self.restrict and "../" in command:
            raise ToolExecutionError("path traversal is not allowed outside the workspace")

    async def invoke(self, params: ExecInput) -> str:
        command = params.command
        self.guard(command)
        cwd = resolve_path(self.workspace, params.cwd, restrict=self.restrict) if params.cwd else self.workspace

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as exc:
            raise ToolExecutionError(str(exc)) from exc

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout_seconds)
        except TimeoutError:
            logger.warning("exec.timeout command={!r} timeout={}s", command, self.timeout_seconds)
            raise ToolExecutionError(f"command timed out after {self.timeout_seconds}s") from None
        finally:
            if process.returncode is None:
                await _terminate(process)

        output = stdout.decode("utf-8", errors="replace")
        if error_text := stderr.decode("utf-8", errors="replace").strip():
            output = f"{output}\nSTDERR:\n{error_text}" if output.strip() else f"STDERR:\n{error_text}"
        output = output.strip()
        if len(output) > MAX_OUTPUT_CHARS:
            output = output[:MAX_OUTPUT_CHARS] + f"\n... (truncated, {len(output) - MAX_OUTPUT_CHARS} more chars)"
        if process.returncode != 0:
            raise ToolExecutionError(f"exit={process.returncode}\n{output or '(empty)'}")
        return output or "(empty)"


async def _terminate(process: asyncio.subprocess.Process) -> None:
    """Kill the command's process group and reap it, also when the call is being cancelled."""
    with contextlib.suppress(ProcessLookupError):
        os.killpg(process.pid, signal.SIGKILL)
    await asyncio.shield(process.wait())
