"""Session stores: append-only conversation logs keyed by session id."""

from __future__ import annotations

import asyncio
import json
import os
import threading
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote, unquote

from loguru import logger

from tern.errors import PersistenceError, ProtocolViolation
from tern.types import ConversationTurn, Role, ToolCallRequest, pending_tool_calls

SESSION_FILE_SUFFIX = ".jsonl"


class SessionStore(Protocol):
    """Async contract for session persistence."""

    async def load(self, session_id: str) -> list[ConversationTurn]: ...

    async def append(self, session_id: str, turn: ConversationTurn) -> None: ...

    async def list_sessions(self) -> list[str]: ...


def check_append(history: list[ConversationTurn], turn: ConversationTurn) -> None:
    """Reject turns that would break the tool-call pairing of a session."""
    if turn.role == Role.TOOL:
        if turn.tool_call_id is None:
            raise ProtocolViolation("tool result without tool_call_id")
        if turn.tool_call_id not in pending_tool_calls(history):
            raise ProtocolViolation(f"tool result '{turn.tool_call_id}' has no matching unanswered tool call")
    elif turn.tool_call_id is not None:
        raise ProtocolViolation(f"{turn.role} turn cannot carry a tool_call_id")
    if turn.tool_calls and turn.role != Role.ASSISTANT:
        raise ProtocolViolation(f"{turn.role} turn cannot carry tool calls")
    if turn.tool_calls:
        used = {call.id for earlier in history for call in earlier.tool_calls}
        for call in turn.tool_calls:
            if call.id in used:
                raise ProtocolViolation(f"tool call id '{call.id}' is already used in this session")
            used.add(call.id)


def turn_to_payload(turn: ConversationTurn) -> dict[str, Any]:
    payload: dict[str, Any] = {"role": turn.role.value, "content": turn.content}
    if turn.tool_calls:
        payload["tool_calls"] = [call.to_payload() for call in turn.tool_calls]
    if turn.tool_call_id is not None:
        payload["tool_call_id"] = turn.tool_call_id
    payload["timestamp"] = turn.timestamp
    return payload


def turn_from_payload(payload: object) -> ConversationTurn | None:
    if not isinstance(payload, dict):
        return None
    try:
        role = Role(payload.get("role"))
    except ValueError:
        return None
    content = payload.get("content")
    if content is not None and not isinstance(content, str):
        return None
    calls: list[ToolCallRequest] = []
    for raw_call in payload.get("tool_calls") or []:
        if not isinstance(raw_call, dict):
            return None
        call_id, name, arguments = raw_call.get("id"), raw_call.get("name"), raw_call.get("arguments")
        if not isinstance(call_id, str) or not isinstance(name, str) or not isinstance(arguments, dict):
            return None
        calls.append(ToolCallRequest(id=call_id, name=name, arguments=arguments))
    tool_call_id = payload.get("tool_call_id")
    if tool_call_id is not None and not isinstance(tool_call_id, str):
        return None
    timestamp = payload.get("timestamp", 0.0)
    if not isinstance(timestamp, (int, float)):
        timestamp = 0.0
    return ConversationTurn(
        role=role,
        content=content,
        tool_calls=tuple(calls),
        tool_call_id=tool_call_id,
        timestamp=float(timestamp),
    )


class InMemorySessionStore:
    """Process-local store, used by tests and one-shot runs."""

    def __init__(self) -> None:
        self._sessions: dict[str, list[ConversationTurn]] = {}

    async def load(self, session_id: str) -> list[ConversationTurn]:
        return list(self._sessions.get(session_id, []))

    async def append(self, session_id: str, turn: ConversationTurn) -> None:
        history = self._sessions.setdefault(session_id, [])
        check_append(history, turn)
        history.append(turn)

    async def list_sessions(self) -> list[str]:
        return sorted(self._sessions)


class SessionFile:
    """Helper for one session file with an incremental read cache."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._turns: list[ConversationTurn] = []
        self._read_offset = 0

    def read(self) -> list[ConversationTurn]:
        with self._lock:
            return list(self._read_locked())

    def _reset(self) -> None:
        self._turns = []
        self._read_offset = 0

    def _read_locked(self) -> list[ConversationTurn]:
        if not self.path.exists():
            self._reset()
            return self._turns

        if self.path.stat().st_size < self._read_offset:
            # The file was truncated or replaced, so cached turns are stale.
            self._reset()

        with self.path.open("r", encoding="utf-8") as handle:
            handle.seek(self._read_offset)
            for raw_line in handle:
                line = raw_line.strip()
                if not line:
                    continue
                try:
                    payload = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("session.load.skip path={} reason=invalid_json", self.path)
                    continue
                turn = turn_from_payload(payload)
                if turn is None:
                    logger.warning("session.load.skip path={} reason=invalid_record", self.path)
                    continue
                self._turns.append(turn)
            self._read_offset = handle.tell()
        return self._turns

    def append(self, turn: ConversationTurn) -> None:
        with self._lock:
            history = self._read_locked()
            check_append(history, turn)
            line = json.dumps(turn_to_payload(turn), ensure_ascii=False) + "\n"
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                if self._has_torn_tail():
                    # Terminate a partial record left by an interrupted write.
                    logger.warning("session.append.torn_tail path={}", self.path)
                    line = "\n" + line
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(line)
                    handle.flush()
                    os.fsync(handle.fileno())
                    self._read_offset = handle.tell()
            except OSError as exc:
                raise PersistenceError(f"failed to append turn to {self.path}: {exc}") from exc
            self._turns.append(turn)

    def _has_torn_tail(self) -> bool:
        if not self.path.exists() or self.path.stat().st_size == 0:
            return False
        with self.path.open("rb") as handle:
            handle.seek(-1, os.SEEK_END)
            return handle.read(1) != b"\n"


class FileSessionStore:
    """Append-only JSONL session store, one file per session id."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self._files: dict[str, SessionFile] = {}
        self._lock = threading.Lock()

    async def load(self, session_id: str) -> list[ConversationTurn]:
        return await asyncio.to_thread(self._session_file(session_id).read)

    async def append(self, session_id: str, turn: ConversationTurn) -> None:
        await asyncio.to_thread(self._session_file(session_id).append, turn)

    async def list_sessions(self) -> list[str]:
        if not self.root.exists():
            return []
        names = [
            unquote(path.name.removesuffix(SESSION_FILE_SUFFIX)) for path in self.root.glob(f"*{SESSION_FILE_SUFFIX}")
        ]
        return sorted(names)

    def path_for(self, session_id: str) -> Path:
        return self.root / f"{quote(session_id, safe='')}{SESSION_FILE_SUFFIX}"

    def _session_file(self, session_id: str) -> SessionFile:
        with self._lock:
            if session_id not in self._files:
                self._files[session_id] = SessionFile(self.path_for(session_id))
            return self._files[session_id]
