"""Agent loop and runtime."""

from tern.agent.context import AgentContext
from tern.agent.loop import AgentLoop, LoopState
from tern.agent.runtime import AgentRuntime, build_provider
from tern.agent.turn_guard import TurnGuard

__all__ = ["AgentContext", "AgentLoop", "AgentRuntime", "LoopState", "TurnGuard", "build_provider"]
