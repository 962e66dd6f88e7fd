"""Configuration management for Tern."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_HOME = Path.home() / ".tern"


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="TERN_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Provider
    model: str = Field(default="gpt-4o-mini", description="Chat Completions model name")
    api_key: str | None = Field(default=None, description="API key for the LLM provider")
    api_base: str | None = Field(default=None, description="Optional OpenAI-compatible API base URL")
    max_tokens: int = Field(default=4096, ge=1, description="Maximum tokens for responses")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    provider: str | None = Field(default=None, description="Provider name from the provider table, detected when unset")

    # Per-provider keys, used when api_key is unset
    openrouter_api_key: str | None = None
    aihubmix_api_key: str | None = None
    anthropic_api_key: str | None = None
    openai_api_key: str | None = None
    deepseek_api_key: str | None = None
    gemini_api_key: str | None = None
    zhipu_api_key: str | None = None
    dashscope_api_key: str | None = None
    moonshot_api_key: str | None = None
    minimax_api_key: str | None = None
    vllm_api_key: str | None = None
    groq_api_key: str | None = None

    # Paths
    home: Path = Field(default=DEFAULT_HOME, description="State directory for sessions")
    workspace: Path = Field(default=DEFAULT_HOME / "workspace", description="Agent workspace directory")

    # Agent loop
    max_rounds: int | None = Field(default=20, ge=1, description="Maximum tool-call rounds per inbound message")
    provider_timeout_seconds: float | None = Field(default=120.0, gt=0)
    tool_timeout_seconds: float | None = Field(default=120.0, gt=0)
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0.0)
    retry_max_delay: float = Field(default=30.0, ge=0.0)
    emit_tool_notices: bool = Field(default=False, description="Publish a notice for each tool call")
    turn_guard: bool = Field(default=False, description="Re-ask once when a reply wrongly claims there are no tools")

    # Tools
    exec_timeout_seconds: float = Field(default=60.0, gt=0)
    restrict_to_workspace: bool = Field(default=False, description="Confine file and shell tools to the workspace")
    web_search_api_key: str | None = Field(default=None, description="Brave Search API key")

    def resolve_home(self) -> Path:
        return self.home.expanduser().resolve()

    def resolve_workspace(self) -> Path:
        return self.workspace.expanduser().resolve()

    @property
    def sessions_path(self) -> Path:
        return self.resolve_home() / "sessions"

    @property
    def log_path(self) -> Path:
        return self.resolve_home() / "logs" / "tern.log"


def load_settings(workspace: Path | None = None, **overrides: object) -> Settings:
    """Load settings from the environment and ``.env``, applying CLI overrides."""
    settings = Settings()
    updates: dict[str, object] = {key: value for key, value in overrides.items() if value is not None}
    if workspace is not None:
        updates["workspace"] = workspace
    if updates:
        settings = settings.model_copy(update=updates)
    return settings
