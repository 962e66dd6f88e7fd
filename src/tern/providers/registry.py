"""Known OpenAI-compatible providers and how settings map onto one of them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from tern.errors import ConfigurationError

if TYPE_CHECKING:
    from tern.config import Settings


@dataclass(frozen=True)
class ProviderSpec:
    """One row of the provider table.

    Gateways front many vendors and are matched by key prefix or base URL.
    Direct providers are matched by a keyword in the model name. Local servers
    need an explicit base URL and no key.
    """

    name: str
    label: str
    keywords: tuple[str, ...] = ()
    is_gateway: bool = False
    is_local: bool = False
    detect_by_key_prefix: str = ""
    detect_by_base_keyword: str = ""
    default_api_base: str = ""
    strip_model_prefix: bool = False
    # Temperature forced for models whose name contains the pattern.
    temperature_overrides: tuple[tuple[str, float], ...] = ()

    @property
    def settings_key(self) -> str:
        return f"{self.name}_api_key"


PROVIDERS: tuple[ProviderSpec, ...] = (
    ProviderSpec(
        "openrouter",
        "OpenRouter",
        keywords=("openrouter",),
        is_gateway=True,
        detect_by_key_prefix="sk-or-",
        detect_by_base_keyword="openrouter",
        default_api_base="https://openrouter.ai/api/v1",
    ),
    ProviderSpec(
        "aihubmix",
        "AiHubMix",
        keywords=("aihubmix",),
        is_gateway=True,
        detect_by_base_keyword="aihubmix",
        default_api_base="https://aihubmix.com/v1",
        strip_model_prefix=True,
    ),
    ProviderSpec("anthropic", "Anthropic", ("anthropic", "claude"), default_api_base="https://api.anthropic.com/v1/"),
    ProviderSpec("openai", "OpenAI", ("openai", "gpt")),
    ProviderSpec("deepseek", "DeepSeek", ("deepseek",), default_api_base="https://api.deepseek.com/v1"),
    ProviderSpec(
        "gemini",
        "Gemini",
        ("gemini",),
        default_api_base="https://generativelanguage.googleapis.com/v1beta/openai/",
    ),
    ProviderSpec("zhipu", "Zhipu", ("zhipu", "glm", "zai"), default_api_base="https://open.bigmodel.cn/api/paas/v4"),
    ProviderSpec(
        "dashscope",
        "DashScope",
        ("qwen", "dashscope"),
        default_api_base="https://dashscope.aliyuncs.com/compatible-mode/v1",
    ),
    ProviderSpec(
        "moonshot",
        "Moonshot",
        ("moonshot", "kimi"),
        default_api_base="https://api.moonshot.ai/v1",
        temperature_overrides=(("kimi-k2.5", 1.0),),
    ),
    ProviderSpec("minimax", "MiniMax", ("minimax",), default_api_base="https://api.minimax.io/v1"),
    ProviderSpec("vllm", "vLLM/Local", ("vllm",), is_local=True),
    ProviderSpec("groq", "Groq", ("groq",), default_api_base="https://api.groq.com/openai/v1"),
)


def find_by_name(name: str) -> ProviderSpec | None:
    lowered = name.strip().lower()
    return next((spec for spec in PROVIDERS if spec.name == lowered), None)


def find_by_model(model: str) -> ProviderSpec | None:
    """Direct provider whose keyword appears in the model name."""
    lowered = model.lower()
    return next(
        (
            spec
            for spec in PROVIDERS
            if not spec.is_gateway and not spec.is_local and any(keyword in lowered for keyword in spec.keywords)
        ),
        None,
    )


def find_gateway(provider: str | None, api_key: str | None, api_base: str | None) -> ProviderSpec | None:
    """Gateway or local server named explicitly, or recognised from the key prefix or base URL."""
    if provider:
        spec = find_by_name(provider)
        if spec is not None and (spec.is_gateway or spec.is_local):
            return spec
    for spec in PROVIDERS:
        if spec.detect_by_key_prefix and api_key and api_key.startswith(spec.detect_by_key_prefix):
            return spec
        if spec.detect_by_base_keyword and api_base and spec.detect_by_base_keyword in api_base:
            return spec
    return None


def resolve_model(model: str, spec: ProviderSpec | None) -> str:
    """Model name as the endpoint expects it.

    Gateways keep ``vendor/model`` names unless they want bare names. Direct
    providers drop a leading ``<provider>/`` routing prefix.
    """
    if spec is None:
        return model
    if spec.is_gateway:
        return model.rsplit("/", 1)[-1] if spec.strip_model_prefix else model
    prefix = f"{spec.name}/"
    return model[len(prefix) :] if model.lower().startswith(prefix) else model


def temperature_for(model: str, spec: ProviderSpec | None, default: float) -> float:
    direct = find_by_model(model) if spec is None or spec.is_gateway else spec
    if direct is None:
        return default
    lowered = model.lower()
    for pattern, temperature in direct.temperature_overrides:
        if pattern in lowered:
            return temperature
    return default


@dataclass(frozen=True)
class ResolvedProvider:
    """Endpoint, credentials and request options picked for the configured model."""

    spec: ProviderSpec | None
    model: str
    api_key: str | None
    api_base: str | None
    temperature: float

    @property
    def name(self) -> str:
        return self.spec.name if self.spec is not None else "custom"


def provider_keys(settings: Settings) -> dict[str, bool]:
    """Whether each known provider has credentials, as shown by ``tern status``."""
    status: dict[str, bool] = {}
    for spec in PROVIDERS:
        configured = bool(getattr(settings, spec.settings_key, None))
        if spec.is_local:
            configured = configured or (settings.provider == spec.name and bool(settings.api_base))
        status[spec.name] = configured
    return status


def resolve_provider(settings: Settings) -> ResolvedProvider:
    """Pick the provider for ``settings.model``.

    An explicit ``provider`` or a recognisable gateway key or base URL wins.
    Otherwise the model name selects a direct provider. When that provider has
    no key, the first gateway with a key is used.
    """
    spec = find_gateway(settings.provider, settings.api_key, settings.api_base)
    if spec is None and settings.provider:
        spec = find_by_name(settings.provider)
        if spec is None:
            raise ConfigurationError(f"unknown provider '{settings.provider}'")
    if spec is None:
        spec = find_by_model(settings.model)

    api_key = settings.api_key or (getattr(settings, spec.settings_key, None) if spec is not None else None)
    if not api_key and not settings.api_base and settings.provider is None:
        for gateway in PROVIDERS:
            if gateway.is_gateway and getattr(settings, gateway.settings_key, None):
                spec, api_key = gateway, getattr(settings, gateway.settings_key)
                break

    api_base = settings.api_base or (spec.default_api_base if spec is not None else "") or None
    return ResolvedProvider(
        spec=spec,
        model=resolve_model(settings.model, spec),
        api_key=api_key,
        api_base=api_base,
        temperature=temperature_for(settings.model, spec, settings.temperature),
    )
