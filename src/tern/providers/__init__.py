"""LLM provider clients."""

from tern.providers.base import Provider, RetryPolicy
from tern.providers.registry import PROVIDERS, ProviderSpec, resolve_provider

__all__ = ["PROVIDERS", "Provider", "ProviderSpec", "RetryPolicy", "resolve_provider"]
