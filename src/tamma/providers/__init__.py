"""AI provider adapters."""

from tamma.providers.anthropic import AnthropicProvider
from tamma.providers.base import AIProvider
from tamma.providers.factory import ProviderFactory
from tamma.providers.google import GoogleProvider
from tamma.providers.openai import OpenAIProvider, openrouter_provider

__all__ = [
    "AIProvider",
    "AnthropicProvider",
    "GoogleProvider",
    "OpenAIProvider",
    "ProviderFactory",
    "openrouter_provider",
]
