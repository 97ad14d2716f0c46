"""Provider factory: build AI adapters by type name."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from tamma.core.errors import DuplicateRegistrationError, InvalidConfigError

from .anthropic import AnthropicProvider
from .google import GoogleProvider
from .openai import OpenAIProvider, openrouter_provider

if TYPE_CHECKING:
    from collections.abc import Callable

    from tamma.config.schema import ProviderConfig

    from .base import AIProvider

    ProviderCreator = Callable[[], AIProvider]

logger = logging.getLogger(__name__)


class ProviderFactory:
    """Maps provider type names to adapter constructors.

    Builtin types: ``anthropic``, ``openai``, ``google``, ``openrouter``.
    """

    def __init__(self) -> None:
        self._creators: dict[str, ProviderCreator] = {
            "anthropic": AnthropicProvider,
            "openai": OpenAIProvider,
            "google": GoogleProvider,
            "openrouter": openrouter_provider,
        }

    def register_creator(self, provider_type: str, creator: ProviderCreator) -> None:
        """Add a provider type.

        Raises:
            DuplicateRegistrationError: If the type already has a creator.
        """
        if provider_type in self._creators:
            msg = f"Provider type already registered: {provider_type}"
            raise DuplicateRegistrationError(provider_type, msg)
        self._creators[provider_type] = creator

    def unregister_creator(self, provider_type: str) -> bool:
        """Remove a provider type. Returns False if it was unknown."""
        return self._creators.pop(provider_type, None) is not None

    def supported_types(self) -> list[str]:
        return sorted(self._creators)

    async def create_provider(
        self,
        provider_type: str,
        config: ProviderConfig,
    ) -> AIProvider:
        """Construct and initialize an adapter of ``provider_type``.

        Raises:
            InvalidConfigError: Unknown type, or the adapter rejected
                ``config``.
        """
        creator = self._creators.get(provider_type)
        if creator is None:
            supported = ", ".join(self.supported_types())
            msg = f"Unknown provider type: {provider_type} (supported: {supported})"
            raise InvalidConfigError(provider_type, msg)

        provider = creator()
        await provider.initialize(config)
        logger.debug("Created %s provider", provider_type)
        return provider
