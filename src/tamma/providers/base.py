"""Provider adapter interface.

All AI provider adapters satisfy the ``AIProvider`` protocol. Adapters are
leaf classes: they share this contract and the unified model in
``tamma.models``, never a base class.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from tamma.capabilities import CapabilityDescriptor
    from tamma.config.schema import ProviderConfig
    from tamma.models import MessageChunk, MessageRequest, MessageResponse, ModelInfo


@runtime_checkable
class AIProvider(Protocol):
    """Protocol that all AI provider adapters must satisfy.

    Implementations hold connection config but no conversation state.
    Every vendor failure surfaces as a ``tamma.core.errors.ProviderError``.
    """

    @property
    def provider_id(self) -> str:
        """Unique identifier for this provider (e.g. 'anthropic', 'openai')."""
        ...

    @property
    def credential_id(self) -> str:
        """Fingerprint of the credential in use, for rate-limit bucketing."""
        ...

    async def initialize(self, config: ProviderConfig) -> None:
        """Validate config and build the SDK client. No network call.

        Raises InvalidConfigError on missing or malformed fields.
        """
        ...

    def send_streaming(self, request: MessageRequest) -> AsyncIterator[MessageChunk]:
        """Yield response chunks in vendor order.

        The final chunk has ``is_final=True``. A vendor failure mid-stream
        raises a ProviderError after the chunks already delivered; closing
        the iterator early aborts the underlying request.
        """
        ...

    async def send_sync(self, request: MessageRequest) -> MessageResponse:
        """Send a request and wait for the complete response."""
        ...

    def get_capabilities(self) -> CapabilityDescriptor:
        """Current capability descriptor. Pure, no network call."""
        ...

    async def list_models(self) -> list[ModelInfo]:
        """Metadata for all models available through this provider."""
        ...

    async def dispose(self) -> None:
        """Release connections. Idempotent."""
        ...
