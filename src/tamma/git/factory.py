"""Platform factory: build Git adapters by type name."""

from __future__ import annotations

import functools
import logging
from typing import TYPE_CHECKING

from tamma.core.errors import DuplicateRegistrationError, InvalidConfigError

from .gitea import GiteaPlatform
from .github import GitHubPlatform
from .gitlab import GitLabPlatform

if TYPE_CHECKING:
    from collections.abc import Callable

    from tamma.config.schema import PlatformConfig

    from .base import GitPlatform

    PlatformCreator = Callable[[], GitPlatform]

logger = logging.getLogger(__name__)


class PlatformFactory:
    """Maps platform type names to adapter constructors.

    Builtin types: ``github``, ``gitlab``, ``gitea``, ``forgejo``.
    """

    def __init__(self) -> None:
        self._creators: dict[str, PlatformCreator] = {
            "github": GitHubPlatform,
            "gitlab": GitLabPlatform,
            "gitea": GiteaPlatform,
            "forgejo": functools.partial(GiteaPlatform, platform_id="forgejo"),
        }

    def register_creator(self, platform_type: str, creator: PlatformCreator) -> None:
        """Add a platform type.

        Raises:
            DuplicateRegistrationError: If the type already has a creator.
        """
        if platform_type in self._creators:
            msg = f"Platform type already registered: {platform_type}"
            raise DuplicateRegistrationError(platform_type, msg)
        self._creators[platform_type] = creator

    def unregister_creator(self, platform_type: str) -> bool:
        return self._creators.pop(platform_type, None) is not None

    def supported_types(self) -> list[str]:
        return sorted(self._creators)

    async def create_platform(
        self,
        platform_type: str,
        config: PlatformConfig,
    ) -> GitPlatform:
        """Construct and initialize an adapter of ``platform_type``.

        Raises:
            InvalidConfigError: Unknown type, or the adapter rejected
                ``config``.
        """
        creator = self._creators.get(platform_type)
        if creator is None:
            supported = ", ".join(self.supported_types())
            msg = f"Unknown platform type: {platform_type} (supported: {supported})"
            raise InvalidConfigError(platform_type, msg)

        platform = creator()
        await platform.initialize(config)
        logger.debug("Created %s platform", platform_type)
        return platform
