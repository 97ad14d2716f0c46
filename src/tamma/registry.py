"""Capability registry: adapters and their descriptors, by name.

The registry is an explicit object constructed once and handed to the
dispatch façades. Reads go against an immutable snapshot; registration and
descriptor refresh build a new snapshot under a write lock and swap it in,
so a reader never observes a half-applied update.
"""

from __future__ import annotations

import inspect
import logging
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from tamma.capabilities import CapabilityDescriptor, parse_flag, snapshot
from tamma.core.errors import (
    DuplicateRegistrationError,
    InvalidConfigError,
    NotRegisteredError,
)

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from tamma.capabilities import CapabilityFlag

logger = logging.getLogger(__name__)

A = TypeVar("A")


@dataclass(frozen=True, slots=True)
class Registration(Generic[A]):
    """An adapter together with the descriptor captured for it."""

    name: str
    adapter: A
    descriptor: CapabilityDescriptor


class CapabilityRegistry(Generic[A]):
    """Concurrent-safe map of name -> (adapter, descriptor).

    Handles registration without silent overwrite, lookup, discovery by
    capability, atomic descriptor refresh and bulk disposal.
    """

    def __init__(self, kind: str = "provider") -> None:
        self._kind = kind
        self._write_lock = threading.Lock()
        self._entries: Mapping[str, Registration[A]] = MappingProxyType({})

    # ── Registration ─────────────────────────────────────────────

    def register(
        self,
        name: str,
        adapter: A,
        descriptor: CapabilityDescriptor | Mapping[str, Any],
    ) -> Registration[A]:
        """Register ``adapter`` under ``name``.

        Raises:
            DuplicateRegistrationError: If ``name`` is already registered.
            InvalidConfigError: If ``name`` is empty, ``adapter`` is None or
                the descriptor doesn't validate.
        """
        if not name or not name.strip():
            raise InvalidConfigError(self._kind, f"{self._kind} name cannot be empty")
        if adapter is None:
            raise InvalidConfigError(name, f"{self._kind} adapter cannot be None")
        frozen = snapshot(descriptor)

        with self._write_lock:
            if name in self._entries:
                msg = f"{self._kind.capitalize()} already registered: {name}"
                raise DuplicateRegistrationError(name, msg)
            entry = Registration(name=name, adapter=adapter, descriptor=frozen)
            self._entries = MappingProxyType({**self._entries, name: entry})

        logger.info("Registered %s: %s", self._kind, name)
        return entry

    def unregister(self, name: str) -> Registration[A]:
        """Remove ``name`` and return its last registration.

        Raises:
            NotRegisteredError: If ``name`` is not registered.
        """
        with self._write_lock:
            entry = self._entries.get(name)
            if entry is None:
                raise self._not_registered(name)
            remaining = {k: v for k, v in self._entries.items() if k != name}
            self._entries = MappingProxyType(remaining)

        logger.info("Unregistered %s: %s", self._kind, name)
        return entry

    def refresh_descriptor(
        self,
        name: str,
        descriptor: CapabilityDescriptor | Mapping[str, Any],
    ) -> CapabilityDescriptor:
        """Replace the descriptor for ``name`` wholesale.

        Registrations fetched earlier keep the descriptor they captured.

        Returns:
            The registry's own copy of the new descriptor.

        Raises:
            NotRegisteredError: If ``name`` is not registered.
        """
        frozen = snapshot(descriptor)
        with self._write_lock:
            entry = self._entries.get(name)
            if entry is None:
                raise self._not_registered(name)
            updated = Registration(name=name, adapter=entry.adapter, descriptor=frozen)
            self._entries = MappingProxyType({**self._entries, name: updated})

        logger.info("Refreshed capabilities for %s %s", self._kind, name)
        return frozen

    # ── Lookup ───────────────────────────────────────────────────

    def get(self, name: str) -> Registration[A]:
        """Look up a registration.

        Raises:
            NotRegisteredError: If ``name`` is not registered.
        """
        entry = self._entries.get(name)
        if entry is None:
            raise self._not_registered(name)
        return entry

    def has(self, name: str) -> bool:
        return name in self._entries

    def names(self) -> list[str]:
        """Registered names in registration order."""
        return list(self._entries)

    def list_by_capability(self, flag: CapabilityFlag | str) -> list[str]:
        """Names whose descriptor has ``flag`` set, in registration order."""
        resolved = parse_flag(flag)
        return [
            name
            for name, entry in self._entries.items()
            if entry.descriptor.has(resolved)
        ]

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Registration[A]]:
        return iter(list(self._entries.values()))

    # ── Lifecycle ────────────────────────────────────────────────

    async def dispose_all(self) -> None:
        """Dispose every adapter, then clear the registry.

        A failing ``dispose`` is logged and does not stop the others.
        """
        with self._write_lock:
            entries = list(self._entries.values())
            self._entries = MappingProxyType({})

        for entry in entries:
            dispose = getattr(entry.adapter, "dispose", None)
            if dispose is None:
                continue
            try:
                result = dispose()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Error disposing %s %s", self._kind, entry.name)

    def _not_registered(self, name: str) -> NotRegisteredError:
        msg = f"{self._kind.capitalize()} not registered: {name}"
        return NotRegisteredError(name, msg)
