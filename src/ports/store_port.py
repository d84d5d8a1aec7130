"""Store port — abstract async key-value persistence.

The repository layer depends on this protocol, never on a specific backend.
"""

from __future__ import annotations

from typing import Protocol


class StoreError(Exception):
    """Raised when the persistence layer cannot read or write a key."""


class KeyValueStore(Protocol):
    """Async string-valued key-value store."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...
