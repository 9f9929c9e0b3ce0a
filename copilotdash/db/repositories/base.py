"""Repository interfaces shared by every storage backend."""
from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class StateRepository(Protocol):
    """Small JSON documents stored under fixed keys."""

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def keys(self) -> list[str]: ...
