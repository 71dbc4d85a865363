"""
Search collaborator interface.

The dictionary's entry search lives outside the real-time layer; the
dispatcher only needs something that answers a query. A plain database filter
and the AI-assisted search both fit this interface.
"""

from typing import Any, Protocol


class SearchProvider(Protocol):
    """Answers real-time search queries."""

    async def search(self, query: str, context: dict[str, Any]) -> list[dict[str, Any]]: ...

    async def suggest(self, query: str, context: dict[str, Any]) -> list[str]: ...


class NullSearchProvider:
    """Search provider used when no search backend is wired in."""

    async def search(self, query: str, context: dict[str, Any]) -> list[dict[str, Any]]:
        return []

    async def suggest(self, query: str, context: dict[str, Any]) -> list[str]:
        return []
