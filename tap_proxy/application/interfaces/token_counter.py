"""Abstract interface (port) for counting tokens in request/response text."""

from abc import ABC, abstractmethod
from typing import Any


class TokenCounter(ABC):
    """Port — counts tokens the way the upstream model would.

    Implementations may call a provider API (authoritative) or estimate
    locally. ``methodology`` is recorded next to every count.
    """

    @property
    @abstractmethod
    def methodology(self) -> str:
        ...

    @abstractmethod
    async def count_system(self, model: str, text: str) -> int:
        ...

    @abstractmethod
    async def count_user(self, model: str, text: str) -> int:
        ...

    @abstractmethod
    async def count_assistant(self, model: str, text: str) -> int:
        ...

    @abstractmethod
    async def count_tools(self, model: str, tools: list[Any]) -> int:
        ...

    async def count_content(self, model: str, text: str) -> int:
        """Count arbitrary content as if it were sent as a user message."""
        return await self.count_user(model, text)
