"""Heuristic token counter — offline estimate, no provider calls."""

import json
import math
from typing import Any

from tap_proxy.application.interfaces.token_counter import TokenCounter
from tap_proxy.domain.entities.metrics import ESTIMATE

CHARS_PER_TOKEN = 4.2


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    return max(1, math.ceil(len(text) / CHARS_PER_TOKEN))


class HeuristicTokenCounter(TokenCounter):
    """Approximates tokens as ``ceil(len / 4.2)``, at least 1 for non-empty text."""

    @property
    def methodology(self) -> str:
        return ESTIMATE

    async def count_system(self, model: str, text: str) -> int:
        return estimate_tokens(text)

    async def count_user(self, model: str, text: str) -> int:
        return estimate_tokens(text)

    async def count_assistant(self, model: str, text: str) -> int:
        return estimate_tokens(text)

    async def count_tools(self, model: str, tools: list[Any]) -> int:
        if not tools:
            return 0
        return estimate_tokens(json.dumps(tools, separators=(",", ":")))
