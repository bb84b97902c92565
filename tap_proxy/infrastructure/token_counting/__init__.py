"""Token counting infrastructure — concrete TokenCounter implementations."""

from .anthropic_token_counter import AnthropicTokenCounter
from .heuristic_token_counter import HeuristicTokenCounter

__all__ = ["AnthropicTokenCounter", "HeuristicTokenCounter"]
