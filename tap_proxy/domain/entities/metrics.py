"""Domain entities for derived metrics attached to interaction records.

Each shape is owned by exactly one analyzer and serialized under one key of
the persisted record (``tokenUsage``, ``agentTag``, ``toolMetrics``).
"""

from dataclasses import dataclass, field
from typing import Any

ESTIMATE = "estimate"


@dataclass
class TokenUsageTotals:
    """Token totals exactly as reported by the upstream provider."""

    input_tokens: int | None = None
    output_tokens: int | None = None
    cache_creation_input_tokens: int | None = None
    cache_read_input_tokens: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "cacheCreationInputTokens": self.cache_creation_input_tokens,
            "cacheReadInputTokens": self.cache_read_input_tokens,
        }


@dataclass
class TokenCountDetail:
    tokens: int | None = 0
    text_length: int = 0
    segments: int = 0
    methodology: str = ESTIMATE

    def to_dict(self) -> dict[str, Any]:
        return {
            "tokens": self.tokens,
            "textLength": self.text_length,
            "segments": self.segments,
            "methodology": self.methodology,
        }


@dataclass
class TokenBreakdown:
    segments: dict[str, TokenCountDetail] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int | None:
        """Sum of all segments, or None as soon as one segment is unknown."""
        total = 0
        for detail in self.segments.values():
            if detail.tokens is None:
                return None
            total += detail.tokens
        return total

    def to_dict(self) -> dict[str, Any]:
        return {
            "segments": {name: detail.to_dict() for name, detail in self.segments.items()},
            "totalTokens": self.total_tokens,
        }


@dataclass
class TokenUsageSummary:
    """Per-role token breakdown plus the provider-reported totals."""

    system_totals: TokenUsageTotals
    input: TokenBreakdown
    output: TokenBreakdown
    provider: str = ESTIMATE
    methodology: str = ESTIMATE

    @property
    def total_tokens(self) -> int | None:
        if self.input.total_tokens is None or self.output.total_tokens is None:
            return None
        return self.input.total_tokens + self.output.total_tokens

    def to_dict(self) -> dict[str, Any]:
        return {
            "system_totals": self.system_totals.to_dict(),
            "custom": {
                "provider": self.provider,
                "methodology": self.methodology,
                "input": self.input.to_dict(),
                "output": self.output.to_dict(),
                "totalTokens": self.total_tokens,
            },
        }


@dataclass
class AgentTagTheme:
    text: str
    background: str
    border: str


@dataclass
class AgentTag:
    """Category of agent that issued a request, derived from its system prompt."""

    id: str
    label: str
    theme: AgentTagTheme
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "label": self.label,
            "theme": {
                "text": self.theme.text,
                "background": self.theme.background,
                "border": self.theme.border,
            },
        }
        if self.description:
            data["description"] = self.description
        return data


@dataclass
class ToolUsageDetail:
    tool_name: str
    call_count: int = 0
    return_token_counts: list[int] = field(default_factory=list)

    @property
    def total_return_tokens(self) -> int:
        return sum(self.return_token_counts)

    @property
    def avg_return_tokens(self) -> float:
        if not self.return_token_counts:
            return 0
        return self.total_return_tokens / len(self.return_token_counts)

    def to_dict(self) -> dict[str, Any]:
        counts = self.return_token_counts
        return {
            "toolName": self.tool_name,
            "callCount": self.call_count,
            "totalReturnTokens": self.total_return_tokens,
            "avgReturnTokens": self.avg_return_tokens,
            "maxReturnTokens": max(counts) if counts else 0,
            "minReturnTokens": min(counts) if counts else None,
            "returnTokenCounts": list(counts),
        }


@dataclass
class ToolMetricsSummary:
    total_tools_available: int
    tools: list[ToolUsageDetail] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalToolsAvailable": self.total_tools_available,
            "totalToolCalls": sum(t.call_count for t in self.tools),
            "totalToolResults": sum(len(t.return_token_counts) for t in self.tools),
            "tools": [t.to_dict() for t in self.tools],
        }
