from .interaction_record import (
    CapturedRequest,
    CapturedResponse,
    InteractionRecord,
    sanitize_headers,
)
from .reconstructed_message import (
    ContentSegment,
    PassthroughSegment,
    ReconstructedMessage,
    TextSegment,
    ThinkingSegment,
    ToolUseSegment,
)
from .metrics import (
    AgentTag,
    AgentTagTheme,
    TokenBreakdown,
    TokenCountDetail,
    TokenUsageSummary,
    TokenUsageTotals,
    ToolMetricsSummary,
    ToolUsageDetail,
)

__all__ = [
    "CapturedRequest",
    "CapturedResponse",
    "InteractionRecord",
    "sanitize_headers",
    "ContentSegment",
    "PassthroughSegment",
    "ReconstructedMessage",
    "TextSegment",
    "ThinkingSegment",
    "ToolUseSegment",
    "AgentTag",
    "AgentTagTheme",
    "TokenBreakdown",
    "TokenCountDetail",
    "TokenUsageSummary",
    "TokenUsageTotals",
    "ToolMetricsSummary",
    "ToolUsageDetail",
]
