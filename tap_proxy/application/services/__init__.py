from .agent_tag_analyzer import AgentTagAnalyzer
from .capture_proxy_service import CapturedStream, CaptureProxyService, ProxyResult
from .log_service import LogService
from .metrics_registry import AnalysisReport, MetricsRegistry
from .metrics_worker import MetricsWorker
from .sse_parser import SSEEvent, SSEParser
from .stream_reconstructor import StreamReconstructor, reconstruct_stream
from .token_breakdown_analyzer import TokenBreakdownAnalyzer
from .tool_metrics_analyzer import ToolMetricsAnalyzer

__all__ = [
    "AgentTagAnalyzer",
    "CapturedStream",
    "CaptureProxyService",
    "ProxyResult",
    "LogService",
    "AnalysisReport",
    "MetricsRegistry",
    "MetricsWorker",
    "SSEEvent",
    "SSEParser",
    "StreamReconstructor",
    "reconstruct_stream",
    "TokenBreakdownAnalyzer",
    "ToolMetricsAnalyzer",
]
