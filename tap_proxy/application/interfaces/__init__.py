from .change_source import ChangeSource
from .log_store import DeleteFailure, DeleteResult, LogStore
from .metrics_analyzer import MetricsAnalyzer
from .token_counter import TokenCounter

__all__ = [
    "ChangeSource",
    "DeleteFailure",
    "DeleteResult",
    "LogStore",
    "MetricsAnalyzer",
    "TokenCounter",
]
