from .logs import (
    DeleteFailureResponse,
    DeleteLogsResponse,
    FileNamesRequest,
    LogBatchResponse,
    LogListResponse,
    LogSummaryResponse,
    RecomputeResponse,
)

__all__ = [
    "DeleteFailureResponse",
    "DeleteLogsResponse",
    "FileNamesRequest",
    "LogBatchResponse",
    "LogListResponse",
    "LogSummaryResponse",
    "RecomputeResponse",
]
