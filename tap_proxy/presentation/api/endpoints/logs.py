"""Interaction log endpoints — list, fetch, delete and recompute stored logs."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, status

from tap_proxy.application.schemas import (
    DeleteFailureResponse,
    DeleteLogsResponse,
    FileNamesRequest,
    LogBatchResponse,
    LogListResponse,
    LogSummaryResponse,
    RecomputeResponse,
)
from tap_proxy.application.services import LogService
from tap_proxy.application.services.log_service import DEFAULT_PAGE_SIZE
from tap_proxy.domain.exceptions import MetricsWorkerNotRunningError
from tap_proxy.infrastructure.dependencies import get_log_service

router = APIRouter(prefix="/logs", tags=["Logs"])


def _require_file_names(data: FileNamesRequest) -> list[str]:
    names = [n for n in data.file_names if isinstance(n, str) and n]
    if not names:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="fileNames must be a non-empty array",
        )
    return names


@router.get("", response_model=LogListResponse)
async def list_logs(
    limit: int = DEFAULT_PAGE_SIZE,
    cursor: str | None = None,
    service: LogService = Depends(get_log_service),
) -> LogListResponse:
    """Newest-first page of log summaries; pass ``nextCursor`` to continue."""
    page = service.list_logs(limit=limit, cursor=cursor)
    return LogListResponse(
        items=[LogSummaryResponse(**asdict(s)) for s in page.items],
        next_cursor=page.next_cursor,
    )


@router.post("/batch", response_model=LogBatchResponse)
async def get_logs_batch(
    data: FileNamesRequest,
    service: LogService = Depends(get_log_service),
) -> LogBatchResponse:
    """Fetch several full logs at once; unknown names are listed in ``missing``."""
    batch = service.get_logs(_require_file_names(data))
    return LogBatchResponse(
        logs={name: record.to_dict() for name, record in batch.logs.items()},
        missing=batch.missing,
    )


@router.post("/recompute", response_model=RecomputeResponse)
async def recompute_logs(
    service: LogService = Depends(get_log_service),
) -> RecomputeResponse:
    """Recompute every metric on every stored log."""
    try:
        processed = await service.recompute_logs()
    except MetricsWorkerNotRunningError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return RecomputeResponse(processed=processed)


@router.get("/{file_name}")
async def get_log(
    file_name: str,
    service: LogService = Depends(get_log_service),
) -> dict:
    """Retrieve one full interaction log by file name."""
    record = service.get_log(file_name)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Log not found")
    return record.to_dict()


@router.delete("", response_model=DeleteLogsResponse)
async def delete_logs(
    data: FileNamesRequest,
    service: LogService = Depends(get_log_service),
) -> DeleteLogsResponse:
    """Delete logs by file name; per-file failures are reported, not raised."""
    result = service.delete_logs(_require_file_names(data))
    return DeleteLogsResponse(
        deleted=result.deleted,
        failed=[DeleteFailureResponse(file_name=f.file_name, error=f.error) for f in result.failed],
    )
