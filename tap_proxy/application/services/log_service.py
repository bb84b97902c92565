"""Log service — read side of the interaction log plus maintenance actions.

Listing is cursor-paginated over storage names (newest first). Records whose
streamed response was stored without a reconstructed body are hydrated on
read and written back once, so later reads are cheap.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from tap_proxy.application.interfaces.log_store import DeleteResult, LogStore
from tap_proxy.application.services.metrics_worker import MetricsWorker
from tap_proxy.application.services.stream_reconstructor import StreamReconstructor
from tap_proxy.domain.entities import InteractionRecord
from tap_proxy.domain.exceptions import MetricsWorkerNotRunningError

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 2000


def clamp_limit(limit: int | None) -> int:
    if limit is None:
        return DEFAULT_PAGE_SIZE
    return max(1, min(int(limit), MAX_PAGE_SIZE))


@dataclass
class LogSummary:
    """Compact listing row for one stored interaction."""

    id: str
    file_name: str
    timestamp: str
    method: str
    path: str
    status: int | None = None
    duration_ms: int | None = None
    model: str | None = None
    error: str | None = None
    token_usage: dict[str, Any] | None = None
    agent_tag: dict[str, Any] | None = None
    tool_metrics: dict[str, Any] | None = None

    @classmethod
    def from_record(cls, file_name: str, record: InteractionRecord) -> "LogSummary":
        response = record.response
        return cls(
            id=record.id,
            file_name=file_name,
            timestamp=record.timestamp,
            method=record.method,
            path=record.path,
            status=response.status if response else None,
            duration_ms=record.duration_ms,
            model=record.model,
            error=response.error if response else None,
            token_usage=record.token_usage,
            agent_tag=record.agent_tag,
            tool_metrics=record.tool_metrics,
        )


@dataclass
class LogPage:
    items: list[LogSummary] = field(default_factory=list)
    next_cursor: str | None = None


@dataclass
class LogBatch:
    logs: dict[str, InteractionRecord] = field(default_factory=dict)
    missing: list[str] = field(default_factory=list)


def hydrate_response_body(record: InteractionRecord) -> bool:
    """Rebuild a missing streamed response body from its raw chunks.

    Returns True when the record was changed.
    """
    response = record.response
    if response is None or response.body or not response.stream_chunks:
        return False

    reconstructor = StreamReconstructor()
    for chunk in response.stream_chunks:
        reconstructor.ingest(chunk)
    message = reconstructor.finalize()
    if message is None:
        return False
    response.body = message.to_dict()
    return True


class LogService:
    """Application service over a ``LogStore``.

    ``worker`` is optional so the read side works without background
    processing; only ``recompute_logs`` requires it.
    """

    def __init__(self, store: LogStore, worker: MetricsWorker | None = None):
        self._store = store
        self._worker = worker

    def _load(self, name: str) -> InteractionRecord | None:
        record = self._store.read(name)
        if record is not None and hydrate_response_body(record):
            if self._store.write(record):
                logger.debug("Persisted hydrated body for %s", name)
        return record

    def list_logs(self, limit: int | None = DEFAULT_PAGE_SIZE, cursor: str | None = None) -> LogPage:
        limit = clamp_limit(limit)
        names = self._store.list_names()

        start = 0
        if cursor:
            try:
                start = names.index(cursor) + 1
            except ValueError:
                logger.debug("Unknown cursor %s, starting from the newest log", cursor)

        page = names[start:start + limit]
        items = []
        for name in page:
            record = self._load(name)
            if record is not None:
                items.append(LogSummary.from_record(name, record))

        # The cursor names the last entry already returned.
        next_cursor = page[-1] if page and start + len(page) < len(names) else None
        return LogPage(items=items, next_cursor=next_cursor)

    def get_log(self, name: str) -> InteractionRecord | None:
        return self._load(name)

    def get_logs(self, names: list[str]) -> LogBatch:
        batch = LogBatch()
        for name in dict.fromkeys(names):
            record = self._load(name)
            if record is None:
                batch.missing.append(name)
            else:
                batch.logs[name] = record
        return batch

    def delete_logs(self, names: list[str]) -> DeleteResult:
        unique = list(dict.fromkeys(names))
        if not unique:
            return DeleteResult()
        result = self._store.delete(unique)
        logger.info("Deleted %d log(s), %d failed", len(result.deleted), len(result.failed))
        return result

    async def recompute_logs(self) -> int:
        """Force every analyzer over every stored record.

        Raises:
            MetricsWorkerNotRunningError: If no metrics worker is attached.
        """
        if self._worker is None:
            logger.error("Recompute requested but no MetricsWorker is attached")
            raise MetricsWorkerNotRunningError()
        return await self._worker.recompute_all()
