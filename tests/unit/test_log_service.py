"""Unit tests for LogService."""

import json

import pytest

from tap_proxy.application.services.log_service import (
    MAX_PAGE_SIZE,
    LogService,
    clamp_limit,
    hydrate_response_body,
)
from tap_proxy.application.services.metrics_registry import MetricsRegistry
from tap_proxy.application.services.metrics_worker import MetricsWorker
from tap_proxy.application.services.agent_tag_analyzer import AgentTagAnalyzer
from tap_proxy.domain.entities import CapturedRequest, CapturedResponse, InteractionRecord
from tap_proxy.domain.exceptions import MetricsWorkerNotRunningError


# ── Helpers ──


def _sse(payload: dict) -> str:
    return f"event: {payload['type']}\ndata: {json.dumps(payload)}\n\n"


STREAM_CHUNKS = [
    _sse({"type": "message_start", "message": {"id": "msg_1", "role": "assistant", "model": "m"}}),
    _sse({"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}}),
    _sse({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hi"}}),
    _sse({"type": "content_block_stop", "index": 0}),
]


def _store_records(store, count: int) -> list[str]:
    for i in range(count):
        store.write(
            InteractionRecord(
                method="POST",
                path="/v1/messages",
                timestamp=f"2024-05-01T10:00:{i:02d}.000Z",
                request=CapturedRequest(body={"model": f"model-{i}"}),
                response=CapturedResponse(status=200, body={"content": []}),
                duration_ms=i,
            )
        )
    store.writes.clear()
    return store.list_names()


# ── Pagination ──


def test_clamp_limit():
    assert clamp_limit(None) == 50
    assert clamp_limit(0) == 1
    assert clamp_limit(-5) == 1
    assert clamp_limit(10) == 10
    assert clamp_limit(10_000) == MAX_PAGE_SIZE


def test_list_logs_pages_newest_first_with_cursor(memory_store):
    names = _store_records(memory_store, 5)
    service = LogService(memory_store)

    first = service.list_logs(limit=2)
    second = service.list_logs(limit=2, cursor=names[1])
    last = service.list_logs(limit=2, cursor=names[3])

    assert [s.file_name for s in first.items] == names[:2]
    assert first.next_cursor == names[1]
    assert [s.file_name for s in second.items] == names[2:4]
    assert [s.file_name for s in last.items] == names[4:]
    assert last.next_cursor is None


def test_unknown_cursor_starts_from_newest(memory_store):
    names = _store_records(memory_store, 3)
    service = LogService(memory_store)

    page = service.list_logs(limit=10, cursor="gone.json")

    assert [s.file_name for s in page.items] == names


def test_summary_fields(memory_store):
    names = _store_records(memory_store, 1)
    service = LogService(memory_store)

    summary = service.list_logs().items[0]

    assert summary.file_name == names[0]
    assert summary.method == "POST"
    assert summary.status == 200
    assert summary.model == "model-0"
    assert summary.duration_ms == 0
    assert summary.error is None


# ── Hydration ──


def test_hydrate_response_body_rebuilds_streamed_message():
    record = InteractionRecord(
        method="POST",
        path="/v1/messages",
        response=CapturedResponse(status=200, stream_chunks=list(STREAM_CHUNKS)),
    )

    assert hydrate_response_body(record) is True
    assert record.response.body["content"] == [{"type": "text", "text": "Hi"}]
    assert hydrate_response_body(record) is False


def test_get_log_hydrates_and_writes_back_once(memory_store):
    record = InteractionRecord(
        method="POST",
        path="/v1/messages",
        response=CapturedResponse(status=200, stream_chunks=list(STREAM_CHUNKS)),
    )
    memory_store.write(record)
    memory_store.writes.clear()
    name = memory_store.name_for(record)
    service = LogService(memory_store)

    loaded = service.get_log(name)
    service.get_log(name)

    assert loaded.response.body["id"] == "msg_1"
    assert memory_store.writes == [name]


def test_get_log_missing_returns_none(memory_store):
    assert LogService(memory_store).get_log("missing.json") is None


# ── Batch / delete ──


def test_get_logs_reports_missing_and_deduplicates(memory_store):
    names = _store_records(memory_store, 2)
    service = LogService(memory_store)

    batch = service.get_logs([names[0], "missing.json", names[0], names[1]])

    assert list(batch.logs) == [names[0], names[1]]
    assert batch.missing == ["missing.json"]


def test_delete_logs_deduplicates(memory_store):
    names = _store_records(memory_store, 2)
    service = LogService(memory_store)

    result = service.delete_logs([names[0], names[0], "missing.json"])

    assert result.deleted == [names[0]]
    assert [f.file_name for f in result.failed] == ["missing.json"]
    assert memory_store.list_names() == [names[1]]


# ── Recompute ──


@pytest.mark.asyncio
async def test_recompute_without_worker_raises(memory_store):
    with pytest.raises(MetricsWorkerNotRunningError):
        await LogService(memory_store).recompute_logs()


@pytest.mark.asyncio
async def test_recompute_delegates_to_worker(memory_store):
    _store_records(memory_store, 3)
    worker = MetricsWorker(MetricsRegistry([AgentTagAnalyzer()]), memory_store)
    service = LogService(memory_store, worker=worker)

    assert await service.recompute_logs() == 3
    assert all(r.agent_tag["id"] == "unknown" for r in memory_store.records.values())
