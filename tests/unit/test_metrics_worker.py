"""Unit tests for MetricsWorker."""

import asyncio
from collections.abc import AsyncIterator

import pytest

from tap_proxy.application.interfaces.change_source import ChangeSource
from tap_proxy.application.interfaces.metrics_analyzer import MetricsAnalyzer
from tap_proxy.application.services.metrics_registry import MetricsRegistry
from tap_proxy.application.services.metrics_worker import MetricsWorker
from tap_proxy.domain.entities import CapturedResponse, InteractionRecord


# ── Helpers ──


class CountingAnalyzer(MetricsAnalyzer):
    def __init__(self, name: str, field: str, result=None, error: Exception | None = None, gate=None):
        self.name = name
        self.field = field
        self.result = result
        self.error = error
        self.gate = gate
        self.calls = 0

    async def analyze(self, record: InteractionRecord):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result


class QueueChangeSource(ChangeSource):
    def __init__(self) -> None:
        self.queue: asyncio.Queue[str | None] = asyncio.Queue()
        self.stopped = False

    async def changes(self) -> AsyncIterator[str]:
        while True:
            name = await self.queue.get()
            if name is None:
                return
            yield name

    def stop(self) -> None:
        self.stopped = True
        self.queue.put_nowait(None)


def _stored(store, path: str = "/v1/messages", **fields) -> str:
    record = InteractionRecord(
        method="POST",
        path=path,
        response=CapturedResponse(status=200, body={"content": []}),
        **fields,
    )
    store.write(record)
    store.writes.clear()
    return store.name_for(record)


async def _until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


# ── process_file ──


@pytest.mark.asyncio
async def test_process_file_writes_all_results_once(memory_store):
    name = _stored(memory_store)
    registry = MetricsRegistry(
        [
            CountingAnalyzer("agent-tag", "agent_tag", result={"id": "primary"}),
            CountingAnalyzer("tool-metrics", "tool_metrics", result={"totalToolCalls": 2}),
        ]
    )
    worker = MetricsWorker(registry, memory_store)

    report = await worker.process_file(name)

    assert sorted(report.results) == ["agent-tag", "tool-metrics"]
    assert memory_store.writes == [name]
    stored = memory_store.read(name)
    assert stored.agent_tag == {"id": "primary"}
    assert stored.tool_metrics == {"totalToolCalls": 2}
    assert stored.response.body == {"content": []}


@pytest.mark.asyncio
async def test_process_file_skips_populated_fields_without_writing(memory_store):
    name = _stored(memory_store, agent_tag={"id": "old"})
    tag = CountingAnalyzer("agent-tag", "agent_tag", result={"id": "new"})
    worker = MetricsWorker(MetricsRegistry([tag]), memory_store)

    report = await worker.process_file(name)

    assert report.skipped == ["agent-tag"]
    assert tag.calls == 0
    assert memory_store.writes == []


@pytest.mark.asyncio
async def test_process_file_missing_record_returns_none(memory_store):
    worker = MetricsWorker(MetricsRegistry([CountingAnalyzer("agent-tag", "agent_tag")]), memory_store)

    assert await worker.process_file("nope.json") is None


@pytest.mark.asyncio
async def test_analyzer_errors_keep_other_results(memory_store):
    name = _stored(memory_store)
    registry = MetricsRegistry(
        [
            CountingAnalyzer("token-breakdown", "token_usage", error=ValueError("Model is required")),
            CountingAnalyzer("agent-tag", "agent_tag", result={"id": "primary"}),
        ]
    )
    worker = MetricsWorker(registry, memory_store)

    report = await worker.process_file(name)

    assert report.errors == {"token-breakdown": "Model is required"}
    stored = memory_store.read(name)
    assert stored.agent_tag == {"id": "primary"}
    assert stored.token_usage is None


@pytest.mark.asyncio
async def test_concurrent_requests_for_same_file_are_deduplicated(memory_store):
    name = _stored(memory_store)
    gate = asyncio.Event()
    tag = CountingAnalyzer("agent-tag", "agent_tag", result={"id": "primary"}, gate=gate)
    worker = MetricsWorker(MetricsRegistry([tag]), memory_store)

    first = asyncio.create_task(worker.process_file(name))
    await _until(lambda: tag.calls == 1)
    assert worker.status().pending == 1

    assert await worker.process_file(name) is None

    gate.set()
    assert (await first).results == {"agent-tag": {"id": "primary"}}
    assert tag.calls == 1
    assert memory_store.writes == [name]


@pytest.mark.asyncio
async def test_write_back_keeps_concurrent_changes_to_the_record(memory_store):
    name = _stored(memory_store)
    gate = asyncio.Event()
    tag = CountingAnalyzer("agent-tag", "agent_tag", result={"id": "primary"}, gate=gate)
    worker = MetricsWorker(MetricsRegistry([tag]), memory_store)

    task = asyncio.create_task(worker.process_file(name))
    await _until(lambda: tag.calls == 1)

    # Another writer fills in the body while analysis is in flight.
    current = memory_store.read(name)
    current.response.body = {"content": [{"type": "text", "text": "hydrated"}]}
    memory_store.write(current)

    gate.set()
    await task

    stored = memory_store.read(name)
    assert stored.agent_tag == {"id": "primary"}
    assert stored.response.body["content"][0]["text"] == "hydrated"


# ── Passes ──


@pytest.mark.asyncio
async def test_process_existing_counts_processed_records(memory_store):
    _stored(memory_store)
    _stored(memory_store)
    worker = MetricsWorker(
        MetricsRegistry([CountingAnalyzer("agent-tag", "agent_tag", result={"id": "x"})]),
        memory_store,
    )

    assert await worker.process_existing() == 2
    assert all(r.agent_tag == {"id": "x"} for r in memory_store.records.values())


@pytest.mark.asyncio
async def test_recompute_all_clears_and_replaces_existing_values(memory_store):
    name = _stored(memory_store, agent_tag={"id": "old"}, tool_metrics={"stale": True})
    registry = MetricsRegistry(
        [
            CountingAnalyzer("agent-tag", "agent_tag", result={"id": "new"}),
            # No longer applicable: its stale value must not survive a recompute.
            CountingAnalyzer("tool-metrics", "tool_metrics", result=None),
        ]
    )
    worker = MetricsWorker(registry, memory_store)

    processed = await worker.recompute_all()

    assert processed == 1
    stored = memory_store.read(name)
    assert stored.agent_tag == {"id": "new"}
    assert stored.tool_metrics is None


@pytest.mark.asyncio
async def test_recompute_keeps_value_of_failing_analyzer(memory_store):
    name = _stored(memory_store, agent_tag={"id": "old"})
    registry = MetricsRegistry(
        [CountingAnalyzer("agent-tag", "agent_tag", error=RuntimeError("boom"))]
    )
    worker = MetricsWorker(registry, memory_store)

    await worker.recompute_all()

    assert memory_store.read(name).agent_tag == {"id": "old"}


@pytest.mark.asyncio
async def test_poll_once_schedules_only_records_needing_work(memory_store):
    done = _stored(memory_store, agent_tag={"id": "primary"})
    todo = _stored(memory_store)
    tag = CountingAnalyzer("agent-tag", "agent_tag", result={"id": "primary"})
    worker = MetricsWorker(MetricsRegistry([tag]), memory_store)

    assert await worker.poll_once() == 1
    await _until(lambda: memory_store.read(todo).agent_tag is not None)
    assert memory_store.read(done).agent_tag == {"id": "primary"}


@pytest.mark.asyncio
async def test_poll_does_not_repeat_records_that_produce_nothing(memory_store):
    _stored(memory_store)
    tools = CountingAnalyzer("tool-metrics", "tool_metrics", result=None)
    worker = MetricsWorker(MetricsRegistry([tools]), memory_store)

    assert await worker.poll_once() == 1
    await _until(lambda: tools.calls == 1 and worker.status().pending == 0)
    await asyncio.sleep(0)

    assert await worker.poll_once() == 0
    assert tools.calls == 1


@pytest.mark.asyncio
async def test_poll_retries_records_whose_analyzer_failed(memory_store):
    name = _stored(memory_store)
    tag = CountingAnalyzer("agent-tag", "agent_tag", result={"id": "primary"}, error=RuntimeError("transient"))
    worker = MetricsWorker(MetricsRegistry([tag]), memory_store)

    report = await worker.process_file(name)
    assert "agent-tag" in report.errors
    assert memory_store.read(name).agent_tag is None

    tag.error = None
    assert await worker.poll_once() == 1
    await _until(lambda: memory_store.read(name).agent_tag is not None)
    assert tag.calls == 2


@pytest.mark.asyncio
async def test_newly_registered_analyzer_is_picked_up_by_poll(memory_store):
    name = _stored(memory_store, agent_tag={"id": "primary"})
    registry = MetricsRegistry([CountingAnalyzer("agent-tag", "agent_tag")])
    worker = MetricsWorker(registry, memory_store)

    assert await worker.poll_once() == 0

    registry.register(CountingAnalyzer("tool-metrics", "tool_metrics", result={"totalToolCalls": 0}))
    assert await worker.poll_once() == 1
    await _until(lambda: memory_store.read(name).tool_metrics is not None)


# ── Lifecycle ──


@pytest.mark.asyncio
async def test_start_processes_existing_and_change_notifications(memory_store):
    existing = _stored(memory_store)
    source = QueueChangeSource()
    tag = CountingAnalyzer("agent-tag", "agent_tag", result={"id": "primary"})
    worker = MetricsWorker(
        MetricsRegistry([tag]),
        memory_store,
        change_source=source,
        poll_interval=60,
    )

    await worker.start()
    assert worker.is_running
    await _until(lambda: memory_store.read(existing).agent_tag is not None)

    fresh = _stored(memory_store)
    source.queue.put_nowait(fresh)
    await _until(lambda: memory_store.read(fresh).agent_tag is not None)

    await worker.stop()
    assert not worker.is_running
    assert source.stopped


@pytest.mark.asyncio
async def test_stop_waits_for_in_flight_records(memory_store):
    name = _stored(memory_store)
    gate = asyncio.Event()
    tag = CountingAnalyzer("agent-tag", "agent_tag", result={"id": "primary"}, gate=gate)
    source = QueueChangeSource()
    worker = MetricsWorker(
        MetricsRegistry([tag]),
        memory_store,
        change_source=source,
        poll_interval=60,
        process_existing=False,
    )

    await worker.start()
    source.queue.put_nowait(name)
    await _until(lambda: tag.calls == 1)

    stopping = asyncio.create_task(worker.stop())
    await asyncio.sleep(0.02)
    assert not stopping.done()

    gate.set()
    await stopping
    assert memory_store.read(name).agent_tag == {"id": "primary"}


def test_status_reports_registry_and_queue(memory_store):
    worker = MetricsWorker(
        MetricsRegistry([CountingAnalyzer("agent-tag", "agent_tag")]),
        memory_store,
    )

    assert worker.status().to_dict() == {
        "isRunning": False,
        "queueSize": 0,
        "registeredAnalyzers": ["agent-tag"],
    }
