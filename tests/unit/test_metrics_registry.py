"""Unit tests for MetricsRegistry."""

import asyncio

import pytest

from tap_proxy.application.interfaces.metrics_analyzer import MetricsAnalyzer
from tap_proxy.application.services.metrics_registry import MetricsRegistry
from tap_proxy.domain.entities import InteractionRecord
from tap_proxy.domain.exceptions import AnalyzerAlreadyRegisteredError, AnalyzerNotFoundError


# ── Helpers ──


class RecordingAnalyzer(MetricsAnalyzer):
    def __init__(self, name: str, field: str, result=None, error: Exception | None = None, delay: float = 0):
        self.name = name
        self.field = field
        self._result = result
        self._error = error
        self._delay = delay
        self.calls = 0

    async def analyze(self, record: InteractionRecord):
        self.calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return self._result


class MessagesOnlyAnalyzer(RecordingAnalyzer):
    def applies_to(self, record: InteractionRecord) -> bool:
        return "/messages" in record.path


def _record(**metrics) -> InteractionRecord:
    return InteractionRecord(method="POST", path="/v1/messages", **metrics)


# ── Registration ──


def test_register_and_lookup():
    tag = RecordingAnalyzer("agent-tag", "agent_tag")
    registry = MetricsRegistry([tag])

    assert registry.names() == ["agent-tag"]
    assert registry.get("agent-tag") is tag
    assert registry.get("missing") is None


def test_duplicate_registration_raises():
    registry = MetricsRegistry([RecordingAnalyzer("agent-tag", "agent_tag")])

    with pytest.raises(AnalyzerAlreadyRegisteredError):
        registry.register(RecordingAnalyzer("agent-tag", "agent_tag"))


def test_unregister_reports_whether_it_removed_something():
    registry = MetricsRegistry([RecordingAnalyzer("agent-tag", "agent_tag")])

    assert registry.unregister("agent-tag") is True
    assert registry.unregister("agent-tag") is False
    assert registry.names() == []


# ── Skip rule ──


@pytest.mark.asyncio
async def test_analyzers_with_existing_results_are_skipped():
    tag = RecordingAnalyzer("agent-tag", "agent_tag", result={"id": "new"})
    tools = RecordingAnalyzer("tool-metrics", "tool_metrics", result={"totalToolCalls": 1})
    registry = MetricsRegistry([tag, tools])

    report = await registry.analyze_all(_record(agent_tag={"id": "old"}))

    assert report.skipped == ["agent-tag"]
    assert report.invoked == ["tool-metrics"]
    assert report.results == {"tool-metrics": {"totalToolCalls": 1}}
    assert tag.calls == 0


@pytest.mark.asyncio
async def test_force_runs_every_analyzer():
    tag = RecordingAnalyzer("agent-tag", "agent_tag", result={"id": "new"})
    registry = MetricsRegistry([tag])

    report = await registry.analyze_all(_record(agent_tag={"id": "old"}), force=True)

    assert report.invoked == ["agent-tag"]
    assert report.results == {"agent-tag": {"id": "new"}}


@pytest.mark.asyncio
async def test_analyze_all_does_not_modify_the_record():
    registry = MetricsRegistry([RecordingAnalyzer("agent-tag", "agent_tag", result={"id": "x"})])
    record = _record()

    await registry.analyze_all(record)

    assert record.agent_tag is None


@pytest.mark.asyncio
async def test_none_results_are_left_out():
    registry = MetricsRegistry([RecordingAnalyzer("tool-metrics", "tool_metrics", result=None)])

    report = await registry.analyze_all(_record())

    assert report.invoked == ["tool-metrics"]
    assert report.results == {}
    assert not report.has_results


# ── Isolation ──


@pytest.mark.asyncio
async def test_one_failing_analyzer_does_not_affect_others():
    registry = MetricsRegistry(
        [
            RecordingAnalyzer("token-breakdown", "token_usage", error=ValueError("Model is required")),
            RecordingAnalyzer("agent-tag", "agent_tag", result={"id": "primary"}, delay=0.01),
        ]
    )

    report = await registry.analyze_all(_record())

    assert report.errors == {"token-breakdown": "Model is required"}
    assert report.results == {"agent-tag": {"id": "primary"}}


@pytest.mark.asyncio
async def test_analyzers_run_concurrently():
    slow = [RecordingAnalyzer(f"a{i}", "agent_tag", result=i, delay=0.05) for i in range(4)]
    registry = MetricsRegistry(slow)

    loop = asyncio.get_running_loop()
    started = loop.time()
    report = await registry.analyze_all(_record())

    assert len(report.results) == 4
    assert loop.time() - started < 0.15


# ── Applicability ──


def test_needs_processing_only_counts_applicable_analyzers():
    registry = MetricsRegistry(
        [
            RecordingAnalyzer("agent-tag", "agent_tag"),
            MessagesOnlyAnalyzer("tool-metrics", "tool_metrics"),
        ]
    )

    models_call = InteractionRecord(method="GET", path="/v1/models", agent_tag={"id": "unknown"})
    messages_call = InteractionRecord(method="POST", path="/v1/messages", agent_tag={"id": "unknown"})

    assert registry.needs_processing(models_call) is False
    assert registry.needs_processing(messages_call) is True


# ── Single analyzer ──


@pytest.mark.asyncio
async def test_analyze_single_runs_unconditionally():
    tag = RecordingAnalyzer("agent-tag", "agent_tag", result={"id": "new"})
    registry = MetricsRegistry([tag])

    result = await registry.analyze_single("agent-tag", _record(agent_tag={"id": "old"}))

    assert result == {"id": "new"}


@pytest.mark.asyncio
async def test_analyze_single_unknown_name_raises():
    registry = MetricsRegistry()

    with pytest.raises(AnalyzerNotFoundError):
        await registry.analyze_single("nope", _record())
