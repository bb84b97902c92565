"""Unit tests for ToolMetricsAnalyzer."""

import json

import pytest

from tap_proxy.application.services.tool_metrics_analyzer import ToolMetricsAnalyzer
from tap_proxy.domain.entities import CapturedRequest, CapturedResponse, InteractionRecord
from tap_proxy.infrastructure.token_counting.heuristic_token_counter import (
    HeuristicTokenCounter,
    estimate_tokens,
)


# ── Helpers ──


def _record(body, response_body=None, stream_chunks=None, path="/v1/messages") -> InteractionRecord:
    return InteractionRecord(
        method="POST",
        path=path,
        request=CapturedRequest(body=body),
        response=CapturedResponse(status=200, body=response_body, stream_chunks=stream_chunks),
    )


def _sse(payload: dict) -> str:
    return f"event: {payload['type']}\ndata: {json.dumps(payload)}\n\n"


# ── Tests ──


@pytest.mark.asyncio
async def test_definitions_calls_and_results_are_aggregated():
    body = {
        "model": "claude",
        "tools": [{"name": "search"}, {"name": "read_file"}, {"name": "search"}],
        "messages": [
            {
                "role": "assistant",
                "content": [{"type": "tool_use", "id": "toolu_old", "name": "read_file", "input": {}}],
            },
            {
                "role": "user",
                "content": [
                    {"type": "tool_result", "tool_use_id": "toolu_old", "content": "file contents here"},
                    {"type": "tool_result", "tool_use_id": "toolu_orphan", "content": [{"type": "text", "text": "x"}]},
                ],
            },
        ],
    }
    response = {
        "content": [
            {"type": "tool_use", "id": "toolu_a", "name": "search", "input": {"q": "a"}},
            {"type": "tool_use", "id": "toolu_b", "name": "search", "input": {"q": "b"}},
        ]
    }

    result = await ToolMetricsAnalyzer(HeuristicTokenCounter()).analyze(_record(body, response))

    assert result["totalToolsAvailable"] == 2
    assert result["totalToolCalls"] == 2
    assert result["totalToolResults"] == 2

    by_name = {t["toolName"]: t for t in result["tools"]}
    assert list(by_name) == ["search", "read_file", "toolu_orphan"]
    assert by_name["search"]["callCount"] == 2
    assert by_name["search"]["minReturnTokens"] is None
    assert by_name["read_file"]["returnTokenCounts"] == [estimate_tokens("file contents here")]
    assert by_name["toolu_orphan"]["returnTokenCounts"] == [
        estimate_tokens('[{"type":"text","text":"x"}]')
    ]


@pytest.mark.asyncio
async def test_calls_from_streamed_response():
    chunks = [
        _sse({"type": "message_start", "message": {"id": "m"}}),
        _sse({
            "type": "content_block_start",
            "index": 0,
            "content_block": {"type": "tool_use", "id": "toolu_1", "name": "grep", "input": {}},
        }),
        _sse({"type": "content_block_delta", "index": 0, "delta": {"type": "input_json_delta", "partial_json": "{}"}}),
        _sse({"type": "content_block_stop", "index": 0}),
    ]
    body = {"model": "claude", "messages": [{"role": "user", "content": "hi"}]}

    result = await ToolMetricsAnalyzer(HeuristicTokenCounter()).analyze(_record(body, stream_chunks=chunks))

    assert result["tools"][0]["toolName"] == "grep"
    assert result["tools"][0]["callCount"] == 1
    assert result["totalToolsAvailable"] == 0


@pytest.mark.asyncio
async def test_no_tools_returns_none():
    body = {"model": "claude", "messages": [{"role": "user", "content": "hi"}]}

    assert await ToolMetricsAnalyzer(HeuristicTokenCounter()).analyze(_record(body, {"content": []})) is None


@pytest.mark.asyncio
async def test_missing_model_returns_none():
    body = {"tools": [{"name": "search"}], "messages": []}

    assert await ToolMetricsAnalyzer(HeuristicTokenCounter()).analyze(_record(body)) is None


def test_count_tokens_calls_are_not_applicable():
    analyzer = ToolMetricsAnalyzer(HeuristicTokenCounter())

    assert analyzer.applies_to(_record({}, path="/v1/messages")) is True
    assert analyzer.applies_to(_record({}, path="/v1/messages/count_tokens")) is False
    assert analyzer.applies_to(_record({}, path="/v1/models")) is False
