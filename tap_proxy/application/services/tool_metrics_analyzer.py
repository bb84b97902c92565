"""Tool metrics analyzer — tool definitions, calls and result sizes.

All sizes are token counts from the injected ``TokenCounter``, never string
lengths.
"""

import asyncio
import json
import logging
from typing import Any

from tap_proxy.application.interfaces.metrics_analyzer import MetricsAnalyzer
from tap_proxy.application.interfaces.token_counter import TokenCounter
from tap_proxy.application.services.stream_reconstructor import reconstruct_stream
from tap_proxy.domain.entities import InteractionRecord, ToolMetricsSummary, ToolUsageDetail

logger = logging.getLogger(__name__)


def _tool_use_blocks(content: Any) -> list[dict[str, Any]]:
    if not isinstance(content, list):
        return []
    return [b for b in content if isinstance(b, dict) and b.get("type") == "tool_use"]


def _result_text(block: dict[str, Any]) -> str:
    content = block.get("content")
    if isinstance(content, str):
        return content
    return json.dumps(content, separators=(",", ":"), ensure_ascii=False)


class ToolMetricsAnalyzer(MetricsAnalyzer):
    name = "tool-metrics"
    field = "tool_metrics"

    def __init__(self, token_counter: TokenCounter):
        self._counter = token_counter

    def applies_to(self, record: InteractionRecord) -> bool:
        return "/messages" in record.path and "/count_tokens" not in record.path

    async def analyze(self, record: InteractionRecord) -> dict[str, Any] | None:
        if not self.applies_to(record):
            return None

        body = record.request.body if isinstance(record.request.body, dict) else {}
        model = body.get("model")
        if not isinstance(model, str) or not model:
            logger.warning("Skipping tool metrics for %s: no model in request body", record.id)
            return None

        usage: dict[str, ToolUsageDetail] = {}

        def detail(name: str) -> ToolUsageDetail:
            if name not in usage:
                usage[name] = ToolUsageDetail(tool_name=name)
            return usage[name]

        definitions = self.tool_definitions(body)
        for name in definitions:
            detail(name)

        response_blocks = _tool_use_blocks(self._response_content(record))
        for block in response_blocks:
            if isinstance(block.get("name"), str):
                detail(block["name"]).call_count += 1

        results = self._tool_results(body, response_blocks)
        counts = await asyncio.gather(
            *(self._counter.count_content(model, text) for _, text in results)
        )
        for (name, _), tokens in zip(results, counts):
            detail(name).return_token_counts.append(tokens)

        if not usage:
            return None

        summary = ToolMetricsSummary(total_tools_available=len(definitions), tools=list(usage.values()))
        return summary.to_dict()

    @staticmethod
    def tool_definitions(body: dict[str, Any]) -> list[str]:
        names: list[str] = []
        tools = body.get("tools")
        if isinstance(tools, list):
            for tool in tools:
                if isinstance(tool, dict) and isinstance(tool.get("name"), str) and tool["name"] not in names:
                    names.append(tool["name"])
        return names

    @staticmethod
    def _response_content(record: InteractionRecord) -> Any:
        response = record.response
        if response is None:
            return None
        if isinstance(response.body, dict):
            return response.body.get("content")
        if response.stream_chunks:
            message = reconstruct_stream(response.stream_chunks)
            if message is not None:
                return message.to_dict()["content"]
        return None

    def _tool_results(
        self, body: dict[str, Any], response_blocks: list[dict[str, Any]]
    ) -> list[tuple[str, str]]:
        """(tool name, result text) for every ``tool_result`` in the request."""
        messages = body.get("messages")
        if not isinstance(messages, list):
            return []

        known: dict[str, str] = {}
        # Prior assistant turns first so the current response wins on id clashes.
        for message in messages:
            if isinstance(message, dict) and message.get("role") == "assistant":
                for block in _tool_use_blocks(message.get("content")):
                    if isinstance(block.get("id"), str) and isinstance(block.get("name"), str):
                        known[block["id"]] = block["name"]
        for block in response_blocks:
            if isinstance(block.get("id"), str) and isinstance(block.get("name"), str):
                known[block["id"]] = block["name"]

        results: list[tuple[str, str]] = []
        for message in messages:
            if not isinstance(message, dict) or not isinstance(message.get("content"), list):
                continue
            for block in message["content"]:
                if not isinstance(block, dict) or block.get("type") != "tool_result":
                    continue
                tool_use_id = block.get("tool_use_id")
                if not isinstance(tool_use_id, str) or not tool_use_id:
                    continue
                results.append((known.get(tool_use_id, tool_use_id), _result_text(block)))
        return results
