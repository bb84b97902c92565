"""Token breakdown analyzer — per-role token counts for a messages call.

Request content is bucketed into system, user, assistant, thinking,
tool_return and tool_use text (plus the tool definitions); response content
into assistant, thinking and tool_use. Each bucket is counted with the
injected ``TokenCounter``. Provider-reported totals are attached alongside so
estimates and authoritative numbers can be compared.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from tap_proxy.application.interfaces.metrics_analyzer import MetricsAnalyzer
from tap_proxy.application.interfaces.token_counter import TokenCounter
from tap_proxy.application.services.stream_reconstructor import reconstruct_stream
from tap_proxy.application.services.token_totals import extract_system_totals
from tap_proxy.domain.entities import (
    InteractionRecord,
    TokenBreakdown,
    TokenCountDetail,
    TokenUsageSummary,
)

logger = logging.getLogger(__name__)


def _dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


@dataclass
class ContentByType:
    text: list[str] = field(default_factory=list)
    thinking: list[str] = field(default_factory=list)
    tool_use: list[str] = field(default_factory=list)
    tool_result: list[str] = field(default_factory=list)


def _collect_block(block: Any, out: ContentByType) -> None:
    if isinstance(block, str):
        out.text.append(block)
        return
    if not isinstance(block, dict):
        return

    kind = block.get("type")
    if kind == "text" and isinstance(block.get("text"), str):
        out.text.append(block["text"])
    elif kind == "thinking" and isinstance(block.get("thinking"), str):
        out.thinking.append(block["thinking"])
    elif kind == "tool_use":
        out.tool_use.append(_dumps({"name": block.get("name"), "input": block.get("input")}))
    elif kind == "tool_result" and "content" in block:
        content = block["content"]
        out.tool_result.append(content if isinstance(content, str) else _dumps(content))


def split_content(content: Any) -> ContentByType:
    """Split message content (string, block or block list) by block type."""
    out = ContentByType()
    if isinstance(content, list):
        for block in content:
            _collect_block(block, out)
    else:
        _collect_block(content, out)
    return out


def _add(bucket: list[str], values: list[str]) -> None:
    bucket.extend(v for v in values if isinstance(v, str) and v.strip())


@dataclass
class InputBuckets:
    system: list[str] = field(default_factory=list)
    user: list[str] = field(default_factory=list)
    assistant: list[str] = field(default_factory=list)
    thinking: list[str] = field(default_factory=list)
    tool_return: list[str] = field(default_factory=list)
    tool_use: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not any(vars(self).values())


@dataclass
class OutputBuckets:
    assistant: list[str] = field(default_factory=list)
    thinking: list[str] = field(default_factory=list)
    tool_use: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not any(vars(self).values())


def collect_request_buckets(body: Any) -> InputBuckets:
    buckets = InputBuckets()
    if not isinstance(body, dict):
        return buckets

    system = body.get("system")
    if isinstance(system, str):
        _add(buckets.system, [system])
    elif isinstance(system, list):
        for item in system:
            if isinstance(item, dict) and "text" in item:
                _add(buckets.system, [str(item["text"])])
            elif isinstance(item, str):
                _add(buckets.system, [item])

    messages = body.get("messages")
    if not isinstance(messages, list):
        return buckets

    for message in messages:
        if not isinstance(message, dict):
            continue
        role = message.get("role") if isinstance(message.get("role"), str) else "assistant"
        content = split_content(message.get("content"))
        if role == "user":
            _add(buckets.user, content.text)
            _add(buckets.tool_return, content.tool_result)
        elif role == "assistant":
            _add(buckets.assistant, content.text)
            _add(buckets.thinking, content.thinking)
            _add(buckets.tool_use, content.tool_use)
    return buckets


def collect_response_buckets(record: InteractionRecord) -> OutputBuckets:
    buckets = OutputBuckets()
    response = record.response
    if response is None:
        return buckets

    body = response.body
    if not isinstance(body, dict) and response.stream_chunks:
        message = reconstruct_stream(response.stream_chunks)
        body = message.to_dict() if message is not None else None

    if isinstance(body, dict) and isinstance(body.get("content"), list):
        content = split_content(body["content"])
        _add(buckets.assistant, content.text)
        _add(buckets.thinking, content.thinking)
        _add(buckets.tool_use, content.tool_use)
    return buckets


class TokenBreakdownAnalyzer(MetricsAnalyzer):
    """Computes ``tokenUsage`` for ``/messages`` calls.

    Raises ``ValueError`` when the request carries no ``model``; the registry
    records that as an analyzer error.
    """

    name = "token-breakdown"
    field = "token_usage"

    def __init__(self, token_counter: TokenCounter):
        self._counter = token_counter

    def applies_to(self, record: InteractionRecord) -> bool:
        return "/messages" in record.path

    def has_result(self, record: InteractionRecord) -> bool:
        return bool(record.token_usage and record.token_usage.get("custom"))

    def apply(self, record: InteractionRecord, result: Any) -> None:
        record.token_usage = {**(record.token_usage or {}), **result}

    async def analyze(self, record: InteractionRecord) -> dict[str, Any] | None:
        if not self.applies_to(record):
            return None

        input_buckets = collect_request_buckets(record.request.body)
        output_buckets = collect_response_buckets(record)
        if input_buckets.is_empty() and output_buckets.is_empty():
            return None

        body = record.request.body if isinstance(record.request.body, dict) else {}
        model = body.get("model")
        if not isinstance(model, str) or not model:
            raise ValueError("Model is required in request body for token counting")
        tools = body.get("tools") if isinstance(body.get("tools"), list) else []

        counter = self._counter
        input_details, output_details = await asyncio.gather(
            asyncio.gather(
                self._detail(input_buckets.system, counter.count_system, model),
                self._detail(input_buckets.user, counter.count_user, model),
                self._detail(input_buckets.assistant, counter.count_assistant, model),
                self._detail(input_buckets.thinking, counter.count_assistant, model),
                self._tools_detail(tools, model),
                self._detail(input_buckets.tool_return, counter.count_user, model),
                self._detail(input_buckets.tool_use, counter.count_assistant, model),
            ),
            asyncio.gather(
                self._detail(output_buckets.assistant, counter.count_assistant, model),
                self._detail(output_buckets.thinking, counter.count_assistant, model),
                self._detail(output_buckets.tool_use, counter.count_assistant, model),
            ),
        )

        input_names = ("system", "user", "assistant", "thinking", "tool", "tool_return", "tool_use")
        output_names = ("assistant", "thinking", "tool_use")
        summary = TokenUsageSummary(
            system_totals=extract_system_totals(record.response),
            input=TokenBreakdown(dict(zip(input_names, input_details))),
            output=TokenBreakdown(dict(zip(output_names, output_details))),
            provider=counter.methodology,
            methodology=counter.methodology,
        )
        logger.debug(
            "Token breakdown for %s: input=%s output=%s",
            record.id, summary.input.total_tokens, summary.output.total_tokens,
        )
        return summary.to_dict()

    async def _detail(
        self,
        segments: list[str],
        count: Callable[[str, str], Awaitable[int]],
        model: str,
    ) -> TokenCountDetail:
        methodology = self._counter.methodology
        if not segments:
            return TokenCountDetail(tokens=0, text_length=0, segments=0, methodology=methodology)
        combined = "\n".join(segments)
        return TokenCountDetail(
            tokens=await count(model, combined),
            text_length=len(combined),
            segments=len(segments),
            methodology=methodology,
        )

    async def _tools_detail(self, tools: list[Any], model: str) -> TokenCountDetail:
        methodology = self._counter.methodology
        if not tools:
            return TokenCountDetail(tokens=0, text_length=0, segments=0, methodology=methodology)
        return TokenCountDetail(
            tokens=await self._counter.count_tools(model, tools),
            text_length=len(_dumps(tools)),
            segments=len(tools),
            methodology=methodology,
        )
