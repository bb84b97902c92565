"""Stream reconstructor — rebuilds one message from Anthropic stream events.

Consumes the SSE feed of a ``/v1/messages`` streaming response and keeps one
builder per open content block (keyed by block index). Deltas are merged into
their builder strictly in arrival order; a block is finalized exactly once on
``content_block_stop`` and later deltas for that index are ignored.

Malformed input never raises: unparseable payloads and tool arguments are
recorded in ``warnings`` and reconstruction continues with what parsed.
"""

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from tap_proxy.application.services.sse_parser import SSEEvent, SSEParser
from tap_proxy.domain.entities import (
    PassthroughSegment,
    ReconstructedMessage,
    TextSegment,
    ThinkingSegment,
    ToolUseSegment,
)

logger = logging.getLogger(__name__)


@dataclass
class _TextBuilder:
    node: TextSegment


@dataclass
class _ToolUseBuilder:
    node: ToolUseSegment
    buffer: str = ""


@dataclass
class _ThinkingBuilder:
    node: ThinkingSegment


@dataclass
class _PassthroughBuilder:
    node: PassthroughSegment


_BlockBuilder = _TextBuilder | _ToolUseBuilder | _ThinkingBuilder | _PassthroughBuilder


def _block_index(payload: dict[str, Any]) -> int:
    index = payload.get("index")
    return index if isinstance(index, int) and not isinstance(index, bool) else 0


class StreamReconstructor:
    """State machine turning stream events into a ``ReconstructedMessage``.

    Usage:
        reconstructor = StreamReconstructor()
        for chunk in decoded_chunks:
            reconstructor.ingest(chunk)
        message = reconstructor.finalize()   # None if nothing was recognised
    """

    def __init__(self) -> None:
        self._parser = SSEParser()
        self._message: ReconstructedMessage | None = None
        self._builders: dict[int, _BlockBuilder] = {}
        self._finalized = False
        self.warnings: list[str] = []

    # ── Feeding ──────────────────────────────────────────────────────

    def ingest(self, chunk: str) -> None:
        """Feed a decoded text chunk of the raw event stream."""
        for event in self._parser.feed(chunk):
            self.handle_event(event)

    def finalize(self) -> ReconstructedMessage | None:
        """Flush the parser, close open blocks and return the message."""
        if not self._finalized:
            self._finalized = True
            for event in self._parser.finalize():
                self.handle_event(event)
            for index in list(self._builders):
                self._close_block(index)
            if self.warnings:
                logger.warning(
                    "Stream reconstruction completed with %d warning(s): %s",
                    len(self.warnings),
                    "; ".join(self.warnings),
                )
        return self._message

    # ── Event dispatch ───────────────────────────────────────────────

    def handle_event(self, event: SSEEvent) -> None:
        if not event.data:
            return
        try:
            payload = json.loads(event.data)
        except json.JSONDecodeError as exc:
            self.warnings.append(f"failed to parse SSE data: {exc}")
            return
        if not isinstance(payload, dict):
            self.warnings.append("SSE data is not a JSON object")
            return

        event_type = payload.get("type") or event.event
        if event_type == "message_start":
            self._on_message_start(payload)
        elif event_type == "content_block_start":
            self._on_block_start(payload)
        elif event_type == "content_block_delta":
            self._on_block_delta(payload)
        elif event_type == "content_block_stop":
            self._close_block(_block_index(payload))
        elif event_type == "message_delta":
            self._on_message_delta(payload)
        # message_stop, ping and unknown events carry nothing to merge

    def _ensure_message(self) -> ReconstructedMessage:
        if self._message is None:
            self._message = ReconstructedMessage()
        return self._message

    def _on_message_start(self, payload: dict[str, Any]) -> None:
        message = self._ensure_message()
        raw = payload.get("message")
        if isinstance(raw, dict):
            message.fields.update({k: v for k, v in raw.items() if k != "content"})
        message.content = []
        self._builders.clear()

    def _on_block_start(self, payload: dict[str, Any]) -> None:
        index = _block_index(payload)
        block = payload.get("content_block")
        message = self._ensure_message()
        if not isinstance(block, dict):
            return

        block_type = block.get("type")
        builder: _BlockBuilder
        if block_type == "text":
            text = block.get("text")
            builder = _TextBuilder(TextSegment(text=text if isinstance(text, str) else ""))
        elif block_type == "tool_use":
            tool_id = block.get("id")
            name = block.get("name")
            builder = _ToolUseBuilder(
                ToolUseSegment(
                    id=tool_id if isinstance(tool_id, str) else f"tool_{index}",
                    name=name if isinstance(name, str) else "tool",
                    input=block.get("input"),
                )
            )
        elif block_type == "thinking":
            thinking = block.get("thinking")
            signature = block.get("signature")
            builder = _ThinkingBuilder(
                ThinkingSegment(
                    thinking=thinking if isinstance(thinking, str) else "",
                    signature=signature if isinstance(signature, str) else None,
                )
            )
        else:
            builder = _PassthroughBuilder(PassthroughSegment(block=dict(block)))

        message.content.append(builder.node)
        self._builders[index] = builder

    def _on_block_delta(self, payload: dict[str, Any]) -> None:
        builder = self._builders.get(_block_index(payload))
        delta = payload.get("delta")
        if builder is None or not isinstance(delta, dict):
            return

        if isinstance(builder, _TextBuilder):
            if isinstance(delta.get("text"), str):
                builder.node.text += delta["text"]
        elif isinstance(builder, _ToolUseBuilder):
            if isinstance(delta.get("partial_json"), str):
                builder.buffer += delta["partial_json"]
        elif isinstance(builder, _ThinkingBuilder):
            delta_type = delta.get("type")
            if delta_type == "thinking_delta" and isinstance(delta.get("thinking"), str):
                builder.node.thinking += delta["thinking"]
            elif delta_type == "signature_delta" and isinstance(delta.get("signature"), str):
                builder.node.signature = delta["signature"]

    def _close_block(self, index: int) -> None:
        builder = self._builders.pop(index, None)
        if isinstance(builder, _ToolUseBuilder) and builder.buffer:
            try:
                builder.node.input = json.loads(builder.buffer)
            except json.JSONDecodeError as exc:
                builder.node.input = builder.buffer
                self.warnings.append(f"failed to parse tool input JSON: {exc}")

    def _on_message_delta(self, payload: dict[str, Any]) -> None:
        message = self._ensure_message()
        delta = payload.get("delta")
        if isinstance(delta, dict):
            if "stop_reason" in delta:
                message.fields["stop_reason"] = delta["stop_reason"]
            if "stop_sequence" in delta:
                message.fields["stop_sequence"] = delta["stop_sequence"]
            if "role" in delta and not message.fields.get("role"):
                message.fields["role"] = delta["role"]

        usage = payload.get("usage")
        if isinstance(usage, dict):
            merged = dict(message.fields.get("usage") or {})
            merged.update(usage)
            message.fields["usage"] = merged


def reconstruct_stream(chunks: Iterable[str]) -> ReconstructedMessage | None:
    """Run a fresh reconstructor over already-captured stream chunks."""
    reconstructor = StreamReconstructor()
    for chunk in chunks:
        if isinstance(chunk, str):
            reconstructor.ingest(chunk)
    return reconstructor.finalize()
