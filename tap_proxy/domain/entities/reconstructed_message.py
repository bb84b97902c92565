"""Domain entities for a message rebuilt from a streamed response."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class TextSegment:
    text: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass
class ToolUseSegment:
    """A tool invocation requested by the model.

    ``input`` holds the parsed JSON arguments once the block is closed, or the
    raw accumulated string when that JSON could not be parsed.
    """

    id: str
    name: str
    input: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}


@dataclass
class ThinkingSegment:
    thinking: str = ""
    signature: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": "thinking", "thinking": self.thinking}
        if self.signature is not None:
            data["signature"] = self.signature
        return data


@dataclass
class PassthroughSegment:
    """Content block of a type the reconstructor does not interpret."""

    block: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return dict(self.block)


ContentSegment = TextSegment | ToolUseSegment | ThinkingSegment | PassthroughSegment


@dataclass
class ReconstructedMessage:
    """A complete assistant message assembled from stream events.

    ``fields`` holds the top-level message attributes (id, role, model,
    stop_reason, usage, ...) in the order they were first seen; ``content``
    keeps segments in the order their blocks were opened.
    """

    fields: dict[str, Any] = field(default_factory=dict)
    content: list[ContentSegment] = field(default_factory=list)

    @property
    def role(self) -> str | None:
        return self.fields.get("role")

    @property
    def model(self) -> str | None:
        return self.fields.get("model")

    @property
    def stop_reason(self) -> str | None:
        return self.fields.get("stop_reason")

    @property
    def usage(self) -> dict[str, Any] | None:
        return self.fields.get("usage")

    def to_dict(self) -> dict[str, Any]:
        """Anthropic message JSON shape, as persisted in ``response.body``."""
        data = {k: v for k, v in self.fields.items() if k != "content"}
        data["content"] = [segment.to_dict() for segment in self.content]
        return data
