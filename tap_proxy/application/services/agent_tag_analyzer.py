"""Agent tag analyzer — labels which kind of agent issued a request.

The label is derived from the system prompt only: the top-level ``system``
field plus any ``role == "system"`` messages. Rules are tried in order and
the last one always matches, so every record gets exactly one tag.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from tap_proxy.application.interfaces.metrics_analyzer import MetricsAnalyzer
from tap_proxy.domain.entities import AgentTag, AgentTagTheme, InteractionRecord

logger = logging.getLogger(__name__)

_MAX_DEPTH = 3


@dataclass(frozen=True)
class AgentTagRule:
    id: str
    label: str
    description: str
    theme: AgentTagTheme
    patterns: tuple[re.Pattern[str], ...]

    def matches(self, text: str) -> bool:
        # A rule without patterns is the catch-all.
        if not self.patterns:
            return True
        return any(pattern.search(text) for pattern in self.patterns)

    def to_tag(self) -> AgentTag:
        return AgentTag(id=self.id, label=self.label, theme=self.theme, description=self.description)


def _rule(id: str, label: str, description: str, theme: tuple[str, str, str], *patterns: str) -> AgentTagRule:
    return AgentTagRule(
        id=id,
        label=label,
        description=description,
        theme=AgentTagTheme(*theme),
        patterns=tuple(re.compile(p, re.IGNORECASE) for p in patterns),
    )


TAG_RULES: tuple[AgentTagRule, ...] = (
    _rule(
        "topic-labeler", "Topic Labeler",
        "Detects whether a message starts a new conversation and extracts a title.",
        ("#7e22ce", "rgba(147, 51, 234, 0.12)", "rgba(147, 51, 234, 0.3)"),
        r"new conversation topic", r"extract a 2-3 word title",
    ),
    _rule(
        "conversation-summarizer", "Conversation Summarizer",
        "Writes short titles or summaries for full transcripts.",
        ("#4c1d95", "rgba(99, 102, 241, 0.12)", "rgba(99, 102, 241, 0.3)"),
        r"summarize this coding conversation", r"write a .*word title",
    ),
    _rule(
        "file-search", "File Search Specialist",
        "Handles glob/grep/file-read requests for the primary agent.",
        ("#b45309", "rgba(249, 115, 22, 0.16)", "rgba(249, 115, 22, 0.35)"),
        r"file search specialist",
    ),
    _rule(
        "framework-detector", "Framework Detector",
        "Identifies languages plus frameworks/libraries from snippets.",
        ("#047857", "rgba(16, 185, 129, 0.15)", "rgba(16, 185, 129, 0.35)"),
        r"framework and library detection assistant",
    ),
    _rule(
        "language-detector", "Language Detector",
        "Determines conversation language or VS Code diagnostics.",
        ("#0369a1", "rgba(14, 165, 233, 0.15)", "rgba(14, 165, 233, 0.35)"),
        r"language diagnostics", r"language detection", r"language_name",
    ),
    _rule(
        "primary", "Primary Agent",
        "Main CLI agent coordinating user requests.",
        ("#1d4ed8", "rgba(59, 130, 246, 0.14)", "rgba(37, 99, 235, 0.35)"),
        r"anthropic's official cli", r"interactive cli tool", r"claude code",
    ),
    _rule(
        "unknown", "Untagged",
        "No system prompt present to identify the agent.",
        ("#0f172a", "rgba(15, 23, 42, 0.08)", "rgba(15, 23, 42, 0.2)"),
    ),
)


def _coerce_body(body: Any) -> dict[str, Any] | None:
    if isinstance(body, dict):
        return body
    if isinstance(body, str):
        try:
            parsed = json.loads(body)
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, dict) else None
    return None


def _text_chunks(value: Any, depth: int = 0) -> list[str]:
    if depth > _MAX_DEPTH or value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [chunk for entry in value for chunk in _text_chunks(entry, depth + 1)]
    if isinstance(value, dict):
        chunks = [value["text"]] if isinstance(value.get("text"), str) else []
        if "content" in value:
            chunks.extend(_text_chunks(value["content"], depth + 1))
        return chunks
    return []


def collect_system_prompt(body: Any) -> str:
    """Join every system-prompt text fragment found in a request body."""
    data = _coerce_body(body)
    if data is None:
        return body if isinstance(body, str) else ""

    segments: list[str] = []
    if "system" in data:
        segments.extend(_text_chunks(data["system"]))

    messages = data.get("messages")
    if isinstance(messages, list):
        for message in messages:
            if not isinstance(message, dict):
                continue
            role = message.get("role")
            if isinstance(role, str) and role.lower() == "system":
                segments.extend(_text_chunks(message.get("content")))

    return "\n".join(s.strip() for s in segments if s and s.strip())


def derive_agent_tag(body: Any) -> AgentTag:
    text = collect_system_prompt(body).lower()
    for rule in TAG_RULES:
        if rule.matches(text):
            return rule.to_tag()
    return TAG_RULES[-1].to_tag()


class AgentTagAnalyzer(MetricsAnalyzer):
    name = "agent-tag"
    field = "agent_tag"

    async def analyze(self, record: InteractionRecord) -> dict[str, Any] | None:
        tag = derive_agent_tag(record.request.body)
        logger.debug("Tagged record %s as '%s'", record.id, tag.id)
        return tag.to_dict()
