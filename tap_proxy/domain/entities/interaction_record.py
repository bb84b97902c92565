"""Domain entity for one captured upstream interaction."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

SENSITIVE_HEADERS = frozenset({"x-api-key", "authorization", "proxy-authorization"})


def _mask_header_value(value: str) -> str:
    return f"{value[:2]}…" if len(value) > 2 else "••"


def sanitize_headers(source: Any) -> dict[str, str]:
    """Lower-case header names, join multi-valued headers and mask credentials.

    Accepts a plain mapping or any object exposing ``multi_items()``
    (Starlette ``Headers`` and httpx ``Headers`` both do).
    """
    if hasattr(source, "multi_items"):
        pairs = source.multi_items()
    else:
        pairs = source.items()

    collected: dict[str, list[str]] = {}
    for key, value in pairs:
        if value is None:
            continue
        values = value if isinstance(value, (list, tuple)) else [value]
        collected.setdefault(key.lower(), []).extend(str(v) for v in values)

    sanitized: dict[str, str] = {}
    for key, values in collected.items():
        raw = ",".join(values)
        sanitized[key] = _mask_header_value(raw) if key in SENSITIVE_HEADERS else raw
    return sanitized


@dataclass
class CapturedRequest:
    """Request half of an interaction: masked headers plus the parsed body."""

    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None


@dataclass
class CapturedResponse:
    """Response half of an interaction.

    ``stream_chunks`` is only set for event-stream responses and ``error`` only
    when the upstream could not be reached or the caller went away.
    """

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    stream_chunks: list[str] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.status, "headers": dict(self.headers)}
        if self.body is not None:
            data["body"] = self.body
        if self.stream_chunks is not None:
            data["streamChunks"] = list(self.stream_chunks)
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CapturedResponse":
        chunks = data.get("streamChunks")
        return cls(
            status=int(data.get("status", 0)),
            headers=dict(data.get("headers") or {}),
            body=data.get("body"),
            stream_chunks=[c for c in chunks if isinstance(c, str)] if isinstance(chunks, list) else None,
            error=data.get("error"),
        )


@dataclass
class InteractionRecord:
    """One captured call to the upstream API.

    Created when the request arrives, finalized once when the response
    completes (or fails), then only ever enriched additively with derived
    metrics (``token_usage``, ``agent_tag``, ``tool_metrics``).

    Persisted as JSON with camelCase keys so existing log files stay readable.
    """

    method: str
    path: str
    query: str = ""
    request: CapturedRequest = field(default_factory=CapturedRequest)
    response: CapturedResponse | None = None
    duration_ms: int | None = None
    token_usage: dict[str, Any] | None = None
    agent_tag: dict[str, Any] | None = None
    tool_metrics: dict[str, Any] | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    )

    @property
    def is_finalized(self) -> bool:
        return self.response is not None

    @property
    def model(self) -> str | None:
        """Model name requested by the caller, if the body carries one."""
        body = self.request.body
        if isinstance(body, dict) and isinstance(body.get("model"), str):
            return body["model"]
        return None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "timestamp": self.timestamp,
            "method": self.method,
            "path": self.path,
            "query": self.query,
        }
        if self.duration_ms is not None:
            data["durationMs"] = self.duration_ms
        request: dict[str, Any] = {"headers": dict(self.request.headers)}
        if self.request.body is not None:
            request["body"] = self.request.body
        data["request"] = request
        if self.response is not None:
            data["response"] = self.response.to_dict()
        if self.token_usage is not None:
            data["tokenUsage"] = self.token_usage
        if self.agent_tag is not None:
            data["agentTag"] = self.agent_tag
        if self.tool_metrics is not None:
            data["toolMetrics"] = self.tool_metrics
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InteractionRecord":
        """Rebuild a record from its persisted JSON form.

        Raises:
            ValueError: If a required field is missing or has the wrong type.
        """
        if not isinstance(data, dict):
            raise ValueError("interaction record must be a JSON object")
        try:
            record_id = data["id"]
            method = data["method"]
            path = data["path"]
        except KeyError as exc:
            raise ValueError(f"interaction record is missing '{exc.args[0]}'") from exc

        raw_request = data.get("request") or {}
        raw_response = data.get("response")
        duration = data.get("durationMs")

        return cls(
            id=str(record_id),
            timestamp=str(data.get("timestamp", "")),
            method=str(method),
            path=str(path),
            query=str(data.get("query") or ""),
            request=CapturedRequest(
                headers=dict(raw_request.get("headers") or {}),
                body=raw_request.get("body"),
            ),
            response=CapturedResponse.from_dict(raw_response) if isinstance(raw_response, dict) else None,
            duration_ms=int(duration) if isinstance(duration, (int, float)) else None,
            token_usage=data.get("tokenUsage"),
            agent_tag=data.get("agentTag"),
            tool_metrics=data.get("toolMetrics"),
        )
