"""Pydantic v2 schemas (DTOs) for the log inspection API.

Field names are camelCase on the wire to match the persisted record format.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Listing ──


class LogSummaryResponse(CamelModel):
    id: str
    file_name: str
    timestamp: str
    method: str
    path: str
    status: int | None = None
    duration_ms: int | None = None
    model: str | None = None
    error: str | None = None
    token_usage: dict[str, Any] | None = None
    agent_tag: dict[str, Any] | None = None
    tool_metrics: dict[str, Any] | None = None


class LogListResponse(CamelModel):
    items: list[LogSummaryResponse] = Field(default_factory=list)
    next_cursor: str | None = None


# ── Batch / delete ──


class FileNamesRequest(CamelModel):
    """Body for batch fetch and delete: ``{"fileNames": [...]}``."""

    file_names: list[str] = Field(default_factory=list)


class LogBatchResponse(CamelModel):
    logs: dict[str, dict[str, Any]] = Field(default_factory=dict)
    missing: list[str] = Field(default_factory=list)


class DeleteFailureResponse(CamelModel):
    file_name: str
    error: str


class DeleteLogsResponse(CamelModel):
    deleted: list[str] = Field(default_factory=list)
    failed: list[DeleteFailureResponse] = Field(default_factory=list)


# ── Maintenance ──


class RecomputeResponse(CamelModel):
    processed: int
