"""Extraction of provider-reported token totals from a captured response.

Anthropic reports usage on the JSON body, on ``message_start`` (nested under
``message``) and on ``message_delta`` for streams. Stream usage is taken from
the reconstructed message, whose usage keys were overwritten in arrival order
and therefore hold the final values.
"""

from typing import Any

from tap_proxy.application.services.stream_reconstructor import reconstruct_stream
from tap_proxy.domain.entities import CapturedResponse, TokenUsageTotals


def _to_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _sum_nested(value: Any) -> int | None:
    if not isinstance(value, dict):
        return None
    numbers = [n for n in (_to_int(v) for v in value.values()) if n is not None]
    return sum(numbers) if numbers else None


def _is_usage(value: Any) -> bool:
    if not isinstance(value, dict):
        return False
    keys = ("input_tokens", "output_tokens", "cache_creation_input_tokens", "cache_read_input_tokens")
    return any(_to_int(value.get(k)) is not None for k in keys) or isinstance(value.get("cache_creation"), dict)


def find_usage(value: Any, depth: int = 0) -> dict[str, Any] | None:
    """Locate a usage mapping on a body, following ``usage``/``message`` keys."""
    if depth > 3 or not isinstance(value, dict):
        return None
    if _is_usage(value):
        return value
    for key in ("usage", "message"):
        found = find_usage(value.get(key), depth + 1)
        if found is not None:
            return found
    return None


def totals_from_usage(usage: dict[str, Any] | None) -> TokenUsageTotals:
    totals = TokenUsageTotals()
    if not usage:
        return totals

    totals.input_tokens = _to_int(usage.get("input_tokens"))
    totals.output_tokens = _to_int(usage.get("output_tokens"))
    totals.cache_creation_input_tokens = _to_int(usage.get("cache_creation_input_tokens"))
    totals.cache_read_input_tokens = _to_int(usage.get("cache_read_input_tokens"))

    # Per-TTL breakdowns win when they report more than the flat counter.
    nested = _sum_nested(usage.get("cache_creation"))
    if nested is not None and nested > (totals.cache_creation_input_tokens or 0):
        totals.cache_creation_input_tokens = nested
    nested = _sum_nested(usage.get("cache_read"))
    if nested is not None and nested > (totals.cache_read_input_tokens or 0):
        totals.cache_read_input_tokens = nested
    return totals


def extract_system_totals(response: CapturedResponse | None) -> TokenUsageTotals:
    if response is None:
        return TokenUsageTotals()

    usage = find_usage(response.body)
    if usage is None and response.stream_chunks:
        message = reconstruct_stream(response.stream_chunks)
        if message is not None:
            usage = message.usage
    return totals_from_usage(usage)
