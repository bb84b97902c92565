"""Abstract interface for pluggable metrics analyzers."""

from abc import ABC, abstractmethod
from typing import Any

from tap_proxy.domain.entities import InteractionRecord


class MetricsAnalyzer(ABC):
    """Port — computes one derived-metrics value for an interaction record.

    Each analyzer owns exactly one attribute of ``InteractionRecord``
    (``field``). ``analyze`` must be side-effect free: it returns the
    serialized metrics value or None when the record does not apply. The
    registry, not the analyzer, decides whether to run it.
    """

    name: str
    field: str

    def applies_to(self, record: InteractionRecord) -> bool:
        """Whether this analyzer is expected to produce a value for the record."""
        return True

    def has_result(self, record: InteractionRecord) -> bool:
        """Whether the record already carries this analyzer's metrics."""
        return bool(getattr(record, self.field, None))

    def clear(self, record: InteractionRecord) -> None:
        """Drop this analyzer's metrics from the record (forced recompute)."""
        setattr(record, self.field, None)

    def apply(self, record: InteractionRecord, result: Any) -> None:
        """Store a freshly computed value on the record."""
        setattr(record, self.field, result)

    @abstractmethod
    async def analyze(self, record: InteractionRecord) -> Any | None:
        ...
