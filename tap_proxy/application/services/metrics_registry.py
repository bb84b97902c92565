"""Metrics registry — owns the analyzers and decides which ones run.

The skip rule lives here and only here: an analyzer runs for a record unless
the record already carries that analyzer's metrics, or ``force`` is set.
Analyzers for one record run concurrently and in isolation; an exception from
one of them becomes an entry in ``AnalysisReport.errors`` and never affects
the others.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from tap_proxy.application.interfaces.metrics_analyzer import MetricsAnalyzer
from tap_proxy.domain.entities import InteractionRecord
from tap_proxy.domain.exceptions import AnalyzerAlreadyRegisteredError, AnalyzerNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class AnalysisReport:
    """Outcome of one ``analyze_all`` pass over a record."""

    results: dict[str, Any] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    invoked: list[str] = field(default_factory=list)

    @property
    def has_results(self) -> bool:
        return bool(self.results)


class MetricsRegistry:
    """Named collection of ``MetricsAnalyzer`` instances.

    Constructed explicitly and handed to whoever needs it (the worker, the
    application lifespan); there is no process-wide instance.
    """

    def __init__(self, analyzers: list[MetricsAnalyzer] | None = None):
        self._analyzers: dict[str, MetricsAnalyzer] = {}
        for analyzer in analyzers or []:
            self.register(analyzer)

    def register(self, analyzer: MetricsAnalyzer) -> None:
        if analyzer.name in self._analyzers:
            raise AnalyzerAlreadyRegisteredError(analyzer.name)
        self._analyzers[analyzer.name] = analyzer
        logger.debug("Registered analyzer '%s' (field=%s)", analyzer.name, analyzer.field)

    def unregister(self, name: str) -> bool:
        return self._analyzers.pop(name, None) is not None

    def get(self, name: str) -> MetricsAnalyzer | None:
        return self._analyzers.get(name)

    def names(self) -> list[str]:
        return list(self._analyzers)

    def analyzers(self) -> list[MetricsAnalyzer]:
        return list(self._analyzers.values())

    # ── Decisions ────────────────────────────────────────────────────

    def should_run(self, analyzer: MetricsAnalyzer, record: InteractionRecord, force: bool = False) -> bool:
        return force or not analyzer.has_result(record)

    def needs_processing(self, record: InteractionRecord) -> bool:
        """True when some applicable analyzer has not yet populated its field."""
        return any(
            analyzer.applies_to(record) and not analyzer.has_result(record)
            for analyzer in self._analyzers.values()
        )

    # ── Execution ────────────────────────────────────────────────────

    async def analyze_all(self, record: InteractionRecord, force: bool = False) -> AnalysisReport:
        """Run every analyzer whose metrics are missing (or all, when forced).

        Results of ``None`` (analyzer not applicable) are left out of
        ``results``; the record itself is not modified.
        """
        report = AnalysisReport()
        to_run: list[MetricsAnalyzer] = []

        for analyzer in self._analyzers.values():
            if self.should_run(analyzer, record, force):
                to_run.append(analyzer)
                report.invoked.append(analyzer.name)
            else:
                report.skipped.append(analyzer.name)

        outcomes = await asyncio.gather(
            *(self._run_isolated(analyzer, record) for analyzer in to_run)
        )

        for analyzer, (result, error) in zip(to_run, outcomes):
            if error is not None:
                report.errors[analyzer.name] = error
            elif result is not None:
                report.results[analyzer.name] = result

        return report

    async def analyze_single(self, name: str, record: InteractionRecord) -> Any | None:
        """Run one analyzer unconditionally; its exceptions propagate."""
        analyzer = self._analyzers.get(name)
        if analyzer is None:
            raise AnalyzerNotFoundError(name)
        return await analyzer.analyze(record)

    @staticmethod
    async def _run_isolated(
        analyzer: MetricsAnalyzer, record: InteractionRecord
    ) -> tuple[Any | None, str | None]:
        try:
            return await analyzer.analyze(record), None
        except Exception as exc:
            logger.warning(
                "Analyzer '%s' failed on record %s: %s", analyzer.name, record.id, exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            return None, str(exc) or exc.__class__.__name__
