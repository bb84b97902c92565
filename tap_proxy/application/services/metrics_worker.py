"""Metrics worker — asyncio daemon that enriches stored records with metrics.

Three trigger sources feed one idempotent ``process_file``:
  1. a startup sweep over every stored record,
  2. change notifications for new or rewritten records,
  3. a reconciliation poll that catches anything the notifications missed
     (and records that predate a newly registered analyzer).

A file name is never processed twice concurrently, each pass issues at most
one write-back, and that write-back only adds or replaces derived fields on
the freshest copy of the record.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from tap_proxy.application.interfaces.change_source import ChangeSource
from tap_proxy.application.interfaces.log_store import LogStore
from tap_proxy.application.services.metrics_registry import AnalysisReport, MetricsRegistry
from tap_proxy.domain.entities import InteractionRecord

logger = logging.getLogger(__name__)

# Polling interval in seconds
POLL_INTERVAL = 5.0


@dataclass
class WorkerStatus:
    is_running: bool
    pending: int
    registered_analyzers: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "isRunning": self.is_running,
            "queueSize": self.pending,
            "registeredAnalyzers": list(self.registered_analyzers),
        }


class MetricsWorker:
    """Runs the registry's analyzers over stored records in the background.

    Runs as a set of asyncio tasks inside FastAPI's lifespan. Processing of
    individual records happens in their own tasks, bounded by a semaphore,
    so ``stop`` can cancel the trigger loops yet still let in-flight records
    finish their write-back.
    """

    def __init__(
        self,
        registry: MetricsRegistry,
        store: LogStore,
        *,
        change_source: ChangeSource | None = None,
        poll_interval: float = POLL_INTERVAL,
        process_existing: bool = True,
        watch_for_new: bool = True,
        max_concurrency: int = 4,
    ) -> None:
        self._registry = registry
        self._store = store
        self._change_source = change_source
        self._poll_interval = poll_interval
        self._process_existing = process_existing
        self._watch_for_new = watch_for_new and change_source is not None
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))

        self._running = False
        self._loops: list[asyncio.Task] = []
        self._inflight: set[asyncio.Task] = set()
        self._pending: set[str] = set()
        # name -> (record version, analyzer names) of records analyzed without errors
        self._settled: dict[str, tuple[int | None, tuple[str, ...]]] = {}

    @property
    def is_running(self) -> bool:
        return self._running

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            logger.warning("MetricsWorker already running, ignoring start request")
            return

        self._running = True
        logger.info(
            "MetricsWorker starting (dir=%s, poll=%.1fs, existing=%s, watch=%s, analyzers=%s)",
            self._store.location,
            self._poll_interval,
            self._process_existing,
            self._watch_for_new,
            self._registry.names(),
        )

        if self._process_existing:
            self._loops.append(asyncio.create_task(self.process_existing(), name="metrics-sweep"))
        if self._watch_for_new:
            self._loops.append(asyncio.create_task(self._watch_loop(), name="metrics-watch"))
        self._loops.append(asyncio.create_task(self._poll_loop(), name="metrics-poll"))

    async def stop(self) -> None:
        """Stop the trigger loops, then wait for in-flight records to finish."""
        if not self._running:
            logger.warning("MetricsWorker not running, ignoring stop request")
            return

        logger.info("MetricsWorker stopping")
        self._running = False
        if self._change_source is not None:
            self._change_source.stop()

        for task in self._loops:
            task.cancel()
        await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops.clear()

        if self._inflight:
            logger.info("Waiting for %d in-flight record(s)", len(self._inflight))
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        logger.info("MetricsWorker stopped")

    def status(self) -> WorkerStatus:
        return WorkerStatus(
            is_running=self._running,
            pending=len(self._pending),
            registered_analyzers=self._registry.names(),
        )

    # ── Trigger sources ──────────────────────────────────────────────

    async def _watch_loop(self) -> None:
        try:
            async for name in self._change_source.changes():
                if not self._running:
                    break
                logger.debug("Change notification for %s", name)
                self._schedule(name)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Change notifications failed; relying on polling")

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._poll_interval)
                await self.poll_once()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("MetricsWorker polling error")

    def _schedule(self, name: str, force: bool = False) -> None:
        if name in self._pending:
            return
        task = asyncio.create_task(self.process_file(name, force=force))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    # ── Passes ───────────────────────────────────────────────────────

    async def process_existing(self, force: bool = False) -> int:
        """Process every stored record; returns how many were processed."""
        names = self._store.list_names()
        logger.info("Processing %d existing log(s) (force=%s)", len(names), force)
        outcomes = await asyncio.gather(
            *(self.process_file(name, force=force) for name in names),
            return_exceptions=True,
        )
        processed = 0
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Error processing %s: %s", name, outcome)
            elif outcome is not None:
                processed += 1
        logger.info("Finished existing logs: %d/%d processed", processed, len(names))
        return processed

    async def poll_once(self) -> int:
        """Schedule every record some applicable analyzer has not populated."""
        analyzer_names = tuple(self._registry.names())
        scheduled = 0
        for name in self._store.list_names():
            if name in self._pending:
                continue
            if self._settled.get(name) == (self._store.version(name), analyzer_names):
                continue
            record = self._store.read(name)
            if record is None:
                continue
            if self._registry.needs_processing(record):
                self._schedule(name)
                scheduled += 1
            else:
                self._settle(name, analyzer_names)
        if scheduled:
            logger.info("Poll scheduled %d log(s) for processing", scheduled)
        return scheduled

    async def recompute_all(self) -> int:
        """Recompute every analyzer for every record, replacing prior values."""
        logger.info("Recomputing metrics for all logs (forced)")
        self._settled.clear()
        return await self.process_existing(force=True)

    async def process_file(self, name: str, force: bool = False) -> AnalysisReport | None:
        """Analyze one stored record and write new metrics back once.

        Returns the analysis report, or None when the record was skipped
        (already being processed, missing or unreadable).
        """
        if name in self._pending:
            logger.debug("%s already pending, skipping", name)
            return None

        self._pending.add(name)
        try:
            async with self._semaphore:
                record = self._store.read(name)
                if record is None:
                    logger.debug("Log %s missing or unreadable; will retry on next pass", name)
                    return None

                analyzer_names = tuple(self._registry.names())
                started = time.monotonic()
                report = await self._registry.analyze_all(record, force=force)
                logger.info(
                    "Analyzed %s in %d ms (ran=%s, skipped=%s, errors=%s)",
                    name,
                    int((time.monotonic() - started) * 1000),
                    report.invoked,
                    report.skipped,
                    list(report.errors),
                )

                if report.has_results or (force and report.invoked):
                    self._write_back(name, record, report, force)
                # Failed analyzers stay eligible for the next poll.
                if not report.errors:
                    self._settle(name, analyzer_names)
                return report
        finally:
            self._pending.discard(name)

    def _write_back(
        self, name: str, analyzed: InteractionRecord, report: AnalysisReport, force: bool
    ) -> None:
        # Re-read so concurrent rewrites (e.g. hydration) are not clobbered.
        current = self._store.read(name) or analyzed
        for analyzer in self._registry.analyzers():
            if force and analyzer.name in report.invoked and analyzer.name not in report.errors:
                analyzer.clear(current)
            if analyzer.name in report.results:
                analyzer.apply(current, report.results[analyzer.name])

        if self._store.write(current):
            logger.info("Updated %s with %s", name, sorted(report.results))

    def _settle(self, name: str, analyzer_names: tuple[str, ...]) -> None:
        self._settled[name] = (self._store.version(name), analyzer_names)
