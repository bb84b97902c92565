"""Change notifications for the log directory, backed by ``watchfiles``."""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from pathlib import Path

from watchfiles import Change, awatch

from tap_proxy.application.interfaces.change_source import ChangeSource

logger = logging.getLogger(__name__)

_RELEVANT_CHANGES = frozenset({Change.added, Change.modified})


class LogDirectoryWatcher(ChangeSource):
    """Yields names of record files that were created or rewritten.

    Notifications are best-effort (they may be coalesced or lost); callers
    are expected to reconcile periodically as well.
    """

    def __init__(
        self,
        directory: str | Path,
        accept: Callable[[str], bool],
        debounce_ms: int = 200,
    ):
        self._dir = Path(directory).resolve()
        self._accept = accept
        self._debounce_ms = debounce_ms
        self._stop = asyncio.Event()

    def _filter(self, change: Change, path: str) -> bool:
        candidate = Path(path)
        return (
            change in _RELEVANT_CHANGES
            and candidate.parent == self._dir
            and self._accept(candidate.name)
        )

    async def changes(self) -> AsyncIterator[str]:
        logger.info("Watching %s for new interaction logs", self._dir)
        async for batch in awatch(
            self._dir,
            watch_filter=self._filter,
            debounce=self._debounce_ms,
            stop_event=self._stop,
        ):
            # Sorted so a burst is processed oldest first.
            for name in sorted({Path(path).name for _, path in batch}):
                yield name
        logger.info("Stopped watching %s", self._dir)

    def stop(self) -> None:
        self._stop.set()
