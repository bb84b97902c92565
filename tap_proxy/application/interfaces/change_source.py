"""Abstract interface for record change notifications."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator


class ChangeSource(ABC):
    """Port — yields storage names of records that were created or rewritten.

    Delivery is best-effort; consumers must tolerate duplicates and gaps.
    """

    @abstractmethod
    def changes(self) -> AsyncIterator[str]:
        ...

    @abstractmethod
    def stop(self) -> None:
        """Ask ``changes()`` to finish; safe to call more than once."""
        ...
