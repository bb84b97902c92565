"""Abstract storage interface for persisted interaction records."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from tap_proxy.domain.entities import InteractionRecord


@dataclass
class DeleteFailure:
    file_name: str
    error: str


@dataclass
class DeleteResult:
    deleted: list[str] = field(default_factory=list)
    failed: list[DeleteFailure] = field(default_factory=list)


class LogStore(ABC):
    """Port — file-per-interaction persistence.

    Records are addressed by their storage name (one name per record). A
    ``write`` fully replaces prior content for that name and readers never
    observe a half-written record.
    """

    @property
    @abstractmethod
    def location(self) -> str:
        """Directory (or other locator) the store watches and writes into."""
        ...

    @abstractmethod
    def name_for(self, record: InteractionRecord) -> str:
        """Storage name a record is written under."""
        ...

    @abstractmethod
    def is_valid_name(self, name: str) -> bool:
        ...

    @abstractmethod
    def write(self, record: InteractionRecord) -> bool:
        """Persist the record, replacing any prior version.

        Returns:
            True on success, False if the write failed (the failure is logged).
        """
        ...

    @abstractmethod
    def read(self, name: str) -> InteractionRecord | None:
        """Load a record, or None when absent, invalid or unreadable."""
        ...

    @abstractmethod
    def list_names(self) -> list[str]:
        """All record names, newest first."""
        ...

    @abstractmethod
    def version(self, name: str) -> int | None:
        """Opaque token that changes whenever the record is rewritten.

        None when the record does not exist.
        """
        ...

    @abstractmethod
    def delete(self, names: list[str]) -> DeleteResult:
        ...
