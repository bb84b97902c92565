"""Shared fixtures — in-memory implementations of the storage port."""

import copy

import pytest

from tap_proxy.application.interfaces.log_store import DeleteFailure, DeleteResult, LogStore
from tap_proxy.domain.entities import InteractionRecord


class InMemoryLogStore(LogStore):
    """LogStore keeping deep copies of records in a dict.

    Copies on both write and read so callers never share state with the
    store, just like the file-backed implementation.
    """

    def __init__(self) -> None:
        self.records: dict[str, InteractionRecord] = {}
        self.writes: list[str] = []
        self._versions: dict[str, int] = {}
        self.fail_writes = False

    @property
    def location(self) -> str:
        return "memory://logs"

    def name_for(self, record: InteractionRecord) -> str:
        return f"{record.timestamp}-{record.id}.json"

    def is_valid_name(self, name: str) -> bool:
        return name.endswith(".json")

    def write(self, record: InteractionRecord) -> bool:
        if self.fail_writes:
            return False
        name = self.name_for(record)
        self.records[name] = copy.deepcopy(record)
        self._versions[name] = self._versions.get(name, 0) + 1
        self.writes.append(name)
        return True

    def read(self, name: str) -> InteractionRecord | None:
        record = self.records.get(name)
        return copy.deepcopy(record) if record is not None else None

    def list_names(self) -> list[str]:
        return sorted(self.records, reverse=True)

    def version(self, name: str) -> int | None:
        return self._versions.get(name) if name in self.records else None

    def delete(self, names: list[str]) -> DeleteResult:
        result = DeleteResult()
        for name in names:
            if self.records.pop(name, None) is None:
                result.failed.append(DeleteFailure(file_name=name, error="not found"))
            else:
                result.deleted.append(name)
        return result

    def only(self) -> InteractionRecord:
        """The single stored record; fails the test if there is not exactly one."""
        assert len(self.records) == 1, f"expected one record, found {len(self.records)}"
        return next(iter(self.records.values()))


@pytest.fixture
def memory_store() -> InMemoryLogStore:
    return InMemoryLogStore()
