"""Fake LedgerStorePort implementation for testing."""

from dataclasses import replace
from datetime import date

from roster.core.errors import ConstraintViolation
from roster.core.models import LedgerRecord
from roster.core.ports import LedgerStorePort


class FakeLedgerStore(LedgerStorePort):
    """In-memory ledger for testing.

    Enforces the (normalized_email, effective_date) uniqueness the same
    way a storage engine would: the insert itself raises.
    """

    def __init__(self):
        """Initialize with an empty ledger."""
        self.records: dict[str, LedgerRecord] = {}
        self.insert_attempts = 0
        self.constraint_violations = 0
        self.failing_client_ids: set[str] = set()

    async def insert_record(self, record: LedgerRecord) -> None:
        self.insert_attempts += 1
        for existing in self.records.values():
            if existing.idempotence_key == record.idempotence_key:
                self.constraint_violations += 1
                raise ConstraintViolation(record.normalized_email, record.effective_date)
        self.records[record.id] = record

    async def get_by_key(
        self, normalized_email: str, effective_date: date
    ) -> LedgerRecord | None:
        for record in self.records.values():
            if record.idempotence_key == (normalized_email, effective_date):
                return record
        return None

    async def get_by_id(self, record_id: str) -> LedgerRecord | None:
        return self.records.get(record_id)

    async def list_for_client(self, client_id: str) -> list[LedgerRecord]:
        if client_id in self.failing_client_ids:
            raise ValueError(f"Corrupt ledger row for {client_id}")
        return [r for r in self.records.values() if r.resolved_client_id == client_id]

    async def list_unresolved(self) -> list[LedgerRecord]:
        return [r for r in self.records.values() if r.resolved_client_id is None]

    async def assign_client(self, record_id: str, client_id: str) -> bool:
        record = self.records.get(record_id)
        if record is None or record.resolved_client_id is not None:
            return False
        self.records[record_id] = replace(record, resolved_client_id=client_id)
        return True

    async def detach_client(self, client_id: str) -> int:
        detached = 0
        for record_id, record in list(self.records.items()):
            if record.resolved_client_id == client_id:
                self.records[record_id] = replace(record, resolved_client_id=None)
                detached += 1
        return detached

    async def reassign_client(self, from_client_id: str, to_client_id: str) -> int:
        moved = 0
        for record_id, record in list(self.records.items()):
            if record.resolved_client_id == from_client_id:
                self.records[record_id] = replace(record, resolved_client_id=to_client_id)
                moved += 1
        return moved

    def reset(self) -> None:
        """Reset all collected data."""
        self.records.clear()
        self.insert_attempts = 0
        self.constraint_violations = 0
        self.failing_client_ids.clear()
