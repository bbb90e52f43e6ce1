"""Unit tests for LedgerIngestor.

Tests verify validation, idempotent recording, identity resolution at
ingestion time, batch isolation and backfilling of unresolved records.
"""

from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from roster.core.errors import ConstraintViolation, ValidationError
from roster.core.identity import IdentityResolver
from roster.core.ingestor import (
    LedgerIngestor,
    parse_amount,
    parse_effective_date,
    parse_source,
)
from roster.core.models import ClientIdentity, IngestSource, PaymentEvent
from roster.tests.fakes import FakeClientDirectory, FakeLedgerStore

NOW = datetime(2026, 1, 21, 12, 0, tzinfo=UTC)


@pytest.fixture
def directory() -> FakeClientDirectory:
    return FakeClientDirectory(
        [ClientIdentity("C", "a1@x.com", frozenset({"a2@x.com"}))]
    )


@pytest.fixture
def ledger() -> FakeLedgerStore:
    return FakeLedgerStore()


@pytest.fixture
def resolver(directory: FakeClientDirectory) -> IdentityResolver:
    return IdentityResolver(directory)


@pytest.fixture
def ingestor(ledger: FakeLedgerStore, resolver: IdentityResolver) -> LedgerIngestor:
    return LedgerIngestor(ledger, resolver, clock=lambda: NOW)


# ============================================================================
# Parsing helpers
# ============================================================================


class TestParsing:
    """Tests for the input parsing helpers."""

    def test_amount_from_float_keeps_decimal_digits(self) -> None:
        assert parse_amount(8.1) == Decimal("8.1")
        assert parse_amount("8.00") == Decimal("8.00")

    @pytest.mark.parametrize("amount", [0, -5, "abc", None, True, "NaN", "Infinity"])
    def test_amount_rejects_invalid(self, amount: object) -> None:
        with pytest.raises(ValidationError):
            parse_amount(amount)

    def test_date_accepts_iso_and_date(self) -> None:
        assert parse_effective_date("2026-01-21") == date(2026, 1, 21)
        assert parse_effective_date(date(2026, 1, 21)) == date(2026, 1, 21)

    @pytest.mark.parametrize(
        "value", ["2026-02-30", "21/01/2026", "20260121", "", None, NOW]
    )
    def test_date_rejects_invalid(self, value: object) -> None:
        with pytest.raises(ValidationError):
            parse_effective_date(value)

    def test_source_parsing(self) -> None:
        assert parse_source("Webhook") is IngestSource.WEBHOOK
        assert parse_source(IngestSource.IMPORT) is IngestSource.IMPORT
        with pytest.raises(ValidationError, match="Unknown ingestion source"):
            parse_source("carrier-pigeon")


# ============================================================================
# ingest
# ============================================================================


class TestIngest:
    """Tests for LedgerIngestor.ingest."""

    @pytest.mark.asyncio
    async def test_alias_email_resolves_to_client(
        self, ingestor: LedgerIngestor
    ) -> None:
        record = await ingestor.ingest("A2@X.com", 8.00, "2026-01-21", "webhook")

        assert record.resolved_client_id == "C"
        assert record.normalized_email == "a2@x.com"
        assert record.source is IngestSource.WEBHOOK
        assert record.created_at == NOW

    @pytest.mark.asyncio
    async def test_duplicate_ingest_keeps_first_record(
        self, ingestor: LedgerIngestor, ledger: FakeLedgerStore
    ) -> None:
        first = await ingestor.ingest("e@x.com", 8.00, "2026-01-21", "webhook")
        second = await ingestor.ingest(" E@x.com", 9.00, "2026-01-21", "manual")

        assert second == first
        assert len(ledger.records) == 1
        assert first.amount == Decimal("8.0")
        assert ledger.constraint_violations == 1

    @pytest.mark.asyncio
    async def test_same_email_different_day_is_new_record(
        self, ingestor: LedgerIngestor, ledger: FakeLedgerStore
    ) -> None:
        await ingestor.ingest("e@x.com", 8, "2026-01-21", "webhook")
        await ingestor.ingest("e@x.com", 8, "2026-01-22", "webhook")

        assert len(ledger.records) == 2

    @pytest.mark.asyncio
    async def test_unknown_email_is_stored_unresolved(
        self, ingestor: LedgerIngestor
    ) -> None:
        record = await ingestor.ingest("new@x.com", "12.50", "2026-01-21", "manual")

        assert record.resolved_client_id is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "email, amount, effective_date, source",
        [
            ("", 8, "2026-01-21", "webhook"),
            ("not-an-email", 8, "2026-01-21", "webhook"),
            ("a" * 250 + "@x.com", 8, "2026-01-21", "webhook"),
            ("e@x.com", 0, "2026-01-21", "webhook"),
            ("e@x.com", 8, "yesterday", "webhook"),
            ("e@x.com", 8, "2026-01-21", "fax"),
        ],
    )
    async def test_invalid_input_persists_nothing(
        self,
        ingestor: LedgerIngestor,
        ledger: FakeLedgerStore,
        email: str,
        amount: object,
        effective_date: object,
        source: str,
    ) -> None:
        with pytest.raises(ValidationError):
            await ingestor.ingest(email, amount, effective_date, source)

        assert ledger.insert_attempts == 0

    @pytest.mark.asyncio
    async def test_directory_failure_stores_unresolved(
        self, ingestor: LedgerIngestor, directory: FakeClientDirectory
    ) -> None:
        directory.should_fail = True

        record = await ingestor.ingest("a1@x.com", 8, "2026-01-21", "webhook")

        assert record.resolved_client_id is None

    @pytest.mark.asyncio
    async def test_vanished_conflict_row_reraises(
        self, resolver: IdentityResolver
    ) -> None:
        class VanishingLedger(FakeLedgerStore):
            async def insert_record(self, record):
                raise ConstraintViolation(record.normalized_email, record.effective_date)

        ingestor = LedgerIngestor(VanishingLedger(), resolver, clock=lambda: NOW)

        with pytest.raises(ConstraintViolation):
            await ingestor.ingest("e@x.com", 8, "2026-01-21", "webhook")


# ============================================================================
# Batch and backfill
# ============================================================================


class TestBatchAndBackfill:
    """Tests for ingest_batch, backfill_unresolved and detach_client."""

    @pytest.mark.asyncio
    async def test_batch_isolates_bad_rows(self, ingestor: LedgerIngestor) -> None:
        events = [
            PaymentEvent("a1@x.com", "8.00", "2026-01-01", "1001"),
            PaymentEvent("bad", "8.00", "2026-01-02", "1002"),
            PaymentEvent("A1@x.com", "8.00", "2026-01-01", "1003"),
            PaymentEvent("b@x.com", "-1", "2026-01-03", "1004"),
            PaymentEvent("b@x.com", "5", "2026-01-03", "1005"),
        ]

        result = await ingestor.ingest_batch(events)

        assert result.created == 2
        assert result.duplicates == 1
        assert [index for index, _ in result.rejected] == [1, 3]
        assert result.total == 5

    @pytest.mark.asyncio
    async def test_backfill_assigns_orphans_once_client_exists(
        self,
        ingestor: LedgerIngestor,
        ledger: FakeLedgerStore,
        directory: FakeClientDirectory,
        resolver: IdentityResolver,
    ) -> None:
        orphan = await ingestor.ingest("late@x.com", 8, "2026-01-21", "webhook")
        assert orphan.resolved_client_id is None

        directory.add(ClientIdentity("L", "late@x.com"))
        resolver.invalidate()

        assert await ingestor.backfill_unresolved() == 1
        assert (await ledger.get_by_id(orphan.id)).resolved_client_id == "L"
        assert await ingestor.backfill_unresolved() == 0

    @pytest.mark.asyncio
    async def test_detach_client_unresolves_history(
        self, ingestor: LedgerIngestor, ledger: FakeLedgerStore
    ) -> None:
        record = await ingestor.ingest("a1@x.com", 8, "2026-01-21", "webhook")

        assert await ingestor.detach_client("C") == 1
        assert (await ledger.get_by_id(record.id)).resolved_client_id is None
