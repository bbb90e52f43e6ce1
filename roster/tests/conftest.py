"""Shared fixtures: core services wired over in-memory fakes."""

from datetime import UTC, datetime

import pytest

from roster.core.identity import IdentityResolver
from roster.core.ingestor import LedgerIngestor
from roster.core.management_service import ManagementService
from roster.core.models import ClientIdentity
from roster.core.reconciler import StatusReconciler
from roster.tests.fakes import (
    FakeClientDirectory,
    FakeLedgerStore,
    FakeMembershipStatusStore,
    FakeReviewQueueStore,
    FakeStatusChangePort,
)

FIXED_NOW = datetime(2026, 1, 25, 6, 0, tzinfo=UTC)


@pytest.fixture
def directory() -> FakeClientDirectory:
    return FakeClientDirectory(
        [
            ClientIdentity("C", "a1@x.com", frozenset({"a2@x.com"}), last_name="Ward"),
            ClientIdentity("D", "d@x.com", last_name="Ward"),
        ]
    )


@pytest.fixture
def ledger() -> FakeLedgerStore:
    return FakeLedgerStore()


@pytest.fixture
def status_store() -> FakeMembershipStatusStore:
    return FakeMembershipStatusStore()


@pytest.fixture
def review_store() -> FakeReviewQueueStore:
    return FakeReviewQueueStore()


@pytest.fixture
def notifier() -> FakeStatusChangePort:
    return FakeStatusChangePort()


@pytest.fixture
def resolver(directory: FakeClientDirectory) -> IdentityResolver:
    return IdentityResolver(directory)


@pytest.fixture
def ingestor(ledger: FakeLedgerStore, resolver: IdentityResolver) -> LedgerIngestor:
    return LedgerIngestor(ledger, resolver, clock=lambda: FIXED_NOW)


@pytest.fixture
def reconciler(
    directory: FakeClientDirectory,
    ledger: FakeLedgerStore,
    status_store: FakeMembershipStatusStore,
    resolver: IdentityResolver,
    ingestor: LedgerIngestor,
    notifier: FakeStatusChangePort,
) -> StatusReconciler:
    return StatusReconciler(
        directory=directory,
        ledger=ledger,
        status_store=status_store,
        resolver=resolver,
        ingestor=ingestor,
        notifier=notifier,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def management(
    directory: FakeClientDirectory,
    ledger: FakeLedgerStore,
    status_store: FakeMembershipStatusStore,
    review_store: FakeReviewQueueStore,
    resolver: IdentityResolver,
    ingestor: LedgerIngestor,
    reconciler: StatusReconciler,
) -> ManagementService:
    return ManagementService(
        directory=directory,
        ledger=ledger,
        status_store=status_store,
        review_store=review_store,
        resolver=resolver,
        ingestor=ingestor,
        reconciler=reconciler,
        clock=lambda: FIXED_NOW,
    )
