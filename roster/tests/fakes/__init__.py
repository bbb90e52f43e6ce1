"""Fake/mock implementations of core ports for testing.

These in-memory implementations allow core domain logic to be tested
without external dependencies:

- FakeClientDirectory: In-memory client identities
- FakeLedgerStore: In-memory ledger with a uniqueness constraint
- FakeMembershipStatusStore: In-memory status rows
- FakeReviewQueueStore: In-memory duplicate queue and dismissals
- FakeStatusChangePort: Captured status changes for assertion
- FakePaymentSource: Canned upstream payments
- FakeReconcilePort: Captured reconciliation passes
"""

from .directory import FakeClientDirectory
from .ledger import FakeLedgerStore
from .notification import FakeStatusChangePort
from .payment_source import FakePaymentSource
from .reconcile import FakeReconcilePort
from .review import FakeReviewQueueStore
from .status import FakeMembershipStatusStore

__all__ = [
    "FakeClientDirectory",
    "FakeLedgerStore",
    "FakeMembershipStatusStore",
    "FakePaymentSource",
    "FakeReconcilePort",
    "FakeReviewQueueStore",
    "FakeStatusChangePort",
]
