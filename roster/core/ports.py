"""Port interfaces for the Roster membership system.

These abstract base classes define the boundaries between core
domain logic and external adapters. Implementations live in the
adapters/ package.

Port Interface Categories:

1. **Driven Ports** (core calls out to adapters)
   - ClientDirectoryPort: Persist and query client identities
   - LedgerStorePort: Persist and query ledger records
   - MembershipStatusStorePort: Persist membership status rows
   - ReviewQueueStorePort: Duplicate candidates and dismissals
   - StatusChangePort: Publish StatusChanged events downstream
   - PaymentSourcePort: Fetch historical payments for bulk import

2. **Driving Ports** (adapters/external systems call into core)
   - ReconcilePort: Entry point for reconciliation passes
   - ManagementPort: Ingestion and operator actions
"""

from abc import ABC, abstractmethod
from datetime import date

from .models import (
    BatchIngestResult,
    ClientIdentity,
    DuplicateCandidate,
    ExpiringMembership,
    IngestSource,
    LedgerRecord,
    MembershipStatus,
    MergePreview,
    MergeResult,
    PaymentEvent,
    ReconcileSummary,
    ResolutionConflict,
    StatusChanged,
)


# ============================================================================
# DRIVEN PORTS (Core calls out to adapters)
# ============================================================================


class ClientDirectoryPort(ABC):
    """Port for persisting and querying client identities.

    Adapters must store alias emails alongside the client; the core
    normalizes emails itself and does not rely on the adapter to do so.
    """

    @abstractmethod
    async def list_clients(self) -> list[ClientIdentity]:
        """Return every client identity, ordered by id.

        Raises:
            Exception: If the directory is unavailable.
        """

    @abstractmethod
    async def get_client(self, client_id: str) -> ClientIdentity | None:
        """Return a client identity by id, or None if it does not exist."""

    @abstractmethod
    async def save_client(self, client: ClientIdentity) -> None:
        """Create or replace a client identity, including its aliases."""

    @abstractmethod
    async def delete_client(self, client_id: str) -> None:
        """Delete a client identity and its aliases.

        Raises:
            ValueError: If the client doesn't exist.
        """


class LedgerStorePort(ABC):
    """Port for the payment ledger.

    Implementations must enforce uniqueness of (normalized_email,
    effective_date) inside the storage engine, not with a check-then-insert,
    so concurrent duplicate ingests cannot double-insert.
    """

    @abstractmethod
    async def insert_record(self, record: LedgerRecord) -> None:
        """Persist a new ledger record.

        Raises:
            ConstraintViolation: If a record with the same
                (normalized_email, effective_date) already exists.
        """

    @abstractmethod
    async def get_by_key(
        self, normalized_email: str, effective_date: date
    ) -> LedgerRecord | None:
        """Return the record for an idempotence key, or None."""

    @abstractmethod
    async def get_by_id(self, record_id: str) -> LedgerRecord | None:
        """Return a record by id, or None."""

    @abstractmethod
    async def list_for_client(self, client_id: str) -> list[LedgerRecord]:
        """Return every record resolved to a client.

        Raises:
            ValueError: If a stored row is corrupt (e.g. an unparseable date).
        """

    @abstractmethod
    async def list_unresolved(self) -> list[LedgerRecord]:
        """Return every record whose resolved_client_id is null."""

    @abstractmethod
    async def assign_client(self, record_id: str, client_id: str) -> bool:
        """Backfill resolved_client_id on a record that is still unresolved.

        Returns:
            True if the record was updated, False if it was already resolved
            or does not exist.
        """

    @abstractmethod
    async def detach_client(self, client_id: str) -> int:
        """Null out resolved_client_id on all of a client's records.

        Returns:
            Number of records detached.
        """

    @abstractmethod
    async def reassign_client(self, from_client_id: str, to_client_id: str) -> int:
        """Move every record resolved to from_client_id onto to_client_id.

        Used when an operator merges a duplicate client into its primary.

        Returns:
            Number of records reassigned.
        """


class MembershipStatusStorePort(ABC):
    """Port for membership status rows. Written only by the reconciler."""

    @abstractmethod
    async def get_status(self, client_id: str) -> MembershipStatus | None:
        """Return the persisted status for a client, or None."""

    @abstractmethod
    async def save_status(self, status: MembershipStatus) -> None:
        """Create or replace the status row for status.client_id."""

    @abstractmethod
    async def delete_status(self, client_id: str) -> None:
        """Remove a client's status row if present."""

    @abstractmethod
    async def list_statuses(
        self, active: bool | None = None
    ) -> list[MembershipStatus]:
        """Return status rows ordered by client id, optionally filtered."""


class ReviewQueueStorePort(ABC):
    """Port for the duplicate review queue."""

    @abstractmethod
    async def replace_duplicate_candidates(
        self, candidates: list[DuplicateCandidate]
    ) -> None:
        """Replace the stored candidate list with a fresh detection result."""

    @abstractmethod
    async def list_duplicate_candidates(self) -> list[DuplicateCandidate]:
        """Return stored candidates ordered by id."""

    @abstractmethod
    async def dismiss_duplicate(self, candidate_id: str) -> None:
        """Record an operator dismissal. Dismissing twice is a no-op."""

    @abstractmethod
    async def list_dismissed_ids(self) -> set[str]:
        """Return ids of every dismissed candidate."""


class StatusChangePort(ABC):
    """Port for publishing membership changes downstream.

    A notification dispatcher subscribes here to forward changes to
    third-party automation; that forwarding is not part of Roster.
    """

    @abstractmethod
    async def publish(self, event: StatusChanged) -> None:
        """Publish a single status change.

        Raises:
            Exception: If the channel is unavailable. The reconciler logs
                the failure and keeps the written status.
        """

    @abstractmethod
    async def publish_summary(self, summary: ReconcileSummary) -> None:
        """Publish the summary of a completed reconciliation pass."""


class PaymentSourcePort(ABC):
    """Port for fetching historical payments from an upstream shop."""

    @abstractmethod
    async def fetch_payments(self, limit: int | None = None) -> list[PaymentEvent]:
        """Return raw payment events, oldest first.

        Raises:
            Exception: If the upstream API is unreachable or times out.
        """

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""


# ============================================================================
# DRIVING PORTS (Adapters/external systems call into core)
# ============================================================================


class ReconcilePort(ABC):
    """Port for running reconciliation passes.

    Driving port: the daemon scheduler, webhook receiver and CLI invoke
    these methods. The implementation lives in core/reconciler.py.
    """

    @abstractmethod
    async def reconcile(self) -> ReconcileSummary:
        """Run one full pass over every client and write only the diffs.

        Never raises for per-client problems; they are aggregated into
        the returned summary.
        """

    @abstractmethod
    def cancel(self) -> None:
        """Ask a running pass to stop before its next client."""


class ManagementPort(ABC):
    """Port for ingestion and operator-initiated operations.

    Driving port: the CLI and webhook receiver call these. The
    implementation lives in core/management_service.py.
    """

    @abstractmethod
    async def ingest_payment(
        self,
        email: str,
        amount: object,
        effective_date: object,
        source: IngestSource | str,
    ) -> LedgerRecord:
        """Record a payment idempotently.

        Raises:
            ValidationError: If the input is malformed.
        """

    @abstractmethod
    async def import_payments(
        self, source: PaymentSourcePort, limit: int | None = None
    ) -> BatchIngestResult:
        """Bulk-import payments fetched from an upstream source."""

    @abstractmethod
    async def register_client(self, client: ClientIdentity) -> None:
        """Create or replace a client identity."""

    @abstractmethod
    async def add_alias(self, client_id: str, email: str) -> ClientIdentity:
        """Attach an alias email to a client."""

    @abstractmethod
    async def remove_alias(self, client_id: str, email: str) -> ClientIdentity:
        """Detach an alias email from a client."""

    @abstractmethod
    async def delete_client(self, client_id: str) -> None:
        """Delete a client, keeping its ledger history unresolved."""

    @abstractmethod
    async def get_membership_status(self, client_id: str) -> MembershipStatus | None:
        """Return a client's persisted status."""

    @abstractmethod
    async def list_membership_statuses(
        self, active: bool | None = None
    ) -> list[MembershipStatus]:
        """List persisted statuses."""

    @abstractmethod
    async def list_expiring_memberships(
        self, within_days: int = 7, as_of: date | None = None
    ) -> list[ExpiringMembership]:
        """List active memberships expiring within the given number of days."""

    @abstractmethod
    async def refresh_duplicate_candidates(self) -> list[DuplicateCandidate]:
        """Run duplicate detection and store the result."""

    @abstractmethod
    async def list_duplicate_candidates(
        self, include_dismissed: bool = False
    ) -> list[DuplicateCandidate]:
        """List the duplicate review queue."""

    @abstractmethod
    async def dismiss_duplicate(self, candidate_id: str) -> None:
        """Remove a candidate from the review queue permanently."""

    @abstractmethod
    async def preview_merge(self, candidate_id: str) -> MergePreview:
        """Show what merging a duplicate candidate would change."""

    @abstractmethod
    async def merge_clients(self, candidate_id: str) -> MergeResult:
        """Merge a candidate's duplicate client into its primary.

        Invoked only on explicit operator confirmation; detection never
        merges on its own.
        """

    @abstractmethod
    async def list_identity_conflicts(self) -> list[ResolutionConflict]:
        """List emails claimed by more than one client."""
