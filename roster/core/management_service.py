"""Management service: implements ManagementPort for operator and entry-point actions.

This is a core service that orchestrates client and alias lifecycle,
payment ingestion, status queries and the two review queues (duplicate
candidates and identity conflicts), including operator-confirmed merges
of duplicate clients. Every client or alias change invalidates the
identity index so the next resolution sees it.
"""

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import date, datetime, timezone

from .duplicates import DuplicateDetector
from .eligibility import MEMBERSHIP_WINDOW_DAYS, days_until_expiry, expires_on
from .errors import ValidationError
from .identity import IdentityResolver, normalize_email
from .ingestor import LedgerIngestor
from .merge import merge_identities
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
    ResolutionConflict,
)
from .ports import (
    ClientDirectoryPort,
    LedgerStorePort,
    ManagementPort,
    MembershipStatusStorePort,
    PaymentSourcePort,
    ReviewQueueStorePort,
)
from .reconciler import StatusReconciler

logger = logging.getLogger(__name__)


class ManagementService(ManagementPort):
    """Core implementation of ManagementPort.

    Coordinates the client directory, the ledger ingestor, the status
    store and the review queue. All state changes are logged for audit.
    It never writes MembershipStatus itself; deletions go through the
    reconciler.
    """

    def __init__(
        self,
        directory: ClientDirectoryPort,
        ledger: LedgerStorePort,
        status_store: MembershipStatusStorePort,
        review_store: ReviewQueueStorePort,
        resolver: IdentityResolver,
        ingestor: LedgerIngestor,
        reconciler: StatusReconciler,
        window_days: int = MEMBERSHIP_WINDOW_DAYS,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the management service.

        Args:
            directory: ClientDirectoryPort implementation for client identities.
            ledger: LedgerStorePort implementation, read for evidence lookups
                and used to move records when clients are merged.
            status_store: MembershipStatusStorePort implementation, read-only here.
            review_store: ReviewQueueStorePort implementation for duplicates.
            resolver: IdentityResolver to invalidate after identity changes.
            ingestor: LedgerIngestor that records payments.
            reconciler: StatusReconciler that owns membership status rows.
            window_days: Membership window used for expiry queries.
            clock: Returns the current time; defaults to UTC now.
        """
        self.directory = directory
        self.ledger = ledger
        self.status_store = status_store
        self.review_store = review_store
        self.resolver = resolver
        self.ingestor = ingestor
        self.reconciler = reconciler
        self.window_days = window_days
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def ingest_payment(
        self,
        email: str,
        amount: object,
        effective_date: object,
        source: IngestSource | str,
    ) -> LedgerRecord:
        """Record a payment idempotently.

        Args:
            email: Raw email as received from the payment source.
            amount: Positive amount (number or numeric string).
            effective_date: Calendar date or YYYY-MM-DD string.
            source: webhook, manual or import.

        Returns:
            The persisted record, or the existing one for a duplicate key.

        Raises:
            ValidationError: If the input is malformed.
        """
        return await self.ingestor.ingest(email, amount, effective_date, source)

    async def import_payments(
        self, source: PaymentSourcePort, limit: int | None = None
    ) -> BatchIngestResult:
        """Fetch historical payments from an upstream source and ingest them.

        Args:
            source: PaymentSourcePort to fetch from.
            limit: Optional maximum number of payments to fetch.

        Returns:
            BatchIngestResult with created, duplicate and rejected counts.

        Raises:
            Exception: If the upstream source cannot be read.
        """
        events = await source.fetch_payments(limit=limit)
        logger.info(
            f"Importing {len(events)} payments",
            extra={"limit": limit},
        )
        return await self.ingestor.ingest_batch(events, IngestSource.IMPORT)

    async def register_client(self, client: ClientIdentity) -> None:
        """Create or replace a client identity.

        Raises:
            ValidationError: If the primary email is present but malformed.
        """
        if client.primary_email is not None and normalize_email(client.primary_email) is None:
            raise ValidationError(f"Invalid email: {client.primary_email!r}")

        await self.directory.save_client(client)
        self.resolver.invalidate()

        logger.info(
            f"Client {client.id} registered",
            extra={"client_id": client.id, "alias_count": len(client.alias_emails)},
        )

    async def add_alias(self, client_id: str, email: str) -> ClientIdentity:
        """Attach an alias email to a client.

        Returns:
            The updated client identity.

        Raises:
            ValueError: If the client doesn't exist.
            ValidationError: If the email is malformed.
        """
        alias = normalize_email(email)
        if alias is None:
            raise ValidationError(f"Invalid email: {email!r}")

        client = await self._require_client(client_id)
        existing = {normalize_email(a) for a in client.alias_emails}
        if alias in existing or alias == normalize_email(client.primary_email):
            logger.debug(f"Alias {alias} already attached to client {client_id}")
            return client

        updated = replace(client, alias_emails=client.alias_emails | {alias})
        await self.directory.save_client(updated)
        self.resolver.invalidate()

        logger.info(
            f"Alias {alias} added to client {client_id}",
            extra={"client_id": client_id, "alias": alias},
        )
        return updated

    async def remove_alias(self, client_id: str, email: str) -> ClientIdentity:
        """Detach an alias email from a client.

        Returns:
            The updated client identity.

        Raises:
            ValueError: If the client doesn't exist or doesn't carry the alias.
        """
        alias = normalize_email(email)
        client = await self._require_client(client_id)
        remaining = frozenset(a for a in client.alias_emails if normalize_email(a) != alias)
        if alias is None or len(remaining) == len(client.alias_emails):
            raise ValueError(f"Client {client_id} has no alias {email!r}")

        updated = replace(client, alias_emails=remaining)
        await self.directory.save_client(updated)
        self.resolver.invalidate()

        logger.info(
            f"Alias {alias} removed from client {client_id}",
            extra={"client_id": client_id, "alias": alias},
        )
        return updated

    async def delete_client(self, client_id: str) -> None:
        """Delete a client, keeping its ledger history unresolved.

        Raises:
            ValueError: If the client doesn't exist.
        """
        await self.directory.delete_client(client_id)
        self.resolver.invalidate()

        detached = await self.ingestor.detach_client(client_id)
        await self.reconciler.forget_client(client_id)

        logger.info(
            f"Client {client_id} deleted",
            extra={"client_id": client_id, "detached_records": detached},
        )

    async def get_membership_status(self, client_id: str) -> MembershipStatus | None:
        """Return a client's persisted status, or None if never evaluated active."""
        return await self.status_store.get_status(client_id)

    async def list_membership_statuses(
        self, active: bool | None = None
    ) -> list[MembershipStatus]:
        statuses = await self.status_store.list_statuses(active=active)
        logger.debug(
            "Listed membership statuses"
            + (f" with active={active}" if active is not None else ""),
            extra={"count": len(statuses)},
        )
        return statuses

    async def list_expiring_memberships(
        self, within_days: int = 7, as_of: date | None = None
    ) -> list[ExpiringMembership]:
        """List active memberships whose evidence lapses within N days.

        A membership on its last day (0 days left) is not listed.

        Args:
            within_days: Horizon in days; must be positive.
            as_of: Reference date; defaults to today.

        Returns:
            Expiring memberships, soonest first.

        Raises:
            ValueError: If within_days is not positive.
        """
        if within_days <= 0:
            raise ValueError(f"within_days must be positive, got {within_days}")
        today = as_of or self.clock().date()

        expiring: list[ExpiringMembership] = []
        for status in await self.status_store.list_statuses(active=True):
            if status.evidence_record_id is None:
                continue
            record = await self.ledger.get_by_id(status.evidence_record_id)
            if record is None:
                logger.warning(
                    f"Evidence record {status.evidence_record_id} missing for "
                    f"client {status.client_id}"
                )
                continue
            remaining = days_until_expiry(record, today, self.window_days)
            if 0 < remaining <= within_days:
                expiring.append(
                    ExpiringMembership(
                        client_id=status.client_id,
                        evidence=record,
                        expires_on=expires_on(record, self.window_days),
                        days_until_expiry=remaining,
                    )
                )

        expiring.sort(key=lambda item: (item.days_until_expiry, item.client_id))
        return expiring

    async def refresh_duplicate_candidates(self) -> list[DuplicateCandidate]:
        """Run duplicate detection over all clients and store the result."""
        clients = await self.directory.list_clients()
        candidates = DuplicateDetector.detect(clients)
        await self.review_store.replace_duplicate_candidates(candidates)

        logger.info(
            f"Duplicate detection found {len(candidates)} candidates "
            f"across {len(clients)} clients"
        )
        return candidates

    async def list_duplicate_candidates(
        self, include_dismissed: bool = False
    ) -> list[DuplicateCandidate]:
        candidates = await self.review_store.list_duplicate_candidates()
        if include_dismissed:
            return candidates
        dismissed = await self.review_store.list_dismissed_ids()
        return [c for c in candidates if c.id not in dismissed]

    async def dismiss_duplicate(self, candidate_id: str) -> None:
        """Hide a candidate from the review queue, across future refreshes.

        Raises:
            ValueError: If the candidate id is empty.
        """
        if not candidate_id or not candidate_id.strip():
            raise ValueError("candidate_id must be a non-empty string")
        await self.review_store.dismiss_duplicate(candidate_id)
        logger.info(
            f"Duplicate candidate {candidate_id} dismissed",
            extra={"candidate_id": candidate_id},
        )

    async def preview_merge(self, candidate_id: str) -> MergePreview:
        """Show what merging a duplicate candidate would change.

        Nothing is written.

        Args:
            candidate_id: Id of a duplicate candidate in the review queue.

        Returns:
            MergePreview with the merged identity, field conflicts and the
            ledger records that would move to the primary client.

        Raises:
            ValueError: If the candidate is unknown or dismissed, or either
                client no longer exists.
        """
        candidate = await self._require_candidate(candidate_id)
        primary = await self._require_client(candidate.primary_client_id)
        duplicate = await self._require_client(candidate.duplicate_client_id)

        merged, conflicts = merge_identities(primary, duplicate)
        records = await self.ledger.list_for_client(duplicate.id)

        return MergePreview(
            candidate_id=candidate.id,
            primary=primary,
            duplicate=duplicate,
            merged=merged,
            conflicts=conflicts,
            records_to_transfer=tuple(sorted(r.id for r in records)),
        )

    async def merge_clients(self, candidate_id: str) -> MergeResult:
        """Merge a candidate's duplicate client into its primary.

        The primary record takes the duplicate's emails as aliases and
        fills its empty profile fields; the duplicate's ledger records are
        reassigned and the duplicate is deleted. Membership status is
        recomputed for the primary on the next reconciliation pass.

        Raises:
            ValueError: If the candidate is unknown or dismissed, or either
                client no longer exists.
        """
        preview = await self.preview_merge(candidate_id)
        primary_id = preview.primary.id
        duplicate_id = preview.duplicate.id

        await self.directory.save_client(preview.merged)
        transferred = await self.ledger.reassign_client(duplicate_id, primary_id)
        await self.directory.delete_client(duplicate_id)
        self.resolver.invalidate()
        await self.reconciler.forget_client(duplicate_id)

        remaining = [
            c
            for c in await self.review_store.list_duplicate_candidates()
            if duplicate_id not in (c.primary_client_id, c.duplicate_client_id)
        ]
        await self.review_store.replace_duplicate_candidates(remaining)

        logger.info(
            f"Client {duplicate_id} merged into {primary_id}",
            extra={
                "candidate_id": candidate_id,
                "primary_client_id": primary_id,
                "duplicate_client_id": duplicate_id,
                "transferred_records": transferred,
                "field_conflicts": len(preview.conflicts),
            },
        )
        return MergeResult(
            candidate_id=candidate_id,
            merged_client=preview.merged,
            removed_client_id=duplicate_id,
            transferred_records=transferred,
        )

    async def list_identity_conflicts(self) -> list[ResolutionConflict]:
        """List emails claimed by more than one client."""
        index = await self.resolver.index()
        return list(index.conflicts)

    async def _require_client(self, client_id: str) -> ClientIdentity:
        client = await self.directory.get_client(client_id)
        if client is None:
            raise ValueError(f"Client {client_id} not found")
        return client

    async def _require_candidate(self, candidate_id: str) -> DuplicateCandidate:
        if candidate_id in await self.review_store.list_dismissed_ids():
            raise ValueError(f"Duplicate candidate {candidate_id} was dismissed")
        for candidate in await self.review_store.list_duplicate_candidates():
            if candidate.id == candidate_id:
                return candidate
        raise ValueError(f"Duplicate candidate {candidate_id} not found")
