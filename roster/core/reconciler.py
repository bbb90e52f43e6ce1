"""Reconciliation pass for membership status.

This module implements the batch pass that re-evaluates every client's
eligibility from the ledger and writes only the rows that changed.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone

from .eligibility import MEMBERSHIP_WINDOW_DAYS, evaluate
from .identity import IdentityResolver
from .ingestor import LedgerIngestor
from .models import (
    ClientIdentity,
    MembershipStatus,
    ReconcileSummary,
    StatusChanged,
)
from .ports import (
    ClientDirectoryPort,
    LedgerStorePort,
    MembershipStatusStorePort,
    ReconcilePort,
    StatusChangePort,
)

logger = logging.getLogger(__name__)


class StatusReconciler(ReconcilePort):
    """Implements the reconciliation pass.

    This service orchestrates:
    - Rebuilding the identity index
    - Backfilling ledger records that arrived before their client
    - Evaluating eligibility per client on a bounded worker pool
    - Writing status diffs and publishing StatusChanged events

    It is the only writer of MembershipStatus.
    """

    def __init__(
        self,
        directory: ClientDirectoryPort,
        ledger: LedgerStorePort,
        status_store: MembershipStatusStorePort,
        resolver: IdentityResolver,
        ingestor: LedgerIngestor,
        notifier: StatusChangePort | None = None,
        window_days: int = MEMBERSHIP_WINDOW_DAYS,
        max_concurrency: int = 4,
        client_timeout_seconds: float = 30.0,
        clock: Callable[[], datetime] | None = None,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.directory = directory
        self.ledger = ledger
        self.status_store = status_store
        self.resolver = resolver
        self.ingestor = ingestor
        self.notifier = notifier
        self.window_days = window_days
        self.max_concurrency = max_concurrency
        self.client_timeout_seconds = client_timeout_seconds
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.last_summary: ReconcileSummary | None = None
        self._client_locks: dict[str, asyncio.Lock] = {}
        self._cancel_requested = False

    def cancel(self) -> None:
        """Stop the running pass before its next client.

        Statuses already written are kept; a later pass converges to the
        same end state.
        """
        logger.info("Reconciliation cancel requested")
        self._cancel_requested = True

    def _lock_for(self, client_id: str) -> asyncio.Lock:
        lock = self._client_locks.get(client_id)
        if lock is None:
            lock = asyncio.Lock()
            self._client_locks[client_id] = lock
        return lock

    async def reconcile(self) -> ReconcileSummary:
        """Re-evaluate every client and write only the diffs."""
        loop = asyncio.get_running_loop()
        start = loop.time()
        self._cancel_requested = False

        try:
            await self.resolver.rebuild()
        except Exception as e:
            # Backfill retries resolution per record
            logger.error(f"Identity index rebuild failed: {e}", exc_info=True)

        try:
            backfilled = await self.ingestor.backfill_unresolved()
        except Exception as e:
            logger.error(f"Backfill of unresolved ledger records failed: {e}", exc_info=True)
            backfilled = 0

        clients = await self.directory.list_clients()
        now = self.clock()
        as_of = now.date()

        queue: asyncio.Queue[ClientIdentity] = asyncio.Queue()
        for client in clients:
            queue.put_nowait(client)

        updated: list[str] = []
        unchanged: list[str] = []
        failed: list[str] = []

        async def worker() -> None:
            while not self._cancel_requested:
                try:
                    client = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    changed, event = await asyncio.wait_for(
                        self._reconcile_client(client.id, now),
                        timeout=self.client_timeout_seconds,
                    )
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(
                        f"Failed to reconcile client {client.id}: {e}",
                        exc_info=True,
                        extra={"client_id": client.id, "as_of": as_of.isoformat()},
                    )
                    failed.append(client.id)
                    continue
                (updated if changed else unchanged).append(client.id)
                # Publishing is outside the client timeout; the row is already written
                if event is not None:
                    await self._publish(event)

        workers = min(self.max_concurrency, max(len(clients), 1))
        await asyncio.gather(*(worker() for _ in range(workers)))

        cancelled = self._cancel_requested
        self._cancel_requested = False
        duration_ms = (loop.time() - start) * 1000

        summary = ReconcileSummary(
            total=len(clients),
            updated=len(updated),
            unchanged=len(unchanged),
            failed=len(failed),
            failed_ids=tuple(sorted(failed)),
            duration_ms=duration_ms,
            backfilled=backfilled,
            skipped=queue.qsize(),
            cancelled=cancelled,
        )
        self.last_summary = summary

        logger.info(
            f"Reconciliation {'cancelled' if cancelled else 'completed'} in "
            f"{duration_ms:.0f}ms: {summary.total} clients, {summary.updated} updated, "
            f"{summary.unchanged} unchanged, {summary.failed} failed, "
            f"{summary.backfilled} backfilled"
        )

        if self.notifier is not None:
            try:
                await self.notifier.publish_summary(summary)
            except Exception as e:
                logger.error(f"Failed to publish reconciliation summary: {e}", exc_info=True)

        return summary

    async def _reconcile_client(
        self, client_id: str, now: datetime
    ) -> tuple[bool, StatusChanged | None]:
        """Evaluate one client and persist the result if it differs.

        Returns:
            (written, event): written is True if a status row was saved;
            event is set only when the active flag flipped. The caller
            publishes the event.
        """
        async with self._lock_for(client_id):
            records = await self.ledger.list_for_client(client_id)
            eligibility = evaluate(client_id, records, now.date(), self.window_days)
            evidence_id = eligibility.evidence.id if eligibility.evidence else None

            # Re-read inside the lock so concurrent passes see each other's writes
            current = await self.status_store.get_status(client_id)
            old_active = current.active if current else False
            old_evidence_id = current.evidence_record_id if current else None

            if old_active == eligibility.active and old_evidence_id == evidence_id:
                return False, None

            await self.status_store.save_status(
                MembershipStatus(
                    client_id=client_id,
                    active=eligibility.active,
                    last_evaluated=now,
                    evidence_record_id=evidence_id,
                )
            )

        if old_active != eligibility.active:
            logger.info(
                f"Client {client_id} membership "
                f"{'activated' if eligibility.active else 'lapsed'}",
                extra={
                    "client_id": client_id,
                    "evidence_record_id": evidence_id,
                },
            )
            return True, StatusChanged(
                client_id=client_id,
                old_active=old_active,
                new_active=eligibility.active,
                evidence=eligibility.evidence,
            )
        return True, None

    async def _publish(self, event: StatusChanged) -> None:
        # A failed publish must not revert the persisted status
        if self.notifier is None:
            return
        try:
            await self.notifier.publish(event)
        except Exception as e:
            logger.error(
                f"Failed to publish status change for client {event.client_id}: {e}",
                exc_info=True,
            )

    async def forget_client(self, client_id: str) -> None:
        """Drop the status row of a deleted client."""
        async with self._lock_for(client_id):
            await self.status_store.delete_status(client_id)
        self._client_locks.pop(client_id, None)
        logger.info(
            f"Removed membership status for deleted client {client_id}",
            extra={"client_id": client_id},
        )
