"""Payment ledger ingestion.

Records payment events from every entry point (webhook, manual entry,
bulk import). Ingestion is idempotent on (normalized email, effective
date): retried deliveries and operator re-entry return the record that
already exists. The ingestor never touches membership status.
"""

import logging
import uuid
from collections.abc import Callable, Sequence
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

from .errors import ConstraintViolation, ValidationError
from .identity import IdentityResolver, normalize_email
from .models import BatchIngestResult, IngestSource, LedgerRecord, PaymentEvent
from .ports import LedgerStorePort

logger = logging.getLogger(__name__)

MAX_EMAIL_LENGTH = 254


def parse_amount(amount: object) -> Decimal:
    """Parse a payment amount into a positive Decimal.

    Raises:
        ValidationError: If the amount is missing, not numeric, not finite,
            or not greater than zero.
    """
    if isinstance(amount, bool) or amount is None:
        raise ValidationError(f"Invalid amount: {amount!r}")
    try:
        # str() first so floats like 8.1 don't carry binary noise
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"Invalid amount: {amount!r}") from e
    if not value.is_finite() or value <= 0:
        raise ValidationError(f"Amount must be a positive number, got {amount!r}")
    return value


def parse_effective_date(effective_date: object) -> date:
    """Parse an ISO calendar date (YYYY-MM-DD).

    Raises:
        ValidationError: If the value is not a valid calendar date.
    """
    if isinstance(effective_date, datetime):
        raise ValidationError(
            f"Effective date must be a calendar date, got timestamp {effective_date!r}"
        )
    if isinstance(effective_date, date):
        return effective_date
    if not isinstance(effective_date, str):
        raise ValidationError(f"Invalid effective date: {effective_date!r}")
    text = effective_date.strip()
    # date.fromisoformat also accepts compact forms like 20260121 on newer Pythons
    if len(text) != 10 or text[4] != "-" or text[7] != "-":
        raise ValidationError(
            f"Invalid date format {effective_date!r}. Use YYYY-MM-DD"
        )
    try:
        return date.fromisoformat(text)
    except ValueError as e:
        raise ValidationError(f"Invalid calendar date {effective_date!r}") from e


def parse_source(source: IngestSource | str) -> IngestSource:
    """Parse an ingestion source name.

    Raises:
        ValidationError: If the source is not webhook, manual or import.
    """
    if isinstance(source, IngestSource):
        return source
    try:
        return IngestSource(str(source).strip().lower())
    except ValueError as e:
        raise ValidationError(f"Unknown ingestion source: {source!r}") from e


def validate_email(raw_email: object) -> str:
    """Normalize an ingestion email.

    Raises:
        ValidationError: If the email is empty, lacks an "@" or is too long.
    """
    email = normalize_email(raw_email)
    if email is None:
        raise ValidationError(f"Invalid email: {raw_email!r}")
    if len(email) > MAX_EMAIL_LENGTH:
        raise ValidationError(
            f"Email longer than {MAX_EMAIL_LENGTH} characters"
        )
    return email


class LedgerIngestor:
    """Validates, resolves and records payment events.

    The ingestor is the only writer of ledger records.
    """

    def __init__(
        self,
        ledger: LedgerStorePort,
        resolver: IdentityResolver,
        clock: Callable[[], datetime] | None = None,
    ):
        self.ledger = ledger
        self.resolver = resolver
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def ingest(
        self,
        raw_email: object,
        amount: object,
        effective_date: object,
        source: IngestSource | str,
    ) -> LedgerRecord:
        """Record a payment event, returning the persisted or existing record.

        Raises:
            ValidationError: If the input is malformed. Nothing is persisted.
        """
        record, _created = await self._ingest(raw_email, amount, effective_date, source)
        return record

    async def _ingest(
        self,
        raw_email: object,
        amount: object,
        effective_date: object,
        source: IngestSource | str,
    ) -> tuple[LedgerRecord, bool]:
        email = validate_email(raw_email)
        value = parse_amount(amount)
        day = parse_effective_date(effective_date)
        origin = parse_source(source)

        client_id = await self._try_resolve(email)

        record = LedgerRecord(
            id=str(uuid.uuid4()),
            normalized_email=email,
            resolved_client_id=client_id,
            amount=value,
            effective_date=day,
            source=origin,
            created_at=self.clock(),
        )

        try:
            await self.ledger.insert_record(record)
        except ConstraintViolation:
            existing = await self.ledger.get_by_key(email, day)
            if existing is None:
                # The conflicting row vanished between insert and read
                raise
            logger.info(
                f"Duplicate payment for {email} on {day.isoformat()} ignored",
                extra={
                    "existing_record_id": existing.id,
                    "source": origin.value,
                    "ignored_amount": str(value),
                },
            )
            return existing, False

        logger.info(
            f"Recorded payment {record.id}",
            extra={
                "record_id": record.id,
                "email": email,
                "effective_date": day.isoformat(),
                "source": origin.value,
                "resolved_client_id": client_id,
            },
        )
        return record, True

    async def _try_resolve(self, email: str) -> str | None:
        """Resolve an email, treating directory failures as 'unresolved'."""
        try:
            return await self.resolver.resolve(email)
        except Exception as e:
            logger.warning(
                f"Identity resolution failed for {email}, storing unresolved: {e}",
                exc_info=True,
            )
            return None

    async def ingest_batch(
        self,
        events: Sequence[PaymentEvent],
        source: IngestSource | str = IngestSource.IMPORT,
    ) -> BatchIngestResult:
        """Ingest many events, isolating validation failures per row."""
        created = 0
        duplicates = 0
        rejected: list[tuple[int, str]] = []

        for index, event in enumerate(events):
            try:
                _record, was_created = await self._ingest(
                    event.email, event.amount, event.effective_date, source
                )
            except ValidationError as e:
                logger.warning(
                    f"Rejected import row {index}: {e}",
                    extra={"reference": event.reference},
                )
                rejected.append((index, str(e)))
                continue
            if was_created:
                created += 1
            else:
                duplicates += 1

        logger.info(
            f"Batch ingest finished: {created} created, {duplicates} duplicates, "
            f"{len(rejected)} rejected"
        )
        return BatchIngestResult(
            created=created, duplicates=duplicates, rejected=tuple(rejected)
        )

    async def backfill_unresolved(self) -> int:
        """Re-attempt resolution for every unresolved record.

        Returns:
            Number of records newly assigned to a client.
        """
        orphans = await self.ledger.list_unresolved()
        assigned = 0
        for record in orphans:
            client_id = await self._try_resolve(record.normalized_email)
            if client_id is None:
                continue
            if await self.ledger.assign_client(record.id, client_id):
                assigned += 1
                logger.info(
                    f"Backfilled record {record.id} to client {client_id}",
                    extra={"record_id": record.id, "client_id": client_id},
                )
        return assigned

    async def detach_client(self, client_id: str) -> int:
        """Unresolve a deleted client's records, keeping the history."""
        detached = await self.ledger.detach_client(client_id)
        logger.info(
            f"Detached {detached} ledger records from deleted client {client_id}",
            extra={"client_id": client_id},
        )
        return detached
