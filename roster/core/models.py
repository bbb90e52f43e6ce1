"""Domain models for the Roster membership system.

All models in this module use only Python standard library types,
ensuring zero external dependencies in the core domain.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Literal, TypeAlias


class IngestSource(Enum):
    """Entry points a payment event can arrive through."""

    WEBHOOK = "webhook"
    MANUAL = "manual"
    IMPORT = "import"


Confidence: TypeAlias = Literal["high", "medium"]

ConflictKind: TypeAlias = Literal["primary_alias", "primary_primary", "alias_alias"]


@dataclass(frozen=True)
class ClientIdentity:
    """A client and every email address they are known by.

    Profile fields are optional and only consulted by the duplicate
    detector; identity resolution uses the emails alone.
    """

    id: str
    primary_email: str | None
    alias_emails: frozenset[str] = field(default_factory=frozenset)
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    dog_name: str | None = None
    address: str | None = None

    def __post_init__(self) -> None:
        """Validate identity invariants on creation."""
        if not self.id or not self.id.strip():
            raise ValueError("id must be a non-empty string")
        if not isinstance(self.alias_emails, frozenset):
            object.__setattr__(self, "alias_emails", frozenset(self.alias_emails))

    @property
    def full_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts)


@dataclass(frozen=True)
class LedgerRecord:
    """A persisted payment/membership event.

    Unique on (normalized_email, effective_date). The record is never
    mutated after ingestion except to backfill a null resolved_client_id.
    """

    id: str  # UUID
    normalized_email: str
    resolved_client_id: str | None
    amount: Decimal
    effective_date: date
    source: IngestSource
    created_at: datetime

    def __post_init__(self) -> None:
        """Validate ledger record invariants on creation or deserialization."""
        if self.amount <= 0:
            raise ValueError(f"amount must be positive, got {self.amount}")

    @property
    def idempotence_key(self) -> tuple[str, date]:
        return (self.normalized_email, self.effective_date)


@dataclass(frozen=True)
class MembershipStatus:
    """Current membership state for a client, written only by the reconciler."""

    client_id: str
    active: bool
    last_evaluated: datetime
    evidence_record_id: str | None = None


@dataclass(frozen=True)
class Eligibility:
    """Outcome of evaluating one client's ledger history."""

    active: bool
    evidence: LedgerRecord | None  # most recent qualifying record


@dataclass(frozen=True)
class DuplicateCandidate:
    """A pair of clients that likely represent the same person.

    primary_client_id/duplicate_client_id form the ordered pair; the id is
    derived from the sorted pair so it is stable across detection runs.
    """

    id: str
    primary_client_id: str
    duplicate_client_id: str
    reasons: tuple[str, ...]  # immutable for frozen dataclass
    confidence: Confidence

    @property
    def suggested_action(self) -> str:
        return "merge" if self.confidence == "high" else "review"


@dataclass(frozen=True)
class ResolutionConflict:
    """An email claimed by more than one client.

    Resolution still succeeds deterministically; the conflict is kept for
    operator review and never triggers an automatic merge.
    """

    email: str
    resolved_client_id: str
    claimant_ids: tuple[str, ...]  # every client claiming the email, sorted
    kind: ConflictKind


@dataclass(frozen=True)
class StatusChanged:
    """Emitted by the reconciler when a client's active flag flips."""

    client_id: str
    old_active: bool
    new_active: bool
    evidence: LedgerRecord | None


@dataclass(frozen=True)
class ReconcileSummary:
    """Summary of a reconciliation pass."""

    total: int
    updated: int
    unchanged: int
    failed: int
    failed_ids: tuple[str, ...]
    duration_ms: float
    backfilled: int = 0  # orphan records resolved during this pass
    skipped: int = 0  # clients not reached because the pass was cancelled
    cancelled: bool = False


@dataclass(frozen=True)
class PaymentEvent:
    """A raw payment as received from an entry point, before validation."""

    email: str
    amount: str | Decimal | float | int
    effective_date: str | date
    reference: str | None = None  # upstream order number, for logging only


@dataclass(frozen=True)
class BatchIngestResult:
    """Summary of a bulk ingestion."""

    created: int
    duplicates: int
    rejected: tuple[tuple[int, str], ...]  # (row index, validation message)

    @property
    def total(self) -> int:
        return self.created + self.duplicates + len(self.rejected)


@dataclass(frozen=True)
class ExpiringMembership:
    """An active membership whose evidence record is about to lapse."""

    client_id: str
    evidence: LedgerRecord
    expires_on: date
    days_until_expiry: int


@dataclass(frozen=True)
class FieldConflict:
    """A profile field both clients of a merge fill with different values."""

    field: str
    primary_value: str
    duplicate_value: str
    chosen_value: str


@dataclass(frozen=True)
class MergePreview:
    """What merging a duplicate candidate would do, before it is confirmed.

    merged carries the primary's id with the duplicate's emails folded in
    as aliases and its profile gaps filled from the duplicate.
    """

    candidate_id: str
    primary: ClientIdentity
    duplicate: ClientIdentity
    merged: ClientIdentity
    conflicts: tuple[FieldConflict, ...]
    records_to_transfer: tuple[str, ...]  # ledger record ids of the duplicate


@dataclass(frozen=True)
class MergeResult:
    """Outcome of an operator-confirmed merge."""

    candidate_id: str
    merged_client: ClientIdentity
    removed_client_id: str
    transferred_records: int
