"""Core domain logic for the Roster membership system.

This package contains zero external dependencies and represents
the pure business logic of the application. All adapters and
external integrations are handled by the adapters package.
"""

from .errors import (
    ClientEvaluationError,
    ConstraintViolation,
    RosterError,
    ValidationError,
)
from .models import (
    BatchIngestResult,
    ClientIdentity,
    Confidence,
    DuplicateCandidate,
    Eligibility,
    ExpiringMembership,
    FieldConflict,
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

__all__ = [
    "BatchIngestResult",
    "ClientEvaluationError",
    "ClientIdentity",
    "Confidence",
    "ConstraintViolation",
    "DuplicateCandidate",
    "Eligibility",
    "ExpiringMembership",
    "FieldConflict",
    "IngestSource",
    "LedgerRecord",
    "MembershipStatus",
    "MergePreview",
    "MergeResult",
    "PaymentEvent",
    "ReconcileSummary",
    "ResolutionConflict",
    "RosterError",
    "StatusChanged",
    "ValidationError",
]
