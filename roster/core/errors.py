"""Exception taxonomy for the Roster core.

Identity ambiguity is not an exception: it is recorded as a
ResolutionConflict and logged, never raised.
"""


class RosterError(Exception):
    """Base class for all Roster domain errors."""


class ValidationError(RosterError, ValueError):
    """Malformed ingestion input. Nothing is persisted."""


class ConstraintViolation(RosterError):
    """A ledger insert collided with an existing (email, date) key.

    Raised by stores only; the ingestor turns it into an idempotent success.
    """

    def __init__(self, normalized_email: str, effective_date: object):
        self.normalized_email = normalized_email
        self.effective_date = effective_date
        super().__init__(
            f"Ledger record already exists for {normalized_email} on {effective_date}"
        )


class ClientEvaluationError(RosterError):
    """Evaluating a single client failed during a reconciliation pass."""
