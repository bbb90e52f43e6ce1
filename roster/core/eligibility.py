"""Membership eligibility rules.

This module is the only place the rolling membership window is
defined. Every component that needs to know whether a payment keeps a
membership alive goes through evaluate() or the expiry helpers below.
"""

from collections.abc import Iterable
from datetime import date, datetime, timedelta

from .errors import ClientEvaluationError
from .models import Eligibility, LedgerRecord

MEMBERSHIP_WINDOW_DAYS = 30


def window_start(as_of: date, window_days: int = MEMBERSHIP_WINDOW_DAYS) -> date:
    """Earliest effective date that still counts on as_of (inclusive)."""
    return as_of - timedelta(days=window_days)


def evaluate(
    client_id: str,
    records: Iterable[LedgerRecord],
    as_of: date,
    window_days: int = MEMBERSHIP_WINDOW_DAYS,
) -> Eligibility:
    """Decide whether a client holds an active membership on as_of.

    Pure function, no side effects. Records resolved to other clients
    are ignored. A record exactly window_days old still counts.

    Raises:
        ClientEvaluationError: If a record carries an invalid effective date.
    """
    if window_days < 0:
        raise ValueError(f"window_days must be non-negative, got {window_days}")

    latest: LedgerRecord | None = None
    for record in records:
        if record.resolved_client_id != client_id:
            continue
        # datetime is a date subclass; a timestamp here means a corrupt row
        if not isinstance(record.effective_date, date) or isinstance(
            record.effective_date, datetime
        ):
            raise ClientEvaluationError(
                f"Record {record.id} has invalid effective date "
                f"{record.effective_date!r}"
            )
        if latest is None or _recency_key(record) > _recency_key(latest):
            latest = record

    if latest is None or latest.effective_date < window_start(as_of, window_days):
        return Eligibility(active=False, evidence=None)
    return Eligibility(active=True, evidence=latest)


def expires_on(
    record: LedgerRecord, window_days: int = MEMBERSHIP_WINDOW_DAYS
) -> date:
    """Last day on which this record keeps a membership active."""
    return record.effective_date + timedelta(days=window_days)


def days_until_expiry(
    record: LedgerRecord,
    as_of: date,
    window_days: int = MEMBERSHIP_WINDOW_DAYS,
) -> int:
    """Days from as_of until the record stops counting (0 = last day)."""
    return (expires_on(record, window_days) - as_of).days


def _recency_key(record: LedgerRecord) -> tuple[date, object, str]:
    return (record.effective_date, record.created_at, record.id)
