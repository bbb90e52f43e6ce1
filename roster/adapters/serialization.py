"""JSON-ready dictionaries for domain models.

Shared by the webhook receiver and the CLI so both surfaces report
records, statuses and review items with the same field names.
"""

from typing import Any

from roster.core.models import (
    BatchIngestResult,
    ClientIdentity,
    DuplicateCandidate,
    ExpiringMembership,
    LedgerRecord,
    MembershipStatus,
    MergePreview,
    MergeResult,
    ReconcileSummary,
    ResolutionConflict,
)


def record_to_dict(record: LedgerRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "normalized_email": record.normalized_email,
        "resolved_client_id": record.resolved_client_id,
        # Decimal keeps its scale as a string ("8.00", not 8.0)
        "amount": str(record.amount),
        "effective_date": record.effective_date.isoformat(),
        "source": record.source.value,
        "created_at": record.created_at.isoformat(),
    }


def status_to_dict(status: MembershipStatus) -> dict[str, Any]:
    return {
        "client_id": status.client_id,
        "active": status.active,
        "last_evaluated": status.last_evaluated.isoformat(),
        "evidence_record_id": status.evidence_record_id,
    }


def candidate_to_dict(candidate: DuplicateCandidate) -> dict[str, Any]:
    return {
        "id": candidate.id,
        "primary_client_id": candidate.primary_client_id,
        "duplicate_client_id": candidate.duplicate_client_id,
        "reasons": list(candidate.reasons),
        "confidence": candidate.confidence,
        "suggested_action": candidate.suggested_action,
    }


def conflict_to_dict(conflict: ResolutionConflict) -> dict[str, Any]:
    return {
        "email": conflict.email,
        "resolved_client_id": conflict.resolved_client_id,
        "claimant_ids": list(conflict.claimant_ids),
        "kind": conflict.kind,
    }


def expiring_to_dict(item: ExpiringMembership) -> dict[str, Any]:
    return {
        "client_id": item.client_id,
        "expires_on": item.expires_on.isoformat(),
        "days_until_expiry": item.days_until_expiry,
        "evidence": record_to_dict(item.evidence),
    }


def summary_to_dict(summary: ReconcileSummary) -> dict[str, Any]:
    return {
        "total": summary.total,
        "updated": summary.updated,
        "unchanged": summary.unchanged,
        "failed": summary.failed,
        "failed_ids": list(summary.failed_ids),
        "duration_ms": round(summary.duration_ms, 2),
        "backfilled": summary.backfilled,
        "skipped": summary.skipped,
        "cancelled": summary.cancelled,
    }


def batch_result_to_dict(result: BatchIngestResult) -> dict[str, Any]:
    return {
        "total": result.total,
        "created": result.created,
        "duplicates": result.duplicates,
        "rejected": [
            {"index": index, "message": message} for index, message in result.rejected
        ],
    }


def client_to_dict(client: ClientIdentity) -> dict[str, Any]:
    return {
        "id": client.id,
        "primary_email": client.primary_email,
        "alias_emails": sorted(client.alias_emails),
        "first_name": client.first_name,
        "last_name": client.last_name,
        "phone": client.phone,
        "dog_name": client.dog_name,
        "address": client.address,
    }


def merge_preview_to_dict(preview: MergePreview) -> dict[str, Any]:
    return {
        "candidate_id": preview.candidate_id,
        "primary": client_to_dict(preview.primary),
        "duplicate": client_to_dict(preview.duplicate),
        "merged": client_to_dict(preview.merged),
        "conflicts": [
            {
                "field": c.field,
                "primary_value": c.primary_value,
                "duplicate_value": c.duplicate_value,
                "chosen_value": c.chosen_value,
            }
            for c in preview.conflicts
        ],
        "records_to_transfer": list(preview.records_to_transfer),
    }


def merge_result_to_dict(result: MergeResult) -> dict[str, Any]:
    return {
        "candidate_id": result.candidate_id,
        "merged_client": client_to_dict(result.merged_client),
        "removed_client_id": result.removed_client_id,
        "transferred_records": result.transferred_records,
    }
