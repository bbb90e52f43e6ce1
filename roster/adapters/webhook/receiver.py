"""HTTP webhook receiver for payment sources and review tooling.

Provides the request handlers behind the REST endpoints: payment
ingestion (generic and Squarespace order webhooks), reconciliation
triggers, and the read side of the membership and review queues.

This adapter translates request payloads into ReconcilePort and
ManagementPort calls. The HTTP transport lives in http_server.py.
"""

import json
import logging
from typing import Any

from roster.adapters.importer.squarespace import order_to_payment_event, verify_signature
from roster.adapters.serialization import (
    candidate_to_dict,
    conflict_to_dict,
    expiring_to_dict,
    merge_preview_to_dict,
    merge_result_to_dict,
    record_to_dict,
    status_to_dict,
    summary_to_dict,
)
from roster.core.errors import ValidationError
from roster.core.models import IngestSource
from roster.core.ports import ManagementPort, ReconcilePort

logger = logging.getLogger(__name__)


class WebhookAuthError(Exception):
    """A webhook payload failed signature verification."""


class WebhookReceiver:
    """HTTP webhook receiver for ingestion and operator queries.

    Forwards requests to ReconcilePort and ManagementPort.
    """

    def __init__(
        self,
        reconcile_port: ReconcilePort,
        management_port: ManagementPort,
        squarespace_secret: str | None = None,
    ):
        """Initialize the webhook receiver.

        Args:
            reconcile_port: ReconcilePort implementation for reconciliation passes.
            management_port: ManagementPort implementation for everything else.
            squarespace_secret: Shared secret for Squarespace-Signature
                verification. Order webhooks are rejected when unset.
        """
        self.reconcile_port = reconcile_port
        self.management_port = management_port
        self.squarespace_secret = squarespace_secret

    async def handle_payment(self, data: dict[str, Any]) -> dict[str, Any]:
        """Handle a generic payment webhook.

        Expected body: {"email", "amount", "effective_date", "source"?}.
        Source defaults to "webhook".

        Raises:
            ValidationError: If the payload is malformed.
        """
        source = data.get("source") or IngestSource.WEBHOOK.value
        record = await self.management_port.ingest_payment(
            data.get("email"),
            data.get("amount"),
            data.get("effective_date"),
            source,
        )
        logger.info(
            "Payment ingested via webhook",
            extra={"record_id": record.id, "source": record.source.value},
        )
        return {
            "status": "success",
            "operation": "ingest_payment",
            "record": record_to_dict(record),
        }

    async def handle_squarespace_webhook(
        self, body: bytes, signature: str | None
    ) -> dict[str, Any]:
        """Handle a Squarespace order notification.

        Only order.create notifications are ingested; other topics are
        acknowledged and ignored.

        Raises:
            WebhookAuthError: If the signature is missing or wrong.
            ValidationError: If the payload or order is malformed.
        """
        if not self.squarespace_secret:
            logger.error("Squarespace webhook received but no secret is configured")
            raise WebhookAuthError("Squarespace webhook secret not configured")
        if not verify_signature(body, signature, self.squarespace_secret):
            logger.warning("Rejected Squarespace webhook with invalid signature")
            raise WebhookAuthError("Invalid Squarespace signature")

        try:
            payload = json.loads(body) if body else {}
        except json.JSONDecodeError as e:
            raise ValidationError("Invalid JSON body") from e
        if not isinstance(payload, dict):
            raise ValidationError("JSON body must be an object")

        topic = payload.get("topic")
        logger.info(
            "Squarespace webhook received",
            extra={"topic": topic, "notification_id": payload.get("id")},
        )
        if topic != "order.create":
            return {
                "status": "ignored",
                "operation": "squarespace_webhook",
                "message": f"Event ignored: {topic}",
            }

        order = payload.get("data")
        if not isinstance(order, dict):
            raise ValidationError("Missing order data")

        event = order_to_payment_event(order)
        record = await self.management_port.ingest_payment(
            event.email, event.amount, event.effective_date, IngestSource.WEBHOOK
        )
        return {
            "status": "success",
            "operation": "squarespace_webhook",
            "order_number": event.reference,
            "record": record_to_dict(record),
        }

    async def handle_reconcile_trigger(self) -> dict[str, Any]:
        """Handle a request to run a reconciliation pass."""
        summary = await self.reconcile_port.reconcile()
        logger.info(
            "Reconciliation triggered via webhook",
            extra={"updated": summary.updated, "failed": summary.failed},
        )
        return {
            "status": "success",
            "operation": "reconcile",
            "result": summary_to_dict(summary),
        }

    async def handle_status_request(self, data: dict[str, Any]) -> dict[str, Any]:
        """Handle a status lookup for one client, or a filtered listing.

        Body: {"client_id"?} or {"active"?: bool}.
        """
        client_id = data.get("client_id")
        if client_id:
            status = await self.management_port.get_membership_status(client_id)
            return {
                "status": "success",
                "operation": "get_status",
                "client_id": client_id,
                "membership": status_to_dict(status) if status else None,
            }

        active = data.get("active")
        if active is not None and not isinstance(active, bool):
            raise ValidationError(f"active must be true or false, got {active!r}")
        statuses = await self.management_port.list_membership_statuses(active=active)
        return {
            "status": "success",
            "operation": "list_status",
            "memberships": [status_to_dict(s) for s in statuses],
        }

    async def handle_expiring_request(self, data: dict[str, Any]) -> dict[str, Any]:
        """Handle a request for memberships expiring soon. Body: {"within_days"?}."""
        within_days = data.get("within_days", 7)
        if isinstance(within_days, bool) or not isinstance(within_days, int) or within_days <= 0:
            raise ValidationError(f"within_days must be a positive integer, got {within_days!r}")
        expiring = await self.management_port.list_expiring_memberships(within_days)
        return {
            "status": "success",
            "operation": "list_expiring",
            "within_days": within_days,
            "memberships": [expiring_to_dict(item) for item in expiring],
        }

    async def handle_duplicates_request(self, data: dict[str, Any]) -> dict[str, Any]:
        """Handle a request for the duplicate review queue."""
        include_dismissed = bool(data.get("include_dismissed", False))
        candidates = await self.management_port.list_duplicate_candidates(
            include_dismissed=include_dismissed
        )
        return {
            "status": "success",
            "operation": "list_duplicates",
            "candidates": [candidate_to_dict(c) for c in candidates],
        }

    async def handle_refresh_duplicates(self) -> dict[str, Any]:
        """Handle a request to re-run duplicate detection."""
        candidates = await self.management_port.refresh_duplicate_candidates()
        return {
            "status": "success",
            "operation": "refresh_duplicates",
            "count": len(candidates),
        }

    async def handle_dismiss_request(self, candidate_id: str) -> dict[str, Any]:
        """Handle a request to dismiss a duplicate candidate.

        Raises:
            ValueError: If the candidate id is empty.
        """
        await self.management_port.dismiss_duplicate(candidate_id)
        logger.info(
            "Duplicate candidate dismissed via webhook",
            extra={"candidate_id": candidate_id},
        )
        return {
            "status": "success",
            "operation": "dismiss_duplicate",
            "candidate_id": candidate_id,
        }

    async def handle_merge_request(self, data: dict[str, Any]) -> dict[str, Any]:
        """Handle a merge request. Body: {"candidate_id", "confirm"?}.

        Without "confirm": true only the preview is returned.

        Raises:
            ValueError: If the candidate or either client is unknown.
        """
        candidate_id = str(data.get("candidate_id") or "")
        if data.get("confirm") is not True:
            preview = await self.management_port.preview_merge(candidate_id)
            return {
                "status": "preview",
                "operation": "merge_duplicate",
                "preview": merge_preview_to_dict(preview),
            }

        result = await self.management_port.merge_clients(candidate_id)
        logger.info(
            "Duplicate candidate merged via webhook",
            extra={"candidate_id": candidate_id},
        )
        return {
            "status": "success",
            "operation": "merge_duplicate",
            "result": merge_result_to_dict(result),
        }

    async def handle_conflicts_request(self) -> dict[str, Any]:
        """Handle a request for the identity conflict queue."""
        conflicts = await self.management_port.list_identity_conflicts()
        return {
            "status": "success",
            "operation": "list_conflicts",
            "conflicts": [conflict_to_dict(c) for c in conflicts],
        }
