"""CLI command implementations for Roster management.

Provides operator actions through the command-line interface.

This adapter maps CLI commands (ingest, reconcile, alias edits, review
queues, merges) to ManagementPort and ReconcilePort operations. It handles
CLI-specific formatting and error reporting.
"""

import logging
from typing import Any

from roster.adapters.serialization import (
    batch_result_to_dict,
    candidate_to_dict,
    conflict_to_dict,
    expiring_to_dict,
    merge_preview_to_dict,
    merge_result_to_dict,
    record_to_dict,
    status_to_dict,
    summary_to_dict,
)
from roster.core.models import ClientIdentity, IngestSource
from roster.core.ports import ManagementPort, PaymentSourcePort, ReconcilePort

logger = logging.getLogger(__name__)

_CLIENT_FIELDS = ("first_name", "last_name", "phone", "dog_name", "address")


class CLICommandHandler:
    """Handles CLI commands by delegating to the driving ports.

    Every method returns a result dictionary with "status" set to
    "success" or "error"; ValueError (including ValidationError) becomes
    an error result instead of propagating.
    """

    def __init__(
        self,
        management: ManagementPort,
        reconciler: ReconcilePort,
        payment_source: PaymentSourcePort | None = None,
    ):
        """Initialize the CLI command handler.

        Args:
            management: ManagementPort implementation to execute commands.
            reconciler: ReconcilePort implementation for reconcile passes.
            payment_source: Optional upstream source for the import command.
        """
        self.management = management
        self.reconciler = reconciler
        self.payment_source = payment_source

    @staticmethod
    def _error(operation: str, e: Exception, **context: Any) -> dict[str, Any]:
        logger.error(f"Failed to {operation.replace('_', ' ')}: {e}")
        return {"status": "error", "operation": operation, **context, "message": str(e)}

    async def ingest_payment(
        self,
        email: str,
        amount: Any,
        effective_date: str,
        source: str = IngestSource.MANUAL.value,
    ) -> dict[str, Any]:
        """Record a payment entered by an operator.

        Returns:
            Dictionary with the persisted (or pre-existing) record.
        """
        try:
            record = await self.management.ingest_payment(email, amount, effective_date, source)
        except ValueError as e:
            return self._error("ingest_payment", e, email=email)
        return {
            "status": "success",
            "operation": "ingest_payment",
            "record": record_to_dict(record),
        }

    async def import_payments(self, limit: int | None = None) -> dict[str, Any]:
        """Bulk-import historical payments from the configured source."""
        if self.payment_source is None:
            return {
                "status": "error",
                "operation": "import_payments",
                "message": "No payment source configured (set SQUARESPACE_API_KEY)",
            }
        try:
            result = await self.management.import_payments(self.payment_source, limit=limit)
        except ValueError as e:
            return self._error("import_payments", e)
        return {
            "status": "success",
            "operation": "import_payments",
            "result": batch_result_to_dict(result),
        }

    async def reconcile(self) -> dict[str, Any]:
        """Run a reconciliation pass now."""
        summary = await self.reconciler.reconcile()
        return {
            "status": "success",
            "operation": "reconcile",
            "result": summary_to_dict(summary),
        }

    async def register_client(self, args: dict[str, Any]) -> dict[str, Any]:
        """Create or replace a client from CLI arguments.

        Required: client_id. Optional: email, aliases, and profile fields.
        """
        try:
            client = ClientIdentity(
                id=str(args.get("client_id") or ""),
                primary_email=args.get("email"),
                alias_emails=frozenset(args.get("aliases") or ()),
                **{name: args.get(name) for name in _CLIENT_FIELDS},
            )
            await self.management.register_client(client)
        except ValueError as e:
            return self._error("register_client", e, client_id=args.get("client_id"))
        return {
            "status": "success",
            "operation": "register_client",
            "client_id": client.id,
            "message": f"Client {client.id} registered",
        }

    async def add_alias(self, client_id: str, email: str) -> dict[str, Any]:
        try:
            client = await self.management.add_alias(client_id, email)
        except ValueError as e:
            return self._error("add_alias", e, client_id=client_id)
        return {
            "status": "success",
            "operation": "add_alias",
            "client_id": client_id,
            "aliases": sorted(client.alias_emails),
        }

    async def remove_alias(self, client_id: str, email: str) -> dict[str, Any]:
        try:
            client = await self.management.remove_alias(client_id, email)
        except ValueError as e:
            return self._error("remove_alias", e, client_id=client_id)
        return {
            "status": "success",
            "operation": "remove_alias",
            "client_id": client_id,
            "aliases": sorted(client.alias_emails),
        }

    async def delete_client(self, client_id: str) -> dict[str, Any]:
        try:
            await self.management.delete_client(client_id)
        except ValueError as e:
            return self._error("delete_client", e, client_id=client_id)
        return {
            "status": "success",
            "operation": "delete_client",
            "client_id": client_id,
            "message": f"Client {client_id} deleted; ledger history kept unresolved",
        }

    async def get_status(self, client_id: str) -> dict[str, Any]:
        status = await self.management.get_membership_status(client_id)
        return {
            "status": "success",
            "operation": "get_status",
            "client_id": client_id,
            "membership": status_to_dict(status) if status else None,
        }

    async def list_statuses(
        self, active: bool | None = None, output_format: str = "json"
    ) -> dict[str, Any]:
        """List membership statuses as JSON rows or a text table."""
        statuses = await self.management.list_membership_statuses(active=active)

        if output_format == "json":
            data: Any = [status_to_dict(s) for s in statuses]
        elif output_format == "text":
            data = self._format_statuses_as_text([status_to_dict(s) for s in statuses])
        else:
            return {
                "status": "error",
                "operation": "list_status",
                "message": f"Unsupported format: {output_format}",
            }

        return {
            "status": "success",
            "operation": "list_status",
            "count": len(statuses),
            "data": data,
        }

    async def list_expiring(self, within_days: int = 7) -> dict[str, Any]:
        try:
            expiring = await self.management.list_expiring_memberships(within_days)
        except ValueError as e:
            return self._error("list_expiring", e)
        return {
            "status": "success",
            "operation": "list_expiring",
            "within_days": within_days,
            "data": [expiring_to_dict(item) for item in expiring],
        }

    async def refresh_duplicates(self) -> dict[str, Any]:
        candidates = await self.management.refresh_duplicate_candidates()
        return {
            "status": "success",
            "operation": "refresh_duplicates",
            "count": len(candidates),
        }

    async def list_duplicates(
        self, include_dismissed: bool = False, output_format: str = "json"
    ) -> dict[str, Any]:
        candidates = await self.management.list_duplicate_candidates(
            include_dismissed=include_dismissed
        )
        rows = [candidate_to_dict(c) for c in candidates]
        if output_format == "text":
            data: Any = self._format_duplicates_as_text(rows)
        elif output_format == "json":
            data = rows
        else:
            return {
                "status": "error",
                "operation": "list_duplicates",
                "message": f"Unsupported format: {output_format}",
            }
        return {
            "status": "success",
            "operation": "list_duplicates",
            "count": len(rows),
            "data": data,
        }

    async def dismiss_duplicate(self, candidate_id: str) -> dict[str, Any]:
        try:
            await self.management.dismiss_duplicate(candidate_id)
        except ValueError as e:
            return self._error("dismiss_duplicate", e, candidate_id=candidate_id)
        return {
            "status": "success",
            "operation": "dismiss_duplicate",
            "candidate_id": candidate_id,
            "message": f"Duplicate candidate {candidate_id} dismissed",
        }

    async def merge_duplicate(
        self, candidate_id: str, confirm: bool = False
    ) -> dict[str, Any]:
        """Preview a merge, or perform it when confirm is True."""
        try:
            if not confirm:
                preview = await self.management.preview_merge(candidate_id)
                return {
                    "status": "preview",
                    "operation": "merge_duplicate",
                    "candidate_id": candidate_id,
                    "preview": merge_preview_to_dict(preview),
                    "message": "Re-run with confirm=true to merge",
                }
            result = await self.management.merge_clients(candidate_id)
        except ValueError as e:
            return self._error("merge_duplicate", e, candidate_id=candidate_id)
        return {
            "status": "success",
            "operation": "merge_duplicate",
            "candidate_id": candidate_id,
            "result": merge_result_to_dict(result),
            "message": (
                f"Client {result.removed_client_id} merged into "
                f"{result.merged_client.id}"
            ),
        }

    async def list_conflicts(self) -> dict[str, Any]:
        conflicts = await self.management.list_identity_conflicts()
        return {
            "status": "success",
            "operation": "list_conflicts",
            "count": len(conflicts),
            "data": [conflict_to_dict(c) for c in conflicts],
        }

    @staticmethod
    def _format_statuses_as_text(rows: list[dict[str, Any]]) -> str:
        if not rows:
            return "No membership statuses."
        lines = [f"{'CLIENT':<24} {'ACTIVE':<7} {'EVIDENCE':<38} LAST EVALUATED"]
        for row in rows:
            lines.append(
                f"{row['client_id']:<24} {'yes' if row['active'] else 'no':<7} "
                f"{row['evidence_record_id'] or '-':<38} {row['last_evaluated']}"
            )
        return "\n".join(lines)

    @staticmethod
    def _format_duplicates_as_text(rows: list[dict[str, Any]]) -> str:
        if not rows:
            return "No duplicate candidates."
        lines = []
        for row in rows:
            lines.append(
                f"{row['id']}  {row['primary_client_id']} <- {row['duplicate_client_id']} "
                f"[{row['confidence'].upper()}, {row['suggested_action']}]"
            )
            for reason in row["reasons"]:
                lines.append(f"    - {reason}")
        return "\n".join(lines)


def _require(args: dict[str, Any], *names: str) -> None:
    for name in names:
        if args.get(name) in (None, ""):
            raise ValueError(f"Missing required parameter: {name}")


async def run_command(
    handler: CLICommandHandler,
    command: str,
    args: dict[str, Any],
) -> dict[str, Any]:
    """Run a CLI command.

    Entry point for executing CLI commands. Maps command names to handler methods.

    Args:
        handler: CLICommandHandler to execute against.
        command: Command name (see the interactive help for the full list).
        args: Dictionary of command arguments.

    Returns:
        Dictionary with command result.

    Raises:
        ValueError: If command is not recognized or a required argument is missing.
    """
    if command == "ingest":
        _require(args, "email", "amount", "effective_date")
        return await handler.ingest_payment(
            args["email"],
            args["amount"],
            args["effective_date"],
            args.get("source", IngestSource.MANUAL.value),
        )

    elif command == "import":
        return await handler.import_payments(limit=args.get("limit"))

    elif command == "reconcile":
        return await handler.reconcile()

    elif command == "register":
        _require(args, "client_id")
        return await handler.register_client(args)

    elif command == "add-alias":
        _require(args, "client_id", "email")
        return await handler.add_alias(args["client_id"], args["email"])

    elif command == "remove-alias":
        _require(args, "client_id", "email")
        return await handler.remove_alias(args["client_id"], args["email"])

    elif command == "delete":
        _require(args, "client_id")
        return await handler.delete_client(args["client_id"])

    elif command == "status":
        if args.get("client_id"):
            return await handler.get_status(args["client_id"])
        return await handler.list_statuses(
            active=args.get("active"),
            output_format=args.get("format", "json"),
        )

    elif command == "expiring":
        return await handler.list_expiring(within_days=args.get("within_days", 7))

    elif command == "duplicates":
        if args.get("refresh"):
            await handler.refresh_duplicates()
        return await handler.list_duplicates(
            include_dismissed=args.get("include_dismissed", False),
            output_format=args.get("format", "json"),
        )

    elif command == "dismiss":
        _require(args, "candidate_id")
        return await handler.dismiss_duplicate(args["candidate_id"])

    elif command == "merge":
        _require(args, "candidate_id")
        return await handler.merge_duplicate(
            args["candidate_id"], confirm=args.get("confirm") is True
        )

    elif command == "conflicts":
        return await handler.list_conflicts()

    else:
        raise ValueError(f"Unknown command: {command}. Use 'help' for available commands.")
