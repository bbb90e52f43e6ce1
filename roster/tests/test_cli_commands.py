"""Tests for CLI command handling and dispatch."""

import pytest

from roster.adapters.cli.commands import CLICommandHandler, run_command
from roster.core.management_service import ManagementService
from roster.core.models import PaymentEvent
from roster.core.reconciler import StatusReconciler
from roster.tests.fakes import FakePaymentSource


@pytest.fixture
def payment_source() -> FakePaymentSource:
    return FakePaymentSource(
        [
            PaymentEvent("a1@x.com", "8.00", "2026-01-20", "1001"),
            PaymentEvent("", "8.00", "2026-01-20", "1002"),
        ]
    )


@pytest.fixture
def handler(
    management: ManagementService,
    reconciler: StatusReconciler,
    payment_source: FakePaymentSource,
) -> CLICommandHandler:
    return CLICommandHandler(management, reconciler, payment_source=payment_source)


class TestCLICommandHandler:
    """Tests for CLICommandHandler methods."""

    @pytest.mark.asyncio
    async def test_ingest_payment_defaults_to_manual(
        self, handler: CLICommandHandler
    ) -> None:
        result = await handler.ingest_payment("a2@x.com", "8.00", "2026-01-21")

        assert result["status"] == "success"
        assert result["record"]["source"] == "manual"
        assert result["record"]["resolved_client_id"] == "C"

    @pytest.mark.asyncio
    async def test_ingest_payment_validation_error(self, handler: CLICommandHandler) -> None:
        result = await handler.ingest_payment("a2@x.com", "8.00", "21/01/2026")

        assert result["status"] == "error"
        assert "YYYY-MM-DD" in result["message"]

    @pytest.mark.asyncio
    async def test_import_payments(self, handler: CLICommandHandler) -> None:
        result = await handler.import_payments(limit=5)

        assert result["status"] == "success"
        assert result["result"]["created"] == 1
        assert result["result"]["rejected"][0]["index"] == 1
        assert result["result"]["total"] == 2

    @pytest.mark.asyncio
    async def test_import_without_source(
        self, management: ManagementService, reconciler: StatusReconciler
    ) -> None:
        handler = CLICommandHandler(management, reconciler)

        result = await handler.import_payments()

        assert result["status"] == "error"
        assert "No payment source" in result["message"]

    @pytest.mark.asyncio
    async def test_register_and_alias_lifecycle(self, handler: CLICommandHandler) -> None:
        registered = await handler.register_client(
            {"client_id": "N", "email": "n@x.com", "dog_name": "Rex"}
        )
        assert registered["status"] == "success"

        added = await handler.add_alias("N", "n2@x.com")
        assert added["aliases"] == ["n2@x.com"]

        removed = await handler.remove_alias("N", "n2@x.com")
        assert removed["aliases"] == []

        missing = await handler.remove_alias("N", "n2@x.com")
        assert missing["status"] == "error"

    @pytest.mark.asyncio
    async def test_register_rejects_blank_id(self, handler: CLICommandHandler) -> None:
        result = await handler.register_client({"client_id": " ", "email": "n@x.com"})

        assert result["status"] == "error"

    @pytest.mark.asyncio
    async def test_delete_unknown_client(self, handler: CLICommandHandler) -> None:
        result = await handler.delete_client("ghost")

        assert result["status"] == "error"
        assert result["client_id"] == "ghost"

    @pytest.mark.asyncio
    async def test_status_listing_formats(self, handler: CLICommandHandler) -> None:
        await handler.ingest_payment("a1@x.com", "8", "2026-01-20")
        await handler.reconcile()

        as_json = await handler.list_statuses(output_format="json")
        assert as_json["count"] == 1
        assert as_json["data"][0]["client_id"] == "C"

        as_text = await handler.list_statuses(output_format="text")
        assert as_text["data"].splitlines()[1].startswith("C ")

        bad = await handler.list_statuses(output_format="xml")
        assert bad["status"] == "error"

    @pytest.mark.asyncio
    async def test_expiring_rejects_non_positive(self, handler: CLICommandHandler) -> None:
        result = await handler.list_expiring(within_days=0)

        assert result["status"] == "error"

    @pytest.mark.asyncio
    async def test_duplicates_text_format(self, handler: CLICommandHandler) -> None:
        await handler.refresh_duplicates()

        result = await handler.list_duplicates(output_format="text")

        assert "C <- D [MEDIUM, review]" in result["data"]
        assert "    - Same last name: Ward" in result["data"]

    @pytest.mark.asyncio
    async def test_merge_previews_until_confirmed(self, handler: CLICommandHandler) -> None:
        await handler.refresh_duplicates()
        [candidate] = (await handler.list_duplicates())["data"]

        preview = await run_command(handler, "merge", {"candidate_id": candidate["id"]})
        assert preview["status"] == "preview"
        assert preview["preview"]["merged"]["alias_emails"] == ["a2@x.com", "d@x.com"]
        assert (await handler.list_duplicates())["count"] == 1

        merged = await run_command(
            handler, "merge", {"candidate_id": candidate["id"], "confirm": True}
        )
        assert merged["status"] == "success"
        assert merged["result"]["removed_client_id"] == "D"
        assert (await handler.list_duplicates())["count"] == 0

    @pytest.mark.asyncio
    async def test_merge_unknown_candidate_is_error(self, handler: CLICommandHandler) -> None:
        result = await handler.merge_duplicate("missing", confirm=True)

        assert result["status"] == "error"
        assert "not found" in result["message"]


class TestRunCommand:
    """Tests for run_command dispatch."""

    @pytest.mark.asyncio
    async def test_unknown_command_raises(self, handler: CLICommandHandler) -> None:
        with pytest.raises(ValueError, match="Unknown command"):
            await run_command(handler, "frobnicate", {})

    @pytest.mark.asyncio
    async def test_missing_required_argument_raises(
        self, handler: CLICommandHandler
    ) -> None:
        with pytest.raises(ValueError, match="Missing required parameter: amount"):
            await run_command(handler, "ingest", {"email": "a@x.com"})

    @pytest.mark.asyncio
    async def test_full_flow(self, handler: CLICommandHandler) -> None:
        await run_command(
            handler,
            "ingest",
            {"email": "A2@X.com", "amount": "8.00", "effective_date": "2026-01-21"},
        )
        reconciled = await run_command(handler, "reconcile", {})
        assert reconciled["result"]["updated"] == 1

        status = await run_command(handler, "status", {"client_id": "C"})
        assert status["membership"]["active"] is True

        expiring = await run_command(handler, "expiring", {"within_days": 30})
        assert [row["client_id"] for row in expiring["data"]] == ["C"]

        duplicates = await run_command(handler, "duplicates", {"refresh": True})
        [candidate] = duplicates["data"]

        dismissed = await run_command(handler, "dismiss", {"candidate_id": candidate["id"]})
        assert dismissed["status"] == "success"
        assert (await run_command(handler, "duplicates", {}))["count"] == 0

        await run_command(handler, "add-alias", {"client_id": "D", "email": "a1@x.com"})
        conflicts = await run_command(handler, "conflicts", {})
        assert conflicts["data"][0]["kind"] == "primary_alias"

        deleted = await run_command(handler, "delete", {"client_id": "C"})
        assert deleted["status"] == "success"
        assert (await run_command(handler, "status", {"client_id": "C"}))["membership"] is None
