"""Tests for the interactive CLI loop."""

import json
from unittest.mock import patch

import pytest

from roster.adapters.cli.commands import CLICommandHandler
from roster.core.management_service import ManagementService
from roster.core.reconciler import StatusReconciler
from roster.main import _run_cli_interactive


@pytest.fixture
def handler(
    management: ManagementService, reconciler: StatusReconciler
) -> CLICommandHandler:
    return CLICommandHandler(management, reconciler)


@pytest.mark.asyncio
class TestInteractiveCLILoop:
    """Test suite for interactive CLI loop."""

    async def test_executes_command_and_prints_json(
        self, handler: CLICommandHandler, capsys: pytest.CaptureFixture[str]
    ) -> None:
        commands = [
            'ingest {"email": "a1@x.com", "amount": "8", "effective_date": "2026-01-20"}',
            "exit",
        ]

        with patch("builtins.input", side_effect=commands):
            await _run_cli_interactive(handler)

        result = json.loads(capsys.readouterr().out)
        assert result["status"] == "success"
        assert result["record"]["resolved_client_id"] == "C"

    async def test_bad_json_and_unknown_command_keep_loop_alive(
        self, handler: CLICommandHandler, capsys: pytest.CaptureFixture[str]
    ) -> None:
        commands = ["status not-json", "status [1]", "frobnicate {}", "conflicts", "exit"]

        with patch("builtins.input", side_effect=commands):
            await _run_cli_interactive(handler)

        out = capsys.readouterr().out
        assert "Unknown command: frobnicate" in out
        assert '"operation": "list_conflicts"' in out

    async def test_help_and_blank_lines(
        self, handler: CLICommandHandler, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with patch("builtins.input", side_effect=["", "help", "exit"]):
            await _run_cli_interactive(handler)

        assert "Available Commands" in capsys.readouterr().out

    async def test_eof_exits(self, handler: CLICommandHandler) -> None:
        with patch("builtins.input", side_effect=EOFError()):
            await _run_cli_interactive(handler)
