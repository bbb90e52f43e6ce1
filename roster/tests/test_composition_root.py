"""Integration tests for the composition root.

These tests verify that configuration loads and validates, and that
build_services wires the SQLite store, notifier and core services into
a working system.
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from roster.adapters.importer.squarespace import SquarespaceOrderSource
from roster.adapters.notification.markdown import MarkdownStatusChangeAdapter
from roster.adapters.notification.stdout import StdoutStatusChangeAdapter
from roster.config import Settings, load_settings
from roster.core.eligibility import MEMBERSHIP_WINDOW_DAYS
from roster.core.models import ClientIdentity
from roster.main import build_services, configure_logging, main


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Run each test from an empty directory so no stray .env file is read."""
    monkeypatch.chdir(tmp_path)
    for name in (
        "RUN_MODE",
        "STORE_SQLITE_PATH",
        "MEMBERSHIP_WINDOW_DAYS",
        "NOTIFICATION_BACKEND",
        "SQUARESPACE_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)


class TestConfigurationLoading:
    """Test configuration loading and validation."""

    def test_load_settings_with_defaults(self) -> None:
        settings = load_settings()

        assert settings.membership_window_days == 30
        assert settings.notification_backend == "stdout"
        assert settings.run_mode == "daemon"
        assert settings.reconcile_interval_seconds == 3600
        assert settings.reconcile_max_concurrency == 4
        assert settings.squarespace_api_key == ""

    def test_load_settings_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MEMBERSHIP_WINDOW_DAYS", "45")
        monkeypatch.setenv("RUN_MODE", "webhook")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")

        settings = load_settings()

        assert settings.membership_window_days == 45
        assert settings.run_mode == "webhook"
        assert settings.log_level == "DEBUG"

    def test_window_default_is_the_eligibility_constant(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        assert load_settings().membership_window_days == MEMBERSHIP_WINDOW_DAYS

        monkeypatch.setenv("MEMBERSHIP_WINDOW_DAYS", "0")
        assert load_settings().membership_window_days == 0

    def test_load_settings_from_env_file(self, tmp_path: Path) -> None:
        env_file = tmp_path / "custom.env"
        env_file.write_text("RECONCILE_MAX_CONCURRENCY=8\n", encoding="utf-8")

        assert load_settings(str(env_file)).reconcile_max_concurrency == 8

    @pytest.mark.parametrize(
        "name, value",
        [
            ("MEMBERSHIP_WINDOW_DAYS", "-1"),
            ("RECONCILE_INTERVAL_SECONDS", "-1"),
            ("RECONCILE_MAX_CONCURRENCY", "0"),
            ("RECONCILE_CLIENT_TIMEOUT_SECONDS", "0"),
            ("WEBHOOK_PORT", "70000"),
            ("NOTIFICATION_BACKEND", "carrier-pigeon"),
        ],
    )
    def test_invalid_values_are_rejected(
        self, monkeypatch: pytest.MonkeyPatch, name: str, value: str
    ) -> None:
        monkeypatch.setenv(name, value)

        with pytest.raises(ValidationError):
            load_settings()


class TestBuildServices:
    """Test adapter selection and end-to-end wiring."""

    @pytest.mark.asyncio
    async def test_stdout_backend_without_squarespace(self, tmp_path: Path) -> None:
        services = build_services(Settings(store_sqlite_path=str(tmp_path / "r.db")))

        try:
            assert isinstance(services.notifier, StdoutStatusChangeAdapter)
            assert services.payment_source is None
            assert services.reconciler.window_days == 30
        finally:
            await services.close()

    @pytest.mark.asyncio
    async def test_markdown_backend_with_squarespace(self, tmp_path: Path) -> None:
        services = build_services(
            Settings(
                store_sqlite_path=str(tmp_path / "r.db"),
                notification_backend="markdown",
                notification_output_dir=str(tmp_path / "audit"),
                squarespace_api_key="key",
                membership_window_days=14,
            )
        )

        try:
            assert isinstance(services.notifier, MarkdownStatusChangeAdapter)
            assert isinstance(services.payment_source, SquarespaceOrderSource)
            assert services.management.window_days == 14
        finally:
            await services.close()

    @pytest.mark.asyncio
    async def test_end_to_end_over_sqlite(self, tmp_path: Path) -> None:
        services = build_services(
            Settings(
                store_sqlite_path=str(tmp_path / "r.db"),
                notification_backend="markdown",
                notification_output_dir=str(tmp_path / "audit"),
            )
        )
        management = services.management

        try:
            await management.register_client(
                ClientIdentity("C", "a1@x.com", frozenset({"a2@x.com"}))
            )
            today = services.reconciler.clock().date().isoformat()
            first = await management.ingest_payment("A2@X.com", "8.00", today, "webhook")
            again = await management.ingest_payment("a2@x.com", "9.00", today, "manual")
            assert again.id == first.id

            summary = await services.reconciler.reconcile()
            assert summary.updated == 1

            status = await management.get_membership_status("C")
            assert status.active is True
            assert status.evidence_record_id == first.id
            assert (tmp_path / "audit" / "summary.md").exists()

            assert (await services.reconciler.reconcile()).updated == 0
        finally:
            await services.close()


def test_configure_logging_accepts_both_formats() -> None:
    configure_logging("DEBUG", "json")
    configure_logging("INFO", "text")

    # Unknown level names fall back to INFO instead of raising
    configure_logging("VERBOSE", "text")


def test_main_exits_with_error_on_bad_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MEMBERSHIP_WINDOW_DAYS", "-5")

    with pytest.raises(SystemExit) as exc_info:
        main()

    assert exc_info.value.code == 1
