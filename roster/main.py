"""Composition root for the Roster membership system.

This module is the ONLY location that imports both core domain logic
and concrete adapter implementations. All wiring of dependencies
happens here, creating a clear entry point for the application.

Module Structure:
- Configuration loading via config module
- Adapter instantiation
- Core service initialization
- Dependency injection
- Entry point selection (daemon, CLI, webhook)
"""

import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from typing import Any

from roster.adapters.cli.commands import CLICommandHandler, run_command
from roster.adapters.importer.squarespace import SquarespaceOrderSource
from roster.adapters.notification.markdown import MarkdownStatusChangeAdapter
from roster.adapters.notification.stdout import StdoutStatusChangeAdapter
from roster.adapters.scheduler.daemon import DaemonScheduler
from roster.adapters.store.sqlite import SQLiteRosterStore
from roster.adapters.webhook.http_server import WebhookHTTPServer
from roster.adapters.webhook.receiver import WebhookReceiver
from roster.config import Settings, load_settings
from roster.core.identity import IdentityResolver
from roster.core.ingestor import LedgerIngestor
from roster.core.management_service import ManagementService
from roster.core.ports import StatusChangePort
from roster.core.reconciler import StatusReconciler


@dataclass
class RosterServices:
    """Everything bootstrap() wires together, for the run modes and tests."""

    settings: Settings
    store: SQLiteRosterStore
    notifier: StatusChangePort
    resolver: IdentityResolver
    ingestor: LedgerIngestor
    reconciler: StatusReconciler
    management: ManagementService
    payment_source: SquarespaceOrderSource | None

    async def close(self) -> None:
        """Release network and database resources."""
        if self.payment_source is not None:
            await self.payment_source.close()
        await self.store.close_pool()


def build_services(settings: Settings) -> RosterServices:
    """Instantiate adapters and core services from settings.

    Raises:
        ValueError: If the configuration names an unknown backend.
    """
    logger = logging.getLogger(__name__)

    store = SQLiteRosterStore(db_path=settings.store_sqlite_path)
    logger.info(f"Roster store initialized: {settings.store_sqlite_path}")

    notifier: StatusChangePort
    if settings.notification_backend == "stdout":
        notifier = StdoutStatusChangeAdapter(verbose=settings.debug)
        logger.info("Status change adapter: Stdout")
    elif settings.notification_backend == "markdown":
        notifier = MarkdownStatusChangeAdapter(report_dir=settings.notification_output_dir)
        logger.info("Status change adapter: Markdown")
    else:
        raise ValueError(f"Unknown notification backend: {settings.notification_backend}")

    payment_source = None
    if settings.squarespace_api_key:
        payment_source = SquarespaceOrderSource(
            api_key=settings.squarespace_api_key,
            api_url=settings.squarespace_api_url,
            timeout_seconds=settings.squarespace_timeout_seconds,
        )
        logger.info("Payment source: Squarespace")

    # The one SQLite store serves every storage port
    resolver = IdentityResolver(
        directory=store,
        load_timeout_seconds=settings.directory_timeout_seconds,
    )
    ingestor = LedgerIngestor(ledger=store, resolver=resolver)
    reconciler = StatusReconciler(
        directory=store,
        ledger=store,
        status_store=store,
        resolver=resolver,
        ingestor=ingestor,
        notifier=notifier,
        window_days=settings.membership_window_days,
        max_concurrency=settings.reconcile_max_concurrency,
        client_timeout_seconds=settings.reconcile_client_timeout_seconds,
    )
    management = ManagementService(
        directory=store,
        ledger=store,
        status_store=store,
        review_store=store,
        resolver=resolver,
        ingestor=ingestor,
        reconciler=reconciler,
        window_days=settings.membership_window_days,
    )

    return RosterServices(
        settings=settings,
        store=store,
        notifier=notifier,
        resolver=resolver,
        ingestor=ingestor,
        reconciler=reconciler,
        management=management,
        payment_source=payment_source,
    )


async def _run_cli_interactive(cli_handler: CLICommandHandler) -> None:
    """Run interactive CLI loop.

    Provides a REPL-like interface for management commands.
    """
    logger = logging.getLogger(__name__)
    logger.info("Starting interactive CLI. Type 'help' for available commands or 'exit' to quit.")

    loop = asyncio.get_running_loop()

    while True:
        try:
            # Read command from stdin in a thread to avoid blocking
            command_line = await loop.run_in_executor(None, input, "roster> ")
            command_line = command_line.strip()

            if not command_line:
                continue

            if command_line.lower() == "exit":
                logger.info("Exiting CLI")
                break

            if command_line.lower() == "help":
                _print_cli_help()
                continue

            parts = command_line.split(maxsplit=1)
            command = parts[0].lower()
            args_str = parts[1] if len(parts) > 1 else ""

            try:
                args: Any = json.loads(args_str) if args_str else {}
            except json.JSONDecodeError:
                logger.error("Invalid JSON arguments. Use 'help' for command syntax.")
                continue
            if not isinstance(args, dict):
                logger.error("Arguments must be a JSON object. Use 'help' for command syntax.")
                continue

            try:
                result = await run_command(cli_handler, command, args)
                print(json.dumps(result, indent=2, default=str))
            except Exception as e:
                logger.error(f"Command execution error: {e}", exc_info=True)
                print(json.dumps({"status": "error", "message": str(e)}, indent=2))

        except EOFError:
            # Ctrl+D to exit
            logger.info("EOF received, exiting CLI")
            break
        except KeyboardInterrupt:
            logger.info("Interrupted by user")
            continue


def _print_cli_help() -> None:
    """Print CLI help message."""
    help_text = """
Available Commands (JSON format):

  ingest
    Record a payment. Idempotent per email and date.
    Required: email, amount, effective_date (YYYY-MM-DD)
    Optional: source (manual, webhook, import; default manual)

    Example: ingest {"email": "a@x.com", "amount": "8.00", "effective_date": "2026-01-21"}

  import
    Import historical payments from Squarespace.
    Optional: limit

    Example: import {"limit": 50}

  reconcile
    Re-evaluate every client's membership now.

  register
    Create or replace a client.
    Required: client_id
    Optional: email, aliases, first_name, last_name, phone, dog_name, address

    Example: register {"client_id": "c1", "email": "a@x.com", "dog_name": "Rex"}

  add-alias / remove-alias
    Required: client_id, email

    Example: add-alias {"client_id": "c1", "email": "a2@x.com"}

  delete
    Delete a client; its ledger history is kept unresolved.
    Required: client_id

  status
    Show one client's status, or list statuses.
    Optional: client_id, active (true/false), format (json, text)

  expiring
    List active memberships expiring soon.
    Optional: within_days (default 7)

  duplicates
    List the duplicate review queue.
    Optional: refresh (true re-runs detection), include_dismissed, format

  dismiss
    Remove a duplicate candidate from the queue.
    Required: candidate_id

  merge
    Preview merging a duplicate candidate; pass confirm=true to merge.
    Required: candidate_id
    Optional: confirm (true performs the merge)

  conflicts
    List emails claimed by more than one client.

  help
    Show this help message.

  exit
    Exit the CLI.

Note: All commands accept arguments as a single JSON object.
Provide the JSON after the command name on the same line.
    """
    print(help_text)


def configure_logging(log_level: str, log_format: str) -> None:
    """Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: Log format (json, text).
    """
    level = getattr(logging, log_level, logging.INFO)

    if log_format == "json":
        format_str = '{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}'
    else:
        format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[logging.StreamHandler(sys.stdout)],
    )


async def bootstrap() -> None:
    """Load configuration, wire adapters, and start the application.

    Steps:
    1. Load configuration from environment
    2. Configure logging
    3. Instantiate adapters and core services
    4. Select and start run mode

    Raises:
        SystemExit: On fatal configuration errors
        asyncio.CancelledError: On graceful shutdown signal
    """
    settings = load_settings()

    configure_logging(settings.log_level, settings.log_format)
    logger = logging.getLogger(__name__)
    logger.info("Loading Roster membership system...")

    try:
        services = build_services(settings)
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    logger.info(f"Starting in {settings.run_mode} mode...")

    try:
        if settings.run_mode == "daemon":
            scheduler = DaemonScheduler(
                reconcile_port=services.reconciler,
                interval_seconds=settings.reconcile_interval_seconds,
            )
            await scheduler.start()

        elif settings.run_mode == "cli":
            cli_handler = CLICommandHandler(
                services.management,
                services.reconciler,
                payment_source=services.payment_source,
            )
            await _run_cli_interactive(cli_handler)

        elif settings.run_mode == "webhook":
            webhook_receiver = WebhookReceiver(
                reconcile_port=services.reconciler,
                management_port=services.management,
                squarespace_secret=settings.squarespace_webhook_secret or None,
            )
            http_server = WebhookHTTPServer(
                webhook_receiver=webhook_receiver,
                host=settings.webhook_host,
                port=settings.webhook_port,
                api_key=settings.webhook_api_key or None,
                require_auth=settings.webhook_require_auth,
            )
            await http_server.start()

            # Keep the server running until cancelled
            try:
                while True:
                    await asyncio.sleep(1)
            finally:
                await http_server.stop()

        else:
            logger.error(f"Unknown run mode: {settings.run_mode}")
            sys.exit(1)

    finally:
        await services.close()


def main() -> None:
    """Application entry point.

    Exit codes:
        0: Successful shutdown
        1: Fatal bootstrap or runtime error
        130: Interrupted by user (SIGINT/KeyboardInterrupt)
    """
    logger = logging.getLogger(__name__)
    try:
        asyncio.run(bootstrap())
    except KeyboardInterrupt:
        logger.warning("Shutdown requested by user (SIGINT)")
        sys.exit(130)
    except asyncio.CancelledError:
        logger.info("Graceful shutdown completed")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
