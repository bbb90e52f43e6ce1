"""Daemon scheduler adapter.

Implements a long-running asyncio loop that triggers reconciliation
passes at configurable intervals.
"""

import asyncio
import logging
import signal
from typing import cast

from roster.core.ports import ReconcilePort

logger = logging.getLogger(__name__)


class DaemonScheduler:
    """Asyncio-based daemon scheduler for periodic reconciliation passes."""

    def __init__(
        self,
        reconcile_port: ReconcilePort | None = None,
        interval_seconds: float = 3600,
        failure_alert_threshold: int = 5,
    ):
        """Initialize daemon scheduler.

        Args:
            reconcile_port: ReconcilePort implementation to drive (can be set later).
            interval_seconds: Interval between reconciliation passes in seconds.
            failure_alert_threshold: Consecutive failed passes before a
                critical log is emitted.
        """
        self.reconcile_port = reconcile_port
        self.interval_seconds = interval_seconds
        self.failure_alert_threshold = failure_alert_threshold
        self.running = False
        self.cycles_completed = 0
        self._stop_event = asyncio.Event()
        self._failure_count = 0  # Track consecutive failed passes

    async def start(self) -> None:
        """Start the daemon scheduler loop.

        Raises:
            ValueError: If reconcile_port is not set.
        """
        if self.reconcile_port is None:
            raise ValueError("reconcile_port must be set before starting the scheduler")

        if self.running:
            logger.warning("Daemon scheduler already running")
            return

        self.running = True
        self._stop_event.clear()
        logger.info(f"Starting daemon scheduler with {self.interval_seconds}s interval")

        # Set up signal handlers for graceful shutdown
        self._setup_signal_handlers()

        try:
            await self._run_loop()
        except asyncio.CancelledError:
            logger.info("Daemon scheduler cancelled")
        except Exception as e:
            logger.error(f"Daemon scheduler error: {e}", exc_info=True)
        finally:
            self.running = False
            logger.info("Daemon scheduler stopped")

    async def stop(self) -> None:
        """Stop the loop, cancelling an in-flight pass at its next client."""
        if not self.running:
            return

        logger.info("Stopping daemon scheduler...")
        self.running = False
        self._stop_event.set()
        if self.reconcile_port is not None:
            self.reconcile_port.cancel()

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        try:
            loop = asyncio.get_running_loop()

            def _handle_signal(sig: int) -> None:
                logger.info(f"Received signal {sig}, initiating graceful shutdown...")
                asyncio.create_task(self.stop())

            loop.add_signal_handler(signal.SIGTERM, _handle_signal, signal.SIGTERM)
            loop.add_signal_handler(signal.SIGINT, _handle_signal, signal.SIGINT)
        except NotImplementedError:
            # Signal handlers not available on Windows
            logger.debug("Signal handlers not available on this platform")
        except Exception as e:
            logger.warning(f"Failed to set up signal handlers: {e}")

    async def _run_loop(self) -> None:
        """Main daemon loop."""
        # Type guard: reconcile_port is guaranteed to be non-None (checked in start())
        reconcile_port = cast(ReconcilePort, self.reconcile_port)

        cycle_number = 0
        while self.running:
            cycle_number += 1

            try:
                logger.debug(f"Starting reconciliation pass #{cycle_number}")
                summary = await reconcile_port.reconcile()
                self.cycles_completed += 1
                self._failure_count = 0
                logger.info(
                    f"Reconciliation pass #{cycle_number}: "
                    f"{summary.updated} updated, {summary.failed} failed "
                    f"(out of {summary.total})"
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._failure_count += 1
                logger.error(
                    f"Error in reconciliation pass #{cycle_number}: {e} "
                    f"(consecutive failures: {self._failure_count})",
                    exc_info=True,
                )
                if self._failure_count >= self.failure_alert_threshold:
                    logger.critical(
                        f"Reconciliation has failed {self._failure_count} consecutive "
                        f"times. Manual intervention may be required."
                    )

            # Wait before next pass, waking early on stop()
            if self.running:
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(), timeout=self.interval_seconds
                    )
                except TimeoutError:
                    pass


class DaemonFactory:
    """Factory for creating and running daemon instances."""

    @staticmethod
    def create(
        reconcile_port: ReconcilePort, interval_seconds: float = 3600
    ) -> DaemonScheduler:
        return DaemonScheduler(
            reconcile_port=reconcile_port, interval_seconds=interval_seconds
        )

    @staticmethod
    async def run_single_pass(reconcile_port: ReconcilePort) -> None:
        """Run a single reconciliation pass (non-daemon mode)."""
        try:
            logger.info("Running single reconciliation pass")
            summary = await reconcile_port.reconcile()
            logger.info(
                f"Reconciliation completed: {summary.updated} updated, "
                f"{summary.failed} failed"
            )
        except Exception as e:
            logger.error(f"Error in reconciliation pass: {e}", exc_info=True)
            raise
