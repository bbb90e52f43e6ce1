"""Stdout status change adapter.

Implements StatusChangePort by printing membership changes and
reconciliation summaries to the terminal.
"""

import asyncio
import logging

from roster.core.models import ReconcileSummary, StatusChanged
from roster.core.ports import StatusChangePort

logger = logging.getLogger(__name__)


class StdoutStatusChangeAdapter(StatusChangePort):
    """Prints status changes to stdout with human-readable formatting."""

    def __init__(self, verbose: bool = False):
        """Initialize stdout status change adapter.

        Args:
            verbose: If True, include evidence details in output.
        """
        self.verbose = verbose

    async def publish(self, event: StatusChanged) -> None:
        """Print a single membership change."""
        await asyncio.to_thread(print, self._format_event(event, self.verbose))

    async def publish_summary(self, summary: ReconcileSummary) -> None:
        """Print the summary of a reconciliation pass."""
        await asyncio.to_thread(print, self._format_summary(summary))

    @staticmethod
    def _format_event(event: StatusChanged, verbose: bool = False) -> str:
        """Format a status change line, with optional evidence."""
        transition = "ACTIVATED" if event.new_active else "LAPSED"
        lines = [f"[{transition}] client {event.client_id}"]

        if verbose and event.evidence is not None:
            evidence = event.evidence
            lines.extend(
                [
                    f"  Evidence: {evidence.id}",
                    f"  Email: {evidence.normalized_email}",
                    f"  Amount: {evidence.amount}",
                    f"  Effective Date: {evidence.effective_date.isoformat()}",
                    f"  Source: {evidence.source.value}",
                ]
            )

        return "\n".join(lines)

    @staticmethod
    def _format_summary(summary: ReconcileSummary) -> str:
        """Format a reconciliation summary report."""
        lines = [
            "=" * 80,
            "RECONCILIATION SUMMARY" + (" (CANCELLED)" if summary.cancelled else ""),
            "=" * 80,
            f"Clients: {summary.total}",
            f"Updated: {summary.updated}",
            f"Unchanged: {summary.unchanged}",
            f"Failed: {summary.failed}",
            f"Backfilled Records: {summary.backfilled}",
        ]

        if summary.skipped:
            lines.append(f"Skipped: {summary.skipped}")

        if summary.failed_ids:
            lines.append("")
            lines.append("Failed Clients:")
            for client_id in summary.failed_ids:
                lines.append(f"  {client_id}")

        lines.append(f"Duration: {summary.duration_ms:.0f}ms")
        lines.append("=" * 80)

        return "\n".join(lines)
