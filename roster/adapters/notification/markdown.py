"""Markdown file status change adapter.

Implements StatusChangePort by appending membership changes to markdown
audit files organized in date-based directories (YYYY-MM-DD).
Useful for keeping a persistent record of who joined and who lapsed.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from roster.core.models import ReconcileSummary, StatusChanged
from roster.core.ports import StatusChangePort

logger = logging.getLogger(__name__)


class MarkdownStatusChangeAdapter(StatusChangePort):
    """Appends status changes to markdown audit files organized by date."""

    def __init__(
        self,
        report_dir: str,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize markdown status change adapter.

        Args:
            report_dir: Base directory where date-based subdirectories will be
                created. Each day gets a changes.md file; the latest
                reconciliation summary is written to report_dir/summary.md.
            clock: Returns the current time; defaults to UTC now.

        Raises:
            ValueError: If report_dir is a filesystem root.
            OSError: If base directory cannot be created.
        """
        self.base_dir = Path(report_dir).resolve()

        if self.base_dir.parent == self.base_dir:
            raise ValueError(f"report_dir cannot be a filesystem root: {report_dir}")

        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise OSError(f"Failed to create base directory {report_dir}: {e}") from e
        self.clock = clock or (lambda: datetime.now(UTC))
        self._lock = asyncio.Lock()

    async def _ensure_date_dir(self, date_str: str) -> Path:
        """Ensure date directory exists, creating it if necessary.

        Raises:
            OSError: If directory cannot be created.
        """
        date_dir = self.base_dir / date_str
        try:
            await asyncio.to_thread(date_dir.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise OSError(f"Failed to create date directory {date_dir}: {e}") from e
        return date_dir

    def changes_file_path(self, when: datetime) -> Path:
        """Path of the audit file for the day of `when` (not yet created)."""
        return self.base_dir / when.strftime("%Y-%m-%d") / "changes.md"

    async def publish(self, event: StatusChanged) -> None:
        """Append a status change to today's audit file."""
        now = self.clock()
        entry = self._format_event(event, now)
        path = self.changes_file_path(now)

        async with self._lock:
            try:
                await self._ensure_date_dir(path.parent.name)
                await asyncio.to_thread(self._append, path, entry)
                logger.debug(
                    f"Wrote status change for {event.client_id} to {path}",
                    extra={"client_id": event.client_id},
                )
            except OSError as e:
                logger.error(
                    f"Failed to write markdown status change: {e}",
                    extra={"path": str(path)},
                    exc_info=True,
                )
                raise

    async def publish_summary(self, summary: ReconcileSummary) -> None:
        """Overwrite summary.md with the latest reconciliation summary.

        Raises:
            OSError: If the file cannot be written.
        """
        content = self._format_summary(summary, self.clock())
        summary_file = self.base_dir / "summary.md"

        async with self._lock:
            try:
                await asyncio.to_thread(summary_file.write_text, content, encoding="utf-8")
                logger.info(f"Wrote reconciliation summary to {summary_file}")
            except OSError as e:
                logger.error(
                    f"Failed to write markdown summary: {e}",
                    extra={"path": str(summary_file)},
                    exc_info=True,
                )
                raise

    @staticmethod
    def _append(path: Path, entry: str) -> None:
        with path.open("a", encoding="utf-8") as handle:
            handle.write(entry)

    @staticmethod
    def _format_event(event: StatusChanged, when: datetime) -> str:
        """Format a single status change as a markdown section."""
        transition = "Activated" if event.new_active else "Lapsed"
        lines = [
            f"## {transition}: {event.client_id} - {when.isoformat()}",
            "",
            f"- **Client ID**: {event.client_id}",
            f"- **Was Active**: {event.old_active}",
            f"- **Now Active**: {event.new_active}",
        ]

        evidence = event.evidence
        if evidence is not None:
            lines.extend(
                [
                    f"- **Evidence Record**: `{evidence.id}`",
                    f"- **Email**: {evidence.normalized_email}",
                    f"- **Amount**: {evidence.amount}",
                    f"- **Effective Date**: {evidence.effective_date.isoformat()}",
                    f"- **Source**: {evidence.source.value}",
                ]
            )

        lines.extend(["", "---", ""])
        return "\n".join(lines)

    @staticmethod
    def _format_summary(summary: ReconcileSummary, when: datetime) -> str:
        """Format a reconciliation summary as markdown."""
        lines = [
            f"## Reconciliation Summary - {when.isoformat()}",
            "",
            f"- **Clients**: {summary.total}",
            f"- **Updated**: {summary.updated}",
            f"- **Unchanged**: {summary.unchanged}",
            f"- **Failed**: {summary.failed}",
            f"- **Backfilled Records**: {summary.backfilled}",
            f"- **Duration**: {summary.duration_ms:.0f}ms",
        ]
        if summary.cancelled:
            lines.append(f"- **Cancelled**: yes ({summary.skipped} clients skipped)")
        lines.append("")

        if summary.failed_ids:
            lines.append("### Failed Clients")
            for client_id in summary.failed_ids:
                lines.append(f"- `{client_id}`")
            lines.append("")

        lines.append("---")
        return "\n".join(lines)
