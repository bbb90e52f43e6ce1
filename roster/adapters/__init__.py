"""External adapters for Roster.

This package contains all external dependencies (SQLite, Squarespace,
HTTP servers, etc.) and provides implementations of the core port interfaces.

Adapter Organization:

- store/: SQLite persistence for clients, ledger, statuses and review queue
- importer/: Payment sources for bulk import (Squarespace orders)
- notification/: Status change sinks (stdout, markdown audit trail)
- scheduler/: Adapters for driving reconciliation passes (daemon)
- cli/: Command-line interface and management commands
- webhook/: HTTP receiver for payment webhooks and review tooling
"""
