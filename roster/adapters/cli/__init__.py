"""Command-line interface adapters.

Provides CLI commands for operating Roster:
- ingest / import: Record payments manually or from Squarespace
- reconcile: Run a reconciliation pass on demand
- register / add-alias / remove-alias / delete: Client identity upkeep
- status / expiring: Inspect membership status
- duplicates / dismiss / merge / conflicts: Work the review queues
"""
