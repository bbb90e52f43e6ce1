"""Roster store adapters for persistence and querying.

The SQLite backend implements every storage port (client directory,
ledger, membership status, review queue) in a single file.
"""
