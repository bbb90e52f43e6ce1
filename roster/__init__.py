"""Roster: identity resolution and membership reconciliation."""
