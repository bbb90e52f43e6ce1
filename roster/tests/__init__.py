"""Test suite for Roster.

Organized into three categories:

1. core/: Unit tests for core domain logic
   - Minimal dependencies, fast execution
   - Uses in-memory fakes for ports

2. adapters/: Integration tests for adapter implementations
   - SQLite against a temporary file, Squarespace against httpx.MockTransport
   - Validates adapter behavior and error handling

3. fakes/: Port implementations for testing
   - In-memory implementations of ClientDirectoryPort, LedgerStorePort, etc.
   - Used by core unit tests
"""
