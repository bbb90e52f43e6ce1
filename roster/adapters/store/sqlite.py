"""SQLite roster store adapter.

Implements the client directory, ledger, membership status and review
queue ports using SQLite with aiosqlite for async access. Ledger
idempotence is a UNIQUE constraint on (normalized_email, effective_date),
so concurrent duplicate ingests cannot double-insert.
"""

import asyncio
import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import aiosqlite

from roster.core.errors import ConstraintViolation
from roster.core.models import (
    ClientIdentity,
    DuplicateCandidate,
    IngestSource,
    LedgerRecord,
    MembershipStatus,
)
from roster.core.ports import (
    ClientDirectoryPort,
    LedgerStorePort,
    MembershipStatusStorePort,
    ReviewQueueStorePort,
)

logger = logging.getLogger(__name__)

_LEDGER_COLUMNS = (
    "id, normalized_email, resolved_client_id, amount, effective_date, source, created_at"
)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS clients (
        id TEXT PRIMARY KEY,
        primary_email TEXT,
        first_name TEXT,
        last_name TEXT,
        phone TEXT,
        dog_name TEXT,
        address TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS client_aliases (
        client_id TEXT NOT NULL REFERENCES clients(id) ON DELETE CASCADE,
        email TEXT NOT NULL,
        PRIMARY KEY (client_id, email)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ledger_records (
        id TEXT PRIMARY KEY,
        normalized_email TEXT NOT NULL,
        resolved_client_id TEXT,
        amount TEXT NOT NULL,
        effective_date TEXT NOT NULL,
        source TEXT NOT NULL,
        created_at TIMESTAMP NOT NULL,
        UNIQUE (normalized_email, effective_date)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS membership_status (
        client_id TEXT PRIMARY KEY,
        active INTEGER NOT NULL,
        last_evaluated TIMESTAMP NOT NULL,
        evidence_record_id TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS duplicate_candidates (
        id TEXT PRIMARY KEY,
        primary_client_id TEXT NOT NULL,
        duplicate_client_id TEXT NOT NULL,
        reasons TEXT NOT NULL DEFAULT '[]',
        confidence TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS dismissed_duplicates (
        candidate_id TEXT PRIMARY KEY,
        dismissed_at TIMESTAMP NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_ledger_client ON ledger_records(resolved_client_id)",
    "CREATE INDEX IF NOT EXISTS idx_status_active ON membership_status(active)",
)


class SQLiteRosterStore(
    ClientDirectoryPort,
    LedgerStorePort,
    MembershipStatusStorePort,
    ReviewQueueStorePort,
):
    """SQLite-backed roster store with connection pooling and async access."""

    def __init__(self, db_path: str, pool_size: int = 5):
        """Initialize SQLite store with connection pooling.

        Args:
            db_path: Path to SQLite database file.
            pool_size: Number of connections to maintain in the pool.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._pool: list[aiosqlite.Connection] = []
        self._pool_lock = asyncio.Lock()
        self._schema_lock = asyncio.Lock()
        self._pool_size = pool_size
        self._schema_initialized = False

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get a connection from the pool or create a new one."""
        async with self._pool_lock:
            if self._pool:
                conn = self._pool.pop()
            else:
                conn = await aiosqlite.connect(str(self.db_path))
                # Enable foreign keys
                await conn.execute("PRAGMA foreign_keys = ON")
        return conn

    async def _return_connection(self, conn: aiosqlite.Connection) -> None:
        """Return a connection to the pool."""
        async with self._pool_lock:
            if len(self._pool) < self._pool_size:
                self._pool.append(conn)
            else:
                await conn.close()

    async def close_pool(self) -> None:
        """Close all pooled connections."""
        async with self._pool_lock:
            for conn in self._pool:
                await conn.close()
            self._pool.clear()

    async def _init_schema(self) -> None:
        """Initialize database schema on first use.

        Only runs once per instance. Subsequent calls are no-ops.
        """
        if self._schema_initialized:
            return
        async with self._schema_lock:
            # Check again after acquiring lock to prevent race
            if self._schema_initialized:
                return

            conn = await self._get_connection()
            try:
                for statement in _SCHEMA:
                    await conn.execute(statement)
                await conn.commit()
                self._schema_initialized = True
            finally:
                await self._return_connection(conn)

    # ------------------------------------------------------------------
    # ClientDirectoryPort
    # ------------------------------------------------------------------

    async def list_clients(self) -> list[ClientIdentity]:
        """Return every client identity, ordered by id."""
        await self._init_schema()

        conn = await self._get_connection()
        try:
            cursor = await conn.execute("SELECT client_id, email FROM client_aliases")
            aliases: dict[str, set[str]] = {}
            for client_id, email in await cursor.fetchall():
                aliases.setdefault(client_id, set()).add(email)

            cursor = await conn.execute(
                """
                SELECT id, primary_email, first_name, last_name, phone, dog_name, address
                FROM clients ORDER BY id
                """
            )
            rows = await cursor.fetchall()
            return [self._row_to_client(row, aliases.get(row[0], set())) for row in rows]
        finally:
            await self._return_connection(conn)

    async def get_client(self, client_id: str) -> ClientIdentity | None:
        """Look up a client by its ID."""
        await self._init_schema()

        conn = await self._get_connection()
        try:
            cursor = await conn.execute(
                """
                SELECT id, primary_email, first_name, last_name, phone, dog_name, address
                FROM clients WHERE id = ?
                """,
                (client_id,),
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            cursor = await conn.execute(
                "SELECT email FROM client_aliases WHERE client_id = ?", (client_id,)
            )
            aliases = {r[0] for r in await cursor.fetchall()}
            return self._row_to_client(row, aliases)
        finally:
            await self._return_connection(conn)

    async def save_client(self, client: ClientIdentity) -> None:
        """Create or replace a client identity and its aliases."""
        await self._init_schema()

        conn = await self._get_connection()
        try:
            await conn.execute(
                """
                INSERT INTO clients
                (id, primary_email, first_name, last_name, phone, dog_name, address)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    primary_email = excluded.primary_email,
                    first_name = excluded.first_name,
                    last_name = excluded.last_name,
                    phone = excluded.phone,
                    dog_name = excluded.dog_name,
                    address = excluded.address
                """,
                (
                    client.id,
                    client.primary_email,
                    client.first_name,
                    client.last_name,
                    client.phone,
                    client.dog_name,
                    client.address,
                ),
            )
            await conn.execute(
                "DELETE FROM client_aliases WHERE client_id = ?", (client.id,)
            )
            await conn.executemany(
                "INSERT INTO client_aliases (client_id, email) VALUES (?, ?)",
                [(client.id, email) for email in sorted(client.alias_emails)],
            )
            await conn.commit()
        except Exception:
            await conn.rollback()
            raise
        finally:
            await self._return_connection(conn)

    async def delete_client(self, client_id: str) -> None:
        """Delete a client and its aliases.

        Raises:
            ValueError: If the client doesn't exist.
        """
        await self._init_schema()

        conn = await self._get_connection()
        try:
            await conn.execute(
                "DELETE FROM client_aliases WHERE client_id = ?", (client_id,)
            )
            cursor = await conn.execute("DELETE FROM clients WHERE id = ?", (client_id,))
            if cursor.rowcount == 0:
                await conn.rollback()
                raise ValueError(f"Client {client_id} not found")
            await conn.commit()
        finally:
            await self._return_connection(conn)

    # ------------------------------------------------------------------
    # LedgerStorePort
    # ------------------------------------------------------------------

    async def insert_record(self, record: LedgerRecord) -> None:
        """Insert a ledger record.

        Raises:
            ConstraintViolation: If (normalized_email, effective_date) exists.
        """
        await self._init_schema()

        conn = await self._get_connection()
        try:
            try:
                await conn.execute(
                    f"INSERT INTO ledger_records ({_LEDGER_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        record.id,
                        record.normalized_email,
                        record.resolved_client_id,
                        str(record.amount),
                        record.effective_date.isoformat(),
                        record.source.value,
                        record.created_at.isoformat(),
                    ),
                )
            except aiosqlite.IntegrityError as e:
                await conn.rollback()
                raise ConstraintViolation(
                    record.normalized_email, record.effective_date
                ) from e
            await conn.commit()
        finally:
            await self._return_connection(conn)

    async def get_by_key(
        self, normalized_email: str, effective_date: date
    ) -> LedgerRecord | None:
        """Look up a record by its idempotence key."""
        return await self._fetch_one_record(
            "WHERE normalized_email = ? AND effective_date = ?",
            (normalized_email, effective_date.isoformat()),
        )

    async def get_by_id(self, record_id: str) -> LedgerRecord | None:
        """Look up a record by its ID."""
        return await self._fetch_one_record("WHERE id = ?", (record_id,))

    async def list_for_client(self, client_id: str) -> list[LedgerRecord]:
        """Return a client's records, most recent first."""
        return await self._fetch_records(
            "WHERE resolved_client_id = ? ORDER BY effective_date DESC, created_at DESC",
            (client_id,),
        )

    async def list_unresolved(self) -> list[LedgerRecord]:
        """Return records with no resolved client, oldest first."""
        return await self._fetch_records(
            "WHERE resolved_client_id IS NULL ORDER BY effective_date, created_at", ()
        )

    async def assign_client(self, record_id: str, client_id: str) -> bool:
        """Backfill the client of a record that is still unresolved."""
        await self._init_schema()

        conn = await self._get_connection()
        try:
            cursor = await conn.execute(
                """
                UPDATE ledger_records SET resolved_client_id = ?
                WHERE id = ? AND resolved_client_id IS NULL
                """,
                (client_id, record_id),
            )
            await conn.commit()
            return cursor.rowcount > 0
        finally:
            await self._return_connection(conn)

    async def detach_client(self, client_id: str) -> int:
        """Null out the client of every record resolved to client_id."""
        await self._init_schema()

        conn = await self._get_connection()
        try:
            cursor = await conn.execute(
                "UPDATE ledger_records SET resolved_client_id = NULL "
                "WHERE resolved_client_id = ?",
                (client_id,),
            )
            await conn.commit()
            return cursor.rowcount
        finally:
            await self._return_connection(conn)

    async def reassign_client(self, from_client_id: str, to_client_id: str) -> int:
        """Point every record of from_client_id at to_client_id."""
        await self._init_schema()

        conn = await self._get_connection()
        try:
            cursor = await conn.execute(
                "UPDATE ledger_records SET resolved_client_id = ? "
                "WHERE resolved_client_id = ?",
                (to_client_id, from_client_id),
            )
            await conn.commit()
            return cursor.rowcount
        finally:
            await self._return_connection(conn)

    async def _fetch_one_record(
        self, where: str, params: tuple[Any, ...]
    ) -> LedgerRecord | None:
        records = await self._fetch_records(where, params)
        return records[0] if records else None

    async def _fetch_records(
        self, where: str, params: tuple[Any, ...]
    ) -> list[LedgerRecord]:
        await self._init_schema()

        conn = await self._get_connection()
        try:
            cursor = await conn.execute(
                f"SELECT {_LEDGER_COLUMNS} FROM ledger_records {where}", params
            )
            rows = await cursor.fetchall()
            return [self._row_to_record(row) for row in rows]
        finally:
            await self._return_connection(conn)

    # ------------------------------------------------------------------
    # MembershipStatusStorePort
    # ------------------------------------------------------------------

    async def get_status(self, client_id: str) -> MembershipStatus | None:
        await self._init_schema()

        conn = await self._get_connection()
        try:
            cursor = await conn.execute(
                """
                SELECT client_id, active, last_evaluated, evidence_record_id
                FROM membership_status WHERE client_id = ?
                """,
                (client_id,),
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return self._row_to_status(row)
        finally:
            await self._return_connection(conn)

    async def save_status(self, status: MembershipStatus) -> None:
        await self._init_schema()

        conn = await self._get_connection()
        try:
            await conn.execute(
                """
                INSERT OR REPLACE INTO membership_status
                (client_id, active, last_evaluated, evidence_record_id)
                VALUES (?, ?, ?, ?)
                """,
                (
                    status.client_id,
                    1 if status.active else 0,
                    status.last_evaluated.isoformat(),
                    status.evidence_record_id,
                ),
            )
            await conn.commit()
        finally:
            await self._return_connection(conn)

    async def delete_status(self, client_id: str) -> None:
        await self._init_schema()

        conn = await self._get_connection()
        try:
            await conn.execute(
                "DELETE FROM membership_status WHERE client_id = ?", (client_id,)
            )
            await conn.commit()
        finally:
            await self._return_connection(conn)

    async def list_statuses(self, active: bool | None = None) -> list[MembershipStatus]:
        await self._init_schema()

        conn = await self._get_connection()
        try:
            query = (
                "SELECT client_id, active, last_evaluated, evidence_record_id "
                "FROM membership_status"
            )
            params: tuple[Any, ...] = ()
            if active is not None:
                query += " WHERE active = ?"
                params = (1 if active else 0,)
            cursor = await conn.execute(query + " ORDER BY client_id", params)
            rows = await cursor.fetchall()
            return [self._row_to_status(row) for row in rows]
        finally:
            await self._return_connection(conn)

    # ------------------------------------------------------------------
    # ReviewQueueStorePort
    # ------------------------------------------------------------------

    async def replace_duplicate_candidates(
        self, candidates: list[DuplicateCandidate]
    ) -> None:
        """Replace the stored candidates in a single transaction."""
        await self._init_schema()

        conn = await self._get_connection()
        try:
            await conn.execute("DELETE FROM duplicate_candidates")
            await conn.executemany(
                """
                INSERT INTO duplicate_candidates
                (id, primary_client_id, duplicate_client_id, reasons, confidence)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (
                        c.id,
                        c.primary_client_id,
                        c.duplicate_client_id,
                        json.dumps(list(c.reasons)),
                        c.confidence,
                    )
                    for c in candidates
                ],
            )
            await conn.commit()
        except Exception:
            await conn.rollback()
            raise
        finally:
            await self._return_connection(conn)

    async def list_duplicate_candidates(self) -> list[DuplicateCandidate]:
        await self._init_schema()

        conn = await self._get_connection()
        try:
            cursor = await conn.execute(
                """
                SELECT id, primary_client_id, duplicate_client_id, reasons, confidence
                FROM duplicate_candidates ORDER BY id
                """
            )
            rows = await cursor.fetchall()
            return [self._row_to_candidate(row) for row in rows]
        finally:
            await self._return_connection(conn)

    async def dismiss_duplicate(self, candidate_id: str) -> None:
        await self._init_schema()

        conn = await self._get_connection()
        try:
            await conn.execute(
                """
                INSERT OR IGNORE INTO dismissed_duplicates (candidate_id, dismissed_at)
                VALUES (?, ?)
                """,
                (candidate_id, datetime.now(timezone.utc).isoformat()),
            )
            await conn.commit()
        finally:
            await self._return_connection(conn)

    async def list_dismissed_ids(self) -> set[str]:
        await self._init_schema()

        conn = await self._get_connection()
        try:
            cursor = await conn.execute("SELECT candidate_id FROM dismissed_duplicates")
            return {row[0] for row in await cursor.fetchall()}
        finally:
            await self._return_connection(conn)

    # ------------------------------------------------------------------
    # Row parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_client(row: tuple[Any, ...], aliases: set[str]) -> ClientIdentity:
        client_id, primary_email, first_name, last_name, phone, dog_name, address = row
        return ClientIdentity(
            id=client_id,
            primary_email=primary_email,
            alias_emails=frozenset(aliases),
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            dog_name=dog_name,
            address=address,
        )

    def _row_to_record(self, row: tuple[Any, ...]) -> LedgerRecord:
        """Convert a database row to a LedgerRecord.

        Raises:
            ValueError: If row is malformed or contains invalid data.
        """
        try:
            if not row or len(row) != 7:
                raise ValueError(f"Invalid row length: expected 7, got {len(row) if row else 0}")

            (
                record_id,
                normalized_email,
                resolved_client_id,
                amount,
                effective_date,
                source,
                created_at,
            ) = row

            if not record_id or not normalized_email:
                raise ValueError("Missing required fields: id or normalized_email")

            try:
                effective = date.fromisoformat(effective_date)
                created = datetime.fromisoformat(created_at)
            except (ValueError, TypeError) as e:
                raise ValueError(f"Invalid date format: {e}") from e

            try:
                value = Decimal(amount)
            except (InvalidOperation, TypeError) as e:
                raise ValueError(f"Invalid amount: {amount!r}") from e

            return LedgerRecord(
                id=record_id,
                normalized_email=normalized_email,
                resolved_client_id=resolved_client_id,
                amount=value,
                effective_date=effective,
                source=IngestSource(source),
                created_at=created,
            )

        except ValueError as e:
            logger.error(f"Failed to parse ledger row: {e}")
            raise
        except Exception as e:
            logger.error(f"Unexpected error parsing ledger row: {e}")
            raise ValueError(f"Row parsing failed: {e}") from e

    @staticmethod
    def _row_to_status(row: tuple[Any, ...]) -> MembershipStatus:
        client_id, active, last_evaluated, evidence_record_id = row
        try:
            evaluated = datetime.fromisoformat(last_evaluated)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid last_evaluated for {client_id}: {e}") from e
        return MembershipStatus(
            client_id=client_id,
            active=bool(active),
            last_evaluated=evaluated,
            evidence_record_id=evidence_record_id,
        )

    @staticmethod
    def _row_to_candidate(row: tuple[Any, ...]) -> DuplicateCandidate:
        candidate_id, primary_id, duplicate_id, reasons_json, confidence = row
        try:
            reasons = tuple(json.loads(reasons_json))
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(
                f"Failed to parse reasons for candidate {candidate_id}: {e}. "
                f"Using empty reasons."
            )
            reasons = ()
        return DuplicateCandidate(
            id=candidate_id,
            primary_client_id=primary_id,
            duplicate_client_id=duplicate_id,
            reasons=reasons,
            confidence=confidence,
        )
