"""Identity resolution: mapping raw emails to canonical clients.

The index is an explicit, injectable object rather than module state.
It is rebuilt wholesale whenever it is invalidated; it is never patched
incrementally.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from .models import ClientIdentity, ResolutionConflict
from .ports import ClientDirectoryPort

logger = logging.getLogger(__name__)


def normalize_email(raw_email: object) -> str | None:
    """Trim and lower-case an email.

    Returns None for anything that cannot be an address: non-strings,
    empty strings, and strings without an "@".
    """
    if not isinstance(raw_email, str):
        return None
    email = raw_email.strip().lower()
    if not email or "@" not in email:
        return None
    return email


@dataclass(frozen=True)
class IdentityIndex:
    """Immutable lookup table from normalized email to client id."""

    owners: Mapping[str, str]
    conflicts: tuple[ResolutionConflict, ...]
    client_count: int

    def lookup(self, normalized_email: str) -> str | None:
        return self.owners.get(normalized_email)


def build_index(clients: Iterable[ClientIdentity]) -> IdentityIndex:
    """Build an identity index from client identities.

    Precedence for an email claimed more than once:
    - a primary email always beats an alias
    - among several primaries, or several aliases, the smallest id wins
    Every multi-claim is recorded as a ResolutionConflict.
    """
    primary_claims: dict[str, set[str]] = defaultdict(set)
    alias_claims: dict[str, set[str]] = defaultdict(set)
    count = 0

    for client in clients:
        count += 1
        primary = normalize_email(client.primary_email)
        if primary:
            primary_claims[primary].add(client.id)
        for alias in client.alias_emails:
            normalized = normalize_email(alias)
            # An alias equal to the client's own primary adds nothing
            if normalized and normalized != primary:
                alias_claims[normalized].add(client.id)

    owners: dict[str, str] = {}
    conflicts: list[ResolutionConflict] = []

    for email in sorted(set(primary_claims) | set(alias_claims)):
        primaries = primary_claims.get(email, set())
        aliases = alias_claims.get(email, set()) - primaries

        if primaries:
            owner = min(primaries)
            if len(primaries) > 1:
                kind = "primary_primary"
            elif aliases:
                kind = "primary_alias"
            else:
                kind = None
        else:
            owner = min(aliases)
            kind = "alias_alias" if len(aliases) > 1 else None

        owners[email] = owner
        if kind is not None:
            conflicts.append(
                ResolutionConflict(
                    email=email,
                    resolved_client_id=owner,
                    claimant_ids=tuple(sorted(primaries | aliases)),
                    kind=kind,
                )
            )

    return IdentityIndex(
        owners=MappingProxyType(owners),
        conflicts=tuple(conflicts),
        client_count=count,
    )


class IdentityResolver:
    """Resolves raw emails to client ids through a rebuildable index.

    Callers that create or update clients or aliases must call
    invalidate(); the next resolve() rebuilds from the directory.
    """

    def __init__(
        self,
        directory: ClientDirectoryPort,
        load_timeout_seconds: float = 10.0,
    ):
        self.directory = directory
        self.load_timeout_seconds = load_timeout_seconds
        self._index: IdentityIndex | None = None
        self._lock = asyncio.Lock()
        self.rebuild_count = 0

    @property
    def is_stale(self) -> bool:
        return self._index is None

    @property
    def conflicts(self) -> tuple[ResolutionConflict, ...]:
        """Conflicts found by the most recent rebuild (empty if never built)."""
        if self._index is None:
            return ()
        return self._index.conflicts

    def invalidate(self) -> None:
        """Mark the index stale so the next lookup rebuilds it."""
        self._index = None

    async def rebuild(self) -> IdentityIndex:
        """Force a rebuild from the client directory.

        Raises:
            TimeoutError: If the directory does not answer in time.
            Exception: If the directory is unavailable.
        """
        async with self._lock:
            return await self._rebuild_locked()

    async def _rebuild_locked(self) -> IdentityIndex:
        clients = await asyncio.wait_for(
            self.directory.list_clients(), timeout=self.load_timeout_seconds
        )
        index = build_index(clients)
        self._index = index
        self.rebuild_count += 1

        for conflict in index.conflicts:
            logger.warning(
                f"Email {conflict.email} claimed by {len(conflict.claimant_ids)} "
                f"clients ({conflict.kind}); resolving to {conflict.resolved_client_id}",
                extra={
                    "email": conflict.email,
                    "claimant_ids": conflict.claimant_ids,
                    "resolved_client_id": conflict.resolved_client_id,
                },
            )
        logger.debug(
            f"Identity index rebuilt: {len(index.owners)} emails, "
            f"{index.client_count} clients"
        )
        return index

    async def index(self) -> IdentityIndex:
        """Return the current index, rebuilding it if stale."""
        index = self._index
        if index is not None:
            return index
        async with self._lock:
            # Check again after acquiring lock to prevent a double rebuild
            if self._index is not None:
                return self._index
            return await self._rebuild_locked()

    async def resolve(self, raw_email: object) -> str | None:
        """Return the client id owning an email, or None.

        Malformed or empty input resolves to None and never raises.
        """
        email = normalize_email(raw_email)
        if email is None:
            return None
        index = await self.index()
        return index.lookup(email)
