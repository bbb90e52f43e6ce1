"""Folding a duplicate client into its primary record.

Pure functions only. The management service loads the clients, shows the
operator a preview and performs the writes once the merge is confirmed.
"""

from dataclasses import replace

from .identity import normalize_email
from .models import ClientIdentity, FieldConflict

PROFILE_FIELDS = ("first_name", "last_name", "phone", "dog_name", "address")


def choose_better_value(primary_value: str, duplicate_value: str) -> str:
    """Prefer the longer (more complete) value; ties keep the primary's."""
    if len(duplicate_value.strip()) > len(primary_value.strip()):
        return duplicate_value
    return primary_value


def merge_identities(
    primary: ClientIdentity, duplicate: ClientIdentity
) -> tuple[ClientIdentity, tuple[FieldConflict, ...]]:
    """Combine two identities into one record carrying the primary's id.

    Emails:
    - the primary's primary email is kept (the duplicate's is used if the
      primary has none)
    - every other email of either client becomes an alias, so payments
      sent to any of them still resolve to the merged client

    Profile fields are filled from the duplicate where the primary is
    empty. When both are set and differ (ignoring case and surrounding
    whitespace) the longer value wins and a FieldConflict is recorded.

    Returns:
        (merged identity, conflicts)
    """
    primary_email = normalize_email(primary.primary_email)
    duplicate_email = normalize_email(duplicate.primary_email)
    kept_email = primary.primary_email if primary_email else duplicate.primary_email
    kept_normalized = primary_email or duplicate_email

    emails = {duplicate_email} if duplicate_email else set()
    for alias in primary.alias_emails | duplicate.alias_emails:
        normalized = normalize_email(alias)
        if normalized:
            emails.add(normalized)
    emails.discard(kept_normalized)

    changes: dict[str, str] = {}
    conflicts: list[FieldConflict] = []
    for name in PROFILE_FIELDS:
        mine = getattr(primary, name)
        theirs = getattr(duplicate, name)
        if not theirs or not theirs.strip():
            continue
        if not mine or not mine.strip():
            changes[name] = theirs
            continue
        if mine.strip().lower() == theirs.strip().lower():
            continue
        chosen = choose_better_value(mine, theirs)
        conflicts.append(
            FieldConflict(
                field=name,
                primary_value=mine,
                duplicate_value=theirs,
                chosen_value=chosen,
            )
        )
        if chosen is not mine:
            changes[name] = chosen

    merged = replace(
        primary,
        primary_email=kept_email,
        alias_emails=frozenset(emails),
        **changes,
    )
    return merged, tuple(conflicts)
