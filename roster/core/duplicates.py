"""Duplicate client detection.

This module compares client identities pairwise and produces review
candidates for clients that likely represent the same person. It never
merges anything; candidates feed an operator review queue, so the output
must be stable across runs on identical input.
"""

import hashlib
import re
from collections.abc import Sequence

from .identity import normalize_email
from .models import ClientIdentity, Confidence, DuplicateCandidate

COMPLETENESS_WEIGHTS = {
    "first_name": 1,
    "last_name": 1,
    "dog_name": 2,
    "primary_email": 2,
    "phone": 2,
    "address": 1,
}


class DuplicateDetector:
    """Flags likely-duplicate client pairs.

    No external dependencies; a pure function over domain objects.
    All methods are static as the class carries no state.
    """

    @staticmethod
    def detect(clients: Sequence[ClientIdentity]) -> list[DuplicateCandidate]:
        """Compare every pair of clients and return candidates sorted by id.

        A pair is flagged when at least one strong signal matches. Email
        or phone equality gives "high" confidence; a shared last name or
        dog name alone gives "medium". Weak signals never combine into a
        higher tier.
        """
        candidates: dict[str, DuplicateCandidate] = {}

        for i, client_a in enumerate(clients):
            for client_b in clients[i + 1 :]:
                if client_a.id == client_b.id:
                    continue
                reasons, confidence = DuplicateDetector.match_reasons(client_a, client_b)
                if confidence is None:
                    continue

                primary, duplicate = DuplicateDetector.choose_primary(client_a, client_b)
                candidate_id = DuplicateDetector.candidate_id(client_a.id, client_b.id)
                candidates[candidate_id] = DuplicateCandidate(
                    id=candidate_id,
                    primary_client_id=primary.id,
                    duplicate_client_id=duplicate.id,
                    reasons=tuple(reasons),
                    confidence=confidence,
                )

        return [candidates[key] for key in sorted(candidates)]

    @staticmethod
    def match_reasons(
        client_a: ClientIdentity, client_b: ClientIdentity
    ) -> tuple[list[str], Confidence | None]:
        """List the signals two clients share and the resulting confidence.

        Returns:
            (reasons, confidence), where confidence is None if nothing matched.
        """
        reasons: list[str] = []
        strong = False

        email_a = normalize_email(client_a.primary_email)
        if email_a and email_a == normalize_email(client_b.primary_email):
            reasons.append("Same email")
            strong = True

        phone_a = DuplicateDetector.normalize_phone(client_a.phone)
        if phone_a and phone_a == DuplicateDetector.normalize_phone(client_b.phone):
            reasons.append("Same phone number")
            strong = True

        last_name = _same_text(client_a.last_name, client_b.last_name)
        if last_name:
            reasons.append(f"Same last name: {last_name}")

        dog_name = _same_text(client_a.dog_name, client_b.dog_name)
        if dog_name:
            reasons.append(f"Same dog name: {dog_name}")

        if not reasons:
            return [], None
        return reasons, "high" if strong else "medium"

    @staticmethod
    def normalize_phone(phone: str | None) -> str | None:
        """Reduce a phone number to its national digits.

        Examples:
        '+44 7000 000000' → '7000000000'
        '07000 000000'    → '7000000000'
        """
        if not phone:
            return None
        digits = re.sub(r"\D", "", phone)
        # UK numbers appear with either the country code or the trunk prefix
        if digits.startswith("44"):
            digits = digits[2:]
        elif digits.startswith("0"):
            digits = digits[1:]
        return digits or None

    @staticmethod
    def completeness_score(client: ClientIdentity) -> int:
        """Weighted count of populated profile fields."""
        score = 0
        for field_name, weight in COMPLETENESS_WEIGHTS.items():
            value = getattr(client, field_name)
            if value and str(value).strip():
                score += weight
        return score

    @staticmethod
    def choose_primary(
        client_a: ClientIdentity, client_b: ClientIdentity
    ) -> tuple[ClientIdentity, ClientIdentity]:
        """Return (primary, duplicate) for a flagged pair.

        The more complete record wins; on a tie the smaller id wins.
        """
        score_a = DuplicateDetector.completeness_score(client_a)
        score_b = DuplicateDetector.completeness_score(client_b)
        if score_a != score_b:
            return (client_a, client_b) if score_a > score_b else (client_b, client_a)
        return (client_a, client_b) if client_a.id < client_b.id else (client_b, client_a)

    @staticmethod
    def candidate_id(client_id_a: str, client_id_b: str) -> str:
        """Deterministic id for an unordered pair of clients."""
        pair = "|".join(sorted((client_id_a, client_id_b)))
        return hashlib.sha256(pair.encode()).hexdigest()[:16]


def _same_text(a: str | None, b: str | None) -> str | None:
    """Return the trimmed value of a if a and b match case-insensitively."""
    if not a or not b:
        return None
    clean_a = a.strip()
    if clean_a and clean_a.lower() == b.strip().lower():
        return clean_a
    return None
