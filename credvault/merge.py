"""
Duplicate-aware merging of imported records into the store.

Records are matched to existing accounts by normalized email and exact
password; the TOTP secrets on both sides then decide what happens:

    existing  candidate            action
    --------  -------------------  ------------------------------------------
    present   absent               skip, the stored secret is kept
    absent    present              adopt the secret, union extras, updated
    present   present, equal       union extras, updated if changed else skip
    present   present, different   separate account, added
    absent    absent               union extras, updated if changed else skip
    no match                       new account, added
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from credvault.errors import NotFoundError, ValidationError
from credvault.store import AccountStore
from credvault.utils import has_totp, normalize_totp

logger = logging.getLogger(__name__)


@dataclass
class ImportCandidate:
    """A record waiting to be merged into the store."""
    email: str
    password: str
    totp: str = ""
    extras: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    line: Optional[int] = None  # source line, for error reports


@dataclass
class MergeStats:
    """Outcome of a merge."""
    added: int = 0
    updated: int = 0
    skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'added': self.added,
            'updated': self.updated,
            'skipped': self.skipped,
            'errors': list(self.errors),
        }


class MergeEngine:
    """Applies import candidates to an AccountStore."""

    ADDED = 'added'
    UPDATED = 'updated'
    SKIPPED = 'skipped'

    def __init__(self, store: AccountStore):
        self.store = store

    def merge(self, candidates: Iterable[ImportCandidate]) -> MergeStats:
        """
        Merge candidates in order.

        A candidate the store rejects is reported in ``errors`` with its
        source line (or 1-based position) and the remaining candidates are still merged.
        """
        stats = MergeStats()
        for position, candidate in enumerate(candidates, start=1):
            try:
                outcome = self.merge_one(candidate)
            except (ValidationError, NotFoundError) as e:
                logger.warning(f"Import record {position} rejected: {e}")
                stats.errors.append({'line': candidate.line or position, 'reason': str(e)})
                continue
            setattr(stats, outcome, getattr(stats, outcome) + 1)

        self.store.emit('accounts_imported', stats.to_dict())
        logger.info(f"Import finished: {stats.added} added, {stats.updated} updated, "
                    f"{stats.skipped} skipped, {len(stats.errors)} errors")
        return stats

    def merge_one(self, candidate: ImportCandidate) -> str:
        """
        Merge a single candidate.
        Returns:
            One of ADDED, UPDATED or SKIPPED
        """
        existing = self.store.find_by_credentials(candidate.email, candidate.password)
        if existing is None:
            self._insert(candidate)
            return self.ADDED

        existing_has_totp = has_totp(existing.totp_secret)
        candidate_has_totp = has_totp(candidate.totp)

        if existing_has_totp and not candidate_has_totp:
            return self.SKIPPED

        if not existing_has_totp and candidate_has_totp:
            self.store.set_totp(existing.id, candidate.totp)
            self.store.merge_extras(existing.id, candidate.extras)
            return self.UPDATED

        if existing_has_totp and candidate_has_totp:
            if normalize_totp(existing.totp_secret) != normalize_totp(candidate.totp):
                self._insert(candidate)
                return self.ADDED

        if self.store.merge_extras(existing.id, candidate.extras):
            return self.UPDATED
        return self.SKIPPED

    def _insert(self, candidate: ImportCandidate) -> None:
        self.store.add_account(
            email=candidate.email,
            password=candidate.password,
            totp_secret=candidate.totp,
            extras=candidate.extras,
            tags=candidate.tags,
        )
