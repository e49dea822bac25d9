"""Allocation run orchestration.

run_allocation() is pure: one TournamentSnapshot in, one AllocationResult
out. AllocationService adds identifier checks, the single snapshot read
and the optional result cache around it.
"""

import logging
import os

from .allocator import allocate
from .eligibility import resolve_age_cutoff
from .errors import InputError
from .institution_ranking import allocate_institution_prizes
from .models import AllocationResult

logger = logging.getLogger(__name__)


def verbose_logs_enabled() -> bool:
    return os.environ.get('ALLOC_VERBOSE_LOGS', '').strip().lower() in ('1', 'true', 'yes', 'on')


def run_allocation(snapshot, overrides=()) -> AllocationResult:
    """Allocate individual and institution prizes for one snapshot.

    Institution prizes are computed from the full roster and ignore the
    individual stacking policy, so a competitor may win both kinds.
    """
    tournament = snapshot.tournament
    cutoff = resolve_age_cutoff(snapshot.rules, tournament.start_date)
    logger.info("run tournament=%s competitors=%d categories=%d groups=%d cutoff=%s",
                tournament.id, len(snapshot.competitors), len(snapshot.categories),
                len(snapshot.institution_groups), cutoff)

    individual = allocate(snapshot.competitors, snapshot.categories, snapshot.rules,
                          tournament.start_date, overrides)
    groups = allocate_institution_prizes(snapshot.competitors, snapshot.institution_groups)

    return AllocationResult(
        tournament_id=tournament.id,
        individual=individual,
        groups=groups,
        competitor_count=len(snapshot.competitors),
    )


class AllocationService:
    """Runs allocations against a snapshot store with an optional cache."""

    def __init__(self, store, cache=None):
        self.store = store
        self.cache = cache

    def run(self, tournament_id: str, version: str | None = None) -> AllocationResult:
        """Allocate prizes for one tournament.

        Raises:
            InputError: missing or unknown tournament id.
        """
        if not tournament_id or not str(tournament_id).strip():
            raise InputError("tournament_id is required")

        key = None
        if self.cache is not None:
            key = self.cache.key(tournament_id, version)
            cached = self.cache.get(key)
            if cached is not None:
                logger.info("cache hit tournament=%s version=%s", tournament_id, version)
                return cached

        snapshot = self.store.load_snapshot(tournament_id)
        result = run_allocation(snapshot)

        if self.cache is not None:
            self.cache.set(key, result)
        return result
