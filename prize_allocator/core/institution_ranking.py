"""Institution ranking and team prize assignment."""

import logging

from .models import GroupResult, PrizeWithWinner
from .team_builder import build_teams

logger = logging.getLogger(__name__)

MAX_REASONS = 10


def team_sort_key(team) -> tuple:
    """Strict total order: points DESC, rank_sum ASC, best rank ASC, name ASC."""
    return (-team.total_points, team.rank_sum, team.best_individual_rank, team.institution)


def rank_teams(teams) -> list:
    return sorted(teams, key=team_sort_key)


def rank_and_assign(teams, prizes) -> list:
    """Bind prizes, by place, to teams in ranking order.

    Prizes beyond the number of teams get a None team (unfilled).
    """
    ordered = rank_teams(teams)
    assigned = []
    for i, prize in enumerate(sorted(prizes, key=lambda p: (p.place, p.id))):
        team = ordered[i] if i < len(ordered) else None
        assigned.append(PrizeWithWinner(prize, team))
    return assigned


def allocate_group(competitors, group, max_rank: int | None = None) -> GroupResult:
    """Build, rank and award one institution prize group."""
    prizes = [p for p in group.prizes if p.is_active]
    competitors = list(competitors)
    if max_rank is None:
        max_rank = max((c.rank for c in competitors), default=0)

    built = build_teams(competitors, group, max_rank)
    if built.config_error:
        return GroupResult(
            group=group,
            prizes=tuple(rank_and_assign([], prizes)),
            eligible_institutions=0,
            ineligible_institutions=0,
            ineligible_reasons=(built.config_error,),
            max_rank=max_rank,
        )

    assigned = rank_and_assign(built.teams_by_institution.values(), prizes)
    reasons = tuple(f"{i.institution}: {i.reason}" for i in built.ineligible[:MAX_REASONS])
    logger.info("group=%r eligible=%d ineligible=%d", group.name,
                len(built.teams_by_institution), len(built.ineligible))

    return GroupResult(
        group=group,
        prizes=tuple(assigned),
        eligible_institutions=len(built.teams_by_institution),
        ineligible_institutions=len(built.ineligible),
        ineligible_reasons=reasons,
        max_rank=max_rank,
    )


def allocate_institution_prizes(competitors, groups) -> tuple:
    """Run every active group. One group's failure never blocks another."""
    competitors = list(competitors)
    max_rank = max((c.rank for c in competitors), default=0)
    active = sorted((g for g in groups if g.is_active), key=lambda g: (g.name, g.id))
    return tuple(allocate_group(competitors, g, max_rank) for g in active)
