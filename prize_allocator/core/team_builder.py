"""Institution grouping and team formation for team prizes.

Scoring uses rank points: points = max_rank + 1 - rank, so rank 1 scores
highest. Members of each institution are split into a female pool and a
not-female pool (male or unknown gender), required slots are filled from
each pool, and the rest of the team is the best of whoever is left.
"""

import logging

from .models import FEMALE, GROUP_BY_FIELDS, IneligibleInstitution, Team, TeamBuildResult, TeamMember

logger = logging.getLogger(__name__)


def rank_points(rank: int, max_rank: int) -> int:
    return max_rank + 1 - rank


def is_female(gender) -> bool:
    return (gender or '').upper() == FEMALE


def _by_score(member: TeamMember) -> tuple:
    # points DESC, rank ASC
    return (-member.points, member.rank, member.competitor_id)


def group_config_error(group) -> str | None:
    """Configuration problem that stops a whole group, or None."""
    if group.group_by not in GROUP_BY_FIELDS:
        return f"Invalid group_by value: {group.group_by}"
    if group.team_size < 1:
        return f"team_size must be at least 1, got {group.team_size}"
    if group.female_slots < 0 or group.male_slots < 0:
        return "female_slots and male_slots must not be negative"
    if group.female_slots + group.male_slots > group.team_size:
        return (f"female_slots + male_slots ({group.female_slots + group.male_slots}) "
                f"exceeds team_size ({group.team_size})")
    return None


def partition_by_institution(competitors, group_by: str) -> dict:
    """Institution name -> members. Blank institution values are dropped."""
    institutions: dict[str, list] = {}
    for c in competitors:
        key = c.field_value(group_by).strip()
        if not key:
            continue
        institutions.setdefault(key, []).append(c)
    return institutions


def build_team(members: list, team_size: int, female_slots: int, male_slots: int):
    """Pick the best team satisfying the gender minimums.

    Args:
        members: TeamMember list for one institution.

    Returns:
        (selected members, None) on success or (None, reason) when the
        institution cannot field a team.
    """
    females = sorted((m for m in members if is_female(m.gender)), key=_by_score)
    not_females = sorted((m for m in members if not is_female(m.gender)), key=_by_score)

    if len(females) < female_slots:
        return None, f"needs {female_slots} females, has {len(females)}"
    if len(not_females) < male_slots:
        return None, f"needs {male_slots} males, has {len(not_females)}"

    team = females[:female_slots] + not_females[:male_slots]
    remaining_slots = team_size - len(team)
    if remaining_slots > 0:
        rest = sorted(females[female_slots:] + not_females[male_slots:], key=_by_score)
        if len(rest) < remaining_slots:
            return None, f"needs {team_size} players, has {len(members)}"
        team += rest[:remaining_slots]

    return team, None


def build_teams(competitors, group, max_rank: int | None = None) -> TeamBuildResult:
    """Form the best feasible team for every institution of one group.

    Args:
        competitors: Sequence of Competitor.
        group: InstitutionPrizeGroup.
        max_rank: Largest tournament rank; computed from competitors if None.

    Returns:
        TeamBuildResult. A configuration problem sets config_error and
        leaves both teams and ineligible empty.
    """
    result = TeamBuildResult()
    error = group_config_error(group)
    if error:
        logger.warning("group=%r config error: %s", group.name, error)
        result.config_error = error
        return result

    competitors = list(competitors)
    if max_rank is None:
        max_rank = max((c.rank for c in competitors), default=0)

    institutions = partition_by_institution(competitors, group.group_by)
    logger.info("group=%r institutions=%d", group.name, len(institutions))

    for key in sorted(institutions):
        members = [
            TeamMember(c.id, c.name, c.rank, rank_points(c.rank, max_rank), c.gender)
            for c in institutions[key]
        ]
        team, reason = build_team(members, group.team_size, group.female_slots, group.male_slots)
        if team is None:
            result.ineligible.append(IneligibleInstitution(key, reason))
            logger.debug("group=%r institution=%r ineligible: %s", group.name, key, reason)
            continue

        result.teams_by_institution[key] = Team(
            institution=key,
            members=tuple(team),
            total_points=sum(m.points for m in team),
            rank_sum=sum(m.rank for m in team),
            best_individual_rank=min(m.rank for m in team),
        )

    return result
