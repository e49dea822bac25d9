"""Data models for the prize allocation engine."""

from dataclasses import dataclass, field
import datetime


FEMALE = 'F'
MALE = 'M'

# Competitor fields an institution prize group may group by
GROUP_BY_FIELDS = ('club', 'city', 'state', 'group_label', 'type_label')

# Competitor fields a location criterion may test
LOCATION_FIELDS = ('state', 'city', 'club', 'disability', 'group_label', 'type_label')

AGE_CUTOFF_POLICIES = ('JAN1_TOURNAMENT_YEAR', 'TOURNAMENT_START_DATE', 'CUSTOM_DATE')
AGE_BAND_POLICIES = ('non_overlapping', 'overlapping')
MULTI_PRIZE_POLICIES = ('single', 'main_plus_one_side', 'unlimited')
MAIN_VS_SIDE_MODES = ('main_first', 'place_first')
RANKING_METRICS = ('rank', 'rating', 'youngest')


@dataclass(frozen=True)
class Competitor:
    """One roster row after import normalization and gender inference."""
    id: str
    name: str
    rank: int                              # 1 = best
    rating: int | None = None
    dob: datetime.date | None = None
    gender: str | None = None              # 'F', 'M' or None (unknown)
    raw_gender: str | None = None          # value as found in the gender column
    state: str = ''
    city: str = ''
    club: str = ''
    disability: str = ''
    group_label: str = ''
    type_label: str = ''
    fide_id: str = ''
    flags: tuple = ()                      # ('rank_autofilled', 'dob_year_only', ...)

    def field_value(self, name: str) -> str:
        return getattr(self, name, '') or ''


@dataclass(frozen=True)
class RuleConfig:
    """Organizer rules; exactly one per tournament."""
    strict_age: bool = True
    allow_missing_dob_for_age: bool = False
    max_age_inclusive: bool = True
    allow_unrated_in_rating: bool = False
    age_cutoff_policy: str = 'JAN1_TOURNAMENT_YEAR'
    age_cutoff_date: datetime.date | None = None
    age_band_policy: str = 'non_overlapping'
    multi_prize_policy: str = 'single'
    main_vs_side_priority_mode: str = 'main_first'
    non_cash_priority_mode: str = 'TGM'    # permutation of T(rophy) G(ift) M(edal)


# ─── Criteria: one variant per kind ─────────────────────────────────

@dataclass(frozen=True)
class GenderCriterion:
    mode: str = 'OPEN'                     # 'F' female-only, 'M' male-or-unknown, 'OPEN'


@dataclass(frozen=True)
class AgeCriterion:
    min_age: int | None = None
    max_age: int | None = None
    max_age_inclusive: bool | None = None  # None = use RuleConfig.max_age_inclusive


@dataclass(frozen=True)
class RatingCriterion:
    min_rating: int | None = None
    max_rating: int | None = None
    include_unrated: bool | None = None    # None = use RuleConfig.allow_unrated_in_rating


@dataclass(frozen=True)
class LocationCriterion:
    field: str
    allowed: tuple = ()


@dataclass(frozen=True)
class Prize:
    id: str
    place: int
    cash_amount: float = 0
    has_trophy: bool = False
    has_medal: bool = False
    has_gift: bool = False
    is_active: bool = True


@dataclass(frozen=True)
class PrizeCategory:
    id: str
    name: str
    order_idx: int                         # priority, ascending
    is_main: bool = False
    criteria: tuple = ()                   # tuple of criterion variants
    prizes: tuple = ()                     # tuple of Prize
    ranking: str = 'rank'
    is_active: bool = True

    def criterion(self, kind: type):
        """Return the first criterion of the given variant, or None."""
        for c in self.criteria:
            if isinstance(c, kind):
                return c
        return None


@dataclass(frozen=True)
class InstitutionPrize:
    id: str
    place: int
    cash_amount: float = 0
    has_trophy: bool = False
    has_medal: bool = False
    has_gift: bool = False
    is_active: bool = True


@dataclass(frozen=True)
class InstitutionPrizeGroup:
    id: str
    name: str
    group_by: str
    team_size: int
    female_slots: int = 0
    male_slots: int = 0
    is_active: bool = True
    prizes: tuple = ()                     # tuple of InstitutionPrize


@dataclass(frozen=True)
class Tournament:
    id: str
    title: str = ''
    start_date: datetime.date | None = None


@dataclass(frozen=True)
class TournamentSnapshot:
    """Everything one allocation run reads, fetched once."""
    tournament: Tournament
    competitors: tuple
    rules: RuleConfig
    categories: tuple
    institution_groups: tuple = ()


# ─── Transient results ──────────────────────────────────────────────

@dataclass(frozen=True)
class EligibilityVerdict:
    eligible: bool
    reason_codes: tuple = ()
    pass_codes: tuple = ()
    needs_review: bool = False


@dataclass(frozen=True)
class Winner:
    competitor_id: str
    category_id: str
    prize_id: str
    place: int
    reasons: tuple = ()
    is_manual: bool = False


@dataclass(frozen=True)
class CoverageItem:
    category_id: str
    category_name: str
    prize_id: str
    place: int
    eligible_count: int
    winner_id: str | None
    reason_codes: tuple = ()


@dataclass(frozen=True)
class IndividualAllocation:
    winners: tuple
    unfilled: tuple                        # tuple of (prize_id, reason_codes)
    coverage: tuple


@dataclass(frozen=True)
class TeamMember:
    competitor_id: str
    name: str
    rank: int
    points: int
    gender: str | None


@dataclass(frozen=True)
class Team:
    institution: str
    members: tuple                         # tuple of TeamMember, in selection order
    total_points: int
    rank_sum: int
    best_individual_rank: int


@dataclass(frozen=True)
class IneligibleInstitution:
    institution: str
    reason: str                            # "needs 1 females, has 0"


@dataclass
class TeamBuildResult:
    teams_by_institution: dict = field(default_factory=dict)
    ineligible: list = field(default_factory=list)
    config_error: str | None = None


@dataclass(frozen=True)
class PrizeWithWinner:
    prize: InstitutionPrize
    team: Team | None


@dataclass(frozen=True)
class GroupResult:
    group: InstitutionPrizeGroup
    prizes: tuple                          # tuple of PrizeWithWinner
    eligible_institutions: int
    ineligible_institutions: int
    ineligible_reasons: tuple              # first 10, "<institution>: <reason>"
    max_rank: int = 0


@dataclass(frozen=True)
class AllocationResult:
    tournament_id: str
    individual: IndividualAllocation
    groups: tuple                          # tuple of GroupResult
    competitor_count: int
