"""Eligibility of one competitor for one prize category.

Every criterion on the category is checked, so a verdict lists all
failing codes and all passing codes rather than stopping at the first
failure. Codes are stable strings shared with the report and the UI:

    gender_ok  gender_open  gender_missing  gender_mismatch
    age_ok  age_above_max  age_below_min  dob_missing  dob_missing_allowed
    rating_ok  rating_below_min  rating_above_max  unrated_excluded
    rating_unrated_allowed
    <field>_ok  <field>_excluded       (state, city, club, disability, ...)
"""

from dataclasses import dataclass
import datetime
import logging

from .errors import InputError
from .models import (
    FEMALE, MALE,
    AgeCriterion, EligibilityVerdict, GenderCriterion, LocationCriterion,
    RatingCriterion,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgeBand:
    category_id: str
    min_age: int
    max_age: int


def resolve_age_cutoff(rules, tournament_start: datetime.date | None) -> datetime.date:
    """Date on which competitor ages are measured.

    Raises:
        InputError: the cutoff depends on a start date the tournament lacks.
    """
    policy = rules.age_cutoff_policy
    if policy == 'CUSTOM_DATE' and rules.age_cutoff_date is not None:
        return rules.age_cutoff_date
    if tournament_start is None:
        raise InputError("Tournament start_date is required to resolve the age cutoff")
    start = tournament_start
    if policy == 'TOURNAMENT_START_DATE':
        return start
    if policy == 'CUSTOM_DATE':
        logger.warning("age_cutoff_policy=CUSTOM_DATE without age_cutoff_date, using start date %s", start)
        return start
    return datetime.date(start.year, 1, 1)


def age_on(dob: datetime.date, on: datetime.date) -> int:
    """Whole years completed on the given date."""
    years = on.year - dob.year
    if (on.month, on.day) < (dob.month, dob.day):
        years -= 1
    return years


def compute_age_bands(categories, max_age_inclusive: bool = True) -> dict:
    """Derive non-overlapping age bands from the categories' maximum ages.

    Categories are grouped by max_age so a boy/girl pair with the same
    maximum shares one band. Each band starts just above the previous
    band's maximum, or at a higher explicit min_age, and never starts
    above its own maximum.
    """
    groups: dict[int, list] = {}
    for cat in categories:
        crit = cat.criterion(AgeCriterion)
        if crit is None or crit.max_age is None:
            continue
        groups.setdefault(crit.max_age, []).append((cat, crit))

    bands = {}
    prev_max = None
    for max_age in sorted(groups):
        if prev_max is None:
            derived_min = 0
        else:
            derived_min = prev_max + 1 if max_age_inclusive else prev_max

        explicit_mins = [crit.min_age for _, crit in groups[max_age] if crit.min_age is not None]
        candidate = max(derived_min, min(explicit_mins)) if explicit_mins else derived_min
        effective_min = min(candidate, max_age)

        for cat, _ in groups[max_age]:
            bands[cat.id] = AgeBand(cat.id, effective_min, max_age)
        prev_max = max_age

    return bands


class _Checks:
    """Ordered, de-duplicated accumulation of pass and fail codes."""

    def __init__(self):
        self.fails = []
        self.passes = []
        self.needs_review = False

    def fail(self, code):
        if code not in self.fails:
            self.fails.append(code)

    def ok(self, code):
        if code not in self.passes:
            self.passes.append(code)


def _check_gender(checks, competitor, crit):
    mode = (crit.mode if crit else 'OPEN') or 'OPEN'
    gender = competitor.gender
    if mode == FEMALE:
        if gender is None:
            checks.fail('gender_missing')
        elif gender != FEMALE:
            checks.fail('gender_mismatch')
        else:
            checks.ok('gender_ok')
    elif mode == MALE:
        # Male-or-unknown: anyone not explicitly female
        if gender == FEMALE:
            checks.fail('gender_mismatch')
        else:
            checks.ok('gender_ok')
    else:
        checks.ok('gender_open')


def _check_age(checks, competitor, crit, rules, cutoff, band):
    if not rules.strict_age:
        return
    min_age, max_age = crit.min_age, crit.max_age
    if band is not None:
        min_age, max_age = band.min_age, band.max_age
    if min_age is None and max_age is None:
        return

    if competitor.dob is None:
        if rules.allow_missing_dob_for_age:
            checks.ok('dob_missing_allowed')
            checks.needs_review = True
        else:
            checks.fail('dob_missing')
        return

    age = age_on(competitor.dob, cutoff)
    inclusive = rules.max_age_inclusive if crit.max_age_inclusive is None else crit.max_age_inclusive
    age_ok = True
    if max_age is not None and (age > max_age if inclusive else age >= max_age):
        checks.fail('age_above_max')
        age_ok = False
    if min_age is not None and age < min_age:
        checks.fail('age_below_min')
        age_ok = False
    if age_ok:
        checks.ok('age_ok')


def _check_rating(checks, competitor, crit, rules):
    include_unrated = rules.allow_unrated_in_rating if crit.include_unrated is None else crit.include_unrated
    rating = competitor.rating
    if not rating:
        if include_unrated:
            checks.ok('rating_unrated_allowed')
        else:
            checks.fail('unrated_excluded')
        return

    rating_ok = True
    if crit.min_rating is not None and rating < crit.min_rating:
        checks.fail('rating_below_min')
        rating_ok = False
    if crit.max_rating is not None and rating > crit.max_rating:
        checks.fail('rating_above_max')
        rating_ok = False
    if rating_ok:
        checks.ok('rating_ok')


def _check_location(checks, competitor, crit):
    if not crit.allowed:
        return
    allowed = {str(v).strip().lower() for v in crit.allowed}
    value = competitor.field_value(crit.field).strip().lower()
    if value in allowed:
        checks.ok(f'{crit.field}_ok')
    else:
        checks.fail(f'{crit.field}_excluded')


def evaluate(competitor, category, rules, as_of: datetime.date | None,
             age_bands: dict | None = None,
             cutoff: datetime.date | None = None) -> EligibilityVerdict:
    """Evaluate every criterion of a category for one competitor.

    Args:
        competitor: Competitor to check.
        category: PrizeCategory with its criteria variants.
        rules: Active RuleConfig.
        as_of: Tournament start date; the age cutoff is derived from it.
        age_bands: Output of compute_age_bands() when the band policy is
            non_overlapping, else None.
        cutoff: Pre-resolved age cutoff date; resolved from as_of if None.
    """
    checks = _Checks()
    if cutoff is None:
        cutoff = resolve_age_cutoff(rules, as_of)
    band = (age_bands or {}).get(category.id)

    _check_gender(checks, competitor, category.criterion(GenderCriterion))

    for crit in category.criteria:
        if isinstance(crit, GenderCriterion):
            continue
        elif isinstance(crit, AgeCriterion):
            _check_age(checks, competitor, crit, rules, cutoff, band)
        elif isinstance(crit, RatingCriterion):
            _check_rating(checks, competitor, crit, rules)
        elif isinstance(crit, LocationCriterion):
            _check_location(checks, competitor, crit)
        else:
            raise TypeError(f"Unknown criterion kind: {type(crit).__name__}")

    return EligibilityVerdict(
        eligible=not checks.fails,
        reason_codes=tuple(checks.fails),
        pass_codes=tuple(checks.passes),
        needs_review=checks.needs_review,
    )
