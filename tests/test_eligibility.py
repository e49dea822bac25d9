"""Tests for category eligibility, age cutoffs and age bands."""

import datetime
import os
import sys

import pytest

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from prize_allocator.core.eligibility import (
    AgeBand, age_on, compute_age_bands, evaluate, resolve_age_cutoff,
)
from prize_allocator.core.errors import InputError
from prize_allocator.core.models import (
    AgeCriterion, Competitor, GenderCriterion, LocationCriterion, PrizeCategory,
    RatingCriterion, RuleConfig,
)

START = datetime.date(2025, 5, 10)
RULES = RuleConfig()


def player(gender=None, dob=None, rating=None, **kw):
    return Competitor(id=kw.pop('id', '1'), name=kw.pop('name', 'Test Player'), rank=1,
                      gender=gender, dob=dob, rating=rating, **kw)


def category(*criteria, cid='c1'):
    return PrizeCategory(id=cid, name=cid, order_idx=0, criteria=tuple(criteria))


class TestGender:
    def test_female_only(self):
        cat = category(GenderCriterion('F'))
        assert evaluate(player('F'), cat, RULES, START).pass_codes == ('gender_ok',)
        assert evaluate(player(None), cat, RULES, START).reason_codes == ('gender_missing',)
        assert evaluate(player('M'), cat, RULES, START).reason_codes == ('gender_mismatch',)

    def test_male_or_unknown(self):
        cat = category(GenderCriterion('M'))
        assert evaluate(player('M'), cat, RULES, START).eligible
        assert evaluate(player(None), cat, RULES, START).eligible
        assert evaluate(player('F'), cat, RULES, START).reason_codes == ('gender_mismatch',)

    def test_open(self):
        verdict = evaluate(player('F'), category(), RULES, START)
        assert verdict.eligible
        assert verdict.pass_codes == ('gender_open',)


class TestAge:
    def test_jan1_cutoff(self):
        # 14 on 1 Jan 2025, 15 by the start date
        p = player(dob=datetime.date(2010, 6, 15))
        assert evaluate(p, category(AgeCriterion(max_age=14)), RULES, START).eligible

        rules = RuleConfig(age_cutoff_policy='TOURNAMENT_START_DATE')
        p = player(dob=datetime.date(2010, 3, 1))
        verdict = evaluate(p, category(AgeCriterion(max_age=14)), rules, START)
        assert verdict.reason_codes == ('age_above_max',)

    def test_exclusive_max(self):
        p = player(dob=datetime.date(2010, 6, 15))  # 14 on the cutoff
        rules = RuleConfig(max_age_inclusive=False)
        verdict = evaluate(p, category(AgeCriterion(max_age=14)), rules, START)
        assert verdict.reason_codes == ('age_above_max',)

    def test_criterion_overrides_inclusive_rule(self):
        p = player(dob=datetime.date(2010, 6, 15))
        cat = category(AgeCriterion(max_age=14, max_age_inclusive=True))
        assert evaluate(p, cat, RuleConfig(max_age_inclusive=False), START).eligible

    def test_below_min(self):
        p = player(dob=datetime.date(2018, 1, 1))
        verdict = evaluate(p, category(AgeCriterion(min_age=10)), RULES, START)
        assert verdict.reason_codes == ('age_below_min',)

    def test_missing_dob(self):
        cat = category(AgeCriterion(max_age=12))
        verdict = evaluate(player(), cat, RULES, START)
        assert not verdict.eligible
        assert verdict.reason_codes == ('dob_missing',)

        verdict = evaluate(player(), cat, RuleConfig(allow_missing_dob_for_age=True), START)
        assert verdict.eligible
        assert verdict.needs_review
        assert 'dob_missing_allowed' in verdict.pass_codes

    def test_strict_age_off(self):
        verdict = evaluate(player(), category(AgeCriterion(max_age=12)),
                           RuleConfig(strict_age=False), START)
        assert verdict.eligible
        assert verdict.reason_codes == ()

    def test_age_band_replaces_bounds(self):
        u9 = category(AgeCriterion(max_age=9), cid='u9')
        u11 = category(AgeCriterion(max_age=11), cid='u11')
        bands = compute_age_bands([u9, u11])
        p = player(dob=datetime.date(2016, 6, 1))  # 8 on 1 Jan 2025
        assert evaluate(p, u9, RULES, START, bands).eligible
        verdict = evaluate(p, u11, RULES, START, bands)
        assert verdict.reason_codes == ('age_below_min',)


class TestRatingAndLocation:
    def test_rating_range(self):
        cat = category(RatingCriterion(min_rating=1200, max_rating=1600))
        assert evaluate(player(rating=1400), cat, RULES, START).eligible
        assert evaluate(player(rating=1100), cat, RULES, START).reason_codes == ('rating_below_min',)
        assert evaluate(player(rating=1700), cat, RULES, START).reason_codes == ('rating_above_max',)

    def test_unrated(self):
        cat = category(RatingCriterion(max_rating=1600))
        assert evaluate(player(), cat, RULES, START).reason_codes == ('unrated_excluded',)
        verdict = evaluate(player(), cat, RuleConfig(allow_unrated_in_rating=True), START)
        assert verdict.eligible
        assert 'rating_unrated_allowed' in verdict.pass_codes

        cat = category(RatingCriterion(max_rating=1600, include_unrated=True))
        assert evaluate(player(), cat, RULES, START).eligible

    def test_location_sets(self):
        cat = category(LocationCriterion('state', ('MH', 'GA')))
        assert evaluate(player(state='mh'), cat, RULES, START).pass_codes == ('gender_open', 'state_ok')
        assert evaluate(player(state='KA'), cat, RULES, START).reason_codes == ('state_excluded',)
        assert evaluate(player(), cat, RULES, START).reason_codes == ('state_excluded',)

    def test_all_failures_reported(self):
        cat = category(GenderCriterion('F'), AgeCriterion(max_age=10),
                       LocationCriterion('club', ('Rooks',)))
        p = player('M', dob=datetime.date(2000, 1, 1), club='Knights')
        verdict = evaluate(p, cat, RULES, START)
        assert verdict.reason_codes == ('gender_mismatch', 'age_above_max', 'club_excluded')

    def test_unknown_criterion_kind(self):
        with pytest.raises(TypeError):
            evaluate(player(), category(object()), RULES, START)


class TestCutoff:
    def test_policies(self):
        assert resolve_age_cutoff(RULES, START) == datetime.date(2025, 1, 1)
        assert resolve_age_cutoff(RuleConfig(age_cutoff_policy='TOURNAMENT_START_DATE'),
                                  START) == START
        custom = RuleConfig(age_cutoff_policy='CUSTOM_DATE',
                            age_cutoff_date=datetime.date(2024, 9, 1))
        assert resolve_age_cutoff(custom, START) == datetime.date(2024, 9, 1)

    def test_custom_without_date_uses_start(self):
        assert resolve_age_cutoff(RuleConfig(age_cutoff_policy='CUSTOM_DATE'), START) == START

    def test_missing_start_date_is_an_error(self):
        with pytest.raises(InputError):
            resolve_age_cutoff(RULES, None)
        with pytest.raises(InputError):
            resolve_age_cutoff(RuleConfig(age_cutoff_policy='CUSTOM_DATE'), None)
        custom = RuleConfig(age_cutoff_policy='CUSTOM_DATE',
                            age_cutoff_date=datetime.date(2024, 9, 1))
        assert resolve_age_cutoff(custom, None) == datetime.date(2024, 9, 1)

    def test_age_on(self):
        assert age_on(datetime.date(2010, 1, 1), datetime.date(2025, 1, 1)) == 15
        assert age_on(datetime.date(2010, 1, 2), datetime.date(2025, 1, 1)) == 14


class TestAgeBands:
    def test_non_overlapping_inclusive(self):
        cats = [
            category(AgeCriterion(max_age=13), cid='u13'),
            category(AgeCriterion(max_age=9), cid='u9'),
            category(GenderCriterion('M'), AgeCriterion(max_age=11), cid='u11b'),
            category(GenderCriterion('F'), AgeCriterion(max_age=11), cid='u11g'),
            category(RatingCriterion(max_rating=1600), cid='below1600'),
        ]
        bands = compute_age_bands(cats)
        assert (bands['u9'].min_age, bands['u9'].max_age) == (0, 9)
        assert (bands['u11b'].min_age, bands['u11b'].max_age) == (10, 11)
        assert bands['u11g'] == AgeBand('u11g', 10, 11)
        assert (bands['u13'].min_age, bands['u13'].max_age) == (12, 13)
        assert 'below1600' not in bands

    def test_exclusive_max(self):
        cats = [category(AgeCriterion(max_age=9), cid='u9'),
                category(AgeCriterion(max_age=11), cid='u11')]
        bands = compute_age_bands(cats, max_age_inclusive=False)
        assert bands['u11'].min_age == 9

    def test_explicit_min_raises_and_clamps(self):
        cats = [category(AgeCriterion(max_age=9), cid='u9'),
                category(AgeCriterion(min_age=11, max_age=13), cid='u13'),
                category(AgeCriterion(min_age=20, max_age=15), cid='odd')]
        bands = compute_age_bands(cats)
        assert bands['u13'].min_age == 11
        assert bands['odd'].min_age == 15
