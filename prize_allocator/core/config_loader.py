"""Tournament configuration file loading.

A configuration file is JSON:

    {
      "tournament": {"id": "t1", "title": "...", "start_date": "2025-05-01"},
      "rules": {"multi_prize_policy": "single", ...},
      "categories": [
        {"id": "main", "name": "Open", "is_main": true, "order_idx": 0,
         "criteria": {"gender": "F", "max_age": 14, "allowed_states": ["MH"]},
         "prizes": [{"id": "m1", "place": 1, "cash_amount": 5000, "has_trophy": true}]}
      ],
      "institution_groups": [
        {"id": "g1", "name": "Best School", "group_by": "club", "team_size": 4,
         "female_slots": 1, "male_slots": 0, "prizes": [{"id": "ip1", "place": 1}]}
      ]
    }

Criteria documents become closed criterion variants here so the
evaluator never probes free-form keys.
"""

from dataclasses import dataclass, fields
import datetime
import itertools
import json

from .errors import ConfigError, InputError
from .models import (
    AGE_BAND_POLICIES, AGE_CUTOFF_POLICIES, MAIN_VS_SIDE_MODES, MULTI_PRIZE_POLICIES,
    RANKING_METRICS,
    AgeCriterion, GenderCriterion, InstitutionPrize, InstitutionPrizeGroup,
    LocationCriterion, Prize, PrizeCategory, RatingCriterion, RuleConfig, Tournament,
)

NON_CASH_MODES = tuple(''.join(p) for p in itertools.permutations('TGM'))

# criteria document key -> competitor field
ALLOWED_LIST_KEYS = {
    'allowed_states': 'state',
    'allowed_cities': 'city',
    'allowed_clubs': 'club',
    'allowed_disabilities': 'disability',
    'allowed_groups': 'group_label',
    'allowed_types': 'type_label',
}
_FIELD_TO_LIST_KEY = {v: k for k, v in ALLOWED_LIST_KEYS.items()}

_GENDER_ALIASES = {
    'F': 'F', 'FEMALE': 'F', 'GIRL': 'F', 'GIRLS': 'F',
    'M': 'M', 'MALE': 'M', 'BOY': 'M', 'BOYS': 'M',
    '': 'OPEN', 'OPEN': 'OPEN', 'ANY': 'OPEN', 'ALL': 'OPEN',
}


@dataclass(frozen=True)
class TournamentConfig:
    tournament: Tournament
    rules: RuleConfig
    categories: tuple
    institution_groups: tuple


def parse_date(value, field_name: str = 'date') -> datetime.date | None:
    if value is None or value == '':
        return None
    if isinstance(value, datetime.date):
        return value
    try:
        return datetime.date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise ConfigError(f"Invalid {field_name}: {value!r} (expected YYYY-MM-DD)")


def _as_bool(value, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'y', 'on')
    return bool(value)


def _as_int(value, field_name: str) -> int | None:
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid {field_name}: {value!r} (expected an integer)")


def _as_float(value, field_name: str) -> float:
    if value is None or value == '':
        return 0.0
    if isinstance(value, bool):
        raise ConfigError(f"Invalid {field_name}: {value!r} (expected a number)")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid {field_name}: {value!r} (expected a number)")


def _choice(doc: dict, key: str, choices: tuple, default: str) -> str:
    value = doc.get(key)
    if value is None or value == '':
        return default
    if value not in choices:
        raise ConfigError(f"Invalid {key}: {value!r} (expected one of {', '.join(choices)})")
    return value


def parse_rules(doc: dict | None) -> RuleConfig:
    doc = doc or {}
    defaults = RuleConfig()
    known = {f.name for f in fields(RuleConfig)}
    unknown = sorted(set(doc) - known)
    if unknown:
        raise ConfigError(f"Unknown rule fields: {', '.join(unknown)}")

    return RuleConfig(
        strict_age=_as_bool(doc.get('strict_age'), defaults.strict_age),
        allow_missing_dob_for_age=_as_bool(doc.get('allow_missing_dob_for_age'),
                                           defaults.allow_missing_dob_for_age),
        max_age_inclusive=_as_bool(doc.get('max_age_inclusive'), defaults.max_age_inclusive),
        allow_unrated_in_rating=_as_bool(doc.get('allow_unrated_in_rating'),
                                         defaults.allow_unrated_in_rating),
        age_cutoff_policy=_choice(doc, 'age_cutoff_policy', AGE_CUTOFF_POLICIES,
                                  defaults.age_cutoff_policy),
        age_cutoff_date=parse_date(doc.get('age_cutoff_date'), 'age_cutoff_date'),
        age_band_policy=_choice(doc, 'age_band_policy', AGE_BAND_POLICIES, defaults.age_band_policy),
        multi_prize_policy=_choice(doc, 'multi_prize_policy', MULTI_PRIZE_POLICIES,
                                   defaults.multi_prize_policy),
        main_vs_side_priority_mode=_choice(doc, 'main_vs_side_priority_mode', MAIN_VS_SIDE_MODES,
                                           defaults.main_vs_side_priority_mode),
        non_cash_priority_mode=_choice(doc, 'non_cash_priority_mode', NON_CASH_MODES,
                                       defaults.non_cash_priority_mode),
    )


def dump_rules(rules: RuleConfig) -> dict:
    doc = {f.name: getattr(rules, f.name) for f in fields(RuleConfig)}
    if rules.age_cutoff_date is not None:
        doc['age_cutoff_date'] = rules.age_cutoff_date.isoformat()
    return doc


def parse_criteria(doc: dict | None) -> tuple:
    """Criteria document -> tuple of criterion variants."""
    doc = doc or {}
    criteria = []

    raw_gender = str(doc.get('gender') or '').strip().upper()
    if raw_gender not in _GENDER_ALIASES:
        raise ConfigError(f"Invalid gender criterion: {doc.get('gender')!r}")
    if _GENDER_ALIASES[raw_gender] != 'OPEN':
        criteria.append(GenderCriterion(_GENDER_ALIASES[raw_gender]))

    min_age = _as_int(doc.get('min_age'), 'min_age')
    max_age = _as_int(doc.get('max_age'), 'max_age')
    if min_age is not None or max_age is not None:
        inclusive = doc.get('max_age_inclusive')
        criteria.append(AgeCriterion(min_age, max_age,
                                     None if inclusive is None else _as_bool(inclusive, True)))

    min_rating = _as_int(doc.get('min_rating'), 'min_rating')
    max_rating = _as_int(doc.get('max_rating'), 'max_rating')
    if min_rating is not None or max_rating is not None:
        include = doc.get('include_unrated')
        criteria.append(RatingCriterion(min_rating, max_rating,
                                        None if include is None else _as_bool(include, False)))

    for key, field_name in ALLOWED_LIST_KEYS.items():
        values = doc.get(key)
        if not values:
            continue
        if isinstance(values, str):
            values = [values]
        allowed = tuple(str(v).strip() for v in values if str(v).strip())
        if allowed:
            criteria.append(LocationCriterion(field_name, allowed))

    return tuple(criteria)


def dump_criteria(criteria) -> dict:
    """Tuple of criterion variants -> criteria document."""
    doc = {}
    for crit in criteria:
        if isinstance(crit, GenderCriterion):
            doc['gender'] = crit.mode
        elif isinstance(crit, AgeCriterion):
            doc.update({k: v for k, v in (('min_age', crit.min_age), ('max_age', crit.max_age),
                                          ('max_age_inclusive', crit.max_age_inclusive))
                        if v is not None})
        elif isinstance(crit, RatingCriterion):
            doc.update({k: v for k, v in (('min_rating', crit.min_rating),
                                          ('max_rating', crit.max_rating),
                                          ('include_unrated', crit.include_unrated))
                        if v is not None})
        elif isinstance(crit, LocationCriterion):
            doc[_FIELD_TO_LIST_KEY[crit.field]] = list(crit.allowed)
        else:
            raise TypeError(f"Unknown criterion kind: {type(crit).__name__}")
    return doc


def _prize_kwargs(doc: dict, where: str) -> dict:
    if 'id' not in doc or 'place' not in doc:
        raise ConfigError(f"{where}: every prize needs an id and a place")
    place = _as_int(doc['place'], f'{where} place')
    if place < 1:
        raise ConfigError(f"{where}: place must be 1 or more, got {place}")
    return dict(
        id=str(doc['id']),
        place=place,
        cash_amount=_as_float(doc.get('cash_amount'), f'{where} cash_amount'),
        has_trophy=_as_bool(doc.get('has_trophy'), False),
        has_medal=_as_bool(doc.get('has_medal'), False),
        has_gift=_as_bool(doc.get('has_gift'), False),
        is_active=_as_bool(doc.get('is_active'), True),
    )


def parse_category(doc: dict) -> PrizeCategory:
    if 'id' not in doc:
        raise ConfigError("Every category needs an id")
    cid = str(doc['id'])
    ranking = _choice(doc, 'ranking', RANKING_METRICS, 'rank')
    return PrizeCategory(
        id=cid,
        name=str(doc.get('name') or cid),
        order_idx=_as_int(doc.get('order_idx'), 'order_idx') or 0,
        is_main=_as_bool(doc.get('is_main'), False),
        criteria=parse_criteria(doc.get('criteria') or doc.get('criteria_json')),
        prizes=tuple(Prize(**_prize_kwargs(p, f"category {cid}")) for p in doc.get('prizes') or []),
        ranking=ranking,
        is_active=_as_bool(doc.get('is_active'), True),
    )


def parse_group(doc: dict) -> InstitutionPrizeGroup:
    if 'id' not in doc:
        raise ConfigError("Every institution group needs an id")
    gid = str(doc['id'])
    return InstitutionPrizeGroup(
        id=gid,
        name=str(doc.get('name') or gid),
        group_by=str(doc.get('group_by') or ''),
        team_size=_as_int(doc.get('team_size'), 'team_size') or 0,
        female_slots=_as_int(doc.get('female_slots'), 'female_slots') or 0,
        male_slots=_as_int(doc.get('male_slots'), 'male_slots') or 0,
        is_active=_as_bool(doc.get('is_active'), True),
        prizes=tuple(InstitutionPrize(**_prize_kwargs(p, f"group {gid}"))
                     for p in doc.get('prizes') or []),
    )


def _duplicates(ids) -> list:
    seen = set()
    dupes = []
    for i in ids:
        if i in seen and i not in dupes:
            dupes.append(i)
        seen.add(i)
    return dupes


def validate_categories(categories) -> None:
    """Edit-time checks: unique category and prize ids, at most one main category."""
    dupes = _duplicates(c.id for c in categories)
    if dupes:
        raise ConfigError(f"Category ids must be unique, repeated: {', '.join(dupes)}")
    dupes = _duplicates(p.id for c in categories for p in c.prizes)
    if dupes:
        raise ConfigError(f"Prize ids must be unique across categories, repeated: {', '.join(dupes)}")
    mains = [c.name for c in categories if c.is_main]
    if len(mains) > 1:
        raise ConfigError(f"Only one main category is allowed, found: {', '.join(mains)}")


def validate_groups(groups) -> None:
    """Edit-time checks: unique group and institution prize ids, valid slots."""
    dupes = _duplicates(g.id for g in groups)
    if dupes:
        raise ConfigError(f"Institution group ids must be unique, repeated: {', '.join(dupes)}")
    dupes = _duplicates(p.id for g in groups for p in g.prizes)
    if dupes:
        raise ConfigError(f"Institution prize ids must be unique, repeated: {', '.join(dupes)}")
    for g in groups:
        validate_group(g)


def validate_group(group) -> None:
    """Edit-time check of gender slots against team size."""
    if group.team_size < 1:
        raise ConfigError(f"Group {group.name}: team_size must be at least 1")
    if group.female_slots + group.male_slots > group.team_size:
        raise ConfigError(f"Group {group.name}: female_slots + male_slots "
                          f"({group.female_slots + group.male_slots}) exceeds "
                          f"team_size ({group.team_size})")


def parse_config(data: dict) -> TournamentConfig:
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a JSON object")
    t = data.get('tournament') or {}
    if not t.get('id'):
        raise InputError("Configuration is missing tournament.id")
    start_date = parse_date(t.get('start_date'), 'start_date')
    if start_date is None:
        raise ConfigError("Configuration is missing tournament.start_date")

    categories = tuple(parse_category(c) for c in data.get('categories') or [])
    validate_categories(categories)
    groups = tuple(parse_group(g) for g in data.get('institution_groups') or [])
    validate_groups(groups)

    return TournamentConfig(
        tournament=Tournament(str(t['id']), str(t.get('title') or ''), start_date),
        rules=parse_rules(data.get('rules')),
        categories=categories,
        institution_groups=groups,
    )


def load_tournament_config(path: str) -> TournamentConfig:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError:
        raise InputError(f"Configuration file not found: {path}")
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in configuration file {path}: {e}")
    return parse_config(data)
