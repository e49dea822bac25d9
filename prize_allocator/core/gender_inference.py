"""Gender inference for imported roster rows.

Rosters come from spreadsheet exports that encode gender in several
inconsistent places. Each place is read as an independent signal:

  1. gender_column          explicit F/FEMALE/GIRL(S) or M/MALE/BOY(S)
  2. fs_column              Swiss-Manager style FS column, female-only
     headerless_after_name  unlabeled column between Name and Rating, female-only
  3. type_label             free-text type, e.g. "FMG", "F13", "Girls"
  4. group_label            free-text group, same token rules as type

Any female signal wins, including over an explicit male value (recorded as
a warning). With no female signal the explicit column value is used. With
no signal at all gender stays None; it is never defaulted to male.
"""

from dataclasses import dataclass, field
import logging
import re

from .models import FEMALE, MALE

logger = logging.getLogger(__name__)

OVERRIDE_WARNING = 'female signal overrides explicit male gender'

HEADERLESS_PREFIX = '__empty'
HEADERLESS_SAMPLE_LIMIT = 500

GENDER_HEADERS = {'gender', 'sex', 'g', 'mf', 'boygirl', 'bg'}
FS_HEADER = 'fs'
NAME_HEADERS = {
    'name', 'player_name', 'full_name', 'fullname', 'name1', 'name_1',
    'player', 'playername', 'participant',
}
RATING_HEADERS = {'rtg', 'irtg', 'nrtg', 'rating', 'elo', 'std', 'fide_rating'}

EXPLICIT_FEMALE = {'F', 'FEMALE', 'GIRL', 'GIRLS'}
EXPLICIT_MALE = {'M', 'MALE', 'BOY', 'BOYS'}

FS_FEMALE_EXACT = {'F', 'G', 'W', 'GIRL', 'GIRLS'}
# Chess titles that look like gender codes but carry no gender
NON_GENDER_TITLES = {'FM', 'IM', 'GM', 'CM', 'AGM', 'AFM', 'NM', 'AM'}
_W_TITLE = re.compile(r'^W[A-Z]+$')

_F_PREFIX = re.compile(r'^F\d+$')
_LABEL_SPLIT = re.compile(r'[\s,;|/]+')
FEMALE_LABEL_TOKENS = {'GIRL', 'GIRLS'}
FEMALE_MARKER = 'FMG'

# Values a headerless gender column holds; longer tokens are names or titles
HEADERLESS_MARKERS = {'F', 'M', 'B', 'G', 'W', 'GIRL', 'GIRLS', 'BOY', 'BOYS'}


@dataclass(frozen=True)
class GenderColumnConfig:
    """Which columns of a file carry gender signals."""
    gender_column: str | None = None
    fs_column: str | None = None
    headerless_column: str | None = None


@dataclass
class GenderInference:
    gender: str | None = None
    sources: list = field(default_factory=list)
    female_signal_source: str | None = None   # FS_SIGNAL, TITLE, FMG, F_PREFIX, GIRL_TOKEN
    warnings: list = field(default_factory=list)


def normalize_header(header) -> str:
    """Lowercase, drop punctuation, join words with underscores."""
    text = str(header if header is not None else '').strip().lower()
    text = re.sub(r'[^\w\s]', '', text)
    return re.sub(r'\s+', '_', text)


def is_headerless_key(key) -> bool:
    if key is None:
        return False
    key = str(key)
    return not key.strip() or key.lower().startswith(HEADERLESS_PREFIX)


def _clean(value) -> str:
    if value is None:
        return ''
    return str(value).strip().upper()


def explicit_gender(value) -> str | None:
    """Read a value from an explicit gender column."""
    upper = _clean(value)
    if upper in EXPLICIT_FEMALE:
        return FEMALE
    if upper in EXPLICIT_MALE:
        return MALE
    return None


def fs_female_signal(value) -> str | None:
    """Female-only reading of an FS or headerless column value.

    Returns the signal kind ('FS_SIGNAL' or 'TITLE'), or None. Blank means
    unknown, not male.
    """
    upper = _clean(value)
    if not upper:
        return None
    if upper in FS_FEMALE_EXACT:
        return 'FS_SIGNAL'
    if upper in NON_GENDER_TITLES or upper.split(' ')[0] in NON_GENDER_TITLES:
        return None
    if _W_TITLE.match(upper.split(' ')[0]):
        return 'TITLE'
    return None


def label_female_signal(label) -> str | None:
    """Female marker in a free-text type or group label."""
    for token in _LABEL_SPLIT.split(str(label if label is not None else '').strip()):
        upper = token.strip().upper()
        if not upper:
            continue
        if FEMALE_MARKER in upper:
            return 'FMG'
        if _F_PREFIX.match(upper):
            return 'F_PREFIX'
        if upper in FEMALE_LABEL_TOKENS:
            return 'GIRL_TOKEN'
    return None


def collect_headers(rows: list[dict]) -> list[str]:
    """Union of row keys in first-seen order."""
    headers = []
    seen = set()
    for row in rows:
        if not isinstance(row, dict):
            continue
        for key in row:
            if key not in seen:
                seen.add(key)
                headers.append(key)
    return headers


def find_headerless_gender_column(headers: list[str], sample_rows: list[dict]) -> str | None:
    """Locate an unlabeled gender column between Name and Rating.

    Swiss-Manager ranking lists look like
        Rank | SNo | Name | Name | <blank> | Rtg | ...
    where the blank-headed column holds F (or nothing). Every headerless
    column after the last Name column and before the first Rating column
    is scored by how many sampled rows hold a gender marker. One match is
    enough; the column with the most matches wins.
    """
    if not headers or not sample_rows:
        return None

    normalized = [normalize_header(h) for h in headers]
    last_name = -1
    for i, key in enumerate(normalized):
        if key in NAME_HEADERS:
            last_name = i
    if last_name == -1:
        return None

    end = len(headers)
    for i in range(last_name + 1, len(headers)):
        if normalized[i] in RATING_HEADERS:
            end = i
            break

    candidates = [h for h in headers[last_name + 1:end] if is_headerless_key(h)]
    if not candidates:
        return None

    matches = {key: 0 for key in candidates}
    for row in sample_rows[:HEADERLESS_SAMPLE_LIMIT]:
        if not isinstance(row, dict):
            continue
        for key in candidates:
            if _clean(row.get(key)) in HEADERLESS_MARKERS:
                matches[key] += 1

    best_key = None
    best_matches = 0
    for key in candidates:
        if matches[key] > best_matches:
            best_key = key
            best_matches = matches[key]

    if best_key is not None:
        logger.debug("headerless gender column=%s matches=%d", best_key, best_matches)
    return best_key


def analyze_gender_columns(rows: list[dict]) -> GenderColumnConfig:
    """Detect the gender, FS and headerless gender columns of a file."""
    headers = collect_headers(rows)
    gender_column = None
    fs_column = None
    for header in headers:
        key = normalize_header(header)
        if key == FS_HEADER:
            fs_column = fs_column or header
        elif key in GENDER_HEADERS:
            gender_column = gender_column or header

    return GenderColumnConfig(
        gender_column=gender_column,
        fs_column=fs_column,
        headerless_column=find_headerless_gender_column(headers, rows),
    )


def infer_gender(row: dict, config: GenderColumnConfig | None = None,
                 type_label: str | None = None,
                 group_label: str | None = None) -> GenderInference:
    """Resolve one row's gender from every available signal."""
    config = config or GenderColumnConfig()
    result = GenderInference()

    gender_column = config.gender_column
    if gender_column is None and 'gender' in row:
        gender_column = 'gender'
    explicit = explicit_gender(row.get(gender_column)) if gender_column else None

    female_sources = []
    if explicit == FEMALE:
        female_sources.append('gender_column')

    for column, source in ((config.fs_column, 'fs_column'),
                           (config.headerless_column, 'headerless_after_name')):
        if not column:
            continue
        reason = fs_female_signal(row.get(column))
        if reason:
            female_sources.append(source)
            result.female_signal_source = result.female_signal_source or reason

    for label, source in ((type_label, 'type_label'), (group_label, 'group_label')):
        reason = label_female_signal(label)
        if reason:
            female_sources.append(source)
            result.female_signal_source = result.female_signal_source or reason

    if female_sources:
        result.gender = FEMALE
        result.sources = female_sources
        if explicit == MALE:
            result.warnings.append(OVERRIDE_WARNING)
    elif explicit == MALE:
        result.gender = MALE
        result.sources = ['gender_column']

    return result
