"""Roster import normalization.

Adapters hand over raw row dicts keyed by the file's own headers. This
module maps those headers onto competitor fields, cleans the values,
infers gender for every row and builds Competitor records. Rows that
still lack a name or a rank after cleaning are skipped and reported.
"""

from dataclasses import dataclass, field
import datetime
import logging
import re

from .gender_inference import (
    GenderColumnConfig, analyze_gender_columns, collect_headers, infer_gender,
    normalize_header,
)
from .models import FEMALE, MALE, Competitor

logger = logging.getLogger(__name__)

# canonical field -> normalized header spellings
HEADER_ALIASES = {
    'rank': {'rank', 'rk', 'sno', 's_no', 'sr_no', 'srno', 'seed', 'pos', 'position', 'no'},
    'name': {'name', 'player_name', 'full_name', 'fullname', 'player', 'playername',
             'participant', 'name1', 'name_1'},
    'rating': {'rating', 'rtg', 'irtg', 'nrtg', 'elo', 'fide_rating', 'std'},
    'dob': {'dob', 'date_of_birth', 'birth_date', 'birthdate', 'birth', 'born', 'birthday'},
    'state': {'state', 'province', 'region', 'st'},
    'city': {'city', 'town', 'location', 'district'},
    'club': {'club', 'chess_club', 'organization', 'organisation', 'academy', 'school',
             'institution', 'clubcity'},
    'disability': {'disability', 'pwd', 'ph', 'special_category'},
    'group_label': {'gr', 'group', 'group_label'},
    'type_label': {'type', 'type_label', 'category'},
    'fide_id': {'fide_id', 'fideid', 'id_no', 'fide_no'},
}

_DMY = re.compile(r'^(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{4})$')
_YEAR = re.compile(r'^(\d{4})(?:\.0+)?$')
_RANK = re.compile(r'^(\d+)\s*[Tt=]?\.?$')


@dataclass
class ImportSummary:
    total_rows: int = 0
    imported: int = 0
    skipped: list = field(default_factory=list)          # (row_number, reason)
    gender_counts: dict = field(default_factory=lambda: {'F': 0, 'M': 0, 'unknown': 0})
    gender_columns: GenderColumnConfig = field(default_factory=GenderColumnConfig)
    column_map: dict = field(default_factory=dict)       # canonical field -> header
    warnings: dict = field(default_factory=dict)         # row_number -> [message, ...]
    rank_autofilled: int = 0

    def warn(self, row_number: int, message: str) -> None:
        self.warnings.setdefault(row_number, []).append(message)


def canonical_field(header) -> str | None:
    """Map a raw header to a competitor field name, or None."""
    if str(header if header is not None else '').strip() == '#':
        return 'rank'
    key = normalize_header(header)
    for canonical, aliases in HEADER_ALIASES.items():
        if key in aliases:
            return canonical
    return None


def build_column_map(headers: list) -> dict:
    """canonical field -> first header that maps to it."""
    column_map = {}
    for header in headers:
        canonical = canonical_field(header)
        if canonical and canonical not in column_map:
            column_map[canonical] = header
    return column_map


def clean_text(value) -> str:
    if value is None:
        return ''
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return re.sub(r'\s+', ' ', str(value)).strip()


def parse_rating(value) -> int | None:
    """'1,800' -> 1800. Blank, zero and junk are unrated (None)."""
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        rating = int(value)
    else:
        text = re.sub(r'[,\s]', '', str(value))
        if not text:
            return None
        try:
            rating = int(float(text))
        except ValueError:
            return None
    return rating if rating > 0 else None


def parse_rank(value) -> int | None:
    """Rank as a positive integer. Accepts a trailing tie marker ('3T')."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float):
        return int(value) if value.is_integer() and value > 0 else None
    m = _RANK.match(str(value).strip())
    if not m:
        return None
    rank = int(m.group(1))
    return rank if rank > 0 else None


def parse_dob(value):
    """Parse a date of birth.

    Returns:
        (date or None, year_only). A bare year maps to 1 January.
    """
    if value is None:
        return None, False
    if isinstance(value, datetime.datetime):
        return value.date(), False
    if isinstance(value, datetime.date):
        return value, False
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = clean_text(value)

    text = str(value).strip()
    if not text:
        return None, False

    m = _YEAR.match(text)
    if m:
        return datetime.date(int(m.group(1)), 1, 1), True

    try:
        return datetime.date.fromisoformat(text[:10]), False
    except ValueError:
        pass

    m = _DMY.match(text)
    if m:
        day, month, year = (int(g) for g in m.groups())
        try:
            return datetime.date(year, month, day), False
        except ValueError:
            return None, False
    return None, False


def fill_rank_gaps(records: list) -> int:
    """Fill a single missing rank between two ranks that differ by 2.

    records are dicts with 'rank' and 'flags' keys, in file order.
    Returns the number of ranks filled.
    """
    filled = 0
    for i in range(1, len(records) - 1):
        if records[i]['rank'] is not None:
            continue
        prev_rank = records[i - 1]['rank']
        next_rank = records[i + 1]['rank']
        if prev_rank is not None and next_rank is not None and next_rank - prev_rank == 2:
            records[i]['rank'] = prev_rank + 1
            records[i]['flags'].append('rank_autofilled')
            filled += 1
    return filled


def normalize_roster(rows: list[dict]):
    """Turn raw adapter rows into Competitors.

    Args:
        rows: Row dicts in file order, keyed by the file's headers.

    Returns:
        (competitors, ImportSummary)
    """
    summary = ImportSummary(total_rows=len(rows))
    headers = collect_headers(rows)
    column_map = build_column_map(headers)
    summary.column_map = column_map
    gender_columns = analyze_gender_columns(rows)
    summary.gender_columns = gender_columns

    if 'name' not in column_map:
        logger.warning("no name column among headers: %s", ', '.join(map(str, headers)))
    if 'rank' not in column_map:
        logger.warning("no rank column among headers: %s", ', '.join(map(str, headers)))

    def get(row, canonical):
        header = column_map.get(canonical)
        return row.get(header) if header is not None else None

    records = []
    for row_number, row in enumerate(rows, start=1):
        dob, year_only = parse_dob(get(row, 'dob'))
        flags = ['dob_year_only'] if year_only else []
        records.append({
            'row_number': row_number,
            'row': row,
            'name': clean_text(get(row, 'name')),
            'rank': parse_rank(get(row, 'rank')),
            'rating': parse_rating(get(row, 'rating')),
            'dob': dob,
            'flags': flags,
        })

    summary.rank_autofilled = fill_rank_gaps(records)

    competitors = []
    for rec in records:
        row_number, row = rec['row_number'], rec['row']
        if not rec['name']:
            summary.skipped.append((row_number, 'missing name'))
            summary.warn(row_number, 'skipped: missing name')
            continue
        if rec['rank'] is None:
            summary.skipped.append((row_number, 'missing rank'))
            summary.warn(row_number, 'skipped: missing rank')
            continue

        type_label = clean_text(get(row, 'type_label'))
        group_label = clean_text(get(row, 'group_label'))
        inference = infer_gender(row, gender_columns, type_label, group_label)
        for message in inference.warnings:
            summary.warn(row_number, message)

        raw_gender = None
        if gender_columns.gender_column:
            raw_gender = clean_text(row.get(gender_columns.gender_column)) or None

        competitor = Competitor(
            id=str(row_number),
            name=rec['name'],
            rank=rec['rank'],
            rating=rec['rating'],
            dob=rec['dob'],
            gender=inference.gender,
            raw_gender=raw_gender,
            state=clean_text(get(row, 'state')),
            city=clean_text(get(row, 'city')),
            club=clean_text(get(row, 'club')),
            disability=clean_text(get(row, 'disability')),
            group_label=group_label,
            type_label=type_label,
            fide_id=clean_text(get(row, 'fide_id')),
            flags=tuple(rec['flags']),
        )
        competitors.append(competitor)

        if competitor.gender == FEMALE:
            summary.gender_counts['F'] += 1
        elif competitor.gender == MALE:
            summary.gender_counts['M'] += 1
        else:
            summary.gender_counts['unknown'] += 1

    summary.imported = len(competitors)
    logger.info("import rows=%d imported=%d skipped=%d female=%d male=%d unknown=%d",
                summary.total_rows, summary.imported, len(summary.skipped),
                summary.gender_counts['F'], summary.gender_counts['M'],
                summary.gender_counts['unknown'])
    return competitors, summary
