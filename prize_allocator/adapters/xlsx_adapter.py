"""Adapter for Excel (.xlsx) roster exports such as Swiss-Manager ranking lists.

Exports often carry title rows, federation banners or blank rows above
the real header, so the first 25 rows of every sheet are scored and the
best-scoring row is taken as the header. Core labels (rank, name, sno,
rtg, rating, birth, dob) weigh 10, secondary labels (fide, gender, fed,
club, state, city) weigh 3, and rows that mostly hold numbers or dates
are penalized.
"""

import datetime
import zipfile

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from .base import BaseAdapter, header_keys
from ..core.errors import InputError

HEADER_SCAN_ROWS = 25
CORE_WEIGHT = 10
SECONDARY_WEIGHT = 3
CORE_LABELS = ('rank', 'name', 'sno', 'rtg', 'rating', 'birth', 'dob')
SECONDARY_LABELS = ('fide', 'gender', 'fed', 'club', 'state', 'city')


def score_header_row(cells) -> int:
    """Score how much a row looks like a roster header."""
    score = 0
    data_like = 0
    for cell in cells:
        if cell is None:
            continue
        if isinstance(cell, (int, float, datetime.date)) and not isinstance(cell, bool):
            data_like += 1
            continue
        text = str(cell).strip().lower()
        if not text:
            continue
        compact = ''.join(ch for ch in text if ch.isalnum())
        if compact.isdigit():
            data_like += 1
            continue
        if any(label in compact for label in CORE_LABELS):
            score += CORE_WEIGHT
        elif any(label in compact for label in SECONDARY_LABELS):
            score += SECONDARY_WEIGHT
    return score - data_like * SECONDARY_WEIGHT


def find_header_row(rows: list) -> tuple[int, int]:
    """(index, score) of the best header candidate among the first rows."""
    best_index, best_score = -1, 0
    for i, cells in enumerate(rows[:HEADER_SCAN_ROWS]):
        score = score_header_row(cells)
        if score > best_score:
            best_index, best_score = i, score
    return best_index, best_score


class XlsxAdapter(BaseAdapter):
    """Parse roster rows from the best header-bearing sheet of a workbook."""

    def parse(self, data_path: str) -> list[dict]:
        try:
            wb = load_workbook(data_path, read_only=True, data_only=True)
        except FileNotFoundError:
            raise InputError(f"Roster file not found: {data_path}")
        except (InvalidFileException, zipfile.BadZipFile, OSError) as e:
            raise InputError(f"Could not read workbook {data_path}: {e}")

        try:
            best = None
            for sheet_name in wb.sheetnames:
                rows = [list(r) for r in wb[sheet_name].iter_rows(values_only=True)]
                index, score = find_header_row(rows)
                if index >= 0 and (best is None or score > best[2]):
                    best = (rows, index, score)
        finally:
            wb.close()

        if best is None:
            raise InputError(f"No header row found in {data_path}")

        rows, index, _ = best
        return self._rows_to_dicts(rows[index], rows[index + 1:])

    @staticmethod
    def _rows_to_dicts(header: list, data_rows: list) -> list[dict]:
        # trailing blank header cells beyond the last data column carry nothing
        width = len(header)
        while width and (header[width - 1] is None or not str(header[width - 1]).strip()) \
                and not any(len(r) >= width and r[width - 1] not in (None, '') for r in data_rows):
            width -= 1
        keys = header_keys(header[:width])

        records = []
        for cells in data_rows:
            if not any(c is not None and str(c).strip() for c in cells):
                continue
            record = {}
            for i, key in enumerate(keys):
                value = cells[i] if i < len(cells) else None
                record[key] = value.strip() if isinstance(value, str) else value
            records.append(record)
        return records
