"""Adapter for generic JSON, CSV or TSV roster exports.

Handles:
  - JSON: array of objects, or an object whose "players"/"rows" key holds one
  - CSV/TSV: header row plus data rows; the delimiter is sniffed from the
    header line (tab, semicolon or comma)

Rows keep the file's header labels as keys. Blank header cells become
__EMPTY_COL_<index> so an unlabeled gender column stays visible.
"""

import csv
import glob
import io
import json
import os

from .base import BaseAdapter, header_keys
from ..core.errors import InputError

ROSTER_EXTENSIONS = ('*.json', '*.csv', '*.tsv', '*.txt')


class GenericAdapter(BaseAdapter):
    """Parse generic JSON or delimited roster files."""

    def parse(self, data_path: str) -> list[dict]:
        """Auto-detect format and parse.

        data_path can be:
          - A single file
          - A directory (every .json/.csv/.tsv/.txt file inside, merged)
          - A glob pattern (e.g. /path/to/rosters/section_*.csv)
        """
        if os.path.isdir(data_path):
            paths = []
            for pattern in ROSTER_EXTENSIONS:
                paths.extend(glob.glob(os.path.join(data_path, pattern)))
            rows = []
            for fpath in sorted(paths):
                rows.extend(self._parse_single_file(fpath))
            return rows

        if '*' in data_path or '?' in data_path:
            rows = []
            for fpath in sorted(glob.glob(data_path)):
                rows.extend(self._parse_single_file(fpath))
            return rows

        return self._parse_single_file(data_path)

    def _parse_single_file(self, data_path: str) -> list[dict]:
        try:
            with open(data_path, 'r', encoding='utf-8-sig') as f:
                content = f.read().strip()
        except FileNotFoundError:
            raise InputError(f"Roster file not found: {data_path}")
        except (UnicodeDecodeError, OSError) as e:
            raise InputError(f"Could not read roster {data_path}: {e}")

        if content.startswith('[') or content.startswith('{'):
            try:
                return self._parse_json(json.loads(content))
            except json.JSONDecodeError:
                pass

        # Exports saved from a browser are sometimes a JSON-encoded string
        if content.startswith('"'):
            try:
                decoded = json.loads(content)
                if isinstance(decoded, str):
                    inner = decoded.strip()
                    if inner.startswith('[') or inner.startswith('{'):
                        return self._parse_json(json.loads(inner))
                    return self._parse_delimited(inner)
            except (json.JSONDecodeError, ValueError):
                pass

        return self._parse_delimited(content)

    def _parse_json(self, data) -> list[dict]:
        if isinstance(data, dict):
            for key in ('players', 'rows', 'data'):
                if isinstance(data.get(key), list):
                    data = data[key]
                    break
            else:
                data = [data]
        rows = []
        for row in data:
            if not isinstance(row, dict):
                continue
            keys = header_keys(list(row.keys()))
            rows.append(dict(zip(keys, row.values())))
        return rows

    @staticmethod
    def sniff_delimiter(header_line: str) -> str:
        counts = {d: header_line.count(d) for d in ('\t', ';', ',')}
        best = max(counts, key=lambda d: counts[d])
        return best if counts[best] else ','

    def _parse_delimited(self, content: str) -> list[dict]:
        lines = content.splitlines()
        if len(lines) < 2:
            return []

        delimiter = self.sniff_delimiter(lines[0])
        reader = csv.reader(io.StringIO(content), delimiter=delimiter)
        header = next(reader)
        keys = header_keys(header)

        rows = []
        for parts in reader:
            if not any(p.strip() for p in parts):
                continue
            row = {}
            for i, key in enumerate(keys):
                row[key] = parts[i].strip() if i < len(parts) else ''
            rows.append(row)
        return rows
