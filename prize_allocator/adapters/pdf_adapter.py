"""Adapter for roster PDFs (printed ranking lists and start lists)."""

import fitz

from .base import BaseAdapter, header_keys
from ..core.errors import InputError
from ..core.roster_normalizer import canonical_field


class PdfAdapter(BaseAdapter):
    """Parse roster rows from a tabular PDF.

    The header line is the first text line holding both a name-like and a
    rank-like label. Each header label's left edge anchors a column; a data
    phrase belongs to the rightmost anchor at or left of its own left edge.
    """

    Y_TOLERANCE = 3.0
    X_TOLERANCE = 2.0
    WORD_GAP = 5.0

    def parse(self, data_path: str) -> list[dict]:
        try:
            doc = fitz.open(data_path)
        except (fitz.FileDataError, FileNotFoundError, RuntimeError) as e:
            raise InputError(f"Could not read PDF {data_path}: {e}")

        anchors = None
        rows = []
        try:
            for page_num in range(doc.page_count):
                lines = self._page_lines(doc[page_num])
                start = 0
                header_idx = self._find_header(lines)
                if header_idx is not None:
                    anchors = [(x, text) for x, text in lines[header_idx][1]]
                    start = header_idx + 1
                if anchors is None:
                    continue
                labels = [text for _, text in anchors]
                for _, phrases in lines[start:]:
                    if [text for _, text in phrases] == labels:
                        continue  # repeated header
                    rows.append(self._assign(phrases, anchors))
        finally:
            doc.close()

        if anchors is None:
            raise InputError(f"No header row found in {data_path}")

        keys = header_keys([text for _, text in anchors])
        return [dict(zip(keys, values)) for values in rows if any(values)]

    def _page_lines(self, page) -> list:
        """Words grouped into visual lines of phrases.

        Returns [(y, [(x, text), ...]), ...] top to bottom. Words closer
        than WORD_GAP on the same line form one phrase ("Asha Rao").
        """
        words = sorted((round(w[1], 1), round(w[0], 1), round(w[2], 1), w[4])
                       for w in page.get_text("words") if w[4].strip())

        rows = []
        for y, x0, x1, text in words:
            if rows and abs(y - rows[-1][0]) <= self.Y_TOLERANCE:
                rows[-1][1].append((x0, x1, text))
            else:
                rows.append((y, [(x0, x1, text)]))

        lines = []
        for y, row_words in rows:
            phrases = []
            for x0, x1, text in sorted(row_words):
                if phrases and x0 - phrases[-1][1] < self.WORD_GAP:
                    px0, _, ptext = phrases[-1]
                    phrases[-1] = (px0, x1, f"{ptext} {text}")
                else:
                    phrases.append((x0, x1, text))
            lines.append((y, [(x0, text) for x0, _, text in phrases]))
        return lines

    @staticmethod
    def _find_header(lines):
        for i, (_, phrases) in enumerate(lines):
            fields = {canonical_field(text) for _, text in phrases}
            if 'name' in fields and 'rank' in fields:
                return i
        return None

    def _assign(self, phrases, anchors) -> list:
        values = [''] * len(anchors)
        for x, text in phrases:
            col = 0
            for i, (anchor_x, _) in enumerate(anchors):
                if anchor_x <= x + self.X_TOLERANCE:
                    col = i
            values[col] = f"{values[col]} {text}".strip()
        return values
