"""Abstract base adapter for reading tournament rosters from files."""

from abc import ABC, abstractmethod


class BaseAdapter(ABC):
    @abstractmethod
    def parse(self, data_path: str) -> list[dict]:
        """Read a roster file and return its rows as dicts.

        Keys are the file's own header labels in column order; a blank
        header becomes __EMPTY_COL_<index>. Values are left raw. Mapping
        headers onto competitor fields happens in the roster normalizer.
        """
        pass


def header_keys(header_cells) -> list[str]:
    """Turn a header row into unique dict keys.

    Blank cells become __EMPTY_COL_<index> (1-based column); repeated
    labels get a numeric suffix ("Name", "Name_1").
    """
    keys = []
    seen: dict[str, int] = {}
    for index, cell in enumerate(header_cells, start=1):
        label = str(cell).strip() if cell is not None else ''
        if not label:
            label = f'__EMPTY_COL_{index}'
        if label in seen:
            seen[label] += 1
            label = f'{label}_{seen[label]}'
        else:
            seen[label] = 0
        keys.append(label)
    return keys
