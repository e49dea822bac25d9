"""Institution label normalizer for roster data.

Free-text club, city or school fields arrive spelled many ways. Before
grouping competitors into institution teams the chosen field goes through
four phases:
  Phase 1: auto-normalize (title-case, collapse whitespace, merge case variants)
  Phase 2: suffix-aware merge, "Knight Riders" + "Knight Riders Chess Club"
  Phase 3: fuzzy duplicate detection (reported, never merged)
  Phase 4: optional alias map from a JSON file (case-insensitive keys)
"""

from collections import Counter
from dataclasses import replace
from difflib import SequenceMatcher
import json
import logging
import re

logger = logging.getLogger(__name__)

# Trailing words that mark a label as the full institution name
MERGE_SUFFIXES = (
    ('chess', 'club'),
    ('club',), ('academy',), ('school',), ('college',), ('institute',),
    ('association',), ('centre',), ('center',), ('foundation',),
)

FUZZY_THRESHOLD = 0.80
FUZZY_MAX_LABELS = 500


def _title_case_word(word: str) -> str:
    if '-' in word:
        return '-'.join(_title_case_word(p) for p in word.split('-'))
    # acronyms of 2-4 capitals stay as they are
    if word.isupper() and 2 <= len(word) <= 4:
        return word
    return word.capitalize()


def title_case_label(label: str) -> str:
    label = re.sub(r'\s+', ' ', label.strip())
    if not label:
        return label
    return ' '.join(_title_case_word(w) for w in label.split(' '))


def _case_key(label: str) -> str:
    key = label.strip().lower().replace('-', ' ')
    return re.sub(r'\s+', ' ', key)


def _strip_suffix(label: str) -> str | None:
    """Base name without a trailing institution word, or None."""
    words = label.split()
    lowered = [w.lower() for w in words]
    for suffix in MERGE_SUFFIXES:
        n = len(suffix)
        if len(words) > n and tuple(lowered[-n:]) == suffix:
            return ' '.join(words[:-n])
    return None


def _load_alias_map(path: str, warnings: list) -> dict | None:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            alias_map = json.load(f)
    except FileNotFoundError:
        warnings.append(f"Institution map file not found: {path}")
        return None
    except json.JSONDecodeError as e:
        warnings.append(f"Invalid JSON in institution map file: {e}")
        return None
    if not isinstance(alias_map, dict):
        warnings.append(f"Institution map must be a JSON object: {path}")
        return None
    return {str(k).lower().strip(): str(v) for k, v in alias_map.items()}


def normalize(competitors: list, field: str = 'club', alias_map_path: str | None = None):
    """Normalize one institution field across all competitors.

    Args:
        competitors: List of Competitor.
        field: Competitor attribute to normalize.
        alias_map_path: Optional JSON file mapping labels to canonical labels.

    Returns:
        (competitors, report). Competitors are new records; the report holds
        field, unique_labels, auto_merged, suffix_merged,
        potential_duplicates, alias_applied and warnings.
    """
    auto_merged = {}
    suffix_merged = {}
    warnings = []
    labels = [(c.field_value(field) or '').strip() for c in competitors]

    # Phase 1: case-insensitive auto-normalize, most common spelling wins
    variants_by_key: dict[str, Counter] = {}
    for label in labels:
        key = _case_key(label)
        if key:
            variants_by_key.setdefault(key, Counter())[label] += 1

    mapping: dict[str, str] = {}
    for variants in variants_by_key.values():
        # ties go to the alphabetically first spelling
        most_common = min(variants, key=lambda v: (-variants[v], v))
        canonical = title_case_label(most_common)
        for variant in variants:
            mapping[variant] = canonical
            if variant != canonical:
                auto_merged[variant] = canonical

    labels = [mapping.get(label, label) for label in labels]

    # Phase 2: merge "X" into "X <institution word>"
    unique = set(label for label in labels if label)
    counts = Counter(label for label in labels if label)
    base_to_full: dict[str, list] = {}
    for label in unique:
        base = _strip_suffix(label)
        if base:
            base_to_full.setdefault(base, []).append(label)

    suffix_map: dict[str, str] = {}
    for base, full_forms in base_to_full.items():
        if base not in unique:
            continue
        best = min(full_forms, key=lambda f: (-counts[f], f))
        suffix_map[base] = best
        for form in full_forms:
            if form != best:
                suffix_map[form] = best
    suffix_merged.update(suffix_map)
    labels = [suffix_map.get(label, label) for label in labels]

    # Phase 3: fuzzy duplicates, informational only
    unique_labels = sorted(set(label for label in labels if label))
    potential_duplicates = []
    if len(unique_labels) <= FUZZY_MAX_LABELS:
        for i in range(len(unique_labels)):
            for j in range(i + 1, len(unique_labels)):
                a, b = unique_labels[i], unique_labels[j]
                ratio = SequenceMatcher(None, a.lower(), b.lower()).ratio()
                if ratio > FUZZY_THRESHOLD:
                    potential_duplicates.append((a, b, round(ratio, 2)))

    # Phase 4: alias map
    alias_applied = 0
    if alias_map_path:
        alias_map = _load_alias_map(alias_map_path, warnings)
        if alias_map:
            new_labels = []
            for label in labels:
                mapped = alias_map.get(label.lower().strip())
                if mapped is not None:
                    alias_applied += 1
                    label = mapped
                new_labels.append(label)
            labels = new_labels
            unique_labels = sorted(set(label for label in labels if label))
            logger.info("institution map applied: %d competitors updated from %d mappings",
                        alias_applied, len(alias_map))

    for message in warnings:
        logger.warning("%s", message)

    normalized = [
        c if c.field_value(field) == label else replace(c, **{field: label})
        for c, label in zip(competitors, labels)
    ]

    return normalized, {
        'field': field,
        'unique_labels': unique_labels,
        'auto_merged': auto_merged,
        'suffix_merged': suffix_merged,
        'potential_duplicates': potential_duplicates,
        'alias_applied': alias_applied,
        'warnings': warnings,
    }


def _print_merges(title: str, merges: dict) -> None:
    lines = [f'  "{k}" -> "{v}"' for k, v in sorted(merges.items())]
    if len(lines) > 15:
        print(f"{title} (showing 15 of {len(lines)}):")
        print('\n'.join(lines[:15]))
    else:
        print(f"{title}:")
        print('\n'.join(lines))


def print_institution_report(report: dict) -> None:
    """Print a human-readable normalization report to stdout."""
    labels = report['unique_labels']
    merged = report['auto_merged']
    suffix = report['suffix_merged']
    dupes = report['potential_duplicates']

    print(f"\nInstitution normalization ({report['field']}): {len(labels)} unique, "
          f"{len(merged) + len(suffix)} auto-merged ({len(merged)} case, {len(suffix)} suffix), "
          f"{len(dupes)} potential duplicates to review")

    if merged:
        _print_merges("Case-merged", merged)
    if suffix:
        _print_merges("Suffix-merged", suffix)
    if dupes:
        print(f"Potential duplicates (>{int(FUZZY_THRESHOLD * 100)}% similar):")
        for a, b, ratio in dupes[:15]:
            print(f'  "{a}" / "{b}" ({int(ratio * 100)}% similar)')
        if len(dupes) > 15:
            print(f"  ... and {len(dupes) - 15} more")
    for message in report['warnings']:
        print(f"Warning: {message}")
