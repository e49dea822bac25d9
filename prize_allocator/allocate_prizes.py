#!/usr/bin/env python3
"""CLI entry point for allocating tournament prizes.

Usage:
    python prize_allocator/allocate_prizes.py --source xlsx \\
        --roster ranking_list.xlsx --config tournament.json \\
        --output ./output/ --institution-map schools.json
"""

import argparse
import logging
import os
import sys

# Add project root to path for imports when run as a script
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from prize_allocator.core.cache import ResultCache, ttl_from_env
from prize_allocator.core.config_loader import load_tournament_config
from prize_allocator.core.engine import AllocationService, verbose_logs_enabled
from prize_allocator.core.errors import PrizeAllocatorError
from prize_allocator.core.institution_normalizer import (
    normalize as normalize_institutions, print_institution_report,
)
from prize_allocator.core.models import GROUP_BY_FIELDS
from prize_allocator.core.report import (
    print_allocation_report, print_import_summary, write_results_json,
)
from prize_allocator.core.roster_normalizer import normalize_roster
from prize_allocator.core.store import SnapshotStore
from prize_allocator.adapters.generic_adapter import GenericAdapter
from prize_allocator.adapters.pdf_adapter import PdfAdapter
from prize_allocator.adapters.xlsx_adapter import XlsxAdapter

ADAPTERS = {
    'generic': GenericAdapter,
    'xlsx': XlsxAdapter,
    'pdf': PdfAdapter,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Allocate individual and team prizes for a tournament')
    parser.add_argument('--source', required=True, choices=sorted(ADAPTERS),
                        help='Roster file type')
    parser.add_argument('--roster', nargs='+', required=True, help='Roster file(s)')
    parser.add_argument('--config', required=True,
                        help='Tournament configuration JSON (rules, categories, team prizes)')
    parser.add_argument('--output', required=True, help='Output directory for results')
    parser.add_argument('--db', required=False, default=None,
                        help='Path to the SQLite database (default: {output}/prize_allocator.db)')
    parser.add_argument('--institution-map', default=None,
                        help='Path to JSON file mapping institution aliases to canonical names')
    parser.add_argument('--normalize-field', action='append', choices=GROUP_BY_FIELDS,
                        default=None,
                        help='Institution field to normalize before grouping (repeatable, default: club)')
    parser.add_argument('--verbose', action='store_true',
                        help='Log every eligibility check and allocation decision')
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    verbose = args.verbose or verbose_logs_enabled()
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO,
                        format='%(levelname)s %(name)s: %(message)s')
    if verbose:
        logging.getLogger('prize_allocator').setLevel(logging.DEBUG)

    try:
        config = load_tournament_config(args.config)
        tid = config.tournament.id
        print(f"Tournament {tid}: {config.tournament.title or '(untitled)'}")
        print(f"  {len(config.categories)} categories, "
              f"{len(config.institution_groups)} team prize groups")

        adapter = ADAPTERS[args.source]()
        if len(args.roster) == 1:
            print(f"Parsing {args.roster[0]}...")
            rows = adapter.parse(args.roster[0])
            print(f"Parsed {len(rows)} rows")
        else:
            rows = []
            for roster_path in args.roster:
                print(f"Parsing {roster_path}...")
                batch = adapter.parse(roster_path)
                print(f"  -> {len(batch)} rows")
                rows.extend(batch)
            print(f"Total: {len(rows)} rows from {len(args.roster)} files")

        competitors, summary = normalize_roster(rows)
        print_import_summary(summary)

        for field in args.normalize_field or ['club']:
            competitors, report = normalize_institutions(
                competitors, field=field, alias_map_path=args.institution_map)
            print_institution_report(report)

        os.makedirs(args.output, exist_ok=True)
        db_path = args.db if args.db else os.path.join(args.output, 'prize_allocator.db')
        os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        print(f"\nWriting tournament data to {db_path}...")

        with SnapshotStore(db_path) as store:
            store.save_config(config)
            store.replace_competitors(tid, competitors)

            service = AllocationService(store, cache=ResultCache(ttl_from_env()))
            result = service.run(tid)
            snapshot = store.load_snapshot(tid)

        print_allocation_report(result, snapshot)
        results_path = os.path.join(args.output, 'results.json')
        write_results_json(result, snapshot, results_path)
        print(f"\nGenerated {results_path}")
    except PrizeAllocatorError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print("\nDone!")


if __name__ == '__main__':
    main()
