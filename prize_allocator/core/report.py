"""Allocation output: results.json and the console report."""

import json
import os


def _winner_doc(team) -> dict | None:
    if team is None:
        return None
    return {
        'key': team.institution,
        'label': team.institution,
        'total_points': team.total_points,
        'rank_sum': team.rank_sum,
        'best_individual_rank': team.best_individual_rank,
        'members': [
            {'competitor_id': m.competitor_id, 'name': m.name, 'rank': m.rank,
             'points': m.points, 'gender': m.gender}
            for m in team.members
        ],
    }


def group_result_doc(group_result) -> dict:
    """Per-group structure consumed by presentation and export layers."""
    g = group_result.group
    return {
        'group_id': g.id,
        'name': g.name,
        'group_by': g.group_by,
        'team_size': g.team_size,
        'female_slots': g.female_slots,
        'male_slots': g.male_slots,
        'max_rank': group_result.max_rank,
        'eligible_institutions': group_result.eligible_institutions,
        'ineligible_institutions': group_result.ineligible_institutions,
        'ineligible_reasons': list(group_result.ineligible_reasons),
        'prizes': [
            {'prize_id': pw.prize.id, 'place': pw.prize.place,
             'cash_amount': pw.prize.cash_amount, 'has_trophy': pw.prize.has_trophy,
             'has_medal': pw.prize.has_medal, 'has_gift': pw.prize.has_gift,
             'winner': _winner_doc(pw.team)}
            for pw in group_result.prizes
        ],
    }


def result_doc(result, snapshot) -> dict:
    names = {c.id: c.name for c in snapshot.competitors}
    ranks = {c.id: c.rank for c in snapshot.competitors}
    categories = {c.id: c.name for c in snapshot.categories}
    return {
        'tournament_id': result.tournament_id,
        'competitor_count': result.competitor_count,
        'winners': [
            {'competitor_id': w.competitor_id, 'name': names.get(w.competitor_id, ''),
             'rank': ranks.get(w.competitor_id), 'category_id': w.category_id,
             'category': categories.get(w.category_id, ''), 'prize_id': w.prize_id,
             'place': w.place, 'reasons': list(w.reasons), 'is_manual': w.is_manual}
            for w in result.individual.winners
        ],
        'unfilled': [
            {'prize_id': prize_id, 'reason_codes': list(codes)}
            for prize_id, codes in result.individual.unfilled
        ],
        'coverage': [
            {'category_id': c.category_id, 'category': c.category_name, 'prize_id': c.prize_id,
             'place': c.place, 'eligible_count': c.eligible_count, 'winner_id': c.winner_id,
             'reason_codes': list(c.reason_codes)}
            for c in result.individual.coverage
        ],
        'institution_groups': [group_result_doc(g) for g in result.groups],
    }


def write_results_json(result, snapshot, output_path: str) -> str:
    os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)
    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(result_doc(result, snapshot), f, indent=2, ensure_ascii=False)
    return output_path


def print_import_summary(summary) -> None:
    cols = summary.gender_columns
    print(f"\nImported {summary.imported} of {summary.total_rows} rows "
          f"({len(summary.skipped)} skipped, {summary.rank_autofilled} ranks auto-filled)")
    print(f"Gender: {summary.gender_counts['F']} F, {summary.gender_counts['M']} M, "
          f"{summary.gender_counts['unknown']} unknown")
    detected = [f"{label}={col}" for label, col in (('gender', cols.gender_column),
                                                     ('fs', cols.fs_column),
                                                     ('headerless', cols.headerless_column))
                if col]
    if detected:
        print(f"Gender columns: {', '.join(detected)}")
    if summary.warnings:
        rows = sorted(summary.warnings)
        print(f"Row warnings ({len(rows)} rows):")
        for row_number in rows[:15]:
            print(f"  row {row_number}: {'; '.join(summary.warnings[row_number])}")
        if len(rows) > 15:
            print(f"  ... and {len(rows) - 15} more")


def print_allocation_report(result, snapshot) -> None:
    """Print winners per category, unfilled prizes and team prize groups."""
    by_id = {c.id: c for c in snapshot.competitors}
    coverage_by_cat: dict[str, list] = {}
    for item in result.individual.coverage:
        coverage_by_cat.setdefault(item.category_name, []).append(item)

    print(f"\nIndividual prizes ({len(result.individual.winners)} awarded, "
          f"{len(result.individual.unfilled)} unfilled)")
    for cat_name, items in coverage_by_cat.items():
        print(f"\n{cat_name}")
        for item in items:
            if item.winner_id is None:
                print(f"  {item.place}. -- unfilled ({', '.join(item.reason_codes)})")
            else:
                c = by_id[item.winner_id]
                print(f"  {item.place}. {c.name} (rank {c.rank}) [{item.eligible_count} eligible]")

    for group in result.groups:
        print(f"\nTeam prize: {group.group.name} (by {group.group.group_by}, "
              f"team of {group.group.team_size}) - {group.eligible_institutions} eligible, "
              f"{group.ineligible_institutions} ineligible")
        for pw in group.prizes:
            if pw.team is None:
                print(f"  {pw.prize.place}. -- unfilled")
            else:
                print(f"  {pw.prize.place}. {pw.team.institution} "
                      f"({pw.team.total_points} pts, rank sum {pw.team.rank_sum})")
        for reason in group.ineligible_reasons:
            print(f"  ! {reason}")
