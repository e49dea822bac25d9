"""Individual prize allocation.

Categories are walked in priority order (order_idx ascending) and each
category's prizes in place order. Every prize goes to the best remaining
eligible competitor that the stacking policy still allows:

  single              one prize per competitor
  main_plus_one_side  at most one main-category and one side-category prize
  unlimited           no cap beyond one place per category

When the chosen competitor would be blocked by the stacking policy from a
later, more valuable prize for which they are currently the best
candidate, they pass on this prize and are held for the later one. Prize
value is compared by cash, then non-cash composition in the configured
trophy/gift/medal order, then main-vs-side mode, then category priority.
"""

import logging

from .eligibility import compute_age_bands, evaluate, resolve_age_cutoff
from .models import CoverageItem, IndividualAllocation, Winner

logger = logging.getLogger(__name__)

_NON_CASH_FLAGS = {'T': 'has_trophy', 'G': 'has_gift', 'M': 'has_medal'}


def non_cash_key(prize, mode: str = 'TGM') -> tuple:
    """Non-cash composition as a tuple, most valued component first."""
    return tuple(1 if getattr(prize, _NON_CASH_FLAGS[letter]) else 0 for letter in mode)


def prize_value_key(category, prize, rules) -> tuple:
    """Sort key putting the most valuable prize first."""
    cash = -(prize.cash_amount or 0)
    non_cash = tuple(-x for x in non_cash_key(prize, rules.non_cash_priority_mode))
    main = 0 if category.is_main else 1
    if rules.main_vs_side_priority_mode == 'place_first':
        tail = (prize.place, main)
    else:
        tail = (main, prize.place)
    return (cash, non_cash) + tail + (category.order_idx, prize.id)


def _rank_chain(c) -> tuple:
    # rank ASC, rating DESC, name ASC, id ASC
    return (c.rank, -(c.rating or 0), c.name, c.id)


def candidate_key(competitor, metric: str = 'rank') -> tuple:
    if metric == 'rating':
        return (-(competitor.rating or 0),) + _rank_chain(competitor)
    if metric == 'youngest':
        if competitor.dob is None:
            return (1, 0) + _rank_chain(competitor)
        return (0, -competitor.dob.toordinal()) + _rank_chain(competitor)
    return _rank_chain(competitor)


def can_take(held: list, category, policy: str) -> bool:
    """Whether a competitor holding `held` categories may win one more.

    Nobody wins two places of the same category, whatever the policy.
    """
    if any(c.id == category.id for c in held):
        return False
    if policy == 'unlimited' or not held:
        return True
    if policy == 'main_plus_one_side':
        return all(c.is_main != category.is_main for c in held)
    return False


def build_prize_queue(categories) -> list:
    """Active (category, prize) pairs in priority then place order."""
    queue = []
    for cat in sorted((c for c in categories if c.is_active), key=lambda c: (c.order_idx, c.id)):
        for prize in sorted((p for p in cat.prizes if p.is_active), key=lambda p: (p.place, p.id)):
            queue.append((cat, prize))
    return queue


class _Run:
    """State of one allocation pass."""

    def __init__(self, competitors, queue, rules, verdicts):
        self.competitors = competitors
        self.queue = queue
        self.rules = rules
        self.verdicts = verdicts
        self.held: dict[str, list] = {}
        self.reserved: dict[str, int] = {}
        self.skip: set = set()

    def allowed(self, competitor, category) -> bool:
        return can_take(self.held.get(competitor.id, []), category, self.rules.multi_prize_policy)

    def best_candidate(self, idx):
        cat, _ = self.queue[idx]
        pool = [
            c for c in self.competitors
            if self.verdicts[cat.id][c.id].eligible
            and self.allowed(c, cat)
            and self.reserved.get(c.id, idx) == idx
        ]
        if not pool:
            return None
        return min(pool, key=lambda c: candidate_key(c, cat.ranking))

    def better_later_prize(self, competitor, idx):
        """Index of a later prize this competitor should wait for, or None."""
        if self.rules.multi_prize_policy == 'unlimited':
            return None
        cat, prize = self.queue[idx]
        current_key = prize_value_key(cat, prize, self.rules)
        after_win = self.held.get(competitor.id, []) + [cat]

        best_idx = None
        best_key = current_key
        for j in range(idx + 1, len(self.queue)):
            later_cat, later_prize = self.queue[j]
            if later_prize.id in self.skip:
                continue
            if not self.verdicts[later_cat.id][competitor.id].eligible:
                continue
            if can_take(after_win, later_cat, self.rules.multi_prize_policy):
                continue
            if not self.allowed(competitor, later_cat):
                continue
            key = prize_value_key(later_cat, later_prize, self.rules)
            if key >= best_key:
                continue
            best = self.best_candidate(j)
            if best is not None and best.id == competitor.id:
                best_idx, best_key = j, key
        return best_idx


def allocate(competitors, categories, rules, as_of, overrides=()) -> IndividualAllocation:
    """Assign individual prizes.

    Args:
        competitors: Sequence of Competitor.
        categories: Sequence of PrizeCategory (any order; sorted by order_idx).
        rules: RuleConfig.
        as_of: Tournament start date used for the age cutoff.
        overrides: Optional (prize_id, competitor_id) pairs bound before the
            automatic pass.

    Returns:
        IndividualAllocation with winners, unfilled prizes and coverage.
    """
    competitors = list(competitors)
    by_id = {c.id: c for c in competitors}
    queue = build_prize_queue(categories)
    age_bands = None
    if rules.age_band_policy == 'non_overlapping':
        age_bands = compute_age_bands([cat for cat, _ in queue], rules.max_age_inclusive)

    cutoff = resolve_age_cutoff(rules, as_of)
    verdicts: dict[str, dict] = {}
    for cat, _ in queue:
        if cat.id not in verdicts:
            verdicts[cat.id] = {
                c.id: evaluate(c, cat, rules, as_of, age_bands, cutoff) for c in competitors
            }

    run = _Run(competitors, queue, rules, verdicts)
    winners = []
    unfilled = []
    coverage = []

    prize_index = {prize.id: cat for cat, prize in queue}
    for prize_id, competitor_id in overrides:
        cat = prize_index.get(prize_id)
        if cat is None or competitor_id not in by_id:
            logger.warning("override ignored prize=%s player=%s", prize_id, competitor_id)
            continue
        prize = next(p for p in cat.prizes if p.id == prize_id)
        run.skip.add(prize_id)
        run.held.setdefault(competitor_id, []).append(cat)
        winners.append(Winner(competitor_id, cat.id, prize_id, prize.place,
                              ('manual_override',), is_manual=True))
        logger.info("win prize=%s player=%s rank=manual reasons=manual_override",
                    prize_id, competitor_id)

    verbose = logger.isEnabledFor(logging.DEBUG)
    for idx, (cat, prize) in enumerate(queue):
        if prize.id in run.skip:
            continue

        pool = []
        fail_codes = set()
        held_out = 0
        for c in competitors:
            verdict = verdicts[cat.id][c.id]
            if verbose:
                codes = verdict.pass_codes if verdict.eligible else verdict.reason_codes
                logger.debug("check prize=%s player=%s eligible=%s codes=%s",
                             prize.id, c.id, verdict.eligible, ','.join(codes) or 'none')
            if not verdict.eligible:
                fail_codes.update(verdict.reason_codes)
            elif not run.allowed(c, cat):
                held_out += 1
            elif run.reserved.get(c.id, idx) == idx:
                pool.append((c, verdict))

        pool.sort(key=lambda cv: candidate_key(cv[0], cat.ranking))
        chosen = None
        for c, verdict in pool:
            later = run.better_later_prize(c, idx)
            if later is not None:
                run.reserved[c.id] = later
                logger.debug("defer prize=%s player=%s for=%s", prize.id, c.id, queue[later][1].id)
                continue
            chosen = (c, verdict)
            break

        if chosen is None:
            if held_out:
                fail_codes.add('prize_limit_reached')
            reasons = tuple(sorted(fail_codes)) or ('no_eligible_players',)
            unfilled.append((prize.id, reasons))
            coverage.append(CoverageItem(cat.id, cat.name, prize.id, prize.place,
                                         len(pool), None, reasons))
            logger.info("unfilled category=%r place=%s reasons=%s",
                        cat.name, prize.place, ','.join(reasons))
            continue

        c, verdict = chosen
        run.reserved.pop(c.id, None)
        run.held.setdefault(c.id, []).append(cat)
        reasons = ('auto', cat.ranking) + verdict.pass_codes
        winners.append(Winner(c.id, cat.id, prize.id, prize.place, reasons))
        coverage.append(CoverageItem(cat.id, cat.name, prize.id, prize.place,
                                     len(pool), c.id, reasons))
        logger.info("win prize=%s player=%s rank=%s eligible=%d",
                    prize.id, c.id, c.rank, len(pool))

    logger.info("done winners=%d unfilled=%d", len(winners), len(unfilled))
    return IndividualAllocation(tuple(winners), tuple(unfilled), tuple(coverage))
