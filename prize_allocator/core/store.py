"""SQLite snapshot store for tournaments, rosters and prize configuration.

One database may hold several tournaments. Each allocation run reads a
tournament once through load_snapshot() and never goes back to the
database while allocating.
"""

import datetime
import json
import logging
import sqlite3

from .config_loader import (
    dump_criteria, dump_rules, parse_criteria, parse_rules,
    validate_categories, validate_groups,
)
from .errors import ConfigError, InputError
from .models import (
    Competitor, InstitutionPrize, InstitutionPrizeGroup, Prize, PrizeCategory,
    Tournament, TournamentSnapshot,
)

logger = logging.getLogger(__name__)

SCHEMA = [
    '''CREATE TABLE IF NOT EXISTS tournaments (
        id TEXT PRIMARY KEY,
        title TEXT,
        start_date TEXT
    )''',
    '''CREATE TABLE IF NOT EXISTS competitors (
        tournament_id TEXT NOT NULL,
        id TEXT NOT NULL,
        name TEXT NOT NULL,
        rank INTEGER NOT NULL,
        rating INTEGER,
        dob TEXT,
        gender TEXT,
        raw_gender TEXT,
        state TEXT,
        city TEXT,
        club TEXT,
        disability TEXT,
        group_label TEXT,
        type_label TEXT,
        fide_id TEXT,
        flags TEXT,
        PRIMARY KEY (tournament_id, id)
    )''',
    '''CREATE TABLE IF NOT EXISTS rule_config (
        tournament_id TEXT NOT NULL UNIQUE,
        rules_json TEXT NOT NULL,
        updated_at TEXT
    )''',
    '''CREATE TABLE IF NOT EXISTS categories (
        tournament_id TEXT NOT NULL,
        id TEXT NOT NULL,
        name TEXT,
        order_idx INTEGER,
        is_main INTEGER,
        is_active INTEGER,
        ranking TEXT,
        criteria_json TEXT,
        PRIMARY KEY (tournament_id, id)
    )''',
    '''CREATE TABLE IF NOT EXISTS prizes (
        tournament_id TEXT NOT NULL,
        category_id TEXT NOT NULL,
        id TEXT NOT NULL,
        place INTEGER,
        cash_amount REAL,
        has_trophy INTEGER,
        has_medal INTEGER,
        has_gift INTEGER,
        is_active INTEGER,
        PRIMARY KEY (tournament_id, id)
    )''',
    '''CREATE TABLE IF NOT EXISTS institution_prize_groups (
        tournament_id TEXT NOT NULL,
        id TEXT NOT NULL,
        name TEXT,
        group_by TEXT,
        team_size INTEGER,
        female_slots INTEGER,
        male_slots INTEGER,
        is_active INTEGER,
        PRIMARY KEY (tournament_id, id)
    )''',
    '''CREATE TABLE IF NOT EXISTS institution_prizes (
        tournament_id TEXT NOT NULL,
        group_id TEXT NOT NULL,
        id TEXT NOT NULL,
        place INTEGER,
        cash_amount REAL,
        has_trophy INTEGER,
        has_medal INTEGER,
        has_gift INTEGER,
        is_active INTEGER,
        PRIMARY KEY (tournament_id, id)
    )''',
]

COMPETITOR_COLUMNS = ('id', 'name', 'rank', 'rating', 'dob', 'gender', 'raw_gender',
                      'state', 'city', 'club', 'disability', 'group_label', 'type_label',
                      'fide_id', 'flags')


def _iso(value):
    return value.isoformat() if value is not None else None


def _date(value):
    return datetime.date.fromisoformat(value) if value else None


class SnapshotStore:
    """Thin wrapper over one sqlite3 connection."""

    def __init__(self, db_path: str = ':memory:'):
        self.db_path = db_path
        self.conn = sqlite3.connect(db_path)
        self.conn.row_factory = sqlite3.Row
        cur = self.conn.cursor()
        for statement in SCHEMA:
            cur.execute(statement)
        self.conn.commit()

    def close(self):
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ─── Writes ──────────────────────────────────────────────────────

    def save_tournament(self, tournament: Tournament) -> None:
        self.conn.execute(
            '''INSERT INTO tournaments (id, title, start_date) VALUES (?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET title = excluded.title,
                                             start_date = excluded.start_date''',
            (tournament.id, tournament.title, _iso(tournament.start_date)))
        self.conn.commit()

    def replace_competitors(self, tournament_id: str, competitors) -> int:
        """Replace the whole roster of a tournament. Returns the row count."""
        cur = self.conn.cursor()
        cur.execute('DELETE FROM competitors WHERE tournament_id = ?', (tournament_id,))
        count = 0
        for c in competitors:
            cur.execute(
                f'''INSERT INTO competitors (tournament_id, {', '.join(COMPETITOR_COLUMNS)})
                    VALUES ({', '.join('?' * (len(COMPETITOR_COLUMNS) + 1))})''',
                (tournament_id, c.id, c.name, c.rank, c.rating, _iso(c.dob), c.gender,
                 c.raw_gender, c.state, c.city, c.club, c.disability, c.group_label,
                 c.type_label, c.fide_id, json.dumps(list(c.flags))))
            count += 1
        self.conn.commit()
        logger.info("tournament=%s competitors=%d", tournament_id, count)
        return count

    def upsert_rule_config(self, tournament_id: str, rules) -> None:
        """Write the tournament's single rule row, updating it in place."""
        self.conn.execute(
            '''INSERT INTO rule_config (tournament_id, rules_json, updated_at)
               VALUES (?, ?, ?)
               ON CONFLICT(tournament_id) DO UPDATE SET rules_json = excluded.rules_json,
                                                        updated_at = excluded.updated_at''',
            (tournament_id, json.dumps(dump_rules(rules), sort_keys=True),
             datetime.datetime.now(datetime.timezone.utc).isoformat()))
        self.conn.commit()

    def save_categories(self, tournament_id: str, categories) -> None:
        """Replace all categories and their prizes.

        Raises:
            ConfigError: more than one main category, or duplicate ids.
        """
        categories = list(categories)
        validate_categories(categories)
        cur = self.conn.cursor()
        cur.execute('DELETE FROM prizes WHERE tournament_id = ?', (tournament_id,))
        cur.execute('DELETE FROM categories WHERE tournament_id = ?', (tournament_id,))
        for cat in categories:
            cur.execute(
                '''INSERT INTO categories
                   (tournament_id, id, name, order_idx, is_main, is_active, ranking, criteria_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)''',
                (tournament_id, cat.id, cat.name, cat.order_idx, int(cat.is_main),
                 int(cat.is_active), cat.ranking, json.dumps(dump_criteria(cat.criteria))))
            for p in cat.prizes:
                cur.execute(
                    '''INSERT INTO prizes
                       (tournament_id, category_id, id, place, cash_amount,
                        has_trophy, has_medal, has_gift, is_active)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)''',
                    (tournament_id, cat.id, p.id, p.place, p.cash_amount, int(p.has_trophy),
                     int(p.has_medal), int(p.has_gift), int(p.is_active)))
        self.conn.commit()

    def add_category(self, tournament_id: str, category) -> None:
        """Add one category, refusing a second main category."""
        if category.is_main:
            row = self.conn.execute(
                'SELECT name FROM categories WHERE tournament_id = ? AND is_main = 1 AND id != ?',
                (tournament_id, category.id)).fetchone()
            if row is not None:
                raise ConfigError(f"Only one main category is allowed, "
                                  f"found: {row['name']}, {category.name}")
        existing = [c for c in self._load_categories(tournament_id) if c.id != category.id]
        self.save_categories(tournament_id, existing + [category])

    def save_institution_groups(self, tournament_id: str, groups) -> None:
        """Replace all institution prize groups and their prizes.

        Raises:
            ConfigError: repeated ids, or a group whose gender slots exceed
                its team size.
        """
        groups = list(groups)
        validate_groups(groups)
        cur = self.conn.cursor()
        cur.execute('DELETE FROM institution_prizes WHERE tournament_id = ?', (tournament_id,))
        cur.execute('DELETE FROM institution_prize_groups WHERE tournament_id = ?',
                    (tournament_id,))
        for g in groups:
            cur.execute(
                '''INSERT INTO institution_prize_groups
                   (tournament_id, id, name, group_by, team_size, female_slots,
                    male_slots, is_active)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)''',
                (tournament_id, g.id, g.name, g.group_by, g.team_size, g.female_slots,
                 g.male_slots, int(g.is_active)))
            for p in g.prizes:
                cur.execute(
                    '''INSERT INTO institution_prizes
                       (tournament_id, group_id, id, place, cash_amount,
                        has_trophy, has_medal, has_gift, is_active)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)''',
                    (tournament_id, g.id, p.id, p.place, p.cash_amount, int(p.has_trophy),
                     int(p.has_medal), int(p.has_gift), int(p.is_active)))
        self.conn.commit()

    def save_config(self, config) -> None:
        """Persist a parsed TournamentConfig (everything except the roster)."""
        tid = config.tournament.id
        self.save_tournament(config.tournament)
        self.upsert_rule_config(tid, config.rules)
        self.save_categories(tid, config.categories)
        self.save_institution_groups(tid, config.institution_groups)

    # ─── Reads ───────────────────────────────────────────────────────

    def rule_config_count(self, tournament_id: str) -> int:
        row = self.conn.execute('SELECT COUNT(*) FROM rule_config WHERE tournament_id = ?',
                                (tournament_id,)).fetchone()
        return row[0]

    def _load_categories(self, tournament_id: str) -> list:
        prizes_by_cat: dict[str, list] = {}
        for row in self.conn.execute(
                'SELECT * FROM prizes WHERE tournament_id = ? ORDER BY place, id',
                (tournament_id,)):
            prizes_by_cat.setdefault(row['category_id'], []).append(Prize(
                id=row['id'], place=row['place'], cash_amount=row['cash_amount'] or 0,
                has_trophy=bool(row['has_trophy']), has_medal=bool(row['has_medal']),
                has_gift=bool(row['has_gift']), is_active=bool(row['is_active'])))

        categories = []
        for row in self.conn.execute(
                'SELECT * FROM categories WHERE tournament_id = ? ORDER BY order_idx, id',
                (tournament_id,)):
            categories.append(PrizeCategory(
                id=row['id'], name=row['name'], order_idx=row['order_idx'],
                is_main=bool(row['is_main']),
                criteria=parse_criteria(json.loads(row['criteria_json'] or '{}')),
                prizes=tuple(prizes_by_cat.get(row['id'], [])),
                ranking=row['ranking'] or 'rank', is_active=bool(row['is_active'])))
        return categories

    def _load_groups(self, tournament_id: str) -> list:
        prizes_by_group: dict[str, list] = {}
        for row in self.conn.execute(
                'SELECT * FROM institution_prizes WHERE tournament_id = ? ORDER BY place, id',
                (tournament_id,)):
            prizes_by_group.setdefault(row['group_id'], []).append(InstitutionPrize(
                id=row['id'], place=row['place'], cash_amount=row['cash_amount'] or 0,
                has_trophy=bool(row['has_trophy']), has_medal=bool(row['has_medal']),
                has_gift=bool(row['has_gift']), is_active=bool(row['is_active'])))

        return [
            InstitutionPrizeGroup(
                id=row['id'], name=row['name'], group_by=row['group_by'],
                team_size=row['team_size'], female_slots=row['female_slots'],
                male_slots=row['male_slots'], is_active=bool(row['is_active']),
                prizes=tuple(prizes_by_group.get(row['id'], [])))
            for row in self.conn.execute(
                'SELECT * FROM institution_prize_groups WHERE tournament_id = ? ORDER BY name, id',
                (tournament_id,))
        ]

    def _load_competitors(self, tournament_id: str) -> list:
        return [
            Competitor(
                id=row['id'], name=row['name'], rank=row['rank'], rating=row['rating'],
                dob=_date(row['dob']), gender=row['gender'], raw_gender=row['raw_gender'],
                state=row['state'] or '', city=row['city'] or '', club=row['club'] or '',
                disability=row['disability'] or '', group_label=row['group_label'] or '',
                type_label=row['type_label'] or '', fide_id=row['fide_id'] or '',
                flags=tuple(json.loads(row['flags'] or '[]')))
            for row in self.conn.execute(
                'SELECT * FROM competitors WHERE tournament_id = ? ORDER BY rank, id',
                (tournament_id,))
        ]

    def load_snapshot(self, tournament_id: str) -> TournamentSnapshot:
        """Read one tournament's roster, rules and prize configuration.

        Raises:
            InputError: the tournament does not exist.
        """
        row = self.conn.execute('SELECT * FROM tournaments WHERE id = ?',
                                (tournament_id,)).fetchone()
        if row is None:
            raise InputError(f"Unknown tournament: {tournament_id}")
        tournament = Tournament(row['id'], row['title'] or '', _date(row['start_date']))

        rules_row = self.conn.execute('SELECT rules_json FROM rule_config WHERE tournament_id = ?',
                                      (tournament_id,)).fetchone()
        rules = parse_rules(json.loads(rules_row['rules_json']) if rules_row else None)

        return TournamentSnapshot(
            tournament=tournament,
            competitors=tuple(self._load_competitors(tournament_id)),
            rules=rules,
            categories=tuple(self._load_categories(tournament_id)),
            institution_groups=tuple(self._load_groups(tournament_id)),
        )
