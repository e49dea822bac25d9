"""Tests for configuration, the snapshot store, allocation runs and the CLI."""

import datetime
import json
import logging
import os
import sys

import pytest

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from prize_allocator.allocate_prizes import main
from prize_allocator.core.cache import ResultCache, ttl_from_env
from prize_allocator.core.config_loader import (
    dump_criteria, dump_rules, load_tournament_config, parse_config, parse_criteria, parse_rules,
)
from prize_allocator.core.engine import AllocationService, run_allocation
from prize_allocator.core.errors import ConfigError, InputError
from prize_allocator.core.models import (
    AgeCriterion, Competitor, GenderCriterion, InstitutionPrizeGroup, LocationCriterion,
    PrizeCategory, RatingCriterion, RuleConfig, Tournament,
)
from prize_allocator.core.report import result_doc, write_results_json
from prize_allocator.core.store import SnapshotStore

CONFIG = {
    'tournament': {'id': 't1', 'title': 'City Open 2025', 'start_date': '2025-05-10'},
    'rules': {'multi_prize_policy': 'single', 'age_cutoff_policy': 'JAN1_TOURNAMENT_YEAR'},
    'categories': [
        {'id': 'main', 'name': 'Open', 'is_main': True, 'order_idx': 0,
         'prizes': [{'id': 'm1', 'place': 1, 'cash_amount': 5000, 'has_trophy': True},
                    {'id': 'm2', 'place': 2, 'cash_amount': 3000}]},
        {'id': 'girls', 'name': 'Best Girl', 'order_idx': 1,
         'criteria': {'gender': 'F'},
         'prizes': [{'id': 'g1', 'place': 1, 'cash_amount': 1000}]},
        {'id': 'u13', 'name': 'Under 13', 'order_idx': 2,
         'criteria': {'max_age': 13},
         'prizes': [{'id': 'a1', 'place': 1, 'has_medal': True}]},
    ],
    'institution_groups': [
        {'id': 'school', 'name': 'Best School', 'group_by': 'club', 'team_size': 2,
         'female_slots': 1, 'prizes': [{'id': 'ip1', 'place': 1}, {'id': 'ip2', 'place': 2}]},
    ],
}

ROSTER = [
    Competitor(id='1', name='Asha Rao', rank=1, rating=1900, gender='F', club='Rooks',
               dob=datetime.date(2008, 3, 1)),
    Competitor(id='2', name='Bala K', rank=2, rating=1850, gender='M', club='Rooks',
               dob=datetime.date(2013, 7, 1)),
    Competitor(id='3', name='Chitra S', rank=3, rating=1700, gender='F', club='Knights',
               dob=datetime.date(2012, 2, 2), flags=('dob_year_only',)),
    Competitor(id='4', name='Dev M', rank=4, rating=None, club='Knights'),
    Competitor(id='5', name='Esha P', rank=5, rating=1500, gender='F', club='Bishops'),
]


@pytest.fixture(scope='module')
def config():
    return parse_config(CONFIG)


@pytest.fixture(scope='module')
def store(config):
    s = SnapshotStore()
    s.save_config(config)
    s.replace_competitors('t1', ROSTER)
    yield s
    s.close()


# ─── Configuration ──────────────────────────────────────────────────

class TestConfigLoader:
    def test_parse(self, config):
        assert config.tournament.start_date == datetime.date(2025, 5, 10)
        assert [c.id for c in config.categories] == ['main', 'girls', 'u13']
        assert config.categories[1].criteria == (GenderCriterion('F'),)
        assert config.institution_groups[0].female_slots == 1

    def test_criteria_variants(self):
        criteria = parse_criteria({'gender': 'girls', 'min_age': 8, 'max_age': '13',
                                   'max_rating': 1600, 'include_unrated': 'yes',
                                   'allowed_states': 'MH', 'allowed_clubs': ['Rooks', ' ']})
        assert criteria == (
            GenderCriterion('F'),
            AgeCriterion(8, 13, None),
            RatingCriterion(None, 1600, True),
            LocationCriterion('state', ('MH',)),
            LocationCriterion('club', ('Rooks',)),
        )

    def test_criteria_round_trip(self):
        criteria = (GenderCriterion('M'), AgeCriterion(max_age=11, max_age_inclusive=False),
                    LocationCriterion('disability', ('PWD',)))
        assert parse_criteria(dump_criteria(criteria)) == criteria

    def test_rules_round_trip(self):
        rules = RuleConfig(age_cutoff_policy='CUSTOM_DATE', age_cutoff_date=datetime.date(2024, 9, 1),
                           non_cash_priority_mode='MGT', max_age_inclusive=False)
        assert parse_rules(dump_rules(rules)) == rules

    def test_open_gender_adds_no_criterion(self):
        assert parse_criteria({'gender': 'open'}) == ()
        assert parse_criteria(None) == ()

    @pytest.mark.parametrize('doc', [
        {'multi_prize_policy': 'double'},
        {'non_cash_priority_mode': 'TTM'},
        {'age_cutoff_date': '10/05/2025'},
        {'prize_mode': 'cash'},
    ])
    def test_bad_rules(self, doc):
        with pytest.raises(ConfigError):
            parse_rules(doc)

    def test_bad_criteria(self):
        with pytest.raises(ConfigError):
            parse_criteria({'gender': 'X'})
        with pytest.raises(ConfigError):
            parse_criteria({'max_age': 'twelve'})

    def test_prize_needs_place(self):
        data = dict(CONFIG, categories=[{'id': 'c', 'prizes': [{'id': 'p'}]}])
        with pytest.raises(ConfigError):
            parse_config(data)
        data = dict(CONFIG, categories=[{'id': 'c', 'prizes': [{'id': 'p', 'place': 0}]}])
        with pytest.raises(ConfigError):
            parse_config(data)

    def test_two_main_categories(self):
        data = dict(CONFIG, categories=[{'id': 'a', 'is_main': True}, {'id': 'b', 'is_main': True}])
        with pytest.raises(ConfigError, match='Only one main category'):
            parse_config(data)

    def test_unknown_ranking_metric(self):
        data = dict(CONFIG, categories=[{'id': 'a', 'ranking': 'oldest'}])
        with pytest.raises(ConfigError):
            parse_config(data)

    def test_missing_tournament_id(self):
        with pytest.raises(InputError):
            parse_config({'tournament': {'title': 'x'}})

    def test_prize_ids_unique_across_categories(self):
        data = dict(CONFIG, categories=[
            {'id': 'a', 'is_main': True, 'prizes': [{'id': 'p1', 'place': 1}]},
            {'id': 'b', 'prizes': [{'id': 'p1', 'place': 1}]},
        ])
        with pytest.raises(ConfigError, match='Prize ids must be unique.*p1'):
            parse_config(data)

    def test_group_and_team_prize_ids_unique(self):
        group = CONFIG['institution_groups'][0]
        with pytest.raises(ConfigError, match='Institution group ids'):
            parse_config(dict(CONFIG, institution_groups=[group, dict(group, name='Again')]))
        repeated = dict(group, prizes=[{'id': 'ip1', 'place': 1}, {'id': 'ip1', 'place': 2}])
        with pytest.raises(ConfigError, match='Institution prize ids'):
            parse_config(dict(CONFIG, institution_groups=[repeated]))

    def test_non_numeric_cash(self):
        data = dict(CONFIG, categories=[
            {'id': 'a', 'prizes': [{'id': 'p1', 'place': 1, 'cash_amount': 'five'}]}])
        with pytest.raises(ConfigError, match='category a cash_amount'):
            parse_config(data)

    def test_cash_accepts_numeric_strings(self):
        data = dict(CONFIG, categories=[
            {'id': 'a', 'prizes': [{'id': 'p1', 'place': 1, 'cash_amount': '2500'}]}])
        assert parse_config(data).categories[0].prizes[0].cash_amount == 2500.0

    def test_start_date_required(self):
        with pytest.raises(ConfigError, match='start_date'):
            parse_config(dict(CONFIG, tournament={'id': 't1', 'title': 'No date'}))

    def test_load_file_errors(self, tmp_path):
        with pytest.raises(InputError):
            load_tournament_config(str(tmp_path / 'missing.json'))
        bad = tmp_path / 'bad.json'
        bad.write_text('{"tournament": ', encoding='utf-8')
        with pytest.raises(ConfigError):
            load_tournament_config(str(bad))


# ─── Snapshot store ─────────────────────────────────────────────────

class TestSnapshotStore:
    def test_snapshot_round_trip(self, store, config):
        snapshot = store.load_snapshot('t1')
        assert snapshot.tournament == config.tournament
        assert snapshot.rules == config.rules
        assert snapshot.categories == config.categories
        assert snapshot.institution_groups == config.institution_groups
        assert snapshot.competitors == tuple(ROSTER)

    def test_unknown_tournament(self, store):
        with pytest.raises(InputError, match='Unknown tournament: nope'):
            store.load_snapshot('nope')

    def test_rule_config_upsert(self):
        with SnapshotStore() as s:
            s.upsert_rule_config('t9', RuleConfig())
            s.upsert_rule_config('t9', RuleConfig(multi_prize_policy='unlimited'))
            assert s.rule_config_count('t9') == 1
            row = s.conn.execute('SELECT rules_json FROM rule_config').fetchone()
            assert json.loads(row['rules_json'])['multi_prize_policy'] == 'unlimited'

    def test_second_main_refused(self, config):
        with SnapshotStore() as s:
            s.save_config(config)
            extra = PrizeCategory(id='main2', name='Open B', order_idx=9, is_main=True)
            with pytest.raises(ConfigError):
                s.add_category('t1', extra)
            s.add_category('t1', PrizeCategory(id='side', name='Side', order_idx=9))
            assert [c.id for c in s.load_snapshot('t1').categories] == ['main', 'girls', 'u13', 'side']

    def test_repeated_group_ids_refused(self):
        with SnapshotStore() as s:
            group = InstitutionPrizeGroup(id='g', name='G', group_by='club', team_size=2)
            with pytest.raises(ConfigError):
                s.save_institution_groups('t1', [group, group])

    def test_group_slot_overflow_refused(self):
        with SnapshotStore() as s:
            group = InstitutionPrizeGroup(id='g', name='G', group_by='club', team_size=2,
                                          female_slots=2, male_slots=1)
            with pytest.raises(ConfigError):
                s.save_institution_groups('t1', [group])

    def test_replace_competitors(self, config):
        with SnapshotStore() as s:
            s.save_config(config)
            assert s.replace_competitors('t1', ROSTER) == 5
            assert s.replace_competitors('t1', ROSTER[:2]) == 2
            assert len(s.load_snapshot('t1').competitors) == 2

    def test_file_database(self, tmp_path, config):
        db_path = str(tmp_path / 'alloc.db')
        with SnapshotStore(db_path) as s:
            s.save_config(config)
        with SnapshotStore(db_path) as s:
            assert s.load_snapshot('t1').tournament.title == 'City Open 2025'


# ─── Result cache ───────────────────────────────────────────────────

class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class CountingStore:
    """Store wrapper counting snapshot reads."""

    def __init__(self, store):
        self.store = store
        self.loads = 0

    def load_snapshot(self, tournament_id):
        self.loads += 1
        return self.store.load_snapshot(tournament_id)


class TestResultCache:
    def test_ttl(self):
        clock = FakeClock()
        cache = ResultCache(ttl_seconds=10, clock=clock)
        cache.set(cache.key('t1'), 'result')
        clock.now = 9.9
        assert cache.get(cache.key('t1')) == 'result'
        clock.now = 10.0
        assert cache.get(cache.key('t1')) is None
        assert len(cache) == 0

    def test_eviction(self):
        cache = ResultCache(max_entries=2)
        for tid in ('a', 'b', 'c'):
            cache.set(cache.key(tid), tid)
        assert cache.get(cache.key('a')) is None
        assert cache.get(cache.key('c')) == 'c'

    def test_version_in_key(self):
        cache = ResultCache()
        cache.set(cache.key('t1', 'v1'), 'one')
        assert cache.get(cache.key('t1', 'v2')) is None
        cache.invalidate('t1')
        assert cache.get(cache.key('t1', 'v1')) is None

    def test_ttl_from_env(self, monkeypatch):
        monkeypatch.setenv('ALLOC_CACHE_TTL_SECONDS', '42')
        assert ttl_from_env() == 42.0
        monkeypatch.setenv('ALLOC_CACHE_TTL_SECONDS', 'soon')
        assert ttl_from_env() == 300.0
        monkeypatch.delenv('ALLOC_CACHE_TTL_SECONDS')
        assert ttl_from_env(5) == 5

    def test_service_reads_once_per_window(self, store):
        clock = FakeClock()
        counting = CountingStore(store)
        service = AllocationService(counting, ResultCache(ttl_seconds=60, clock=clock))
        first = service.run('t1')
        assert service.run('t1') is first
        assert counting.loads == 1
        clock.now = 61
        assert service.run('t1') == first
        assert counting.loads == 2


# ─── Allocation runs ────────────────────────────────────────────────

class TestAllocationService:
    def test_blank_id(self, store):
        with pytest.raises(InputError, match='tournament_id is required'):
            AllocationService(store).run('  ')

    def test_unknown_id(self, store):
        with pytest.raises(InputError):
            AllocationService(store).run('t404')

    def test_verbose_env_leaves_logger_levels_alone(self, store, monkeypatch):
        monkeypatch.setenv('ALLOC_VERBOSE_LOGS', '1')
        package_logger = logging.getLogger('prize_allocator')
        before = package_logger.level
        AllocationService(store).run('t1')
        assert package_logger.level == before

    def test_missing_start_date(self):
        with SnapshotStore() as s:
            s.save_tournament(Tournament('t2', 'Undated'))
            s.replace_competitors('t2', ROSTER)
            with pytest.raises(InputError, match='start_date'):
                AllocationService(s).run('t2')

    def test_run(self, store):
        result = AllocationService(store).run('t1')
        winners = {w.prize_id: w.competitor_id for w in result.individual.winners}
        assert winners == {'m1': '1', 'm2': '2', 'g1': '3'}
        assert result.individual.unfilled[0][0] == 'a1'
        assert result.competitor_count == 5


class TestRunAllocation:
    def test_individual_and_team_prizes_combine(self, store):
        snapshot = store.load_snapshot('t1')
        result = run_allocation(snapshot)
        individual = {w.competitor_id for w in result.individual.winners}
        group = result.groups[0]
        rooks = group.prizes[0].team
        assert rooks.institution == 'Rooks'
        assert rooks.total_points == 5 + 4
        # team prizes ignore the individual stacking policy
        assert {m.competitor_id for m in rooks.members} <= individual
        assert group.prizes[1].team.institution == 'Knights'
        assert group.ineligible_reasons == ('Bishops: needs 2 players, has 1',)

    def test_age_category_uses_jan1_cutoff(self, store):
        result = run_allocation(store.load_snapshot('t1'))
        u13 = next(c for c in result.individual.coverage if c.prize_id == 'a1')
        # both under-13s already hold a prize; Asha is 16 and two have no date of birth
        assert u13.winner_id is None
        assert u13.reason_codes == ('age_above_max', 'dob_missing', 'prize_limit_reached')

    def test_manual_override(self, store):
        result = run_allocation(store.load_snapshot('t1'), overrides=[('m1', '5')])
        winners = {w.prize_id: w.competitor_id for w in result.individual.winners}
        assert winners['m1'] == '5'
        assert winners['m2'] == '1'

    def test_results_json(self, store, tmp_path):
        snapshot = store.load_snapshot('t1')
        result = run_allocation(snapshot)
        path = write_results_json(result, snapshot, str(tmp_path / 'out' / 'results.json'))
        with open(path, encoding='utf-8') as f:
            doc = json.load(f)
        assert doc == json.loads(json.dumps(result_doc(result, snapshot)))
        assert set(doc) == {'tournament_id', 'competitor_count', 'winners', 'unfilled',
                            'coverage', 'institution_groups'}
        winner = doc['institution_groups'][0]['prizes'][0]['winner']
        assert winner['key'] == 'Rooks'
        assert [m['competitor_id'] for m in winner['members']] == ['1', '2']


# ─── Command line ───────────────────────────────────────────────────

class TestCli:
    def test_end_to_end(self, tmp_path, capsys):
        roster = tmp_path / 'roster.csv'
        roster.write_text(
            'Rank,Name,Gender,Rtg,DOB,Club\n'
            '1,Asha Rao,F,1900,2008-03-01,rooks\n'
            '2,Bala K,M,1850,01/07/2013,Rooks\n'
            '3,Chitra S,F,1700,2012,Knights\n'
            '4,Dev M,,,,Knights\n',
            encoding='utf-8')
        config_path = tmp_path / 'tournament.json'
        config_path.write_text(json.dumps(CONFIG), encoding='utf-8')
        out_dir = tmp_path / 'out'

        main(['--source', 'generic', '--roster', str(roster), '--config', str(config_path),
              '--output', str(out_dir)])

        printed = capsys.readouterr().out
        assert 'Imported 4 of 4 rows' in printed
        assert 'Done!' in printed
        assert os.path.exists(out_dir / 'prize_allocator.db')
        with open(out_dir / 'results.json', encoding='utf-8') as f:
            doc = json.load(f)
        winners = {w['prize_id']: w['competitor_id'] for w in doc['winners']}
        assert winners['m1'] == '1'
        assert winners['g1'] == '3'
        team = doc['institution_groups'][0]['prizes'][0]['winner']
        assert team['key'] == 'Rooks'

    def test_repeated_prize_id_exits(self, tmp_path, capsys):
        roster = tmp_path / 'roster.csv'
        roster.write_text('Rank,Name\n1,A\n', encoding='utf-8')
        config_path = tmp_path / 'tournament.json'
        config_path.write_text(json.dumps(dict(CONFIG, categories=[
            {'id': 'a', 'is_main': True, 'prizes': [{'id': 'p1', 'place': 1}]},
            {'id': 'b', 'prizes': [{'id': 'p1', 'place': 1}]},
        ])), encoding='utf-8')
        with pytest.raises(SystemExit) as exc:
            main(['--source', 'generic', '--roster', str(roster),
                  '--config', str(config_path), '--output', str(tmp_path / 'out')])
        assert exc.value.code == 1
        assert 'Error: Prize ids must be unique' in capsys.readouterr().out

    def test_missing_roster_exits(self, tmp_path, capsys):
        config_path = tmp_path / 'tournament.json'
        config_path.write_text(json.dumps(CONFIG), encoding='utf-8')
        with pytest.raises(SystemExit) as exc:
            main(['--source', 'generic', '--roster', str(tmp_path / 'nope.csv'),
                  '--config', str(config_path), '--output', str(tmp_path / 'out')])
        assert exc.value.code == 1
        assert 'Error: Roster file not found' in capsys.readouterr().out

    def test_missing_config_exits(self, tmp_path, capsys):
        roster = tmp_path / 'roster.csv'
        roster.write_text('Rank,Name\n1,A\n', encoding='utf-8')
        with pytest.raises(SystemExit) as exc:
            main(['--source', 'generic', '--roster', str(roster),
                  '--config', str(tmp_path / 'none.json'), '--output', str(tmp_path)])
        assert exc.value.code == 1
        assert 'Error: Configuration file not found' in capsys.readouterr().out
