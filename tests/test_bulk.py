from datetime import date

import pytest

from clubhouse.bulk import (BulkRow, RowError, parse_match_csv, parse_match_records, resolve_walkover,
                            import_matches, parse_member_csv, parse_member_records, import_members,
                            match_csv_template)
from clubhouse.extensions import db
from clubhouse.models import (ConditionalRule, Match, MatchOutcome, Player, RoleType, RuleConditionType,
                              ComparisonOperator, TournamentPlayerStats, WalkoverType)

HEADER = 'PlayerA,PlayerB,PlayerAGoals,PlayerBGoals,MatchDate,Walkover\n'


def stats_for(tournament, player):
    return TournamentPlayerStats.query.filter_by(tournament_id=tournament.id, player_id=player.id).one()


def test_parse_match_csv_collects_rows_and_row_errors():
    text = HEADER + (
        'Alice,Bob,2,1,2024-03-01,\n'
        '\n'
        'Carol,Dan,x,1,2024-03-01,\n'
        'Carol,Dan,1,-2,2024-03-01,\n'
        'Carol,Dan,1,2,01/03/2024,\n'
        ',Dan,1,2,2024-03-01,\n'
    )
    rows, errors = parse_match_csv(text)
    assert len(rows) == 1
    assert rows[0].player_a == 'Alice'
    assert rows[0].goals_a == 2
    assert rows[0].match_date == date(2024, 3, 1)
    assert errors == [
        'Row 4: PlayerA goals must be a whole number',
        'Row 5: PlayerB goals must be non-negative',
        'Row 6: Match date must be a date in YYYY-MM-DD format',
        'Row 7: Player names are required',
    ]


def test_parse_match_csv_header_problems():
    assert parse_match_csv('') == ([], ['CSV file is empty'])
    rows, errors = parse_match_csv('PlayerA,PlayerB\nAlice,Bob\n')
    assert rows == []
    assert errors == ['Missing required columns: playeragoals, playerbgoals, matchdate']
    assert parse_match_csv(HEADER + '\n') == ([], ['CSV file must contain at least a header row and one data row'])


def test_json_rows_must_be_objects():
    rows, errors = parse_match_records(['Alice,Bob,1,0,2024-01-01', None])
    assert rows == []
    assert errors == ['Row 1: Each row must be an object', 'Row 2: Each row must be an object']
    assert parse_match_records({'playerA': 'Alice'}) == ([], ['Rows must be a list of objects'])

    members, errors = parse_member_records([{'name': 'Zed'}, 'Zoe', 7])
    assert [m['name'] for m in members] == ['Zed']
    assert errors == ['Row 2: Each row must be an object', 'Row 3: Each row must be an object']


def test_parse_match_csv_accepts_bom_and_any_header_case():
    rows, errors = parse_match_csv('\ufeffplayera,PLAYERB,playerAgoals,PlayerBGoals,matchDate\nA,B,0,0,2024-01-02\n')
    assert errors == []
    assert rows[0].walkover == ''


def test_preview_rows_survive_a_round_trip_through_json():
    row = BulkRow(3, 'Alice', 'Bob', 1, 0, date(2024, 5, 1), 'Alice')
    rows, errors = parse_match_records([row.to_dict(), {'playerA': 'X', 'playerB': 'Y'}])
    assert rows[0].line == 3
    assert rows[0].walkover == 'Alice'
    assert errors == ['Row 2: PlayerA goals must be a whole number']


@pytest.mark.parametrize('value, expected', [
    ('', (WalkoverType.NONE, None)),
    ('normal', (WalkoverType.NONE, None)),
    ('BOTH', (WalkoverType.DOUBLE, None)),
    ('alice', (WalkoverType.SINGLE, 'a')),
    (' Bob ', (WalkoverType.SINGLE, 'b')),
])
def test_resolve_walkover(value, expected):
    assert resolve_walkover(value, 'Alice', 'Bob') == expected


def test_resolve_walkover_rejects_unknown_value():
    with pytest.raises(RowError):
        resolve_walkover('Carol', 'Alice', 'Bob')


def test_import_matches_scores_rows_and_skips_bad_ones(league):
    tournament = league['tournament']
    alice, bob, carol, dan = league['players']
    rows, _ = parse_match_csv(HEADER + (
        'alice,BOB,2,1,2024-03-01,normal\n'
        'Carol,Dan,4,4,2024-03-02,Dan\n'
        'Alice,Zed,1,0,2024-03-03,\n'
        'Alice,alice,1,0,2024-03-03,\n'
        'Alice,Carol,1,0,2024-03-03,Bob\n'
    ))

    summary = import_matches(tournament, rows)
    db.session.commit()

    assert summary['added'] == 2
    assert summary['skipped'] == 3
    assert summary['errors'][0] == 'Row 4: Players not found in tournament: Zed'
    assert summary['errors'][1].startswith('Row 5:')
    assert summary['errors'][2].startswith('Row 6: Walkover must be')

    assert stats_for(tournament, alice).total_points == 3
    assert stats_for(tournament, bob).losses == 1

    walkover = Match.query.filter_by(walkover=WalkoverType.SINGLE).one()
    by_player = {r.player_id: r for r in walkover.results}
    assert by_player[dan.id].outcome == MatchOutcome.WIN
    assert by_player[dan.id].goals_scored == 0
    # inline points: a walkover scores like a plain win or loss
    assert by_player[dan.id].points_earned == 3
    assert by_player[carol.id].points_earned == 0


def test_import_matches_double_walkover(league):
    tournament = league['tournament']
    alice, bob = league['players'][:2]
    rows, _ = parse_match_csv(HEADER + 'Alice,Bob,3,0,2024-03-01,both\n')

    import_matches(tournament, rows)
    db.session.commit()

    match = Match.query.one()
    assert match.walkover == WalkoverType.DOUBLE
    assert {r.outcome for r in match.results} == {MatchOutcome.LOSS}
    assert all(r.points_earned == 0 and r.goals_scored == 0 for r in match.results)
    assert stats_for(tournament, alice).losses == 1


def test_import_matches_uses_template_rules_and_walkover_points(league, make_template):
    tournament = league['tournament']
    alice, bob, carol, dan = league['players']
    template = make_template(points_for_walkover_win=4, points_for_walkover_loss=-3)
    template.conditional_rules.append(ConditionalRule(condition_type=RuleConditionType.CLEAN_SHEET,
                                                      operator=ComparisonOperator.EQUALS,
                                                      threshold=0, point_adjustment=1))
    tournament.point_system_template = template
    db.session.commit()

    rows, _ = parse_match_csv(HEADER + 'Alice,Bob,2,0,2024-03-01,\nCarol,Dan,0,0,2024-03-01,Carol\n')
    import_matches(tournament, rows)
    db.session.commit()

    assert stats_for(tournament, alice).total_points == 4
    assert stats_for(tournament, alice).conditional_points == 1
    assert stats_for(tournament, bob).total_points == 0
    assert stats_for(tournament, carol).total_points == 4
    assert stats_for(tournament, dan).total_points == -3


def test_parse_member_csv():
    members, errors = parse_member_csv(
        'Name,Email,State,District,Role\n'
        'Jane,jane@example.com,Seoul,Mapo,captain\n'
        'No Mail,,,,\n'
        'Bad,bad-email,,,\n'
    )
    assert [m['name'] for m in members] == ['Jane', 'No Mail']
    assert members[0]['role'] == 'CAPTAIN'
    assert members[1]['email'] is None
    assert errors == ['Row 4: Invalid email format']


def test_member_rows_follow_player_limits():
    members, errors = parse_member_csv(
        'name,phone,state,district\n'
        + 'N' * 150 + ',,,\n'
        + 'Long Phone,' + '9' * 40 + ',,\n'
        + 'Fine,010,Seoul,Mapo\n'
    )
    assert [m['name'] for m in members] == ['Fine']
    assert members[0]['place'] == 'Mapo, Seoul'
    assert errors[0].startswith('Row 2: name:')
    assert 'at most 100 characters' in errors[0]
    assert errors[1].startswith('Row 3: phone:')
    assert 'at most 20 characters' in errors[1]


def test_import_members_skips_known_emails(league):
    red = league['clubs'][0]
    members, _ = parse_member_csv(
        'name,email,state,district,role\n'
        'Jane,jane@example.com,Seoul,Mapo,captain\n'
        'Alice Again,ALICE@example.com,,,\n'
        'Jane Twin,jane@example.com,,,\n'
        'Kim,,Busan,,wizard\n'
    )
    summary = import_members(red, members)
    db.session.commit()

    assert summary['added'] == 2
    assert summary['skipped'] == 2
    jane = Player.query.filter_by(name='Jane').one()
    assert jane.club_id == red.id
    assert jane.place == 'Mapo, Seoul'
    assert jane.role_values == ['CAPTAIN']
    kim = Player.query.filter_by(name='Kim').one()
    assert kim.role_values == [RoleType.PLAYER.value]
    assert kim.place is None
    assert kim.current_membership.club_id == red.id


def test_match_csv_template_uses_participant_names(league):
    text = match_csv_template(league['tournament'].participant_players)
    lines = text.strip().splitlines()
    assert lines[0] == 'playera,playerb,playeragoals,playerbgoals,matchdate,walkover'
    assert lines[1].startswith('Alice,Bob,')
