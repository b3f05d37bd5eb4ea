from datetime import date

from clubhouse.bulk import BulkRow, import_matches
from clubhouse.extensions import db
from clubhouse.models import Match, MatchResult, MatchOutcome, TournamentPlayerStats
from clubhouse.utils import (assign_ranks, club_leaderboard, player_career_stats, player_leaderboard,
                             recalculate_tournament_statistics, tournament_leaderboard, tournament_player_stats)


def play(tournament, *games):
    rows = [BulkRow(i, a, b, ga, gb, date(2024, 3, i)) for i, (a, b, ga, gb) in enumerate(games, start=1)]
    summary = import_matches(tournament, rows)
    db.session.commit()
    assert summary['errors'] == []


def test_assign_ranks_shares_rank_on_ties():
    rows = [{'pts': 9}, {'pts': 7}, {'pts': 7}, {'pts': 4}]
    assign_ranks(rows, key=lambda r: r['pts'])
    assert [r['rank'] for r in rows] == [1, 2, 2, 4]


def test_tournament_leaderboard_orders_by_points_goals_and_wins(league):
    tournament = league['tournament']
    play(tournament,
         ('Alice', 'Bob', 3, 0),
         ('Carol', 'Dan', 1, 0),
         ('Bob', 'Dan', 2, 2))

    board = tournament_leaderboard(tournament.id)
    assert [row['playerName'] for row in board] == ['Alice', 'Carol', 'Bob', 'Dan']
    # Bob and Dan drew with equal goals and no wins
    assert [row['rank'] for row in board] == [1, 2, 3, 3]
    assert board[0]['goalDifference'] == 3
    assert board[2]['totalPoints'] == 1
    assert board[0]['club']['name'] == 'Red'


def test_tied_players_share_a_rank(league):
    tournament = league['tournament']
    play(tournament, ('Alice', 'Bob', 1, 0), ('Carol', 'Dan', 1, 0))
    board = tournament_leaderboard(tournament.id)
    assert board[0]['rank'] == board[1]['rank'] == 1
    assert board[2]['rank'] == board[3]['rank'] == 3


def test_tournament_player_stats_skips_players_without_matches(league):
    tournament = league['tournament']
    play(tournament, ('Alice', 'Bob', 2, 1), ('Alice', 'Bob', 0, 0), ('Alice', 'Bob', 0, 1))

    rows = {r['name']: r for r in tournament_player_stats(tournament.id)}
    assert set(rows) == {'Alice', 'Bob'}
    alice = rows['Alice']
    assert alice['totalMatches'] == 3
    assert alice['winRate'] == 33.3
    assert alice['avgPointsPerMatch'] == 1.33
    assert alice['avgGoalsPerMatch'] == 0.67
    assert alice['goalDifference'] == 0


def test_recalculate_rebuilds_rows_and_rescores(league):
    tournament = league['tournament']
    alice, bob = league['players'][:2]
    play(tournament, ('Alice', 'Bob', 1, 0))

    TournamentPlayerStats.query.delete()
    tournament.points_per_win = 10
    db.session.commit()

    assert recalculate_tournament_statistics(tournament.id) == 4
    alice_stats = TournamentPlayerStats.query.filter_by(player_id=alice.id).one()
    assert alice_stats.total_points == 3

    recalculate_tournament_statistics(tournament.id, rescore=True)
    db.session.refresh(alice_stats)
    assert alice_stats.total_points == 10
    assert TournamentPlayerStats.query.filter_by(player_id=league['players'][3].id).one().matches_played == 0


def test_recalculate_unknown_tournament_is_a_no_op(app):
    assert recalculate_tournament_statistics(999) == 0


def test_player_and_club_leaderboards(league, make_tournament, make_club):
    tournament = league['tournament']
    alice, bob, carol, dan = league['players']
    make_club('Idle')
    play(tournament, ('Alice', 'Carol', 2, 0), ('Bob', 'Dan', 1, 1))
    other = make_tournament('Autumn Cup', players=[alice, carol])
    play(other, ('Carol', 'Alice', 1, 1))

    everything = player_leaderboard()
    assert everything[0]['player']['name'] == 'Alice'
    assert everything[0]['stats']['totalPoints'] == 4
    assert everything[0]['stats']['totalMatches'] == 2
    assert everything[0]['stats']['winRate'] == 50.0
    assert [row['rank'] for row in everything] == [1, 2, 2, 2]

    autumn = player_leaderboard(other.id)
    assert {row['player']['name'] for row in autumn} == {'Alice', 'Carol'}
    assert [row['rank'] for row in autumn] == [1, 1]
    assert len(player_leaderboard(limit=1)) == 1

    clubs = club_leaderboard()
    assert [row['club']['name'] for row in clubs] == ['Red', 'Blue']
    assert clubs[0]['stats']['totalPoints'] == 5
    assert clubs[0]['stats']['totalPlayers'] == 2
    assert clubs[1]['stats']['totalMatches'] == 3
    assert club_leaderboard(other.id)[0]['stats']['totalMatches'] == 1


def test_player_career_stats(league, make_tournament):
    alice, bob = league['players'][:2]
    play(league['tournament'], ('Alice', 'Bob', 2, 0))
    other = make_tournament('Autumn Cup', players=[alice, bob], start=date(2020, 1, 1))
    play(other, ('Bob', 'Alice', 3, 1))

    career = player_career_stats(alice.id)
    assert [t['tournamentName'] for t in career['tournaments']] == ['Spring Cup', 'Autumn Cup']
    assert career['totals']['matchesPlayed'] == 2
    assert career['totals']['winRate'] == 50.0
    assert career['totals']['goalDifference'] == 0
    assert career['totals']['tournaments'] == 2


def test_walkover_results_keep_walkover_points_on_rescore(league, make_template):
    tournament = league['tournament']
    tournament.point_system_template = make_template(points_for_walkover_win=5, points_for_walkover_loss=-2)
    db.session.commit()
    rows = [BulkRow(1, 'Alice', 'Bob', 0, 0, date(2024, 3, 1), 'Alice')]
    import_matches(tournament, rows)
    db.session.commit()

    recalculate_tournament_statistics(tournament.id, rescore=True)
    points = {r.player.name: r.points_earned for r in MatchResult.query.all()}
    assert points == {'Alice': 5, 'Bob': -2}
    assert Match.query.one().results[0].outcome == MatchOutcome.WIN
