from datetime import date, timedelta

from clubhouse.extensions import db
from clubhouse.models import Match, MatchResult, Tournament, TournamentParticipant, TournamentPlayerStats


def record(client, tournament, winner, loser, goals=(1, 0), match_date='2024-03-01'):
    response = client.post(f'/api/tournaments/{tournament.id}/matches', json={
        'matchDate': match_date,
        'results': [
            {'playerId': winner.id, 'outcome': 'WIN', 'goalsScored': goals[0], 'goalsConceded': goals[1]},
            {'playerId': loser.id, 'outcome': 'LOSS', 'goalsScored': goals[1], 'goalsConceded': goals[0]},
        ],
    })
    assert response.status_code == 201, response.get_json()
    return response.get_json()


def test_create_tournament(auth_client, make_club):
    club = make_club()
    response = auth_client.post('/api/tournaments', json={
        'name': 'Summer League', 'startDate': '2030-06-01', 'endDate': '2030-08-31',
        'clubId': club.id, 'pointsPerWin': 2,
    })
    assert response.status_code == 201
    body = response.get_json()
    assert body['status'] == 'upcoming'
    assert body['clubId'] == club.id
    assert body['pointSystem']['pointsPerWin'] == 2
    assert body['pointSystem']['pointsPerDraw'] == 1


def test_create_tournament_validation(auth_client):
    response = auth_client.post('/api/tournaments', json={
        'name': 'Backwards', 'startDate': '2024-06-01', 'endDate': '2024-05-01',
    })
    assert response.status_code == 400
    assert response.get_json()['details'] == {'form': ['End date must be on or after start date']}

    response = auth_client.post('/api/tournaments', json={'name': 'Negative', 'startDate': '2024-06-01',
                                                          'pointsPerWin': -1})
    assert response.status_code == 400
    assert 'pointsPerWin' in response.get_json()['details']

    response = auth_client.post('/api/tournaments', json={'name': 'Orphan', 'startDate': '2024-06-01',
                                                          'pointSystemTemplateId': 77})
    assert response.status_code == 404
    assert response.get_json()['error'] == 'Point system not found'


def test_update_checks_dates_against_stored_values(auth_client, make_tournament):
    tournament = make_tournament(start=date(2024, 5, 1))
    response = auth_client.put(f'/api/tournaments/{tournament.id}', json={'endDate': '2024-04-01'})
    assert response.status_code == 400
    assert response.get_json()['error'] == 'End date must be on or after start date'

    response = auth_client.put(f'/api/tournaments/{tournament.id}', json={'endDate': '2024-05-31'})
    assert response.status_code == 200
    assert response.get_json()['status'] == 'completed'


def test_status_filter(auth_client, make_tournament):
    today = date.today()
    make_tournament('Past', start=today - timedelta(days=30), end=today - timedelta(days=1))
    make_tournament('Now', start=today - timedelta(days=1))
    make_tournament('Later', start=today + timedelta(days=10))

    def names(status):
        body = auth_client.get(f'/api/tournaments?status={status}').get_json()
        return [t['name'] for t in body['tournaments']]

    assert names('upcoming') == ['Later']
    assert names('active') == ['Now']
    assert names('completed') == ['Past']
    assert len(auth_client.get('/api/tournaments').get_json()['tournaments']) == 3


def test_add_participants(auth_client, make_tournament, make_player):
    tournament = make_tournament()
    ann = make_player('Ann')
    ben = make_player('Ben')

    response = auth_client.post(f'/api/tournaments/{tournament.id}/participants',
                                json={'playerIds': [ann.id, ben.id, ann.id]})
    assert response.status_code == 201
    assert response.get_json()['message'] == 'Successfully added 2 participant(s) to the tournament'

    response = auth_client.post(f'/api/tournaments/{tournament.id}/participants', json={'playerIds': [ann.id]})
    assert response.status_code == 409
    assert response.get_json()['error'] == 'Player(s) Ann are already participants in this tournament'

    response = auth_client.post(f'/api/tournaments/{tournament.id}/participants', json={'playerIds': [404, 405]})
    assert response.status_code == 404
    assert response.get_json()['error'] == 'Player(s) with ID(s) 404, 405 not found'

    response = auth_client.post(f'/api/tournaments/{tournament.id}/participants', json={'playerIds': []})
    assert response.status_code == 400

    listing = auth_client.get(f'/api/tournaments/{tournament.id}/participants').get_json()
    assert [p['name'] for p in listing['participants']] == ['Ann', 'Ben']


def test_remove_participant_deletes_their_results(auth_client, league):
    tournament = league['tournament']
    alice, bob, carol = league['players'][:3]
    record(auth_client, tournament, alice, bob)
    record(auth_client, tournament, carol, alice)

    response = auth_client.delete(f'/api/tournaments/{tournament.id}/participants/{alice.id}')
    body = response.get_json()
    assert body['deletedMatchResults'] == 2
    assert body['warning'] == 'This player had 2 match result(s) which have been deleted'

    assert MatchResult.query.filter_by(player_id=alice.id).count() == 0
    assert TournamentPlayerStats.query.filter_by(player_id=alice.id).count() == 0
    assert TournamentParticipant.query.filter_by(player_id=alice.id).count() == 0
    assert MatchResult.query.filter_by(player_id=bob.id).count() == 1

    quiet = auth_client.delete(f"/api/tournaments/{tournament.id}/participants/{league['players'][3].id}")
    assert quiet.get_json()['deletedMatchResults'] == 0
    assert 'warning' not in quiet.get_json()

    assert auth_client.delete(f'/api/tournaments/{tournament.id}/participants/{alice.id}').status_code == 404


def test_changing_scoring_rescores_recorded_matches(auth_client, league, make_template):
    tournament = league['tournament']
    alice, bob = league['players'][:2]
    record(auth_client, tournament, alice, bob, goals=(2, 0))

    response = auth_client.put(f'/api/tournaments/{tournament.id}', json={'pointsPerWin': 5, 'pointsPerGoalScored': 1})
    assert response.status_code == 200
    board = auth_client.get(f'/api/tournaments/{tournament.id}/leaderboard').get_json()['leaderboard']
    assert board[0]['playerName'] == 'Alice'
    assert board[0]['totalPoints'] == 7

    template = make_template(points_per_win=1)
    auth_client.put(f'/api/tournaments/{tournament.id}', json={'pointSystemTemplateId': template.id})
    board = auth_client.get(f'/api/tournaments/{tournament.id}/leaderboard').get_json()['leaderboard']
    assert board[0]['totalPoints'] == 1


def test_player_stats_and_recalculate_endpoints(auth_client, league):
    tournament = league['tournament']
    alice, bob = league['players'][:2]
    record(auth_client, tournament, alice, bob)

    body = auth_client.get(f'/api/tournaments/{tournament.id}/player-stats').get_json()
    assert [p['name'] for p in body['players']] == ['Alice', 'Bob']
    assert body['players'][0]['winRate'] == 100.0

    TournamentPlayerStats.query.delete()
    db.session.commit()
    response = auth_client.post(f'/api/tournaments/{tournament.id}/recalculate-stats', json={})
    assert response.get_json()['playersUpdated'] == 4
    assert TournamentPlayerStats.query.count() == 4


def test_tournament_detail_and_delete(auth_client, league):
    tournament = league['tournament']
    alice, bob = league['players'][:2]
    record(auth_client, tournament, alice, bob)

    body = auth_client.get(f'/api/tournaments/{tournament.id}').get_json()
    assert body['status'] == 'active'
    assert body['participantCount'] == 4
    assert body['matchCount'] == 1
    assert body['pointSystemTemplate'] is None
    assert auth_client.get(f'/api/tournaments/{tournament.id}/stages').get_json() == {'stages': []}

    assert auth_client.delete(f'/api/tournaments/{tournament.id}').status_code == 200
    assert db.session.get(Tournament, tournament.id) is None
    assert Match.query.count() == 0
    assert MatchResult.query.count() == 0


def test_tournament_pages(auth_client, league, make_player):
    tournament = league['tournament']
    for path in ('/dashboard/tournaments', '/dashboard/tournaments?status=active', '/dashboard/tournaments/new',
                 f'/dashboard/tournaments/{tournament.id}', f'/dashboard/tournaments/{tournament.id}/edit',
                 f'/dashboard/tournaments/{tournament.id}/leaderboard',
                 f'/dashboard/tournaments/{tournament.id}/player-stats'):
        assert auth_client.get(path).status_code == 200, path

    response = auth_client.post('/dashboard/tournaments/new', data={'name': 'Form Cup', 'start_date': '2024-01-01',
                                                                    'end_date': '', 'club_id': ''})
    assert response.status_code == 302
    created = Tournament.query.filter_by(name='Form Cup').one()
    assert created.end_date is None

    newcomer = make_player('Eve')
    response = auth_client.post(f'/dashboard/tournaments/{created.id}/participants',
                                data={'player_ids': [str(newcomer.id)]})
    assert response.status_code == 302
    assert [p.name for p in created.participant_players] == ['Eve']

    response = auth_client.post(f'/dashboard/tournaments/{created.id}/participants/{newcomer.id}/delete')
    assert response.status_code == 302
    assert TournamentParticipant.query.filter_by(tournament_id=created.id).count() == 0
