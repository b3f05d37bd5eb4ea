import pytest

from clubhouse.extensions import db
from clubhouse.models import ConditionalRule, Match, PointSystemTemplate, StagePoint


def test_create_point_system_with_rules_and_stages(auth_client):
    response = auth_client.post('/api/point-systems', json={
        'name': 'Cup Rules',
        'pointsPerWin': 2,
        'pointsForWalkoverLoss': -1,
        'conditionalRules': [
            {'conditionType': 'CLEAN_SHEET', 'operator': 'EQUALS', 'threshold': 0, 'pointAdjustment': 1},
        ],
        'stages': [{'stageName': 'Final', 'stageOrder': 2, 'pointsPerWin': 6}],
    })
    assert response.status_code == 201
    body = response.get_json()
    assert body['pointsPerWin'] == 2
    assert body['pointsPerDraw'] == 1
    assert body['pointsForWalkoverLoss'] == -1
    assert body['conditionalRules'][0]['conditionType'] == 'CLEAN_SHEET'
    assert body['stages'][0]['name'] == 'Final'
    assert body['tournamentCount'] == 0


def test_point_system_names_are_unique(auth_client, make_template):
    make_template('League')
    response = auth_client.post('/api/point-systems', json={'name': 'league'})
    assert response.status_code == 409
    assert response.get_json()['error'] == 'A point system with this name already exists'

    other = make_template('Cup')
    response = auth_client.put(f'/api/point-systems/{other.id}', json={'name': 'LEAGUE'})
    assert response.status_code == 409
    response = auth_client.put(f'/api/point-systems/{other.id}', json={'name': 'Cup', 'pointsPerWin': 4})
    assert response.get_json()['pointsPerWin'] == 4


def test_search_point_systems(auth_client, make_template):
    make_template('League')
    make_template('Knockout')
    body = auth_client.get('/api/point-systems?search=knock').get_json()
    assert [t['name'] for t in body['pointSystems']] == ['Knockout']


@pytest.mark.parametrize('rule, message', [
    ({'conditionType': 'GOALS_SCORED_THRESHOLD', 'operator': 'GREATER_THAN', 'threshold': -1, 'pointAdjustment': 1},
     'Threshold must be non-negative for goal-based conditions'),
    ({'conditionType': 'CLEAN_SHEET', 'operator': 'GREATER_THAN', 'threshold': 0, 'pointAdjustment': 1},
     'Clean sheet condition must use EQUALS operator with threshold 0'),
    ({'conditionType': 'CLEAN_SHEET', 'operator': 'EQUALS', 'threshold': 1, 'pointAdjustment': 1},
     'Clean sheet condition must use EQUALS operator with threshold 0'),
])
def test_rule_validation(auth_client, make_template, rule, message):
    template = make_template()
    response = auth_client.post(f'/api/point-systems/{template.id}/rules', json=rule)
    assert response.status_code == 400
    assert response.get_json()['details'] == {'form': [message]}


def test_rule_crud(auth_client, make_template):
    template = make_template()
    response = auth_client.post(f'/api/point-systems/{template.id}/rules', json={
        'conditionType': 'GOALS_SCORED_THRESHOLD', 'operator': 'GREATER_THAN_OR_EQUAL',
        'threshold': 3, 'pointAdjustment': 2,
    })
    assert response.status_code == 201
    rule_id = response.get_json()['id']

    response = auth_client.put(f'/api/point-systems/{template.id}/rules/{rule_id}', json={'pointAdjustment': 5})
    assert response.get_json()['pointAdjustment'] == 5
    assert response.get_json()['threshold'] == 3

    # the merged rule is validated as a whole
    response = auth_client.put(f'/api/point-systems/{template.id}/rules/{rule_id}',
                               json={'conditionType': 'CLEAN_SHEET'})
    assert response.status_code == 400

    other = make_template('Other')
    assert auth_client.get(f'/api/point-systems/{other.id}/rules/{rule_id}').status_code == 404

    assert auth_client.delete(f'/api/point-systems/{template.id}/rules/{rule_id}').status_code == 200
    assert ConditionalRule.query.count() == 0


def test_delete_point_system_in_use_is_refused(auth_client, make_template, make_tournament):
    template = make_template()
    make_tournament(point_system_template=template)
    response = auth_client.delete(f'/api/point-systems/{template.id}')
    assert response.status_code == 409
    assert response.get_json()['code'] == 'CONFLICT'

    unused = make_template('Unused')
    assert auth_client.delete(f'/api/point-systems/{unused.id}').status_code == 200
    assert db.session.get(PointSystemTemplate, unused.id) is None


def test_deleting_a_stage_unlinks_its_matches(auth_client, league, make_template):
    template = make_template()
    stage = StagePoint(stage_name='Semi', stage_order=1)
    template.stage_points.append(stage)
    tournament = league['tournament']
    tournament.point_system_template = template
    db.session.commit()

    alice, bob = league['players'][:2]
    response = auth_client.post(f'/api/tournaments/{tournament.id}/matches', json={
        'matchDate': '2024-03-01', 'stageId': stage.id,
        'results': [
            {'playerId': alice.id, 'outcome': 'WIN', 'goalsScored': 1, 'goalsConceded': 0},
            {'playerId': bob.id, 'outcome': 'LOSS', 'goalsScored': 0, 'goalsConceded': 1},
        ],
    })
    assert response.status_code == 201
    assert response.get_json()['stageName'] == 'Semi'

    stages = auth_client.get(f'/api/point-systems/{template.id}/stages').get_json()['stages']
    assert [s['name'] for s in stages] == ['Semi']

    assert auth_client.delete(f'/api/point-systems/{template.id}/stages/{stage.id}').status_code == 200
    match = Match.query.one()
    assert match.stage_id is None
    assert match.stage_name == 'Semi'


def test_point_system_pages(auth_client, make_template):
    template = make_template()
    assert auth_client.get('/dashboard/point-systems').status_code == 200
    assert auth_client.get('/dashboard/point-systems/new').status_code == 200
    assert auth_client.get(f'/dashboard/point-systems/{template.id}').status_code == 200

    response = auth_client.post('/dashboard/point-systems/new', data={'name': 'Form Rules', 'points_per_win': '4',
                                                                      'points_per_draw': ''})
    assert response.status_code == 302
    created = PointSystemTemplate.query.filter_by(name='Form Rules').one()
    assert created.points_per_win == 4
    assert created.points_per_draw == 1

    response = auth_client.post(f'/dashboard/point-systems/{created.id}/rules', data={
        'condition_type': 'CLEAN_SHEET', 'operator': 'EQUALS', 'threshold': '0', 'point_adjustment': '2',
    })
    assert response.status_code == 302
    assert len(created.conditional_rules) == 1

    response = auth_client.post(f'/dashboard/point-systems/{created.id}/stages', data={'stage_name': 'Final'})
    assert response.status_code == 302
    assert created.stage_points[0].stage_name == 'Final'
