from datetime import date, timedelta

import pytest

from config import TestConfig
from clubhouse import create_app
from clubhouse.extensions import db
from clubhouse.models import (User, Club, Player, RoleType, PointSystemTemplate, Tournament,
                              TournamentParticipant)


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin(app):
    user = User(username='admin', email='admin@example.com')
    user.set_password('secret-password')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def auth_client(client, admin):
    response = client.post('/login', data={'username': 'admin', 'password': 'secret-password'})
    assert response.status_code == 302
    return client


@pytest.fixture
def make_club(app):
    def _make(name='Riverside FC', **kwargs):
        club = Club(name=name, **kwargs)
        db.session.add(club)
        db.session.commit()
        return club
    return _make


@pytest.fixture
def make_player(app):
    def _make(name, club=None, roles=(RoleType.PLAYER,), **kwargs):
        player = Player(name=name, **kwargs)
        player.join_club(club)
        player.set_roles(list(roles))
        db.session.add(player)
        db.session.commit()
        return player
    return _make


@pytest.fixture
def make_template(app):
    def _make(name='League', **kwargs):
        template = PointSystemTemplate(name=name, **kwargs)
        db.session.add(template)
        db.session.commit()
        return template
    return _make


@pytest.fixture
def make_tournament(app):
    def _make(name='Spring Cup', players=(), start=None, end=None, **kwargs):
        start = start or date.today() - timedelta(days=7)
        tournament = Tournament(name=name, start_date=start, end_date=end, **kwargs)
        for player in players:
            tournament.participants.append(TournamentParticipant(player=player))
        db.session.add(tournament)
        db.session.commit()
        return tournament
    return _make


@pytest.fixture
def league(make_club, make_player, make_tournament):
    """Two clubs, four players, one running tournament with everyone registered."""
    red = make_club('Red')
    blue = make_club('Blue')
    players = [
        make_player('Alice', red, email='alice@example.com'),
        make_player('Bob', red, email='bob@example.com'),
        make_player('Carol', blue, email='carol@example.com'),
        make_player('Dan', blue, email='dan@example.com'),
    ]
    tournament = make_tournament(players=players)
    return {'clubs': (red, blue), 'players': players, 'tournament': tournament}
