from datetime import date
from flask import Blueprint, render_template, jsonify, request
from flask_login import login_required
from sqlalchemy import func, or_
from ..extensions import db
from ..models import Club, Player, Tournament, Match, PointSystemTemplate
from ..utils import player_leaderboard, club_leaderboard

main_bp = Blueprint('main', __name__)


def search_clubs_and_players(term, kind=None):
    term = (term or '').strip()
    if not term:
        return [], []
    pattern = f"%{term}%"

    clubs, players = [], []
    if not kind or kind == 'club':
        clubs = Club.query.filter(or_(
            Club.name.ilike(pattern),
            Club.description.ilike(pattern),
        )).order_by(Club.name).limit(10).all()
    if not kind or kind == 'player':
        players = Player.query.filter(or_(
            Player.name.ilike(pattern),
            Player.email.ilike(pattern),
            Player.place.ilike(pattern),
        )).order_by(Player.name).limit(20).all()
    return clubs, players


@main_bp.route('/dashboard')
@login_required
def dashboard():
    counts = {
        'clubs': db.session.query(func.count(Club.id)).scalar(),
        'players': db.session.query(func.count(Player.id)).scalar(),
        'free_agents': db.session.query(func.count(Player.id)).filter(Player.club_id.is_(None)).scalar(),
        'tournaments': db.session.query(func.count(Tournament.id)).scalar(),
        'matches': db.session.query(func.count(Match.id)).scalar(),
        'point_systems': db.session.query(func.count(PointSystemTemplate.id)).scalar(),
    }
    recent_matches = Match.query.order_by(Match.match_date.desc(), Match.id.desc()).limit(5).all()
    today = date.today()
    active_tournaments = Tournament.query.filter(
        Tournament.start_date <= today,
        or_(Tournament.end_date.is_(None), Tournament.end_date >= today)
    ).order_by(Tournament.start_date.desc()).all()
    return render_template('dashboard.html', counts=counts, recent_matches=recent_matches,
                           active_tournaments=active_tournaments)


@main_bp.route('/dashboard/search')
@login_required
def search():
    q = request.args.get('q', '')
    kind = request.args.get('type') or None
    clubs, players = search_clubs_and_players(q, kind)
    return render_template('search.html', q=q, kind=kind, clubs=clubs, players=players)


@main_bp.route('/dashboard/leaderboard')
@login_required
def leaderboard():
    tournament_id = request.args.get('tournament', type=int)
    tournaments = Tournament.query.order_by(Tournament.start_date.desc()).all()
    return render_template('leaderboard.html', tournaments=tournaments, tournament_id=tournament_id,
                           players=player_leaderboard(tournament_id), clubs=club_leaderboard(tournament_id))


@main_bp.route('/api/search')
@login_required
def api_search():
    clubs, players = search_clubs_and_players(request.args.get('q'), request.args.get('type') or None)
    return jsonify({
        'clubs': [c.to_dict(with_counts=True) for c in clubs],
        'players': [p.to_dict(with_club=True) for p in players],
    })
