from datetime import date
from flask import Blueprint, render_template, jsonify, request
from ..errors import get_or_404, BadRequestError
from ..models import Club, Match, Player, PlayerRole, RoleType, Tournament
from ..utils import (page_args, pagination_dict, tournament_leaderboard, player_leaderboard,
                     club_leaderboard, player_career_stats)
from .clubs import _club_query, _member_counts, hierarchy_of
from .tournaments import _tournament_query

public_bp = Blueprint('public', __name__)

STATUSES = ('upcoming', 'active', 'completed')


def _status_arg():
    status = request.args.get('status') or None
    if status is not None and status not in STATUSES:
        raise BadRequestError(f'Unknown status: {status}')
    return status


def _public_players(q=None, role=None):
    query = Player.query
    if role:
        query = query.join(PlayerRole).filter(PlayerRole.role == role)
    if q:
        query = query.filter(Player.name.ilike(f"%{q}%"))
    return query.order_by(Player.name.asc())


def _public_player(player):
    # no contact details on the public site
    data = player.to_dict(with_club=True)
    data.pop('email', None)
    data.pop('phone', None)
    return data


def _role_arg():
    value = (request.args.get('role') or '').strip().upper()
    if not value:
        return None
    try:
        return RoleType(value)
    except ValueError:
        raise BadRequestError(f'Unknown role: {value}')


def _featured_tournaments(limit=3):
    """Running tournaments first, topped up with the next ones to start."""
    featured = _tournament_query(status='active').limit(limit).all()
    if len(featured) < limit:
        featured += _tournament_query(status='upcoming').order_by(None).order_by(
            Tournament.start_date.asc()).limit(limit - len(featured)).all()
    return featured


# --- pages ---

@public_bp.route('/')
def home():
    featured = _featured_tournaments()
    recent_matches = Match.query.order_by(Match.match_date.desc(), Match.id.desc()).limit(5).all()
    return render_template('public/home.html', featured=featured, top_players=player_leaderboard(limit=5),
                           recent_matches=recent_matches)


@public_bp.route('/clubs')
def clubs():
    q = request.args.get('q', '').strip()
    page, size = page_args('PUBLIC_PAGE_SIZE')
    pagination = _club_query(q).paginate(page=page, per_page=size, error_out=False)
    return render_template('public/clubs.html', pagination=pagination, clubs=pagination.items,
                           counts=_member_counts(pagination.items), q=q)


@public_bp.route('/clubs/<int:club_id>')
def club_detail(club_id):
    club = get_or_404(Club, club_id, 'Club')
    tournaments = Tournament.query.filter_by(club_id=club.id).order_by(Tournament.start_date.desc()).all()
    return render_template('public/club_detail.html', club=club, hierarchy=hierarchy_of(club),
                           tournaments=tournaments)


@public_bp.route('/players')
def players():
    q = request.args.get('q', '').strip()
    role = _role_arg()
    page, size = page_args('PUBLIC_PAGE_SIZE')
    pagination = _public_players(q, role).paginate(page=page, per_page=size, error_out=False)
    return render_template('public/players.html', pagination=pagination, players=pagination.items,
                           q=q, role=role)


@public_bp.route('/players/<int:player_id>')
def player_detail(player_id):
    player = get_or_404(Player, player_id, 'Player')
    return render_template('public/player_detail.html', player=player, career=player_career_stats(player.id))


@public_bp.route('/tournaments')
def tournaments():
    status = _status_arg()
    page, size = page_args('PUBLIC_PAGE_SIZE')
    pagination = _tournament_query(status=status).paginate(page=page, per_page=size, error_out=False)
    return render_template('public/tournaments.html', pagination=pagination, tournaments=pagination.items,
                           status=status)


@public_bp.route('/tournaments/<int:tournament_id>')
def tournament_detail(tournament_id):
    tournament = get_or_404(Tournament, tournament_id, 'Tournament')
    return render_template('public/tournament_detail.html', tournament=tournament,
                           leaderboard=tournament_leaderboard(tournament.id), matches=tournament.matches)


@public_bp.route('/matches/<int:match_id>')
def match_detail(match_id):
    match = get_or_404(Match, match_id, 'Match')
    return render_template('public/match_detail.html', match=match)


@public_bp.route('/leaderboard')
def leaderboard():
    tournament_id = request.args.get('tournament', type=int)
    all_tournaments = Tournament.query.order_by(Tournament.start_date.desc()).all()
    return render_template('public/leaderboard.html', tournaments=all_tournaments, tournament_id=tournament_id,
                           players=player_leaderboard(tournament_id), clubs=club_leaderboard(tournament_id))


# --- JSON ---

@public_bp.route('/api/public/clubs')
def api_clubs():
    page, size = page_args('PUBLIC_PAGE_SIZE')
    pagination = _club_query(request.args.get('q', '').strip()).paginate(page=page, per_page=size, error_out=False)
    return jsonify({
        'clubs': [c.to_dict(with_counts=True) for c in pagination.items],
        'pagination': pagination_dict(pagination),
    })


@public_bp.route('/api/public/clubs/<int:club_id>')
def api_club(club_id):
    club = get_or_404(Club, club_id, 'Club')
    data = club.to_dict(with_counts=True)
    data['hierarchy'] = {role: [_public_player(p) for p in members]
                         for role, members in hierarchy_of(club).items()}
    return jsonify(data)


@public_bp.route('/api/public/players')
def api_players():
    page, size = page_args('PUBLIC_PAGE_SIZE')
    pagination = _public_players(request.args.get('q', '').strip(), _role_arg()).paginate(
        page=page, per_page=size, error_out=False)
    return jsonify({
        'players': [_public_player(p) for p in pagination.items],
        'pagination': pagination_dict(pagination),
    })


@public_bp.route('/api/public/players/<int:player_id>')
def api_player(player_id):
    player = get_or_404(Player, player_id, 'Player')
    data = _public_player(player)
    data['career'] = player_career_stats(player.id)
    return jsonify(data)


@public_bp.route('/api/public/tournaments')
def api_tournaments():
    status = _status_arg()
    page, size = page_args('PUBLIC_PAGE_SIZE')
    pagination = _tournament_query(status=status).paginate(page=page, per_page=size, error_out=False)
    today = date.today()
    return jsonify({
        'tournaments': [t.to_dict(today=today) for t in pagination.items],
        'pagination': pagination_dict(pagination),
    })


@public_bp.route('/api/public/tournaments/<int:tournament_id>')
def api_tournament(tournament_id):
    tournament = get_or_404(Tournament, tournament_id, 'Tournament')
    data = tournament.to_dict(today=date.today())
    data['participants'] = [_public_player(p) for p in tournament.participant_players]
    data['stages'] = [s.to_dict() for s in tournament.stages]
    return jsonify(data)


@public_bp.route('/api/public/tournaments/<int:tournament_id>/leaderboard')
def api_tournament_leaderboard(tournament_id):
    tournament = get_or_404(Tournament, tournament_id, 'Tournament')
    return jsonify({'tournament': {'id': tournament.id, 'name': tournament.name},
                    'leaderboard': tournament_leaderboard(tournament.id)})


@public_bp.route('/api/public/tournaments/<int:tournament_id>/matches')
def api_tournament_matches(tournament_id):
    tournament = get_or_404(Tournament, tournament_id, 'Tournament')
    return jsonify({'matches': [m.to_dict() for m in tournament.matches]})


@public_bp.route('/api/public/matches/<int:match_id>')
def api_match(match_id):
    match = get_or_404(Match, match_id, 'Match')
    data = match.to_dict()
    data['tournamentName'] = match.tournament.name
    return jsonify(data)


@public_bp.route('/api/public/leaderboard/players')
def api_player_leaderboard():
    tournament_id = request.args.get('tournament', type=int)
    limit = request.args.get('limit', type=int)
    return jsonify({'leaderboard': player_leaderboard(tournament_id, limit=limit)})


@public_bp.route('/api/public/leaderboard/teams')
def api_club_leaderboard():
    tournament_id = request.args.get('tournament', type=int)
    return jsonify({'leaderboard': club_leaderboard(tournament_id)})
