from datetime import date
from flask import Blueprint, render_template, jsonify, request, flash, redirect, url_for, current_app
from flask_login import login_required
from flask_babel import _
from pydantic import ValidationError
from sqlalchemy import or_
from ..extensions import db
from ..errors import get_or_404, first_error_message, BadRequestError, ConflictError, NotFoundError
from ..models import (Club, Match, MatchResult, Player, PointSystemTemplate, Tournament,
                      TournamentParticipant, TournamentPlayerStats)
from ..schemas import TournamentIn, TournamentUpdate, ParticipantsIn, form_payload
from ..utils import (page_args, pagination_dict, recalculate_tournament_statistics,
                     tournament_leaderboard, tournament_player_stats)

tournaments_bp = Blueprint('tournaments', __name__)

SCORING_FIELDS = ('point_system_template_id', 'points_per_win', 'points_per_draw', 'points_per_loss',
                  'points_per_goal_scored', 'points_per_goal_conceded')


def _check_links(club_id, template_id):
    if club_id is not None:
        get_or_404(Club, club_id, 'Club')
    if template_id is not None:
        get_or_404(PointSystemTemplate, template_id, 'Point system')


def _tournament_query(q=None, status=None):
    query = Tournament.query
    if q:
        query = query.filter(Tournament.name.ilike(f"%{q}%"))
    today = date.today()
    if status == 'upcoming':
        query = query.filter(Tournament.start_date > today)
    elif status == 'active':
        query = query.filter(Tournament.start_date <= today,
                             or_(Tournament.end_date.is_(None), Tournament.end_date >= today))
    elif status == 'completed':
        query = query.filter(Tournament.end_date < today)
    return query.order_by(Tournament.start_date.desc(), Tournament.id.desc())


def create_tournament(data):
    payload = TournamentIn.model_validate(data)
    _check_links(payload.club_id, payload.point_system_template_id)
    tournament = Tournament(**payload.model_dump())
    db.session.add(tournament)
    db.session.commit()
    current_app.logger.info('created tournament %s (%s)', tournament.id, tournament.name)
    return tournament


def update_tournament(tournament, data):
    changes = TournamentUpdate.model_validate(data).changes()
    _check_links(changes.get('club_id'), changes.get('point_system_template_id'))

    start = changes.get('start_date') or tournament.start_date
    end = changes['end_date'] if 'end_date' in changes else tournament.end_date
    if end is not None and end < start:
        raise BadRequestError(_('End date must be on or after start date'))

    rescore = False
    for field, value in changes.items():
        if value is None and field in ('name', 'start_date') + SCORING_FIELDS[1:]:
            continue
        if field in SCORING_FIELDS and getattr(tournament, field) != value:
            rescore = True
        setattr(tournament, field, value)
    db.session.commit()

    if rescore:
        recalculate_tournament_statistics(tournament.id, rescore=True)
    return tournament


def delete_tournament(tournament):
    tournament_id = tournament.id
    db.session.delete(tournament)
    db.session.commit()
    current_app.logger.info('deleted tournament %s', tournament_id)


def add_participants(tournament, data):
    player_ids = list(dict.fromkeys(ParticipantsIn.model_validate(data).player_ids))
    players = Player.query.filter(Player.id.in_(player_ids)).all()
    if len(players) != len(player_ids):
        found = {p.id for p in players}
        missing = [str(pid) for pid in player_ids if pid not in found]
        raise NotFoundError(f"Player(s) with ID(s) {', '.join(missing)}")

    existing = {p.player_id for p in tournament.participants}
    duplicates = [p.name for p in players if p.id in existing]
    if duplicates:
        raise ConflictError(f"Player(s) {', '.join(duplicates)} are already participants in this tournament")

    for player in players:
        tournament.participants.append(TournamentParticipant(player=player))
    db.session.commit()
    current_app.logger.info('added %d participants to tournament %s', len(players), tournament.id)
    return players


def remove_participant(tournament, player_id):
    """Drop a participant with their results and stats; returns how many results went."""
    participant = TournamentParticipant.query.filter_by(tournament_id=tournament.id, player_id=player_id).first()
    if participant is None:
        raise NotFoundError('Participant')

    results = (
        MatchResult.query
        .join(Match, MatchResult.match_id == Match.id)
        .filter(Match.tournament_id == tournament.id, MatchResult.player_id == player_id)
        .all()
    )
    emptied = []
    for result in results:
        match = result.match
        match.results.remove(result)
        if not match.results:
            emptied.append(match)
    for match in emptied:
        db.session.delete(match)

    TournamentPlayerStats.query.filter_by(tournament_id=tournament.id, player_id=player_id).delete()
    db.session.delete(participant)
    db.session.commit()
    current_app.logger.info('removed player %s from tournament %s (%d results deleted)',
                            player_id, tournament.id, len(results))
    return len(results)


# --- dashboard pages ---

@tournaments_bp.route('/dashboard/tournaments')
@login_required
def list_tournaments():
    q = request.args.get('q', '').strip()
    status = request.args.get('status') or None
    page, size = page_args()
    pagination = _tournament_query(q, status).paginate(page=page, per_page=size, error_out=False)
    return render_template('tournaments/list.html', pagination=pagination, tournaments=pagination.items,
                           q=q, status=status)


def _form_choices():
    return {
        'clubs': Club.query.order_by(Club.name).all(),
        'templates': PointSystemTemplate.query.order_by(PointSystemTemplate.name).all(),
    }


@tournaments_bp.route('/dashboard/tournaments/new', methods=['GET', 'POST'])
@login_required
def new_tournament():
    if request.method == 'POST':
        try:
            tournament = create_tournament(form_payload(request.form, drop_empty=True))
        except ValidationError as e:
            flash(first_error_message(e), 'error')
            return render_template('tournaments/form.html', tournament=None, form=request.form,
                                   **_form_choices()), 400
        flash(_('Tournament "%(name)s" created.', name=tournament.name), 'success')
        return redirect(url_for('tournaments.tournament_detail', tournament_id=tournament.id))
    return render_template('tournaments/form.html', tournament=None, form={}, **_form_choices())


@tournaments_bp.route('/dashboard/tournaments/<int:tournament_id>')
@login_required
def tournament_detail(tournament_id):
    tournament = get_or_404(Tournament, tournament_id, 'Tournament')
    taken = {p.player_id for p in tournament.participants}
    available = [p for p in Player.query.order_by(Player.name).all() if p.id not in taken]
    return render_template('tournaments/detail.html', tournament=tournament, available_players=available,
                           leaderboard=tournament_leaderboard(tournament.id))


@tournaments_bp.route('/dashboard/tournaments/<int:tournament_id>/edit', methods=['GET', 'POST'])
@login_required
def edit_tournament(tournament_id):
    tournament = get_or_404(Tournament, tournament_id, 'Tournament')
    if request.method == 'POST':
        try:
            update_tournament(tournament, form_payload(request.form))
        except ValidationError as e:
            flash(first_error_message(e), 'error')
            return render_template('tournaments/form.html', tournament=tournament, form=request.form,
                                   **_form_choices()), 400
        except BadRequestError as e:
            flash(e.message, 'error')
            return render_template('tournaments/form.html', tournament=tournament, form=request.form,
                                   **_form_choices()), 400
        flash(_('Tournament updated.'), 'success')
        return redirect(url_for('tournaments.tournament_detail', tournament_id=tournament.id))
    return render_template('tournaments/form.html', tournament=tournament, form={}, **_form_choices())


@tournaments_bp.route('/dashboard/tournaments/<int:tournament_id>/delete', methods=['POST'])
@login_required
def remove_tournament(tournament_id):
    tournament = get_or_404(Tournament, tournament_id, 'Tournament')
    delete_tournament(tournament)
    flash(_('Tournament deleted.'), 'success')
    return redirect(url_for('tournaments.list_tournaments'))


@tournaments_bp.route('/dashboard/tournaments/<int:tournament_id>/participants', methods=['POST'])
@login_required
def new_participants(tournament_id):
    tournament = get_or_404(Tournament, tournament_id, 'Tournament')
    try:
        players = add_participants(tournament, form_payload(request.form, list_fields=('player_ids',)))
    except ValidationError as e:
        flash(first_error_message(e), 'error')
    except (NotFoundError, ConflictError) as e:
        flash(e.message, 'error')
    else:
        flash(_('Added %(count)d participant(s).', count=len(players)), 'success')
    return redirect(url_for('tournaments.tournament_detail', tournament_id=tournament.id))


@tournaments_bp.route('/dashboard/tournaments/<int:tournament_id>/participants/<int:player_id>/delete',
                      methods=['POST'])
@login_required
def drop_participant(tournament_id, player_id):
    tournament = get_or_404(Tournament, tournament_id, 'Tournament')
    deleted = remove_participant(tournament, player_id)
    if deleted:
        flash(_('Participant removed. %(count)d match result(s) were deleted.', count=deleted), 'warning')
    else:
        flash(_('Participant removed.'), 'success')
    return redirect(url_for('tournaments.tournament_detail', tournament_id=tournament.id))


@tournaments_bp.route('/dashboard/tournaments/<int:tournament_id>/leaderboard')
@login_required
def leaderboard(tournament_id):
    tournament = get_or_404(Tournament, tournament_id, 'Tournament')
    return render_template('tournaments/leaderboard.html', tournament=tournament,
                           leaderboard=tournament_leaderboard(tournament.id))


@tournaments_bp.route('/dashboard/tournaments/<int:tournament_id>/player-stats')
@login_required
def player_stats(tournament_id):
    tournament = get_or_404(Tournament, tournament_id, 'Tournament')
    return render_template('tournaments/player_stats.html', tournament=tournament,
                           players=tournament_player_stats(tournament.id))


@tournaments_bp.route('/dashboard/tournaments/<int:tournament_id>/recalculate', methods=['POST'])
@login_required
def recalculate(tournament_id):
    tournament = get_or_404(Tournament, tournament_id, 'Tournament')
    count = recalculate_tournament_statistics(tournament.id, rescore=bool(request.form.get('rescore')))
    flash(_('Statistics recalculated for %(count)d player(s).', count=count), 'success')
    return redirect(url_for('tournaments.tournament_detail', tournament_id=tournament.id))


# --- JSON API ---

@tournaments_bp.route('/api/tournaments', methods=['GET', 'POST'])
@login_required
def api_tournaments():
    if request.method == 'POST':
        tournament = create_tournament(request.get_json(silent=True) or {})
        return jsonify(tournament.to_dict(today=date.today())), 201

    page, size = page_args()
    pagination = _tournament_query(request.args.get('q', '').strip(), request.args.get('status')).paginate(
        page=page, per_page=size, error_out=False)
    today = date.today()
    return jsonify({
        'tournaments': [t.to_dict(today=today) for t in pagination.items],
        'pagination': pagination_dict(pagination),
    })


@tournaments_bp.route('/api/tournaments/<int:tournament_id>', methods=['GET', 'PUT', 'DELETE'])
@login_required
def api_tournament(tournament_id):
    tournament = get_or_404(Tournament, tournament_id, 'Tournament')
    if request.method == 'PUT':
        update_tournament(tournament, request.get_json(silent=True) or {})
    elif request.method == 'DELETE':
        delete_tournament(tournament)
        return jsonify({'success': True, 'message': 'Tournament deleted'})

    data = tournament.to_dict(today=date.today())
    data['pointSystemTemplate'] = tournament.point_system_template.to_dict() if tournament.point_system_template else None
    data['participants'] = [p.to_dict(with_club=True) for p in tournament.participant_players]
    return jsonify(data)


@tournaments_bp.route('/api/tournaments/<int:tournament_id>/participants', methods=['GET', 'POST'])
@login_required
def api_participants(tournament_id):
    tournament = get_or_404(Tournament, tournament_id, 'Tournament')
    if request.method == 'POST':
        players = add_participants(tournament, request.get_json(silent=True) or {})
        return jsonify({
            'message': f'Successfully added {len(players)} participant(s) to the tournament',
            'participants': [p.to_dict(with_club=True) for p in players],
        }), 201
    return jsonify({'participants': [p.to_dict(with_club=True) for p in tournament.participant_players]})


@tournaments_bp.route('/api/tournaments/<int:tournament_id>/participants/<int:player_id>', methods=['DELETE'])
@login_required
def api_participant(tournament_id, player_id):
    tournament = get_or_404(Tournament, tournament_id, 'Tournament')
    deleted = remove_participant(tournament, player_id)
    data = {'success': True, 'message': 'Participant removed from tournament', 'deletedMatchResults': deleted}
    if deleted:
        data['warning'] = f'This player had {deleted} match result(s) which have been deleted'
    return jsonify(data)


@tournaments_bp.route('/api/tournaments/<int:tournament_id>/stages')
@login_required
def api_stages(tournament_id):
    tournament = get_or_404(Tournament, tournament_id, 'Tournament')
    return jsonify({'stages': [s.to_dict() for s in tournament.stages]})


@tournaments_bp.route('/api/tournaments/<int:tournament_id>/leaderboard')
@login_required
def api_leaderboard(tournament_id):
    tournament = get_or_404(Tournament, tournament_id, 'Tournament')
    return jsonify({'tournament': {'id': tournament.id, 'name': tournament.name},
                    'leaderboard': tournament_leaderboard(tournament.id)})


@tournaments_bp.route('/api/tournaments/<int:tournament_id>/player-stats')
@login_required
def api_player_stats(tournament_id):
    tournament = get_or_404(Tournament, tournament_id, 'Tournament')
    return jsonify({'success': True, 'players': tournament_player_stats(tournament.id)})


@tournaments_bp.route('/api/tournaments/<int:tournament_id>/recalculate-stats', methods=['POST'])
@login_required
def api_recalculate(tournament_id):
    tournament = get_or_404(Tournament, tournament_id, 'Tournament')
    body = request.get_json(silent=True) or {}
    count = recalculate_tournament_statistics(tournament.id, rescore=bool(body.get('rescore')))
    return jsonify({'success': True, 'playersUpdated': count,
                    'message': f'Statistics recalculated for {count} player(s)'})
