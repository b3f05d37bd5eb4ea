from datetime import datetime, time, timezone
from flask import Blueprint, render_template, jsonify, request, flash, redirect, url_for, current_app
from flask_login import login_required
from flask_babel import _
from pydantic import ValidationError
from sqlalchemy import or_
from ..extensions import db
from ..errors import get_or_404, first_error_message, BadRequestError, ConflictError
from ..models import Club, Player, PlayerRole, PlayerTransfer, RoleType, utc_now
from ..schemas import PlayerUpdate, FreeAgentIn, TransferIn, form_payload
from ..utils import page_args, pagination_dict, player_career_stats
from .clubs import add_member, ensure_email_free

players_bp = Blueprint('players', __name__)


def _player_query(q=None, role=None, free_agents=False):
    query = Player.query
    if free_agents:
        query = query.filter(Player.club_id.is_(None))
    if role:
        query = query.join(PlayerRole).filter(PlayerRole.role == role)
    if q:
        pattern = f"%{q}%"
        query = query.filter(or_(Player.name.ilike(pattern), Player.email.ilike(pattern),
                                 Player.place.ilike(pattern)))
    return query.order_by(Player.name.asc())


def _role_arg():
    value = request.args.get('role', '').strip().upper()
    if not value:
        return None
    try:
        return RoleType(value)
    except ValueError:
        raise BadRequestError(f'Unknown role: {value}')


def update_player(player, data):
    changes = PlayerUpdate.model_validate(data).changes()
    if 'email' in changes:
        ensure_email_free(changes['email'], player_id=player.id)
    roles = changes.pop('roles', None)
    for field, value in changes.items():
        if field == 'name' and value is None:
            continue
        setattr(player, field, value)
    if roles:
        player.set_roles(roles)
    db.session.commit()
    return player


def delete_player(player):
    player_id = player.id
    db.session.delete(player)
    db.session.commit()
    current_app.logger.info('deleted player %s', player_id)


def create_transfer(data):
    payload = TransferIn.model_validate(data)
    player = get_or_404(Player, payload.player_id, 'Player')
    to_club = get_or_404(Club, payload.to_club_id, 'Club') if payload.to_club_id else None

    if to_club is None and player.club_id is None:
        raise BadRequestError(_('Player is already a free agent'))
    if to_club is not None and player.club_id == to_club.id:
        raise BadRequestError(_('Player already belongs to this club'))

    when = utc_now()
    if payload.transfer_date:
        when = datetime.combine(payload.transfer_date, time.min, tzinfo=timezone.utc)

    transfer = PlayerTransfer(player=player, from_club_id=player.club_id,
                              to_club_id=to_club.id if to_club else None,
                              transfer_date=when, notes=payload.notes)
    db.session.add(transfer)
    player.join_club(to_club, when)
    db.session.commit()
    current_app.logger.info('transferred player %s from club %s to club %s',
                            player.id, transfer.from_club_id, transfer.to_club_id)
    return transfer


# --- dashboard pages ---

@players_bp.route('/dashboard/players')
@login_required
def list_players():
    q = request.args.get('q', '').strip()
    role = _role_arg()
    page, size = page_args()
    pagination = _player_query(q, role).paginate(page=page, per_page=size, error_out=False)
    return render_template('players/list.html', pagination=pagination, players=pagination.items,
                           q=q, role=role)


@players_bp.route('/dashboard/players/<int:player_id>')
@login_required
def player_detail(player_id):
    player = get_or_404(Player, player_id, 'Player')
    return render_template('players/detail.html', player=player, career=player_career_stats(player.id))


@players_bp.route('/dashboard/players/<int:player_id>/edit', methods=['GET', 'POST'])
@login_required
def edit_player(player_id):
    player = get_or_404(Player, player_id, 'Player')
    if request.method == 'POST':
        try:
            update_player(player, form_payload(request.form, list_fields=('roles',)))
        except ValidationError as e:
            flash(first_error_message(e), 'error')
            return render_template('players/form.html', player=player, club=player.club, form=request.form,
                                   selected_roles=request.form.getlist('roles')), 400
        except ConflictError as e:
            flash(e.message, 'error')
            return render_template('players/form.html', player=player, club=player.club, form=request.form,
                                   selected_roles=request.form.getlist('roles')), 409
        flash(_('Player updated.'), 'success')
        return redirect(url_for('players.player_detail', player_id=player.id))
    return render_template('players/form.html', player=player, club=player.club, form={},
                           selected_roles=player.role_values)


@players_bp.route('/dashboard/players/<int:player_id>/delete', methods=['POST'])
@login_required
def remove_player(player_id):
    player = get_or_404(Player, player_id, 'Player')
    club_id = player.club_id
    name = player.name
    delete_player(player)
    flash(_('Player "%(name)s" deleted.', name=name), 'success')
    if club_id:
        return redirect(url_for('clubs.club_detail', club_id=club_id))
    return redirect(url_for('players.free_agents'))


@players_bp.route('/dashboard/free-agents')
@login_required
def free_agents():
    q = request.args.get('q', '').strip()
    page, size = page_args()
    pagination = _player_query(q, free_agents=True).paginate(page=page, per_page=size, error_out=False)
    return render_template('players/free_agents.html', pagination=pagination, players=pagination.items, q=q)


@players_bp.route('/dashboard/free-agents/new', methods=['GET', 'POST'])
@login_required
def new_free_agent():
    if request.method == 'POST':
        data = form_payload(request.form, list_fields=('roles',))
        if not data.get('roles'):
            data.pop('roles')
        try:
            player = add_member(None, data, schema=FreeAgentIn)
        except ValidationError as e:
            flash(first_error_message(e), 'error')
            return render_template('players/form.html', player=None, club=None, form=request.form,
                                   selected_roles=request.form.getlist('roles')), 400
        except ConflictError as e:
            flash(e.message, 'error')
            return render_template('players/form.html', player=None, club=None, form=request.form,
                                   selected_roles=request.form.getlist('roles')), 409
        flash(_('Free agent %(name)s created.', name=player.name), 'success')
        return redirect(url_for('players.free_agents'))
    return render_template('players/form.html', player=None, club=None, form={},
                           selected_roles=[RoleType.PLAYER.value])


@players_bp.route('/dashboard/transfers', methods=['GET', 'POST'])
@login_required
def transfers():
    if request.method == 'POST':
        try:
            transfer = create_transfer(form_payload(request.form))
        except ValidationError as e:
            flash(first_error_message(e), 'error')
        except BadRequestError as e:
            flash(e.message, 'error')
        else:
            destination = transfer.to_club.name if transfer.to_club else _('free agency')
            flash(_('%(player)s moved to %(club)s.', player=transfer.player.name, club=destination), 'success')
        return redirect(url_for('players.transfers'))

    history = PlayerTransfer.query.order_by(PlayerTransfer.transfer_date.desc()).all()
    players = Player.query.order_by(Player.name).all()
    clubs = Club.query.order_by(Club.name).all()
    return render_template('transfers.html', transfers=history, players=players, clubs=clubs,
                           selected_player=request.args.get('player', type=int))


# --- JSON API ---

@players_bp.route('/api/players')
@login_required
def api_players():
    page, size = page_args()
    pagination = _player_query(request.args.get('q', '').strip(), _role_arg()).paginate(
        page=page, per_page=size, error_out=False)
    return jsonify({
        'players': [p.to_dict(with_club=True) for p in pagination.items],
        'pagination': pagination_dict(pagination),
    })


@players_bp.route('/api/players/<int:player_id>', methods=['GET', 'PUT', 'DELETE'])
@login_required
def api_player(player_id):
    player = get_or_404(Player, player_id, 'Player')
    if request.method == 'PUT':
        update_player(player, request.get_json(silent=True) or {})
        return jsonify(player.to_dict(with_club=True))
    if request.method == 'DELETE':
        delete_player(player)
        return jsonify({'success': True, 'message': 'Player deleted'})

    data = player.to_dict(with_club=True)
    data['transfers'] = [t.to_dict() for t in player.transfers]
    data['memberships'] = [m.to_dict() for m in player.memberships]
    return jsonify(data)


@players_bp.route('/api/players/<int:player_id>/stats')
@login_required
def api_player_stats(player_id):
    player = get_or_404(Player, player_id, 'Player')
    return jsonify(player_career_stats(player.id))


@players_bp.route('/api/free-agents', methods=['GET', 'POST'])
@login_required
def api_free_agents():
    if request.method == 'POST':
        player = add_member(None, request.get_json(silent=True) or {}, schema=FreeAgentIn)
        return jsonify(player.to_dict()), 201
    players = _player_query(request.args.get('q', '').strip(), free_agents=True).all()
    return jsonify({'players': [p.to_dict() for p in players]})


@players_bp.route('/api/free-agents/<int:player_id>', methods=['GET', 'PUT', 'DELETE'])
@login_required
def api_free_agent(player_id):
    player = get_or_404(Player, player_id, 'Player')
    if not player.is_free_agent:
        raise BadRequestError(_('Player is not a free agent'))
    if request.method == 'PUT':
        update_player(player, request.get_json(silent=True) or {})
    elif request.method == 'DELETE':
        delete_player(player)
        return jsonify({'success': True, 'message': 'Free agent deleted'})
    return jsonify(player.to_dict())


@players_bp.route('/api/transfers', methods=['GET', 'POST'])
@login_required
def api_transfers():
    if request.method == 'POST':
        transfer = create_transfer(request.get_json(silent=True) or {})
        return jsonify(transfer.to_dict()), 201
    history = PlayerTransfer.query.order_by(PlayerTransfer.transfer_date.desc()).all()
    return jsonify({'transfers': [t.to_dict() for t in history]})
