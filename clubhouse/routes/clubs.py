from flask import Blueprint, render_template, jsonify, request, flash, redirect, url_for, current_app, Response
from flask_login import login_required
from flask_babel import _
from pydantic import ValidationError
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from ..extensions import db
from ..errors import get_or_404, first_error_message, BadRequestError, ConflictError
from ..models import Club, ClubMembership, Player, PlayerRole, PlayerTransfer, RoleType, Tournament
from ..schemas import ClubIn, ClubUpdate, PlayerIn, form_payload
from ..bulk import parse_member_csv, parse_member_records, import_members, member_csv_template, read_csv_upload
from ..utils import page_args, pagination_dict

clubs_bp = Blueprint('clubs', __name__)

ROLE_SLUGS = {
    'managers': RoleType.MANAGER,
    'mentors': RoleType.MENTOR,
    'captains': RoleType.CAPTAIN,
    'players': RoleType.PLAYER,
}


def _club_query(q):
    query = Club.query
    if q:
        pattern = f"%{q}%"
        query = query.filter(or_(Club.name.ilike(pattern), Club.description.ilike(pattern)))
    return query.order_by(Club.name.asc())


def _member_counts(clubs):
    if not clubs:
        return {}
    return dict(
        db.session.query(Player.club_id, func.count(Player.id))
        .filter(Player.club_id.in_([c.id for c in clubs]))
        .group_by(Player.club_id)
        .all()
    )


def hierarchy_of(club):
    return {role.value: club.members_with_role(role) for role in RoleType}


def create_club(data):
    club = Club(**ClubIn.model_validate(data).model_dump())
    db.session.add(club)
    db.session.commit()
    current_app.logger.info('created club %s (%s)', club.id, club.name)
    return club


def update_club(club, data):
    for field, value in ClubUpdate.model_validate(data).changes().items():
        if field == 'name' and value is None:
            continue
        setattr(club, field, value)
    db.session.commit()
    return club


def delete_club(club):
    """Delete a club with its members; returns how many members went with it."""
    deleted_members = len(club.players)
    club_id = club.id
    PlayerTransfer.query.filter(PlayerTransfer.from_club_id == club_id).update({'from_club_id': None})
    PlayerTransfer.query.filter(PlayerTransfer.to_club_id == club_id).update({'to_club_id': None})
    ClubMembership.query.filter(ClubMembership.club_id == club_id).update({'club_id': None})
    db.session.delete(club)
    db.session.commit()
    current_app.logger.info('deleted club %s with %d members', club_id, deleted_members)
    return deleted_members


def ensure_email_free(email, player_id=None):
    if not email:
        return
    query = Player.query.filter(func.lower(Player.email) == email.lower())
    if player_id is not None:
        query = query.filter(Player.id != player_id)
    if query.first() is not None:
        raise ConflictError(_('A player with this email already exists'))


def add_member(club, data, schema=PlayerIn):
    payload = schema.model_validate(data)
    ensure_email_free(payload.email)
    values = payload.model_dump(exclude={'roles'})
    player = Player(**values)
    player.join_club(club)
    player.set_roles(payload.roles)
    db.session.add(player)
    db.session.commit()
    current_app.logger.info('added player %s to club %s', player.id, club.id if club else None)
    return player


def _bulk_members_from_request():
    upload = request.files.get('file')
    if upload is not None and upload.filename:
        return parse_member_csv(read_csv_upload(upload))
    if request.is_json:
        members = (request.get_json(silent=True) or {}).get('members')
        if not isinstance(members, list) or not members:
            raise BadRequestError(_('No members provided'))
        return parse_member_records(members)
    text = request.form.get('csv_text', '')
    if not text.strip():
        raise BadRequestError(_('Upload a CSV file or paste CSV text'))
    return parse_member_csv(text)


# --- dashboard pages ---

@clubs_bp.route('/dashboard/clubs')
@login_required
def list_clubs():
    q = request.args.get('q', '').strip()
    page, size = page_args()
    pagination = _club_query(q).paginate(page=page, per_page=size, error_out=False)
    counts = _member_counts(pagination.items)
    return render_template('clubs/list.html', pagination=pagination, clubs=pagination.items,
                           counts=counts, q=q)


@clubs_bp.route('/dashboard/clubs/new', methods=['GET', 'POST'])
@login_required
def new_club():
    if request.method == 'POST':
        try:
            club = create_club(form_payload(request.form))
        except ValidationError as e:
            flash(first_error_message(e), 'error')
            return render_template('clubs/form.html', club=None, form=request.form), 400
        flash(_('Club "%(name)s" created.', name=club.name), 'success')
        return redirect(url_for('clubs.club_detail', club_id=club.id))
    return render_template('clubs/form.html', club=None, form={})


@clubs_bp.route('/dashboard/clubs/<int:club_id>')
@login_required
def club_detail(club_id):
    club = get_or_404(Club, club_id, 'Club')
    role_counts = {role.value: len(club.members_with_role(role)) for role in RoleType}
    tournaments = Tournament.query.filter_by(club_id=club.id).order_by(Tournament.start_date.desc()).all()
    return render_template('clubs/detail.html', club=club, role_counts=role_counts, tournaments=tournaments)


@clubs_bp.route('/dashboard/clubs/<int:club_id>/edit', methods=['GET', 'POST'])
@login_required
def edit_club(club_id):
    club = get_or_404(Club, club_id, 'Club')
    if request.method == 'POST':
        try:
            update_club(club, form_payload(request.form))
        except ValidationError as e:
            flash(first_error_message(e), 'error')
            return render_template('clubs/form.html', club=club, form=request.form), 400
        flash(_('Club updated.'), 'success')
        return redirect(url_for('clubs.club_detail', club_id=club.id))
    return render_template('clubs/form.html', club=club, form={})


@clubs_bp.route('/dashboard/clubs/<int:club_id>/delete', methods=['POST'])
@login_required
def remove_club(club_id):
    club = get_or_404(Club, club_id, 'Club')
    name = club.name
    try:
        deleted = delete_club(club)
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error('failed to delete club %s: %s', club_id, e)
        flash(_('Could not delete the club.'), 'error')
        return redirect(url_for('clubs.club_detail', club_id=club_id))
    flash(_('Club "%(name)s" deleted along with %(count)d member(s).', name=name, count=deleted), 'success')
    return redirect(url_for('clubs.list_clubs'))


@clubs_bp.route('/dashboard/clubs/<int:club_id>/hierarchy')
@login_required
def club_hierarchy(club_id):
    club = get_or_404(Club, club_id, 'Club')
    return render_template('clubs/hierarchy.html', club=club, hierarchy=hierarchy_of(club))


@clubs_bp.route('/dashboard/clubs/<int:club_id>/<any(managers, mentors, captains, players):role_slug>')
@login_required
def club_members(club_id, role_slug):
    club = get_or_404(Club, club_id, 'Club')
    role = ROLE_SLUGS[role_slug]
    return render_template('clubs/members.html', club=club, role=role, role_slug=role_slug,
                           members=club.members_with_role(role))


@clubs_bp.route('/dashboard/clubs/<int:club_id>/members/new', methods=['GET', 'POST'])
@login_required
def new_member(club_id):
    club = get_or_404(Club, club_id, 'Club')
    default_role = request.args.get('role', RoleType.PLAYER.value)
    if request.method == 'POST':
        try:
            player = add_member(club, form_payload(request.form, list_fields=('roles',)))
        except ValidationError as e:
            flash(first_error_message(e), 'error')
            return render_template('players/form.html', player=None, club=club, form=request.form,
                                   selected_roles=request.form.getlist('roles')), 400
        except ConflictError as e:
            flash(e.message, 'error')
            return render_template('players/form.html', player=None, club=club, form=request.form,
                                   selected_roles=request.form.getlist('roles')), 409
        flash(_('%(name)s added to %(club)s.', name=player.name, club=club.name), 'success')
        return redirect(url_for('clubs.club_detail', club_id=club.id))
    return render_template('players/form.html', player=None, club=club, form={},
                           selected_roles=[default_role])


@clubs_bp.route('/dashboard/clubs/<int:club_id>/members/bulk', methods=['GET', 'POST'])
@login_required
def bulk_members(club_id):
    club = get_or_404(Club, club_id, 'Club')
    if request.method == 'GET':
        return render_template('clubs/bulk_members.html', club=club, summary=None, parse_errors=[])

    try:
        members, parse_errors = _bulk_members_from_request()
    except BadRequestError as e:
        flash(e.message, 'error')
        return redirect(url_for('clubs.bulk_members', club_id=club.id))

    summary = None
    if members:
        try:
            summary = import_members(club, members)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error('bulk member import into club %s failed: %s', club.id, e)
            flash(_('Import failed, nothing was saved.'), 'error')
            return redirect(url_for('clubs.bulk_members', club_id=club.id))
        flash(_('Added %(added)d member(s), skipped %(skipped)d.', **summary), 'success')
    return render_template('clubs/bulk_members.html', club=club, summary=summary, parse_errors=parse_errors)


@clubs_bp.route('/dashboard/clubs/members/template.csv')
@login_required
def member_template():
    return Response(member_csv_template(), mimetype='text/csv',
                    headers={'Content-Disposition': 'attachment; filename=members_template.csv'})


# --- JSON API ---

@clubs_bp.route('/api/clubs', methods=['GET', 'POST'])
@login_required
def api_clubs():
    if request.method == 'POST':
        club = create_club(request.get_json(silent=True) or {})
        return jsonify(club.to_dict(with_counts=True)), 201

    page, size = page_args()
    pagination = _club_query(request.args.get('q', '').strip()).paginate(page=page, per_page=size, error_out=False)
    return jsonify({
        'clubs': [c.to_dict(with_counts=True) for c in pagination.items],
        'pagination': pagination_dict(pagination),
    })


@clubs_bp.route('/api/clubs/<int:club_id>', methods=['GET', 'PUT', 'DELETE'])
@login_required
def api_club(club_id):
    club = get_or_404(Club, club_id, 'Club')
    if request.method == 'PUT':
        update_club(club, request.get_json(silent=True) or {})
        return jsonify(club.to_dict(with_counts=True))
    if request.method == 'DELETE':
        deleted = delete_club(club)
        return jsonify({'success': True, 'deletedMembers': deleted,
                        'message': f'Club deleted along with {deleted} member(s)'})

    data = club.to_dict(with_counts=True)
    data['players'] = [p.to_dict() for p in club.players]
    return jsonify(data)


@clubs_bp.route('/api/clubs/<int:club_id>/hierarchy')
@login_required
def api_club_hierarchy(club_id):
    club = get_or_404(Club, club_id, 'Club')
    return jsonify({
        'club': club.to_dict(),
        'hierarchy': {role: [p.to_dict() for p in members] for role, members in hierarchy_of(club).items()},
    })


@clubs_bp.route('/api/clubs/<int:club_id>/players', methods=['GET', 'POST'])
@login_required
def api_club_players(club_id):
    club = get_or_404(Club, club_id, 'Club')
    if request.method == 'POST':
        player = add_member(club, request.get_json(silent=True) or {})
        return jsonify(player.to_dict(with_club=True)), 201

    query = Player.query.filter_by(club_id=club.id)
    role = request.args.get('role')
    if role:
        try:
            role = RoleType(role.upper())
        except ValueError:
            raise BadRequestError(f'Unknown role: {role}')
        query = query.join(PlayerRole).filter(PlayerRole.role == role)
    return jsonify({'players': [p.to_dict() for p in query.order_by(Player.name).all()]})


@clubs_bp.route('/api/clubs/<int:club_id>/players/bulk', methods=['POST'])
@login_required
def api_bulk_members(club_id):
    club = get_or_404(Club, club_id, 'Club')
    members, parse_errors = _bulk_members_from_request()
    summary = import_members(club, members)
    db.session.commit()
    return jsonify({
        'success': True,
        'added': summary['added'],
        'skipped': summary['skipped'],
        'errors': parse_errors or None,
        'message': f"Successfully added {summary['added']} member(s)",
    })


@clubs_bp.route('/api/clubs/<int:club_id>/tournaments')
@login_required
def api_club_tournaments(club_id):
    club = get_or_404(Club, club_id, 'Club')
    tournaments = Tournament.query.filter_by(club_id=club.id).order_by(Tournament.start_date.desc()).all()
    return jsonify({'tournaments': [t.to_dict() for t in tournaments]})
