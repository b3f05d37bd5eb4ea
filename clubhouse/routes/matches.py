import json
from flask import Blueprint, render_template, jsonify, request, flash, redirect, url_for, current_app, Response
from flask_login import login_required
from flask_babel import _
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from ..extensions import db
from ..errors import get_or_404, first_error_message, BadRequestError
from ..models import Match, MatchResult, Player, StagePoint, Tournament, WalkoverType
from ..schemas import MatchIn, MatchUpdate, results_from_form, form_payload
from ..bulk import parse_match_csv, parse_match_records, import_matches, match_csv_template, read_csv_upload
from ..utils import score_match, update_player_statistics, participant_ids

matches_bp = Blueprint('matches', __name__)


def _check_participants(tournament, results):
    allowed = participant_ids(tournament)
    outsiders = [r.player_id for r in results if r.player_id not in allowed]
    if outsiders:
        known = {p.id: p.name for p in Player.query.filter(Player.id.in_(outsiders)).all()}
        names = [known.get(pid, str(pid)) for pid in outsiders]
        raise BadRequestError(f"Player(s) {', '.join(names)} are not participants in this tournament")


def _resolve_stage(tournament, stage_id):
    if stage_id is None:
        return None
    stage = db.session.get(StagePoint, stage_id)
    if stage is None or tournament.point_system_template_id is None \
            or stage.template_id != tournament.point_system_template_id:
        raise BadRequestError(_("Stage does not belong to this tournament's point system"))
    return stage


def _set_results(match, results):
    match.results = [MatchResult(player_id=r.player_id, outcome=r.outcome,
                                 goals_scored=r.goals_scored, goals_conceded=r.goals_conceded)
                     for r in results]


def create_match(tournament, data):
    payload = MatchIn.model_validate(data)
    _check_participants(tournament, payload.results)
    stage = _resolve_stage(tournament, payload.stage_id)

    match = Match(tournament=tournament, match_date=payload.match_date, stage=stage,
                  stage_name=payload.stage_name or (stage.stage_name if stage else None),
                  walkover=payload.walkover)
    _set_results(match, payload.results)
    db.session.add(match)
    db.session.flush()
    score_match(match)
    update_player_statistics(tournament.id, [r.player_id for r in payload.results])
    db.session.commit()
    current_app.logger.info('recorded match %s in tournament %s', match.id, tournament.id)
    return match


def update_match(match, data):
    """Apply a partial update. Results sent without `walkover` keep the stored walkover."""
    payload = MatchUpdate.model_validate(data)
    changes = payload.changes()
    if payload.results is not None and 'walkover' not in changes and match.walkover != WalkoverType.NONE:
        payload = MatchUpdate.model_validate(dict(data, walkover=match.walkover))
        changes = payload.changes()
    tournament = match.tournament
    affected = {r.player_id for r in match.results}

    if 'match_date' in changes and payload.match_date is not None:
        match.match_date = payload.match_date
    if 'stage_id' in changes:
        stage = _resolve_stage(tournament, payload.stage_id)
        match.stage = stage
        match.stage_name = payload.stage_name or (stage.stage_name if stage else None)
    elif 'stage_name' in changes:
        match.stage_name = payload.stage_name
    if payload.results is not None:
        _check_participants(tournament, payload.results)
        match.walkover = payload.walkover or WalkoverType.NONE
        # old rows go first, (match, player) is unique
        match.results.clear()
        db.session.flush()
        _set_results(match, payload.results)
        affected.update(r.player_id for r in payload.results)

    db.session.flush()
    score_match(match)
    update_player_statistics(tournament.id, affected)
    db.session.commit()
    current_app.logger.info('updated match %s', match.id)
    return match


def delete_match(match):
    tournament_id = match.tournament_id
    player_ids = [r.player_id for r in match.results]
    match_id = match.id
    db.session.delete(match)
    db.session.flush()
    update_player_statistics(tournament_id, player_ids)
    db.session.commit()
    current_app.logger.info('deleted match %s from tournament %s', match_id, tournament_id)
    return tournament_id


def _match_form_data():
    data = form_payload(request.form, drop_empty=True)
    for key in ('player_id', 'outcome', 'goals_scored', 'goals_conceded'):
        data.pop(key, None)
    data['results'] = results_from_form(request.form)
    return data


def _rows_from_upload():
    """Rows from an uploaded CSV file, pasted CSV text or a JSON list."""
    upload = request.files.get('file')
    if upload is not None and upload.filename:
        return parse_match_csv(read_csv_upload(upload))
    if request.is_json:
        matches = (request.get_json(silent=True) or {}).get('matches')
        if not isinstance(matches, list) or not matches:
            raise BadRequestError(_('No matches provided'))
        return parse_match_records(matches)
    text = request.form.get('csv_text', '')
    if text.strip():
        return parse_match_csv(text)
    rows = [{'playerA': a, 'playerB': b, 'playerAGoals': ga, 'playerBGoals': gb, 'matchDate': d, 'walkover': w}
            for a, b, ga, gb, d, w in zip(request.form.getlist('row_player_a'), request.form.getlist('row_player_b'),
                                          request.form.getlist('row_goals_a'), request.form.getlist('row_goals_b'),
                                          request.form.getlist('row_date'), request.form.getlist('row_walkover'))
            if a.strip() or b.strip()]
    if not rows:
        raise BadRequestError(_('Upload a CSV file, paste CSV text or fill in at least one row'))
    return parse_match_records(rows)


# --- dashboard pages ---

@matches_bp.route('/dashboard/tournaments/<int:tournament_id>/matches/new', methods=['GET', 'POST'])
@login_required
def new_match(tournament_id):
    tournament = get_or_404(Tournament, tournament_id, 'Tournament')
    if request.method == 'POST':
        try:
            create_match(tournament, _match_form_data())
        except ValidationError as e:
            flash(first_error_message(e), 'error')
            return render_template('matches/form.html', tournament=tournament, match=None,
                                   form=request.form), 400
        except BadRequestError as e:
            flash(e.message, 'error')
            return render_template('matches/form.html', tournament=tournament, match=None,
                                   form=request.form), 400
        flash(_('Match recorded.'), 'success')
        return redirect(url_for('tournaments.tournament_detail', tournament_id=tournament.id))
    return render_template('matches/form.html', tournament=tournament, match=None, form={})


@matches_bp.route('/dashboard/matches/<int:match_id>/edit', methods=['GET', 'POST'])
@login_required
def edit_match(match_id):
    match = get_or_404(Match, match_id, 'Match')
    if request.method == 'POST':
        data = _match_form_data()
        data.setdefault('stage_id', None)
        try:
            update_match(match, data)
        except ValidationError as e:
            flash(first_error_message(e), 'error')
            return render_template('matches/form.html', tournament=match.tournament, match=match,
                                   form=request.form), 400
        except BadRequestError as e:
            db.session.rollback()
            flash(e.message, 'error')
            return render_template('matches/form.html', tournament=match.tournament, match=match,
                                   form=request.form), 400
        flash(_('Match updated.'), 'success')
        return redirect(url_for('tournaments.tournament_detail', tournament_id=match.tournament_id))
    return render_template('matches/form.html', tournament=match.tournament, match=match, form={})


@matches_bp.route('/dashboard/matches/<int:match_id>/delete', methods=['POST'])
@login_required
def remove_match(match_id):
    match = get_or_404(Match, match_id, 'Match')
    tournament_id = delete_match(match)
    flash(_('Match deleted.'), 'success')
    return redirect(url_for('tournaments.tournament_detail', tournament_id=tournament_id))


@matches_bp.route('/dashboard/tournaments/<int:tournament_id>/matches/bulk', methods=['GET', 'POST'])
@login_required
def bulk_matches(tournament_id):
    tournament = get_or_404(Tournament, tournament_id, 'Tournament')
    if request.method == 'GET':
        return render_template('matches/bulk.html', tournament=tournament, rows=None, parse_errors=[])

    if request.form.get('action') == 'import':
        try:
            items = json.loads(request.form.get('rows_json') or '[]')
            if not isinstance(items, list):
                raise ValueError('rows_json is not a list')
        except ValueError:
            flash(_('The preview data was damaged, upload the file again.'), 'error')
            return redirect(url_for('matches.bulk_matches', tournament_id=tournament.id))
        rows, parse_errors = parse_match_records(items)
        try:
            summary = import_matches(tournament, rows)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error('bulk match import into tournament %s failed: %s', tournament.id, e)
            flash(_('Import failed, nothing was saved.'), 'error')
            return redirect(url_for('matches.bulk_matches', tournament_id=tournament.id))
        flash(_('Added %(added)d match(es), skipped %(skipped)d.', added=summary['added'],
                skipped=summary['skipped']), 'success')
        for message in parse_errors + summary['errors']:
            flash(message, 'warning')
        return redirect(url_for('tournaments.tournament_detail', tournament_id=tournament.id))

    try:
        rows, parse_errors = _rows_from_upload()
    except BadRequestError as e:
        flash(e.message, 'error')
        return redirect(url_for('matches.bulk_matches', tournament_id=tournament.id))
    return render_template('matches/bulk.html', tournament=tournament, rows=rows, parse_errors=parse_errors,
                           rows_json=json.dumps([r.to_dict() for r in rows]))


@matches_bp.route('/dashboard/tournaments/<int:tournament_id>/matches/template.csv')
@login_required
def match_template(tournament_id):
    tournament = get_or_404(Tournament, tournament_id, 'Tournament')
    return Response(match_csv_template(tournament.participant_players), mimetype='text/csv',
                    headers={'Content-Disposition': f'attachment; filename=matches_template_{tournament.id}.csv'})


# --- JSON API ---

@matches_bp.route('/api/tournaments/<int:tournament_id>/matches', methods=['GET', 'POST'])
@login_required
def api_matches(tournament_id):
    tournament = get_or_404(Tournament, tournament_id, 'Tournament')
    if request.method == 'POST':
        match = create_match(tournament, request.get_json(silent=True) or {})
        return jsonify(match.to_dict()), 201
    return jsonify({'matches': [m.to_dict() for m in tournament.matches]})


@matches_bp.route('/api/matches/<int:match_id>', methods=['GET', 'PUT', 'DELETE'])
@login_required
def api_match(match_id):
    match = get_or_404(Match, match_id, 'Match')
    if request.method == 'PUT':
        try:
            update_match(match, request.get_json(silent=True) or {})
        except BadRequestError:
            db.session.rollback()
            raise
    elif request.method == 'DELETE':
        delete_match(match)
        return jsonify({'success': True, 'message': 'Match deleted'})
    return jsonify(match.to_dict())


@matches_bp.route('/api/tournaments/<int:tournament_id>/matches/bulk', methods=['POST'])
@login_required
def api_bulk_matches(tournament_id):
    tournament = get_or_404(Tournament, tournament_id, 'Tournament')
    rows, parse_errors = _rows_from_upload()
    if not rows and parse_errors:
        raise BadRequestError(parse_errors[0], details={'rows': parse_errors})
    summary = import_matches(tournament, rows)
    db.session.commit()
    errors = parse_errors + summary['errors']
    return jsonify({
        'success': True,
        'added': summary['added'],
        'skipped': summary['skipped'] + len(parse_errors),
        'errors': errors or None,
        'message': f"Successfully added {summary['added']} match(es)",
    })
