from flask import Blueprint, render_template, jsonify, request, flash, redirect, url_for, current_app
from flask_login import login_required
from flask_babel import _
from pydantic import ValidationError
from sqlalchemy import func
from ..extensions import db
from ..errors import get_or_404, first_error_message, ConflictError, NotFoundError
from ..models import PointSystemTemplate, ConditionalRule, StagePoint, Tournament
from ..schemas import PointSystemIn, PointSystemUpdate, ConditionalRuleIn, ConditionalRuleUpdate, StageIn, form_payload
from ..utils import page_args, pagination_dict

point_systems_bp = Blueprint('point_systems', __name__)


def _template_query(q):
    query = PointSystemTemplate.query
    if q:
        query = query.filter(PointSystemTemplate.name.ilike(f"%{q}%"))
    return query.order_by(PointSystemTemplate.name.asc())


def _ensure_name_free(name, template_id=None):
    query = PointSystemTemplate.query.filter(func.lower(PointSystemTemplate.name) == name.lower())
    if template_id is not None:
        query = query.filter(PointSystemTemplate.id != template_id)
    if query.first() is not None:
        raise ConflictError(_('A point system with this name already exists'))


def create_template(data):
    payload = PointSystemIn.model_validate(data)
    _ensure_name_free(payload.name)
    template = PointSystemTemplate(**payload.model_dump(exclude={'conditional_rules', 'stages'}))
    for rule in payload.conditional_rules:
        template.conditional_rules.append(ConditionalRule(**rule.model_dump()))
    for stage in payload.stages:
        template.stage_points.append(StagePoint(**stage.model_dump()))
    db.session.add(template)
    db.session.commit()
    current_app.logger.info('created point system %s (%s) with %d rules', template.id, template.name,
                            len(template.conditional_rules))
    return template


def update_template(template, data):
    changes = PointSystemUpdate.model_validate(data).changes()
    if changes.get('name'):
        _ensure_name_free(changes['name'], template_id=template.id)
    for field, value in changes.items():
        if value is None and field != 'description':
            continue
        setattr(template, field, value)
    db.session.commit()
    return template


def delete_template(template):
    in_use = db.session.query(func.count(Tournament.id)).filter(
        Tournament.point_system_template_id == template.id).scalar()
    if in_use:
        raise ConflictError(_('This point system is used by %(count)d tournament(s) and cannot be deleted',
                              count=in_use))
    template_id = template.id
    db.session.delete(template)
    db.session.commit()
    current_app.logger.info('deleted point system %s', template_id)


def _get_rule(template, rule_id):
    rule = db.session.get(ConditionalRule, rule_id)
    if rule is None or rule.template_id != template.id:
        raise NotFoundError('Conditional rule')
    return rule


def add_rule(template, data):
    payload = ConditionalRuleIn.model_validate(data)
    rule = ConditionalRule(**payload.model_dump())
    template.conditional_rules.append(rule)
    db.session.commit()
    return rule


def update_rule(rule, data):
    payload = ConditionalRuleUpdate.model_validate(data).merged_with(rule)
    for field, value in payload.model_dump().items():
        setattr(rule, field, value)
    db.session.commit()
    return rule


def delete_rule(rule):
    db.session.delete(rule)
    db.session.commit()


def add_stage(template, data):
    payload = StageIn.model_validate(data)
    stage = StagePoint(**payload.model_dump())
    template.stage_points.append(stage)
    db.session.commit()
    return stage


def _get_stage(template, stage_id):
    stage = db.session.get(StagePoint, stage_id)
    if stage is None or stage.template_id != template.id:
        raise NotFoundError('Stage')
    return stage


def delete_stage(stage):
    # matches keep their stage name, only the link goes
    for match in list(stage.matches):
        match.stage_id = None
    db.session.delete(stage)
    db.session.commit()


# --- dashboard pages ---

@point_systems_bp.route('/dashboard/point-systems')
@login_required
def list_point_systems():
    q = request.args.get('q', '').strip()
    page, size = page_args()
    pagination = _template_query(q).paginate(page=page, per_page=size, error_out=False)
    return render_template('point_systems/list.html', pagination=pagination, templates=pagination.items, q=q)


@point_systems_bp.route('/dashboard/point-systems/new', methods=['GET', 'POST'])
@login_required
def new_point_system():
    if request.method == 'POST':
        try:
            template = create_template(form_payload(request.form, drop_empty=True))
        except ValidationError as e:
            flash(first_error_message(e), 'error')
            return render_template('point_systems/form.html', template=None, form=request.form), 400
        except ConflictError as e:
            flash(e.message, 'error')
            return render_template('point_systems/form.html', template=None, form=request.form), 409
        flash(_('Point system "%(name)s" created.', name=template.name), 'success')
        return redirect(url_for('point_systems.point_system_detail', template_id=template.id))
    return render_template('point_systems/form.html', template=None, form={})


@point_systems_bp.route('/dashboard/point-systems/<int:template_id>')
@login_required
def point_system_detail(template_id):
    template = get_or_404(PointSystemTemplate, template_id, 'Point system')
    return render_template('point_systems/detail.html', template=template)


@point_systems_bp.route('/dashboard/point-systems/<int:template_id>/edit', methods=['GET', 'POST'])
@login_required
def edit_point_system(template_id):
    template = get_or_404(PointSystemTemplate, template_id, 'Point system')
    if request.method == 'POST':
        try:
            update_template(template, form_payload(request.form))
        except ValidationError as e:
            flash(first_error_message(e), 'error')
            return render_template('point_systems/form.html', template=template, form=request.form), 400
        except ConflictError as e:
            flash(e.message, 'error')
            return render_template('point_systems/form.html', template=template, form=request.form), 409
        flash(_('Point system updated. Use "Recalculate" on a tournament to apply it to recorded matches.'),
              'success')
        return redirect(url_for('point_systems.point_system_detail', template_id=template.id))
    return render_template('point_systems/form.html', template=template, form={})


@point_systems_bp.route('/dashboard/point-systems/<int:template_id>/delete', methods=['POST'])
@login_required
def remove_point_system(template_id):
    template = get_or_404(PointSystemTemplate, template_id, 'Point system')
    try:
        delete_template(template)
    except ConflictError as e:
        flash(e.message, 'error')
        return redirect(url_for('point_systems.point_system_detail', template_id=template_id))
    flash(_('Point system deleted.'), 'success')
    return redirect(url_for('point_systems.list_point_systems'))


@point_systems_bp.route('/dashboard/point-systems/<int:template_id>/rules', methods=['POST'])
@login_required
def new_rule(template_id):
    template = get_or_404(PointSystemTemplate, template_id, 'Point system')
    try:
        add_rule(template, form_payload(request.form, drop_empty=True))
        flash(_('Rule added.'), 'success')
    except ValidationError as e:
        flash(first_error_message(e), 'error')
    return redirect(url_for('point_systems.point_system_detail', template_id=template.id))


@point_systems_bp.route('/dashboard/point-systems/<int:template_id>/rules/<int:rule_id>/edit', methods=['POST'])
@login_required
def edit_rule(template_id, rule_id):
    template = get_or_404(PointSystemTemplate, template_id, 'Point system')
    rule = _get_rule(template, rule_id)
    try:
        update_rule(rule, form_payload(request.form, drop_empty=True))
        flash(_('Rule updated.'), 'success')
    except ValidationError as e:
        flash(first_error_message(e), 'error')
    return redirect(url_for('point_systems.point_system_detail', template_id=template.id))


@point_systems_bp.route('/dashboard/point-systems/<int:template_id>/rules/<int:rule_id>/delete', methods=['POST'])
@login_required
def remove_rule(template_id, rule_id):
    template = get_or_404(PointSystemTemplate, template_id, 'Point system')
    delete_rule(_get_rule(template, rule_id))
    flash(_('Rule deleted.'), 'success')
    return redirect(url_for('point_systems.point_system_detail', template_id=template.id))


@point_systems_bp.route('/dashboard/point-systems/<int:template_id>/stages', methods=['POST'])
@login_required
def new_stage(template_id):
    template = get_or_404(PointSystemTemplate, template_id, 'Point system')
    try:
        add_stage(template, form_payload(request.form, drop_empty=True))
        flash(_('Stage added.'), 'success')
    except ValidationError as e:
        flash(first_error_message(e), 'error')
    return redirect(url_for('point_systems.point_system_detail', template_id=template.id))


@point_systems_bp.route('/dashboard/point-systems/<int:template_id>/stages/<int:stage_id>/delete', methods=['POST'])
@login_required
def remove_stage(template_id, stage_id):
    template = get_or_404(PointSystemTemplate, template_id, 'Point system')
    delete_stage(_get_stage(template, stage_id))
    flash(_('Stage deleted.'), 'success')
    return redirect(url_for('point_systems.point_system_detail', template_id=template.id))


# --- JSON API ---

@point_systems_bp.route('/api/point-systems', methods=['GET', 'POST'])
@login_required
def api_point_systems():
    if request.method == 'POST':
        template = create_template(request.get_json(silent=True) or {})
        return jsonify(template.to_dict()), 201

    page, size = page_args()
    pagination = _template_query(request.args.get('search', request.args.get('q', '')).strip()).paginate(
        page=page, per_page=size, error_out=False)
    return jsonify({
        'pointSystems': [t.to_dict() for t in pagination.items],
        'pagination': pagination_dict(pagination),
    })


@point_systems_bp.route('/api/point-systems/<int:template_id>', methods=['GET', 'PUT', 'DELETE'])
@login_required
def api_point_system(template_id):
    template = get_or_404(PointSystemTemplate, template_id, 'Point system')
    if request.method == 'PUT':
        update_template(template, request.get_json(silent=True) or {})
    elif request.method == 'DELETE':
        delete_template(template)
        return jsonify({'success': True, 'message': 'Point system deleted'})
    return jsonify(template.to_dict())


@point_systems_bp.route('/api/point-systems/<int:template_id>/rules', methods=['GET', 'POST'])
@login_required
def api_rules(template_id):
    template = get_or_404(PointSystemTemplate, template_id, 'Point system')
    if request.method == 'POST':
        rule = add_rule(template, request.get_json(silent=True) or {})
        return jsonify(rule.to_dict()), 201
    return jsonify({'rules': [r.to_dict() for r in template.conditional_rules]})


@point_systems_bp.route('/api/point-systems/<int:template_id>/rules/<int:rule_id>', methods=['GET', 'PUT', 'DELETE'])
@login_required
def api_rule(template_id, rule_id):
    template = get_or_404(PointSystemTemplate, template_id, 'Point system')
    rule = _get_rule(template, rule_id)
    if request.method == 'PUT':
        update_rule(rule, request.get_json(silent=True) or {})
    elif request.method == 'DELETE':
        delete_rule(rule)
        return jsonify({'success': True, 'message': 'Rule deleted'})
    return jsonify(rule.to_dict())


@point_systems_bp.route('/api/point-systems/<int:template_id>/stages', methods=['GET', 'POST'])
@login_required
def api_stages(template_id):
    template = get_or_404(PointSystemTemplate, template_id, 'Point system')
    if request.method == 'POST':
        stage = add_stage(template, request.get_json(silent=True) or {})
        return jsonify(stage.to_dict()), 201
    return jsonify({'stages': [s.to_dict() for s in template.stage_points]})


@point_systems_bp.route('/api/point-systems/<int:template_id>/stages/<int:stage_id>', methods=['DELETE'])
@login_required
def api_stage(template_id, stage_id):
    template = get_or_404(PointSystemTemplate, template_id, 'Point system')
    delete_stage(_get_stage(template, stage_id))
    return jsonify({'success': True, 'message': 'Stage deleted'})
