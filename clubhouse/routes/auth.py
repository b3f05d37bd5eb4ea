from urllib.parse import urlsplit
from flask import Blueprint, render_template, request, flash, redirect, url_for, session, current_app
from flask_login import login_user, logout_user, current_user, login_required
from flask_babel import _
from ..extensions import db
from ..models import User

auth_bp = Blueprint('auth', __name__)


def _safe_next(target):
    # only follow relative redirects back into this site
    if not target or urlsplit(target).netloc or not target.startswith('/'):
        return url_for('main.dashboard')
    return target


@auth_bp.route('/login', methods=['GET', 'POST'])
def login():
    if current_user.is_authenticated:
        return redirect(url_for('main.dashboard'))

    if request.method == 'POST':
        username = request.form.get('username', '').strip()
        password = request.form.get('password', '')
        remember_me = True if request.form.get('remember') else False
        user = User.query.filter_by(username=username).first()

        if user is None or not user.check_password(password):
            current_app.logger.info('failed login for %r', username)
            flash(_('Invalid username or password.'), 'error')
            return redirect(url_for('auth.login', next=request.args.get('next')))

        login_user(user, remember=remember_me)
        current_app.logger.info('user %s logged in', user.username)
        return redirect(_safe_next(request.args.get('next')))

    return render_template('login.html')


@auth_bp.route('/logout')
def logout():
    session.pop('_flashes', None)
    logout_user()
    return redirect(url_for('public.home'))


@auth_bp.route('/password', methods=['GET', 'POST'])
@login_required
def change_password():
    if request.method == 'GET':
        return render_template('change_password.html')

    current_password = request.form.get('current_password', '')
    new_password = request.form.get('new_password', '')
    confirm_password = request.form.get('confirm_password', '')

    user = db.session.get(User, current_user.id)
    if not user.check_password(current_password):
        flash(_('Current password is incorrect.'), 'error')
        return redirect(url_for('auth.change_password'))

    if new_password != confirm_password:
        flash(_('New passwords do not match.'), 'error')
        return redirect(url_for('auth.change_password'))

    if len(new_password) < 8:
        flash(_('New password must be at least 8 characters.'), 'error')
        return redirect(url_for('auth.change_password'))

    user.set_password(new_password)
    db.session.commit()

    flash(_('Password changed.'), 'success')
    return redirect(url_for('main.dashboard'))
