import logging
from flask import Flask, session, redirect, url_for, request, jsonify, flash, current_app
from flask_babel import lazy_gettext as _l
from config import Config
from . import commands
from .extensions import db, migrate, login_manager, babel
from .errors import register_error_handlers
from .models import User


def get_locale():
    if 'lang' in session:
        return session['lang']
    return request.accept_languages.best_match(
        current_app.config['BABEL_SUPPORTED_LOCALES']
    )


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    app.logger.setLevel(getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO))

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    login_manager.login_view = 'auth.login'
    login_manager.login_message = _l('Please log in to access this page.')
    babel.init_app(app, locale_selector=get_locale)

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        if request.path.startswith('/api/'):
            return jsonify({'error': 'Unauthorized', 'code': 'UNAUTHORIZED'}), 401
        flash(str(login_manager.login_message), 'info')
        return redirect(url_for('auth.login', next=request.path))

    register_error_handlers(app)

    from . import routes
    routes.init_routes(app)
    commands.register_commands(app)

    @app.route('/set_language/<lang_code>')
    def set_language(lang_code):
        if lang_code in app.config['BABEL_SUPPORTED_LOCALES']:
            session['lang'] = lang_code
        return redirect(request.referrer or url_for('public.home'))

    app.logger.info('clubhouse app created (database: %s)', app.config['SQLALCHEMY_DATABASE_URI'].split('://')[0])
    return app
