from datetime import date
from flask import request
from ..models import RoleType

from .auth import auth_bp
from .main import main_bp
from .clubs import clubs_bp
from .players import players_bp
from .point_systems import point_systems_bp
from .tournaments import tournaments_bp
from .matches import matches_bp
from .public import public_bp


def format_date(value, fmt='%Y-%m-%d'):
    """Jinja2 filter: render a date or datetime, blank when missing."""
    if value is None:
        return ""
    return value.strftime(fmt)


def init_routes(app):
    app.jinja_env.filters['dateformat'] = format_date

    @app.context_processor
    def inject_globals():
        return dict(active_page=request.endpoint, today=date.today(), role_types=list(RoleType))

    app.register_blueprint(auth_bp)
    app.register_blueprint(main_bp)
    app.register_blueprint(clubs_bp)
    app.register_blueprint(players_bp)
    app.register_blueprint(point_systems_bp)
    app.register_blueprint(tournaments_bp)
    app.register_blueprint(matches_bp)
    app.register_blueprint(public_bp)
