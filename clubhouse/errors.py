from flask import jsonify, render_template, request, current_app
from flask_babel import _
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.exceptions import HTTPException
from .extensions import db


class AppError(Exception):
    status_code = 500
    code = 'INTERNAL_ERROR'

    def __init__(self, message, status_code=None, code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code

    def to_dict(self):
        return {'error': self.message, 'code': self.code}


class BadRequestError(AppError):
    status_code = 400
    code = 'VALIDATION_ERROR'

    def __init__(self, message, details=None):
        super().__init__(message)
        self.details = details

    def to_dict(self):
        data = super().to_dict()
        if self.details:
            data['details'] = self.details
        return data


class UnauthorizedError(AppError):
    status_code = 401
    code = 'UNAUTHORIZED'

    def __init__(self, message='Unauthorized'):
        super().__init__(message)


class ForbiddenError(AppError):
    status_code = 403
    code = 'FORBIDDEN'

    def __init__(self, message='Forbidden'):
        super().__init__(message)


class NotFoundError(AppError):
    status_code = 404
    code = 'NOT_FOUND'

    def __init__(self, resource):
        super().__init__(f'{resource} not found')


class ConflictError(AppError):
    status_code = 409
    code = 'CONFLICT'


def format_validation_error(exc):
    """Flatten a pydantic ValidationError into {field: [messages]}."""
    details = {}
    for error in exc.errors():
        loc = [str(part) for part in error.get('loc', ()) if part != '__root__']
        field = '.'.join(loc) if loc else 'form'
        message = error.get('msg', 'Invalid value')
        if message.startswith('Value error, '):
            message = message[len('Value error, '):]
        details.setdefault(field, []).append(message)
    return details


def first_error_message(exc):
    details = format_validation_error(exc)
    for field, messages in details.items():
        return f'{field}: {messages[0]}' if field != 'form' else messages[0]
    return _('Please check your input and try again.')


def get_or_404(model, object_id, resource):
    obj = db.session.get(model, object_id)
    if obj is None:
        raise NotFoundError(resource)
    return obj


def wants_json():
    return request.path.startswith('/api/')


def register_error_handlers(app):
    @app.errorhandler(AppError)
    def handle_app_error(error):
        app.logger.warning('%s %s -> %s %s', request.method, request.path, error.status_code, error.message)
        if wants_json():
            return jsonify(error.to_dict()), error.status_code
        if error.status_code == 404:
            return render_template('errors/404.html', message=error.message), 404
        return render_template('errors/error.html', message=error.message), error.status_code

    @app.errorhandler(SchemaValidationError)
    def handle_schema_error(error):
        details = format_validation_error(error)
        app.logger.info('validation failed on %s: %s', request.path, details)
        if wants_json():
            return jsonify({'error': 'Validation failed', 'code': 'VALIDATION_ERROR', 'details': details}), 400
        return render_template('errors/error.html', message=first_error_message(error)), 400

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(error):
        db.session.rollback()
        app.logger.warning('integrity error on %s: %s', request.path, error.orig)
        message = _('A record with this value already exists')
        if wants_json():
            return jsonify({'error': message, 'code': 'CONFLICT'}), 409
        return render_template('errors/error.html', message=message), 409

    @app.errorhandler(404)
    def handle_not_found(error):
        if wants_json():
            return jsonify({'error': 'Not found', 'code': 'NOT_FOUND'}), 404
        return render_template('errors/404.html', message=None), 404

    @app.errorhandler(Exception)
    def handle_unexpected(error):
        if isinstance(error, HTTPException):
            if wants_json():
                return jsonify({'error': error.description, 'code': error.name.upper().replace(' ', '_')}), error.code
            return error
        if isinstance(error, SQLAlchemyError):
            db.session.rollback()
        current_app.logger.exception('unhandled error on %s %s', request.method, request.path)
        if wants_json():
            return jsonify({'error': 'An unexpected error occurred', 'code': 'INTERNAL_ERROR'}), 500
        return render_template('errors/500.html'), 500
