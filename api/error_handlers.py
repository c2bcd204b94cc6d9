"""
ctxrepo API Error Handling

Maps ctxrepo exceptions and HTTP errors to JSON responses.

Usage:
    from api.error_handlers import setup_error_handlers

    setup_error_handlers(app)

    # In routes
    if context is None:
        raise NotFoundError("Session not found", session_id=session_id)
"""

import logging
import traceback
from functools import wraps

from flask import current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from core.errors import CtxRepoError, ValidationError

logger = logging.getLogger('ctxrepo.errors')


# =============================================================================
# Error Handlers
# =============================================================================

def setup_error_handlers(app):
    """Register error handlers with Flask app."""

    @app.errorhandler(CtxRepoError)
    def handle_ctxrepo_error(error):
        """Handle ctxrepo errors."""
        log_method = logger.error if error.status_code >= 500 else logger.warning
        log_method(
            f'{error.error_type}: {error.message}',
            extra={
                'error_type': error.error_type,
                'details': error.details,
                'path': request.path,
                'request_id': getattr(g, 'request_id', None),
            }
        )

        response = jsonify(error.to_dict())
        response.status_code = error.status_code
        return response

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        """Handle werkzeug HTTP errors (404, 405, 413, ...)."""
        error_type = (error.name or 'http_error').lower().replace(' ', '_')
        return jsonify({
            'error': error_type,
            'message': error.description or error.name,
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        """Handle any unexpected errors."""
        logger.exception(
            f'Unexpected error: {type(error).__name__}: {str(error)}',
            extra={
                'error_type': type(error).__name__,
                'path': request.path,
                'request_id': getattr(g, 'request_id', None),
            }
        )

        # Don't expose error details in production
        if current_app.debug:
            return jsonify({
                'error': 'unexpected_error',
                'message': str(error),
                'type': type(error).__name__,
                'traceback': traceback.format_exc()
            }), 500
        return jsonify({
            'error': 'unexpected_error',
            'message': 'An unexpected error occurred'
        }), 500


# =============================================================================
# Request Validation
# =============================================================================

def validate_request_json(*required_fields):
    """
    Decorator to validate required JSON fields in request.

    Usage:
        @validate_request_json('entries')
        def archive():
            data = request.get_json()
            ...
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            data = request.get_json(silent=True)

            if not isinstance(data, dict):
                raise ValidationError('Request body must be a JSON object')

            missing = [f for f in required_fields if f not in data]
            if missing:
                raise ValidationError(
                    f'Missing required fields: {", ".join(missing)}',
                    missing_fields=missing
                )

            return func(*args, **kwargs)
        return wrapper
    return decorator


def require_arg(name):
    """Return a non-empty query parameter or raise ValidationError."""
    value = request.args.get(name, '').strip()
    if not value:
        raise ValidationError(f'Missing required parameter: {name}', param=name)
    return value


def int_arg(name, default, minimum=None, maximum=None):
    """Integer query parameter with range validation."""
    raw = request.args.get(name)
    if raw is None or raw == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f'{name} must be of type int', param=name, expected_type='int')
    if minimum is not None and value < minimum:
        raise ValidationError(f'{name} must be at least {minimum}', param=name, min_value=minimum)
    if maximum is not None and value > maximum:
        raise ValidationError(f'{name} must be at most {maximum}', param=name, max_value=maximum)
    return value


def float_arg(name, default, minimum=None, maximum=None):
    """Float query parameter with range validation."""
    raw = request.args.get(name)
    if raw is None or raw == '':
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValidationError(f'{name} must be of type float', param=name, expected_type='float')
    if (minimum is not None and value < minimum) or (maximum is not None and value > maximum):
        raise ValidationError(f'{name} must be between {minimum} and {maximum}', param=name)
    return value


def choice_arg(name, default, choices):
    value = request.args.get(name) or default
    if value not in choices:
        raise ValidationError(
            f'{name} must be one of: {", ".join(choices)}',
            param=name,
            allowed=list(choices)
        )
    return value
