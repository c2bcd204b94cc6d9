"""
ctxrepo HTTP API

Flask app factory and blueprints for retrieval, search, patterns and archiving.
"""

from .app import create_app, setup_request_logging
from .routes import api_bp, health_bp

__all__ = [
    'create_app',
    'setup_request_logging',
    'api_bp',
    'health_bp',
]
