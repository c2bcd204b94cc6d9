"""
ctxrepo HTTP API

Flask application exposing retrieval, search, pattern analytics and
archiving over JSON.

Usage:
    from api.app import create_app

    app = create_app()
    app.run(port=5000)

    # Tests
    app = create_app(config, store=FileStore(tmp_path))
    client = app.test_client()
"""

import logging
import time
import uuid
from typing import Optional

from flask import Flask, g, request

from core.config import CtxRepoConfig, load_config
from core.logging_config import get_logger, setup_logging
from extraction.archiver import ContextArchiver
from extraction.extractor import ContextExtractor
from intelligence.patterns import PatternAnalyzer
from intelligence.scoring import RelevanceScorer
from search.retriever import ContextRetriever
from storage.file_store import FileStore

from .error_handlers import setup_error_handlers
from .routes import api_bp, health_bp

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 50 * 1024 * 1024


class Services:
    """Components shared by the request handlers of one app."""

    def __init__(self, config: CtxRepoConfig, store: FileStore):
        self.config = config
        self.store = store
        self.scorer = RelevanceScorer(
            weights=config.scoring.weights,
            half_life_days=config.scoring.archive_half_life_days,
        )
        self.retriever = ContextRetriever(
            store,
            scorer=self.scorer,
            half_life_days=config.search.retrieval_half_life_days,
        )
        self.analyzer = PatternAnalyzer(store)
        self.archiver = ContextArchiver(store, ContextExtractor.from_config(config))
        self.started_at = time.time()


# =============================================================================
# Request Logging Middleware
# =============================================================================

def setup_request_logging(app):
    """
    Set up request logging middleware.

    Logs:
    - Request start with method, path, and request ID
    - Request end with status code and duration
    """
    request_logger = get_logger('ctxrepo.requests')

    @app.before_request
    def before_request():
        g.request_id = request.headers.get('X-Request-ID', str(uuid.uuid4()))
        g.start_time = time.time()

        request_logger.info(
            f'{request.method} {request.path}',
            extra={
                'request_id': g.request_id,
                'method': request.method,
                'path': request.path,
                'remote_addr': request.remote_addr,
            }
        )

    @app.after_request
    def after_request(response):
        duration_ms = int((time.time() - g.get('start_time', time.time())) * 1000)

        if response.status_code >= 500:
            log_method = request_logger.error
        elif response.status_code >= 400:
            log_method = request_logger.warning
        else:
            log_method = request_logger.info

        request_id = g.get('request_id') or str(uuid.uuid4())
        log_method(
            f'{request.method} {request.path} -> {response.status_code}',
            extra={
                'request_id': request_id,
                'method': request.method,
                'path': request.path,
                'status_code': response.status_code,
                'duration_ms': duration_ms,
            }
        )

        response.headers['X-Request-ID'] = request_id
        return response


# =============================================================================
# Application Factory
# =============================================================================

def create_app(
    config: Optional[CtxRepoConfig] = None,
    store: Optional[FileStore] = None,
    configure_logging: bool = True
) -> Flask:
    """
    Build the Flask app.

    Args:
        config: Configuration (loaded with load_config() if None)
        store: Archive to serve (FileStore at config.storage.base_path if None)
        configure_logging: Install root log handlers from config.logging
    """
    config = config or load_config()
    if configure_logging:
        setup_logging(config.logging.level, config.logging.json_format)

    if store is None:
        store = FileStore(config.storage.base_path, retention_days=config.storage.retention_days)

    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = MAX_CONTENT_LENGTH
    app.json.sort_keys = False
    app.extensions['ctxrepo'] = Services(config, store)

    setup_request_logging(app)
    setup_error_handlers(app)

    app.register_blueprint(health_bp)
    app.register_blueprint(api_bp, url_prefix='/api')

    logger.info(f"ctxrepo API ready, archive at {store.base_path}")
    return app
