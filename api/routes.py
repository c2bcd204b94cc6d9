"""
ctxrepo API Routes

Endpoints:
- GET  /api/context              relevance-ranked contexts for a query
- GET  /api/search               filtered archive search with matches
- GET  /api/recent               most recent contexts
- GET  /api/sessions/<id>        one archived context
- GET  /api/patterns             merged recurring patterns
- GET  /api/patterns/analyze     insights and recommendations for a project
- GET  /api/patterns/evolution   frequency of one pattern over time
- GET  /api/index/search         keyword index search within a project
- POST /api/archive              extract and archive transcript entries
- GET  /health                   liveness with archive stats

Usage:
    from api.routes import api_bp, health_bp
    app.register_blueprint(api_bp, url_prefix='/api')
    app.register_blueprint(health_bp)
"""

import logging
import time

from flask import Blueprint, current_app, jsonify, request

from core.errors import NotFoundError, ValidationError
from core.models import PATTERN_TYPES
from search.indexer import SearchIndexer
from search.retriever import SCOPES, SORT_ORDERS

from .error_handlers import choice_arg, float_arg, int_arg, require_arg, validate_request_json

logger = logging.getLogger(__name__)

api_bp = Blueprint('ctxrepo_api', __name__)
health_bp = Blueprint('health', __name__)

MAX_LIMIT = 100


def _services():
    return current_app.extensions['ctxrepo']


# =============================================================================
# Retrieval Endpoints
# =============================================================================

@api_bp.route('/context')
def fetch_context():
    """
    Contexts relevant to a query.

    Query params:
        q: Search query (empty ranks by stored relevance)
        limit: Maximum contexts (default 5)
        scope: project, session or global
        min_relevance: Minimum relevance (default from config)
        project: Project path for project scope
    """
    services = _services()
    query = request.args.get('q', '')
    limit = int_arg('limit', 5, minimum=1, maximum=MAX_LIMIT)
    scope = choice_arg('scope', 'project', SCOPES)
    min_relevance = float_arg('min_relevance', services.config.search.min_relevance, minimum=0.0, maximum=1.0)
    project = request.args.get('project') or None

    contexts = services.retriever.fetch_relevant_context(
        query,
        limit=limit,
        scope=scope,
        min_relevance=min_relevance,
        project_path=project,
    )
    return jsonify({
        'query': query,
        'scope': scope,
        'count': len(contexts),
        'contexts': [c.to_dict() for c in contexts],
    })


@api_bp.route('/search')
def search_archive():
    """
    Filtered archive search.

    Query params:
        q: Search query (required)
        file_pattern: Glob over modified files, e.g. *.ts
        from / to: Inclusive ISO timestamps
        project: Project path substring
        limit: Maximum results (default from config)
        sort_by: relevance, date or frequency
    """
    services = _services()
    query = require_arg('q')
    limit = int_arg('limit', services.config.search.default_limit, minimum=1, maximum=MAX_LIMIT)
    sort_by = choice_arg('sort_by', 'relevance', SORT_ORDERS)

    date_range = None
    if request.args.get('from') or request.args.get('to'):
        date_range = {'from': request.args.get('from'), 'to': request.args.get('to')}

    results = services.retriever.search_archive(
        query,
        file_pattern=request.args.get('file_pattern') or None,
        date_range=date_range,
        project_path=request.args.get('project') or None,
        limit=limit,
        sort_by=sort_by,
    )
    return jsonify({
        'query': query,
        'sortBy': sort_by,
        'count': len(results),
        'results': [r.to_dict() for r in results],
    })


@api_bp.route('/recent')
def recent_contexts():
    limit = int_arg('limit', 10, minimum=1, maximum=MAX_LIMIT)
    contexts = _services().retriever.get_recent_contexts(limit)
    return jsonify({
        'count': len(contexts),
        'contexts': [c.to_dict() for c in contexts],
    })


@api_bp.route('/sessions/<session_id>')
def get_session(session_id):
    context = _services().retriever.get_by_session_id(session_id)
    if context is None:
        raise NotFoundError('Session not found', session_id=session_id)
    return jsonify(context.to_dict())


# =============================================================================
# Pattern Endpoints
# =============================================================================

@api_bp.route('/patterns')
def get_patterns():
    """
    Recurring patterns merged across sessions.

    Query params:
        type: all, code, command, architecture or error-handling
        min_frequency: Minimum merged frequency (default 2)
        project: Restrict to one project
        limit: Maximum patterns (default 10)
    """
    pattern_type = choice_arg('type', 'all', ('all',) + PATTERN_TYPES)
    min_frequency = int_arg('min_frequency', 2, minimum=1)
    limit = int_arg('limit', 10, minimum=1, maximum=MAX_LIMIT)

    patterns = _services().analyzer.get_patterns(
        type=pattern_type,
        min_frequency=min_frequency,
        project_path=request.args.get('project') or None,
        limit=limit,
    )
    return jsonify({
        'count': len(patterns),
        'patterns': [p.to_dict() for p in patterns],
    })


@api_bp.route('/patterns/analyze')
def analyze_project():
    project = require_arg('project')
    report = _services().analyzer.analyze_project(project)
    return jsonify({
        'projectPath': project,
        'patterns': [p.to_dict() for p in report['patterns']],
        'insights': [i.to_dict() for i in report['insights']],
        'recommendations': report['recommendations'],
    })


@api_bp.route('/patterns/evolution')
def pattern_evolution():
    value = require_arg('value')
    pattern_type = choice_arg('type', None, PATTERN_TYPES)
    evolution = _services().analyzer.get_pattern_evolution(value, pattern_type)
    return jsonify({'value': value, 'type': pattern_type, **evolution})


# =============================================================================
# Index and Archive Endpoints
# =============================================================================

@api_bp.route('/index/search')
def index_search():
    """Keyword index search within one project."""
    query = require_arg('q')
    project = require_arg('project')
    limit = int_arg('limit', 10, minimum=1, maximum=MAX_LIMIT)

    indexer = SearchIndexer.for_project(_services().store, project)
    results = indexer.search(query, limit=limit)
    return jsonify({
        'query': query,
        'count': len(results),
        'results': [r.to_dict() for r in results],
    })


@api_bp.route('/archive', methods=['POST'])
@validate_request_json('entries')
def archive_entries():
    """
    Extract and archive transcript entries.

    Body:
        {"entries": [TranscriptEntry, ...], "project_path": optional str}
    """
    data = request.get_json()
    entries = data['entries']
    if not isinstance(entries, list) or not entries:
        raise ValidationError('entries must be a non-empty list')
    if not all(isinstance(e, dict) for e in entries):
        raise ValidationError('entries must be JSON objects')

    result = _services().archiver.archive_from_entries(entries, project_path=data.get('project_path'))
    if not result.success:
        return jsonify(result.to_dict()), 500
    return jsonify(result.to_dict()), 201


# =============================================================================
# Health
# =============================================================================

@health_bp.route('/health')
def liveness():
    services = _services()
    stats = services.store.get_stats()
    return jsonify({
        'status': 'ok',
        'uptime_seconds': int(time.time() - services.started_at),
        'archive': {
            'totalProjects': stats['totalProjects'],
            'totalSessions': stats['totalSessions'],
        },
    })
