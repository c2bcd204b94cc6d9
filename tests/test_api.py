"""
Tests for the HTTP API

Exercises every endpoint through the Flask test client against a
temporary archive.
"""

import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from api.app import create_app
from core.config import CtxRepoConfig
from storage.file_store import FileStore
from fixtures.sample_data import PROJECT, SESSION_ID, auth_fix_session, days_ago, make_context, make_pattern


@pytest.fixture
def store(tmp_path):
    return FileStore(tmp_path / 'archive', retention_days=0)


@pytest.fixture
def app(store):
    app = create_app(CtxRepoConfig(), store=store, configure_logging=False)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def populated(store):
    store.store(make_context(
        'sess-jwt',
        timestamp=days_ago(1),
        questions=["How to add JWT authentication?"],
        implementations=[{'file': 'src/auth.ts', 'description': 'Add JWT middleware'}],
        patterns=[make_pattern('cmd:npm test', 3)],
        relevance_score=0.7,
    ))
    store.store(make_context(
        'sess-redis',
        timestamp=days_ago(2),
        questions=["Why is the redis cache slow?"],
        patterns=[make_pattern('cmd:npm test', 4)],
        relevance_score=0.4,
    ))
    return store


class TestHealth:
    """Tests for the health endpoint and middleware."""

    def test_health(self, client, populated):
        response = client.get('/health')
        assert response.status_code == 200
        data = response.get_json()
        assert data['status'] == 'ok'
        assert data['archive'] == {'totalProjects': 1, 'totalSessions': 2}

    def test_request_id_echoed(self, client):
        response = client.get('/health', headers={'X-Request-ID': 'req-123'})
        assert response.headers['X-Request-ID'] == 'req-123'

    def test_request_id_generated(self, client):
        assert client.get('/health').headers['X-Request-ID']

    def test_unknown_route_is_json(self, client):
        response = client.get('/api/nothing-here')
        assert response.status_code == 404
        assert response.get_json()['error'] == 'not_found'


class TestRetrievalEndpoints:
    """Tests for /api/context, /api/search, /api/recent and /api/sessions."""

    def test_context(self, client, populated):
        response = client.get('/api/context', query_string={'q': 'JWT authentication', 'project': PROJECT})
        assert response.status_code == 200
        data = response.get_json()
        assert data['scope'] == 'project'
        assert [c['sessionId'] for c in data['contexts']] == ['sess-jwt']

    def test_context_without_query(self, client, populated):
        data = client.get('/api/context', query_string={'scope': 'global'}).get_json()
        assert [c['sessionId'] for c in data['contexts']] == ['sess-jwt', 'sess-redis']

    def test_context_invalid_scope(self, client):
        response = client.get('/api/context', query_string={'scope': 'universe'})
        assert response.status_code == 400
        assert response.get_json()['error'] == 'validation_error'

    def test_context_invalid_limit(self, client):
        assert client.get('/api/context', query_string={'limit': 'many'}).status_code == 400
        assert client.get('/api/context', query_string={'limit': 0}).status_code == 400

    def test_search(self, client, populated):
        response = client.get('/api/search', query_string={'q': 'redis', 'sort_by': 'date'})
        assert response.status_code == 200
        data = response.get_json()
        assert data['count'] == 1
        result = data['results'][0]
        assert result['context']['sessionId'] == 'sess-redis'
        assert result['matches'][0]['field'] == 'problem.question'

    def test_search_file_pattern(self, client, populated):
        data = client.get('/api/search', query_string={'q': 'jwt', 'file_pattern': '*.ts'}).get_json()
        assert [r['context']['sessionId'] for r in data['results']] == ['sess-jwt']

    def test_search_requires_query(self, client):
        response = client.get('/api/search')
        assert response.status_code == 400
        assert response.get_json()['details']['param'] == 'q'

    def test_search_invalid_sort(self, client):
        assert client.get('/api/search', query_string={'q': 'x', 'sort_by': 'size'}).status_code == 400

    def test_recent(self, client, populated):
        data = client.get('/api/recent', query_string={'limit': 1}).get_json()
        assert [c['sessionId'] for c in data['contexts']] == ['sess-jwt']

    def test_session(self, client, populated):
        response = client.get('/api/sessions/sess-redis')
        assert response.status_code == 200
        assert response.get_json()['problems'][0]['question'] == "Why is the redis cache slow?"

    def test_session_not_found(self, client):
        response = client.get('/api/sessions/missing')
        assert response.status_code == 404
        assert response.get_json()['error'] == 'not_found'


class TestPatternEndpoints:
    """Tests for the pattern endpoints."""

    def test_patterns(self, client, populated):
        data = client.get('/api/patterns', query_string={'type': 'command'}).get_json()
        assert data['count'] == 1
        assert data['patterns'][0]['value'] == 'cmd:npm test'
        assert data['patterns'][0]['frequency'] == 7

    def test_patterns_invalid_type(self, client):
        assert client.get('/api/patterns', query_string={'type': 'style'}).status_code == 400

    def test_analyze(self, client, populated):
        data = client.get('/api/patterns/analyze', query_string={'project': PROJECT}).get_json()
        assert data['projectPath'] == PROJECT
        assert any(i['type'] == 'hotspot' for i in data['insights'])

    def test_analyze_requires_project(self, client):
        assert client.get('/api/patterns/analyze').status_code == 400

    def test_evolution(self, client, populated):
        data = client.get(
            '/api/patterns/evolution', query_string={'value': 'cmd:npm test', 'type': 'command'}
        ).get_json()
        assert [o['context'] for o in data['occurrences']] == ['sess-redis', 'sess-jwt']
        assert data['trend'] == 'decreasing'

    def test_evolution_requires_type(self, client):
        assert client.get('/api/patterns/evolution', query_string={'value': 'x'}).status_code == 400


class TestIndexAndArchive:
    """Tests for keyword index search and archiving."""

    def test_archive_then_index_search(self, client):
        response = client.post('/api/archive', json={'entries': auth_fix_session()})
        assert response.status_code == 201
        data = response.get_json()
        assert data['success'] is True
        assert data['stats']['problems'] == 1

        response = client.get('/api/index/search', query_string={'q': 'auth', 'project': PROJECT})
        assert response.status_code == 200
        assert [r['sessionId'] for r in response.get_json()['results']] == [SESSION_ID]

    def test_archive_with_project_override(self, client, store):
        response = client.post('/api/archive', json={'entries': auth_fix_session(), 'project_path': '/srv/app'})
        assert response.status_code == 201
        assert store.get_project_contexts('/srv/app')[0].session_id == SESSION_ID

    def test_archive_missing_entries(self, client):
        response = client.post('/api/archive', json={'something': 'else'})
        assert response.status_code == 400
        assert response.get_json()['details']['missing_fields'] == ['entries']

    @pytest.mark.parametrize('body', [{'entries': []}, {'entries': 'text'}, {'entries': [1, 2]}])
    def test_archive_invalid_entries(self, client, body):
        assert client.post('/api/archive', json=body).status_code == 400

    def test_archive_not_json(self, client):
        response = client.post('/api/archive', data='entries', content_type='text/plain')
        assert response.status_code == 400

    def test_index_search_requires_project(self, client):
        assert client.get('/api/index/search', query_string={'q': 'auth'}).status_code == 400
