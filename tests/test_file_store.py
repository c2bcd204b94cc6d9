"""
Tests for File Storage

Tests the on-disk layout, project/global indexes, replacement of re-stored
sessions, retention cleanup and tolerant reads.
"""

import json
import os
import time

import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.errors import StorageError
from storage.file_store import FileStore, write_json_atomic
from fixtures.sample_data import PROJECT, make_context


@pytest.fixture
def store(tmp_path):
    return FileStore(tmp_path / 'archive', retention_days=0)


class TestLayout:
    """Tests for where files land."""

    def test_project_hash(self):
        assert FileStore.project_hash(PROJECT) == FileStore.project_hash(PROJECT)
        assert len(FileStore.project_hash(PROJECT)) == 8
        assert FileStore.project_hash(PROJECT) != FileStore.project_hash('/other')

    def test_session_file_name(self, store):
        context = make_context('sess-1', timestamp='2024-03-01T12:00:00.000Z', questions=["Why?"])
        path = store.store(context)

        assert path.name == '2024-03-01-sess-1.json'
        assert path.parent == store.sessions_dir(PROJECT)
        assert json.loads(path.read_text())['sessionId'] == 'sess-1'

    def test_round_trip(self, store):
        context = make_context('sess-1', questions=["How to add JWT authentication?"], solution="Use a middleware")
        store.store(context)
        assert store.get_by_session_id('sess-1').to_dict() == context.to_dict()

    def test_session_id_of(self):
        assert FileStore.session_id_of(Path('2024-03-01-team-abc.json')) == 'team-abc'
        assert FileStore.session_id_of(Path('2024-03-01-abc.json')) == 'abc'


class TestIndexes:
    """Tests for project and global indexes."""

    def test_project_index_totals(self, store):
        store.store(make_context('sess-1', questions=["a?", "b?"], implementations=[{'file': 'a.py'}]))
        store.store(make_context('sess-2', decisions=["We should cache"]))

        index = store.get_project_index(PROJECT)
        assert index['projectPath'] == PROJECT
        assert [s['sessionId'] for s in index['sessions']] == ['sess-1', 'sess-2']
        assert index['totalProblems'] == 2
        assert index['totalImplementations'] == 1
        assert index['totalDecisions'] == 1

    def test_restore_replaces_session(self, store):
        store.store(make_context('sess-1', timestamp='2024-03-01T12:00:00.000Z', questions=["a?", "b?"]))
        store.store(make_context('sess-1', timestamp='2024-03-02T12:00:00.000Z', questions=["c?"]))

        files = list(store.sessions_dir(PROJECT).iterdir())
        assert [f.name for f in files] == ['2024-03-02-sess-1.json']

        index = store.get_project_index(PROJECT)
        assert len(index['sessions']) == 1
        assert index['totalProblems'] == 1

    def test_suffix_sharing_sessions_both_kept(self, store):
        store.store(make_context('team-abc', timestamp='2024-03-01T12:00:00.000Z'))
        store.store(make_context('abc', timestamp='2024-03-01T12:00:00.000Z'))

        names = sorted(f.name for f in store.sessions_dir(PROJECT).iterdir())
        assert names == ['2024-03-01-abc.json', '2024-03-01-team-abc.json']
        assert {c.session_id for c in store.search_all(lambda c: True)} == {'team-abc', 'abc'}

    def test_global_index(self, store):
        store.store(make_context('sess-1'))
        store.store(make_context('sess-2'))
        store.store(make_context('sess-3', project_path='/other'))

        projects = store.list_projects()
        assert projects[FileStore.project_hash(PROJECT)]['sessionCount'] == 2
        assert projects[FileStore.project_hash('/other')]['path'] == '/other'

    def test_missing_indexes(self, store):
        assert store.get_project_index(PROJECT) is None
        assert store.list_projects() == {}


class TestReading:
    """Tests for lookups and scans."""

    def test_get_project_contexts_newest_first(self, store):
        store.store(make_context('sess-a', timestamp='2024-01-01T00:00:00.000Z'))
        store.store(make_context('sess-b', timestamp='2024-02-01T00:00:00.000Z'))
        store.store(make_context('sess-c', timestamp='2024-03-01T00:00:00.000Z', project_path='/other'))

        contexts = store.get_project_contexts(PROJECT, limit=10)
        assert [c.session_id for c in contexts] == ['sess-b', 'sess-a']
        assert len(store.get_project_contexts(PROJECT, limit=1)) == 1
        assert store.get_project_contexts('/nowhere') == []

    def test_search_all(self, store):
        store.store(make_context('sess-a', relevance_score=0.2))
        store.store(make_context('sess-b', project_path='/other', relevance_score=0.8))

        found = store.search_all(lambda c: c.metadata.relevance_score > 0.5)
        assert [c.session_id for c in found] == ['sess-b']

    def test_unreadable_files_skipped(self, store):
        store.store(make_context('sess-a'))
        (store.sessions_dir(PROJECT) / '2024-01-01-broken.json').write_text('{not json')

        assert [c.session_id for c in store.search_all(lambda c: True)] == ['sess-a']

    def test_wrapped_payload(self, store):
        sessions = store.sessions_dir(PROJECT)
        sessions.mkdir(parents=True)
        wrapped = {'context': make_context('sess-old').to_dict()}
        (sessions / '2023-12-01-sess-old.json').write_text(json.dumps(wrapped))

        assert store.get_project_contexts(PROJECT)[0].session_id == 'sess-old'

    def test_malformed_fields_skipped(self, store):
        store.store(make_context('sess-a'))
        bad = {'sessionId': 'sess-bad', 'metadata': {'relevanceScore': None}}
        (store.sessions_dir(PROJECT) / '2024-01-01-sess-bad.json').write_text(json.dumps(bad))

        assert [c.session_id for c in store.search_all(lambda c: True)] == ['sess-a']
        assert [c.session_id for c in store.get_project_contexts(PROJECT)] == ['sess-a']
        with pytest.raises(StorageError):
            store.get_by_session_id('sess-bad')

    def test_missing_session(self, store):
        assert store.get_by_session_id('nope') is None
        assert store.get_by_session_id('') is None

    def test_lookup_matches_whole_session_id(self, store):
        store.store(make_context('team-abc'))
        store.store(make_context('abc'))

        assert store.get_by_session_id('abc').session_id == 'abc'
        assert store.get_by_session_id('team-abc').session_id == 'team-abc'
        assert store.get_by_session_id('bc') is None

    def test_corrupt_session_lookup_raises(self, store):
        sessions = store.sessions_dir(PROJECT)
        sessions.mkdir(parents=True)
        (sessions / '2024-01-01-sess-bad.json').write_text('{oops')

        with pytest.raises(StorageError):
            store.get_by_session_id('sess-bad')

    def test_stats(self, store):
        store.store(make_context('sess-a', timestamp='2024-01-01T00:00:00.000Z'))
        store.store(make_context('sess-b', timestamp='2024-02-01T00:00:00.000Z', project_path='/other'))

        stats = store.get_stats()
        assert stats['totalProjects'] == 2
        assert stats['totalSessions'] == 2
        assert stats['oldestSession'] == '2024-01-01T00:00:00.000Z'
        assert stats['newestSession'] == '2024-02-01T00:00:00.000Z'

    def test_empty_stats(self, store):
        stats = store.get_stats()
        assert stats['totalSessions'] == 0
        assert stats['oldestSession'] is None


class TestRetention:
    """Tests for retention cleanup."""

    def test_old_files_removed_on_store(self, tmp_path):
        store = FileStore(tmp_path / 'archive', retention_days=30)
        old_path = store.store(make_context('sess-old'))
        long_ago = time.time() - 60 * 86400
        os.utime(old_path, (long_ago, long_ago))

        store.store(make_context('sess-new'))
        assert not old_path.exists()
        assert store.get_by_session_id('sess-new') is not None

    def test_zero_keeps_everything(self, store):
        path = store.store(make_context('sess-old'))
        long_ago = time.time() - 900 * 86400
        os.utime(path, (long_ago, long_ago))

        store.store(make_context('sess-new'))
        assert path.exists()


class TestAtomicWrite:
    """Tests for write_json_atomic."""

    def test_writes_and_replaces(self, tmp_path):
        path = tmp_path / 'nested' / 'data.json'
        write_json_atomic(path, {'a': 1})
        write_json_atomic(path, {'a': 2})

        assert json.loads(path.read_text()) == {'a': 2}
        assert [p.name for p in path.parent.iterdir()] == ['data.json']

    def test_unserializable_leaves_no_temp_file(self, tmp_path):
        path = tmp_path / 'data.json'
        with pytest.raises(TypeError):
            write_json_atomic(path, {'a': object()})
        assert list(tmp_path.iterdir()) == []
