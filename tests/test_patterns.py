"""
Tests for the Pattern Analyzer

Tests cross-session merging, project analysis, evolution trends and
similarity lookups.
"""

import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from intelligence.patterns import (
    PatternAnalyzer, calculate_similarity, calculate_trend, merge_patterns,
)
from storage.file_store import FileStore
from fixtures.sample_data import PROJECT, make_context, make_pattern


@pytest.fixture
def store(tmp_path):
    return FileStore(tmp_path / 'archive', retention_days=0)


@pytest.fixture
def analyzer(store):
    return PatternAnalyzer(store)


class TestMerge:
    """Tests for merge_patterns."""

    def test_frequencies_sum_and_bounds(self):
        a = make_pattern('cmd:npm test', 3, first_seen='2024-01-05T00:00:00Z', last_seen='2024-01-06T00:00:00Z',
                         examples=['npm test'])
        b = make_pattern('cmd:npm test', 5, first_seen='2024-01-01T00:00:00Z', last_seen='2024-02-01T00:00:00Z',
                         examples=['npm test', 'npm test -- --watch'])

        merged = merge_patterns([a, b])
        assert len(merged) == 1
        assert merged[0].frequency == 8
        assert merged[0].first_seen == '2024-01-01T00:00:00Z'
        assert merged[0].last_seen == '2024-02-01T00:00:00Z'
        assert merged[0].examples == ['npm test', 'npm test -- --watch']

    def test_inputs_not_modified(self):
        a = make_pattern('cmd:make', 2)
        b = make_pattern('cmd:make', 2)
        merge_patterns([a, b])
        assert a.frequency == 2

    def test_examples_capped(self):
        patterns = [make_pattern('cmd:x', 1, examples=[f'x {i}']) for i in range(15)]
        assert len(merge_patterns(patterns)[0].examples) == 10

    def test_type_is_part_of_identity(self):
        merged = merge_patterns([
            make_pattern('same', 2, pattern_type='command'),
            make_pattern('same', 2, pattern_type='code'),
        ])
        assert len(merged) == 2


class TestGetPatterns:
    """Tests for get_patterns."""

    def test_merge_across_sessions(self, store, analyzer):
        store.store(make_context('sess-1', patterns=[make_pattern('cmd:npm test', 3), make_pattern('cmd:lint', 4)]))
        store.store(make_context('sess-2', patterns=[make_pattern('cmd:npm test', 5)]))

        patterns = analyzer.get_patterns(min_frequency=2)
        assert [(p.value, p.frequency) for p in patterns] == [('cmd:npm test', 8), ('cmd:lint', 4)]

    def test_type_filter(self, store, analyzer):
        store.store(make_context('sess-1', patterns=[
            make_pattern('cmd:npm test', 3),
            make_pattern('Edit:a.py', 3, pattern_type='code'),
        ]))
        assert [p.type for p in analyzer.get_patterns(type='code')] == ['code']
        assert len(analyzer.get_patterns(type='all')) == 2

    def test_min_frequency_and_limit(self, store, analyzer):
        store.store(make_context('sess-1', patterns=[make_pattern(f'cmd:{i}', i) for i in range(1, 6)]))
        assert [p.frequency for p in analyzer.get_patterns(min_frequency=3)] == [5, 4, 3]
        assert len(analyzer.get_patterns(min_frequency=1, limit=2)) == 2

    def test_project_scope(self, store, analyzer):
        store.store(make_context('sess-1', patterns=[make_pattern('cmd:npm test', 3)]))
        store.store(make_context('sess-2', project_path='/other', patterns=[make_pattern('cmd:npm test', 5)]))
        assert analyzer.get_patterns(project_path=PROJECT)[0].frequency == 3

    def test_empty_archive(self, analyzer):
        assert analyzer.get_patterns() == []


class TestAnalyzeProject:
    """Tests for insights and recommendations."""

    def test_insights(self, store, analyzer):
        store.store(make_context(
            'sess-1',
            files_modified=['app.py', 'db.py'],
            patterns=[
                make_pattern('error:permission', 2, pattern_type='error-handling'),
                *[make_pattern(f'cmd:task{i}', 6) for i in range(4)],
            ],
        ))
        store.store(make_context('sess-2', files_modified=['app.py']))

        report = analyzer.analyze_project(PROJECT)
        insights = {i.type: i for i in report['insights']}

        assert insights['error-pattern'].title == 'Recurring Errors'
        assert insights['hotspot'].data[0] == ['app.py', 2]
        assert insights['workflow'].title == 'Common Workflows'
        assert len(insights['workflow'].patterns) == 4
        assert any(r.startswith('Automate frequent commands:') for r in report['recommendations'])

    def test_quiet_project(self, store, analyzer):
        store.store(make_context('sess-1', files_modified=[]))
        report = analyzer.analyze_project(PROJECT)
        assert report['patterns'] == []
        assert report['insights'] == []
        assert report['recommendations'] == []

    def test_recommendation_thresholds(self, analyzer):
        patterns = [make_pattern(f'error:{i}', 2, pattern_type='error-handling') for i in range(6)]
        patterns.append(make_pattern('Write:a.py', 11, pattern_type='code'))
        recommendations = analyzer.generate_recommendations(patterns, [])
        assert len(recommendations) == 2
        assert recommendations[0].startswith('Consider implementing better error handling')
        assert recommendations[1].startswith('Extract common code patterns')

    def test_insight_to_dict(self, store, analyzer):
        store.store(make_context('sess-1', files_modified=['app.py']))
        data = analyzer.analyze_project(PROJECT)['insights'][0].to_dict()
        assert data['type'] == 'hotspot'
        assert data['data'] == [['app.py', 1]]
        assert 'patterns' not in data


class TestEvolution:
    """Tests for get_pattern_evolution and trends."""

    def test_increasing(self, store, analyzer):
        for day, frequency in ((1, 2), (2, 4), (3, 7)):
            store.store(make_context(
                f'sess-{day}',
                timestamp=f'2024-01-0{day}T00:00:00.000Z',
                patterns=[make_pattern('cmd:npm test', frequency)],
            ))

        evolution = analyzer.get_pattern_evolution('cmd:npm test', 'command')
        assert [o['frequency'] for o in evolution['occurrences']] == [2, 4, 7]
        assert [o['context'] for o in evolution['occurrences']] == ['sess-1', 'sess-2', 'sess-3']
        assert evolution['trend'] == 'increasing'

    def test_unknown_pattern(self, analyzer):
        assert analyzer.get_pattern_evolution('cmd:nothing', 'command') == {'occurrences': [], 'trend': 'stable'}

    def test_calculate_trend(self):
        assert calculate_trend([5, 3, 1]) == 'decreasing'
        assert calculate_trend([3, 3, 3]) == 'stable'
        assert calculate_trend([3, 3.05, 3.1]) == 'stable'
        assert calculate_trend([4]) == 'stable'


class TestSimilarity:
    """Tests for similarity lookups."""

    def test_calculate_similarity(self):
        assert calculate_similarity(make_pattern('cmd:npm test'), make_pattern('cmd:npm test')) == 1.0
        assert calculate_similarity(make_pattern('cmd:npm'), make_pattern('cmd:npm test')) == 0.8
        assert calculate_similarity(make_pattern('cmd:npm test'), make_pattern('cmd:npm build')) == pytest.approx(0.5)
        assert calculate_similarity(make_pattern('x', pattern_type='code'), make_pattern('x')) == 0.0

    def test_find_similar(self, store, analyzer):
        store.store(make_context('sess-1', patterns=[
            make_pattern('cmd:npm test', 2),
            make_pattern('cmd:npm test --coverage', 2),
            make_pattern('cmd:docker compose up', 2),
        ]))
        similar = analyzer.find_similar_patterns(make_pattern('cmd:npm test'))
        assert [p.value for p in similar] == ['cmd:npm test --coverage']
