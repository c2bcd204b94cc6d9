"""
Tests for Relevance Scoring

Tests entry scoring, sub-models, content scoring, temporal decay and
score combination.
"""

import math
from datetime import timedelta

import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.config import ScoringWeights
from core.models import TranscriptEntry
from intelligence.scoring import RelevanceScorer
from fixtures.sample_data import BASE_TIME, iso, user, assistant, tool_use, tool_result


@pytest.fixture
def scorer():
    return RelevanceScorer()


class TestScoreEntry:
    """Tests for score_entry."""

    def test_question_mark_alone_scores_one(self, scorer):
        assert scorer.score_entry(user("?")) == 1.0

    def test_question_scores_one(self, scorer):
        assert scorer.score_entry(user("Why does the build hang?")) == 1.0

    def test_request_verb_scores_high(self, scorer):
        assert scorer.score_entry(user("Please refactor the payment module")) == 0.9

    def test_reported_problem_scores_high(self, scorer):
        assert scorer.score_entry(user("The server keeps crashing on startup")) == 0.9

    def test_code_tool_saturates(self, scorer):
        score = scorer.score_entry(tool_use("Write", file_path="a.py", content="x = 1"))
        assert score == 1.0

    def test_read_tool_scores_low(self, scorer):
        score = scorer.score_entry(tool_use("Read", file_path="a.py"))
        assert score == pytest.approx(0.3 * 0.4)

    def test_git_bash_scores_above_plain_bash(self, scorer):
        git = scorer.score_entry(tool_use("Bash", command="git status"))
        plain = scorer.score_entry(tool_use("Bash", command="ls -la"))
        assert git > plain
        assert git == pytest.approx(0.5 * 0.4)

    def test_error_result_counts_as_error_resolution(self, scorer):
        score = scorer.score_entry(tool_result(error="Permission denied"))
        assert score == pytest.approx(0.7)

    def test_plain_assistant_message_scores_zero(self, scorer):
        assert scorer.score_entry(assistant("ok")) == 0.0

    def test_accepts_transcript_entry(self, scorer):
        entry = TranscriptEntry.from_dict(user("what now?"))
        assert scorer.score_entry(entry) == 1.0

    def test_malformed_entries_stay_in_range(self, scorer):
        odd_entries = [
            {},
            {'type': 'user', 'message': {'content': None}},
            {'type': 'user', 'message': 'not a dict'},
            {'type': 'tool_use', 'toolUse': {'name': 'MultiEdit', 'input': {'edits': 'x'}}},
            {'type': 'assistant', 'message': {'content': [{'type': 'text', 'text': 'because'}]}},
        ]
        for entry in odd_entries:
            score = scorer.score_entry(entry)
            assert 0.0 <= score <= 1.0
            assert not math.isnan(score)

    def test_custom_weights(self):
        scorer = RelevanceScorer(weights={'code_changes': 0.5})
        assert scorer.weights.code_changes == 0.5
        assert scorer.weights.error_resolution == ScoringWeights().error_resolution
        assert scorer.score_entry(assistant("```x = 1```")) == pytest.approx(0.5)


class TestSubModels:
    """Tests for tool complexity and user engagement."""

    def test_multiedit_scales_with_edits(self, scorer):
        assert scorer.calculate_tool_complexity('MultiEdit', {'edits': [{}, {}, {}]}) == pytest.approx(0.8)
        assert scorer.calculate_tool_complexity('MultiEdit', {'edits': [{}] * 20}) == 1.0

    def test_large_write_scores_higher(self, scorer):
        small = scorer.calculate_tool_complexity('Write', {'content': 'x'})
        large = scorer.calculate_tool_complexity('Write', {'content': 'x' * 1500})
        assert large > small

    def test_unknown_tool_and_bad_input(self, scorer):
        assert scorer.calculate_tool_complexity('Mystery', None) == 0.3

    def test_engagement_question(self, scorer):
        assert scorer.calculate_user_engagement('is this right?') == 1.0

    def test_engagement_base(self, scorer):
        assert scorer.calculate_user_engagement('thanks') == pytest.approx(0.2)

    def test_engagement_length_and_terms(self, scorer):
        text = ('the function and the class ' + 'x' * 600).lower()
        assert scorer.calculate_user_engagement(text) == pytest.approx(0.9)


class TestScoreContent:
    """Tests for score_content."""

    def test_exchange_flags(self, scorer):
        item = {'type': 'exchange', 'content': '', 'metadata': {'hasSolution': True, 'hasError': True}}
        assert scorer.score_content(item) == 1.0

    def test_prompt(self, scorer):
        assert scorer.score_content({'type': 'prompt', 'content': 'hello'}) == pytest.approx(0.18)

    def test_archive_terms_boost(self, scorer):
        base = scorer.score_content({'type': 'tool', 'content': 'listing'})
        boosted = scorer.score_content({'type': 'tool', 'content': 'used search_archive'})
        assert boosted == pytest.approx(base + 0.2)

    def test_non_dict_is_zero(self, scorer):
        assert scorer.score_content(None) == 0.0
        assert scorer.score_content("text") == 0.0


class TestTemporalDecay:
    """Tests for calculate_temporal_decay."""

    def test_half_life(self, scorer):
        created = iso(BASE_TIME - timedelta(days=30))
        assert scorer.calculate_temporal_decay(created, now=BASE_TIME) == pytest.approx(0.5, abs=0.001)

    def test_explicit_half_life(self, scorer):
        created = iso(BASE_TIME - timedelta(days=60))
        decay = scorer.calculate_temporal_decay(created, now=BASE_TIME, half_life_days=60)
        assert decay == pytest.approx(0.5, abs=0.001)

    def test_monotonic_and_non_negative(self, scorer):
        values = [
            scorer.calculate_temporal_decay(iso(BASE_TIME - timedelta(days=d)), now=BASE_TIME)
            for d in (0, 60, 120, 3650)
        ]
        assert values[0] == 1.0
        assert values[0] > values[1] > values[2] > values[3] >= 0.0

    def test_future_timestamp_counts_as_now(self, scorer):
        created = iso(BASE_TIME + timedelta(days=5))
        assert scorer.calculate_temporal_decay(created, now=BASE_TIME) == 1.0

    def test_unparseable_timestamp(self, scorer):
        assert scorer.calculate_temporal_decay('not a date', now=BASE_TIME) == 0.0
        assert scorer.calculate_temporal_decay(None) == 0.0


class TestCombineScores:
    """Tests for combine_scores."""

    def test_mean(self, scorer):
        assert scorer.combine_scores([0.2, 0.4]) == pytest.approx(0.3)

    def test_weighted(self, scorer):
        assert scorer.combine_scores([0.2, 0.4], [1, 3]) == pytest.approx(0.35)

    def test_mismatched_weights_fall_back_to_mean(self, scorer):
        assert scorer.combine_scores([0.2, 0.4], [1]) == pytest.approx(0.3)

    def test_empty(self, scorer):
        assert scorer.combine_scores([]) == 0.0
