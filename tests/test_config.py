"""
Tests for Configuration Loading

Tests defaults, YAML loading, environment overrides and validation.
"""

import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from core.config import CtxRepoConfig, ScoringWeights, load_config
from core.errors import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ('CTXREPO_CONFIG', 'CTXREPO_STORAGE_PATH', 'CTXREPO_LOG_LEVEL'):
        monkeypatch.delenv(name, raising=False)
    # Keep load_dotenv() and the default lookup away from the developer's files
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr('core.config.DEFAULT_CONFIG_PATH', tmp_path / 'missing.yaml')


class TestDefaults:
    """Tests for default values."""

    def test_defaults(self):
        config = CtxRepoConfig()
        assert config.extraction.relevance_threshold == 0.5
        assert config.extraction.max_context_items == 50
        assert config.extraction.content_limits.question == 2000
        assert config.extraction.content_limits.decision == 500
        assert config.scoring.archive_half_life_days == 30.0
        assert config.search.retrieval_half_life_days == 60.0
        assert config.search.min_relevance == 0.3
        assert config.storage.retention_days == 90
        assert config.security.filter_sensitive_data is True

    def test_weights(self):
        weights = ScoringWeights()
        assert (weights.code_changes, weights.error_resolution, weights.decisions) == (0.8, 0.7, 0.6)
        assert (weights.problem_solution, weights.tool_complexity, weights.user_engagement) == (0.6, 0.4, 0.3)

    def test_missing_default_file(self):
        assert load_config().to_dict() == CtxRepoConfig().to_dict()


class TestLoadConfig:
    """Tests for YAML loading."""

    def test_yaml_values(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text(
            "extraction:\n"
            "  relevance_threshold: 0.7\n"
            "  content_limits:\n"
            "    question: 300\n"
            "scoring:\n"
            "  weights:\n"
            "    code_changes: 0.9\n"
            "security:\n"
            "  custom_patterns:\n"
            "    ticket: 'TICKET-\\d+'\n"
        )
        config = load_config(path)
        assert config.extraction.relevance_threshold == 0.7
        assert config.extraction.content_limits.question == 300
        assert config.extraction.content_limits.solution == 2000
        assert config.scoring.weights.code_changes == 0.9
        assert config.scoring.weights.decisions == 0.6
        assert config.security.custom_patterns == {'ticket': 'TICKET-\\d+'}

    def test_env_var_path(self, tmp_path, monkeypatch):
        path = tmp_path / 'other.yaml'
        path.write_text("search:\n  default_limit: 25\n")
        monkeypatch.setenv('CTXREPO_CONFIG', str(path))
        assert load_config().search.default_limit == 25

    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv('CTXREPO_STORAGE_PATH', str(tmp_path / 'store'))
        monkeypatch.setenv('CTXREPO_LOG_LEVEL', 'DEBUG')
        config = load_config()
        assert config.storage.base_path == str(tmp_path / 'store')
        assert config.logging.level == 'DEBUG'

    def test_empty_file(self, tmp_path):
        path = tmp_path / 'empty.yaml'
        path.write_text('')
        assert load_config(path).extraction.max_context_items == 50

    def test_round_trip(self):
        config = CtxRepoConfig.from_dict({'storage': {'retention_days': 7}})
        assert CtxRepoConfig.from_dict(config.to_dict()).storage.retention_days == 7


class TestConfigErrors:
    """Tests for invalid configuration."""

    def test_explicit_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(tmp_path / 'nope.yaml')

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / 'bad.yaml'
        path.write_text("extraction: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_unknown_key(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text("extraction:\n  relevance_treshold: 0.5\n")
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(path)
        assert 'relevance_treshold' in exc_info.value.message

    def test_section_not_mapping(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text("storage: 5\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    @pytest.mark.parametrize('yaml_text', [
        "extraction:\n  relevance_threshold: 1.5\n",
        "extraction:\n  max_context_items: 0\n",
        "search:\n  retrieval_half_life_days: 0\n",
        "storage:\n  retention_days: -1\n",
    ])
    def test_validation(self, tmp_path, yaml_text):
        path = tmp_path / 'config.yaml'
        path.write_text(yaml_text)
        with pytest.raises(ConfigurationError):
            load_config(path)
