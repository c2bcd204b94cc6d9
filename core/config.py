"""
ctxrepo Configuration

Dataclass configuration loaded from YAML. Components never read this
module's globals; callers build a ``CtxRepoConfig`` once and pass the
relevant section into each constructor.

Lookup order for the config file:
1. Explicit ``config_path`` argument
2. ``CTXREPO_CONFIG`` environment variable
3. ``~/.ctxrepo/config.yaml`` (optional; defaults apply when absent)

Environment overrides (also read from a ``.env`` file):
- ``CTXREPO_STORAGE_PATH``: storage.base_path
- ``CTXREPO_LOG_LEVEL``: logging.level

Example config.yaml:

    extraction:
      relevance_threshold: 0.5
      max_context_items: 50
      content_limits:
        question: 2000
    storage:
      base_path: ~/.ctxrepo/archive
      retention_days: 90
    search:
      min_relevance: 0.3

Usage:
    from core.config import load_config

    config = load_config()
    extractor = ContextExtractor.from_config(config)
"""

import logging
import os
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".ctxrepo"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.yaml"


# =============================================================================
# Sections
# =============================================================================

@dataclass
class ScoringWeights:
    """Weights of the relevance factors."""
    code_changes: float = 0.8
    error_resolution: float = 0.7
    decisions: float = 0.6
    problem_solution: float = 0.6
    tool_complexity: float = 0.4
    user_engagement: float = 0.3


@dataclass
class ScoringConfig:
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    archive_half_life_days: float = 30.0


@dataclass
class ContentLimits:
    """Maximum characters stored per extracted field."""
    question: int = 2000
    solution: int = 2000
    implementation: int = 1000
    decision: int = 500


@dataclass
class ExtractionConfig:
    relevance_threshold: float = 0.5
    max_context_items: int = 50
    enable_pattern_recognition: bool = True
    content_limits: ContentLimits = field(default_factory=ContentLimits)


@dataclass
class StorageConfig:
    base_path: str = str(DEFAULT_CONFIG_DIR / "archive")
    retention_days: int = 90  # 0 keeps everything


@dataclass
class SearchConfig:
    default_limit: int = 10
    min_relevance: float = 0.3
    retrieval_half_life_days: float = 60.0


@dataclass
class SecurityConfig:
    filter_sensitive_data: bool = True
    custom_patterns: Dict[str, str] = field(default_factory=dict)


@dataclass
class LoggingConfig:
    level: str = "INFO"
    json_format: Optional[bool] = None


@dataclass
class CtxRepoConfig:
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'CtxRepoConfig':
        return _build(cls, data or {}, 'config')

    def to_dict(self) -> Dict[str, Any]:
        return _dump(self)


# =============================================================================
# Loading
# =============================================================================

def _build(cls, data: Any, path: str):
    """Recursively build dataclass ``cls`` from a mapping, rejecting unknown keys."""
    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected a mapping at '{path}'", key=path)

    known = {f.name: f for f in fields(cls)}
    unknown = set(data) - set(known)
    if unknown:
        raise ConfigurationError(
            f"Unknown configuration keys at '{path}': {', '.join(sorted(unknown))}",
            key=path
        )

    kwargs = {}
    for name, value in data.items():
        default = known[name].default_factory() if callable(known[name].default_factory) else None
        if is_dataclass(default):
            kwargs[name] = _build(type(default), value, f"{path}.{name}")
        else:
            kwargs[name] = value
    return cls(**kwargs)


def _dump(obj) -> Dict[str, Any]:
    result = {}
    for f in fields(obj):
        value = getattr(obj, f.name)
        result[f.name] = _dump(value) if is_dataclass(value) else value
    return result


def load_config(config_path: Optional[Path] = None) -> CtxRepoConfig:
    """
    Load configuration from YAML, applying environment overrides.

    Args:
        config_path: Path to config YAML (uses lookup order if None)

    Returns:
        CtxRepoConfig

    Raises:
        ConfigurationError: explicit file missing, invalid YAML or invalid keys
    """
    load_dotenv()

    explicit = config_path is not None or bool(os.getenv('CTXREPO_CONFIG'))
    if config_path is None:
        config_path = Path(os.getenv('CTXREPO_CONFIG', str(DEFAULT_CONFIG_PATH)))
    config_path = Path(config_path).expanduser()

    data: Dict[str, Any] = {}
    if config_path.exists():
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}", path=str(config_path)) from e
        logger.debug(f"Loaded configuration from {config_path}")
    elif explicit:
        raise ConfigurationError(f"Config file not found: {config_path}", path=str(config_path))

    config = CtxRepoConfig.from_dict(data)

    storage_path = os.getenv('CTXREPO_STORAGE_PATH')
    if storage_path:
        config.storage.base_path = storage_path
    log_level = os.getenv('CTXREPO_LOG_LEVEL')
    if log_level:
        config.logging.level = log_level

    _validate(config)
    return config


def _validate(config: CtxRepoConfig):
    threshold = config.extraction.relevance_threshold
    if not isinstance(threshold, (int, float)) or not 0 <= threshold <= 1:
        raise ConfigurationError("extraction.relevance_threshold must be between 0 and 1")
    if not isinstance(config.extraction.max_context_items, int) or config.extraction.max_context_items < 1:
        raise ConfigurationError("extraction.max_context_items must be a positive integer")
    if config.scoring.archive_half_life_days <= 0 or config.search.retrieval_half_life_days <= 0:
        raise ConfigurationError("half-life values must be positive")
    if config.storage.retention_days < 0:
        raise ConfigurationError("storage.retention_days cannot be negative")
