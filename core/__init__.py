"""
ctxrepo Core

Shared building blocks:
- Data models for transcripts and extracted contexts
- Configuration loading
- Exceptions
- Logging setup
- Sensitive data filtering
"""

from .errors import (
    CtxRepoError, InputError, ValidationError, NotFoundError,
    ConfigurationError, StorageError, IndexCorruptionError,
)
from .models import (
    TranscriptEntry, Context, ContextMetadata, Problem, Solution,
    Implementation, CodeChange, Decision, Pattern,
)

__all__ = [
    'CtxRepoError',
    'InputError',
    'ValidationError',
    'NotFoundError',
    'ConfigurationError',
    'StorageError',
    'IndexCorruptionError',
    'TranscriptEntry',
    'Context',
    'ContextMetadata',
    'Problem',
    'Solution',
    'Implementation',
    'CodeChange',
    'Decision',
    'Pattern',
]
