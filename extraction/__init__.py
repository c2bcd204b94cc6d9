"""
ctxrepo Extraction

Turns a session's transcript entries into a structured Context
(problems, implementations, decisions, patterns) and archives it.
"""

from .extractor import ContextExtractor
from .archiver import ContextArchiver, ArchiveResult

__all__ = [
    'ContextExtractor',
    'ContextArchiver',
    'ArchiveResult',
]
