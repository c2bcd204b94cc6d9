"""
ctxrepo Parsers

Readers for session transcript exports.
"""

from .transcript_parser import (
    TranscriptParser, parse_transcript, parse_transcript_content,
    normalize_entry, normalize_entries, validate_entries,
)

__all__ = [
    'TranscriptParser',
    'parse_transcript',
    'parse_transcript_content',
    'normalize_entry',
    'normalize_entries',
    'validate_entries',
]
