"""
Parser for session transcripts.

Transcripts are JSONL: one JSON object per line, each an entry with
``type``, ``timestamp``, ``sessionId`` and optional ``cwd``, ``message``,
``toolUse`` and ``toolResult``. Older exports use snake_case keys
(``session_id``, ``tool_use``, ``tool_result``); both are accepted.

Lines that are blank or not valid JSON objects are logged and skipped.

Usage:
    from parsers.transcript_parser import TranscriptParser, parse_transcript

    entries = parse_transcript(Path("session.jsonl"))
    valid, errors = validate_entries(entries)
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Tuple, Union

from core.models import TranscriptEntry

logger = logging.getLogger(__name__)


def normalize_entry(raw: Dict[str, Any]) -> TranscriptEntry:
    """Normalize a raw entry dict to a TranscriptEntry."""
    entry = TranscriptEntry.from_dict(raw)

    if entry.message is not None:
        entry.message = {
            'role': entry.message.get('role') or 'unknown',
            'content': entry.message.get('content') or '',
        }
    if entry.tool_use is not None:
        entry.tool_use = {
            'name': entry.tool_use.get('name') or '',
            'input': entry.tool_use.get('input') or {},
        }
    if entry.tool_result is not None:
        entry.tool_result = {
            'output': entry.tool_result.get('output'),
            'error': entry.tool_result.get('error'),
        }
    return entry


def normalize_entries(entries: Iterable[Union[TranscriptEntry, Dict[str, Any]]]) -> List[TranscriptEntry]:
    """Accept a mix of TranscriptEntry objects and raw dicts."""
    normalized = []
    for entry in entries:
        if isinstance(entry, TranscriptEntry):
            normalized.append(entry)
        elif isinstance(entry, dict):
            normalized.append(normalize_entry(entry))
        else:
            logger.warning(f"Skipping transcript entry of type {type(entry).__name__}")
    return normalized


class TranscriptParser:
    """
    Parser for JSONL session transcripts.

    Tracks how many lines were skipped so callers can report partial reads.
    """

    def __init__(self, file_path: Union[str, Path, None] = None):
        self.file_path = Path(file_path) if file_path else None
        self.skipped_lines = 0

    def parse(self) -> List[TranscriptEntry]:
        """Parse the file given at construction."""
        if self.file_path is None:
            raise ValueError("TranscriptParser.parse() requires a file path")
        with open(self.file_path, 'r', encoding='utf-8') as f:
            return self.parse_lines(f)

    def parse_content(self, content: str) -> List[TranscriptEntry]:
        return self.parse_lines(content.splitlines())

    def parse_lines(self, lines: Iterable[str]) -> List[TranscriptEntry]:
        entries = []
        for line_number, line in enumerate(lines, 1):
            line = line.strip()
            if not line:
                continue
            try:
                raw = json.loads(line)
            except json.JSONDecodeError as e:
                self.skipped_lines += 1
                logger.warning(f"Failed to parse transcript line {line_number}: {e}")
                continue
            if not isinstance(raw, dict):
                self.skipped_lines += 1
                logger.warning(f"Transcript line {line_number} is not a JSON object")
                continue
            entries.append(normalize_entry(raw))
        return entries


def parse_transcript(path: Union[str, Path]) -> List[TranscriptEntry]:
    """Parse a JSONL transcript file."""
    return TranscriptParser(path).parse()


def parse_transcript_content(content: str) -> List[TranscriptEntry]:
    """Parse JSONL transcript text."""
    return TranscriptParser().parse_content(content)


def validate_entries(entries: List[TranscriptEntry]) -> Tuple[bool, List[str]]:
    """
    Check entries for missing fields and mixed sessions.

    Returns:
        Tuple of (valid, errors)
    """
    errors = []
    if not entries:
        return False, ['No entries found in transcript']

    for index, entry in enumerate(entries):
        if not entry.type or entry.type == 'unknown':
            errors.append(f"Entry {index} missing type field")
        if not entry.timestamp:
            errors.append(f"Entry {index} missing timestamp field")
        if not entry.session_id or entry.session_id == 'unknown':
            errors.append(f"Entry {index} missing sessionId field")

    session_ids = sorted({e.session_id for e in entries if e.session_id and e.session_id != 'unknown'})
    if len(session_ids) > 1:
        errors.append(f"Multiple session IDs found: {', '.join(session_ids)}")

    return not errors, errors


def filter_entries_by_type(entries: List[TranscriptEntry], types: Iterable[str]) -> List[TranscriptEntry]:
    wanted = set(types)
    return [e for e in entries if e.type in wanted]


def get_transcript_summary(entries: List[TranscriptEntry]) -> Dict[str, int]:
    summary = {
        'totalEntries': len(entries),
        'userMessages': 0,
        'assistantMessages': 0,
        'toolUses': 0,
        'errors': 0,
    }
    for entry in entries:
        if entry.type == 'user':
            summary['userMessages'] += 1
        elif entry.type == 'assistant':
            summary['assistantMessages'] += 1
        elif entry.type == 'tool_use':
            summary['toolUses'] += 1
        if entry.tool_error:
            summary['errors'] += 1
    return summary
