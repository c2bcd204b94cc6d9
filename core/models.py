"""
ctxrepo Data Models

Structures shared by the extraction, storage, search and analytics layers.
Attributes are snake_case in Python; ``to_dict()``/``from_dict()`` read and
write the camelCase field names used in persisted archives, so existing
archive files round-trip unchanged.

Usage:
    from core.models import Context, TranscriptEntry

    entry = TranscriptEntry.from_dict(raw_json_line)
    print(entry.text)

    context = Context.from_dict(json.load(f))
    payload = context.to_dict()
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

EXTRACTION_VERSION = "1.0.0"

ENTRY_TYPES = ('user', 'assistant', 'tool_use', 'tool_result', 'system')
EXTRACTION_TRIGGERS = ('preCompact', 'manual', 'scheduled')
IMPACT_LEVELS = ('high', 'medium', 'low')
PATTERN_TYPES = ('code', 'command', 'architecture', 'error-handling')


# =============================================================================
# Helpers
# =============================================================================

def now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    Returns None for anything that cannot be parsed. Naive values are
    treated as UTC.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith('Z') or text.endswith('z'):
            text = text[:-1] + '+00:00'
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def generate_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def flatten_content(content: Any) -> str:
    """
    Normalize message content to one flat string.

    Content is either a plain string or a list of ``{type, text}`` fragments.
    Fragment texts are joined with a space; anything else becomes "".
    """
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for fragment in content:
            if isinstance(fragment, str):
                parts.append(fragment)
            elif isinstance(fragment, dict) and isinstance(fragment.get('text'), str):
                parts.append(fragment['text'])
        return ' '.join(part for part in parts if part)
    return ""


# =============================================================================
# Transcript Input
# =============================================================================

@dataclass
class TranscriptEntry:
    """One record from a session transcript."""
    type: str
    timestamp: str
    session_id: str = 'unknown'
    cwd: Optional[str] = None
    message: Optional[Dict[str, Any]] = None
    tool_use: Optional[Dict[str, Any]] = None
    tool_result: Optional[Dict[str, Any]] = None

    @property
    def text(self) -> str:
        """Flattened message content ("" when missing or malformed)."""
        if not isinstance(self.message, dict):
            return ""
        return flatten_content(self.message.get('content'))

    @property
    def is_user(self) -> bool:
        return self.type == 'user'

    @property
    def is_assistant(self) -> bool:
        return self.type == 'assistant'

    @property
    def tool_name(self) -> Optional[str]:
        if isinstance(self.tool_use, dict) and isinstance(self.tool_use.get('name'), str):
            return self.tool_use['name']
        return None

    @property
    def tool_input(self) -> Dict[str, Any]:
        if isinstance(self.tool_use, dict) and isinstance(self.tool_use.get('input'), dict):
            return self.tool_use['input']
        return {}

    @property
    def tool_error(self) -> Optional[str]:
        """Error text of a tool result, if any."""
        if not isinstance(self.tool_result, dict):
            return None
        error = self.tool_result.get('error')
        if not error:
            return None
        return error if isinstance(error, str) else str(error)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'type': self.type,
            'timestamp': self.timestamp,
            'sessionId': self.session_id,
        }
        if self.cwd is not None:
            data['cwd'] = self.cwd
        if self.message is not None:
            data['message'] = self.message
        if self.tool_use is not None:
            data['toolUse'] = self.tool_use
        if self.tool_result is not None:
            data['toolResult'] = self.tool_result
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TranscriptEntry':
        """Build an entry, accepting camelCase or snake_case keys."""
        tool_use = data.get('toolUse', data.get('tool_use'))
        tool_result = data.get('toolResult', data.get('tool_result'))
        message = data.get('message')
        return cls(
            type=data.get('type') or 'unknown',
            timestamp=data.get('timestamp') or now_iso(),
            session_id=data.get('sessionId') or data.get('session_id') or 'unknown',
            cwd=data.get('cwd'),
            message=message if isinstance(message, dict) else None,
            tool_use=tool_use if isinstance(tool_use, dict) else None,
            tool_result=tool_result if isinstance(tool_result, dict) else None,
        )


# =============================================================================
# Extracted Entities
# =============================================================================

@dataclass
class Solution:
    """How a problem was addressed."""
    approach: str
    files: List[str] = field(default_factory=list)
    successful: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'approach': self.approach,
            'files': list(self.files),
            'successful': self.successful,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Solution':
        return cls(
            approach=data.get('approach', ''),
            files=list(data.get('files') or []),
            successful=bool(data.get('successful', True)),
        )


@dataclass
class Problem:
    """A question or issue raised by the user. Open when ``solution`` is None."""
    id: str
    question: str
    timestamp: str
    solution: Optional[Solution] = None
    tags: List[str] = field(default_factory=list)
    relevance: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.solution is None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'question': self.question,
            'timestamp': self.timestamp,
            'tags': list(self.tags),
            'relevance': self.relevance,
        }
        if self.solution is not None:
            data['solution'] = self.solution.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Problem':
        solution = data.get('solution')
        return cls(
            id=data.get('id') or generate_id('prob'),
            question=data.get('question', ''),
            timestamp=data.get('timestamp', ''),
            solution=Solution.from_dict(solution) if isinstance(solution, dict) else None,
            tags=list(data.get('tags') or []),
            relevance=float(data.get('relevance', 0.0)),
        )


@dataclass
class CodeChange:
    type: str  # addition, modification, deletion
    content: str
    line_start: int = 0
    line_end: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'lineStart': self.line_start,
            'lineEnd': self.line_end,
            'content': self.content,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CodeChange':
        return cls(
            type=data.get('type', 'modification'),
            content=data.get('content', ''),
            line_start=int(data.get('lineStart', 0)),
            line_end=int(data.get('lineEnd', 0)),
        )


@dataclass
class Implementation:
    """A tool invocation that acted on the project."""
    id: str
    tool: str
    file: str
    description: str
    timestamp: str
    changes: Optional[List[CodeChange]] = None
    relevance: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'tool': self.tool,
            'file': self.file,
            'description': self.description,
            'timestamp': self.timestamp,
            'relevance': self.relevance,
        }
        if self.changes is not None:
            data['changes'] = [c.to_dict() for c in self.changes]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Implementation':
        changes = data.get('changes')
        return cls(
            id=data.get('id') or generate_id('impl'),
            tool=data.get('tool', ''),
            file=data.get('file', ''),
            description=data.get('description', ''),
            timestamp=data.get('timestamp', ''),
            changes=[CodeChange.from_dict(c) for c in changes] if isinstance(changes, list) else None,
            relevance=float(data.get('relevance', 0.0)),
        )


@dataclass
class Decision:
    """An architectural or approach choice stated in the conversation."""
    id: str
    decision: str
    context: str
    timestamp: str
    impact: str = 'low'
    rationale: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'decision': self.decision,
            'context': self.context,
            'timestamp': self.timestamp,
            'impact': self.impact,
            'tags': list(self.tags),
        }
        if self.rationale is not None:
            data['rationale'] = self.rationale
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Decision':
        return cls(
            id=data.get('id') or generate_id('dec'),
            decision=data.get('decision', ''),
            context=data.get('context', ''),
            timestamp=data.get('timestamp', ''),
            impact=data.get('impact', 'low'),
            rationale=data.get('rationale'),
            tags=list(data.get('tags') or []),
        )


@dataclass
class Pattern:
    """A recurring signature. Identity is ``(type, value)``."""
    id: str
    type: str
    value: str
    frequency: int
    first_seen: str
    last_seen: str
    examples: List[str] = field(default_factory=list)

    @property
    def key(self) -> str:
        return f"{self.type}:{self.value}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.type,
            'value': self.value,
            'frequency': self.frequency,
            'firstSeen': self.first_seen,
            'lastSeen': self.last_seen,
            'examples': list(self.examples),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Pattern':
        return cls(
            id=data.get('id') or generate_id('pat'),
            type=data.get('type', 'code'),
            value=data.get('value', ''),
            frequency=int(data.get('frequency', 1)),
            first_seen=data.get('firstSeen', ''),
            last_seen=data.get('lastSeen', ''),
            examples=list(data.get('examples') or []),
        )


# =============================================================================
# Context
# =============================================================================

@dataclass(frozen=True)
class ContextMetadata:
    entry_count: int = 0
    duration: int = 0  # milliseconds
    tools_used: List[str] = field(default_factory=list)
    tool_counts: Dict[str, int] = field(default_factory=dict)
    files_modified: List[str] = field(default_factory=list)
    relevance_score: float = 0.0
    extraction_version: str = EXTRACTION_VERSION
    security_filtered: Optional[bool] = None
    redacted_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'entryCount': self.entry_count,
            'duration': self.duration,
            'toolsUsed': list(self.tools_used),
            'toolCounts': dict(self.tool_counts),
            'filesModified': list(self.files_modified),
            'relevanceScore': self.relevance_score,
            'extractionVersion': self.extraction_version,
        }
        if self.security_filtered is not None:
            data['securityFiltered'] = self.security_filtered
        if self.redacted_count is not None:
            data['redactedCount'] = self.redacted_count
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ContextMetadata':
        redacted = data.get('redactedCount')
        return cls(
            entry_count=int(data.get('entryCount', 0)),
            duration=int(data.get('duration', 0)),
            tools_used=list(data.get('toolsUsed') or []),
            tool_counts=dict(data.get('toolCounts') or {}),
            files_modified=list(data.get('filesModified') or []),
            relevance_score=float(data.get('relevanceScore', 0.0)),
            extraction_version=data.get('extractionVersion', EXTRACTION_VERSION),
            security_filtered=data.get('securityFiltered'),
            redacted_count=int(redacted) if redacted is not None else None,
        )


@dataclass(frozen=True)
class Context:
    """
    Structured extraction result for one archived session.

    Immutable once created. Retrieval returns copies (``dataclasses.replace``)
    when it needs to annotate a transient relevance score.
    """
    session_id: str
    project_path: str
    timestamp: str
    extracted_at: str = 'preCompact'
    problems: List[Problem] = field(default_factory=list)
    implementations: List[Implementation] = field(default_factory=list)
    decisions: List[Decision] = field(default_factory=list)
    patterns: List[Pattern] = field(default_factory=list)
    metadata: ContextMetadata = field(default_factory=ContextMetadata)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sessionId': self.session_id,
            'projectPath': self.project_path,
            'timestamp': self.timestamp,
            'extractedAt': self.extracted_at,
            'problems': [p.to_dict() for p in self.problems],
            'implementations': [i.to_dict() for i in self.implementations],
            'decisions': [d.to_dict() for d in self.decisions],
            'patterns': [p.to_dict() for p in self.patterns],
            'metadata': self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Context':
        """Load a persisted context. Unknown keys are ignored, missing ones default."""
        metadata = data.get('metadata')
        return cls(
            session_id=data.get('sessionId', 'unknown'),
            project_path=data.get('projectPath', 'unknown'),
            timestamp=data.get('timestamp', ''),
            extracted_at=data.get('extractedAt', 'preCompact'),
            problems=[Problem.from_dict(p) for p in data.get('problems') or []],
            implementations=[Implementation.from_dict(i) for i in data.get('implementations') or []],
            decisions=[Decision.from_dict(d) for d in data.get('decisions') or []],
            patterns=[Pattern.from_dict(p) for p in data.get('patterns') or []],
            metadata=ContextMetadata.from_dict(metadata) if isinstance(metadata, dict) else ContextMetadata(),
        )


EntryLike = Union[TranscriptEntry, Dict[str, Any]]
