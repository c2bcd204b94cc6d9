"""
Context Extraction for ctxrepo

Turns an ordered list of transcript entries into a structured ``Context``
with four independent passes over the same entries:

1. Problems: user questions/issues paired with the solution that followed
2. Implementations: one record per tool invocation
3. Decisions: choices stated by the assistant ("we should ...", "decided to ...")
4. Patterns: recurring commands, file operations and error classes

The passes only read the entry list, so their order carries no meaning.

Usage:
    from extraction.extractor import ContextExtractor

    extractor = ContextExtractor(relevance_threshold=0.5)
    context = extractor.extract(entries)

    for problem in context.problems:
        print(problem.question, problem.solution)
"""

import logging
import re
import secrets
import time
from collections import Counter, OrderedDict
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence

from core.config import ContentLimits, CtxRepoConfig
from core.errors import InputError
from core.logging_config import log_performance
from core.models import (
    EXTRACTION_VERSION, CodeChange, Context, ContextMetadata, Decision,
    EntryLike, Implementation, Pattern, Problem, Solution, TranscriptEntry,
    generate_id, now_iso, parse_timestamp,
)
from core.security_filter import SecurityFilter
from intelligence.scoring import RelevanceScorer
from parsers.transcript_parser import normalize_entries

logger = logging.getLogger(__name__)

MAX_PATTERN_EXAMPLES = 10
MIN_PATTERN_FREQUENCY = 2


class ContextExtractor:
    """
    Heuristic extractor producing one ``Context`` per transcript.

    Stateless between calls: the same instance can serve any number of
    sessions.
    """

    # -------------------------------------------------------------------------
    # Vocabularies
    # -------------------------------------------------------------------------

    # Any "?" also opens a problem
    PROBLEM_INDICATORS = [
        # debugging
        'error', 'issue', 'problem', 'bug', 'fix', 'debug', 'crash', 'fail',
        'broken', 'not working', "doesn't work", 'wrong', 'exception',
        'stuck', 'confused', 'unclear', 'why',
        # requesting
        'how to', 'how do', 'how can', 'help', 'can you', 'could you',
        'need to', 'want to', 'implement', 'create', 'build', 'add',
        # architecture
        'design', 'architecture', 'structure', 'refactor', 'best way',
        'approach', 'should i', 'should we',
        # testing
        'test', 'coverage', 'mock', 'assert',
    ]

    SOLUTION_INDICATORS = [
        "here's how", 'here is how', 'the solution', 'to fix this',
        'this works', 'resolved', 'solved', 'the answer', 'you can',
        'let me', 'fixed',
    ]

    SOLUTION_TOOLS = ('Write', 'Edit', 'MultiEdit', 'NotebookEdit', 'Bash')
    FILE_TOOLS = ('Write', 'Edit', 'MultiEdit', 'NotebookEdit')
    TRIVIAL_COMMANDS = ('ls', 'pwd', 'cd', 'echo', 'cat')

    DECISION_PATTERNS = [
        re.compile(r'we should (\w+.*)', re.I),
        re.compile(r'better to (\w+.*)', re.I),
        re.compile(r'i recommend (\w+.*)', re.I),
        re.compile(r'the approach is to (\w+.*)', re.I),
        re.compile(r'decided to (\w+.*)', re.I),
        re.compile(r'going with (\w+.*)', re.I),
        re.compile(r'choosing (\w+.*)', re.I),
        re.compile(r"let's use (\w+.*)", re.I),
    ]

    # Priority order, not position order; plain substrings
    RATIONALE_CONNECTIVES = ['because', 'since', 'as', 'due to', 'for']

    HIGH_IMPACT_TERMS = ['architecture', 'database', 'api', 'security', 'framework']
    MEDIUM_IMPACT_TERMS = ['refactor', 'optimize', 'structure', 'design']

    TECH_TAG_PATTERN = re.compile(
        r'\b(react|typescript|javascript|node|python|api|database|css|html|json|'
        r'yaml|docker|kubernetes|aws|git)\b',
        re.I
    )

    PATH_TOKEN = re.compile(r'/\S+')
    NUMBER_TOKEN = re.compile(r'\d+')

    DECISION_CONTEXT_CHARS = 100
    RATIONALE_WINDOW = 200
    RATIONALE_CHARS = 100

    def __init__(
        self,
        scorer: Optional[RelevanceScorer] = None,
        relevance_threshold: float = 0.5,
        max_context_items: int = 50,
        content_limits: Optional[ContentLimits] = None,
        security_filter: Optional[SecurityFilter] = None,
        enable_pattern_recognition: bool = True
    ):
        """
        Initialize extractor.

        Args:
            scorer: Relevance scorer (default weights if None)
            relevance_threshold: Minimum entry score for problem extraction
            max_context_items: Cap applied to each extracted list
            content_limits: Per-field character limits
            security_filter: Redaction applied to the finished Context (None disables)
            enable_pattern_recognition: Run the pattern pass
        """
        self.scorer = scorer or RelevanceScorer()
        self.relevance_threshold = relevance_threshold
        self.max_context_items = max_context_items
        self.limits = content_limits or ContentLimits()
        self.security_filter = security_filter
        self.enable_pattern_recognition = enable_pattern_recognition

    @classmethod
    def from_config(cls, config: CtxRepoConfig) -> 'ContextExtractor':
        security = None
        if config.security.filter_sensitive_data:
            security = SecurityFilter(config.security.custom_patterns)
        return cls(
            scorer=RelevanceScorer(config.scoring.weights, config.scoring.archive_half_life_days),
            relevance_threshold=config.extraction.relevance_threshold,
            max_context_items=config.extraction.max_context_items,
            content_limits=config.extraction.content_limits,
            security_filter=security,
            enable_pattern_recognition=config.extraction.enable_pattern_recognition,
        )

    # =========================================================================
    # Entry Point
    # =========================================================================

    @log_performance('ctxrepo.extraction')
    def extract(
        self,
        entries: Sequence[EntryLike],
        project_path: Optional[str] = None,
        extracted_at: str = 'preCompact'
    ) -> Context:
        """
        Extract a Context from transcript entries.

        Args:
            entries: Ordered entries for one session (TranscriptEntry or raw dicts)
            project_path: Overrides the project path found in the entries
            extracted_at: Trigger label (preCompact, manual, scheduled)

        Raises:
            InputError: entries is empty or None
        """
        if not entries:
            raise InputError("No transcript entries provided")

        entries = normalize_entries(entries)
        if not entries:
            raise InputError("No usable transcript entries provided", received=0)

        limit = self.max_context_items
        problems = self.extract_problems(entries)[:limit]
        implementations = self.extract_implementations(entries)[:limit]
        decisions = self.extract_decisions(entries)[:limit]
        patterns = self.identify_patterns(entries)[:limit] if self.enable_pattern_recognition else []

        metadata = ContextMetadata(
            entry_count=len(entries),
            duration=self._duration_ms(entries),
            tools_used=self._unique_tools(entries),
            tool_counts=self._tool_counts(entries),
            files_modified=self._modified_files(entries),
            relevance_score=self.calculate_overall_relevance(
                len(problems), len(implementations), len(decisions), len(patterns)
            ),
            extraction_version=EXTRACTION_VERSION,
        )

        context = Context(
            session_id=self._session_id(entries),
            project_path=project_path or self._project_path(entries),
            timestamp=now_iso(),
            extracted_at=extracted_at,
            problems=problems,
            implementations=implementations,
            decisions=decisions,
            patterns=patterns,
            metadata=metadata,
        )

        if self.security_filter is not None:
            context = self._apply_security_filter(context)

        logger.debug(
            f"Extracted context for session {context.session_id}",
            extra={
                'session_id': context.session_id,
                'problems': len(context.problems),
                'implementations': len(context.implementations),
                'decisions': len(context.decisions),
                'patterns': len(context.patterns),
            }
        )
        return context

    def _apply_security_filter(self, context: Context) -> Context:
        before = self.security_filter.get_stats()['redactedCount']
        filtered = self.security_filter.filter_object(context)
        redacted = self.security_filter.get_stats()['redactedCount'] - before
        return replace(
            filtered,
            metadata=replace(filtered.metadata, security_filtered=True, redacted_count=redacted)
        )

    # =========================================================================
    # Pass 1: Problems
    # =========================================================================

    def extract_problems(self, entries: List[TranscriptEntry]) -> List[Problem]:
        """
        Pair user problems with the solutions that follow them.

        Only entries scoring at or above the relevance threshold take part.
        A new problem replaces one still waiting for a solution; the pending
        tool-based candidate is kept and may attach to the new problem.
        """
        problems: List[Problem] = []
        current: Optional[Problem] = None
        potential: Optional[Solution] = None

        for entry in entries:
            relevance = self.scorer.score_entry(entry)
            if relevance < self.relevance_threshold:
                continue

            if entry.is_user:
                text = entry.text
                if text and self.is_problem_indicator(text):
                    current = Problem(
                        id=generate_id('prob'),
                        question=text[:self.limits.question],
                        timestamp=entry.timestamp,
                        tags=self.extract_tags(text),
                        relevance=relevance,
                    )

            if current is not None and entry.type == 'tool_use' and entry.tool_name in self.SOLUTION_TOOLS:
                potential = Solution(
                    approach=f"Used {entry.tool_name} tool",
                    files=[self._tool_file(entry) or 'unknown'],
                    successful=True,
                )

            if potential is not None and entry.tool_error:
                potential.successful = False

            if current is not None and entry.is_assistant:
                text = entry.text
                if text:
                    if potential is not None:
                        potential.approach = text[:self.limits.solution]
                        current.solution = potential
                    elif self.is_solution_indicator(text):
                        current.solution = Solution(
                            approach=text[:self.limits.solution],
                            files=[],
                            successful=True,
                        )

                if current.solution is not None:
                    problems.append(current)
                    current = None
                    potential = None

        if current is not None:
            if potential is not None:
                current.solution = potential
            problems.append(current)

        return sorted(problems, key=lambda p: p.relevance, reverse=True)

    def is_problem_indicator(self, text: str) -> bool:
        if '?' in text:
            return True
        lower = text.lower()
        return any(indicator in lower for indicator in self.PROBLEM_INDICATORS)

    def is_solution_indicator(self, text: str) -> bool:
        if '```' in text:
            return True
        lower = text.lower()
        return any(indicator in lower for indicator in self.SOLUTION_INDICATORS)

    def extract_tags(self, text: str) -> List[str]:
        return list(OrderedDict.fromkeys(m.lower() for m in self.TECH_TAG_PATTERN.findall(text)))

    # =========================================================================
    # Pass 2: Implementations
    # =========================================================================

    def extract_implementations(self, entries: List[TranscriptEntry]) -> List[Implementation]:
        """One Implementation per tool_use entry, highest score first."""
        implementations = []

        for index, entry in enumerate(entries):
            if entry.type != 'tool_use' or not entry.tool_name:
                continue

            tool = entry.tool_name
            description = ''
            if index > 0 and entries[index - 1].is_assistant:
                description = entries[index - 1].text
            if not description:
                fallback = entry.tool_input.get('description')
                description = fallback if isinstance(fallback, str) else ''

            implementations.append(Implementation(
                id=generate_id('impl'),
                tool=tool,
                file=self._implementation_target(entry),
                description=description[:self.limits.implementation],
                timestamp=entry.timestamp,
                changes=self.extract_code_changes(entry),
                relevance=self.scorer.score_entry(entry),
            ))

        return sorted(implementations, key=lambda i: i.relevance, reverse=True)

    def _implementation_target(self, entry: TranscriptEntry) -> str:
        path = self._tool_file(entry)
        if path:
            return path
        if entry.tool_name == 'Bash':
            return entry.cwd or 'unknown'
        if entry.tool_name == 'TodoWrite':
            return 'todo_management'
        return entry.tool_name

    def extract_code_changes(self, entry: TranscriptEntry) -> Optional[List[CodeChange]]:
        tool_input = entry.tool_input
        if not tool_input:
            return None

        changes = []
        if entry.tool_name == 'Write':
            changes.append(CodeChange(type='addition', content=_as_text(tool_input.get('content'))))
        elif entry.tool_name == 'Edit':
            content = tool_input.get('new_string', tool_input.get('new_content'))
            changes.append(CodeChange(type='modification', content=_as_text(content)))
        elif entry.tool_name == 'MultiEdit':
            edits = tool_input.get('edits')
            if isinstance(edits, list) and edits:
                for edit in edits:
                    if isinstance(edit, dict):
                        changes.append(CodeChange(type='modification', content=_as_text(edit.get('new_string'))))
            else:
                changes.append(CodeChange(type='modification', content=_as_text(tool_input.get('new_string'))))

        return changes or None

    # =========================================================================
    # Pass 3: Decisions
    # =========================================================================

    def extract_decisions(self, entries: List[TranscriptEntry]) -> List[Decision]:
        decisions = []

        for entry in entries:
            if not entry.is_assistant:
                continue
            content = entry.text
            if not content:
                continue

            for pattern in self.DECISION_PATTERNS:
                for match in pattern.finditer(content):
                    start = max(0, match.start() - self.DECISION_CONTEXT_CHARS)
                    end = min(len(content), match.end() + self.DECISION_CONTEXT_CHARS)
                    decision_text = match.group(0)

                    decisions.append(Decision(
                        id=generate_id('dec'),
                        decision=decision_text[:self.limits.decision],
                        context=content[start:end],
                        rationale=self.extract_rationale(content, match.start()),
                        timestamp=entry.timestamp,
                        impact=self.assess_impact(decision_text),
                        tags=self.extract_tags(decision_text),
                    ))

        return decisions

    def extract_rationale(self, content: str, position: int) -> Optional[str]:
        """Text from the first reason connective within 200 chars of ``position``."""
        window = content[position:position + self.RATIONALE_WINDOW]
        lower = window.lower()
        for connective in self.RATIONALE_CONNECTIVES:
            idx = lower.find(connective)
            if idx != -1:
                return window[idx:idx + self.RATIONALE_CHARS]
        return None

    def assess_impact(self, decision: str) -> str:
        lower = decision.lower()
        if any(term in lower for term in self.HIGH_IMPACT_TERMS):
            return 'high'
        if any(term in lower for term in self.MEDIUM_IMPACT_TERMS):
            return 'medium'
        return 'low'

    # =========================================================================
    # Pass 4: Patterns
    # =========================================================================

    def identify_patterns(self, entries: List[TranscriptEntry]) -> List[Pattern]:
        """Recurring signatures seen at least twice, most frequent first."""
        patterns: Dict[str, Pattern] = {}

        for entry in entries:
            tool = entry.tool_name if entry.type == 'tool_use' else None

            if tool == 'Bash':
                command = entry.tool_input.get('command')
                if isinstance(command, str) and command.strip() and not self.is_trivial_command(command):
                    key = f"cmd:{self.normalize_command(command)}"
                    self._record_pattern(patterns, key, 'command', command, entry.timestamp)

            if tool in ('Write', 'Edit'):
                operation = f"{tool}:{self._tool_file(entry) or 'unknown'}"
                self._record_pattern(patterns, operation, 'code', operation, entry.timestamp)

            error = entry.tool_error
            if error:
                error_type = self.classify_error(error)
                if error_type:
                    self._record_pattern(patterns, f"error:{error_type}", 'error-handling', error_type, entry.timestamp)

        surfaced = [p for p in patterns.values() if p.frequency >= MIN_PATTERN_FREQUENCY]
        return sorted(surfaced, key=lambda p: p.frequency, reverse=True)

    def _record_pattern(self, patterns: Dict[str, Pattern], key: str, pattern_type: str, example: str, timestamp: str):
        existing = patterns.get(key)
        if existing is None:
            patterns[key] = Pattern(
                id=generate_id('pat'),
                type=pattern_type,
                value=key,
                frequency=1,
                first_seen=timestamp,
                last_seen=timestamp,
                examples=[example],
            )
            return

        existing.frequency += 1
        existing.last_seen = timestamp
        if example not in existing.examples and len(existing.examples) < MAX_PATTERN_EXAMPLES:
            existing.examples.append(example)

    def normalize_command(self, command: str) -> str:
        normalized = self.PATH_TOKEN.sub('<path>', command.strip())
        normalized = self.NUMBER_TOKEN.sub('<number>', normalized)
        return normalized[:50]

    def is_trivial_command(self, command: str) -> bool:
        words = command.strip().split()
        return bool(words) and words[0] in self.TRIVIAL_COMMANDS

    @staticmethod
    def classify_error(error: str) -> Optional[str]:
        lower = error.lower()
        if 'permission' in lower:
            return 'permission'
        if 'not found' in lower:
            return 'not-found'
        if 'syntax' in lower:
            return 'syntax'
        if 'type' in lower:
            return 'type-error'
        if 'undefined' in lower or 'null' in lower:
            return 'null-reference'
        return None

    # =========================================================================
    # Metadata
    # =========================================================================

    @staticmethod
    def calculate_overall_relevance(problems: int, implementations: int, decisions: int, patterns: int) -> float:
        score = (
            0.3 * min(problems / 10, 1) +
            0.3 * min(implementations / 10, 1) +
            0.2 * min(decisions / 5, 1) +
            0.2 * min(patterns / 5, 1)
        )
        return min(score, 1.0)

    @staticmethod
    def _tool_file(entry: TranscriptEntry) -> Optional[str]:
        tool_input = entry.tool_input
        for key in ('file_path', 'path', 'notebook_path'):
            value = tool_input.get(key)
            if isinstance(value, str) and value:
                return value
        return None

    def _modified_files(self, entries: List[TranscriptEntry]) -> List[str]:
        files: Dict[str, None] = OrderedDict()
        for entry in entries:
            if entry.type == 'tool_use' and entry.tool_name in self.FILE_TOOLS:
                path = self._tool_file(entry)
                if path:
                    files[path] = None
        return list(files)

    @staticmethod
    def _unique_tools(entries: List[TranscriptEntry]) -> List[str]:
        tools: Dict[str, None] = OrderedDict()
        for entry in entries:
            if entry.type == 'tool_use' and entry.tool_name:
                tools[entry.tool_name] = None
        return list(tools)

    @staticmethod
    def _tool_counts(entries: List[TranscriptEntry]) -> Dict[str, int]:
        return dict(Counter(e.tool_name for e in entries if e.type == 'tool_use' and e.tool_name))

    @staticmethod
    def _duration_ms(entries: List[TranscriptEntry]) -> int:
        times = [t for t in (parse_timestamp(e.timestamp) for e in entries) if t is not None]
        if len(times) < 2:
            return 0
        return max(0, int((times[-1] - times[0]).total_seconds() * 1000))

    @staticmethod
    def _project_path(entries: List[TranscriptEntry]) -> str:
        for entry in entries:
            if entry.cwd:
                return entry.cwd
        return 'unknown'

    @staticmethod
    def _session_id(entries: List[TranscriptEntry]) -> str:
        session_id = entries[0].session_id
        if session_id and session_id != 'unknown':
            return session_id
        return f"session-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else ''
