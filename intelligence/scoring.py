"""
ctxrepo Relevance Scoring

Heuristic scoring of transcript entries and extracted content. Every score
drives a ranking decision somewhere downstream: the extractor's relevance
threshold, problem and implementation ordering, and retrieval decay.

Signals:
- Code changes (Write/Edit/MultiEdit/NotebookEdit, code fences)
- Error resolution (tool results carrying an error)
- Decisions (decision vocabulary, explanations, todo planning)
- Problem statements (problem vocabulary in user messages)
- Tool complexity (0-1, effort proxy per tool)
- User engagement (0-1, questions, length, technical density)

All public methods are total: they never raise and always return a finite
value in [0, 1] (``combine_scores`` returns the mean of its inputs).

Usage:
    from intelligence.scoring import RelevanceScorer

    scorer = RelevanceScorer()
    score = scorer.score_entry(entry)
    decay = scorer.calculate_temporal_decay("2024-01-01T00:00:00Z")
"""

import math
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from core.config import ScoringWeights
from core.models import EntryLike, TranscriptEntry, flatten_content, parse_timestamp

LN2_APPROX = 0.693
SECONDS_PER_DAY = 86400.0


@dataclass
class RelevanceFactors:
    """Signals found in a single entry."""
    has_code_changes: bool = False
    has_error_resolution: bool = False
    has_decision: bool = False
    has_problem_solution: bool = False
    tool_complexity: float = 0.0
    user_engagement: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


class RelevanceScorer:
    """
    Score entries and content for relevance.

    Weights are fixed at construction; the scorer holds no other state and
    is safe to share.
    """

    CODE_TOOLS = ('Write', 'Edit', 'MultiEdit', 'NotebookEdit')
    READ_TOOLS = ('Read', 'View', 'Grep', 'Glob', 'Search', 'LS')

    # User messages that short-circuit to high relevance
    REQUEST_INDICATORS = [
        'implement', 'create', 'build', 'add', 'fix', 'refactor', 'optimize',
        'migrate', 'deploy', 'write', 'test', 'setup', 'configure', 'install',
        'document', 'explain', 'help', 'debug', 'solve',
    ]

    REPORTED_PROBLEM_INDICATORS = [
        'error', 'issue', 'problem', 'broken', 'crash', 'fail', 'wrong', 'bug',
        "doesn't work", 'not working', 'confused', 'stuck', 'slow',
        'vulnerability', 'leak',
    ]

    PROBLEM_INDICATORS = [
        'error', 'issue', 'problem', 'bug', 'fix', 'not working', 'failed',
        'wrong', 'broken', 'crash', 'exception', 'undefined', 'null',
    ]

    DECISION_INDICATORS = [
        'should we', 'better to', 'recommend', 'suggest', 'approach',
        'strategy', 'decision', 'choose', 'prefer', 'optimal', 'best practice',
    ]

    EXPLANATION_INDICATORS = [
        'because', 'reason', 'since', 'therefore', 'this means', 'this allows',
        'the purpose', 'in order to', 'so that', 'which enables',
    ]

    TECHNICAL_TERMS = [
        'function', 'class', 'method', 'variable', 'api', 'database',
        'server', 'client', 'component', 'module',
    ]

    ARCHIVE_TERMS = ['mcp', 'ctxrepo', 'fetch_context', 'search_archive']

    def __init__(
        self,
        weights: Optional[Union[ScoringWeights, Dict[str, float]]] = None,
        half_life_days: float = 30.0
    ):
        """
        Initialize scorer.

        Args:
            weights: Factor weights (ScoringWeights or a partial dict of overrides)
            half_life_days: Default half-life for temporal decay
        """
        if isinstance(weights, dict):
            weights = ScoringWeights(**weights)
        self.weights = weights or ScoringWeights()
        self.half_life_days = half_life_days

    # =========================================================================
    # Entries
    # =========================================================================

    def score_entry(self, entry: EntryLike) -> float:
        """Score a single transcript entry in [0, 1]."""
        if isinstance(entry, dict):
            entry = TranscriptEntry.from_dict(entry)

        if entry.is_user:
            text = entry.text
            lower = text.lower()
            if '?' in text:
                return 1.0
            if self._contains(lower, self.REQUEST_INDICATORS):
                return 0.9
            if self._contains(lower, self.REPORTED_PROBLEM_INDICATORS):
                return 0.9

        factors = self.extract_factors(entry)
        w = self.weights

        score = 0.0
        if factors.has_code_changes:
            score += w.code_changes
        if factors.has_error_resolution:
            score += w.error_resolution
        if factors.has_decision:
            score += w.decisions
        if factors.has_problem_solution:
            score += w.problem_solution
        score += factors.tool_complexity * w.tool_complexity
        score += factors.user_engagement * w.user_engagement

        return _clamp(score)

    def extract_factors(self, entry: TranscriptEntry) -> RelevanceFactors:
        factors = RelevanceFactors()

        tool = entry.tool_name
        if entry.type == 'tool_use' and tool:
            tool_input = entry.tool_input
            if tool in self.CODE_TOOLS:
                factors.has_code_changes = True
                factors.tool_complexity = self.calculate_tool_complexity(tool, tool_input)
            elif tool == 'TodoWrite':
                factors.tool_complexity = 0.5
                factors.has_decision = True
            elif tool == 'Bash':
                factors.tool_complexity = self.calculate_tool_complexity(tool, tool_input)
            elif tool in self.READ_TOOLS:
                factors.tool_complexity = 0.3

        if entry.tool_error:
            factors.has_error_resolution = True

        if entry.is_user:
            lower = entry.text.lower()
            if lower:
                factors.user_engagement = self.calculate_user_engagement(lower)
                factors.has_problem_solution = self._contains(lower, self.PROBLEM_INDICATORS)
                factors.has_decision = factors.has_decision or self._contains(lower, self.DECISION_INDICATORS)

        if entry.is_assistant:
            text = entry.text
            if '```' in text:
                factors.has_code_changes = True
            if self._contains(text.lower(), self.EXPLANATION_INDICATORS):
                factors.has_decision = True

        return factors

    def calculate_tool_complexity(self, tool_name: str, tool_input: Optional[Dict[str, Any]]) -> float:
        """Effort proxy for a tool invocation."""
        tool_input = tool_input if isinstance(tool_input, dict) else {}

        if tool_name == 'MultiEdit':
            edits = tool_input.get('edits')
            if isinstance(edits, list):
                return min(0.5 + len(edits) * 0.1, 1.0)
            return 0.8

        if tool_name == 'Write':
            content = tool_input.get('content')
            return 0.9 if isinstance(content, str) and len(content) > 1000 else 0.7

        if tool_name == 'Edit':
            old = tool_input.get('old_string')
            return 0.7 if isinstance(old, str) and len(old) > 100 else 0.6

        if tool_name == 'NotebookEdit':
            return 0.7

        if tool_name == 'TodoWrite':
            todos = tool_input.get('todos')
            if isinstance(todos, list):
                return min(0.5 + len(todos) * 0.05, 0.8)
            return 0.5

        if tool_name == 'Bash':
            command = tool_input.get('command')
            return 0.5 if isinstance(command, str) and 'git' in command else 0.4

        if tool_name in ('Grep', 'Search'):
            pattern = tool_input.get('pattern')
            return 0.4 if isinstance(pattern, str) and len(pattern) > 20 else 0.3

        return 0.3

    def calculate_user_engagement(self, content: str) -> float:
        """Engagement level of a user message (expects lowercased text)."""
        if '?' in content:
            return 1.0

        engagement = 0.2
        if len(content) > 200:
            engagement += 0.3
        if len(content) > 500:
            engagement += 0.2

        term_count = sum(1 for term in self.TECHNICAL_TERMS if term in content)
        engagement += min(term_count * 0.1, 0.3)

        return _clamp(engagement)

    # =========================================================================
    # Generic Content
    # =========================================================================

    def score_content(self, item: Dict[str, Any]) -> float:
        """
        Score a generic content item ``{type, content, metadata}``.

        Types: ``exchange`` (metadata flags hasSolution, hasError, hasCode,
        hasDecision, toolsUsed), ``prompt`` and ``tool``.
        """
        if not isinstance(item, dict):
            return 0.0

        w = self.weights
        item_type = item.get('type')
        metadata = item.get('metadata') if isinstance(item.get('metadata'), dict) else {}

        score = 0.0
        if item_type == 'exchange':
            if metadata.get('hasSolution'):
                score += w.problem_solution
            if metadata.get('hasError'):
                score += w.error_resolution
            if metadata.get('hasCode'):
                score += w.code_changes * 0.5
            if metadata.get('hasDecision'):
                score += w.decisions
            tools_used = metadata.get('toolsUsed')
            if isinstance(tools_used, (int, float)) and tools_used > 0:
                score += w.tool_complexity * 0.4
        elif item_type == 'prompt':
            score += w.user_engagement * 0.6
        elif item_type == 'tool':
            score += w.tool_complexity * 0.5

        content = item.get('content')
        content = content if isinstance(content, str) else flatten_content(content)
        lower = content.lower()

        if self._contains(lower, self.PROBLEM_INDICATORS):
            score += 0.3
        if self._contains(lower, self.DECISION_INDICATORS):
            score += 0.2
        if self._contains(lower, self.ARCHIVE_TERMS):
            score += 0.2

        return _clamp(score)

    # =========================================================================
    # Time and Aggregation
    # =========================================================================

    def calculate_temporal_decay(
        self,
        timestamp: Union[str, datetime, None],
        now: Optional[datetime] = None,
        half_life_days: Optional[float] = None
    ) -> float:
        """
        Exponential decay by age: ``exp(-0.693 * age_days / half_life)``.

        Future timestamps count as age 0; unparseable ones decay to 0.
        """
        created = parse_timestamp(timestamp)
        if created is None:
            return 0.0

        now = parse_timestamp(now) if now is not None else datetime.now(timezone.utc)
        if now is None:
            return 0.0

        half_life = half_life_days if half_life_days is not None else self.half_life_days
        if not half_life or half_life <= 0:
            return 0.0

        age_days = max(0.0, (now - created).total_seconds() / SECONDS_PER_DAY)
        return _clamp(math.exp(-LN2_APPROX * age_days / half_life))

    def combine_scores(self, scores: List[float], weights: Optional[List[float]] = None) -> float:
        """Weighted average when weights line up with scores, plain mean otherwise."""
        values = [s for s in scores if isinstance(s, (int, float)) and math.isfinite(s)] if scores else []
        if not values:
            return 0.0

        if weights and len(weights) == len(values):
            total_weight = math.fsum(weights)
            if total_weight > 0:
                return math.fsum(s * w for s, w in zip(values, weights)) / total_weight

        return math.fsum(values) / len(values)

    @staticmethod
    def _contains(text: str, indicators: List[str]) -> bool:
        return any(indicator in text for indicator in indicators)


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    if not isinstance(value, (int, float)) or math.isnan(value):
        return low
    return max(low, min(high, float(value)))
