"""
Context Retrieval for ctxrepo

Answers three kinds of queries over archived Contexts:
- Relevance: ``fetch_relevant_context`` ranks contexts against a free-text query
- Filtered search: ``search_archive`` applies date/project/file filters, then
  scores per-field matches
- Recency: ``get_recent_contexts``

Matching is lexical. The query is tokenized, stop words and short words are
dropped, and a few terms are expanded to synonym sets. Each field scores the
fraction of query tokens it contains, weighted per field, and relevance
decays with age (60-day half-life).

"Nothing found" and unusable queries both return ``[]``; only storage
failures raise.

Usage:
    from search.retriever import ContextRetriever

    retriever = ContextRetriever(store)
    contexts = retriever.fetch_relevant_context("jwt authentication", limit=5)
    results = retriever.search_archive("redis", file_pattern="*.ts", sort_by="date")
"""

import logging
import os
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from core.logging_config import AuditLogger
from core.models import Context, parse_timestamp
from intelligence.scoring import RelevanceScorer
from storage.file_store import FileStore

logger = logging.getLogger(__name__)

SCOPES = ('project', 'session', 'global')
SORT_ORDERS = ('relevance', 'date', 'frequency')

QUERY_STOP_WORDS = frozenset([
    'the', 'a', 'an', 'and', 'or', 'but', 'in', 'on', 'at', 'to', 'for', 'of',
    'with', 'by', 'from', 'as', 'is', 'was', 'are', 'were', 'been', 'be',
    'have', 'has', 'had', 'do', 'does', 'did', 'will', 'would', 'could',
    'should', 'may', 'might', 'must', 'can', 'what', 'we', 'our', 'ours',
    'ourselves', 'you', 'your', 'yours', 'yourself',
])

QUERY_EXPANSIONS = {
    'mcp': ['mcp__', 'modelcontextprotocol'],
    'fix': ['fixed', 'fixes', 'fixing'],
    'implement': ['implementation', 'implemented', 'implementing'],
    'recent': ['recently', 'latest', 'last'],
    'work': ['working', 'worked', 'works'],
    'solution': ['solutions', 'solve', 'solved', 'solving'],
    'context': ['contexts', 'ctxrepo'],
    'fetch': ['fetching', 'fetched', 'retrieve', 'retrieval'],
    'tool': ['tools', 'tool_use', 'tooluse'],
}

# Weights used when ranking whole contexts
RELEVANCE_FIELD_WEIGHTS = {
    'problem.question': 0.3,
    'problem.solution': 0.2,
    'implementation.description': 0.2,
    'implementation.file': 0.1,
    'decision': 0.2,
    'decision.context': 0.1,
    'pattern': 0.1,
}

# Weights of individual matches reported by search_archive
MATCH_FIELD_WEIGHTS = {
    'problem.question': 0.8,
    'problem.solution': 0.7,
    'implementation.description': 0.6,
    'decision': 0.7,
    'pattern': 0.5,
}

_QUERY_SPLIT = re.compile(r'[\s,;:!?.]+')

SNIPPET_RADIUS = 50
SNIPPET_FALLBACK = 100


@dataclass
class Match:
    field: str
    snippet: str
    score: float

    def to_dict(self) -> dict:
        return {'field': self.field, 'snippet': self.snippet, 'score': self.score}


@dataclass
class SearchResult:
    """A context with the matches that qualified it."""
    context: Context
    matches: List[Match] = field(default_factory=list)
    relevance: float = 0.0

    def to_dict(self) -> dict:
        return {
            'context': self.context.to_dict(),
            'matches': [m.to_dict() for m in self.matches],
            'relevance': self.relevance,
        }


# =============================================================================
# Query Helpers
# =============================================================================

def tokenize_query(query: str) -> List[str]:
    """Lowercased query words (stop words and words of 2 chars or fewer dropped) plus expansions."""
    if not query or not isinstance(query, str):
        return []

    tokens = []
    for word in _QUERY_SPLIT.split(query.lower()):
        if len(word) <= 2 or word in QUERY_STOP_WORDS:
            continue
        tokens.append(word)
        tokens.extend(QUERY_EXPANSIONS.get(word, []))
    return tokens


def word_match_score(text: str, tokens: List[str]) -> float:
    """Fraction of ``tokens`` found in ``text`` (case-insensitive)."""
    if not tokens or not text:
        return 0.0
    lower = text.lower()
    return sum(1 for token in tokens if token in lower) / len(tokens)


def glob_to_regex(pattern: str) -> re.Pattern:
    """``*`` matches any run, ``?`` one character; everything else is literal."""
    parts = []
    for char in pattern:
        if char == '*':
            parts.append('.*')
        elif char == '?':
            parts.append('.')
        else:
            parts.append(re.escape(char))
    return re.compile(''.join(parts), re.I)


def extract_snippet(text: str, query: str, tokens: Iterable[str] = ()) -> str:
    lower = text.lower()
    needle = query.lower().strip()
    index = lower.find(needle) if needle else -1
    if index == -1:
        for token in tokens:
            index = lower.find(token)
            if index != -1:
                needle = token
                break
    if index == -1:
        return text[:SNIPPET_FALLBACK]

    start = max(0, index - SNIPPET_RADIUS)
    end = min(len(text), index + len(needle) + SNIPPET_RADIUS)
    snippet = text[start:end]
    if start > 0:
        snippet = '...' + snippet
    if end < len(text):
        snippet = snippet + '...'
    return snippet


def _context_fields(context: Context) -> List[Tuple[str, str]]:
    """(field, text) pairs of a context in a fixed order."""
    fields = []
    for problem in context.problems:
        fields.append(('problem.question', problem.question))
        if problem.solution is not None and problem.solution.approach:
            fields.append(('problem.solution', problem.solution.approach))
    for impl in context.implementations:
        fields.append(('implementation.description', impl.description))
        fields.append(('implementation.file', impl.file))
    for decision in context.decisions:
        fields.append(('decision', decision.decision))
        fields.append(('decision.context', decision.context))
    for pattern in context.patterns:
        fields.append(('pattern', pattern.value))
    return [(name, text) for name, text in fields if isinstance(text, str) and text]


# =============================================================================
# Retriever
# =============================================================================

class ContextRetriever:
    """
    Query archived contexts.

    Returned contexts are never the stored objects' own metadata: relevance
    annotations go onto copies.
    """

    def __init__(
        self,
        storage: FileStore,
        scorer: Optional[RelevanceScorer] = None,
        half_life_days: float = 60.0,
        default_project_path: Optional[str] = None
    ):
        """
        Initialize retriever.

        Args:
            storage: Archive to read from
            scorer: Supplies temporal decay (default scorer if None)
            half_life_days: Decay half-life for retrieval ranking
            default_project_path: Project for project-scoped queries (cwd if None)
        """
        self.storage = storage
        self.scorer = scorer or RelevanceScorer()
        self.half_life_days = half_life_days
        self.default_project_path = default_project_path
        self.audit = AuditLogger()

    # =========================================================================
    # Relevance Queries
    # =========================================================================

    def fetch_relevant_context(
        self,
        query: str = '',
        limit: int = 5,
        scope: str = 'project',
        min_relevance: float = 0.3,
        project_path: Optional[str] = None
    ) -> List[Context]:
        """
        Contexts ranked by relevance to ``query``.

        With an empty query each context's stored relevanceScore is used as-is.
        Project (and session) scope falls back to the whole archive when the
        project has no sessions.
        """
        query = query if isinstance(query, str) else ''
        if limit <= 0:
            return []

        if scope in ('project', 'session'):
            path = project_path or self.default_project_path or os.getcwd()
            candidates = self.storage.get_project_contexts(path, limit * 2)
            if not candidates:
                logger.info("No project contexts found, falling back to global search")
                candidates = self.storage.search_all(lambda c: True)
        else:
            candidates = self.storage.search_all(lambda c: True)

        now = datetime.now(timezone.utc)
        scored = [(context, self.calculate_relevance(context, query, now=now)) for context in candidates]
        scored = [item for item in scored if item[1] >= min_relevance]
        scored.sort(key=lambda item: item[1], reverse=True)

        results = [
            replace(context, metadata=replace(context.metadata, relevance_score=relevance))
            for context, relevance in scored[:limit]
        ]
        self.audit.log_search(query, len(results), mode=f'relevance:{scope}')
        return results

    def calculate_relevance(self, context: Context, query: str, now: Optional[datetime] = None) -> float:
        """Field-weighted match score plus frequency boost, decayed by age."""
        if not query:
            return context.metadata.relevance_score

        tokens = tokenize_query(query)
        score = 0.0
        match_count = 0
        for name, text in _context_fields(context):
            field_score = word_match_score(text, tokens)
            if field_score > 0:
                score += RELEVANCE_FIELD_WEIGHTS[name] * field_score
                match_count += 1

        base_score = min(score, 1.0)
        frequency_boost = min(match_count * 0.05, 0.3)
        decay = self.scorer.calculate_temporal_decay(context.timestamp, now=now, half_life_days=self.half_life_days)
        return max(0.0, min((base_score + frequency_boost) * decay, 1.0))

    # =========================================================================
    # Filtered Search
    # =========================================================================

    def search_archive(
        self,
        query: str,
        file_pattern: Optional[str] = None,
        date_range: Optional[Dict[str, Any]] = None,
        project_path: Optional[str] = None,
        limit: int = 10,
        sort_by: str = 'relevance'
    ) -> List[SearchResult]:
        """
        Filter the archive structurally, then score textual matches.

        Args:
            query: Free-text query
            file_pattern: Glob matched against metadata.filesModified
            date_range: {"from": iso, "to": iso}, both bounds inclusive and optional
            project_path: Substring of the context's projectPath
            limit: Maximum results
            sort_by: relevance, date or frequency (number of matches)
        """
        if not query or not isinstance(query, str) or limit <= 0:
            return []

        predicate = self._build_filter(file_pattern, date_range, project_path)
        tokens = tokenize_query(query)
        if not tokens:
            return []

        results = []
        for context in self.storage.search_all(predicate):
            matches = self.find_matches(context, query, tokens)
            if matches:
                results.append(SearchResult(
                    context=context,
                    matches=matches,
                    relevance=self.calculate_search_relevance(matches),
                ))

        if sort_by == 'date':
            results.sort(key=lambda r: _sort_time(r.context.timestamp), reverse=True)
        elif sort_by == 'frequency':
            results.sort(key=lambda r: len(r.matches), reverse=True)
        else:
            results.sort(key=lambda r: r.relevance, reverse=True)

        self.audit.log_search(query, min(len(results), limit), mode=f'archive:{sort_by}')
        return results[:limit]

    def _build_filter(self, file_pattern, date_range, project_path):
        file_regex = glob_to_regex(file_pattern) if file_pattern else None
        date_range = date_range or {}
        start = parse_timestamp(date_range.get('from')) if date_range.get('from') else None
        end = parse_timestamp(date_range.get('to')) if date_range.get('to') else None
        bounded = bool(date_range.get('from') or date_range.get('to'))

        def predicate(context: Context) -> bool:
            if bounded:
                created = parse_timestamp(context.timestamp)
                if created is None:
                    return False
                if start is not None and created < start:
                    return False
                if end is not None and created > end:
                    return False
            if project_path and project_path not in context.project_path:
                return False
            if file_regex is not None:
                if not any(file_regex.search(f) for f in context.metadata.files_modified):
                    return False
            return True

        return predicate

    def find_matches(self, context: Context, query: str, tokens: Optional[List[str]] = None) -> List[Match]:
        tokens = tokens if tokens is not None else tokenize_query(query)
        if not tokens:
            return []

        matches = []
        for name, text in _context_fields(context):
            weight = MATCH_FIELD_WEIGHTS.get(name)
            if weight is None:
                continue
            field_score = word_match_score(text, tokens)
            if field_score > 0:
                matches.append(Match(
                    field=name,
                    snippet=extract_snippet(text, query, tokens),
                    score=weight * field_score,
                ))
        return matches

    @staticmethod
    def calculate_search_relevance(matches: List[Match]) -> float:
        if not matches:
            return 0.0
        average = sum(m.score for m in matches) / len(matches)
        return min(average + min(len(matches) * 0.1, 0.3), 1.0)

    # =========================================================================
    # Recency and Lookups
    # =========================================================================

    def get_recent_contexts(self, limit: int = 10) -> List[Context]:
        contexts = self.storage.search_all(lambda c: True)
        contexts.sort(key=lambda c: _sort_time(c.timestamp), reverse=True)
        return contexts[:max(limit, 0)]

    def get_by_session_id(self, session_id: str) -> Optional[Context]:
        return self.storage.get_by_session_id(session_id)

    def get_project_index(self, project_path: str) -> Optional[Dict[str, Any]]:
        return self.storage.get_project_index(project_path)


def _sort_time(timestamp: str) -> float:
    parsed = parse_timestamp(timestamp)
    return parsed.timestamp() if parsed else float('-inf')
