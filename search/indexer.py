"""
Keyword Search Index for ctxrepo

A per-project inverted index (keyword -> session ids) over archived
Contexts. The index is a derived cache: it can always be rebuilt from the
session files, so a corrupted index file is replaced by an empty one
instead of failing.

Index file layout (``search-index.json``):

    {
      "version": "1.0.0",
      "lastUpdated": "...",
      "projectName": "my-project",
      "sessions": {"<sessionId>": {SessionIndexEntry}},
      "keywords": {"<keyword>": ["<sessionId>", ...]},
      "metadata": {"totalSessions": 0, "totalKeywords": 0, "avgKeywordsPerSession": 0}
    }

Usage:
    from search.indexer import SearchIndexer

    indexer = SearchIndexer.for_project(store, "/home/me/project")
    indexer.update_index(context.session_id, context)
    results = indexer.search("redis cache", limit=5)
"""

import bisect
import json
import logging
import re
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from tqdm import tqdm

from core.errors import IndexCorruptionError
from core.logging_config import AuditLogger, log_performance
from core.models import Context, now_iso
from storage.file_store import FileStore, write_json_atomic

logger = logging.getLogger(__name__)

INDEX_VERSION = '1.0.0'
INDEX_FILENAME = 'search-index.json'

MIN_KEYWORD_LENGTH = 2
MAX_KEYWORD_LENGTH = 50
MAX_KEYWORDS_PER_SESSION = 500

STOP_WORDS = frozenset([
    'a', 'an', 'and', 'are', 'as', 'at', 'be', 'been', 'by', 'for', 'from',
    'has', 'he', 'in', 'is', 'it', 'its', 'of', 'on', 'that', 'the', 'to',
    'was', 'will', 'with', 'this', 'but', 'they', 'have', 'had', 'what',
    'when', 'where', 'who', 'which', 'why', 'how', 'all', 'would', 'there',
    'their', 'or', 'if', 'can', 'may', 'could', 'should', 'might', 'must',
    'shall', 'do', 'does', 'did', 'done', 'doing', 'i', 'you', 'she', 'we',
    'them', 'your', 'our', 'my',
])

_WORD_SPLIT = re.compile(r'\W+')


@dataclass
class SessionIndexEntry:
    """Per-session record kept in the index."""
    sessionId: str
    timestamp: str
    keywords: List[str] = field(default_factory=list)
    relevance: float = 0.0
    problemCount: int = 0
    implementationCount: int = 0
    decisionCount: int = 0
    toolsUsed: List[str] = field(default_factory=list)
    filesModified: List[str] = field(default_factory=list)
    summary: str = ''

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class IndexSearchResult:
    sessionId: str
    score: float
    timestamp: str
    summary: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


def extract_keywords(text: str, limit: int = MAX_KEYWORDS_PER_SESSION) -> List[str]:
    """Distinct indexable words of ``text`` in first-seen order."""
    if not text:
        return []

    keywords: Dict[str, None] = {}
    for word in _WORD_SPLIT.split(text.lower()):
        if not MIN_KEYWORD_LENGTH <= len(word) <= MAX_KEYWORD_LENGTH:
            continue
        if word in STOP_WORDS or word.isdigit():
            continue
        keywords[word] = None
        if len(keywords) >= limit:
            break
    return list(keywords)


def context_texts(context: Context) -> List[str]:
    """Every textual field of a context that feeds the index."""
    texts = []
    for problem in context.problems:
        texts.append(problem.question)
        if problem.solution is not None:
            texts.append(problem.solution.approach)
        texts.extend(problem.tags)
    for impl in context.implementations:
        texts.extend([impl.description, impl.tool])
        if impl.file:
            texts.append(impl.file)
    for decision in context.decisions:
        texts.extend([decision.decision, decision.context])
        if decision.rationale:
            texts.append(decision.rationale)
        texts.extend(decision.tags)
    for pattern in context.patterns:
        texts.extend([pattern.value, pattern.type])
    return [t for t in texts if isinstance(t, str) and t]


def create_summary(context: Context) -> str:
    parts = []
    if context.problems:
        parts.append(context.problems[0].question[:100])
    if context.implementations:
        parts.append(f"{len(context.implementations)} implementations")
    if context.decisions:
        parts.append(f"{len(context.decisions)} decisions")
    return ' | '.join(parts) or 'No summary available'


class SearchIndexer:
    """
    Maintains the inverted keyword index for one project.

    The index is loaded lazily and cached on the instance. Writes are atomic
    (temp file + rename) but not locked: callers serialize re-indexing of
    the same project across processes.
    """

    def __init__(self, index_path: Union[str, Path], project_name: Optional[str] = None):
        self.index_path = Path(index_path).expanduser()
        self.project_name = project_name or self.index_path.parent.name
        self._index: Optional[Dict[str, Any]] = None
        self.audit = AuditLogger()

    @classmethod
    def for_project(cls, store: FileStore, project_path: str) -> 'SearchIndexer':
        """Indexer stored next to the project's sessions directory."""
        return cls(
            store.project_dir(project_path) / INDEX_FILENAME,
            project_name=Path(project_path).name or project_path,
        )

    # =========================================================================
    # Persistence
    # =========================================================================

    def _empty_index(self) -> Dict[str, Any]:
        return {
            'version': INDEX_VERSION,
            'lastUpdated': now_iso(),
            'projectName': self.project_name,
            'sessions': {},
            'keywords': {},
            'metadata': {
                'totalSessions': 0,
                'totalKeywords': 0,
                'avgKeywordsPerSession': 0,
            },
        }

    def _read_index(self) -> Dict[str, Any]:
        try:
            with open(self.index_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise IndexCorruptionError(f"Invalid JSON in {self.index_path}: {e}", path=str(self.index_path)) from e

        if not isinstance(data, dict) or not isinstance(data.get('sessions'), dict) \
                or not isinstance(data.get('keywords'), dict):
            raise IndexCorruptionError(f"Unexpected index structure in {self.index_path}", path=str(self.index_path))
        data.setdefault('metadata', {})
        return data

    def load_index(self) -> Dict[str, Any]:
        if self._index is not None:
            return self._index

        if self.index_path.exists():
            try:
                self._index = self._read_index()
                return self._index
            except (IndexCorruptionError, OSError) as e:
                logger.warning(f"Failed to load search index, starting empty: {e}")

        self._index = self._empty_index()
        return self._index

    def save_index(self):
        index = self.load_index()
        self._refresh_metadata(index)
        write_json_atomic(self.index_path, index)
        logger.debug(f"Index saved with {index['metadata']['totalSessions']} sessions")

    @staticmethod
    def _refresh_metadata(index: Dict[str, Any], touch: bool = True):
        sessions = index['sessions']
        total_sessions = len(sessions)
        total_session_keywords = sum(len(s.get('keywords') or []) for s in sessions.values())

        if touch:
            index['lastUpdated'] = now_iso()
        index['metadata'] = {
            'totalSessions': total_sessions,
            'totalKeywords': len(index['keywords']),
            'avgKeywordsPerSession': round(total_session_keywords / total_sessions) if total_sessions else 0,
        }

    # =========================================================================
    # Updates
    # =========================================================================

    def update_index(self, session_id: str, context: Context):
        """Index (or re-index) one session and persist the index."""
        keyword_count = self._index_context(session_id, context)
        self.save_index()
        logger.info(f"Indexed session {session_id} with {keyword_count} keywords")

    def remove_session(self, session_id: str) -> bool:
        index = self.load_index()
        if session_id not in index['sessions']:
            return False
        self._remove_postings(index, session_id)
        del index['sessions'][session_id]
        self.save_index()
        return True

    def _index_context(self, session_id: str, context: Context) -> int:
        index = self.load_index()
        keywords = extract_keywords(' '.join(context_texts(context)))

        entry = SessionIndexEntry(
            sessionId=session_id,
            timestamp=context.timestamp,
            keywords=keywords,
            relevance=context.metadata.relevance_score,
            problemCount=len(context.problems),
            implementationCount=len(context.implementations),
            decisionCount=len(context.decisions),
            toolsUsed=list(context.metadata.tools_used),
            filesModified=list(context.metadata.files_modified),
            summary=create_summary(context),
        )

        if session_id in index['sessions']:
            self._remove_postings(index, session_id)
        index['sessions'][session_id] = entry.to_dict()

        postings = index['keywords']
        for keyword in keywords:
            ids = postings.setdefault(keyword, [])
            position = bisect.bisect_left(ids, session_id)
            if position == len(ids) or ids[position] != session_id:
                ids.insert(position, session_id)

        return len(keywords)

    @staticmethod
    def _remove_postings(index: Dict[str, Any], session_id: str):
        postings = index['keywords']
        for keyword in index['sessions'][session_id].get('keywords') or []:
            ids = postings.get(keyword)
            if ids is None:
                continue
            remaining = [sid for sid in ids if sid != session_id]
            if remaining:
                postings[keyword] = remaining
            else:
                del postings[keyword]

    @log_performance('ctxrepo.search')
    def rebuild_index(self, sessions_dir: Union[str, Path, None] = None, show_progress: bool = False) -> int:
        """
        Rebuild the index from session files.

        Args:
            sessions_dir: Directory of session JSON files (default: next to the index)
            show_progress: Show a tqdm progress bar

        Returns:
            Number of sessions indexed
        """
        start = time.time()
        sessions_dir = Path(sessions_dir) if sessions_dir else self.index_path.parent / 'sessions'
        self._index = self._empty_index()

        if not sessions_dir.exists():
            logger.warning(f"No sessions directory found at {sessions_dir}")
            self.save_index()
            return 0

        files = sorted(p for p in sessions_dir.iterdir() if p.suffix == '.json')
        iterator = tqdm(files, desc="Indexing sessions") if show_progress else files

        processed = 0
        for path in iterator:
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Failed to index {path.name}: {e}")
                continue

            if not isinstance(data, dict):
                continue
            payload = data['context'] if isinstance(data.get('context'), dict) else data
            try:
                context = Context.from_dict(payload)
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Failed to index {path.name}: {e}")
                continue
            session_id = data.get('sessionId') or payload.get('sessionId') or path.stem
            self._index_context(session_id, context)
            processed += 1

        self.save_index()
        self.audit.log_index_rebuild(self.index_path, processed, round(time.time() - start, 3))
        logger.info(f"Rebuilt index with {processed} sessions")
        return processed

    # =========================================================================
    # Queries
    # =========================================================================

    def search(self, query: str, limit: int = 10) -> List[IndexSearchResult]:
        """Sessions ranked by the fraction of query keywords they contain."""
        query_keywords = extract_keywords(query or '')
        if not query_keywords:
            logger.debug("No valid keywords in search query")
            return []

        index = self.load_index()
        counts: Dict[str, int] = {}
        for keyword in query_keywords:
            for session_id in index['keywords'].get(keyword, []):
                counts[session_id] = counts.get(session_id, 0) + 1

        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:max(limit, 0)]

        results = []
        for session_id, count in ranked:
            session = index['sessions'].get(session_id) or {}
            results.append(IndexSearchResult(
                sessionId=session_id,
                score=count / len(query_keywords),
                timestamp=session.get('timestamp', ''),
                summary=session.get('summary', ''),
                metadata={
                    'problemCount': session.get('problemCount', 0),
                    'toolsUsed': session.get('toolsUsed', []),
                    'filesModified': session.get('filesModified', []),
                    'relevance': session.get('relevance', 0),
                },
            ))

        self.audit.log_search(query, len(results), mode='index')
        return results

    def get_stats(self) -> Dict[str, Any]:
        index = self.load_index()
        self._refresh_metadata(index, touch=False)
        return {
            'version': index.get('version', INDEX_VERSION),
            'lastUpdated': index.get('lastUpdated'),
            **index['metadata'],
            'topKeywords': self.top_keywords(10),
        }

    def top_keywords(self, limit: int = 10) -> List[Tuple[str, int]]:
        index = self.load_index()
        counted = [(keyword, len(ids)) for keyword, ids in index['keywords'].items()]
        return sorted(counted, key=lambda item: (-item[1], item[0]))[:limit]
