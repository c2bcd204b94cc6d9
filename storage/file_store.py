"""
File-based Context Storage for ctxrepo

Archives each extracted Context as one JSON file:

    <base>/projects/<hash>/sessions/<YYYY-MM-DD>-<sessionId>.json
    <base>/projects/<hash>/index.json        (session summaries, last 100)
    <base>/global/index.json                 (known projects)

``<hash>`` is the first 8 hex chars of the md5 of the project path.

Usage:
    from storage.file_store import FileStore

    store = FileStore("~/.ctxrepo/archive")
    path = store.store(context)
    contexts = store.get_project_contexts("/home/me/project", limit=10)
"""

import hashlib
import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from core.errors import StorageError
from core.models import Context, now_iso, parse_timestamp

logger = logging.getLogger(__name__)

MAX_INDEXED_SESSIONS = 100
# "YYYY-MM-DD-" in front of the session id
DATE_PREFIX_LENGTH = 11


class FileStore:
    """
    Filesystem archive of Contexts.

    Scans skip unreadable session files with a warning; failed writes and
    unreadable directories raise StorageError.
    """

    def __init__(self, base_path: Union[str, Path], retention_days: int = 90):
        """
        Initialize store.

        Args:
            base_path: Archive root directory
            retention_days: Session files older than this are removed after a store (0 keeps all)
        """
        self.base_path = Path(base_path).expanduser()
        self.retention_days = retention_days

    # =========================================================================
    # Layout
    # =========================================================================

    @staticmethod
    def project_hash(project_path: str) -> str:
        return hashlib.md5(project_path.encode('utf-8')).hexdigest()[:8]

    @staticmethod
    def session_id_of(path: Path) -> str:
        """Session id encoded in a ``<YYYY-MM-DD>-<sessionId>.json`` file name."""
        return path.stem[DATE_PREFIX_LENGTH:]

    @property
    def projects_root(self) -> Path:
        return self.base_path / 'projects'

    @property
    def global_index_path(self) -> Path:
        return self.base_path / 'global' / 'index.json'

    def project_dir(self, project_path: str) -> Path:
        return self.projects_root / self.project_hash(project_path)

    def sessions_dir(self, project_path: str) -> Path:
        return self.project_dir(project_path) / 'sessions'

    def initialize(self):
        try:
            self.projects_root.mkdir(parents=True, exist_ok=True)
            self.global_index_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create archive at {self.base_path}: {e}", path=str(self.base_path)) from e

    # =========================================================================
    # Writing
    # =========================================================================

    def store(self, context: Context) -> Path:
        """
        Persist a context and update the project and global indexes.

        Re-storing a session replaces its previous file.

        Returns:
            Path of the written session file
        """
        self.initialize()

        project_dir = self.project_dir(context.project_path)
        sessions_dir = project_dir / 'sessions'
        try:
            sessions_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create {sessions_dir}: {e}", path=str(sessions_dir)) from e

        for previous in self._session_files(sessions_dir):
            if self.session_id_of(previous) == context.session_id:
                self._unlink(previous)

        created = parse_timestamp(context.timestamp)
        date_str = created.strftime('%Y-%m-%d') if created else time.strftime('%Y-%m-%d')
        session_path = sessions_dir / f"{date_str}-{context.session_id}.json"

        write_json_atomic(session_path, context.to_dict())
        self._update_project_index(project_dir, context, session_path.name)
        self._update_global_index(context)

        if self.retention_days > 0:
            self.clean_old_sessions(sessions_dir)

        logger.debug(f"Stored session {context.session_id} at {session_path}")
        return session_path

    def _update_project_index(self, project_dir: Path, context: Context, session_file: str):
        index_path = project_dir / 'index.json'
        index = self._read_json(index_path)
        if not isinstance(index, dict) or not isinstance(index.get('sessions'), list):
            index = {
                'projectPath': context.project_path,
                'projectHash': self.project_hash(context.project_path),
                'sessions': [],
                'totalProblems': 0,
                'totalImplementations': 0,
                'totalDecisions': 0,
                'totalPatterns': 0,
                'created': now_iso(),
            }

        stats = {
            'problems': len(context.problems),
            'implementations': len(context.implementations),
            'decisions': len(context.decisions),
            'patterns': len(context.patterns),
        }

        # Replace an earlier summary of the same session
        kept = []
        for summary in index['sessions']:
            if summary.get('sessionId') == context.session_id:
                for name, count in (summary.get('stats') or {}).items():
                    total_key = f"total{name.capitalize()}"
                    index[total_key] = max(0, index.get(total_key, 0) - count)
            else:
                kept.append(summary)

        kept.append({
            'sessionId': context.session_id,
            'timestamp': context.timestamp,
            'file': session_file,
            'stats': stats,
            'relevanceScore': context.metadata.relevance_score,
        })
        index['sessions'] = kept[-MAX_INDEXED_SESSIONS:]

        for name, count in stats.items():
            total_key = f"total{name.capitalize()}"
            index[total_key] = index.get(total_key, 0) + count
        index['lastUpdated'] = now_iso()

        write_json_atomic(index_path, index)

    def _update_global_index(self, context: Context):
        index = self._read_json(self.global_index_path)
        if not isinstance(index, dict):
            index = {}
        projects = index.setdefault('projects', {})

        project_hash = self.project_hash(context.project_path)
        previous = projects.get(project_hash) or {}
        projects[project_hash] = {
            'path': context.project_path,
            'lastActive': context.timestamp,
            'sessionCount': previous.get('sessionCount', 0) + 1,
        }
        index['lastUpdated'] = now_iso()

        write_json_atomic(self.global_index_path, index)

    def clean_old_sessions(self, sessions_dir: Path) -> int:
        """Remove session files whose mtime is past the retention window."""
        cutoff = time.time() - self.retention_days * 86400
        removed = 0
        for path in self._session_files(sessions_dir):
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
                    logger.info(f"Cleaned old session: {path.name}")
            except OSError as e:
                logger.warning(f"Could not clean {path}: {e}")
        return removed

    # =========================================================================
    # Reading
    # =========================================================================

    def get_by_session_id(self, session_id: str) -> Optional[Context]:
        """Find a session in any project; None when absent."""
        if not session_id:
            return None
        for project_dir in self._project_dirs():
            for path in self._session_files(project_dir / 'sessions'):
                if self.session_id_of(path) == session_id:
                    data = self._read_json(path, strict=True)
                    context = self._context_from_data(data, path)
                    if context is None:
                        raise StorageError(f"Malformed session file {path}", path=str(path))
                    return context
        return None

    def get_project_contexts(self, project_path: str, limit: int = 100) -> List[Context]:
        """Most recent contexts of one project, newest file first."""
        files = sorted(self._session_files(self.sessions_dir(project_path)), key=lambda p: p.name, reverse=True)
        contexts = []
        for path in files[:limit]:
            context = self._load_context(path)
            if context is not None:
                contexts.append(context)
        return contexts

    def search_all(self, predicate: Callable[[Context], bool]) -> List[Context]:
        """Every archived context, across projects, that satisfies ``predicate``."""
        results = []
        for project_dir in self._project_dirs():
            for path in self._session_files(project_dir / 'sessions'):
                context = self._load_context(path)
                if context is not None and predicate(context):
                    results.append(context)
        return results

    def get_project_index(self, project_path: str) -> Optional[Dict[str, Any]]:
        data = self._read_json(self.project_dir(project_path) / 'index.json')
        return data if isinstance(data, dict) else None

    def list_projects(self) -> Dict[str, Any]:
        data = self._read_json(self.global_index_path)
        if isinstance(data, dict) and isinstance(data.get('projects'), dict):
            return data['projects']
        return {}

    def get_stats(self) -> Dict[str, Any]:
        total_sessions = 0
        total_size = 0
        oldest = None
        newest = None
        project_dirs = self._project_dirs()

        for project_dir in project_dirs:
            for path in self._session_files(project_dir / 'sessions'):
                total_sessions += 1
                try:
                    total_size += path.stat().st_size
                except OSError:
                    continue

            index = self._read_json(project_dir / 'index.json')
            if isinstance(index, dict):
                try:
                    total_size += (project_dir / 'index.json').stat().st_size
                except OSError:
                    pass
                for summary in index.get('sessions') or []:
                    ts = summary.get('timestamp')
                    if not ts:
                        continue
                    if oldest is None or ts < oldest:
                        oldest = ts
                    if newest is None or ts > newest:
                        newest = ts

        return {
            'totalProjects': len(project_dirs),
            'totalSessions': total_sessions,
            'totalSizeMB': round(total_size / 1024 / 1024, 2),
            'oldestSession': oldest,
            'newestSession': newest,
        }

    # =========================================================================
    # Helpers
    # =========================================================================

    def _project_dirs(self) -> List[Path]:
        if not self.projects_root.exists():
            return []
        try:
            return sorted(p for p in self.projects_root.iterdir() if p.is_dir())
        except OSError as e:
            raise StorageError(f"Cannot list {self.projects_root}: {e}", path=str(self.projects_root)) from e

    @staticmethod
    def _session_files(sessions_dir: Path) -> List[Path]:
        if not sessions_dir.exists():
            return []
        try:
            return [p for p in sessions_dir.iterdir() if p.suffix == '.json' and p.is_file()]
        except OSError as e:
            raise StorageError(f"Cannot list {sessions_dir}: {e}", path=str(sessions_dir)) from e

    def _load_context(self, path: Path) -> Optional[Context]:
        return self._context_from_data(self._read_json(path), path)

    @staticmethod
    def _context_from_data(data: Any, path: Path) -> Optional[Context]:
        if not isinstance(data, dict):
            return None
        # Older archives wrap the payload
        if isinstance(data.get('context'), dict):
            data = data['context']
        try:
            return Context.from_dict(data)
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Skipping malformed session file {path}: {e}")
            return None

    @staticmethod
    def _read_json(path: Path, strict: bool = False) -> Any:
        if not path.exists():
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            if strict:
                raise StorageError(f"Cannot read {path}: {e}", path=str(path)) from e
            logger.warning(f"Skipping unreadable file {path}: {e}")
            return None

    @staticmethod
    def _unlink(path: Path):
        try:
            path.unlink()
        except OSError as e:
            raise StorageError(f"Cannot remove {path}: {e}", path=str(path)) from e


def write_json_atomic(path: Path, data: Any):
    """Write JSON to a temp file in the same directory, then rename over ``path``."""
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
    except OSError as e:
        raise StorageError(f"Failed to write {path}: {e}", path=str(path)) from e
