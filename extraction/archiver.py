"""
Context Archiver

Runs the archive pipeline for one session: parse (for transcript files),
extract a Context, store it, and re-index the project's keyword index.

Failures of the pipeline (empty input, unreadable transcript, storage
errors) are reported in the returned ``ArchiveResult`` rather than raised,
so hook-style callers can log and move on.

Usage:
    from extraction.archiver import ContextArchiver

    archiver = ContextArchiver(store, ContextExtractor.from_config(config))
    result = archiver.archive_from_transcript("session.jsonl")
    if result.success:
        print(result.archive_path, result.stats)
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from core.errors import CtxRepoError
from core.logging_config import AuditLogger
from core.models import Context, EntryLike
from parsers.transcript_parser import parse_transcript
from search.indexer import SearchIndexer
from storage.file_store import FileStore

from .extractor import ContextExtractor

logger = logging.getLogger(__name__)


@dataclass
class ArchiveResult:
    """Outcome of one archive run."""
    success: bool
    archive_path: Optional[str] = None
    stats: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    context: Optional[Context] = None

    def to_dict(self) -> dict:
        result: Dict[str, Any] = {'success': self.success}
        if self.archive_path is not None:
            result['archivePath'] = self.archive_path
        if self.stats is not None:
            result['stats'] = self.stats
        if self.error is not None:
            result['error'] = self.error
        return result


class ContextArchiver:
    """
    Extract, store and index session contexts.
    """

    def __init__(
        self,
        storage: FileStore,
        extractor: Optional[ContextExtractor] = None,
        indexer_factory: Optional[Callable[[FileStore, str], SearchIndexer]] = None
    ):
        """
        Initialize archiver.

        Args:
            storage: Archive to write to
            extractor: Extractor to use (default settings if None)
            indexer_factory: Builds the indexer for a project path
                (default: SearchIndexer.for_project)
        """
        self.storage = storage
        self.extractor = extractor or ContextExtractor()
        self.indexer_factory = indexer_factory or SearchIndexer.for_project
        self.audit = AuditLogger()

    def archive_from_transcript(self, transcript_path: Union[str, Path]) -> ArchiveResult:
        logger.info(f"Processing transcript: {transcript_path}")
        try:
            entries = parse_transcript(transcript_path)
        except OSError as e:
            logger.error(f"Cannot read transcript {transcript_path}: {e}")
            return ArchiveResult(success=False, error=f"Cannot read transcript: {e}")

        logger.info(f"Parsed {len(entries)} entries from transcript")
        if not entries:
            return ArchiveResult(success=False, error='No entries found in transcript')
        return self.archive_from_entries(entries)

    def archive_from_entries(self, entries: List[EntryLike], project_path: Optional[str] = None) -> ArchiveResult:
        try:
            context = self.extractor.extract(entries, project_path=project_path)
            logger.info(f"Extracted context with relevance score: {context.metadata.relevance_score}")
            archive_path = self.archive(context)
        except CtxRepoError as e:
            logger.error(f"Failed to archive context: {e.message}")
            return ArchiveResult(success=False, error=e.message)

        stats = {
            'problems': len(context.problems),
            'implementations': len(context.implementations),
            'decisions': len(context.decisions),
            'patterns': len(context.patterns),
            'relevanceScore': context.metadata.relevance_score,
        }
        self.audit.log_archive(context.session_id, context.project_path, archive_path=archive_path, **stats)
        return ArchiveResult(success=True, archive_path=archive_path, stats=stats, context=context)

    def archive(self, context: Context) -> str:
        """Store a pre-extracted context and index it; returns the session file path."""
        path = self.storage.store(context)
        logger.info(f"Context archived to: {path}")

        indexer = self.indexer_factory(self.storage, context.project_path)
        indexer.update_index(context.session_id, context)
        return str(path)

    def get_stats(self) -> Dict[str, Any]:
        return self.storage.get_stats()
