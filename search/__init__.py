"""
Search System for ctxrepo

Provides:
- Per-project inverted keyword index over archived contexts
- Relevance-ranked retrieval with temporal decay
- Filtered archive search (date range, project, file glob)

Usage:
    from search import ContextRetriever, SearchIndexer

    retriever = ContextRetriever(store)
    contexts = retriever.fetch_relevant_context("jwt auth", limit=5)

    indexer = SearchIndexer.for_project(store, project_path)
    hits = indexer.search("redis cache")
"""

from .indexer import SearchIndexer, IndexSearchResult
from .retriever import ContextRetriever, SearchResult, Match

__all__ = [
    'SearchIndexer',
    'IndexSearchResult',
    'ContextRetriever',
    'SearchResult',
    'Match',
]
