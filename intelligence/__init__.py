"""
ctxrepo Intelligence Layer

Heuristics applied to transcripts and archived contexts:
- Relevance scoring of transcript entries and extracted items
- Temporal decay of relevance
- Pattern aggregation, insights and trends across sessions
"""

from .scoring import RelevanceScorer, RelevanceFactors
from .patterns import PatternAnalyzer, PatternInsight

__all__ = [
    'RelevanceScorer',
    'RelevanceFactors',
    'PatternAnalyzer',
    'PatternInsight',
]
