"""
ctxrepo Pattern Analyzer

Aggregates the Patterns recorded in archived Contexts:
- Merges same-key patterns across sessions (frequencies sum)
- Produces project insights and templated recommendations
- Tracks how one pattern's frequency evolves over time

Patterns are derived on demand from the archive; nothing here is persisted.

Usage:
    from intelligence.patterns import PatternAnalyzer

    analyzer = PatternAnalyzer(store)
    top = analyzer.get_patterns(type='command', min_frequency=2, limit=10)
    report = analyzer.analyze_project('/home/me/project')
    evolution = analyzer.get_pattern_evolution('cmd:npm test', 'command')
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

import numpy as np

from core.models import Context, Pattern, parse_timestamp
from storage.file_store import FileStore

logger = logging.getLogger(__name__)

MAX_EXAMPLES = 10
TREND_STABLE_SLOPE = 0.1


@dataclass
class PatternInsight:
    """A finding about a project's patterns."""
    type: str  # 'error-pattern', 'hotspot', 'workflow', 'optimization'
    title: str
    description: str
    severity: str  # 'high', 'medium', 'low', 'info'
    patterns: List[Pattern] = field(default_factory=list)
    data: Any = None

    def to_dict(self) -> dict:
        result = {
            'type': self.type,
            'title': self.title,
            'description': self.description,
            'severity': self.severity,
        }
        if self.patterns:
            result['patterns'] = [p.to_dict() for p in self.patterns]
        if self.data is not None:
            result['data'] = self.data
        return result


def _earlier(a: str, b: str) -> str:
    ta, tb = parse_timestamp(a), parse_timestamp(b)
    if ta is None or tb is None:
        return min(a, b) if a and b else (a or b)
    return a if ta <= tb else b


def _later(a: str, b: str) -> str:
    ta, tb = parse_timestamp(a), parse_timestamp(b)
    if ta is None or tb is None:
        return max(a, b)
    return a if ta >= tb else b


def merge_patterns(patterns: List[Pattern]) -> List[Pattern]:
    """
    Merge patterns sharing ``(type, value)``.

    Frequencies sum, firstSeen takes the earliest and lastSeen the latest,
    examples are deduplicated in order and capped. Inputs are not modified.
    """
    merged: Dict[str, Pattern] = {}
    for pattern in patterns:
        existing = merged.get(pattern.key)
        if existing is None:
            merged[pattern.key] = replace(pattern, examples=list(pattern.examples)[:MAX_EXAMPLES])
            continue

        existing.frequency += pattern.frequency
        existing.first_seen = _earlier(existing.first_seen, pattern.first_seen)
        existing.last_seen = _later(existing.last_seen, pattern.last_seen)
        examples = list(dict.fromkeys(existing.examples + list(pattern.examples)))
        existing.examples = examples[:MAX_EXAMPLES]
    return list(merged.values())


def calculate_trend(values: List[float]) -> str:
    """Least-squares slope of a series: increasing, decreasing or stable."""
    if len(values) < 2:
        return 'stable'
    slope = np.polyfit(np.arange(len(values), dtype=float), np.asarray(values, dtype=float), 1)[0]
    if abs(slope) < TREND_STABLE_SLOPE:
        return 'stable'
    return 'increasing' if slope > 0 else 'decreasing'


def calculate_similarity(p1: Pattern, p2: Pattern) -> float:
    if p1.type != p2.type:
        return 0.0

    value1 = p1.value.lower()
    value2 = p2.value.lower()
    if value1 == value2:
        return 1.0
    if value1 in value2 or value2 in value1:
        return 0.8

    words1 = {w for w in re.split(r'\W+', value1) if w}
    words2 = {w for w in re.split(r'\W+', value2) if w}
    union = words1 | words2
    if not union:
        return 0.0
    return len(words1 & words2) / len(union)


class PatternAnalyzer:
    """
    Identifies recurring patterns across archived contexts.
    """

    def __init__(self, storage: FileStore):
        self.storage = storage

    def _contexts(self, project_path: Optional[str] = None) -> List[Context]:
        if project_path:
            return self.storage.get_project_contexts(project_path)
        return self.storage.search_all(lambda c: True)

    def get_patterns(
        self,
        type: Optional[str] = None,
        min_frequency: int = 2,
        project_path: Optional[str] = None,
        limit: int = 10
    ) -> List[Pattern]:
        """
        Merged patterns, most frequent first.

        Args:
            type: Pattern type to keep ('all' or None for every type)
            min_frequency: Drop merged patterns below this frequency
            project_path: Restrict to one project's sessions
            limit: Maximum patterns returned
        """
        logger.info(f"Getting patterns: type={type or 'all'}, min_frequency={min_frequency}")

        collected = []
        for context in self._contexts(project_path):
            for pattern in context.patterns:
                if type and type != 'all' and pattern.type != type:
                    continue
                collected.append(pattern)

        patterns = [p for p in merge_patterns(collected) if p.frequency >= min_frequency]
        patterns.sort(key=lambda p: p.frequency, reverse=True)
        patterns = patterns[:max(limit, 0)]

        logger.info(f"Found {len(patterns)} patterns")
        return patterns

    def analyze_project(self, project_path: str) -> Dict[str, Any]:
        """
        Patterns, insights and recommendations for one project.

        Returns:
            {"patterns": [Pattern], "insights": [PatternInsight], "recommendations": [str]}
        """
        contexts = self.storage.get_project_contexts(project_path)
        patterns = self.get_patterns(type='all', min_frequency=2, project_path=project_path)
        insights = self.generate_insights(patterns, contexts)
        recommendations = self.generate_recommendations(patterns, insights)
        return {
            'patterns': patterns,
            'insights': insights,
            'recommendations': recommendations,
        }

    def find_similar_patterns(self, pattern: Pattern, threshold: float = 0.7) -> List[Pattern]:
        candidates = self.get_patterns(type=pattern.type, min_frequency=1, limit=1000)
        return [
            p for p in candidates
            if p.key != pattern.key and calculate_similarity(pattern, p) > threshold
        ]

    def get_pattern_evolution(self, value: str, type: str) -> Dict[str, Any]:
        """
        Per-session frequency of one pattern in time order, with its trend.

        Returns:
            {"occurrences": [{"timestamp", "frequency", "context"}], "trend": str}
        """
        def has_pattern(context: Context) -> bool:
            return any(p.type == type and p.value == value for p in context.patterns)

        occurrences = []
        for context in self.storage.search_all(has_pattern):
            frequency = sum(p.frequency for p in context.patterns if p.type == type and p.value == value)
            occurrences.append({
                'timestamp': context.timestamp,
                'frequency': frequency,
                'context': context.session_id,
            })

        def order(occurrence):
            parsed = parse_timestamp(occurrence['timestamp'])
            return parsed.timestamp() if parsed else float('-inf')

        occurrences.sort(key=order)
        return {
            'occurrences': occurrences,
            'trend': calculate_trend([o['frequency'] for o in occurrences]),
        }

    # =========================================================================
    # Insights
    # =========================================================================

    def generate_insights(self, patterns: List[Pattern], contexts: List[Context]) -> List[PatternInsight]:
        insights = []

        error_patterns = [p for p in patterns if p.type == 'error-handling']
        if error_patterns:
            insights.append(PatternInsight(
                type='error-pattern',
                title='Recurring Errors',
                description=f"Found {len(error_patterns)} recurring error patterns",
                severity='medium',
                patterns=error_patterns[:3],
            ))

        file_counts = Counter()
        for context in contexts:
            file_counts.update(context.metadata.files_modified)
        hotspots = [[name, count] for name, count in file_counts.most_common(5)]
        if hotspots:
            insights.append(PatternInsight(
                type='hotspot',
                title='Frequently Modified Files',
                description='These files are modified most often and may need refactoring',
                severity='low',
                data=hotspots,
            ))

        command_patterns = [p for p in patterns if p.type == 'command']
        if len(command_patterns) > 3:
            insights.append(PatternInsight(
                type='workflow',
                title='Common Workflows',
                description=f"Identified {len(command_patterns)} recurring command patterns",
                severity='info',
                patterns=command_patterns[:5],
            ))

        return insights

    def generate_recommendations(self, patterns: List[Pattern], insights: List[PatternInsight]) -> List[str]:
        recommendations = []

        error_patterns = [p for p in patterns if p.type == 'error-handling']
        if len(error_patterns) > 5:
            recommendations.append(
                'Consider implementing better error handling strategies - multiple recurring errors detected'
            )

        frequent_commands = [p for p in patterns if p.type == 'command' and p.frequency > 5]
        if frequent_commands:
            names = ', '.join(p.value for p in frequent_commands[:3])
            recommendations.append(f"Automate frequent commands: {names}")

        if any(p.type == 'code' and p.frequency > 10 for p in patterns):
            recommendations.append('Extract common code patterns into reusable functions or utilities')

        hotspot = next((i for i in insights if i.type == 'hotspot'), None)
        if hotspot and hotspot.data:
            top_file, count = hotspot.data[0]
            if count > 10:
                recommendations.append(f"Consider refactoring {top_file} - modified {count} times")

        return recommendations
