"""
Baseline analyzers — simple deterministic implementations of the analyzer
contracts, usable when no specialised modality backend is wired in.

Each pattern carries the source records behind it as `evidence`, so the
engine can seed its instances and refine it against new records later.
"""

import math
import re
import statistics
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from agits_kernel.models.analysis import (
    AnalyzerPattern,
    AnomalyPattern,
    BehavioralPattern,
    SemanticPattern,
    SpatialPattern,
    TemporalPattern,
)
from agits_kernel.models.pattern import (
    DetectedPattern,
    PatternRelationship,
    RelationshipType,
)
from agits_kernel.patterns.signature import (
    as_record,
    canonical_json,
    fingerprint_similarity,
)


class ZScoreAnomalyDetector:
    """
    Flags numeric values that sit far from their group's mean.
    Records are grouped by their `type` field; groups smaller than
    `min_samples` are never flagged.
    """

    def __init__(self, threshold: float = 2.0, min_samples: int = 3):
        self.threshold = threshold
        self.min_samples = min_samples

    async def detect_anomalies(self, records: List[Any]) -> List[AnomalyPattern]:
        groups: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for record in records:
            if isinstance(record, str):
                continue
            row = as_record(record)
            groups[str(row.get("type", "default"))].append(row)

        anomalies = []
        for group, rows in groups.items():
            for field, values in self._numeric_columns(rows).items():
                if len(values) < self.min_samples:
                    continue
                mean = statistics.fmean(v for _, v in values)
                spread = statistics.pstdev(v for _, v in values)
                if spread == 0:
                    continue
                for index, value in values:
                    z = (value - mean) / spread
                    if abs(z) <= self.threshold:
                        continue
                    anomalies.append(AnomalyPattern(
                        id=f"anomaly_{group}_{field}_{index}",
                        deviation=abs(z),
                        deviation_type="statistical",
                        expected_value=mean,
                        actual_value=value,
                        severity=self._severity(abs(z)),
                        explanation=(
                            f"{field}={value} in group '{group}' is "
                            f"{abs(z):.2f} standard deviations from the mean {mean:.3f}"
                        ),
                        confidence=min(1.0, abs(z) / (2 * self.threshold)),
                        evidence=[rows[index]],
                    ))
        return anomalies

    @staticmethod
    def _numeric_columns(rows: List[Dict[str, Any]]) -> Dict[str, List[tuple]]:
        columns: Dict[str, List[tuple]] = defaultdict(list)
        for index, row in enumerate(rows):
            for name, value in row.items():
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    continue
                columns[name].append((index, float(value)))
        return columns

    def _severity(self, z: float) -> str:
        if z > 2 * self.threshold:
            return "critical"
        if z > 1.5 * self.threshold:
            return "high"
        if z > 1.25 * self.threshold:
            return "medium"
        return "low"


class ActionFrequencyAnalyzer:
    """
    Behavioral analyzer: every action seen at least `min_support` times
    becomes a pattern. Confidence is the action's share of the behavioral
    records; consistency is its success rate when records report `success`.
    """

    def __init__(self, min_support: int = 2):
        self.min_support = min_support

    async def detect_behavioral_patterns(self, records: List[Any]) -> List[BehavioralPattern]:
        by_action: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for record in records:
            row = as_record(record)
            action = row.get("action") or row.get("behavior")
            if action:
                by_action[str(action)].append(row)

        total = sum(len(rows) for rows in by_action.values())
        patterns = []
        for action, rows in by_action.items():
            if len(rows) < self.min_support:
                continue
            reported = [r["success"] for r in rows if "success" in r]
            consistency = (
                sum(1 for s in reported if s) / len(reported) if reported else 1.0
            )
            patterns.append(BehavioralPattern(
                id=f"behavior_{action}",
                action_sequence=[action],
                conditions={"record_types": sorted({str(r.get("type")) for r in rows})},
                outcomes={"success_rate": consistency},
                frequency=len(rows),
                consistency=consistency,
                confidence=len(rows) / total,
                evidence=rows,
            ))
        return patterns


class FingerprintRelationshipAnalyzer:
    """Links same-type patterns whose fingerprints are at least `threshold` similar."""

    def __init__(self, threshold: float = 0.75):
        self.threshold = threshold

    async def discover_relationships(
        self, patterns: List[DetectedPattern]
    ) -> List[PatternRelationship]:
        now = datetime.now(timezone.utc)
        relationships = []
        for i, source in enumerate(patterns):
            for target in patterns[i + 1:]:
                if source.signature.type != target.signature.type:
                    continue
                similarity = fingerprint_similarity(
                    source.signature.fingerprint, target.signature.fingerprint
                )
                if similarity < self.threshold:
                    continue
                relationships.append(PatternRelationship(
                    id=f"rel_{uuid4().hex[:12]}",
                    source_pattern_id=source.id,
                    target_pattern_id=target.id,
                    relationship_type=RelationshipType.SIMILAR,
                    strength=similarity,
                    confidence=min(source.confidence, target.confidence),
                    discovered_at=now,
                ))
        return relationships


class SequenceTemporalAnalyzer:
    """
    Temporal analyzer: event sequences that repeat in time order.

    Records are ordered by timestamp (input order when any timestamp cannot
    be read) and reduced to an event key: the first of `action`, `behavior`,
    `event` or `type`, else the record minus its timestamp. Every window of
    `window_sizes` events seen at least
    max(2, ceil(n * threshold * 0.1)) times becomes a pattern, and
    near-duplicate windows collapse into the most confident one.
    Periodicity is the mean start-to-start gap between occurrences, in events.
    """

    _KEY_FIELDS = ("action", "behavior", "event", "type")

    def __init__(self, threshold: float = 0.7, window_sizes: Sequence[int] = (2, 3, 4, 5)):
        self.threshold = threshold
        self.window_sizes = tuple(window_sizes)

    async def detect_temporal_patterns(self, records: List[Any]) -> List[TemporalPattern]:
        ordered = self._in_time_order(records)
        keys = [self._event_key(r) for r in ordered]
        n = len(keys)
        min_occurrences = max(2, math.ceil(n * self.threshold * 0.1))

        starts: Dict[Tuple[str, ...], List[int]] = defaultdict(list)
        for size in self.window_sizes:
            for i in range(n - size + 1):
                starts[tuple(keys[i:i + size])].append(i)

        patterns = []
        for window, positions in starts.items():
            count = len(positions)
            if count < min_occurrences:
                continue
            covered = sorted({p + offset for p in positions for offset in range(len(window))})
            gaps = [b - a for a, b in zip(positions, positions[1:])]
            patterns.append(TemporalPattern(
                id="sequence_" + "-".join(window),
                sequence=list(window),
                duration=self._span(ordered[positions[0]:positions[0] + len(window)]),
                periodicity=statistics.fmean(gaps),
                confidence=min(1.0, count / (n - len(window) + 1)),
                stability=0.6,
                significance=count / n,
                frequency=count,
                evidence=[ordered[i] for i in covered],
            ))

        patterns.sort(key=lambda p: (-p.confidence, -len(p.sequence), p.id))
        return deduplicate_patterns(patterns)

    def _event_key(self, record: Any) -> str:
        row = as_record(record)
        for name in self._KEY_FIELDS:
            if row.get(name) is not None:
                return str(row[name])
        return canonical_json({k: v for k, v in row.items() if k != "timestamp"})

    @staticmethod
    def _in_time_order(records: List[Any]) -> List[Any]:
        epochs = [_as_epoch(as_record(r).get("timestamp")) for r in records]
        if any(e is None for e in epochs):
            return list(records)
        # Stable, so simultaneous records keep their input order
        return [r for _, r in sorted(zip(epochs, records), key=lambda pair: pair[0])]

    @staticmethod
    def _span(window: List[Any]) -> float:
        epochs = [_as_epoch(as_record(r).get("timestamp")) for r in window]
        if any(e is None for e in epochs):
            return 0.0
        return max(epochs) - min(epochs)


class KMeansSpatialAnalyzer:
    """
    Spatial analyzer: k-means over record coordinates.

    k is min(max_clusters, ceil(n / 10)). Centroids start from the first point
    and then repeatedly the point farthest from those chosen, so results are
    deterministic. Clusters smaller than
    max(min_cluster_size, ceil(n * threshold * 0.1)) are dropped. Confidence,
    stability and significance are the cluster's cohesion,
    1 / (1 + mean distance to the centroid).
    """

    def __init__(
        self,
        max_clusters: int = 5,
        threshold: float = 0.7,
        min_cluster_size: int = 2,
        max_iterations: int = 100,
        tolerance: float = 1e-6,
    ):
        self.max_clusters = max_clusters
        self.threshold = threshold
        self.min_cluster_size = min_cluster_size
        self.max_iterations = max_iterations
        self.tolerance = tolerance

    async def detect_spatial_patterns(self, records: List[Any]) -> List[SpatialPattern]:
        points: List[List[float]] = []
        sources: List[Any] = []
        for record in records:
            point = _coordinates_of(record)
            if not point or (points and len(point) != len(points[0])):
                continue
            points.append(point)
            sources.append(record)
        if not points:
            return []

        n = len(points)
        k = min(self.max_clusters, math.ceil(n / 10))
        min_size = max(self.min_cluster_size, math.ceil(n * self.threshold * 0.1))

        patterns = []
        for index, (centroid, members) in enumerate(self._cluster(points, k)):
            if len(members) < min_size:
                continue
            distances = [math.dist(points[m], centroid) for m in members]
            spread = statistics.fmean(distances)
            cohesion = 1.0 / (1.0 + spread)
            patterns.append(SpatialPattern(
                id=f"cluster_{index}",
                geometry="cluster",
                coordinates=[centroid],
                density=len(members) / n,
                distribution="clustered",
                scale=spread,
                confidence=cohesion,
                stability=cohesion,
                significance=cohesion,
                frequency=len(members),
                evidence=[sources[m] for m in members],
            ))
        return deduplicate_patterns(patterns)

    def _cluster(self, points: List[List[float]], k: int) -> List[Tuple[List[float], List[int]]]:
        """Lloyd iterations; returns (centroid, member indices) for non-empty clusters."""
        centroids = [list(points[0])]
        while len(centroids) < k:
            farthest = max(points, key=lambda p: min(math.dist(p, c) for c in centroids))
            if min(math.dist(farthest, c) for c in centroids) == 0:
                break
            centroids.append(list(farthest))

        members: List[List[int]] = []
        for _ in range(self.max_iterations):
            members = [[] for _ in centroids]
            for i, point in enumerate(points):
                nearest = min(range(len(centroids)), key=lambda c: math.dist(point, centroids[c]))
                members[nearest].append(i)

            previous = [list(c) for c in centroids]
            for c, indices in enumerate(members):
                if indices:
                    centroids[c] = [
                        statistics.fmean(points[i][d] for i in indices)
                        for d in range(len(points[0]))
                    ]
            if all(math.dist(a, b) < self.tolerance for a, b in zip(centroids, previous)):
                break

        return [(c, m) for c, m in zip(centroids, members) if m]


class CooccurrenceSemanticAnalyzer:
    """
    Semantic analyzer: pairs of terms whose presence across texts is
    strongly correlated (Pearson correlation of the presence vectors at
    least `threshold`) form a two-concept pattern. Terms must appear in at
    least `min_support` texts.
    """

    _TOKEN = re.compile(r"[a-z0-9]+")

    def __init__(self, threshold: float = 0.7, min_support: int = 2, min_term_length: int = 3):
        self.threshold = threshold
        self.min_support = min_support
        self.min_term_length = min_term_length

    async def detect_semantic_patterns(self, texts: List[str]) -> List[SemanticPattern]:
        documents = [self._terms(t) for t in texts]
        support: Dict[str, int] = defaultdict(int)
        for terms in documents:
            for term in terms:
                support[term] += 1
        vocabulary = sorted(t for t, count in support.items() if count >= self.min_support)
        presence = {t: [1.0 if t in terms else 0.0 for terms in documents] for t in vocabulary}

        patterns = []
        for i, first in enumerate(vocabulary):
            for second in vocabulary[i + 1:]:
                together = [
                    text for text, terms in zip(texts, documents)
                    if first in terms and second in terms
                ]
                if len(together) < self.min_support:
                    continue
                correlation = _correlation(presence[first], presence[second])
                if correlation < self.threshold:
                    continue
                strength = min(1.0, correlation)
                patterns.append(SemanticPattern(
                    id=f"semantic_{first}_{second}",
                    concepts=[first, second],
                    relationships=[{
                        "source": first,
                        "target": second,
                        "type": "co_occurs",
                        "correlation": strength,
                    }],
                    coherence=strength,
                    confidence=strength,
                    significance=len(together) / len(texts),
                    frequency=len(together),
                    evidence=together,
                ))

        # Equal correlations tie on id
        patterns.sort(key=lambda p: (-round(p.confidence, 9), p.id))
        return deduplicate_patterns(patterns)

    def _terms(self, text: str) -> set:
        return {
            token for token in self._TOKEN.findall(str(text).lower())
            if len(token) >= self.min_term_length
        }


def deduplicate_patterns(patterns: List[AnalyzerPattern], threshold: float = 0.8) -> List[AnalyzerPattern]:
    """
    Keep the first of each group of near-duplicates, so callers order their
    candidates best first. Two patterns are near-duplicates when they share a
    type and the mean of their confidence similarity and evidence containment
    exceeds `threshold`.
    """
    unique: List[AnalyzerPattern] = []
    for pattern in patterns:
        if not any(_pattern_similarity(pattern, kept) > threshold for kept in unique):
            unique.append(pattern)
    return unique


def _pattern_similarity(first: AnalyzerPattern, second: AnalyzerPattern) -> float:
    if type(first) is not type(second):
        return 0.0
    confidence = 1.0 - abs((first.confidence or 0.0) - (second.confidence or 0.0))
    return (confidence + _evidence_containment(first.evidence, second.evidence)) / 2


def _evidence_containment(first: List[Any], second: List[Any]) -> float:
    """Share of the smaller evidence set found in the larger one."""
    a = {canonical_json(r) for r in first}
    b = {canonical_json(r) for r in second}
    if not a or not b:
        return 0.0
    return len(a & b) / min(len(a), len(b))


def _correlation(x: List[float], y: List[float]) -> float:
    try:
        return statistics.correlation(x, y)
    except statistics.StatisticsError:
        # Constant input has no defined correlation
        return 0.0


def _as_epoch(value: Any) -> Optional[float]:
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value).timestamp()
        except ValueError:
            return None
    return None


def _coordinates_of(record: Any) -> Optional[List[float]]:
    """Numeric coordinates from `coordinates`, or from a list or mapping `location`."""
    row = as_record(record)
    raw = row.get("coordinates") or row.get("location")
    if isinstance(raw, dict):
        raw = [raw[key] for key in sorted(raw)]
    if not isinstance(raw, (list, tuple)):
        return None
    point = [
        float(v) for v in raw
        if not isinstance(v, bool) and isinstance(v, (int, float)) and math.isfinite(v)
    ]
    return point or None
