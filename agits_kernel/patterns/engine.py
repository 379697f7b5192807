"""
Pattern Recognition Engine — multi-strategy detection, ranking and search.

Detection fans a batch out to five pluggable analyzers (temporal, spatial,
behavioral, semantic, anomaly), fuses whatever succeeds into one ranked set
of DetectedPatterns, discovers relationships among them and persists both.

Error policy:
- detect_patterns tolerates individual analyzer failures, but raises if
  relationship discovery or persistence fails (no rollback).
- recognize_pattern, validate_pattern, refine_pattern and search_patterns
  are advisory: they log and return a safe default instead of raising.
"""

import asyncio
import hashlib
import math
import time
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

import psutil

from agits_kernel.core.events import EventEmitter
from agits_kernel.core.logging import get_logger
from agits_kernel.models.config import PatternEngineConfig
from agits_kernel.models.pattern import (
    DetectedPattern,
    PatternInstance,
    PatternLocation,
    PatternSearch,
    PatternSignature,
    PatternType,
    RecognitionMetrics,
    SearchOrdering,
)
from agits_kernel.patterns.contracts import (
    AnomalyDetector,
    BehavioralPatternAnalyzer,
    PatternRepository,
    RelationshipAnalyzer,
    SemanticPatternAnalyzer,
    SignatureScorer,
    SpatialPatternAnalyzer,
    TemporalPatternAnalyzer,
)
from agits_kernel.patterns.signature import (
    HeuristicSignatureScorer,
    as_record,
    canonical_json,
    complexity_adjustment,
    confidence_level_for,
    count_dimensions,
    create_fingerprint,
    field_agreement,
    field_digests,
    fingerprint_similarity,
)

_logger = get_logger("patterns.engine")

PATTERNS_DETECTED = "patterns_detected"

_SORT_KEYS: Dict[SearchOrdering, Callable[[DetectedPattern], Any]] = {
    SearchOrdering.CONFIDENCE: lambda p: p.confidence,
    SearchOrdering.FREQUENCY: lambda p: p.frequency,
    SearchOrdering.RECENCY: lambda p: p.last_seen,
    SearchOrdering.SIGNIFICANCE: lambda p: p.significance,
}

_MISSING = object()


def _field(record: Any, name: str) -> Any:
    """Read a field from a dict record or an attribute-bearing object."""
    if isinstance(record, dict):
        return record.get(name)
    return getattr(record, name, None)


def composite_score(pattern: DetectedPattern) -> float:
    """Ranking score: 0.4·confidence + 0.3·significance + 0.2·stability + 0.1·frequency."""
    return (
        pattern.confidence * 0.4
        + pattern.significance * 0.3
        + pattern.stability * 0.2
        + pattern.frequency * 0.1
    )


class PatternRecognitionEngine(EventEmitter):
    """
    Turns batches of heterogeneous records into ranked, validated patterns and
    answers recognition, refinement and similarity queries over them.

    State kept between calls: the pattern index, the search cache and the
    metrics snapshot. Concurrent detect_patterns calls are last-writer-wins on
    all three; callers needing consistency must serialize externally.
    """

    def __init__(
        self,
        temporal_analyzer: TemporalPatternAnalyzer,
        spatial_analyzer: SpatialPatternAnalyzer,
        behavioral_analyzer: BehavioralPatternAnalyzer,
        semantic_analyzer: SemanticPatternAnalyzer,
        anomaly_detector: AnomalyDetector,
        relationship_analyzer: RelationshipAnalyzer,
        repository: PatternRepository,
        scorer: Optional[SignatureScorer] = None,
        config: Optional[PatternEngineConfig] = None,
    ):
        super().__init__()
        self.temporal_analyzer = temporal_analyzer
        self.spatial_analyzer = spatial_analyzer
        self.behavioral_analyzer = behavioral_analyzer
        self.semantic_analyzer = semantic_analyzer
        self.anomaly_detector = anomaly_detector
        self.relationship_analyzer = relationship_analyzer
        self.repository = repository
        self.scorer = scorer or HeuristicSignatureScorer()
        self.config = config or PatternEngineConfig()

        self._patterns: "OrderedDict[str, DetectedPattern]" = OrderedDict()
        self._search_cache: "OrderedDict[str, List[DetectedPattern]]" = OrderedDict()
        self._metrics = RecognitionMetrics()
        self._process = psutil.Process()

    # --- Detection ---

    async def detect_patterns(self, data: Sequence[Any]) -> List[DetectedPattern]:
        """
        Detect patterns in a batch using all five analyzers concurrently.
        Returns the fused set ranked by composite score.
        """
        start_time = time.monotonic()
        records = list(data)
        _logger.info("detection.started", data_points=len(records))

        branches: List[Tuple[PatternType, Awaitable[List[Any]]]] = [
            (PatternType.TEMPORAL, self._analyze_temporal(records)),
            (PatternType.SPATIAL, self._analyze_spatial(records)),
            (PatternType.BEHAVIORAL, self._analyze_behavioral(records)),
            (PatternType.SEMANTIC, self._analyze_semantic(records)),
            (PatternType.ANOMALY, self._detect_anomalies(records)),
        ]
        # Settle all branches; a failing analyzer never cancels its siblings
        outcomes = await asyncio.gather(
            *(coro for _, coro in branches), return_exceptions=True
        )

        fused: List[DetectedPattern] = []
        counts: Dict[str, int] = {}
        for (pattern_type, _), outcome in zip(branches, outcomes):
            converted = self._convert_outcome(pattern_type, outcome)
            counts[pattern_type.value] = len(converted)
            fused.extend(converted)

        ranked = self._filter_and_rank(fused)

        try:
            relationships = await self.relationship_analyzer.discover_relationships(ranked)
            await self._store_patterns(ranked, relationships)
        except Exception as e:
            _logger.error("detection.failed", error=str(e), patterns=len(ranked))
            raise

        elapsed = time.monotonic() - start_time
        self._update_metrics(ranked, elapsed)

        _logger.info(
            "detection.completed",
            patterns=len(ranked),
            relationships=len(relationships),
            processing_time=round(elapsed, 3),
            **counts,
        )
        self.emit(PATTERNS_DETECTED, ranked)
        return ranked

    async def _detect_anomalies(self, records: List[Any]) -> List[Any]:
        return await self.anomaly_detector.detect_anomalies(records)

    async def _analyze_temporal(self, records: List[Any]) -> List[Any]:
        series = [r for r in records if _field(r, "timestamp")]
        if not series:
            return []
        return await self.temporal_analyzer.detect_temporal_patterns(series)

    async def _analyze_spatial(self, records: List[Any]) -> List[Any]:
        spatial = [
            r for r in records
            if _field(r, "coordinates") or _field(r, "location")
        ]
        if not spatial:
            return []
        return await self.spatial_analyzer.detect_spatial_patterns(spatial)

    async def _analyze_behavioral(self, records: List[Any]) -> List[Any]:
        behaviors = [
            r for r in records
            if _field(r, "action") or _field(r, "behavior")
        ]
        if not behaviors:
            return []
        return await self.behavioral_analyzer.detect_behavioral_patterns(behaviors)

    async def _analyze_semantic(self, records: List[Any]) -> List[Any]:
        texts = []
        for r in records:
            if isinstance(r, str):
                texts.append(r)
            elif _field(r, "text") or _field(r, "content"):
                texts.append(str(_field(r, "text") or _field(r, "content")))
        if not texts:
            return []
        return await self.semantic_analyzer.detect_semantic_patterns(texts)

    def _convert_outcome(
        self, pattern_type: PatternType, outcome: Any
    ) -> List[DetectedPattern]:
        """Map one analyzer outcome into DetectedPatterns; failures contribute nothing."""
        if isinstance(outcome, BaseException):
            _logger.warning(
                "detection.analyzer_failed",
                analyzer=pattern_type.value,
                error=str(outcome),
            )
            return []
        try:
            return [self._create_detected_pattern(p, pattern_type) for p in outcome or []]
        except Exception as e:
            _logger.warning(
                "detection.conversion_failed",
                analyzer=pattern_type.value,
                error=str(e),
            )
            return []

    def _create_detected_pattern(
        self, source: Any, pattern_type: PatternType
    ) -> DetectedPattern:
        """Wrap an analyzer-specific pattern in the common shape with a fresh signature."""
        evidence = _field(source, "evidence")
        if not isinstance(evidence, (list, tuple)):
            evidence = []
        record = {k: v for k, v in as_record(source).items() if k != "evidence"}
        pattern_id = str(record.get("id") or f"pat_{uuid4().hex[:12]}")
        now = datetime.now(timezone.utc)

        signature = PatternSignature(
            id=pattern_id,
            type=pattern_type,
            features=self.scorer.extract_features(record),
            fingerprint=create_fingerprint(record, self.config.fingerprint_chunk),
            complexity=self.scorer.assess_complexity(record),
            dimensions=count_dimensions(record),
            variability=min(1.0, max(0.0, self.scorer.variability(record))),
        )

        confidence = self._unit_hint(record, "confidence", self.config.default_confidence)
        frequency = self._number_hint(record, "frequency", 1)
        if frequency <= 0:
            frequency = 1

        return DetectedPattern(
            id=pattern_id,
            signature=signature,
            instances=[
                self._make_instance(
                    item, pattern_id, confidence, now,
                    PatternLocation(
                        source=f"detection:{pattern_type.value}",
                        start_index=index,
                        end_index=index,
                    ),
                )
                for index, item in enumerate(evidence)
            ],
            confidence=confidence,
            confidence_level=confidence_level_for(confidence),
            support=max(1, int(frequency)),
            frequency=frequency,
            stability=self._unit_hint(record, "stability", self.config.default_stability),
            significance=self._number_hint(
                record, "significance", self.config.default_significance
            ),
            discovered_at=now,
            last_seen=now,
            context={"analyzer": pattern_type.value},
        )

    def _make_instance(
        self,
        data: Any,
        pattern_id: str,
        confidence: float,
        timestamp: datetime,
        location: PatternLocation,
    ) -> PatternInstance:
        return PatternInstance(
            id=f"inst_{uuid4().hex[:12]}",
            pattern_id=pattern_id,
            data=data,
            location=location,
            timestamp=timestamp,
            confidence=confidence,
            features=self.scorer.extract_features(as_record(data)),
        )

    @staticmethod
    def _number_hint(record: Dict[str, Any], name: str, default: float) -> float:
        """A finite numeric hint, or the default."""
        value = record.get(name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return default
        if not math.isfinite(value):
            return default
        return float(value)

    def _unit_hint(self, record: Dict[str, Any], name: str, default: float) -> float:
        value = self._number_hint(record, name, default)
        return value if 0.0 <= value <= 1.0 else default

    def _filter_and_rank(self, patterns: List[DetectedPattern]) -> List[DetectedPattern]:
        """Drop low-confidence patterns, then rank by composite score (stable)."""
        kept = [p for p in patterns if p.confidence > self.config.min_confidence]
        return sorted(kept, key=composite_score, reverse=True)

    async def _store_patterns(self, patterns, relationships) -> None:
        for pattern in patterns:
            await self.repository.store_pattern(pattern)
            self._index_pattern(pattern)
        await self.repository.store_relationships(relationships)
        _logger.debug(
            "detection.stored",
            patterns=len(patterns),
            relationships=len(relationships),
        )

    def _update_metrics(self, patterns: List[DetectedPattern], elapsed: float) -> None:
        """Approximate quality from mean confidence. Not a ground-truth evaluation."""
        mean_confidence = (
            sum(p.confidence for p in patterns) / len(patterns) if patterns else 0.0
        )
        precision = mean_confidence * 0.95
        recall = mean_confidence * 0.90
        self._metrics = RecognitionMetrics(
            precision=precision,
            recall=recall,
            f1_score=_harmonic_mean(precision, recall),
            accuracy=mean_confidence,
            processing_time=elapsed,
            memory_usage=self._process.memory_info().rss,
        )

    # --- Recognition and validation ---

    def recognize_pattern(self, data: Any, signature: PatternSignature) -> float:
        """Score in [0, 1] of how well `data` matches a known signature."""
        try:
            fingerprint = create_fingerprint(data, self.config.fingerprint_chunk)
            similarity = fingerprint_similarity(fingerprint, signature.fingerprint)
            score = similarity * complexity_adjustment(signature.complexity)
            return min(1.0, max(0.0, score))
        except Exception as e:
            _logger.error("recognition.failed", signature_id=signature.id, error=str(e))
            return 0.0

    def validate_pattern(self, pattern: DetectedPattern) -> bool:
        try:
            checks = {
                "has_consistent_instances": len(pattern.instances) >= 2,
                "has_min_confidence": pattern.confidence > 0.5,
                "is_significant": pattern.significance > 0.05,
                "is_stable": pattern.stability > 0.7,
            }
            valid = all(checks.values())
            if valid:
                _logger.debug("validation.passed", pattern_id=pattern.id)
            else:
                _logger.debug("validation.failed", pattern_id=pattern.id, **checks)
            return valid
        except Exception as e:
            _logger.error("validation.error", error=str(e))
            return False

    # --- Refinement ---

    def find_pattern_instances(
        self,
        data: Sequence[Any],
        signature: PatternSignature,
        pattern_id: Optional[str] = None,
        exemplars: Sequence[Any] = (),
    ) -> List[PatternInstance]:
        """
        Records in `data` that reach the match threshold. A record scores the
        better of its signature recognition and its field agreement with the
        closest exemplar (typically the pattern's existing instance data).
        """
        chunk = self.config.fingerprint_chunk
        exemplar_digests = [field_digests(e, chunk) for e in exemplars if e is not None]
        now = datetime.now(timezone.utc)
        instances = []
        for index, record in enumerate(data):
            score = self.recognize_pattern(record, signature)
            if exemplar_digests:
                score = max(score, self._exemplar_score(record, exemplar_digests))
            if score < self.config.instance_match_threshold:
                continue
            instances.append(self._make_instance(
                record,
                pattern_id or signature.id,
                score,
                now,
                PatternLocation(source="refinement", start_index=index, end_index=index),
            ))
        return instances

    def _exemplar_score(self, record: Any, exemplar_digests: List[Dict[str, str]]) -> float:
        try:
            candidate = field_digests(record, self.config.fingerprint_chunk)
            return max(field_agreement(candidate, e) for e in exemplar_digests)
        except Exception as e:
            _logger.error("recognition.exemplar_failed", error=str(e))
            return 0.0

    async def refine_pattern(
        self, pattern: DetectedPattern, new_data: Sequence[Any]
    ) -> DetectedPattern:
        """
        Fold new evidence into a pattern and persist it.
        Best-effort: on any failure the original pattern is returned unmodified.
        """
        try:
            new_instances = self.find_pattern_instances(
                list(new_data),
                pattern.signature,
                pattern.id,
                exemplars=[i.data for i in pattern.instances],
            )
            instances = list(pattern.instances) + new_instances

            confidence = pattern.confidence
            stability = pattern.stability
            if new_instances:
                old_count = len(pattern.instances)
                weighted = (
                    pattern.confidence * old_count
                    + self.config.new_instance_confidence * len(new_instances)
                ) / len(instances)
                confidence = min(1.0, weighted)
                stability = min(1.0, len(instances) / self.config.stability_saturation)

            updated = pattern.model_copy(update={
                "instances": instances,
                "frequency": pattern.frequency + len(new_instances),
                "last_seen": datetime.now(timezone.utc),
                "confidence": confidence,
                "confidence_level": confidence_level_for(confidence),
                "stability": stability,
            })

            await self.repository.update_pattern(pattern.id, updated)
            self._index_pattern(updated)

            _logger.debug(
                "refinement.completed",
                pattern_id=pattern.id,
                new_instances=len(new_instances),
            )
            return updated
        except Exception as e:
            _logger.error("refinement.failed", pattern_id=pattern.id, error=str(e))
            return pattern

    # --- Search ---

    async def search_patterns(self, query: PatternSearch) -> List[DetectedPattern]:
        """
        Similarity search with attribute filters, ordering and a result cap.
        Identical queries are served from the cache (same list object).
        """
        try:
            cache_key = self._search_cache_key(query)
            cached = self._search_cache.get(cache_key)
            if cached is not None:
                self._search_cache.move_to_end(cache_key)
                return cached

            candidates = await self.repository.search_by_signature(
                query.query, query.similarity
            )
            results = [p for p in candidates if self._matches_filters(p, query.filters)]

            if query.ordering is not None:
                results = sorted(results, key=_SORT_KEYS[query.ordering], reverse=True)

            if query.max_results > 0:
                results = results[: query.max_results]

            self._search_cache[cache_key] = results
            while len(self._search_cache) > self.config.search_cache_size:
                self._search_cache.popitem(last=False)

            return results
        except Exception as e:
            _logger.error("search.failed", error=str(e))
            return []

    async def find_similar_patterns(
        self, pattern: DetectedPattern, threshold: float
    ) -> List[DetectedPattern]:
        query = PatternSearch(
            query=pattern.signature,
            similarity=threshold,
            filters={"type": pattern.signature.type},
            max_results=self.config.similar_patterns_limit,
            ordering=SearchOrdering.CONFIDENCE,
        )
        return await self.search_patterns(query)

    def clear_search_cache(self) -> None:
        self._search_cache.clear()

    @staticmethod
    def _search_cache_key(query: PatternSearch) -> str:
        return hashlib.sha256(canonical_json(query).encode("utf-8")).hexdigest()

    @staticmethod
    def _matches_filters(pattern: DetectedPattern, filters: Dict[str, Any]) -> bool:
        """Every filter must equal the pattern's attribute (or its signature's)."""
        for key, expected in filters.items():
            if key in DetectedPattern.model_fields:
                actual = getattr(pattern, key)
            elif key in PatternSignature.model_fields:
                actual = getattr(pattern.signature, key)
            else:
                actual = _MISSING
            if actual is _MISSING or actual != expected:
                return False
        return True

    # --- Index and metrics ---

    def _index_pattern(self, pattern: DetectedPattern) -> None:
        """Insert or refresh a pattern; the least recently touched is evicted first."""
        self._patterns[pattern.id] = pattern
        self._patterns.move_to_end(pattern.id)
        while len(self._patterns) > self.config.pattern_index_size:
            self._patterns.popitem(last=False)

    def get_pattern(self, pattern_id: str) -> Optional[DetectedPattern]:
        return self._patterns.get(pattern_id)

    def get_detected_patterns(self) -> List[DetectedPattern]:
        return list(self._patterns.values())

    def get_recognition_metrics(self) -> RecognitionMetrics:
        return self._metrics.model_copy()

    async def evaluate_accuracy(
        self,
        test_data: Sequence[Any],
        ground_truth: Sequence[DetectedPattern],
    ) -> RecognitionMetrics:
        """Run detection on test data and score it against known patterns."""
        detected = await self.detect_patterns(test_data)
        truth = list(ground_truth)

        matched = [
            p for p in detected
            if any(self._patterns_match(p, gt) for gt in truth)
        ]
        true_positives = len(matched)
        false_positives = len(detected) - true_positives
        false_negatives = max(0, len(truth) - true_positives)

        precision = _ratio(true_positives, true_positives + false_positives)
        recall = _ratio(true_positives, true_positives + false_negatives)

        return RecognitionMetrics(
            precision=precision,
            recall=recall,
            f1_score=_harmonic_mean(precision, recall),
            accuracy=min(1.0, _ratio(true_positives, len(truth))),
            coverage=recall,
            novelty=_ratio(len(detected) - true_positives, len(detected)),
            processing_time=self._metrics.processing_time,
            memory_usage=self._metrics.memory_usage,
            false_positive_rate=_ratio(false_positives, false_positives + true_positives),
            false_negative_rate=_ratio(false_negatives, false_negatives + true_positives),
        )

    def _patterns_match(self, first: DetectedPattern, second: DetectedPattern) -> bool:
        return (
            first.signature.type == second.signature.type
            and fingerprint_similarity(
                first.signature.fingerprint, second.signature.fingerprint
            ) > self.config.ground_truth_similarity
        )


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


def _harmonic_mean(precision: float, recall: float) -> float:
    return _ratio(2 * precision * recall, precision + recall)
