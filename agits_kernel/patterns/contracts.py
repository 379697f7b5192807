"""Collaborator contracts for the Pattern Recognition Engine — pluggable backends."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Sequence

from agits_kernel.models.pattern import (
    DetectedPattern,
    PatternComplexity,
    PatternRelationship,
    PatternSignature,
)


class TemporalPatternAnalyzer(Protocol):
    async def detect_temporal_patterns(self, records: List[Any]) -> List[Any]: ...


class SpatialPatternAnalyzer(Protocol):
    async def detect_spatial_patterns(self, records: List[Any]) -> List[Any]: ...


class BehavioralPatternAnalyzer(Protocol):
    async def detect_behavioral_patterns(self, records: List[Any]) -> List[Any]: ...


class SemanticPatternAnalyzer(Protocol):
    async def detect_semantic_patterns(self, texts: List[str]) -> List[Any]: ...


class AnomalyDetector(Protocol):
    async def detect_anomalies(self, records: List[Any]) -> List[Any]: ...


class RelationshipAnalyzer(Protocol):
    async def discover_relationships(
        self, patterns: List[DetectedPattern]
    ) -> List[PatternRelationship]: ...


class PatternRepository(Protocol):
    """
    Persistence for detected patterns and their relationships.

    The engine stores, updates and searches. delete_pattern is for the
    orchestrator: the engine never removes a pattern itself.
    """

    async def store_pattern(self, pattern: DetectedPattern) -> None: ...

    async def update_pattern(self, pattern_id: str, pattern: DetectedPattern) -> None: ...

    async def get_pattern(self, pattern_id: str) -> Optional[DetectedPattern]: ...

    async def delete_pattern(self, pattern_id: str) -> bool: ...

    async def search_by_signature(
        self, signature: PatternSignature, threshold: float
    ) -> List[DetectedPattern]: ...

    async def store_relationships(
        self, relationships: Sequence[PatternRelationship]
    ) -> None: ...


class SignatureScorer(Protocol):
    """Deterministic scoring of an analyzer pattern for its signature."""

    def extract_features(self, source: Dict[str, Any]) -> Dict[str, float]: ...

    def assess_complexity(self, source: Dict[str, Any]) -> PatternComplexity: ...

    def variability(self, source: Dict[str, Any]) -> float: ...
