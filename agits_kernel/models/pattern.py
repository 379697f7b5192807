"""Pattern Model — signatures, detected patterns, relationships and search queries."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class PatternType(str, Enum):
    TEMPORAL = "temporal"
    SPATIAL = "spatial"
    BEHAVIORAL = "behavioral"
    SEMANTIC = "semantic"
    ANOMALY = "anomaly"
    # Accepted from external repositories, never produced by the engine
    STRUCTURAL = "structural"
    CAUSAL = "causal"
    TREND = "trend"
    CYCLE = "cycle"
    CORRELATION = "correlation"


class PatternComplexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"
    HIGHLY_COMPLEX = "highly_complex"


class ConfidenceLevel(str, Enum):
    VERY_LOW = "very_low"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


class RelationshipType(str, Enum):
    CONTAINS = "contains"
    PRECEDES = "precedes"
    FOLLOWS = "follows"
    CORRELATES = "correlates"
    CAUSES = "causes"
    SIMILAR = "similar"
    OPPOSITE = "opposite"
    TRANSFORMS = "transforms"


class SearchOrdering(str, Enum):
    CONFIDENCE = "confidence"
    FREQUENCY = "frequency"
    RECENCY = "recency"
    SIGNIFICANCE = "significance"


class PatternSignature(BaseModel):
    """The reusable identity of a pattern class, independent of any occurrence."""

    id: str
    type: PatternType
    features: Dict[str, float] = {}
    fingerprint: str                        # Deterministic digest of the source object
    complexity: PatternComplexity = PatternComplexity.MODERATE
    dimensions: int = Field(ge=0, default=0)
    variability: float = Field(ge=0, le=1, default=0.0)


class PatternLocation(BaseModel):
    """Where a pattern instance was observed."""

    source: str
    coordinates: Optional[List[float]] = None
    dimension: Optional[str] = None
    start_index: Optional[int] = None
    end_index: Optional[int] = None
    depth: Optional[int] = None


class PatternInstance(BaseModel):
    """One concrete occurrence of a pattern in observed data."""

    id: str
    pattern_id: str
    data: Any = None
    location: PatternLocation
    timestamp: datetime
    confidence: float = Field(ge=0, le=1, default=0.0)
    features: Dict[str, float] = {}
    context: dict = {}
    validated: bool = False


class DetectedPattern(BaseModel):
    """
    A materialized pattern: one signature plus the evidence supporting it.

    Created by the engine when fusing analyzer output. Refinement produces an
    updated copy; deletion belongs to the repository.
    """

    id: str
    signature: PatternSignature
    instances: List[PatternInstance] = []
    confidence: float = Field(ge=0, le=1)
    confidence_level: ConfidenceLevel = ConfidenceLevel.MEDIUM
    support: int = Field(ge=0, default=1)
    frequency: float = Field(ge=0, default=1)
    stability: float = Field(ge=0, le=1, default=0.0)
    significance: float = 0.0               # > 0.05 to be meaningful
    discovered_at: datetime
    last_seen: datetime
    context: dict = {}


class PatternRelationship(BaseModel):
    """Association between two detected patterns. Never mutated by the engine."""

    id: str
    source_pattern_id: str
    target_pattern_id: str
    relationship_type: RelationshipType
    strength: float = Field(ge=0, le=1, default=0.0)
    confidence: float = Field(ge=0, le=1, default=0.0)
    temporal: bool = False
    causal: bool = False
    discovered_at: datetime
    validated: bool = False


class RecognitionMetrics(BaseModel):
    """Rolling snapshot of recognition quality. Overwritten every detection cycle."""

    precision: float = 0.0
    recall: float = 0.0
    f1_score: float = 0.0
    accuracy: float = 0.0
    coverage: float = 0.0
    novelty: float = 0.0
    processing_time: float = 0.0            # Seconds
    memory_usage: int = 0                   # Resident set size, bytes
    false_positive_rate: float = 0.0
    false_negative_rate: float = 0.0


class PatternSearch(BaseModel):
    """A similarity query over stored patterns."""

    query: PatternSignature
    similarity: float = Field(ge=0, le=1, default=0.8)
    filters: Dict[str, Any] = {}            # Attribute name → required value
    max_results: int = 0                    # 0 or negative = unlimited
    ordering: Optional[SearchOrdering] = SearchOrdering.CONFIDENCE
