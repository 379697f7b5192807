"""AGITS Kernel data models."""

from agits_kernel.models.analysis import (
    AnalyzerPattern,
    AnomalyPattern,
    BehavioralPattern,
    SemanticPattern,
    SpatialPattern,
    TemporalPattern,
)
from agits_kernel.models.config import AgentConfig, PatternEngineConfig
from agits_kernel.models.pattern import (
    ConfidenceLevel,
    DetectedPattern,
    PatternComplexity,
    PatternInstance,
    PatternLocation,
    PatternRelationship,
    PatternSearch,
    PatternSignature,
    PatternType,
    RecognitionMetrics,
    RelationshipType,
    SearchOrdering,
)
from agits_kernel.models.reinforcement import (
    Action,
    ActionType,
    Episode,
    Experience,
    ExplorationMethod,
    LearningMetrics,
    LearningStrategy,
    Policy,
    QValue,
    State,
    ValueUpdate,
)

__all__ = [
    "Action",
    "ActionType",
    "AgentConfig",
    "AnalyzerPattern",
    "AnomalyPattern",
    "BehavioralPattern",
    "ConfidenceLevel",
    "DetectedPattern",
    "Episode",
    "Experience",
    "ExplorationMethod",
    "LearningMetrics",
    "LearningStrategy",
    "PatternComplexity",
    "PatternEngineConfig",
    "PatternInstance",
    "PatternLocation",
    "PatternRelationship",
    "PatternSearch",
    "PatternSignature",
    "PatternType",
    "Policy",
    "QValue",
    "RecognitionMetrics",
    "RelationshipType",
    "SearchOrdering",
    "SemanticPattern",
    "SpatialPattern",
    "State",
    "TemporalPattern",
    "ValueUpdate",
]
