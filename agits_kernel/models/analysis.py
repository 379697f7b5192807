"""Analyzer Output — modality-specific patterns returned by the pluggable analyzers.

Every record may carry optional confidence/significance/stability/frequency
hints. The engine honours them when fusing, and falls back to its configured
defaults otherwise. An `evidence` list of the source records that produced
the pattern becomes its initial instances.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AnalyzerPattern(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    confidence: Optional[float] = Field(ge=0, le=1, default=None)
    significance: Optional[float] = None
    stability: Optional[float] = Field(ge=0, le=1, default=None)
    # Source records behind the pattern. Not part of the signature.
    evidence: List[Any] = Field(default=[], exclude=True)


class TemporalPattern(AnalyzerPattern):
    sequence: List[Any] = []
    duration: float = 0.0
    periodicity: float = 0.0
    trend: str = "stable"                   # "increasing" | "decreasing" | "stable" | "oscillating"
    seasonality: bool = False
    cycle_length: Optional[float] = None
    amplitude: Optional[float] = None
    phase: Optional[float] = None


class SpatialPattern(AnalyzerPattern):
    geometry: str = "point"                 # "point" | "line" | "polygon" | "cluster" | "grid"
    coordinates: List[List[float]] = []
    density: float = 0.0
    distribution: str = "random"            # "uniform" | "clustered" | "random" | "regular"
    scale: float = 1.0
    orientation: Optional[float] = None


class BehavioralPattern(AnalyzerPattern):
    action_sequence: List[str] = []
    triggers: List[str] = []
    conditions: Dict[str, Any] = {}
    outcomes: Dict[str, Any] = {}
    frequency: float = 0.0
    consistency: float = 0.0
    adaptability: float = 0.0


class SemanticPattern(AnalyzerPattern):
    concepts: List[str] = []
    relationships: List[dict] = []
    domain: str = "general"
    abstraction: float = 0.0
    coherence: float = 0.0


class AnomalyPattern(AnalyzerPattern):
    deviation: float = 0.0
    deviation_type: str = "statistical"     # "statistical" | "contextual" | "collective"
    expected_value: Any = None
    actual_value: Any = None
    severity: str = "low"                   # "low" | "medium" | "high" | "critical"
    explanation: str = ""
