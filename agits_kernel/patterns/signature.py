"""
Signature scoring — fingerprints, similarity and heuristic signature features.

A fingerprint is one fixed-width digest chunk per top-level field, in key
order. Objects that agree on most fields share most chunks and compare as
similar under the positional match. A single differing field only changes
its own chunk.
"""

import hashlib
import json
import math
import statistics
from typing import Any, Dict

from pydantic import BaseModel

from agits_kernel.models.pattern import ConfidenceLevel, PatternComplexity

_COMPLEXITY_ADJUSTMENT = {
    PatternComplexity.SIMPLE: 1.0,
    PatternComplexity.MODERATE: 0.9,
    PatternComplexity.COMPLEX: 0.8,
    PatternComplexity.HIGHLY_COMPLEX: 0.7,
}
_DEFAULT_COMPLEXITY_ADJUSTMENT = 0.8


def as_record(obj: Any) -> Dict[str, Any]:
    """Normalize an analyzer pattern or input record to a plain dict."""
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, dict):
        return obj
    if hasattr(obj, "__dict__"):
        return {k: v for k, v in vars(obj).items() if not k.startswith("_")}
    return {"value": obj}


def canonical_json(obj: Any) -> str:
    if isinstance(obj, BaseModel):
        obj = obj.model_dump(mode="json")
    return json.dumps(obj, sort_keys=True, default=str, separators=(",", ":"))


def field_digests(obj: Any, chunk: int = 4) -> Dict[str, str]:
    """Digest of each top-level field, keyed by field name."""
    record = as_record(obj)
    digests = {}
    for key, value in record.items():
        encoded = canonical_json({str(key): value}).encode("utf-8")
        digests[str(key)] = hashlib.sha256(encoded).hexdigest()[:chunk]
    return digests


def create_fingerprint(obj: Any, chunk: int = 4) -> str:
    """Deterministic, comparable digest of an object."""
    digests = field_digests(obj, chunk)
    return "".join(digests[key] for key in sorted(digests))


def fingerprint_similarity(first: str, second: str) -> float:
    """Fraction of equal characters at equal positions over the longer string."""
    if not first or not second:
        return 0.0
    longest = max(len(first), len(second))
    matches = sum(1 for a, b in zip(first, second) if a == b)
    return matches / longest


def field_agreement(candidate: Dict[str, str], exemplar: Dict[str, str]) -> float:
    """Share of the candidate's fields that carry the exemplar's value."""
    if not candidate:
        return 0.0
    agreeing = sum(1 for key, digest in candidate.items() if exemplar.get(key) == digest)
    return agreeing / len(candidate)


def complexity_adjustment(complexity: Any) -> float:
    return _COMPLEXITY_ADJUSTMENT.get(complexity, _DEFAULT_COMPLEXITY_ADJUSTMENT)


def confidence_level_for(confidence: float) -> ConfidenceLevel:
    if confidence < 0.2:
        return ConfidenceLevel.VERY_LOW
    if confidence < 0.4:
        return ConfidenceLevel.LOW
    if confidence < 0.6:
        return ConfidenceLevel.MEDIUM
    if confidence < 0.8:
        return ConfidenceLevel.HIGH
    return ConfidenceLevel.VERY_HIGH


def count_dimensions(obj: Any) -> int:
    return len(as_record(obj))


def _count_leaves(value: Any) -> int:
    if isinstance(value, dict):
        return sum(_count_leaves(v) for v in value.values())
    if isinstance(value, (list, tuple, set)):
        return sum(_count_leaves(v) for v in value)
    return 1


class HeuristicSignatureScorer:
    """
    Default signature scorer. Pure functions of the source object, so identical
    analyzer output always yields an identical signature.
    """

    def __init__(
        self,
        simple_max_leaves: int = 4,
        moderate_max_leaves: int = 8,
        complex_max_leaves: int = 16,
    ):
        self.simple_max_leaves = simple_max_leaves
        self.moderate_max_leaves = moderate_max_leaves
        self.complex_max_leaves = complex_max_leaves

    def extract_features(self, source: Dict[str, Any]) -> Dict[str, float]:
        """Top-level numeric attributes, booleans as 0/1."""
        features: Dict[str, float] = {}
        for name, value in source.items():
            if isinstance(value, bool):
                features[name] = 1.0 if value else 0.0
            elif isinstance(value, (int, float)) and math.isfinite(value):
                features[name] = float(value)
        return features

    def assess_complexity(self, source: Dict[str, Any]) -> PatternComplexity:
        leaves = _count_leaves(source)
        if leaves <= self.simple_max_leaves:
            return PatternComplexity.SIMPLE
        if leaves <= self.moderate_max_leaves:
            return PatternComplexity.MODERATE
        if leaves <= self.complex_max_leaves:
            return PatternComplexity.COMPLEX
        return PatternComplexity.HIGHLY_COMPLEX

    def variability(self, source: Dict[str, Any]) -> float:
        """Coefficient of variation of the numeric features, squashed into [0, 1)."""
        values = list(self.extract_features(source).values())
        if len(values) < 2:
            return 0.0
        spread = statistics.pstdev(values)
        mean = abs(statistics.fmean(values))
        if mean == 0:
            return 0.0 if spread == 0 else 1.0
        cv = spread / mean
        return cv / (1.0 + cv)
