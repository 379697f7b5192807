"""Configuration for the Pattern Recognition Engine and the Reinforcement Learning Agent."""

from pydantic import BaseModel, Field


class PatternEngineConfig(BaseModel):
    """Configuration for the Pattern Recognition Engine."""

    min_confidence: float = Field(ge=0, le=1, default=0.3)
    default_confidence: float = Field(ge=0, le=1, default=0.8)
    default_stability: float = Field(ge=0, le=1, default=0.8)
    default_significance: float = 0.1
    new_instance_confidence: float = Field(ge=0, le=1, default=0.8)
    instance_match_threshold: float = Field(ge=0, le=1, default=0.8)
    ground_truth_similarity: float = Field(ge=0, le=1, default=0.8)
    fingerprint_chunk: int = Field(ge=1, le=64, default=4)  # Hex digits per field
    search_cache_size: int = Field(ge=1, default=256)
    pattern_index_size: int = Field(ge=1, default=10_000)
    similar_patterns_limit: int = 10
    stability_saturation: int = Field(ge=1, default=10)  # Instances needed for stability 1.0


class AgentConfig(BaseModel):
    """Configuration for the Reinforcement Learning Agent."""

    learning_rate: float = Field(ge=0, le=1, default=0.001)
    exploration_rate: float = Field(ge=0, le=1, default=0.1)
    discount_factor: float = Field(ge=0, le=1, default=0.99)
    experience_buffer_size: int = Field(ge=1, default=10_000)
    replay_batch_size: int = Field(ge=1, default=64)
    exploration_decay: float = Field(gt=0, le=1, default=0.995)
    min_exploration_rate: float = Field(ge=0, le=1, default=0.01)
    performance_trend_size: int = Field(ge=1, default=100)
    convergence_window: int = Field(ge=2, default=10)
