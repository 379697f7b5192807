"""Reinforcement Model — states, actions, experiences, policies and episodes."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field


class ActionType(str, Enum):
    # Knowledge actions
    COLLECT_KNOWLEDGE = "collect_knowledge"
    VALIDATE_KNOWLEDGE = "validate_knowledge"
    CONSOLIDATE_MEMORY = "consolidate_memory"
    PRUNE_CONNECTIONS = "prune_connections"
    # Learning actions
    EXPLORE_DATA = "explore_data"
    EXPLOIT_KNOWLEDGE = "exploit_knowledge"
    UPDATE_MODEL = "update_model"
    ADJUST_PARAMETERS = "adjust_parameters"
    # Decision actions
    MAKE_DECISION = "make_decision"
    PLAN_STRATEGY = "plan_strategy"
    EXECUTE_TASK = "execute_task"
    EVALUATE_OUTCOME = "evaluate_outcome"


class LearningStrategy(str, Enum):
    Q_LEARNING = "q_learning"
    DEEP_Q_LEARNING = "deep_q_learning"
    POLICY_GRADIENT = "policy_gradient"
    ACTOR_CRITIC = "actor_critic"
    TEMPORAL_DIFFERENCE = "temporal_difference"


class ExplorationMethod(str, Enum):
    EPSILON_GREEDY = "epsilon_greedy"
    UCB = "upper_confidence_bound"
    THOMPSON_SAMPLING = "thompson_sampling"
    BOLTZMANN = "boltzmann"


class State(BaseModel):
    """An observation of the environment."""

    id: str
    timestamp: datetime
    features: Dict[str, float] = {}
    context: Dict[str, Any] = {}
    confidence: float = Field(ge=0, le=1, default=1.0)
    priority: int = 0


class Action(BaseModel):
    """Something the agent can do in a state."""

    id: str
    type: ActionType
    parameters: Dict[str, Any] = {}
    expected_reward: float = 0.0
    confidence: float = Field(ge=0, le=1, default=1.0)
    cost: float = 0.0
    priority: int = 0


class Experience(BaseModel):
    """One (s, a, r, s') transition. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str
    state: State
    action: Action
    reward: float
    next_state: State
    done: bool = False
    episode_id: str
    timestamp: datetime


class QValue(BaseModel):
    state_id: str
    action_id: str
    value: float
    visits: int = 1
    last_updated: datetime


class ValueUpdate(BaseModel):
    """A single entry of a value-function batch update."""

    state: State
    action: Action
    value: float


class Policy(BaseModel):
    """The agent's current behaviour descriptor."""

    id: str
    name: str
    strategy: LearningStrategy = LearningStrategy.Q_LEARNING
    parameters: Dict[str, float] = {}       # learning_rate, discount_factor, exploration_rate
    performance: float = 0.0                # Latest average reward
    created_at: datetime
    updated_at: datetime


class Episode(BaseModel):
    """An ordered run of experiences. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    id: str
    experiences: List[Experience]
    total_reward: float
    duration: float = 0.0
    start_state: State
    end_state: State
    successful: bool = False
    timestamp: datetime


class LearningMetrics(BaseModel):
    total_episodes: int = 0
    average_reward: float = 0.0
    exploration_rate: float = 0.0
    learning_rate: float = 0.0
    convergence_score: float = 0.0          # 1 - variance of the recent trend, floored at 0
    performance_trend: List[float] = []     # Bounded ring of per-call average rewards
    last_episode_reward: float = 0.0
