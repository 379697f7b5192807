"""
Reinforcement Learning Agent — Q-learning over pluggable collaborators.

The agent owns the learning loop; the environment, value function,
exploration strategy and replay store are injected:

- act():     environment → Q-values → exploration strategy picks an action
- learn():   one experience, online update Q ← Q + α(target − Q)
- train():   a batch of episodes, targets submitted as one batch update
- retrain(): replays a sample from the replay store through learn()

Failures in learn/act/train propagate: a broken update must be visible to
the caller. The is_training flag is advisory only and never blocks a second
train() call; exclusivity belongs to whoever schedules training.
"""

import statistics
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, List, Optional, Sequence

from agits_kernel.core.events import EventEmitter
from agits_kernel.core.logging import get_logger
from agits_kernel.models.config import AgentConfig
from agits_kernel.models.reinforcement import (
    Action,
    Episode,
    Experience,
    LearningMetrics,
    LearningStrategy,
    Policy,
    QValue,
    State,
    ValueUpdate,
)
from agits_kernel.reinforcement.contracts import (
    Environment,
    ExperienceReplay,
    ExplorationStrategy,
    ValueFunction,
)

_logger = get_logger("reinforcement.agent")

EXPERIENCE_LEARNED = "experience_learned"
TRAINING_COMPLETED = "training_completed"
POLICY_UPDATED = "policy_updated"
STRATEGY_CHANGED = "strategy_changed"


class NoValidActionsError(Exception):
    """Raised when the environment offers no valid action for a state."""
    pass


def _clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, value))


class ReinforcementLearningAgent(EventEmitter):
    """
    Selects actions under an explicit exploration policy, learns a value
    function from experience and tracks convergence.
    """

    def __init__(
        self,
        environment: Environment,
        value_function: ValueFunction,
        exploration_strategy: ExplorationStrategy,
        experience_replay: ExperienceReplay,
        config: Optional[AgentConfig] = None,
    ):
        super().__init__()
        self.environment = environment
        self.value_function = value_function
        self.exploration_strategy = exploration_strategy
        self.experience_replay = experience_replay
        self.config = config or AgentConfig()

        self._learning_rate = self.config.learning_rate
        self._exploration_rate = self.config.exploration_rate
        self._discount_factor = self.config.discount_factor

        self._current_state: Optional[State] = None
        self._experiences: Deque[Experience] = deque(
            maxlen=self.config.experience_buffer_size
        )
        self._episodes: List[Episode] = []
        self._trend: Deque[float] = deque(maxlen=self.config.performance_trend_size)
        self._is_training = False

        now = datetime.now(timezone.utc)
        self._policy = Policy(
            id="default",
            name="Default Q-Learning Policy",
            strategy=LearningStrategy.Q_LEARNING,
            parameters=self._policy_parameters(),
            performance=0.0,
            created_at=now,
            updated_at=now,
        )
        self._metrics = LearningMetrics(
            exploration_rate=self._exploration_rate,
            learning_rate=self._learning_rate,
        )

    # --- Properties ---

    @property
    def learning_rate(self) -> float:
        return self._learning_rate

    @property
    def exploration_rate(self) -> float:
        return self._exploration_rate

    @property
    def discount_factor(self) -> float:
        return self._discount_factor

    @property
    def current_state(self) -> Optional[State]:
        return self._current_state

    @property
    def is_training(self) -> bool:
        """Advisory: True while a train() call is in flight."""
        return self._is_training

    @property
    def episodes(self) -> List[Episode]:
        return list(self._episodes)

    # --- Acting ---

    async def act(self, state: State) -> Action:
        """Select an action for `state` via the exploration strategy."""
        self._current_state = state
        try:
            actions = await self.environment.get_valid_actions(state)
            if not actions:
                raise NoValidActionsError(
                    f"No valid actions available for state {state.id}"
                )

            now = datetime.now(timezone.utc)
            q_values = []
            for action in actions:
                value = await self.value_function.get_q_value(state, action)
                q_values.append(QValue(
                    state_id=state.id,
                    action_id=action.id,
                    value=value,
                    visits=1,
                    last_updated=now,
                ))

            selected = await self.exploration_strategy.select_action(
                state, actions, q_values
            )
        except Exception as e:
            _logger.error("agent.act_failed", state_id=state.id, error=str(e))
            raise

        _logger.debug(
            "agent.action_selected",
            state_id=state.id,
            action_type=selected.type.value,
            exploration_rate=self._exploration_rate,
        )
        return selected

    async def evaluate(self, state: State, action: Action) -> float:
        """Current Q-value estimate of a state-action pair."""
        return await self.value_function.get_q_value(state, action)

    async def perceive_state(self) -> State:
        """Read the environment's current state and adopt it."""
        state = await self.environment.get_current_state()
        self._current_state = state
        return state

    def update_state(self, state: State) -> None:
        self._current_state = state

    # --- Learning ---

    async def learn(self, experience: Experience) -> None:
        """Learn online from a single experience."""
        try:
            await self.add_experience(experience)

            current = await self.value_function.get_q_value(
                experience.state, experience.action
            )
            target = await self.compute_target(experience)
            updated = current + self._learning_rate * (target - current)
            await self.value_function.update_q_value(
                experience.state, experience.action, updated
            )
        except Exception as e:
            _logger.error("agent.learn_failed", experience_id=experience.id, error=str(e))
            raise

        self.emit(EXPERIENCE_LEARNED, experience)
        _logger.debug(
            "agent.learned",
            state_id=experience.state.id,
            action_type=experience.action.type.value,
            reward=experience.reward,
            q_value=updated,
        )

    async def compute_target(self, experience: Experience) -> float:
        """
        Q-learning target: the reward for terminal transitions, otherwise
        reward + γ · max_a' Q(s', a'). A next state with no valid actions
        contributes 0.
        """
        if experience.done:
            return experience.reward

        next_actions = await self.environment.get_valid_actions(experience.next_state)
        if not next_actions:
            return experience.reward

        best_next = max([
            await self.value_function.get_q_value(experience.next_state, action)
            for action in next_actions
        ])
        return experience.reward + self._discount_factor * best_next

    async def add_experience(self, experience: Experience) -> None:
        """Append to the bounded buffer (oldest evicted) and mirror to replay."""
        self._experiences.append(experience)
        await self.experience_replay.store(experience)

    def get_experiences(self, **filters: Any) -> List[Experience]:
        """Buffered experiences, optionally filtered by attribute equality."""
        if not filters:
            return list(self._experiences)
        return [
            e for e in self._experiences
            if all(getattr(e, key, None) == value for key, value in filters.items())
        ]

    # --- Training ---

    async def train(self, episodes: Sequence[Episode]) -> LearningMetrics:
        """
        Batch-train from episodes. Targets for every experience are submitted
        as a single value-function update, then metrics are refreshed and the
        exploration rate decays.
        """
        self._is_training = True
        episodes = list(episodes)
        try:
            _logger.info("agent.training_started", episodes=len(episodes))

            updates = [
                ValueUpdate(
                    state=experience.state,
                    action=experience.action,
                    value=await self.compute_target(experience),
                )
                for episode in episodes
                for experience in episode.experiences
            ]
            await self.value_function.batch_update(updates)

            self._episodes.extend(episodes)
            self._update_metrics(episodes)
            self._decay_exploration_rate()
        except Exception as e:
            _logger.error("agent.training_failed", error=str(e))
            raise
        finally:
            self._is_training = False

        _logger.info(
            "agent.training_completed",
            episodes=len(episodes),
            updates=len(updates),
            average_reward=self._metrics.average_reward,
            exploration_rate=self._exploration_rate,
        )
        metrics = self.get_metrics()
        self.emit(TRAINING_COMPLETED, metrics)
        return metrics

    async def retrain(self) -> int:
        """Replay a sample from the replay store through learn()."""
        experiences = await self.experience_replay.sample(self.config.replay_batch_size)
        for experience in experiences:
            await self.learn(experience)
        _logger.info("agent.retrained", experiences=len(experiences))
        return len(experiences)

    def _update_metrics(self, episodes: List[Episode]) -> None:
        metrics = self._metrics
        if episodes:
            total_reward = sum(ep.total_reward for ep in episodes)
            previous_total = metrics.total_episodes
            metrics.total_episodes += len(episodes)
            # Running mean weighted by episode count
            metrics.average_reward = (
                metrics.average_reward * previous_total + total_reward
            ) / metrics.total_episodes
            metrics.last_episode_reward = episodes[-1].total_reward

            self._trend.append(total_reward / len(episodes))
            metrics.performance_trend = list(self._trend)

            window = self.config.convergence_window
            if len(self._trend) >= window:
                recent = list(self._trend)[-window:]
                metrics.convergence_score = max(0.0, 1.0 - statistics.pvariance(recent))

        self._policy.performance = metrics.average_reward

    def _decay_exploration_rate(self) -> None:
        self._exploration_rate = max(
            self.config.min_exploration_rate,
            self._exploration_rate * self.config.exploration_decay,
        )
        self._policy.parameters["exploration_rate"] = self._exploration_rate
        self._metrics.exploration_rate = self._exploration_rate
        self._metrics.learning_rate = self._learning_rate
        self.exploration_strategy.update_exploration_rate(self._metrics.total_episodes)

    # --- Policy ---

    def _policy_parameters(self) -> dict:
        return {
            "learning_rate": self._learning_rate,
            "discount_factor": self._discount_factor,
            "exploration_rate": self._exploration_rate,
        }

    async def update_policy(self, policy: Policy) -> None:
        """
        Replace the active policy. Rates present in its parameters are adopted
        (learning and exploration rates clamped to [0, 1]); missing ones keep
        their current values.
        """
        params = policy.parameters
        learning_rate = _clamp_unit(params.get("learning_rate", self._learning_rate))
        exploration_rate = _clamp_unit(
            params.get("exploration_rate", self._exploration_rate)
        )
        discount_factor = params.get("discount_factor", self._discount_factor)

        replacement = policy.model_copy(deep=True)
        replacement.updated_at = datetime.now(timezone.utc)

        # Swap everything together so callers never observe a half-applied policy
        self._learning_rate = learning_rate
        self._exploration_rate = exploration_rate
        self._discount_factor = discount_factor
        replacement.parameters.update(self._policy_parameters())
        self._policy = replacement
        self._metrics.learning_rate = learning_rate
        self._metrics.exploration_rate = exploration_rate

        _logger.info(
            "agent.policy_updated",
            policy_id=replacement.id,
            strategy=replacement.strategy.value,
        )
        self.emit(POLICY_UPDATED, self.get_current_policy())

    def get_current_policy(self) -> Policy:
        return self._policy.model_copy(deep=True)

    def get_performance(self) -> float:
        return self._policy.performance

    def get_metrics(self) -> LearningMetrics:
        return self._metrics.model_copy(deep=True)

    def set_learning_rate(self, rate: float) -> None:
        self._learning_rate = _clamp_unit(rate)
        self._policy.parameters["learning_rate"] = self._learning_rate
        self._metrics.learning_rate = self._learning_rate

    def set_exploration_rate(self, rate: float) -> None:
        self._exploration_rate = _clamp_unit(rate)
        self._policy.parameters["exploration_rate"] = self._exploration_rate
        self._metrics.exploration_rate = self._exploration_rate

    def set_strategy(self, strategy: LearningStrategy) -> None:
        self._policy.strategy = strategy
        _logger.info("agent.strategy_changed", strategy=strategy.value)
        self.emit(STRATEGY_CHANGED, strategy)
