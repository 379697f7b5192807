"""
Baseline RL components — tabular value function, epsilon-greedy exploration
and uniform experience replay.
"""

import random
from collections import deque
from typing import Deque, Dict, List, Optional, Sequence, Tuple

from agits_kernel.models.reinforcement import Action, Experience, QValue, State, ValueUpdate


class TabularValueFunction:
    """Q-table keyed by (state id, action id). Unseen pairs are worth `default_value`."""

    def __init__(self, default_value: float = 0.0):
        self.default_value = default_value
        self._table: Dict[Tuple[str, str], float] = {}

    async def get_q_value(self, state: State, action: Action) -> float:
        return self._table.get((state.id, action.id), self.default_value)

    async def update_q_value(self, state: State, action: Action, value: float) -> None:
        self._table[(state.id, action.id)] = value

    async def batch_update(self, updates: Sequence[ValueUpdate]) -> None:
        for update in updates:
            self._table[(update.state.id, update.action.id)] = update.value

    async def get_state_value(self, state: State) -> float:
        """max_a Q(s, a) over the actions seen for this state."""
        values = [v for (state_id, _), v in self._table.items() if state_id == state.id]
        return max(values) if values else self.default_value

    def __len__(self) -> int:
        return len(self._table)


class EpsilonGreedyStrategy:
    """
    Explores with probability epsilon, otherwise picks the highest Q-value
    (first action wins ties). Epsilon follows
    max(min_epsilon, initial_epsilon * decay ** episode).
    """

    def __init__(
        self,
        initial_epsilon: float = 0.1,
        min_epsilon: float = 0.01,
        decay: float = 0.995,
        seed: Optional[int] = None,
    ):
        self.initial_epsilon = initial_epsilon
        self.min_epsilon = min_epsilon
        self.decay = decay
        self.epsilon = initial_epsilon
        self._rng = random.Random(seed)

    async def select_action(
        self, state: State, actions: List[Action], q_values: List[QValue]
    ) -> Action:
        if not actions:
            raise ValueError(f"No actions to choose from in state {state.id}")
        if self._rng.random() < self.epsilon:
            return self._rng.choice(actions)

        values = {q.action_id: q.value for q in q_values}
        best = actions[0]
        best_value = values.get(best.id, 0.0)
        for action in actions[1:]:
            value = values.get(action.id, 0.0)
            if value > best_value:
                best, best_value = action, value
        return best

    def update_exploration_rate(self, episode: int) -> None:
        self.epsilon = max(self.min_epsilon, self.initial_epsilon * self.decay ** episode)

    def get_exploration_rate(self) -> float:
        return self.epsilon


class UniformExperienceReplay:
    """Bounded replay store; oldest experiences are evicted first."""

    def __init__(self, capacity: int = 10_000, seed: Optional[int] = None):
        self.capacity = capacity
        self._buffer: Deque[Experience] = deque(maxlen=capacity)
        self._rng = random.Random(seed)

    async def store(self, experience: Experience) -> None:
        self._buffer.append(experience)

    async def sample(self, batch_size: int) -> List[Experience]:
        """Uniform sample without replacement of up to `batch_size` experiences."""
        size = min(batch_size, len(self._buffer))
        return self._rng.sample(list(self._buffer), size)

    def __len__(self) -> int:
        return len(self._buffer)
