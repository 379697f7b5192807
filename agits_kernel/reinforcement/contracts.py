"""Collaborator contracts for the Reinforcement Learning Agent — pluggable backends."""

from __future__ import annotations

from typing import List, Protocol, Sequence

from agits_kernel.models.reinforcement import Action, Experience, QValue, State, ValueUpdate


class Environment(Protocol):
    async def get_current_state(self) -> State: ...

    async def get_valid_actions(self, state: State) -> List[Action]: ...


class ValueFunction(Protocol):
    """
    Q-value store. The agent reads and writes Q-values. get_state_value
    serves orchestrators that rank states without choosing an action.
    """

    async def get_q_value(self, state: State, action: Action) -> float: ...

    async def update_q_value(self, state: State, action: Action, value: float) -> None: ...

    async def batch_update(self, updates: Sequence[ValueUpdate]) -> None: ...

    async def get_state_value(self, state: State) -> float: ...


class ExplorationStrategy(Protocol):
    """
    Chooses between exploring and exploiting. Owns its own schedule: the
    agent advances it after each train() call, and get_exploration_rate
    reports it to orchestrators and monitoring.
    """

    async def select_action(
        self, state: State, actions: List[Action], q_values: List[QValue]
    ) -> Action: ...

    def update_exploration_rate(self, episode: int) -> None: ...

    def get_exploration_rate(self) -> float: ...


class ExperienceReplay(Protocol):
    async def store(self, experience: Experience) -> None: ...

    async def sample(self, batch_size: int) -> List[Experience]: ...
