"""Tests for the Reinforcement Learning Agent."""

from datetime import datetime, timezone

import pytest

from agits_kernel.models.config import AgentConfig
from agits_kernel.models.reinforcement import (
    Action,
    ActionType,
    Episode,
    Experience,
    LearningMetrics,
    LearningStrategy,
    Policy,
    State,
)
from agits_kernel.reinforcement.agent import (
    EXPERIENCE_LEARNED,
    POLICY_UPDATED,
    STRATEGY_CHANGED,
    TRAINING_COMPLETED,
    NoValidActionsError,
    ReinforcementLearningAgent,
)
from agits_kernel.reinforcement.components import (
    EpsilonGreedyStrategy,
    TabularValueFunction,
    UniformExperienceReplay,
)


PAST = datetime(2020, 1, 1, tzinfo=timezone.utc)


def _state(state_id: str = "s0") -> State:
    return State(id=state_id, timestamp=PAST, features={"quality": 0.5})


def _action(action_id: str = "a0", action_type: ActionType = ActionType.EXPLORE_DATA) -> Action:
    return Action(id=action_id, type=action_type)


def _experience(
    reward: float = 1.0,
    done: bool = True,
    state: str = "s0",
    action: str = "a0",
    next_state: str = "s1",
    episode_id: str = "ep1",
    experience_id: str = "exp1",
) -> Experience:
    return Experience(
        id=experience_id,
        state=_state(state),
        action=_action(action),
        reward=reward,
        next_state=_state(next_state),
        done=done,
        episode_id=episode_id,
        timestamp=PAST,
    )


def _episode(total_reward: float, episode_id: str = "ep1", steps: int = 1) -> Episode:
    experiences = [
        _experience(
            reward=total_reward / steps,
            episode_id=episode_id,
            experience_id=f"{episode_id}_{i}",
            action=f"a{i}",
        )
        for i in range(steps)
    ]
    return Episode(
        id=episode_id,
        experiences=experiences,
        total_reward=total_reward,
        start_state=_state("s0"),
        end_state=_state("s1"),
        successful=total_reward > 0,
        timestamp=PAST,
    )


class FakeEnvironment:
    def __init__(self, actions_by_state=None, default_actions=None):
        self.actions_by_state = actions_by_state or {}
        self.default_actions = default_actions if default_actions is not None else [
            _action("a0"), _action("a1", ActionType.EXPLOIT_KNOWLEDGE),
        ]
        self.current = _state("env_state")

    async def get_current_state(self):
        return self.current

    async def get_valid_actions(self, state):
        return list(self.actions_by_state.get(state.id, self.default_actions))


class RecordingStrategy:
    """Always picks the last action; records what it was asked."""

    def __init__(self, error=None):
        self.error = error
        self.selections = []
        self.update_calls = []

    async def select_action(self, state, actions, q_values):
        if self.error:
            raise self.error
        self.selections.append((state, actions, q_values))
        return actions[-1]

    def update_exploration_rate(self, episode):
        self.update_calls.append(episode)

    def get_exploration_rate(self):
        return 0.0


class RecordingValueFunction(TabularValueFunction):
    def __init__(self, agent_ref=None, fail_on=None):
        super().__init__()
        self.batches = []
        self.agent_ref = agent_ref
        self.fail_on = fail_on
        self.training_flags = []

    async def update_q_value(self, state, action, value):
        if self.fail_on == "update":
            raise RuntimeError("value store unavailable")
        await super().update_q_value(state, action, value)

    async def batch_update(self, updates):
        if self.agent_ref is not None:
            self.training_flags.append(self.agent_ref().is_training)
        if self.fail_on == "batch":
            raise RuntimeError("value store unavailable")
        self.batches.append(list(updates))
        await super().batch_update(updates)


def _make_agent(environment=None, value_function=None, strategy=None, replay=None, **config):
    return ReinforcementLearningAgent(
        environment=environment if environment is not None else FakeEnvironment(),
        value_function=value_function if value_function is not None else RecordingValueFunction(),
        exploration_strategy=strategy if strategy is not None else RecordingStrategy(),
        experience_replay=replay if replay is not None else UniformExperienceReplay(seed=7),
        config=AgentConfig(**config),
    )


class TestWiring:
    def test_empty_collaborators_are_kept(self):
        # Both define __len__, so a fresh instance is falsy
        values = TabularValueFunction()
        replay = UniformExperienceReplay()
        assert len(values) == 0 and len(replay) == 0

        agent = _make_agent(value_function=values, replay=replay)

        assert agent.value_function is values
        assert agent.experience_replay is replay

    @pytest.mark.asyncio
    async def test_learning_writes_to_injected_empty_store(self):
        values = TabularValueFunction()
        agent = _make_agent(value_function=values)

        await agent.learn(_experience(reward=1.0))

        assert len(values) == 1


class TestAct:
    def setup_method(self):
        self.environment = FakeEnvironment()
        self.values = TabularValueFunction()
        self.strategy = RecordingStrategy()
        self.agent = _make_agent(
            environment=self.environment,
            value_function=self.values,
            strategy=self.strategy,
        )

    @pytest.mark.asyncio
    async def test_delegates_to_strategy_with_q_values(self):
        state = _state()
        await self.values.update_q_value(state, _action("a1"), 0.7)

        selected = await self.agent.act(state)

        assert selected.id == "a1"
        [(seen_state, actions, q_values)] = self.strategy.selections
        assert seen_state == state
        assert [a.id for a in actions] == ["a0", "a1"]
        assert [(q.action_id, q.value) for q in q_values] == [("a0", 0.0), ("a1", 0.7)]
        assert all(q.visits == 1 and q.state_id == "s0" for q in q_values)

    @pytest.mark.asyncio
    async def test_sets_current_state(self):
        state = _state("observed")
        await self.agent.act(state)
        assert self.agent.current_state == state

    @pytest.mark.asyncio
    async def test_greedy_strategy_picks_highest_value(self):
        values = TabularValueFunction()
        agent = _make_agent(
            value_function=values,
            strategy=EpsilonGreedyStrategy(initial_epsilon=0.0),
        )
        state = _state()
        await values.update_q_value(state, _action("a0"), 0.2)
        await values.update_q_value(state, _action("a1"), 0.9)

        selected = await agent.act(state)

        assert selected.id == "a1"

    @pytest.mark.asyncio
    async def test_no_valid_actions_raises(self):
        agent = _make_agent(environment=FakeEnvironment(default_actions=[]))
        state = _state("dead_end")

        with pytest.raises(NoValidActionsError):
            await agent.act(state)
        # The state is adopted even when no action can be chosen
        assert agent.current_state == state

    @pytest.mark.asyncio
    async def test_strategy_failure_propagates(self):
        agent = _make_agent(strategy=RecordingStrategy(error=RuntimeError("policy crashed")))
        with pytest.raises(RuntimeError, match="policy crashed"):
            await agent.act(_state())

    @pytest.mark.asyncio
    async def test_evaluate_reads_value_function(self):
        state, action = _state(), _action("a0")
        await self.values.update_q_value(state, action, 0.42)
        assert await self.agent.evaluate(state, action) == 0.42

    @pytest.mark.asyncio
    async def test_perceive_state_adopts_environment_state(self):
        state = await self.agent.perceive_state()
        assert state.id == "env_state"
        assert self.agent.current_state == state

        self.agent.update_state(_state("manual"))
        assert self.agent.current_state.id == "manual"


class TestLearn:
    def setup_method(self):
        self.environment = FakeEnvironment()
        self.values = RecordingValueFunction()
        self.replay = UniformExperienceReplay(seed=1)
        self.agent = _make_agent(
            environment=self.environment,
            value_function=self.values,
            replay=self.replay,
            learning_rate=0.5,
            discount_factor=0.9,
        )

    @pytest.mark.asyncio
    async def test_moves_q_value_toward_target(self):
        experience = _experience(reward=1.0, done=True)

        await self.agent.learn(experience)
        assert await self.values.get_q_value(experience.state, experience.action) == pytest.approx(0.5)

        await self.agent.learn(experience)
        assert await self.values.get_q_value(experience.state, experience.action) == pytest.approx(0.75)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("discount", [0.0, 0.5, 0.99])
    async def test_terminal_target_is_reward(self, discount):
        agent = _make_agent(value_function=self.values, discount_factor=discount)
        await self.values.update_q_value(_state("s1"), _action("a0"), 100.0)

        assert await agent.compute_target(_experience(reward=-2.5, done=True)) == -2.5

    @pytest.mark.asyncio
    async def test_non_terminal_target_bootstraps(self):
        await self.values.update_q_value(_state("s1"), _action("a0"), 2.0)
        await self.values.update_q_value(_state("s1"), _action("a1"), 0.5)

        target = await self.agent.compute_target(_experience(reward=1.0, done=False))

        assert target == pytest.approx(1.0 + 0.9 * 2.0)

    @pytest.mark.asyncio
    async def test_next_state_without_actions_contributes_nothing(self):
        self.environment.actions_by_state = {"s1": []}
        target = await self.agent.compute_target(_experience(reward=0.3, done=False))
        assert target == 0.3

    @pytest.mark.asyncio
    async def test_experience_is_buffered_and_replayed(self):
        experience = _experience()
        await self.agent.learn(experience)

        assert self.agent.get_experiences() == [experience]
        assert len(self.replay) == 1

    @pytest.mark.asyncio
    async def test_buffer_is_bounded(self):
        agent = _make_agent(value_function=self.values, experience_buffer_size=3)
        for i in range(5):
            await agent.learn(_experience(experience_id=f"exp{i}"))

        assert [e.id for e in agent.get_experiences()] == ["exp2", "exp3", "exp4"]

    @pytest.mark.asyncio
    async def test_get_experiences_filters(self):
        await self.agent.learn(_experience(experience_id="x1", episode_id="ep1"))
        await self.agent.learn(_experience(experience_id="x2", episode_id="ep2"))

        assert [e.id for e in self.agent.get_experiences(episode_id="ep2")] == ["x2"]
        assert self.agent.get_experiences(episode_id="missing") == []

    @pytest.mark.asyncio
    async def test_emits_experience_learned(self):
        received = []
        self.agent.on(EXPERIENCE_LEARNED, received.append)
        experience = _experience()

        await self.agent.learn(experience)

        assert received == [experience]

    @pytest.mark.asyncio
    async def test_update_failure_propagates(self):
        agent = _make_agent(value_function=RecordingValueFunction(fail_on="update"))
        received = []
        agent.on(EXPERIENCE_LEARNED, received.append)

        with pytest.raises(RuntimeError, match="value store unavailable"):
            await agent.learn(_experience())
        assert received == []


class TestTrain:
    def setup_method(self):
        self.values = RecordingValueFunction()
        self.strategy = RecordingStrategy()
        self.agent = _make_agent(value_function=self.values, strategy=self.strategy)

    @pytest.mark.asyncio
    async def test_submits_one_batch_of_targets(self):
        episodes = [_episode(2.0, "ep1", steps=2), _episode(4.0, "ep2")]

        await self.agent.train(episodes)

        [batch] = self.values.batches
        assert len(batch) == 3
        # Terminal experiences: the target is the step reward
        assert [u.value for u in batch] == [1.0, 1.0, 4.0]
        assert len(self.values) == 2

    @pytest.mark.asyncio
    async def test_metrics_track_reward(self):
        metrics = await self.agent.train([_episode(2.0, "ep1"), _episode(4.0, "ep2")])

        assert isinstance(metrics, LearningMetrics)
        assert metrics.total_episodes == 2
        assert metrics.average_reward == pytest.approx(3.0)
        assert metrics.last_episode_reward == 4.0
        assert metrics.performance_trend == [3.0]
        assert self.agent.get_performance() == pytest.approx(3.0)

        metrics = await self.agent.train([_episode(6.0, "ep3")])

        assert metrics.total_episodes == 3
        assert metrics.average_reward == pytest.approx(4.0)
        assert metrics.performance_trend == [3.0, 6.0]
        assert len(self.agent.episodes) == 3

    @pytest.mark.asyncio
    async def test_empty_training_still_decays_exploration(self):
        metrics = await self.agent.train([])

        assert self.values.batches == [[]]
        assert metrics.total_episodes == 0
        assert metrics.performance_trend == []
        assert self.agent.exploration_rate == pytest.approx(0.1 * 0.995)

    @pytest.mark.asyncio
    async def test_exploration_decays_to_floor(self):
        agent = _make_agent(exploration_rate=0.02)
        previous = agent.exploration_rate
        for _ in range(200):
            await agent.train([_episode(1.0)])
            assert agent.exploration_rate <= previous
            assert agent.exploration_rate >= 0.01
            previous = agent.exploration_rate

        assert agent.exploration_rate == 0.01
        assert agent.get_metrics().exploration_rate == 0.01
        assert agent.get_current_policy().parameters["exploration_rate"] == 0.01

    @pytest.mark.asyncio
    async def test_convergence_needs_a_full_window(self):
        for _ in range(9):
            metrics = await self.agent.train([_episode(1.0)])
        assert metrics.convergence_score == 0.0

        metrics = await self.agent.train([_episode(1.0)])
        assert metrics.convergence_score == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_volatile_rewards_do_not_converge(self):
        for i in range(10):
            metrics = await self.agent.train([_episode(10.0 if i % 2 else -10.0)])
        assert metrics.convergence_score == 0.0

    @pytest.mark.asyncio
    async def test_trend_is_bounded(self):
        agent = _make_agent(performance_trend_size=5)
        for i in range(7):
            metrics = await agent.train([_episode(float(i))])
        assert metrics.performance_trend == [2.0, 3.0, 4.0, 5.0, 6.0]

    @pytest.mark.asyncio
    async def test_strategy_is_told_total_episodes(self):
        await self.agent.train([_episode(1.0, "ep1"), _episode(1.0, "ep2")])
        await self.agent.train([_episode(1.0, "ep3")])
        assert self.strategy.update_calls == [2, 3]

    @pytest.mark.asyncio
    async def test_is_training_only_while_in_flight(self):
        holder = {}
        values = RecordingValueFunction(agent_ref=lambda: holder["agent"])
        holder["agent"] = _make_agent(value_function=values)

        assert holder["agent"].is_training is False
        await holder["agent"].train([_episode(1.0)])

        assert values.training_flags == [True]
        assert holder["agent"].is_training is False

    @pytest.mark.asyncio
    async def test_failure_propagates_and_clears_flag(self):
        agent = _make_agent(value_function=RecordingValueFunction(fail_on="batch"))
        completed = []
        agent.on(TRAINING_COMPLETED, completed.append)

        with pytest.raises(RuntimeError):
            await agent.train([_episode(1.0)])

        assert agent.is_training is False
        assert agent.get_metrics().total_episodes == 0
        assert completed == []

    @pytest.mark.asyncio
    async def test_emits_training_completed(self):
        received = []
        self.agent.on(TRAINING_COMPLETED, received.append)

        metrics = await self.agent.train([_episode(1.0)])

        assert received == [metrics]

    @pytest.mark.asyncio
    async def test_retrain_replays_sampled_experiences(self):
        replay = UniformExperienceReplay(seed=3)
        for i in range(3):
            await replay.store(_experience(experience_id=f"old{i}"))
        agent = _make_agent(replay=replay, learning_rate=0.5)

        replayed = await agent.retrain()

        assert replayed == 3
        assert sorted(e.id for e in agent.get_experiences()) == ["old0", "old1", "old2"]


class TestPolicy:
    def setup_method(self):
        self.agent = _make_agent()

    def _policy(self, **parameters) -> Policy:
        return Policy(
            id="tuned",
            name="Tuned policy",
            strategy=LearningStrategy.TEMPORAL_DIFFERENCE,
            parameters=parameters,
            created_at=PAST,
            updated_at=PAST,
        )

    def test_initial_policy_mirrors_config(self):
        policy = self.agent.get_current_policy()
        assert policy.strategy == LearningStrategy.Q_LEARNING
        assert policy.parameters == {
            "learning_rate": 0.001,
            "discount_factor": 0.99,
            "exploration_rate": 0.1,
        }

    @pytest.mark.asyncio
    async def test_update_policy_adopts_present_rates(self):
        await self.agent.update_policy(self._policy(learning_rate=0.2, discount_factor=0.5))

        assert self.agent.learning_rate == 0.2
        assert self.agent.discount_factor == 0.5
        assert self.agent.exploration_rate == 0.1
        policy = self.agent.get_current_policy()
        assert policy.id == "tuned"
        assert policy.updated_at > PAST
        assert policy.parameters["exploration_rate"] == 0.1

    @pytest.mark.asyncio
    async def test_update_policy_honours_zero(self):
        await self.agent.update_policy(self._policy(exploration_rate=0.0))
        assert self.agent.exploration_rate == 0.0

    @pytest.mark.asyncio
    async def test_update_policy_clamps_rates(self):
        await self.agent.update_policy(self._policy(learning_rate=5.0, exploration_rate=-1.0))

        assert self.agent.learning_rate == 1.0
        assert self.agent.exploration_rate == 0.0
        metrics = self.agent.get_metrics()
        assert metrics.learning_rate == 1.0
        assert metrics.exploration_rate == 0.0

    @pytest.mark.asyncio
    async def test_update_policy_emits_and_copies(self):
        received = []
        self.agent.on(POLICY_UPDATED, received.append)
        submitted = self._policy(learning_rate=0.3)

        await self.agent.update_policy(submitted)

        assert len(received) == 1
        assert received[0].id == "tuned"
        # The caller's object is never adopted directly
        assert submitted.updated_at == PAST
        submitted.parameters["learning_rate"] = 0.9
        assert self.agent.learning_rate == 0.3

    def test_current_policy_is_a_snapshot(self):
        snapshot = self.agent.get_current_policy()
        snapshot.parameters["learning_rate"] = 0.9
        assert self.agent.get_current_policy().parameters["learning_rate"] == 0.001

    @pytest.mark.parametrize("rate,expected", [(5.0, 1.0), (-1.0, 0.0), (0.25, 0.25)])
    def test_setters_clamp(self, rate, expected):
        self.agent.set_learning_rate(rate)
        self.agent.set_exploration_rate(rate)

        assert self.agent.learning_rate == expected
        assert self.agent.exploration_rate == expected
        parameters = self.agent.get_current_policy().parameters
        assert parameters["learning_rate"] == expected
        assert parameters["exploration_rate"] == expected

    def test_set_strategy_emits(self):
        received = []
        self.agent.on(STRATEGY_CHANGED, received.append)

        self.agent.set_strategy(LearningStrategy.ACTOR_CRITIC)

        assert received == [LearningStrategy.ACTOR_CRITIC]
        assert self.agent.get_current_policy().strategy == LearningStrategy.ACTOR_CRITIC
