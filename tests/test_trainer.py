"""Tests for the training orchestrator on the built-in simulator."""

import json

import numpy as np
import pytest

from zodiac_marl.config import AlgorithmType, CoordinationConfig, get_small_test_config
from zodiac_marl.environment import BoardGameSimulator
from zodiac_marl.events import (
    AgentRemoved,
    EpisodeCompleted,
    EventBus,
    ExplorationAdapted,
    KnowledgeShared,
    StepCompleted,
    TrainingCompleted,
)
from zodiac_marl.trainer import TrainingOrchestrator


def _trainer(rng, algorithm="q_learning", n_agents=2, protocol="none", max_rounds=20, events=None):
    config = get_small_test_config(algorithm, n_agents=n_agents)
    config.coordination = CoordinationConfig(protocol=protocol)
    env = BoardGameSimulator(rng, max_rounds=max_rounds)
    return TrainingOrchestrator.from_config(config, env, rng, events=events)


class TestTraining:

    @pytest.mark.parametrize("algorithm", [a.value for a in AlgorithmType])
    def test_short_training_run(self, rng, algorithm):
        trainer = _trainer(rng, algorithm)
        stats = trainer.train()

        assert trainer.episode == 5
        assert all(0 < n <= 20 for n in stats["episode_lengths"])
        for agent_id in ("agent_0", "agent_1"):
            assert len(stats["episode_rewards"][agent_id]) == 5
            assert len(stats["exploration_rates"][agent_id]) == 5
            assert all(np.isfinite(stats["episode_rewards"][agent_id]))
        assert stats["total_time"] >= 0.0

    @pytest.mark.parametrize("protocol", ["centralized", "distributed", "hierarchical"])
    def test_coordination_protocols_run(self, rng, protocol):
        trainer = _trainer(rng, n_agents=3, protocol=protocol)
        stats = trainer.train(n_episodes=2)
        assert len(stats["conflicts"]) == 2
        if protocol == "hierarchical":
            # Two directives per step, one per follower
            assert all(m >= 2 for m in stats["messages"])

    def test_step_ceiling(self, rng):
        trainer = _trainer(rng, max_rounds=100)
        summary = trainer.run_episode()
        assert summary.steps == 30
        assert not summary.terminated

    def test_events_follow_the_schedule(self, rng):
        bus = EventBus()
        completed, shared, adapted, finished = [], [], [], []
        bus.subscribe(EpisodeCompleted, completed.append)
        bus.subscribe(KnowledgeShared, shared.append)
        bus.subscribe(ExplorationAdapted, adapted.append)
        bus.subscribe(TrainingCompleted, finished.append)
        trainer = _trainer(rng, n_agents=3, events=bus)
        trainer.train()

        assert [event.episode for event in completed] == [0, 1, 2, 3, 4]
        # Sharing every 2 and adaptation every 3 completed episodes
        assert [event.episode for event in shared] == [2, 4]
        assert [event.episode for event in adapted] == [3]
        assert finished[0].episodes == 5

    def test_knowledge_reaches_cooperative_agents(self, rng):
        trainer = _trainer(rng, n_agents=3)
        trainer.train(n_episodes=2)
        first, third = trainer.agents["agent_0"], trainer.agents["agent_2"]
        assert "agent_2" in first.shared_knowledge
        assert "agent_0" in third.shared_knowledge
        assert trainer.agents["agent_1"].shared_knowledge == {}
        assert trainer.training_stats["knowledge_shares"] == 2

    def test_stop_request_ends_training(self, rng):
        bus = EventBus()
        trainer = _trainer(rng, events=bus)

        def stop_early(event):
            if event.step == 3:
                trainer.request_stop()

        bus.subscribe(StepCompleted, stop_early)
        trainer.train()
        assert trainer.episode == 1
        assert trainer.training_stats["episode_lengths"] == [3]


class TestExplorationAdaptation:

    def test_improving_agents_explore_less(self, rng):
        trainer = _trainer(rng)
        agent = trainer.agents["agent_0"]
        agent.exploration_rate = 0.2
        agent.stats.previous_average = 1.0
        agent.stats.episode_rewards = [5.0]
        rates = trainer.adapt_exploration()
        assert rates["agent_0"] == pytest.approx(0.2 * 0.99)
        assert agent.stats.previous_average == 5.0

    def test_stagnating_agents_explore_more_within_bounds(self, rng):
        trainer = _trainer(rng)
        first, second = trainer.agents["agent_0"], trainer.agents["agent_1"]
        first.exploration_rate = 0.2
        second.exploration_rate = 0.5
        trainer.adapt_exploration()
        assert first.exploration_rate == pytest.approx(0.2 * 1.01)
        assert second.exploration_rate == pytest.approx(0.5)


class TestEvaluationAndModels:

    def test_evaluation_restores_exploration(self, rng):
        trainer = _trainer(rng)
        before = {agent.agent_id: agent.exploration_rate for agent in trainer.agents}
        rewards = trainer.evaluate(n_episodes=2)
        assert set(rewards) == {"agent_0", "agent_1"}
        assert {agent.agent_id: agent.exploration_rate for agent in trainer.agents} == before
        assert trainer.agents["agent_0"].stats.episode_rewards == []

    def test_evaluation_does_not_carry_into_training(self, rng):
        trainer = _trainer(rng, algorithm="actor_critic")
        trainer.evaluate(n_episodes=1)
        for agent in trainer.agents:
            assert agent.algorithm.entropies == []
            assert agent.algorithm.memory == []
            assert agent.stats.current_episode_reward == 0.0

    def test_models_round_trip(self, rng):
        trainer = _trainer(rng, algorithm="dqn")
        trainer.train(n_episodes=1)
        blobs = json.loads(json.dumps(trainer.save_models()))

        fresh = _trainer(np.random.default_rng(3), algorithm="dqn")
        fresh.load_models(blobs)
        x = np.zeros(18)
        for agent_id in ("agent_0", "agent_1"):
            np.testing.assert_allclose(
                fresh.agents[agent_id].algorithm.main_network.forward(x),
                trainer.agents[agent_id].algorithm.main_network.forward(x))

    def test_removing_an_agent(self, rng):
        bus = EventBus()
        removed = []
        bus.subscribe(AgentRemoved, removed.append)
        trainer = _trainer(rng, events=bus)
        trainer.remove_agent("agent_1")
        assert removed[0].agent_id == "agent_1"
        summary = trainer.run_episode()
        assert set(summary.rewards) == {"agent_0"}
