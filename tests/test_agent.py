"""Tests for agents: algorithm selection, messaging and persistence."""

import json

import numpy as np
import pytest

from zodiac_marl.agent import Agent, MultiAgentSystem
from zodiac_marl.config import AgentConfig, AlgorithmType, ConfigError, ModelFormatError, get_small_test_config
from zodiac_marl.structures import (
    Action,
    ActionType,
    CooperationRequest,
    KnowledgeShare,
    Message,
    MultiAgentReward,
    ProposalAccepted,
    ProposalRejected,
    StrategySummary,
    TradeProposal,
)

from marl_test_utils import PASS, ROLL, make_experience, make_state


def _agent(rng, agent_type="cooperative", algorithm="q_learning", agent_id="a") -> Agent:
    config = get_small_test_config(algorithm, n_agents=1).agents[0]
    config.agent_id = agent_id
    config.agent_type = agent_type
    return Agent(config, rng, clock=lambda: 0.0)


class FixedPolicy:
    """Learner stand-in with a fixed choice and fixed probabilities."""

    def __init__(self, choice, probabilities):
        self.choice = choice
        self.probabilities = np.asarray(probabilities)

    def select_action(self, state, available_actions):
        return self.choice

    def action_probabilities(self, state, available_actions):
        return self.probabilities


class TestAgentConstruction:

    def test_unknown_algorithm_fails_at_construction(self, rng):
        config = AgentConfig(algorithm="sarsa")
        with pytest.raises(ConfigError):
            Agent(config, rng)

    @pytest.mark.parametrize("algorithm", [a.value for a in AlgorithmType])
    def test_every_algorithm_builds(self, rng, algorithm):
        agent = _agent(rng, algorithm=algorithm)
        assert agent.algorithm.name == algorithm

    def test_cooperation_level_follows_type(self, rng):
        assert _agent(rng, "cooperative").cooperation_level == 0.8
        assert _agent(rng, "independent").cooperation_level == 0.2
        assert not _agent(rng, "independent").communication_enabled


class TestAgentActing:

    def test_no_available_actions_means_pass(self, rng):
        agent = _agent(rng)
        assert agent.select_action(make_state([0.0]), []).type == ActionType.PASS_TURN

    def test_cooperative_agent_prefers_nearly_as_likely_trade(self, rng):
        agent = _agent(rng, "cooperative")
        trade = Action(ActionType.TRADE_OFFER, target="b")
        agent.algorithm = FixedPolicy(ROLL, [0.5, 0.45])
        chosen = agent.select_action_in_context(make_state([0.0]), [ROLL, trade], ["b"])
        assert chosen.key == trade.key
        assert chosen.confidence == pytest.approx(0.45)

    def test_unlikely_trade_is_not_preferred(self, rng):
        agent = _agent(rng, "cooperative")
        trade = Action(ActionType.TRADE_OFFER, target="b")
        agent.algorithm = FixedPolicy(ROLL, [0.7, 0.3])
        assert agent.select_action_in_context(make_state([0.0]), [ROLL, trade], ["b"]) == ROLL

    def test_competitive_agent_keeps_its_choice(self, rng):
        agent = _agent(rng, "competitive")
        trade = Action(ActionType.TRADE_OFFER, target="b")
        agent.algorithm = FixedPolicy(ROLL, [0.5, 0.45])
        assert agent.select_action_in_context(make_state([0.0]), [ROLL, trade], ["b"]) == ROLL

    def test_episode_statistics(self, rng):
        agent = _agent(rng)
        s = make_state([0.0])
        agent.update_experience(make_experience(s, ROLL, 2.0, s, next_actions=[ROLL]))
        agent.update_experience(make_experience(s, PASS, -1.0, s, next_actions=[ROLL]))
        stats = agent.complete_episode()
        assert stats["episode_reward"] == pytest.approx(1.0)
        assert agent.stats.best_actions() == ["roll_dice", "pass_turn"]
        assert agent.strategy_summary().episodes == 1

    def test_shared_reward_nudges_cooperation(self, rng):
        cooperative = _agent(rng, "cooperative")
        competitive = _agent(rng, "competitive")
        reward = MultiAgentReward(individual={}, cooperation_bonus=5.0, competition_penalty=50.0)
        cooperative.process_multi_agent_reward(reward)
        competitive.process_multi_agent_reward(reward)
        assert cooperative.cooperation_level == pytest.approx(0.81)
        assert competitive.cooperation_level == pytest.approx(0.49)


class TestAgentMessages:

    def test_cooperative_agent_evaluates_offers(self, rng):
        agent = _agent(rng, "cooperative")
        agent.receive_message(Message("b", "a", TradeProposal("resource_sharing")))
        agent.receive_message(Message("c", "a", TradeProposal("trade")))
        replies = agent.process_incoming_messages()
        assert isinstance(replies[0].payload, ProposalAccepted)
        assert replies[0].receiver_id == "b"
        assert isinstance(replies[1].payload, ProposalRejected)

    def test_competitive_agent_ignores_offers(self, rng):
        agent = _agent(rng, "competitive")
        agent.receive_message(Message("b", "a", TradeProposal("resource_sharing")))
        assert agent.process_incoming_messages() == []

    def test_knowledge_and_cooperation_requests(self, rng):
        agent = _agent(rng, "cooperative")
        summary = StrategySummary(("roll_dice",), 3.0, 0.1, 4)
        agent.receive_message(Message("b", "a", KnowledgeShare(summary)))
        agent.receive_message(Message("b", "a", CooperationRequest()))
        replies = agent.process_incoming_messages()
        assert agent.shared_knowledge["b"] == summary
        assert isinstance(replies[0].payload, TradeProposal)
        assert not agent.inbox

    def test_independent_agent_drops_messages(self, rng):
        agent = _agent(rng, "independent")
        summary = StrategySummary((), 0.0, 0.1, 0)
        agent.receive_message(Message("b", "a", KnowledgeShare(summary)))
        assert agent.process_incoming_messages() == []
        assert agent.shared_knowledge == {}


class TestAgentPersistence:

    @pytest.mark.parametrize("algorithm", [a.value for a in AlgorithmType])
    def test_model_json_round_trip(self, rng, algorithm):
        agent = _agent(rng, algorithm=algorithm)
        s = make_state(rng.normal(size=18))
        s_next = make_state(rng.normal(size=18))
        for _ in range(10):
            action = agent.select_action(s, [ROLL, PASS])
            agent.update_experience(make_experience(s, action, 1.0, s_next, next_actions=[ROLL, PASS]))
        agent.complete_episode()

        blob = json.loads(json.dumps(agent.save_model()))
        assert blob["metadata"]["algorithm"] == algorithm
        assert blob["metadata"]["agent_id"] == "a"

        restored = _agent(np.random.default_rng(42), algorithm=algorithm)
        restored.load_model(blob)
        assert restored.algorithm.step_count == agent.algorithm.step_count
        assert restored.exploration_rate == pytest.approx(agent.exploration_rate)
        assert json.dumps(restored.algorithm.state_dict()["weights"]) == json.dumps(blob["weights"])

    def test_cross_algorithm_load_fails(self, rng):
        blob = _agent(rng, algorithm="dqn").save_model()
        with pytest.raises(ModelFormatError):
            _agent(rng, algorithm="q_learning").load_model(blob)

    def test_future_major_version_is_rejected(self, rng):
        agent = _agent(rng)
        blob = agent.save_model()
        blob["metadata"]["version"] = "2.0.0"
        with pytest.raises(ModelFormatError):
            agent.load_model(blob)


class TestMultiAgentSystem:

    def test_from_configs_and_lookup(self, rng):
        config = get_small_test_config(n_agents=3)
        system = MultiAgentSystem.from_configs(config.agents, rng)
        assert system.ids == ["agent_0", "agent_1", "agent_2"]
        assert [a.agent_id for a in system.cooperative_agents()] == ["agent_0", "agent_2"]
        assert "agent_1" in system

    def test_duplicate_ids_are_rejected(self, rng):
        system = MultiAgentSystem([_agent(rng)])
        with pytest.raises(ValueError):
            system.add(_agent(rng))
