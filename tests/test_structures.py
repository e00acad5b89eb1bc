"""Tests for the data model, configuration, encoder and reward shaping."""

import dataclasses

import numpy as np
import pytest

from zodiac_marl.config import (
    AgentConfig,
    Config,
    ConfigError,
    TrainingConfig,
    get_default_config,
    get_small_test_config,
)
from zodiac_marl.encoder import STATE_SIZE, GameSnapshot, StateEncoder
from zodiac_marl.rewards import COMPETITION_PENALTY, RewardCalculator
from zodiac_marl.structures import (
    Action,
    ActionType,
    JointAction,
    Message,
    CooperationRequest,
    PlayerSnapshot,
    Reward,
    State,
)

from marl_test_utils import PASS, ROLL


class TestDataModel:

    def test_reward_total_is_sum_of_components(self):
        reward = Reward.from_components({"money": 1.5, "properties": 100.0})
        assert reward.total == pytest.approx(101.5)
        reward = reward.plus("money", 0.5).plus("game_win", 10.0)
        assert reward.total == pytest.approx(sum(reward.components.values()))
        assert reward.components["money"] == pytest.approx(2.0)

    def test_identical_features_share_a_key(self):
        a = State.from_features([0.1, 0.25], "x")
        b = State.from_features(np.array([0.1, 0.25]), "y")
        assert a.key == b.key == "0.100_0.250"
        assert len(a) == 2

    def test_action_keys(self):
        assert ROLL.key == "roll_dice"
        assert Action(ActionType.BUY_PROPERTY, target="p3").key == "buy_property:p3"
        assert PASS.index == len(ActionType) - 1

    def test_values_are_immutable(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            ROLL.confidence = 0.2
        with pytest.raises(dataclasses.FrozenInstanceError):
            Message("a", "b", CooperationRequest()).receiver_id = "c"

    def test_with_confidence_returns_copy(self):
        changed = ROLL.with_confidence(0.3)
        assert changed.confidence == 0.3
        assert ROLL.confidence == 1.0


class TestConfig:

    def test_defaults(self):
        config = get_default_config()
        assert config.training.knowledge_share_interval == 10
        assert config.training.adaptation_interval == 50
        assert config.agents[0].tabular.trace_decay == 0.9
        assert config.agents[0].dqn.target_update_frequency == 1000
        assert config.to_dict()["coordination"]["protocol"] == "none"

    def test_duplicate_agent_ids_are_rejected(self):
        with pytest.raises(ConfigError):
            Config(agents=[AgentConfig(agent_id="a"), AgentConfig(agent_id="a")])

    def test_unknown_agent_type_is_rejected(self):
        with pytest.raises(ConfigError):
            AgentConfig(agent_type="chaotic")

    def test_exploration_bounds_are_checked(self):
        with pytest.raises(ConfigError):
            TrainingConfig(min_exploration=0.6, max_exploration=0.5)

    def test_small_config_alternates_agent_types(self):
        config = get_small_test_config("dqn", n_agents=3)
        assert [a.agent_type for a in config.agents] == ["cooperative", "competitive", "cooperative"]
        assert all(a.algorithm == "dqn" for a in config.agents)


class TestStateEncoder:

    def test_vector_has_fixed_size_and_scale(self):
        player = PlayerSnapshot("a", position=20, money=5000.0, properties=("p1", "p2"), in_jail=True)
        game = GameSnapshot(players=(player, PlayerSnapshot("b")), round_number=50, phase="mid")
        features = StateEncoder().features(game, "a")
        assert features.shape == (STATE_SIZE,)
        assert features[0] == pytest.approx(0.5)
        assert features[1] == pytest.approx(0.5)
        assert features[5] == 1.0
        assert features[8] == 0.5
        assert features[9] == pytest.approx(0.5)

    def test_joint_encoding_covers_every_agent(self):
        game = GameSnapshot(players=(PlayerSnapshot("a", money=100.0), PlayerSnapshot("b", money=200.0)),
                            current_player_index=1)
        joint = StateEncoder(clock=lambda: 7.0).encode_joint(game, ["a", "b"])
        assert joint.agent_ids == ["a", "b"]
        assert joint.global_state.player_id == "b"
        assert joint.state_of("a").features[0] == pytest.approx(0.01)
        assert joint.timestamp == 7.0
        assert joint.state_of("missing") is joint.global_state

    def test_missing_player_encodes_as_empty(self):
        features = StateEncoder().features(GameSnapshot(players=()), "ghost")
        assert features[0] == 0.0


class TestRewardCalculator:

    def test_components_sum_to_total(self):
        calculator = RewardCalculator()
        before = PlayerSnapshot("a", money=1000.0)
        after = PlayerSnapshot("a", money=1500.0, properties=("p1",))
        reward = calculator.individual_reward(before, after, success=True, won=True, used_skill=True)
        assert reward.components["money"] == pytest.approx(0.5)
        assert reward.components["properties"] == pytest.approx(100.0)
        assert reward.components["game_win"] == pytest.approx(1000.0)
        assert reward.total == pytest.approx(sum(reward.components.values()))

    def test_failed_action_earns_no_efficiency(self):
        snapshot = PlayerSnapshot("a")
        reward = RewardCalculator().individual_reward(snapshot, snapshot, success=False)
        assert "efficiency" not in reward.components
        assert reward.total == 0.0

    def test_competition_penalty_on_wealth_gap(self):
        players = {"a": PlayerSnapshot("a", money=0.0), "b": PlayerSnapshot("b", money=5000.0)}
        assert RewardCalculator.competition_penalty(players) == COMPETITION_PENALTY
        even = {"a": PlayerSnapshot("a", money=1000.0), "b": PlayerSnapshot("b", money=1100.0)}
        assert RewardCalculator.competition_penalty(even) == 0.0

    def test_cooperation_level(self):
        same = JointAction(actions={"a": ROLL, "b": ROLL})
        assert RewardCalculator.cooperation_level(same) == pytest.approx(0.25)
        assert RewardCalculator.cooperation_level(JointAction(actions={})) == 0.0

    def test_combine(self):
        calculator = RewardCalculator()
        individual = {"a": Reward.scalar(1.0), "b": Reward.scalar(2.0)}
        message = Message("a", "b", CooperationRequest())
        joint = JointAction(actions={"a": ROLL, "b": PASS}, communications=(message,))
        combined = calculator.combine(individual, joint, {})
        assert combined.shared == pytest.approx(3.0)
        assert combined.cooperation_bonus == pytest.approx(5.0)
        assert combined.for_agent("c").total == 0.0
