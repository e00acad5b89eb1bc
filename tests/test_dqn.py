"""Tests for the deep Q-network learners."""

import json

import numpy as np
import pytest

from zodiac_marl.config import DQNConfig, ExplorationConfig, ModelFormatError, NetworkConfig, OptimizerConfig
from zodiac_marl.dqn import DoubleDQNLearner, DQNLearner, compute_td_targets, masked_max
from zodiac_marl.structures import Action, ActionType

from marl_test_utils import PASS, ROLL, SKILL, make_experience, make_state


GREEDY = ExplorationConfig(initial=0.0, decay=1.0, minimum=0.0)


def _config(**overrides) -> DQNConfig:
    settings = {
        "network": NetworkConfig(hidden_layers=[8]),
        "optimizer": OptimizerConfig(learning_rate=0.01),
        "batch_size": 4,
        "buffer_size": 50,
        "target_update_frequency": 5,
    }
    settings.update(overrides)
    return DQNConfig(**settings)


def _transition(rng, done=False, reward=1.0):
    s = make_state(rng.normal(size=3))
    s_next = make_state(rng.normal(size=3))
    return make_experience(s, ROLL, reward, s_next, done=done, next_actions=[ROLL, PASS])


class TestTDTargets:

    def test_terminal_targets_are_rewards(self):
        rewards = np.array([1.0, 2.0])
        next_q = np.array([[5.0, 1.0], [3.0, 4.0]])
        targets = compute_td_targets(rewards, np.array([1.0, 0.0]), next_q, next_q, 0.9, double=False)
        np.testing.assert_allclose(targets, [1.0, 2.0 + 0.9 * 4.0])

    def test_double_targets_never_exceed_standard_targets(self, rng):
        # Equal true action values; only estimation noise separates them
        true_q = np.zeros((64, 8))
        main = true_q + rng.normal(scale=0.5, size=true_q.shape)
        target = true_q + rng.normal(scale=0.5, size=true_q.shape)
        rewards, dones = np.zeros(64), np.zeros(64)
        standard = compute_td_targets(rewards, dones, main, target, 0.99, double=False)
        double = compute_td_targets(rewards, dones, main, target, 0.99, double=True)
        assert np.all(double <= standard + 1e-12)
        assert np.mean(double) < np.mean(standard)

    def test_double_target_evaluates_main_argmax_with_target(self):
        main = np.array([[1.0, 9.0]])
        target = np.array([[7.0, 2.0]])
        targets = compute_td_targets(np.zeros(1), np.zeros(1), main, target, 1.0, double=True)
        np.testing.assert_allclose(targets, [2.0])

    def test_mask_restricts_next_actions(self):
        q = np.array([[10.0, 1.0, 3.0]])
        mask = np.array([[False, True, True]])
        assert masked_max(q, mask)[0] == 3.0
        empty = np.zeros_like(mask)
        assert masked_max(q, empty)[0] == 0.0


class TestDQNLearner:

    def test_target_network_synced_every_n_steps(self, rng):
        learner = DQNLearner(_config(), GREEDY, 3, rng)
        x = rng.normal(size=3)
        for _ in range(4):
            learner.observe(_transition(rng))
        assert learner.train_steps == 1
        assert not np.allclose(learner.main_network.forward(x), learner.target_network.forward(x))
        learner.observe(_transition(rng))
        assert learner.target_updates == 1
        np.testing.assert_allclose(learner.main_network.forward(x), learner.target_network.forward(x))

    def test_no_training_before_batch_is_available(self, rng):
        learner = DQNLearner(_config(batch_size=10), GREEDY, 3, rng)
        losses = [learner.observe(_transition(rng)) for _ in range(9)]
        assert losses == [None] * 9
        assert learner.observe(_transition(rng)) is not None

    def test_learns_terminal_reward(self, rng):
        config = _config(batch_size=8, optimizer=OptimizerConfig(type="sgd", learning_rate=0.05))
        learner = DQNLearner(config, GREEDY, 3, rng)
        experience = _transition(rng, done=True, reward=1.0)
        for _ in range(8):
            learner.replay_buffer.push(experience)
        for _ in range(300):
            learner.train_step()
        q = learner.q_values(experience.state)
        assert q[ROLL.index] == pytest.approx(1.0, abs=0.1)

    def test_greedy_selection_only_returns_available_actions(self, rng):
        learner = DQNLearner(_config(), GREEDY, 3, rng)
        s = make_state(rng.normal(size=3))
        buy = Action(ActionType.BUY_PROPERTY, target="p7")
        for _ in range(10):
            assert learner.select_action(s, [buy, SKILL]) in (buy, SKILL)

    def test_prioritized_replay_stores_td_error(self, rng):
        learner = DQNLearner(_config(prioritized_replay=True), GREEDY, 3, rng)
        experience = _transition(rng)
        learner.observe(experience)
        assert learner.replay_buffer.priorities[0] == pytest.approx(
            abs(learner.td_error(experience)) + learner.config.priority_epsilon, rel=1e-6)

    def test_dueling_learner_trains(self, rng):
        learner = DQNLearner(_config(dueling=True, prioritized_replay=True), GREEDY, 3, rng)
        losses = [learner.observe(_transition(rng)) for _ in range(12)]
        assert all(np.isfinite(loss) for loss in losses if loss is not None)
        assert learner.train_steps > 0

    def test_model_survives_json_round_trip(self, rng):
        learner = DQNLearner(_config(), GREEDY, 3, rng)
        for _ in range(7):
            learner.observe(_transition(rng))
        blob = json.loads(json.dumps(learner.state_dict()))
        assert set(blob) >= {"weights", "biases", "hyperparameters", "metadata"}

        restored = DQNLearner(_config(), GREEDY, 3, np.random.default_rng(7))
        restored.load_state_dict(blob)
        x = rng.normal(size=3)
        np.testing.assert_allclose(restored.main_network.forward(x), learner.main_network.forward(x))
        np.testing.assert_allclose(restored.target_network.forward(x), learner.target_network.forward(x))
        assert restored.step_count == 7
        assert restored.optimizer.iterations == learner.optimizer.iterations


class TestDoubleDQNLearner:

    def test_forces_double_targets_without_touching_shared_config(self, rng):
        config = _config()
        learner = DoubleDQNLearner(config, GREEDY, 3, rng)
        assert learner.config.double_dqn
        assert not config.double_dqn
        assert learner.name == "double_dqn"

    def test_rejects_plain_dqn_blob(self, rng):
        blob = DQNLearner(_config(), GREEDY, 3, rng).state_dict()
        with pytest.raises(ModelFormatError):
            DoubleDQNLearner(_config(), GREEDY, 3, rng).load_state_dict(blob)
