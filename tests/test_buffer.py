"""Tests for the replay ring buffer."""

import numpy as np
import pytest

from zodiac_marl.buffer import ReplayBuffer

from marl_test_utils import ROLL, make_experience, make_state


def _experience(i: int):
    return make_experience(make_state([float(i)]), ROLL, float(i), make_state([float(i + 1)]))


class TestReplayBuffer:

    def test_length_never_exceeds_capacity(self, rng):
        buffer = ReplayBuffer(capacity=5, rng=rng)
        for i in range(12):
            buffer.push(_experience(i))
            assert len(buffer) == min(i + 1, 5)

    def test_overflow_overwrites_oldest_slot(self, rng):
        buffer = ReplayBuffer(capacity=3, rng=rng)
        indices = [buffer.push(_experience(i)) for i in range(4)]
        assert indices == [0, 1, 2, 0]
        assert buffer[0].reward.total == 3.0
        assert buffer[1].reward.total == 1.0

    def test_index_outside_filled_region_raises(self, rng):
        buffer = ReplayBuffer(capacity=4, rng=rng)
        buffer.push(_experience(0))
        with pytest.raises(IndexError):
            buffer[1]

    def test_sample_needs_enough_items(self, rng):
        buffer = ReplayBuffer(capacity=10, rng=rng)
        for i in range(3):
            buffer.push(_experience(i))
        assert buffer.sample(4) is None
        batch = buffer.sample(3)
        assert len(batch.experiences) == 3
        np.testing.assert_array_equal(batch.weights, np.ones(3))

    def test_zero_capacity_is_rejected(self, rng):
        with pytest.raises(ValueError):
            ReplayBuffer(capacity=0, rng=rng)

    def test_clear_empties_buffer(self, rng):
        buffer = ReplayBuffer(capacity=4, rng=rng)
        buffer.push(_experience(0))
        buffer.clear()
        assert len(buffer) == 0
        assert not buffer.is_ready(1)


class TestPrioritizedReplay:

    def test_probabilities_follow_priority_power(self, rng):
        buffer = ReplayBuffer(capacity=4, rng=rng, prioritized=True, alpha=1.0, epsilon=0.0)
        buffer.push(_experience(0), td_error=1.0)
        buffer.push(_experience(1), td_error=3.0)
        np.testing.assert_allclose(buffer.sampling_probabilities(), [0.25, 0.75])

    def test_new_items_default_to_max_priority(self, rng):
        buffer = ReplayBuffer(capacity=4, rng=rng, prioritized=True, alpha=1.0, epsilon=0.0)
        buffer.push(_experience(0), td_error=5.0)
        buffer.push(_experience(1))
        assert buffer.priorities[1] == pytest.approx(5.0)

    def test_high_priority_items_dominate_samples(self, rng):
        buffer = ReplayBuffer(capacity=2, rng=rng, prioritized=True, alpha=1.0, epsilon=0.0)
        buffer.push(_experience(0), td_error=0.01)
        buffer.push(_experience(1), td_error=100.0)
        batch = buffer.sample(200, beta=0.4)
        assert np.mean(batch.indices == 1) > 0.95

    def test_importance_weights_are_normalized(self, rng):
        buffer = ReplayBuffer(capacity=8, rng=rng, prioritized=True, alpha=0.6)
        for i in range(8):
            buffer.push(_experience(i), td_error=float(i + 1))
        batch = buffer.sample(16, beta=0.4)
        assert batch.weights.max() == pytest.approx(1.0)
        assert np.all(batch.weights > 0.0)

    def test_update_priorities(self, rng):
        buffer = ReplayBuffer(capacity=4, rng=rng, prioritized=True, epsilon=0.1)
        buffer.push(_experience(0), td_error=1.0)
        buffer.update_priorities([0], [-2.0])
        assert buffer.priorities[0] == pytest.approx(2.1)
        assert buffer.max_priority == pytest.approx(2.1)
