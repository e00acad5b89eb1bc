# ============================================================================
# File: buffer.py
# Description: Replay buffer for experience storage
# ============================================================================
"""
Replay Buffer module for zodiac_marl

Fixed-capacity ring of experiences. Once full, the slot at
``insert_count % capacity`` is overwritten. An optional parallel priority
array supports prioritized sampling with P(i) ∝ priority_i ** alpha.
"""

from typing import List, NamedTuple, Optional, Sequence

import numpy as np

from .structures import Experience


class ReplayBatch(NamedTuple):
    """A sampled mini-batch."""
    indices: np.ndarray
    experiences: List[Experience]
    weights: np.ndarray          # Importance-sampling weights, all 1 when uniform


class ReplayBuffer:
    """
    Experience replay buffer with optional prioritized sampling

    Attributes:
        capacity: Maximum number of stored experiences
        prioritized: Whether sampling is priority weighted
        alpha: Priority exponent
        epsilon: Constant added to |TD error| so no priority is zero
        insert_count: Total number of insertions so far
    """

    def __init__(self, capacity: int, rng: np.random.Generator, prioritized: bool = False,
                 alpha: float = 0.6, epsilon: float = 1e-6):
        """
        Initialize replay buffer

        Args:
            capacity: Maximum number of transitions to store
            rng: Random generator used for sampling
            prioritized: Sample proportionally to priority ** alpha
            alpha: Priority exponent
            epsilon: Small constant keeping priorities positive
        """
        if capacity <= 0:
            raise ValueError(f"Capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.rng = rng
        self.prioritized = prioritized
        self.alpha = alpha
        self.epsilon = epsilon
        self.buffer: List[Optional[Experience]] = [None] * capacity
        self.priorities = np.zeros(capacity, dtype=np.float64)
        self.insert_count = 0
        self.max_priority = 1.0

    def push(self, experience: Experience, td_error: Optional[float] = None) -> int:
        """
        Store a transition, overwriting the oldest slot once full

        Args:
            experience: Transition to store
            td_error: TD error used as priority; the highest priority seen so
                far is used when omitted

        Returns:
            Ring index the experience was written to
        """
        index = self.insert_count % self.capacity
        self.buffer[index] = experience
        if td_error is None:
            priority = self.max_priority
        else:
            priority = abs(float(td_error)) + self.epsilon
        self.priorities[index] = priority
        self.max_priority = max(self.max_priority, priority)
        self.insert_count += 1
        return index

    def sample(self, batch_size: int, beta: float = 0.4) -> Optional[ReplayBatch]:
        """
        Sample a batch of experiences (with replacement)

        Args:
            batch_size: Number of experiences to sample
            beta: Importance-sampling exponent for prioritized sampling

        Returns:
            ReplayBatch, or None when fewer than ``batch_size`` items are stored
        """
        if not self.is_ready(batch_size):
            return None
        size = len(self)
        if self.prioritized:
            probabilities = self.sampling_probabilities()
            indices = self.rng.choice(size, size=batch_size, p=probabilities)
            weights = (size * probabilities[indices]) ** (-beta)
            weights = weights / weights.max()
        else:
            indices = self.rng.integers(0, size, size=batch_size)
            weights = np.ones(batch_size)
        return ReplayBatch(indices, [self.buffer[i] for i in indices], weights)

    def sampling_probabilities(self) -> np.ndarray:
        """P(i) ∝ priority_i ** alpha over the filled slots."""
        scaled = self.priorities[:len(self)] ** self.alpha
        return scaled / scaled.sum()

    def update_priorities(self, indices: Sequence[int], td_errors: Sequence[float]):
        """Refresh priorities after a training step"""
        for index, error in zip(indices, td_errors):
            priority = abs(float(error)) + self.epsilon
            self.priorities[index] = priority
            self.max_priority = max(self.max_priority, priority)

    def __getitem__(self, index: int) -> Experience:
        if not 0 <= index < len(self):
            raise IndexError(f"Ring index {index} out of range for {len(self)} items")
        return self.buffer[index]

    def __len__(self) -> int:
        """Return current buffer size"""
        return min(self.insert_count, self.capacity)

    def is_ready(self, batch_size: int) -> bool:
        """Check if buffer has enough samples for training"""
        return len(self) >= batch_size

    def clear(self) -> None:
        """Clear all experiences from buffer"""
        self.buffer = [None] * self.capacity
        self.priorities[:] = 0.0
        self.insert_count = 0
        self.max_priority = 1.0
