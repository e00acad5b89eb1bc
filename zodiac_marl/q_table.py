"""
Value table module for tabular Q-learning.

This module implements the lookup-table value function, the eligibility
traces used for TD(λ) credit assignment, and convergence tracking.
"""

from collections import defaultdict, deque
from typing import Dict, Tuple, List, Optional, Iterable, Any

import numpy as np


class QTable:
    """
    State-action value table.

    States are addressed by their content key and actions by their table key.
    Entries are created lazily with ``initial_value`` the first time they are
    referenced and are never absent afterwards.

    Attributes:
        initial_value: Value of any unseen (state, action) pair
        values: state key -> action key -> value
        visit_counts: (state key, action key) -> number of updates
        state_visits: state key -> number of updates from that state
        total_updates: Number of updates applied
    """

    def __init__(self, initial_value: float = 0.0):
        """
        Initialize an empty table.

        Args:
            initial_value: Configured value of unseen entries
        """
        self.initial_value = initial_value
        self.values: Dict[str, Dict[str, float]] = defaultdict(self._new_row)
        self.visit_counts: Dict[Tuple[str, str], int] = defaultdict(int)
        self.state_visits: Dict[str, int] = defaultdict(int)
        self.total_updates = 0

    def _new_row(self) -> Dict[str, float]:
        return defaultdict(lambda: self.initial_value)

    def reset(self):
        """Reset all estimates."""
        self.values = defaultdict(self._new_row)
        self.visit_counts = defaultdict(int)
        self.state_visits = defaultdict(int)
        self.total_updates = 0

    def ensure_state(self, state_key: str, action_keys: Iterable[str] = ()) -> Dict[str, float]:
        """Create the row of ``state_key`` (and the given actions) if missing."""
        row = self.values[state_key]
        for action_key in action_keys:
            row[action_key]  # defaultdict access materializes the entry
        return row

    def get(self, state_key: str, action_key: str) -> float:
        return self.values[state_key][action_key]

    def set(self, state_key: str, action_key: str, value: float):
        self.values[state_key][action_key] = float(value)

    def add(self, state_key: str, action_key: str, delta: float) -> float:
        row = self.values[state_key]
        row[action_key] = row[action_key] + delta
        return row[action_key]

    def max_value(self, state_key: str, action_keys: List[str]) -> float:
        """
        Maximum value over ``action_keys`` in ``state_key``.

        Returns 0.0 when no action is available.
        """
        if not action_keys:
            return 0.0
        row = self.values[state_key]
        return max(row[key] for key in action_keys)

    def best_action(self, state_key: str, action_keys: List[str]) -> Optional[str]:
        """Greedy action key; ties go to the first maximum encountered."""
        row = self.values[state_key]
        best_key, best_value = None, -np.inf
        for key in action_keys:
            if row[key] > best_value:
                best_key, best_value = key, row[key]
        return best_key

    def record_visit(self, state_key: str, action_key: str):
        self.visit_counts[(state_key, action_key)] += 1
        self.state_visits[state_key] += 1
        self.total_updates += 1

    def most_visited(self, limit: int = 10) -> List[Tuple[str, int]]:
        """States ordered by visit count."""
        ranked = sorted(self.state_visits.items(), key=lambda item: item[1], reverse=True)
        return ranked[:limit]

    def greedy_policy(self) -> Dict[str, str]:
        """Greedy action of every known state."""
        return {
            key: self.best_action(key, list(row))
            for key, row in self.values.items() if row
        }

    def __len__(self) -> int:
        return len(self.values)

    def __contains__(self, state_key: str) -> bool:
        return state_key in self.values

    def to_dict(self) -> Dict[str, Any]:
        """JSON friendly copy of the table."""
        return {
            "initial_value": self.initial_value,
            "values": {s: dict(row) for s, row in self.values.items()},
            "visit_counts": [[s, a, n] for (s, a), n in self.visit_counts.items()],
            "state_visits": dict(self.state_visits),
            "total_updates": self.total_updates,
        }

    def load_dict(self, data: Dict[str, Any]):
        """Replace the table content with a ``to_dict`` copy."""
        self.initial_value = float(data.get("initial_value", self.initial_value))
        self.reset()
        for s, row in data["values"].items():
            target = self.values[s]
            for a, value in row.items():
                target[a] = float(value)
        for s, a, n in data.get("visit_counts", []):
            self.visit_counts[(s, a)] = int(n)
        for s, n in data.get("state_visits", {}).items():
            self.state_visits[s] = int(n)
        self.total_updates = int(data.get("total_updates", 0))

    def get_statistics(self) -> Dict[str, float]:
        """Summary statistics of the table."""
        all_values = [v for row in self.values.values() for v in row.values()]
        if not all_values:
            return {"n_states": 0, "n_entries": 0, "mean_value": 0.0,
                    "max_value": 0.0, "min_value": 0.0}
        return {
            "n_states": len(self.values),
            "n_entries": len(all_values),
            "mean_value": float(np.mean(all_values)),
            "max_value": float(np.max(all_values)),
            "min_value": float(np.min(all_values)),
        }


class EligibilityTraces:
    """
    Replacing eligibility traces for TD(λ).

    Attributes:
        traces: (state key, action key) -> trace
        threshold: Traces below this value are dropped after decaying
    """

    def __init__(self, threshold: float = 0.01):
        self.threshold = threshold
        self.traces: Dict[Tuple[str, str], float] = {}

    def mark(self, state_key: str, action_key: str):
        """Set the trace of the visited pair to 1."""
        self.traces[(state_key, action_key)] = 1.0

    def items(self) -> List[Tuple[Tuple[str, str], float]]:
        return list(self.traces.items())

    def decay(self, factor: float):
        """Multiply every trace by ``factor`` and drop the ones that faded."""
        self.traces = {
            pair: trace * factor
            for pair, trace in self.traces.items()
            if trace * factor >= self.threshold
        }

    def clear(self):
        self.traces = {}

    def __len__(self) -> int:
        return len(self.traces)

    def __getitem__(self, pair: Tuple[str, str]) -> float:
        return self.traces.get(pair, 0.0)


class ConvergenceTracker:
    """Tracks the magnitude of recent value changes."""

    # Reported when the recent changes have no spread at all
    MAX_STABILITY = 1000.0

    def __init__(self, window: int = 100):
        self.changes = deque(maxlen=window)

    def record(self, change: float):
        self.changes.append(abs(change))

    @property
    def mean_change(self) -> float:
        return float(np.mean(self.changes)) if self.changes else 0.0

    @property
    def max_change(self) -> float:
        return float(np.max(self.changes)) if self.changes else 0.0

    @property
    def stability_index(self) -> float:
        """Inverse standard deviation of the recent changes."""
        if not self.changes:
            return 0.0
        std = float(np.std(self.changes))
        return self.MAX_STABILITY if std == 0.0 else 1.0 / std

    def get_metrics(self) -> Dict[str, float]:
        return {
            "mean_change": self.mean_change,
            "max_change": self.max_change,
            "stability_index": self.stability_index,
        }
