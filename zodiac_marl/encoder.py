"""
State encoding for the board game.

Turns a raw game snapshot into the fixed-length, roughly unit-scaled
feature vector consumed by every learner.
"""

import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np

from .structures import JointState, PlayerSnapshot, State


FEATURE_NAMES: Tuple[str, ...] = (
    "money",
    "position",
    "property_count",
    "houses",
    "hotels",
    "in_jail",
    "turns_in_jail",
    "double_roll_count",
    "game_phase",
    "round",
    "player_count",
    "active_player_index",
    "current_rent",
    "development_cost",
    "mortgage_value",
    "available_skills",
    "used_skills",
    "seasonal_bonus",
)

STATE_SIZE = len(FEATURE_NAMES)

# Game phase encoding: early game is 1.0, late game 0.0
PHASE_VALUES: Dict[str, float] = {"early": 1.0, "mid": 0.5, "late": 0.0}


@dataclass(frozen=True)
class GameSnapshot:
    """Raw game facts handed over by the environment adapter."""
    players: Tuple[PlayerSnapshot, ...]
    current_player_index: int = 0
    round_number: int = 0
    phase: str = "early"
    current_rent: float = 0.0
    development_cost: float = 0.0
    mortgage_value: float = 0.0

    def player(self, player_id: str) -> Optional[PlayerSnapshot]:
        for snapshot in self.players:
            if snapshot.player_id == player_id:
                return snapshot
        return None


class StateEncoder:
    """
    Encodes game snapshots into ``State`` objects.

    Each feature is divided by a fixed scale so that values of a typical game
    fall roughly in [0, 1]. Missing players encode as an all-zero player block.
    """

    SCALES: Dict[str, float] = {
        "money": 10000.0,
        "position": 40.0,
        "property_count": 40.0,
        "houses": 200.0,
        "hotels": 50.0,
        "turns_in_jail": 3.0,
        "double_roll_count": 3.0,
        "round": 100.0,
        "player_count": 8.0,
        "active_player_index": 8.0,
        "current_rent": 5000.0,
        "development_cost": 1000.0,
        "mortgage_value": 5000.0,
        "available_skills": 10.0,
        "used_skills": 10.0,
        "seasonal_bonus": 2.0,
    }

    def __init__(self, clock=time.time):
        self.clock = clock

    @property
    def state_size(self) -> int:
        return STATE_SIZE

    def features(self, game: GameSnapshot, player_id: str) -> np.ndarray:
        """
        Build the feature vector of ``player_id``.

        Args:
            game: Raw game snapshot
            player_id: Player whose point of view is encoded

        Returns:
            Array of shape [STATE_SIZE]
        """
        player = game.player(player_id) or PlayerSnapshot(player_id=player_id, money=0.0)
        s = self.SCALES
        values = [
            player.money / s["money"],
            player.position / s["position"],
            len(player.properties) / s["property_count"],
            player.houses / s["houses"],
            player.hotels / s["hotels"],
            1.0 if player.in_jail else 0.0,
            player.turns_in_jail / s["turns_in_jail"],
            player.double_roll_count / s["double_roll_count"],
            PHASE_VALUES.get(game.phase, 0.0),
            game.round_number / s["round"],
            len(game.players) / s["player_count"],
            game.current_player_index / s["active_player_index"],
            game.current_rent / s["current_rent"],
            game.development_cost / s["development_cost"],
            game.mortgage_value / s["mortgage_value"],
            player.available_skills / s["available_skills"],
            player.used_skills / s["used_skills"],
            player.seasonal_bonus / s["seasonal_bonus"],
        ]
        return np.asarray(values, dtype=np.float64)

    def encode(self, game: GameSnapshot, player_id: str,
               timestamp: Optional[float] = None) -> State:
        """Encode one player's view as a ``State``."""
        stamp = self.clock() if timestamp is None else timestamp
        return State.from_features(self.features(game, player_id), player_id, timestamp=stamp)

    def encode_joint(self, game: GameSnapshot, agent_ids: List[str]) -> JointState:
        """Encode the view of every agent plus the active player's view."""
        stamp = self.clock()
        agent_states = {aid: self.encode(game, aid, timestamp=stamp) for aid in agent_ids}
        if game.players:
            index = min(game.current_player_index, len(game.players) - 1)
            active_id = game.players[index].player_id
        else:
            active_id = agent_ids[0] if agent_ids else "none"
        return JointState(
            global_state=self.encode(game, active_id, timestamp=stamp),
            agent_states=agent_states,
            players={p.player_id: p for p in game.players},
            round_number=game.round_number,
            timestamp=stamp,
        )
