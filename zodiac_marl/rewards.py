"""
Reward shaping for the board game.

Builds additive per-agent reward breakdowns from consecutive player
snapshots and aggregates them into a multi-agent reward.
"""

from typing import Dict, Mapping, Optional

import numpy as np

from .config import RewardWeights
from .structures import JointAction, MultiAgentReward, PlayerSnapshot, Reward

# Component scales
MONEY_SCALE = 1000.0
PROPERTY_VALUE = 100.0
WIN_BONUS = 1000.0
SKILL_VALUE = 50.0
EFFICIENCY_VALUE = 10.0
COMMUNICATION_VALUE = 5.0
SIGNAL_VALUE = 10.0
COMPETITION_PENALTY = 50.0
WEALTH_VARIANCE_LIMIT = 1e6


class RewardCalculator:
    """
    Computes shaped rewards.

    Attributes:
        weights: Multiplier of each component
    """

    def __init__(self, weights: Optional[RewardWeights] = None):
        self.weights = weights or RewardWeights()

    def individual_reward(self, before: PlayerSnapshot, after: PlayerSnapshot,
                          success: bool = True, won: bool = False,
                          used_skill: bool = False) -> Reward:
        """
        Reward of one agent for one step.

        Args:
            before: Player snapshot before the step
            after: Player snapshot after the step
            success: Whether the agent's action executed
            won: Whether the agent won the game this step
            used_skill: Whether the agent used a skill this step

        Returns:
            Reward whose components sum to its total
        """
        w = self.weights
        components = {
            "money": (after.money - before.money) / MONEY_SCALE * w.money,
            "properties": (len(after.properties) - len(before.properties)) * PROPERTY_VALUE * w.properties,
        }
        if won:
            components["game_win"] = WIN_BONUS * w.game_win
        if used_skill:
            components["skill_usage"] = SKILL_VALUE * w.skill_usage
        if success:
            components["efficiency"] = EFFICIENCY_VALUE * w.efficiency
        return Reward.from_components(components)

    def cooperation_bonus(self, joint_action: JointAction) -> float:
        """Bonus for messages and coordination signals of a joint action."""
        raw = (len(joint_action.communications) * COMMUNICATION_VALUE +
               len(joint_action.signals) * SIGNAL_VALUE)
        return raw * self.weights.cooperation

    @staticmethod
    def competition_penalty(players: Mapping[str, PlayerSnapshot]) -> float:
        """Penalty applied when wealth is spread very unevenly."""
        if len(players) < 2:
            return 0.0
        variance = float(np.var([p.money for p in players.values()]))
        return COMPETITION_PENALTY if variance > WEALTH_VARIANCE_LIMIT else 0.0

    @staticmethod
    def cooperation_level(joint_action: JointAction) -> float:
        """
        min(1, 0.1 * messages + 0.2 * signals + 0.5 * action diversity deficit)
        """
        n = len(joint_action.actions)
        if n == 0:
            return 0.0
        unique_types = len({a.type for a in joint_action.actions.values()})
        level = (len(joint_action.communications) * 0.1 +
                 len(joint_action.signals) * 0.2 +
                 (1.0 - unique_types / n) * 0.5)
        return min(1.0, level)

    def combine(self, individual: Dict[str, Reward], joint_action: JointAction,
                players: Mapping[str, PlayerSnapshot]) -> MultiAgentReward:
        """Aggregate per-agent rewards of one step."""
        return MultiAgentReward(
            individual=individual,
            shared=float(sum(r.total for r in individual.values())),
            cooperation_bonus=self.cooperation_bonus(joint_action),
            competition_penalty=self.competition_penalty(players),
            cooperation_level=self.cooperation_level(joint_action),
        )
