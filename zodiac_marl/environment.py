# ============================================================================
# File: environment.py
# Description: Environment adapter contract and a small board-game simulator
# ============================================================================
"""
Environment module

``Environment`` is the only contact point between the training core and a
game engine. ``BoardGameSimulator`` is a compact implementation of the
contract (a ring of purchasable squares, dice movement, rent, development
and mortgages) used by the CLI and the tests.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple, Optional

import numpy as np

from .communication import CommunicationChannel, MessageReceiver
from .config import RewardWeights
from .coordination import positional_neighbors
from .encoder import GameSnapshot, StateEncoder
from .rewards import RewardCalculator
from .structures import (
    Action,
    ActionType,
    JointAction,
    JointState,
    Message,
    MultiAgentReward,
    PlayerSnapshot,
    State,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionResult:
    """Outcome of executing one agent's action; failures are values, not errors."""
    success: bool
    reason: Optional[str] = None
    used_skill: bool = False


class StepOutcome(NamedTuple):
    next_state: JointState
    rewards: MultiAgentReward
    done: bool
    results: Dict[str, ActionResult]


class Environment(ABC):
    """Contract the training core consumes."""

    @abstractmethod
    def reset(self) -> JointState:
        """Start a new game and return the initial joint state."""

    @abstractmethod
    def step(self, joint_action: JointAction) -> StepOutcome:
        """Execute a joint action."""

    @abstractmethod
    def available_actions(self, state: JointState, agent_id: Optional[str] = None) -> List[Action]:
        """Legal actions of ``agent_id`` (the active player when omitted)."""

    @abstractmethod
    def add_agent(self, agent: MessageReceiver) -> None:
        ...

    @abstractmethod
    def remove_agent(self, agent_id: str) -> None:
        ...

    @abstractmethod
    def agent_neighbors(self, agent_id: str) -> List[str]:
        """Agents near ``agent_id`` on the board, for callers outside the training loop."""

    @abstractmethod
    def deliver_message(self, message: Message) -> bool:
        ...

    @abstractmethod
    def broadcast_message(self, message: Message) -> int:
        ...


@dataclass
class _Player:
    player_id: str
    money: float
    position: int = 0
    properties: List[str] = field(default_factory=list)
    mortgaged: List[str] = field(default_factory=list)
    available_skills: int = 2
    used_skills: int = 0
    bankrupt: bool = False

    def snapshot(self, houses: Dict[str, int]) -> PlayerSnapshot:
        owned_houses = [houses.get(p, 0) for p in self.properties]
        return PlayerSnapshot(
            player_id=self.player_id,
            position=self.position,
            money=self.money,
            properties=tuple(self.properties),
            houses=sum(h for h in owned_houses if h < 5),
            hotels=sum(1 for h in owned_houses if h >= 5),
            mortgaged=tuple(self.mortgaged),
            available_skills=self.available_skills,
            used_skills=self.used_skills,
            bankrupt=self.bankrupt,
        )


class BoardGameSimulator(Environment):
    """
    Minimal economic board game.

    Every square not divisible by five is a property priced
    ``100 + 10 * index``. Rent is a tenth of the price, doubled per house.
    The game ends after ``max_rounds`` steps or when one solvent player is
    left; the richest solvent player wins.

    Attributes:
        board_size: Number of squares
        starting_money: Money of every player at reset
        max_rounds: Step limit of a game
        channel: Message routing between registered agents
    """

    PASS_START_BONUS = 200.0
    MAX_HOUSES = 5
    MORTGAGE_RATE = 0.5
    UNMORTGAGE_RATE = 0.55
    SKILL_BONUS = 50.0

    def __init__(self, rng: np.random.Generator, board_size: int = 40,
                 starting_money: float = 1500.0, max_rounds: int = 200,
                 reward_weights: Optional[RewardWeights] = None,
                 channel: Optional[CommunicationChannel] = None):
        self.rng = rng
        self.board_size = board_size
        self.starting_money = starting_money
        self.max_rounds = max_rounds
        self.encoder = StateEncoder()
        self.rewards = RewardCalculator(reward_weights)
        self.channel = channel or CommunicationChannel()
        self.agent_ids: List[str] = []
        self.prices = {f"p{i}": 100.0 + 10.0 * i for i in range(board_size) if i % 5 != 0}
        self.players: Dict[str, _Player] = {}
        self.owners: Dict[str, str] = {}
        self.houses: Dict[str, int] = {}
        self.round_number = 0
        self.current_player_index = 0

    # ------------------------------------------------------------------
    # Agents and messages
    # ------------------------------------------------------------------

    def add_agent(self, agent: MessageReceiver) -> None:
        if agent.agent_id not in self.agent_ids:
            self.agent_ids.append(agent.agent_id)
        self.channel.register(agent)

    def remove_agent(self, agent_id: str) -> None:
        if agent_id in self.agent_ids:
            self.agent_ids.remove(agent_id)
        self.players.pop(agent_id, None)
        self.channel.unregister(agent_id)

    def agent_neighbors(self, agent_id: str, distance: int = 3) -> List[str]:
        positions = {p.player_id: p.position for p in self.players.values()}
        return positional_neighbors(positions, agent_id, distance)

    def deliver_message(self, message: Message) -> bool:
        return self.channel.deliver(message)

    def broadcast_message(self, message: Message) -> int:
        return self.channel.broadcast(message)

    # ------------------------------------------------------------------
    # Game state
    # ------------------------------------------------------------------

    def square_property(self, position: int) -> Optional[str]:
        property_id = f"p{position}"
        return property_id if property_id in self.prices else None

    def rent(self, property_id: str) -> float:
        return self.prices[property_id] / 10.0 * (2 ** self.houses.get(property_id, 0))

    def _game_snapshot(self) -> GameSnapshot:
        players = tuple(p.snapshot(self.houses) for p in self.players.values())
        active = players[self.current_player_index % len(players)] if players else None
        square = self.square_property(active.position) if active else None
        phase = ("early" if self.round_number < self.max_rounds / 3
                 else "mid" if self.round_number < 2 * self.max_rounds / 3 else "late")
        return GameSnapshot(
            players=players,
            current_player_index=self.current_player_index,
            round_number=self.round_number,
            phase=phase,
            current_rent=self.rent(square) if square else 0.0,
            development_cost=self.prices[square] / 2.0 if square else 0.0,
            mortgage_value=self.prices[square] * self.MORTGAGE_RATE if square else 0.0,
        )

    def observe(self) -> JointState:
        return self.encoder.encode_joint(self._game_snapshot(), list(self.agent_ids))

    def reset(self) -> JointState:
        self.players = {aid: _Player(aid, self.starting_money) for aid in self.agent_ids}
        self.owners = {}
        self.houses = {}
        self.round_number = 0
        self.current_player_index = 0
        return self.observe()

    def available_actions(self, state: JointState, agent_id: Optional[str] = None) -> List[Action]:
        agent_id = agent_id or state.global_state.player_id
        player = self.players.get(agent_id)
        actions = [Action(ActionType.ROLL_DICE)]
        if player is None or player.bankrupt:
            return [Action(ActionType.PASS_TURN)]

        square = self.square_property(player.position)
        if square and square not in self.owners and player.money >= self.prices[square]:
            actions.append(Action(ActionType.BUY_PROPERTY, target=square))
        for property_id in player.properties:
            if property_id in player.mortgaged:
                if player.money >= self.prices[property_id] * self.UNMORTGAGE_RATE:
                    actions.append(Action(ActionType.UNMORTGAGE_PROPERTY, target=property_id))
                continue
            if (self.houses.get(property_id, 0) < self.MAX_HOUSES and
                    player.money >= self.prices[property_id] / 2.0):
                actions.append(Action(ActionType.DEVELOP_PROPERTY, target=property_id))
            actions.append(Action(ActionType.MORTGAGE_PROPERTY, target=property_id))
        if player.available_skills > 0:
            actions.append(Action(ActionType.USE_SKILL))
        others = [p for p in self.players.values() if p.player_id != agent_id and not p.bankrupt]
        if others:
            partner = max(others, key=lambda p: p.money)
            actions.append(Action(ActionType.TRADE_OFFER, target=partner.player_id))
        actions.append(Action(ActionType.PASS_TURN))
        return actions

    # ------------------------------------------------------------------
    # Step
    # ------------------------------------------------------------------

    def _execute(self, player: _Player, action: Action) -> ActionResult:
        if player.bankrupt:
            return ActionResult(False, "bankrupt")
        kind, target = action.type, action.target

        if kind == ActionType.ROLL_DICE:
            roll = int(self.rng.integers(1, 7) + self.rng.integers(1, 7))
            new_position = player.position + roll
            if new_position >= self.board_size:
                player.money += self.PASS_START_BONUS
            player.position = new_position % self.board_size
            square = self.square_property(player.position)
            owner = self.owners.get(square) if square else None
            if owner is not None and owner != player.player_id and square not in self.players[owner].mortgaged:
                due = self.rent(square)
                player.money -= due
                self.players[owner].money += due
            return ActionResult(True)

        if kind == ActionType.BUY_PROPERTY:
            if target is None or target not in self.prices:
                return ActionResult(False, "missing_target")
            if target in self.owners:
                return ActionResult(False, "already_owned")
            if self.square_property(player.position) != target:
                return ActionResult(False, "not_on_square")
            if player.money < self.prices[target]:
                return ActionResult(False, "insufficient_funds")
            player.money -= self.prices[target]
            player.properties.append(target)
            self.owners[target] = player.player_id
            return ActionResult(True)

        if kind == ActionType.DEVELOP_PROPERTY:
            if target not in player.properties or target in player.mortgaged:
                return ActionResult(False, "not_owner")
            cost = self.prices[target] / 2.0
            if self.houses.get(target, 0) >= self.MAX_HOUSES or player.money < cost:
                return ActionResult(False, "cannot_develop")
            player.money -= cost
            self.houses[target] = self.houses.get(target, 0) + 1
            return ActionResult(True)

        if kind == ActionType.MORTGAGE_PROPERTY:
            if target not in player.properties or target in player.mortgaged:
                return ActionResult(False, "not_mortgageable")
            player.money += self.prices[target] * self.MORTGAGE_RATE
            player.mortgaged.append(target)
            return ActionResult(True)

        if kind == ActionType.UNMORTGAGE_PROPERTY:
            cost = self.prices.get(target, 0.0) * self.UNMORTGAGE_RATE
            if target not in player.mortgaged or player.money < cost:
                return ActionResult(False, "not_unmortgageable")
            player.money -= cost
            player.mortgaged.remove(target)
            return ActionResult(True)

        if kind == ActionType.USE_SKILL:
            if player.available_skills <= 0:
                return ActionResult(False, "no_skill_available")
            player.available_skills -= 1
            player.used_skills += 1
            player.money += self.SKILL_BONUS
            return ActionResult(True, used_skill=True)

        if kind == ActionType.TRADE_OFFER:
            if target not in self.players or target == player.player_id:
                return ActionResult(False, "missing_target")
            return ActionResult(True)

        return ActionResult(True)

    def step(self, joint_action: JointAction) -> StepOutcome:
        before = {aid: p.snapshot(self.houses) for aid, p in self.players.items()}
        results: Dict[str, ActionResult] = {}
        for agent_id, action in joint_action.actions.items():
            player = self.players.get(agent_id)
            if player is None:
                results[agent_id] = ActionResult(False, "unknown_agent")
                continue
            results[agent_id] = self._execute(player, action)
            if player.money < 0:
                player.bankrupt = True
            if not results[agent_id].success:
                logger.debug("Action %s of %s failed: %s", action.key, agent_id, results[agent_id].reason)

        self.round_number += 1
        if self.players:
            self.current_player_index = (self.current_player_index + 1) % len(self.players)

        solvent = [p for p in self.players.values() if not p.bankrupt]
        done = self.round_number >= self.max_rounds or len(solvent) <= 1
        winner = max(solvent, key=lambda p: p.money).player_id if done and solvent else None

        after = {aid: p.snapshot(self.houses) for aid, p in self.players.items()}
        individual = {}
        for agent_id, result in results.items():
            if agent_id not in after:
                continue
            individual[agent_id] = self.rewards.individual_reward(
                before[agent_id], after[agent_id],
                success=result.success, won=agent_id == winner, used_skill=result.used_skill)
        rewards = self.rewards.combine(individual, joint_action, after)
        return StepOutcome(self.observe(), rewards, done, results)

    def state_of(self, agent_id: str) -> State:
        return self.observe().state_of(agent_id)
