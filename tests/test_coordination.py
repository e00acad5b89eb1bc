"""Tests for the coordination protocols."""

import pytest

from zodiac_marl.config import ConfigError, CoordinationConfig
from zodiac_marl.coordination import CONFLICT_REASON, CoordinationMechanism, detect_conflicts, positional_neighbors
from zodiac_marl.structures import (
    Action,
    ActionIntention,
    ActionType,
    ConflictResolution,
    CoordinationDirective,
    HierarchyAssignment,
    PlayerSnapshot,
)

from marl_test_utils import PASS, ROLL, make_joint_state


def _mechanism(protocol: str, **kwargs) -> CoordinationMechanism:
    return CoordinationMechanism(CoordinationConfig(protocol=protocol, **kwargs), clock=lambda: 1.0)


def _players(**positions_and_money):
    return {pid: PlayerSnapshot(pid, position=pos, money=money)
            for pid, (pos, money) in positions_and_money.items()}


BUY_P1 = Action(ActionType.BUY_PROPERTY, target="p1")


class TestConflictDetection:

    def test_shared_target_is_a_conflict(self):
        conflicts = detect_conflicts({"a": BUY_P1, "b": ROLL, "c": BUY_P1})
        assert len(conflicts) == 1
        assert conflicts[0].resource == "p1"
        assert conflicts[0].agent_ids == ("a", "c")
        assert conflicts[0].severity == 2

    def test_untargeted_actions_never_conflict(self):
        assert detect_conflicts({"a": ROLL, "b": ROLL}) == []

    def test_trade_offers_to_the_same_player_do_not_conflict(self):
        offer = Action(ActionType.TRADE_OFFER, target="c")
        assert detect_conflicts({"a": offer, "b": offer}) == []

    def test_trade_offers_survive_centralized_coordination(self):
        state = make_joint_state(_players(a=(0, 100.0), b=(1, 100.0), c=(2, 900.0)))
        offer = Action(ActionType.TRADE_OFFER, target="c")
        mechanism = _mechanism("centralized")
        joint = mechanism.coordinate({"a": offer, "b": offer, "c": ROLL}, state)
        assert joint.actions == {"a": offer, "b": offer, "c": ROLL}
        assert dict(joint.signals) == {}
        assert mechanism.conflicts_resolved == 0

    def test_positional_neighbors(self):
        positions = {"a": 0, "b": 3, "c": 4}
        assert positional_neighbors(positions, "a", 3) == ["b"]
        assert positional_neighbors(positions, "c", 3) == ["b"]
        assert positional_neighbors(positions, "z", 3) == []


class TestProtocols:

    def test_none_passes_actions_through(self):
        state = make_joint_state(_players(a=(0, 100.0), b=(1, 100.0)))
        joint = _mechanism("none").coordinate({"a": BUY_P1, "b": BUY_P1}, state)
        assert joint.actions == {"a": BUY_P1, "b": BUY_P1}
        assert joint.communications == ()
        assert dict(joint.signals) == {}

    def test_centralized_first_claimant_keeps_action(self):
        state = make_joint_state(_players(a=(0, 100.0), b=(1, 100.0)))
        mechanism = _mechanism("centralized")
        joint = mechanism.coordinate({"a": BUY_P1, "b": BUY_P1}, state)

        assert joint.actions["a"] == BUY_P1
        substitute = joint.actions["b"]
        assert substitute.type == ActionType.PASS_TURN
        assert substitute.confidence == 0.5
        assert substitute.substitution.reason == CONFLICT_REASON
        assert substitute.substitution.original == BUY_P1

        signal = joint.signals["b"]
        assert isinstance(signal, ConflictResolution)
        assert signal.resource == "p1"
        assert signal.severity == 2
        assert signal.original_action == BUY_P1
        assert "a" not in joint.signals
        assert mechanism.conflicts_resolved == 1

    def test_centralized_without_conflicts_is_unchanged(self):
        state = make_joint_state(_players(a=(0, 100.0), b=(1, 100.0)))
        other = Action(ActionType.BUY_PROPERTY, target="p2")
        joint = _mechanism("centralized").coordinate({"a": BUY_P1, "b": other}, state)
        assert joint.actions == {"a": BUY_P1, "b": other}
        assert dict(joint.signals) == {}

    def test_distributed_informs_neighbors_only(self):
        state = make_joint_state(_players(a=(0, 100.0), b=(2, 100.0), c=(20, 100.0)))
        mechanism = _mechanism("distributed", neighbor_distance=3)
        joint = mechanism.coordinate({"a": ROLL, "b": PASS, "c": ROLL}, state)

        pairs = {(m.sender_id, m.receiver_id) for m in joint.communications}
        assert pairs == {("a", "b"), ("b", "a")}
        for message in joint.communications:
            assert isinstance(message.payload, ActionIntention)
            assert message.payload.action == joint.actions[message.sender_id]
        assert joint.actions == {"a": ROLL, "b": PASS, "c": ROLL}

    def test_hierarchical_richest_agent_leads(self):
        state = make_joint_state(_players(a=(0, 100.0), b=(5, 900.0), c=(9, 300.0)))
        buy = Action(ActionType.BUY_PROPERTY, target="p5")
        joint = _mechanism("hierarchical").coordinate({"a": ROLL, "b": buy, "c": ROLL}, state)

        assert isinstance(joint.signals["b"], HierarchyAssignment)
        assert joint.signals["b"].followers == ("a", "c")
        receivers = [m.receiver_id for m in joint.communications]
        assert receivers == ["a", "c"]
        directive = joint.communications[0].payload
        assert isinstance(directive, CoordinationDirective)
        assert directive.leader_id == "b"
        assert directive.suggested_action.type == ActionType.DEVELOP_PROPERTY
        assert directive.suggested_action.confidence == 0.7
        assert directive.reason == "support_leader_strategy"

    def test_hierarchical_default_suggestion_is_pass(self):
        state = make_joint_state(_players(a=(0, 500.0), b=(5, 100.0)))
        joint = _mechanism("hierarchical").coordinate({"a": ROLL, "b": ROLL}, state)
        directive = joint.communications[0].payload
        assert directive.suggested_action.type == ActionType.PASS_TURN
        assert directive.suggested_action.confidence == 0.5

    def test_leader_ties_go_to_first_agent(self):
        state = make_joint_state(_players(a=(0, 500.0), b=(5, 500.0)))
        assert _mechanism("hierarchical").select_leader(["a", "b"], state) == "a"

    def test_unknown_protocol_is_rejected(self):
        with pytest.raises(ConfigError):
            CoordinationConfig(protocol="anarchy")
