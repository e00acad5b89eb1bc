"""Small builders shared by the tests.

Keeps transitions and joint states readable inside the test bodies.
"""

from typing import Dict, Sequence

from zodiac_marl.structures import (
    Action,
    ActionType,
    Experience,
    JointState,
    PlayerSnapshot,
    Reward,
    State,
)


def make_state(values: Sequence[float], player_id: str = "agent_0") -> State:
    return State.from_features(values, player_id, timestamp=0.0)


def make_experience(state: State, action: Action, reward: float, next_state: State,
                    done: bool = False, next_actions: Sequence[Action] = ()) -> Experience:
    return Experience(
        state=state,
        action=action,
        reward=Reward.scalar(reward),
        next_state=next_state,
        done=done,
        next_available_actions=tuple(next_actions),
    )


def make_joint_state(players: Dict[str, PlayerSnapshot]) -> JointState:
    states = {pid: make_state([float(p.position), p.money / 1000.0], pid) for pid, p in players.items()}
    first = next(iter(states.values()))
    return JointState(global_state=first, agent_states=states, players=players)


ROLL = Action(ActionType.ROLL_DICE)
PASS = Action(ActionType.PASS_TURN)
SKILL = Action(ActionType.USE_SKILL)
