"""
zodiac_marl

Multi-agent reinforcement learning core for a turn-based economic board
game: tabular Q-learning with eligibility traces, deep Q-networks with
double/dueling variants and prioritized replay, actor-critic with GAE,
coordination protocols and inter-agent messaging.
"""

from .config import Config, AgentConfig, TabularConfig, DQNConfig, ActorCriticConfig
from .config import NetworkConfig, OptimizerConfig, ExplorationConfig
from .config import CoordinationConfig, TrainingConfig, RewardWeights, LoggingConfig
from .config import AlgorithmType, AgentType, OptimizerType, CoordinationProtocol
from .config import ConfigError, ModelFormatError, get_default_config, get_small_test_config
from .structures import (
    ActionType, Action, State, JointState, PlayerSnapshot, Reward, MultiAgentReward,
    Experience, Message, MessageKind, JointAction, BROADCAST,
)
from .encoder import StateEncoder, GameSnapshot
from .buffer import ReplayBuffer
from .networks import FeedForwardNetwork
from .learning import LearningAlgorithm
from .tabular import TabularQLearner
from .dqn import DQNLearner, DoubleDQNLearner
from .actor_critic import ActorCriticLearner, ReinforceLearner, compute_gae
from .coordination import CoordinationMechanism
from .communication import CommunicationChannel
from .events import EventBus
from .agent import Agent, MultiAgentSystem, build_algorithm
from .environment import Environment, BoardGameSimulator, ActionResult
from .rewards import RewardCalculator
from .trainer import TrainingOrchestrator
from .utils import make_rng, setup_logging

__version__ = "1.0.0"

__all__ = [
    # Config
    'Config',
    'AgentConfig',
    'TabularConfig',
    'DQNConfig',
    'ActorCriticConfig',
    'NetworkConfig',
    'OptimizerConfig',
    'ExplorationConfig',
    'CoordinationConfig',
    'TrainingConfig',
    'RewardWeights',
    'LoggingConfig',
    'AlgorithmType',
    'AgentType',
    'OptimizerType',
    'CoordinationProtocol',
    'ConfigError',
    'ModelFormatError',
    'get_default_config',
    'get_small_test_config',
    # Data model
    'ActionType',
    'Action',
    'State',
    'JointState',
    'PlayerSnapshot',
    'Reward',
    'MultiAgentReward',
    'Experience',
    'Message',
    'MessageKind',
    'JointAction',
    'BROADCAST',
    'StateEncoder',
    'GameSnapshot',
    # Learners
    'ReplayBuffer',
    'FeedForwardNetwork',
    'LearningAlgorithm',
    'TabularQLearner',
    'DQNLearner',
    'DoubleDQNLearner',
    'ActorCriticLearner',
    'ReinforceLearner',
    'compute_gae',
    # Multi-agent
    'CoordinationMechanism',
    'CommunicationChannel',
    'EventBus',
    'Agent',
    'MultiAgentSystem',
    'build_algorithm',
    # Training
    'Environment',
    'BoardGameSimulator',
    'ActionResult',
    'RewardCalculator',
    'TrainingOrchestrator',
    'make_rng',
    'setup_logging',
]
