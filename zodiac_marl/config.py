"""
Configuration module for the zodiac_marl training core.

This module contains all hyperparameters and configuration settings for
the learning algorithms, the coordination layer and the training loop.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import List, Optional, Dict, Any, Type, TypeVar


class ConfigError(ValueError):
    """Raised when a configuration value cannot be honored."""


class ModelFormatError(ValueError):
    """Raised when a saved model blob does not fit the model loading it."""


E = TypeVar("E", bound=Enum)


def parse_enum(enum_cls: Type[E], value: Any, what: str) -> E:
    """
    Parse a string (or enum member) into ``enum_cls``.

    Args:
        enum_cls: Target enum class
        value: Raw value, usually a string from a config file or the CLI
        what: Human readable name of the setting, used in the error

    Returns:
        The matching enum member

    Raises:
        ConfigError: If ``value`` names no member of ``enum_cls``
    """
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        choices = ", ".join(member.value for member in enum_cls)
        raise ConfigError(f"Unknown {what} '{value}' (expected one of: {choices})") from None


class AlgorithmType(str, Enum):
    """Learning algorithm identifiers."""
    Q_LEARNING = "q_learning"
    DQN = "dqn"
    DOUBLE_DQN = "double_dqn"
    ACTOR_CRITIC = "actor_critic"
    REINFORCE = "reinforce"


class AgentType(str, Enum):
    """Behavioral type of an agent."""
    INDEPENDENT = "independent"
    COOPERATIVE = "cooperative"
    COMPETITIVE = "competitive"
    MIXED = "mixed"


class OptimizerType(str, Enum):
    ADAM = "adam"
    SGD = "sgd"
    RMSPROP = "rmsprop"


class CoordinationProtocol(str, Enum):
    NONE = "none"
    CENTRALIZED = "centralized"
    DISTRIBUTED = "distributed"
    HIERARCHICAL = "hierarchical"


ACTIVATIONS = ("relu", "tanh", "sigmoid", "linear")


@dataclass
class NetworkConfig:
    """Configuration for a dense feed-forward network."""
    hidden_layers: List[int] = field(default_factory=lambda: [128, 64])
    activation: str = "relu"
    output_activation: str = "linear"

    def __post_init__(self):
        if any(size <= 0 for size in self.hidden_layers):
            raise ConfigError(f"Hidden layer sizes must be positive, got {self.hidden_layers}")
        for name in (self.activation, self.output_activation):
            if name not in ACTIVATIONS:
                raise ConfigError(f"Unknown activation '{name}' (expected one of: {', '.join(ACTIVATIONS)})")


@dataclass
class OptimizerConfig:
    """Configuration for a gradient optimizer."""
    type: str = OptimizerType.ADAM.value
    learning_rate: float = 0.001
    beta1: float = 0.9          # Adam first moment decay
    beta2: float = 0.999        # Adam second moment decay
    epsilon: float = 1e-8
    momentum: float = 0.9       # SGD momentum
    decay: float = 0.99         # RMSProp squared-gradient decay
    max_grad_norm: Optional[float] = 10.0  # None disables clipping

    def __post_init__(self):
        # Kept as a string so configs stay JSON friendly; the optimizer
        # factory parses it again when the optimizer is built.
        self.type = parse_enum(OptimizerType, self.type, "optimizer type").value
        if self.learning_rate <= 0:
            raise ConfigError(f"Learning rate must be positive, got {self.learning_rate}")


@dataclass
class ExplorationConfig:
    """Epsilon-greedy exploration schedule."""
    initial: float = 1.0
    decay: float = 0.995        # Multiplied in after every episode
    minimum: float = 0.01


@dataclass
class TabularConfig:
    """Configuration for tabular Q-learning."""
    learning_rate: float = 0.1  # α
    gamma: float = 0.99
    initial_value: float = 0.0
    eligibility_traces: bool = False
    trace_decay: float = 0.9    # λ
    trace_threshold: float = 0.01
    convergence_window: int = 100


@dataclass
class DQNConfig:
    """Configuration for deep Q-networks."""
    network: NetworkConfig = field(default_factory=NetworkConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
    gamma: float = 0.99
    batch_size: int = 32
    buffer_size: int = 10000
    target_update_frequency: int = 1000  # In environment steps
    train_frequency: int = 1
    warmup_steps: int = 0
    double_dqn: bool = False
    dueling: bool = False
    prioritized_replay: bool = False
    priority_alpha: float = 0.6
    priority_beta: float = 0.4
    priority_epsilon: float = 1e-6
    huber_delta: float = 1.0

    def __post_init__(self):
        if self.batch_size <= 0 or self.buffer_size <= 0:
            raise ConfigError("Batch size and buffer size must be positive")
        if self.target_update_frequency <= 0:
            raise ConfigError("Target update frequency must be positive")


@dataclass
class ActorCriticConfig:
    """Configuration for actor-critic and REINFORCE learners."""
    actor_network: NetworkConfig = field(default_factory=lambda: NetworkConfig(hidden_layers=[256, 128]))
    critic_network: NetworkConfig = field(default_factory=lambda: NetworkConfig(hidden_layers=[256, 128]))
    actor_optimizer: OptimizerConfig = field(default_factory=lambda: OptimizerConfig(learning_rate=0.001))
    critic_optimizer: OptimizerConfig = field(default_factory=lambda: OptimizerConfig(learning_rate=0.005))
    gamma: float = 0.99
    gae_lambda: float = 0.95
    entropy_coefficient: float = 0.01
    baseline_momentum: float = 0.9
    # Per-step bootstrapped update and end-of-episode batch update are
    # applied to the same experiences when both are enabled.
    online_updates: bool = True
    episode_updates: bool = True
    cooperative_bias: float = 0.8


@dataclass
class AgentConfig:
    """Configuration for a single learning agent."""
    agent_id: str = "agent_0"
    agent_type: str = AgentType.INDEPENDENT.value
    algorithm: str = AlgorithmType.Q_LEARNING.value
    state_size: int = 18
    exploration: ExplorationConfig = field(default_factory=ExplorationConfig)
    tabular: TabularConfig = field(default_factory=TabularConfig)
    dqn: DQNConfig = field(default_factory=DQNConfig)
    actor_critic: ActorCriticConfig = field(default_factory=ActorCriticConfig)

    def __post_init__(self):
        self.agent_type = parse_enum(AgentType, self.agent_type, "agent type").value
        # Unknown algorithm names are reported by the algorithm factory so
        # that they surface when the agent is built.
        if self.state_size <= 0:
            raise ConfigError(f"State size must be positive, got {self.state_size}")


@dataclass
class CoordinationConfig:
    """Configuration for the coordination mechanism."""
    protocol: str = CoordinationProtocol.NONE.value
    neighbor_distance: int = 3
    history_length: int = 100

    def __post_init__(self):
        self.protocol = parse_enum(CoordinationProtocol, self.protocol, "coordination protocol").value


@dataclass
class TrainingConfig:
    """Configuration for the training orchestrator."""
    max_episodes: int = 100
    max_steps_per_episode: int = 1000
    knowledge_share_interval: int = 10
    adaptation_interval: int = 50
    adaptation_factor: float = 0.01     # Exploration nudged by 1 ± factor
    min_exploration: float = 0.01
    max_exploration: float = 0.5
    reward_window: int = 10             # Moving average window
    enable_communication: bool = True
    seed: Optional[int] = 42

    def __post_init__(self):
        if self.min_exploration > self.max_exploration:
            raise ConfigError("min_exploration must not exceed max_exploration")
        if self.knowledge_share_interval <= 0 or self.adaptation_interval <= 0:
            raise ConfigError("Episode intervals must be positive")


@dataclass
class RewardWeights:
    """Weights applied to the reward components."""
    money: float = 1.0
    properties: float = 1.0
    game_win: float = 1.0
    cooperation: float = 1.0
    efficiency: float = 1.0
    skill_usage: float = 1.0


@dataclass
class LoggingConfig:
    """Configuration for logging and visualization."""
    level: str = "INFO"
    log_interval: int = 10      # Log every N episodes
    show_progress: bool = True
    plot_rewards: bool = False
    output_dir: str = "./results"


@dataclass
class Config:
    """Master configuration combining all sub-configs."""
    agents: List[AgentConfig] = field(default_factory=lambda: [AgentConfig()])
    coordination: CoordinationConfig = field(default_factory=CoordinationConfig)
    training: TrainingConfig = field(default_factory=TrainingConfig)
    rewards: RewardWeights = field(default_factory=RewardWeights)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def __post_init__(self):
        """Validate configuration."""
        ids = [agent.agent_id for agent in self.agents]
        if len(set(ids)) != len(ids):
            raise ConfigError(f"Agent ids must be unique, got {ids}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary for saving."""
        return asdict(self)


def get_default_config() -> Config:
    """Get default configuration."""
    return Config()


def get_small_test_config(algorithm: str = AlgorithmType.Q_LEARNING.value,
                          n_agents: int = 2) -> Config:
    """Get a small configuration for testing."""
    small_net = NetworkConfig(hidden_layers=[16, 16])
    agents = []
    for i in range(n_agents):
        agents.append(AgentConfig(
            agent_id=f"agent_{i}",
            agent_type=AgentType.COOPERATIVE.value if i % 2 == 0 else AgentType.COMPETITIVE.value,
            algorithm=algorithm,
            exploration=ExplorationConfig(initial=0.3, decay=0.99, minimum=0.01),
            dqn=DQNConfig(network=small_net, batch_size=8, buffer_size=500,
                          target_update_frequency=50),
            actor_critic=ActorCriticConfig(actor_network=small_net, critic_network=small_net),
        ))
    return Config(
        agents=agents,
        training=TrainingConfig(max_episodes=5, max_steps_per_episode=30,
                                knowledge_share_interval=2, adaptation_interval=3),
        logging=LoggingConfig(log_interval=1, show_progress=False),
    )
