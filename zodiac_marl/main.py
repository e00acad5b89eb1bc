"""
Main Entry Point for zodiac_marl.

Trains a group of agents on the built-in board-game simulator.
"""

import argparse
import json
import logging
import os
from typing import List, Optional

from .config import (
    AgentConfig,
    AgentType,
    AlgorithmType,
    Config,
    CoordinationConfig,
    CoordinationProtocol,
    ExplorationConfig,
    LoggingConfig,
    TrainingConfig,
)
from .environment import BoardGameSimulator
from .plotting import create_all_plots
from .trainer import TrainingOrchestrator
from .utils import make_rng, setup_logging

logger = logging.getLogger(__name__)

AGENT_TYPE_CYCLE = (AgentType.COOPERATIVE, AgentType.COMPETITIVE, AgentType.MIXED, AgentType.INDEPENDENT)
POLICY_ALGORITHMS = (AlgorithmType.ACTOR_CRITIC.value, AlgorithmType.REINFORCE.value)


def build_config(args: argparse.Namespace) -> Config:
    """Translate command line arguments into a master config."""
    # Policy-based learners explore by sampling; keep their epsilon small
    initial_epsilon = 0.05 if args.algorithm in POLICY_ALGORITHMS else 1.0
    agents = [
        AgentConfig(
            agent_id=f"agent_{i}",
            agent_type=AGENT_TYPE_CYCLE[i % len(AGENT_TYPE_CYCLE)].value,
            algorithm=args.algorithm,
            exploration=ExplorationConfig(initial=initial_epsilon),
        )
        for i in range(args.agents)
    ]
    return Config(
        agents=agents,
        coordination=CoordinationConfig(protocol=args.coordination),
        training=TrainingConfig(max_episodes=args.episodes, max_steps_per_episode=args.steps,
                                seed=args.seed),
        logging=LoggingConfig(level=args.log_level, show_progress=not args.no_progress,
                              plot_rewards=args.plot, output_dir=args.output_dir),
    )


def run_experiment(config: Config, max_rounds: int = 200, save_models: bool = False) -> dict:
    """
    Train agents on the simulator.

    Args:
        config: Master configuration
        max_rounds: Step limit of one simulated game
        save_models: Write the trained models as JSON to the output directory

    Returns:
        Training statistics plus evaluation rewards
    """
    rng = make_rng(config.training.seed)
    env = BoardGameSimulator(rng, max_rounds=max_rounds, reward_weights=config.rewards)
    trainer = TrainingOrchestrator.from_config(config, env, rng)

    stats = trainer.train()
    stats["evaluation"] = trainer.evaluate(n_episodes=3)

    if config.logging.plot_rewards or save_models:
        os.makedirs(config.logging.output_dir, exist_ok=True)
    if config.logging.plot_rewards:
        create_all_plots(stats, config.logging.output_dir)
    if save_models:
        path = os.path.join(config.logging.output_dir, "models.json")
        with open(path, "w") as f:
            json.dump(trainer.save_models(), f)
        logger.info("Models saved to %s", path)
    return stats


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Multi-agent RL training for the board game")
    parser.add_argument('--episodes', type=int, default=100, help='Number of episodes')
    parser.add_argument('--steps', type=int, default=200, help='Step ceiling per episode')
    parser.add_argument('--agents', type=int, default=4, help='Number of agents')
    parser.add_argument('--algorithm', type=str, default=AlgorithmType.Q_LEARNING.value,
                        choices=[a.value for a in AlgorithmType], help='Learning algorithm')
    parser.add_argument('--coordination', type=str, default=CoordinationProtocol.CENTRALIZED.value,
                        choices=[p.value for p in CoordinationProtocol], help='Coordination protocol')
    parser.add_argument('--seed', type=int, default=42, help='Random seed for reproducibility')
    parser.add_argument('--output-dir', type=str, default='./results', help='Output directory')
    parser.add_argument('--plot', action='store_true', help='Write training plots')
    parser.add_argument('--save-models', action='store_true', help='Write trained models as JSON')
    parser.add_argument('--no-progress', action='store_true', help='Hide the progress bar')
    parser.add_argument('--log-level', type=str, default='INFO', help='Logging level')

    args = parser.parse_args(argv)
    config = build_config(args)
    setup_logging(config.logging.level)

    stats = run_experiment(config, max_rounds=args.steps, save_models=args.save_models)
    for agent_id, reward in stats["evaluation"].items():
        logger.info("Evaluation reward %-12s %.2f", agent_id, reward)
    return stats


if __name__ == "__main__":
    main()
