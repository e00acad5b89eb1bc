"""
Plotting Utilities for zodiac_marl.

This module provides visualization tools for training progress
of the individual agents.
"""

import logging
import os
from typing import Dict, List, Optional

import numpy as np
import matplotlib.pyplot as plt

logger = logging.getLogger(__name__)


def set_plot_style():
    """Set consistent plot style."""
    plt.style.use('seaborn-v0_8-whitegrid')
    plt.rcParams.update({
        'figure.figsize': (12, 8),
        'font.size': 12,
        'axes.labelsize': 14,
        'axes.titlesize': 16,
        'legend.fontsize': 11,
        'lines.linewidth': 2,
        'figure.dpi': 100
    })


def smooth_curve(values: np.ndarray, window: int = 10) -> np.ndarray:
    """Apply moving average smoothing to a curve."""
    values = np.asarray(values, dtype=np.float64)
    if len(values) < window or window <= 1:
        return values
    kernel = np.ones(window) / window
    smoothed = np.convolve(values, kernel, mode='valid')
    # Pad to original length
    pad_size = len(values) - len(smoothed)
    return np.concatenate([values[:pad_size], smoothed])


def _save(fig, save_path: Optional[str]):
    if save_path:
        directory = os.path.dirname(save_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info("Figure saved to %s", save_path)


def _plot_per_agent(series: Dict[str, List[float]], ylabel: str, title: str,
                    smooth_window: int, save_path: Optional[str]):
    set_plot_style()
    fig, ax = plt.subplots(figsize=(12, 6))
    colors = plt.rcParams['axes.prop_cycle'].by_key()['color']

    for idx, (agent_id, values) in enumerate(series.items()):
        values = np.asarray(values, dtype=np.float64)
        if len(values) == 0:
            continue
        episodes = np.arange(1, len(values) + 1)
        color = colors[idx % len(colors)]
        ax.plot(episodes, values, alpha=0.2, color=color)
        ax.plot(episodes, smooth_curve(values, smooth_window), color=color, label=agent_id)

    ax.set_xlabel('Episode')
    ax.set_ylabel(ylabel)
    ax.set_title(title)
    if series:
        ax.legend()
    plt.tight_layout()
    _save(fig, save_path)
    return fig, ax


def plot_training_rewards(stats: Dict, save_path: Optional[str] = None,
                          title: str = "Training Rewards", smooth_window: int = 20):
    """
    Plot episode rewards of every agent.

    Args:
        stats: Training statistics dictionary (``episode_rewards`` per agent)
        save_path: Path to save the figure
        title: Plot title
        smooth_window: Window size for smoothing
    """
    return _plot_per_agent(stats['episode_rewards'], 'Episode Reward', title,
                           smooth_window, save_path)


def plot_exploration_rates(stats: Dict, save_path: Optional[str] = None,
                           title: str = "Exploration Rate"):
    """Plot the exploration rate of every agent over episodes."""
    return _plot_per_agent(stats['exploration_rates'], 'Exploration Rate', title, 1, save_path)


def plot_coordination(stats: Dict, save_path: Optional[str] = None, smooth_window: int = 10):
    """Plot conflicts and routed messages per episode."""
    set_plot_style()
    fig, axes = plt.subplots(1, 2, figsize=(14, 5))
    for ax, key, label in zip(axes, ('conflicts', 'messages'), ('Conflicts', 'Messages')):
        values = np.asarray(stats.get(key, []), dtype=np.float64)
        episodes = np.arange(1, len(values) + 1)
        ax.plot(episodes, values, alpha=0.3)
        ax.plot(episodes, smooth_curve(values, smooth_window))
        ax.set_xlabel('Episode')
        ax.set_ylabel(label)
        ax.set_title(f'{label} per Episode')
    plt.tight_layout()
    _save(fig, save_path)
    return fig, axes


def create_all_plots(stats: Dict, output_dir: str):
    """Write every training plot to ``output_dir``."""
    os.makedirs(output_dir, exist_ok=True)
    figures = [
        plot_training_rewards(stats, os.path.join(output_dir, 'rewards.png'))[0],
        plot_exploration_rates(stats, os.path.join(output_dir, 'exploration.png'))[0],
        plot_coordination(stats, os.path.join(output_dir, 'coordination.png'))[0],
    ]
    for fig in figures:
        plt.close(fig)
