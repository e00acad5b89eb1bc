"""Tests for the command line entry point and the plots."""

import argparse

import matplotlib

matplotlib.use("Agg")

import pytest

from zodiac_marl.main import build_config, main
from zodiac_marl.plotting import create_all_plots, smooth_curve


class TestCommandLine:

    def test_policy_learners_start_with_small_epsilon(self):
        stats = main(["--episodes", "1", "--steps", "5", "--agents", "2",
                      "--algorithm", "reinforce", "--no-progress", "--log-level", "WARNING"])
        assert set(stats["evaluation"]) == {"agent_0", "agent_1"}

    def test_build_config(self):
        args = argparse.Namespace(algorithm="actor_critic", agents=3, coordination="hierarchical",
                                  episodes=4, steps=10, seed=1, log_level="INFO", no_progress=True,
                                  plot=False, output_dir="out")
        config = build_config(args)
        assert [a.agent_type for a in config.agents] == ["cooperative", "competitive", "mixed"]
        assert config.agents[0].exploration.initial == 0.05
        assert config.coordination.protocol == "hierarchical"
        assert not config.logging.show_progress

    def test_models_and_plots_are_written(self, tmp_path):
        main(["--episodes", "2", "--steps", "5", "--no-progress", "--plot", "--save-models",
              "--output-dir", str(tmp_path), "--log-level", "WARNING"])
        for name in ("models.json", "rewards.png", "exploration.png", "coordination.png"):
            assert (tmp_path / name).exists()


def test_smooth_curve_keeps_length():
    values = list(range(30))
    smoothed = smooth_curve(values, window=10)
    assert len(smoothed) == 30
    assert smoothed[-1] == pytest.approx(sum(range(20, 30)) / 10)


def test_create_all_plots_with_empty_series(tmp_path):
    stats = {"episode_rewards": {"a": []}, "exploration_rates": {"a": []},
             "conflicts": [], "messages": []}
    create_all_plots(stats, str(tmp_path))
    assert (tmp_path / "rewards.png").exists()
