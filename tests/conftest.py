"""Shared fixtures for the zodiac_marl test suite."""

import numpy as np
import pytest


@pytest.fixture
def rng():
    """Seeded generator so every test is reproducible."""
    return np.random.default_rng(1234)
