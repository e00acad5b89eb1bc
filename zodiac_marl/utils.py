# ============================================================================
# File: utils.py
# Description: Logging setup, random generators and small helpers
# ============================================================================
"""
Utility functions for zodiac_marl

This module provides:
- Logging that cooperates with tqdm progress bars
- Construction of injected random generators
"""

import logging
from typing import List, Optional, Union

import numpy as np
from tqdm import tqdm


class TqdmLoggingHandler(logging.Handler):
    """Logging handler writing through tqdm.write so progress bars stay intact."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            tqdm.write(self.format(record))
            self.flush()
        except Exception:
            self.handleError(record)


def setup_logging(level: Union[int, str] = logging.INFO,
                  fmt: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s") -> logging.Logger:
    """
    Configure the package logger.

    Args:
        level: Logging level or level name
        fmt: Record format

    Returns:
        The package logger
    """
    logger = logging.getLogger("zodiac_marl")
    logger.setLevel(level)
    if not any(isinstance(h, TqdmLoggingHandler) for h in logger.handlers):
        handler = TqdmLoggingHandler()
        handler.setFormatter(logging.Formatter(fmt))
        logger.addHandler(handler)
    logger.propagate = False
    return logger


def make_rng(seed: Optional[int] = None) -> np.random.Generator:
    """Create the generator of a run. None draws fresh OS entropy."""
    return np.random.default_rng(seed)


def spawn_rngs(rng: np.random.Generator, n: int) -> List[np.random.Generator]:
    """Independent child generators, e.g. one per agent."""
    return list(rng.spawn(n))

