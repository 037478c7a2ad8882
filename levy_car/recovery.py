"""
Recovery of unit-interval driving increments from a sampled CAR(1) path.

Inverts the discretized observation equation block by block. With blocks
of M observations, block n covering Y[nM .. (n+1)M - 1]:

    D_n = (a / (M*sigma)) * sum(block_n)
          + (1/sigma - a / (2*M*sigma)) * (end_n - start_n)

end_n is the last value of block n; start_n is the last value of block
n - 1, or Y[0] for the first block. With the true a the output matches the
driving increments up to an O(1/M) discretization error.
"""

import logging
from typing import Tuple

import numpy as np

from .errors import ConfigurationError
from .estimation import estimate_a_block_mean

logger = logging.getLogger(__name__)


def recover_increments(
    sampled: np.ndarray,
    a: float,
    M: int,
    sigma: float,
) -> np.ndarray:
    """
    Recover the RecoveredIncrementSeries for a given mean-reversion rate.

    Parameters
    ----------
    sampled : np.ndarray
        Sampled path of length N*M.
    a : float
        Mean-reversion rate (true or estimated).
    M : int
        Observations per unit interval.
    sigma : float
        State scale.

    Returns
    -------
    increments : np.ndarray
        Array of shape (N,). Pure function of its inputs.
    """
    if M <= 0:
        raise ConfigurationError(f"M must be positive, got {M}")
    if sigma <= 0:
        raise ConfigurationError(f"sigma must be positive, got {sigma}")
    y = np.asarray(sampled, dtype=np.float64)
    if len(y) == 0 or len(y) % M != 0:
        raise ConfigurationError(
            f"Sampled path length {len(y)} is not a positive multiple of M={M}"
        )
    if not np.isfinite(a):
        raise ConfigurationError(f"a must be finite, got {a}")
    if M == 1:
        logger.warning("M=1: one observation per interval, no within-interval averaging")

    blocks = y.reshape(-1, M)
    ends = blocks[:, -1]
    starts = np.concatenate(([y[0]], ends[:-1]))

    level_coef = a / (M * sigma)
    diff_coef = 1.0 / sigma - a / (2.0 * M * sigma)
    return level_coef * blocks.sum(axis=1) + diff_coef * (ends - starts)


def recover_increments_estimated_a(
    sampled: np.ndarray,
    N: int,
    M: int,
    sigma: float,
) -> Tuple[np.ndarray, float]:
    """Recover increments using the block-mean estimate of a; returns (increments, a_hat)."""
    a_hat = estimate_a_block_mean(sampled, N, M)
    logger.debug("recovery with estimated a: a_hat=%.6f", a_hat)
    return recover_increments(sampled, a_hat, M, sigma), a_hat
