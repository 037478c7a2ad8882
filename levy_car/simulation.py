"""
Path simulation via Euler-Maruyama discretization on the fine grid.

Unit convention:
    - K fine steps per unit interval, dt = 1/K
    - N unit intervals, M observations per unit interval
    - all paths are returned after a burn-in of B fine steps

Driving path (diagnostic):
    L = concat([0], cumsum(noise))[B + 1:]

CAR(1) state, Euler-Maruyama step:
    Y_i = Y_{i-1} - a * Y_{i-1} * dt + sigma * noise_i,   Y_0 = y0
    returned as Y[B:]

Both returned paths have length N*K + 1 and the step from position k to
k + 1 is driven by noise[B + 1 + k] in each of them.
"""

import logging

import numpy as np
from scipy.signal import lfilter, lfiltic

from .errors import ConfigurationError
from .noise import BURN_IN

logger = logging.getLogger(__name__)


def simulate_driving_path(noise: np.ndarray, burn_in: int = BURN_IN) -> np.ndarray:
    """Cumulative driving process path after burn-in, length len(noise) - burn_in."""
    noise = np.asarray(noise, dtype=np.float64)
    path = np.concatenate(([0.0], np.cumsum(noise)))
    return path[burn_in + 1:]


def simulate_car1_path(
    noise: np.ndarray,
    a: float,
    sigma: float,
    K: int,
    y0: float,
    burn_in: int = BURN_IN,
) -> np.ndarray:
    """
    Simulate the CAR(1) state on the fine grid.

    Parameters
    ----------
    noise : np.ndarray
        NoiseSequence of length N*K + burn_in + 1.
    a : float
        Mean-reversion rate.
    sigma : float
        State scale.
    K : int
        Fine steps per unit interval (dt = 1/K).
    y0 : float
        Initial state Y_0.
    burn_in : int
        Number of leading states discarded.

    Returns
    -------
    state : np.ndarray
        Array of shape (len(noise) - burn_in,).
    """
    if K <= 0:
        raise ConfigurationError(f"K must be positive, got {K}")
    if sigma <= 0:
        raise ConfigurationError(f"sigma must be positive, got {sigma}")
    noise = np.asarray(noise, dtype=np.float64)
    if len(noise) <= burn_in + 1:
        raise ConfigurationError(
            f"Noise of length {len(noise)} is too short for burn_in={burn_in}"
        )

    dt = 1.0 / K
    phi = 1.0 - a * dt
    if abs(phi) >= 1.0:
        logger.warning("Euler factor 1 - a*dt = %.4f is not contracting; refine K", phi)

    # The recursion is a first-order linear filter on noise[1:], seeded with y0
    b_coef = [sigma]
    a_coef = [1.0, -phi]
    zi = lfiltic(b_coef, a_coef, y=[y0])
    tail, _ = lfilter(b_coef, a_coef, noise[1:], zi=zi)

    state = np.empty(len(noise), dtype=np.float64)
    state[0] = y0
    state[1:] = tail
    return state[burn_in:]


def sample_path(state: np.ndarray, K: int, M: int) -> np.ndarray:
    """
    Subsample a fine-grid state path at M observations per unit interval.

    Drops the initial state and keeps every (K/M)-th entry, i.e. the states
    at times j/M for j = 1 .. N*M.
    """
    if M <= 0 or K <= 0:
        raise ConfigurationError(f"K and M must be positive, got K={K}, M={M}")
    if K % M != 0:
        raise ConfigurationError(
            f"K ({K}) must be an exact multiple of M ({M}) for an integer sampling stride"
        )
    state = np.asarray(state, dtype=np.float64)
    stride = K // M
    if (len(state) - 1) % K != 0:
        raise ConfigurationError(
            f"State path length {len(state)} is not N*K + 1 for K={K}"
        )
    return state[stride::stride]
