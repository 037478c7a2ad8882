"""
Driving-noise generation for the Euler-discretized Levy process.

Each entry of a NoiseSequence approximates the Levy increment over one
fine step of length dt = 1/K. Per-family parameterization from the target
location mu and dispersion eta:

    Gaussian:          Normal(mean = mu/K, sd = eta/sqrt(K))
    Gamma:             Gamma(shape = alpha/K, scale = 1/beta),
                       alpha = mu^2/eta^2, beta = eta^2/mu
    Inverse Gaussian:  IG(mean = mu/K, shape = (mu^3/eta^2)/K^2)
    Mixture:           IG branch with prob 1/8, Gamma branch otherwise
                       (independent Bernoulli switch per entry)

Sequence length is N*K + burn_in + 1; the first burn_in + 1 entries are
consumed by the burn-in of the path simulators.
"""

from enum import Enum
from typing import Optional

import numpy as np

from .errors import ConfigurationError

BURN_IN = 2000
MIXTURE_IG_PROB = 1.0 / 8.0


class DrivingFamily(Enum):
    GAUSSIAN = "gaussian"
    GAMMA = "gamma"
    INVERSE_GAUSSIAN = "inverse_gaussian"
    MIXTURE = "mixture"

    @classmethod
    def from_name(cls, name: str) -> "DrivingFamily":
        try:
            return cls(name.lower())
        except ValueError:
            valid = [f.value for f in cls]
            raise ConfigurationError(f"Unknown driving family {name!r}, expected one of {valid}")

    @property
    def is_subordinator(self) -> bool:
        """Non-decreasing driving process (positive increments only)."""
        return self is not DrivingFamily.GAUSSIAN


def noise_length(N: int, K: int, burn_in: int = BURN_IN) -> int:
    return N * K + burn_in + 1


def _gamma_draws(n: int, K: int, mu: float, eta: float, rng: np.random.Generator) -> np.ndarray:
    alpha = mu ** 2 / eta ** 2
    beta = eta ** 2 / mu
    return rng.gamma(shape=alpha / K, scale=1.0 / beta, size=n)


def _inverse_gaussian_draws(n: int, K: int, mu: float, eta: float, rng: np.random.Generator) -> np.ndarray:
    shape = (mu ** 3 / eta ** 2) / K ** 2
    return rng.wald(mean=mu / K, scale=shape, size=n)


def generate_noise(
    family: DrivingFamily,
    N: int,
    K: int,
    mu: float,
    eta: float,
    rng: np.random.Generator,
    burn_in: int = BURN_IN,
) -> np.ndarray:
    """
    Generate a NoiseSequence for the chosen driving family.

    Parameters
    ----------
    family : DrivingFamily
        Driving Levy family.
    N : int
        Number of unit (big) intervals.
    K : int
        Fine Euler steps per unit interval.
    mu : float
        Target location of the driving increments.
    eta : float
        Target dispersion of the driving increments.
    rng : np.random.Generator
        Caller-owned random stream.
    burn_in : int
        Burn-in length discarded by the path simulators.

    Returns
    -------
    noise : np.ndarray
        Array of shape (N*K + burn_in + 1,).
    """
    if N <= 0 or K <= 0:
        raise ConfigurationError(f"N and K must be positive, got N={N}, K={K}")
    if eta <= 0:
        raise ConfigurationError(f"eta must be positive, got {eta}")
    if family.is_subordinator and mu <= 0:
        raise ConfigurationError(f"mu must be positive for {family.value} noise, got {mu}")

    n = noise_length(N, K, burn_in)

    if family is DrivingFamily.GAUSSIAN:
        return rng.normal(loc=mu / K, scale=eta / np.sqrt(K), size=n)
    if family is DrivingFamily.GAMMA:
        return _gamma_draws(n, K, mu, eta, rng)
    if family is DrivingFamily.INVERSE_GAUSSIAN:
        return _inverse_gaussian_draws(n, K, mu, eta, rng)

    # Mixture: draw both branches in full, then switch per entry
    use_ig = rng.random(n) < MIXTURE_IG_PROB
    gamma_part = _gamma_draws(n, K, mu, eta, rng)
    ig_part = _inverse_gaussian_draws(n, K, mu, eta, rng)
    return np.where(use_ig, ig_part, gamma_part)


def unit_interval_sums(noise: np.ndarray, N: int, K: int, burn_in: int = BURN_IN) -> np.ndarray:
    """
    True driving increments over each unit interval.

    Sums the post-burn-in shocks in blocks of K, aligned with the fine grid
    of the returned driving and state paths (shock burn_in + 1 + k drives
    the step from returned position k to k + 1).
    """
    shocks = np.asarray(noise, dtype=np.float64)[burn_in + 1:]
    if len(shocks) != N * K:
        raise ConfigurationError(
            f"Noise length {len(noise)} does not match N*K + burn_in + 1 = {noise_length(N, K, burn_in)}"
        )
    return shocks.reshape(N, K).sum(axis=1)


def unit_mean(family: DrivingFamily, mu: float, eta: float) -> float:
    """Mean of one unit-interval driving increment under the parameterization above."""
    gamma_mean = mu ** 3 / eta ** 4
    if family is DrivingFamily.GAMMA:
        return gamma_mean
    if family is DrivingFamily.MIXTURE:
        return MIXTURE_IG_PROB * mu + (1.0 - MIXTURE_IG_PROB) * gamma_mean
    return mu


def stationary_initial_value(
    family: DrivingFamily,
    mu: float,
    eta: float,
    a: float,
    sigma: float,
    rng: Optional[np.random.Generator] = None,
) -> float:
    """
    Draw Y0 for the CAR(1) recursion.

    The stationary mean is sigma*m/a, with m the per-unit mean of the
    driving increments (mu for Gaussian and Inverse Gaussian, mu^3/eta^4
    for Gamma, the weighted blend for the mixture). For the Gaussian family
    a normal draw with stationary variance sigma^2*eta^2/(2a) is added.
    Subordinator families start at the positive stationary mean rather than
    a full stationary draw; the burn-in steps carry the path into the
    stationary regime before the first retained sample.
    """
    mean = sigma * unit_mean(family, mu, eta) / a
    if family is DrivingFamily.GAUSSIAN and rng is not None:
        sd = sigma * eta / np.sqrt(2.0 * a)
        return float(rng.normal(mean, sd))
    return float(mean)
