"""
Mean-reversion rate estimators over a sampled path of length N*M.

    autocov:     a_hat = M * (1 - phi),  phi = lag-1 autocorrelation of the
                 demeaned sampled path
    log_ratio:   a_hat = M * max_n [log Y_n - log Y_{n+1}]
                 (positive paths only, subordinator-driven state)
    block_mean:  a_hat = -log|phi|,  phi = lag-1 autocorrelation of the
                 N block means (no M scaling)

The three rules are not on a common scale: block_mean omits the factor M
used by the other two. Callers pick the rule explicitly.
"""

import logging
from enum import Enum
from typing import Optional

import numpy as np

from .errors import ConfigurationError, DegenerateDataError, DomainError

logger = logging.getLogger(__name__)


class EstimatorKind(Enum):
    AUTOCOV = "autocov"
    LOG_RATIO = "log_ratio"
    BLOCK_MEAN = "block_mean"
    TRUE = "true"

    @classmethod
    def from_name(cls, name: str) -> "EstimatorKind":
        try:
            return cls(name.lower())
        except ValueError:
            valid = [k.value for k in cls]
            raise ConfigurationError(f"Unknown estimator {name!r}, expected one of {valid}")


def lag1_autocorrelation(x: np.ndarray) -> float:
    """Lag-1 sample autocorrelation sum(d_t d_{t+1}) / sum(d_t^2) of the demeaned series."""
    x = np.asarray(x, dtype=np.float64)
    if len(x) < 2:
        raise DegenerateDataError(f"Need at least 2 points for a lag-1 autocorrelation, got {len(x)}")
    d = x - np.mean(x)
    denom = float(np.dot(d, d))
    if denom == 0.0:
        raise DegenerateDataError("Series has zero variance; lag-1 autocorrelation undefined")
    return float(np.dot(d[:-1], d[1:])) / denom


def _blocks(sampled: np.ndarray, N: int, M: int) -> np.ndarray:
    if N <= 0 or M <= 0:
        raise ConfigurationError(f"N and M must be positive, got N={N}, M={M}")
    if len(sampled) != N * M:
        raise ConfigurationError(
            f"Sampled path has length {len(sampled)}, expected N*M = {N * M}"
        )
    return sampled.reshape(N, M)


def block_sum_autocorrelation(sampled: np.ndarray, N: int, M: int) -> float:
    """Lag-1 autocorrelation of the N non-overlapping block sums of size M."""
    sampled = np.asarray(sampled, dtype=np.float64)
    return lag1_autocorrelation(_blocks(sampled, N, M).sum(axis=1))


def estimate_a_autocov(sampled: np.ndarray, N: int, M: int) -> float:
    """
    Autocovariance-ratio estimator a_hat = M * (1 - phi).

    The block-sum autocorrelation is computed alongside and logged; it does
    not enter the returned value.
    """
    sampled = np.asarray(sampled, dtype=np.float64)
    blocks = _blocks(sampled, N, M)

    phi = lag1_autocorrelation(sampled)

    if N >= 2 and np.ptp(blocks.sum(axis=1)) > 0:
        logger.debug("autocov: phi=%.6f, block-sum phi=%.6f",
                     phi, block_sum_autocorrelation(sampled, N, M))

    return M * (1.0 - phi)


def estimate_a_log_ratio(sampled: np.ndarray, M: int) -> float:
    """Extremal estimator: M times the largest one-step drop in log-state."""
    sampled = np.asarray(sampled, dtype=np.float64)
    if len(sampled) < 2:
        raise DegenerateDataError("Need at least 2 observations for the log-ratio estimator")
    if np.any(sampled <= 0):
        n_bad = int(np.sum(sampled <= 0))
        raise DomainError(
            f"Log-ratio estimator requires a strictly positive path; {n_bad} values are <= 0"
        )
    log_y = np.log(sampled)
    return float(M * np.max(log_y[:-1] - log_y[1:]))


def estimate_a_block_mean(sampled: np.ndarray, N: int, M: int) -> float:
    """Block-mean estimator a_hat = -log|phi| (used by recovery with estimated a)."""
    sampled = np.asarray(sampled, dtype=np.float64)
    means = _blocks(sampled, N, M).mean(axis=1)
    phi = lag1_autocorrelation(means)
    if phi == 0.0:
        raise DomainError("Block-mean autocorrelation is exactly zero; -log|phi| is infinite")
    return float(-np.log(abs(phi)))


def estimate_a(
    kind: EstimatorKind,
    sampled: np.ndarray,
    N: int,
    M: int,
    true_a: Optional[float] = None,
) -> float:
    """Dispatch to the selected estimator; TRUE returns the supplied true_a."""
    if kind is EstimatorKind.AUTOCOV:
        return estimate_a_autocov(sampled, N, M)
    if kind is EstimatorKind.LOG_RATIO:
        return estimate_a_log_ratio(sampled, M)
    if kind is EstimatorKind.BLOCK_MEAN:
        return estimate_a_block_mean(sampled, N, M)
    if true_a is None:
        raise ConfigurationError("EstimatorKind.TRUE requires true_a")
    return float(true_a)
