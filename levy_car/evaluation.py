"""
Hypothesis tests on a RecoveredIncrementSeries.

Serial correlation:
    W = sqrt(N) * gamma_hat(1),  reject when |W| > z_{1 - alpha/2}

Goodness of fit, Procedure 1 (Normal, plug-in):
    fit mean/sd on a with-replacement resample, KS p-value of the original
    series against that Normal, reject when p < alpha

Goodness of fit, Procedure 2 (parametric bootstrap, Normal/Gamma/IG):
    T = sqrt(n) * D,  D = max_i max(i/n - Z_(i), Z_(i) - (i-1)/n)
    null distribution from n_bootstrap refitted samples of the fitted law,
    reject when T exceeds its `level` quantile
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np
from scipy import stats

from .distributions import TargetFamily
from .errors import ConfigurationError, DegenerateDataError
from .estimation import lag1_autocorrelation

logger = logging.getLogger(__name__)


@dataclass
class HypothesisTestResult:
    """Outcome of a single test on one series."""
    name: str
    statistic: float
    reject: bool
    alpha: float
    n: int
    critical_value: Optional[float] = None
    p_value: Optional[float] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "statistic": self.statistic,
            "critical_value": self.critical_value,
            "p_value": self.p_value,
            "reject": self.reject,
            "alpha": self.alpha,
            "n": self.n,
            "details": self.details,
        }


def _check_alpha(alpha: float):
    if not 0.0 < alpha < 1.0:
        raise ConfigurationError(f"alpha must be in (0, 1), got {alpha}")


def _as_series(increments: np.ndarray, min_len: int) -> np.ndarray:
    x = np.asarray(increments, dtype=np.float64)
    if x.ndim != 1:
        raise ConfigurationError(f"Expected a 1-D increment series, got shape {x.shape}")
    if len(x) < min_len:
        raise DegenerateDataError(f"Need at least {min_len} increments, got {len(x)}")
    if not np.all(np.isfinite(x)):
        raise DegenerateDataError("Increment series contains NaN or Inf")
    return x


def serial_correlation_test(increments: np.ndarray, alpha: float = 0.05) -> HypothesisTestResult:
    """Asymptotic N(0, 1) test of zero lag-1 autocorrelation."""
    _check_alpha(alpha)
    x = _as_series(increments, min_len=3)
    n = len(x)
    gamma1 = lag1_autocorrelation(x)
    W = float(np.sqrt(n) * gamma1)
    z_crit = float(stats.norm.ppf(1.0 - alpha / 2.0))
    p_value = float(2.0 * stats.norm.sf(abs(W)))
    return HypothesisTestResult(
        name="serial_correlation",
        statistic=W,
        reject=bool(abs(W) > z_crit),
        alpha=alpha,
        n=n,
        critical_value=z_crit,
        p_value=p_value,
        details={"lag1_autocorrelation": gamma1},
    )


def ks_statistic(u_sorted: np.ndarray) -> np.ndarray:
    """
    Two-sided KS distance of sorted pseudo-uniforms from U(0, 1).

    Reduces over the last axis, so a (B, n) matrix gives B distances.
    """
    u = np.asarray(u_sorted, dtype=np.float64)
    n = u.shape[-1]
    i = np.arange(1, n + 1, dtype=np.float64)
    d_plus = np.max(i / n - u, axis=-1)
    d_minus = np.max(u - (i - 1.0) / n, axis=-1)
    return np.maximum(d_plus, d_minus)


def normal_plugin_ks_test(
    increments: np.ndarray,
    rng: np.random.Generator,
    alpha: float = 0.05,
) -> HypothesisTestResult:
    """Procedure 1: KS test against a Normal fitted on a bootstrap resample."""
    _check_alpha(alpha)
    x = _as_series(increments, min_len=2)
    n = len(x)
    resample = x[rng.integers(0, n, size=n)]
    mean, sd = TargetFamily.NORMAL.fit(resample)
    mean, sd = float(mean[0]), float(sd[0])

    res = stats.kstest(x, stats.norm(loc=mean, scale=sd).cdf)
    p_value = float(res.pvalue)
    return HypothesisTestResult(
        name="normal_plugin_ks",
        statistic=float(res.statistic),
        reject=bool(p_value < alpha),
        alpha=alpha,
        n=n,
        p_value=p_value,
        details={"mean": mean, "sd": sd},
    )


def parametric_bootstrap_ks_test(
    increments: np.ndarray,
    family: TargetFamily,
    rng: np.random.Generator,
    n_bootstrap: int = 1000,
    level: float = 0.95,
    return_null: bool = False,
) -> HypothesisTestResult:
    """
    Procedure 2: KS test with a parametric-bootstrap critical value.

    Parameters
    ----------
    increments : np.ndarray
        RecoveredIncrementSeries of length n.
    family : TargetFamily
        Hypothesized law of the increments.
    rng : np.random.Generator
        Stream for the bootstrap draws.
    n_bootstrap : int
        Number of parametric bootstrap samples.
    level : float
        Quantile of the bootstrap null used as critical value
        (test size is 1 - level).
    return_null : bool
        If True, the bootstrap statistics are stored in details["null"].

    Returns
    -------
    HypothesisTestResult
        statistic = sqrt(n) * D, critical_value = bootstrap quantile,
        p_value = share of bootstrap statistics >= the observed one.
    """
    if not 0.0 < level < 1.0:
        raise ConfigurationError(f"level must be in (0, 1), got {level}")
    if n_bootstrap < 1:
        raise ConfigurationError(f"n_bootstrap must be >= 1, got {n_bootstrap}")
    x = _as_series(increments, min_len=2)
    n = len(x)
    root_n = np.sqrt(n)

    params = family.fit(x)
    u = np.sort(family.cdf(x, params))
    statistic = float(root_n * ks_statistic(u))

    boot = family.sample(params, (n_bootstrap, n), rng)
    boot_params = family.fit(boot)
    boot_u = np.sort(family.cdf(boot, boot_params), axis=-1)
    null = root_n * ks_statistic(boot_u)

    critical = float(np.quantile(null, level))
    p_value = float(np.mean(null >= statistic))

    fitted = {name: float(np.asarray(p).reshape(-1)[0])
              for name, p in zip(family.param_names(), params)}
    details: Dict[str, Any] = {"family": family.value, "fitted": fitted,
                               "n_bootstrap": n_bootstrap}
    if return_null:
        details["null"] = null

    return HypothesisTestResult(
        name=f"bootstrap_ks_{family.value}",
        statistic=statistic,
        reject=bool(statistic > critical),
        alpha=1.0 - level,
        n=n,
        critical_value=critical,
        p_value=p_value,
        details=details,
    )
