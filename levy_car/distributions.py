"""
Target distribution families for the goodness-of-fit tests.

Each TargetFamily carries a (fit, cdf, sample) triple. Fits are method of
moments with the unbiased (ddof=1) variance:

    NORMAL            (mean, sd)
    GAMMA             (shape = mean^2/var, rate = mean/var)
    INVERSE_GAUSSIAN  (mean, shape = mean^3/var)

fit() reduces over the last axis and keeps it, so a (B, n) matrix of
bootstrap samples yields (B, 1) parameter arrays that broadcast directly
into cdf().
"""

from enum import Enum
from typing import Tuple

import numpy as np
from scipy import stats

from .errors import ConfigurationError, DomainError

Params = Tuple[np.ndarray, ...]


def _moments(x: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    if x.shape[-1] < 2:
        raise DomainError(f"Need at least 2 observations for a moment fit, got {x.shape[-1]}")
    mean = np.mean(x, axis=-1, keepdims=True)
    var = np.var(x, axis=-1, ddof=1, keepdims=True)
    if np.any(var <= 0):
        raise DomainError("Zero-variance sample; moment fit is undefined")
    return mean, var


def _require_positive(x: np.ndarray, family: str):
    if np.any(x <= 0):
        raise DomainError(f"{family} fit requires strictly positive observations")


def _fit_normal(x: np.ndarray) -> Params:
    mean, var = _moments(x)
    return mean, np.sqrt(var)


def _fit_gamma(x: np.ndarray) -> Params:
    _require_positive(x, "Gamma")
    mean, var = _moments(x)
    return mean ** 2 / var, mean / var


def _fit_inverse_gaussian(x: np.ndarray) -> Params:
    _require_positive(x, "Inverse Gaussian")
    mean, var = _moments(x)
    return mean, mean ** 3 / var


def _cdf_normal(x, mean, sd):
    return stats.norm.cdf(x, loc=mean, scale=sd)


def _cdf_gamma(x, shape, rate):
    return stats.gamma.cdf(x, a=shape, scale=1.0 / rate)


def _cdf_inverse_gaussian(x, mean, shape):
    # scipy's invgauss(mu, scale) has mean mu*scale and shape parameter scale
    return stats.invgauss.cdf(x, mean / shape, scale=shape)


def _sample_normal(rng, size, mean, sd):
    return rng.normal(mean, sd, size=size)


def _sample_gamma(rng, size, shape, rate):
    return rng.gamma(shape, 1.0 / rate, size=size)


def _sample_inverse_gaussian(rng, size, mean, shape):
    return rng.wald(mean, shape, size=size)


class TargetFamily(Enum):
    NORMAL = "normal"
    GAMMA = "gamma"
    INVERSE_GAUSSIAN = "inverse_gaussian"

    @classmethod
    def from_name(cls, name: str) -> "TargetFamily":
        try:
            return cls(name.lower())
        except ValueError:
            valid = [f.value for f in cls]
            raise ConfigurationError(f"Unknown target family {name!r}, expected one of {valid}")

    def fit(self, x: np.ndarray) -> Params:
        """Method-of-moments fit over the last axis (kept, length 1)."""
        return _FIT[self](np.asarray(x, dtype=np.float64))

    def cdf(self, x: np.ndarray, params: Params) -> np.ndarray:
        return _CDF[self](np.asarray(x, dtype=np.float64), *params)

    def sample(self, params: Params, size, rng: np.random.Generator) -> np.ndarray:
        return _SAMPLE[self](rng, size, *params)

    def param_names(self) -> Tuple[str, str]:
        return _PARAM_NAMES[self]


_FIT = {
    TargetFamily.NORMAL: _fit_normal,
    TargetFamily.GAMMA: _fit_gamma,
    TargetFamily.INVERSE_GAUSSIAN: _fit_inverse_gaussian,
}

_CDF = {
    TargetFamily.NORMAL: _cdf_normal,
    TargetFamily.GAMMA: _cdf_gamma,
    TargetFamily.INVERSE_GAUSSIAN: _cdf_inverse_gaussian,
}

_SAMPLE = {
    TargetFamily.NORMAL: _sample_normal,
    TargetFamily.GAMMA: _sample_gamma,
    TargetFamily.INVERSE_GAUSSIAN: _sample_inverse_gaussian,
}

_PARAM_NAMES = {
    TargetFamily.NORMAL: ("mean", "sd"),
    TargetFamily.GAMMA: ("shape", "rate"),
    TargetFamily.INVERSE_GAUSSIAN: ("mean", "shape"),
}
