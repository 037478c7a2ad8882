"""Exception taxonomy for the estimation / recovery / testing pipeline.

All errors subclass ValueError so callers that already guard numeric
input with ``except ValueError`` keep working.
"""


class LevyCarError(ValueError):
    """Base class for pipeline errors."""


class ConfigurationError(LevyCarError):
    """Invalid scalar configuration (N, K, M, sigma, alpha, ...)."""


class DomainError(LevyCarError):
    """Input outside the support required by an estimator or a fit."""


class DegenerateDataError(LevyCarError):
    """Series with zero variance or too few points for the statistic."""
