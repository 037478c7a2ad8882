"""Configuration loading and validation."""

import yaml
from dataclasses import dataclass, field
from typing import Optional, Union

from .errors import ConfigurationError

FAMILIES = ("gaussian", "gamma", "inverse_gaussian", "mixture")
TARGET_FAMILIES = ("normal", "gamma", "inverse_gaussian")
ESTIMATORS = ("autocov", "log_ratio", "block_mean", "true")
SOURCES = ("simulated", "csv", "synthetic")


@dataclass
class SimulationConfig:
    n_intervals: int = 100      # N: big (unit) intervals
    fine_steps: int = 5000      # K: Euler steps per unit interval
    sampling_freq: int = 100    # M: observations per unit interval
    family: str = "gaussian"    # driving Levy family, one of FAMILIES
    mu: float = 1.0             # noise location
    eta: float = 1.0            # noise dispersion
    a: float = 0.9              # true mean-reversion rate
    sigma: float = 1.0          # state scale
    y0: Optional[float] = None  # None = draw from the stationary law
    burn_in: int = 2000
    seed: int = 42


@dataclass
class EstimationConfig:
    method: str = "autocov"     # "autocov" | "log_ratio" | "block_mean" | "true"


@dataclass
class HypothesisConfig:
    alpha: float = 0.05
    target_family: str = "normal"   # Procedure 2 target, one of TARGET_FAMILIES
    n_bootstrap: int = 1000
    bootstrap_level: float = 0.95


@dataclass
class MonteCarloConfig:
    n_replications: int = 400
    n_workers: Optional[int] = None  # None = os.cpu_count()
    base_seed: int = 12345


@dataclass
class DataConfig:
    source: str = "simulated"       # "simulated" | "csv" | "synthetic"
    csv_path: Optional[str] = None
    asset_a: Optional[str] = None   # CSV column names; None = first two columns
    asset_b: Optional[str] = None
    hedge_ratio: Union[float, str] = 1.0  # float or "ols"
    min_rows: int = 250
    synthetic_days: int = 2500
    synthetic_seed: int = 12345


@dataclass
class OutputConfig:
    base_dir: str = "outputs"
    charts: bool = True


@dataclass
class PipelineConfig:
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    estimation: EstimationConfig = field(default_factory=EstimationConfig)
    testing: HypothesisConfig = field(default_factory=HypothesisConfig)
    monte_carlo: MonteCarloConfig = field(default_factory=MonteCarloConfig)
    data: DataConfig = field(default_factory=DataConfig)
    output: OutputConfig = field(default_factory=OutputConfig)


_SECTIONS = ("simulation", "estimation", "testing", "monte_carlo", "data", "output")


def load_config(path: str) -> PipelineConfig:
    """Load and validate configuration from a YAML file."""
    with open(path, "r") as f:
        raw = yaml.safe_load(f) or {}

    cfg = PipelineConfig()

    for section in _SECTIONS:
        if section in raw and raw[section]:
            target = getattr(cfg, section)
            for k, v in raw[section].items():
                if v is not None and hasattr(target, k):
                    setattr(target, k, v)

    validate_config(cfg)
    return cfg


def _require(condition: bool, message: str):
    if not condition:
        raise ConfigurationError(message)


def validate_config(cfg: PipelineConfig):
    """Validate configuration constraints, raising ConfigurationError."""
    sim = cfg.simulation
    _require(sim.n_intervals >= 2,
             f"n_intervals must be >= 2 (lag-1 statistics), got {sim.n_intervals}")
    _require(sim.fine_steps > 0, "fine_steps must be positive")
    _require(sim.sampling_freq > 0, "sampling_freq must be positive")
    _require(sim.fine_steps % sim.sampling_freq == 0,
             f"fine_steps ({sim.fine_steps}) must be a multiple of "
             f"sampling_freq ({sim.sampling_freq})")
    _require(sim.sigma > 0, "sigma must be positive")
    _require(sim.a > 0, "a must be positive")
    _require(sim.eta > 0, "eta must be positive")
    _require(sim.burn_in >= 0, "burn_in must be non-negative")
    _require(sim.family in FAMILIES,
             f"family must be one of {FAMILIES}, got {sim.family!r}")
    if sim.family != "gaussian":
        _require(sim.mu > 0, f"mu must be positive for family={sim.family!r}")

    _require(cfg.estimation.method in ESTIMATORS,
             f"estimation.method must be one of {ESTIMATORS}, got {cfg.estimation.method!r}")

    t = cfg.testing
    _require(0 < t.alpha < 1, f"alpha must be in (0, 1), got {t.alpha}")
    _require(0 < t.bootstrap_level < 1,
             f"bootstrap_level must be in (0, 1), got {t.bootstrap_level}")
    _require(t.n_bootstrap >= 1, "n_bootstrap must be >= 1")
    _require(t.target_family in TARGET_FAMILIES,
             f"target_family must be one of {TARGET_FAMILIES}, got {t.target_family!r}")

    mc = cfg.monte_carlo
    _require(mc.n_replications >= 1, "n_replications must be >= 1")
    if mc.n_workers is not None:
        _require(mc.n_workers >= 1, "n_workers must be >= 1")

    _require(cfg.data.source in SOURCES,
             f"data.source must be one of {SOURCES}, got {cfg.data.source!r}")
    if cfg.data.source == "csv":
        _require(cfg.data.csv_path is not None, "csv_path required when source=csv")
    method = cfg.estimation.method
    if cfg.data.source == "simulated":
        _require(not (method == "log_ratio" and sim.family == "gaussian"),
                 "estimation.method 'log_ratio' needs a strictly positive path; "
                 "not available for family='gaussian'")
    else:
        _require(method != "true",
                 f"estimation.method 'true' needs a known a; not available for "
                 f"data.source={cfg.data.source!r}")

    hr = cfg.data.hedge_ratio
    _require(hr == "ols" or isinstance(hr, (int, float)),
             f"hedge_ratio must be a number or 'ols', got {hr!r}")
