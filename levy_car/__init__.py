"""
levy_car: Levy-driven CAR(1) Model Verification

Quantitative research framework for checking whether an observed series is
compatible with a Levy-driven continuous-time AR(1) (generalized
Ornstein-Uhlenbeck) model: Euler-Maruyama simulation under Gaussian, Gamma,
Inverse Gaussian and mixture driving noise, mean-reversion estimation,
recovery of the latent driving increments, and serial-correlation and
parametric-bootstrap goodness-of-fit tests with parallel Monte Carlo
size/power studies.
"""

__version__ = "1.0.0"

__all__ = [
    # Errors
    "ConfigurationError",
    "DomainError",
    "DegenerateDataError",
    # Config
    "PipelineConfig",
    "SimulationConfig",
    "EstimationConfig",
    "HypothesisConfig",
    "MonteCarloConfig",
    "DataConfig",
    "OutputConfig",
    "load_config",
    "validate_config",
    # Noise / simulation
    "DrivingFamily",
    "generate_noise",
    "unit_interval_sums",
    "stationary_initial_value",
    "unit_mean",
    "simulate_driving_path",
    "simulate_car1_path",
    "sample_path",
    # Estimation / recovery
    "EstimatorKind",
    "estimate_a",
    "estimate_a_autocov",
    "estimate_a_log_ratio",
    "estimate_a_block_mean",
    "recover_increments",
    "recover_increments_estimated_a",
    # Tests
    "TargetFamily",
    "HypothesisTestResult",
    "serial_correlation_test",
    "normal_plugin_ks_test",
    "parametric_bootstrap_ks_test",
    # Monte Carlo
    "ReplicationPool",
    "StudyResult",
    "simulate_sampled_path",
    "analyze_series",
    "run_study",
    "run_serial_correlation_study",
    "run_normal_plugin_study",
    "run_bootstrap_gof_study",
    # Data / output
    "load_spread",
    "write_outputs",
]

from .errors import ConfigurationError, DomainError, DegenerateDataError
from .config import (
    PipelineConfig,
    SimulationConfig,
    EstimationConfig,
    HypothesisConfig,
    MonteCarloConfig,
    DataConfig,
    OutputConfig,
    load_config,
    validate_config,
)
from .noise import DrivingFamily, generate_noise, unit_interval_sums, stationary_initial_value, unit_mean
from .simulation import simulate_driving_path, simulate_car1_path, sample_path
from .estimation import EstimatorKind, estimate_a, estimate_a_autocov, estimate_a_log_ratio, estimate_a_block_mean
from .recovery import recover_increments, recover_increments_estimated_a
from .distributions import TargetFamily
from .evaluation import HypothesisTestResult, serial_correlation_test, normal_plugin_ks_test, parametric_bootstrap_ks_test
from .monte_carlo import (
    ReplicationPool,
    StudyResult,
    simulate_sampled_path,
    analyze_series,
    run_study,
    run_serial_correlation_study,
    run_normal_plugin_study,
    run_bootstrap_gof_study,
)
from .data_layer import load_spread
from .output import write_outputs
