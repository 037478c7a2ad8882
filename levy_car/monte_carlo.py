"""
Monte Carlo replication of the simulate -> sample -> estimate -> recover ->
test pipeline.

Replications are independent tasks executed by a ReplicationPool. Task i of
a batch always receives child i of SeedSequence(base_seed).spawn(R), so a
study is reproducible for a fixed base seed regardless of worker count, and
no two tasks share a random stream. Inside a task the stream is split once
more into a simulation stream and a test (bootstrap) stream.

The driver blocks until every task of a batch has finished and aggregates
rejection indicators by their arithmetic mean.
"""

import atexit
import logging
import os
import time
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from itertools import repeat
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
from numpy.random import SeedSequence, default_rng

from .config import PipelineConfig, SimulationConfig, validate_config
from .distributions import TargetFamily
from .errors import ConfigurationError
from .estimation import EstimatorKind, estimate_a
from .evaluation import (
    HypothesisTestResult,
    normal_plugin_ks_test,
    parametric_bootstrap_ks_test,
    serial_correlation_test,
)
from .noise import DrivingFamily, generate_noise, stationary_initial_value, unit_interval_sums
from .recovery import recover_increments, recover_increments_estimated_a
from .simulation import sample_path, simulate_car1_path, simulate_driving_path

logger = logging.getLogger(__name__)


@dataclass
class SimulatedPaths:
    """Output of one simulation run; fine-grid paths kept only on request."""
    sampled: np.ndarray
    true_increments: np.ndarray
    y0: float
    driving: Optional[np.ndarray] = None
    state: Optional[np.ndarray] = None


@dataclass
class SeriesAnalysis:
    """Estimate, recovered increments and test results for one series."""
    a_hat: float
    estimator: str
    increments: np.ndarray
    tests: Dict[str, HypothesisTestResult] = field(default_factory=dict)


@dataclass
class StudyResult:
    """Empirical rejection frequency over R replications."""
    name: str
    n_replications: int
    rejection_rate: float
    decisions: np.ndarray
    statistics: np.ndarray
    a_estimates: np.ndarray
    elapsed_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "n_replications": self.n_replications,
            "rejection_rate": self.rejection_rate,
            "mean_statistic": float(np.mean(self.statistics)),
            "mean_a_hat": float(np.mean(self.a_estimates)),
            "sd_a_hat": float(np.std(self.a_estimates)),
            "elapsed_seconds": round(self.elapsed_seconds, 2),
        }


# ---------------------------------------------------------------------------
# Single-replication building blocks
# ---------------------------------------------------------------------------

def simulate_sampled_path(
    sim: SimulationConfig,
    rng: np.random.Generator,
    keep_paths: bool = False,
) -> SimulatedPaths:
    """Simulate noise, the CAR(1) state and its sampled observations."""
    family = DrivingFamily.from_name(sim.family)
    N, K, M = sim.n_intervals, sim.fine_steps, sim.sampling_freq

    noise = generate_noise(family, N, K, sim.mu, sim.eta, rng, burn_in=sim.burn_in)
    if sim.y0 is not None:
        y0 = float(sim.y0)
    else:
        y0 = stationary_initial_value(family, sim.mu, sim.eta, sim.a, sim.sigma, rng)

    state = simulate_car1_path(noise, sim.a, sim.sigma, K, y0, burn_in=sim.burn_in)
    sampled = sample_path(state, K, M)
    true_increments = unit_interval_sums(noise, N, K, burn_in=sim.burn_in)

    if keep_paths:
        driving = simulate_driving_path(noise, burn_in=sim.burn_in)
        return SimulatedPaths(sampled, true_increments, y0, driving=driving, state=state)
    return SimulatedPaths(sampled, true_increments, y0)


def estimate_and_recover(
    sampled: np.ndarray,
    N: int,
    M: int,
    sigma: float,
    kind: EstimatorKind,
    true_a: Optional[float] = None,
) -> Tuple[np.ndarray, float]:
    """Estimate a with the chosen rule and recover the increments; returns (increments, a_hat)."""
    if kind is EstimatorKind.BLOCK_MEAN:
        return recover_increments_estimated_a(sampled, N, M, sigma)
    a_hat = estimate_a(kind, sampled, N, M, true_a=true_a)
    return recover_increments(sampled, a_hat, M, sigma), a_hat


def analyze_series(
    sampled: np.ndarray,
    cfg: PipelineConfig,
    rng: np.random.Generator,
    true_a: Optional[float] = None,
    tests: Tuple[str, ...] = ("serial", "normal_plugin", "bootstrap"),
    return_null: bool = False,
) -> SeriesAnalysis:
    """
    Run estimation, recovery and the selected tests on one sampled series.

    Works identically for simulated paths and externally supplied
    observations; N is taken from the series length.
    """
    M = cfg.simulation.sampling_freq
    sampled = np.asarray(sampled, dtype=np.float64)
    if len(sampled) % M != 0:
        raise ConfigurationError(
            f"Series length {len(sampled)} is not a multiple of sampling_freq={M}"
        )
    N = len(sampled) // M
    kind = EstimatorKind.from_name(cfg.estimation.method)

    increments, a_hat = estimate_and_recover(
        sampled, N, M, cfg.simulation.sigma, kind, true_a=true_a,
    )
    analysis = SeriesAnalysis(a_hat=a_hat, estimator=kind.value, increments=increments)

    t = cfg.testing
    if "serial" in tests:
        analysis.tests["serial"] = serial_correlation_test(increments, alpha=t.alpha)
    if "normal_plugin" in tests:
        analysis.tests["normal_plugin"] = normal_plugin_ks_test(increments, rng, alpha=t.alpha)
    if "bootstrap" in tests:
        analysis.tests["bootstrap"] = parametric_bootstrap_ks_test(
            increments,
            TargetFamily.from_name(t.target_family),
            rng,
            n_bootstrap=t.n_bootstrap,
            level=t.bootstrap_level,
            return_null=return_null,
        )
    return analysis


def _replicate(cfg: PipelineConfig, seed: SeedSequence, test: str) -> Tuple[bool, float, float]:
    sim_seed, test_seed = seed.spawn(2)
    paths = simulate_sampled_path(cfg.simulation, default_rng(sim_seed))
    analysis = analyze_series(
        paths.sampled, cfg, default_rng(test_seed),
        true_a=cfg.simulation.a, tests=(test,),
    )
    result = analysis.tests[test]
    return result.reject, result.statistic, analysis.a_hat


# Module-level task functions (picklable for ProcessPoolExecutor)

def serial_replication(cfg: PipelineConfig, seed: SeedSequence) -> Tuple[bool, float, float]:
    return _replicate(cfg, seed, "serial")


def normal_plugin_replication(cfg: PipelineConfig, seed: SeedSequence) -> Tuple[bool, float, float]:
    return _replicate(cfg, seed, "normal_plugin")


def bootstrap_replication(cfg: PipelineConfig, seed: SeedSequence) -> Tuple[bool, float, float]:
    return _replicate(cfg, seed, "bootstrap")


# ---------------------------------------------------------------------------
# Worker pool
# ---------------------------------------------------------------------------

class ReplicationPool:
    """
    Reusable pool for batches of independent replication tasks.

    The executor is created on the first batch and reused for later ones.
    It is shut down by close(), on context-manager exit, or at interpreter
    exit. max_workers=1 runs tasks in the calling process.
    """

    def __init__(self, max_workers: Optional[int] = None):
        if max_workers is not None and max_workers < 1:
            raise ConfigurationError(f"max_workers must be >= 1, got {max_workers}")
        self.max_workers = max_workers or os.cpu_count() or 1
        self._executor: Optional[ProcessPoolExecutor] = None
        self.batches_run = 0

    def __enter__(self) -> "ReplicationPool":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _ensure_executor(self) -> ProcessPoolExecutor:
        if self._executor is None:
            logger.info("Starting replication pool with %d workers", self.max_workers)
            self._executor = ProcessPoolExecutor(max_workers=self.max_workers)
            atexit.register(self.close)
        return self._executor

    @staticmethod
    def derive_seeds(base_seed: int, n_tasks: int) -> List[SeedSequence]:
        """Independent child streams, task i -> child i."""
        return SeedSequence(base_seed).spawn(n_tasks)

    def run_batch(
        self,
        task: Callable[[PipelineConfig, SeedSequence], Any],
        cfg: PipelineConfig,
        base_seed: int,
        n_tasks: int,
    ) -> List[Any]:
        """Run n_tasks replications of task and return results in task order."""
        if n_tasks < 1:
            raise ConfigurationError(f"n_tasks must be >= 1, got {n_tasks}")
        seeds = self.derive_seeds(base_seed, n_tasks)
        self.batches_run += 1

        if self.max_workers == 1:
            return [task(cfg, s) for s in seeds]

        executor = self._ensure_executor()
        chunksize = max(1, n_tasks // (4 * self.max_workers))
        return list(executor.map(task, repeat(cfg), seeds, chunksize=chunksize))

    def close(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
            atexit.unregister(self.close)


# ---------------------------------------------------------------------------
# Studies
# ---------------------------------------------------------------------------

_TASKS = {
    "serial": serial_replication,
    "normal_plugin": normal_plugin_replication,
    "bootstrap": bootstrap_replication,
}


def run_study(
    cfg: PipelineConfig,
    test: str,
    pool: Optional[ReplicationPool] = None,
    n_replications: Optional[int] = None,
) -> StudyResult:
    """
    Empirical rejection frequency of one test over R fresh simulations.

    Parameters
    ----------
    cfg : PipelineConfig
        Simulation, estimation and test settings.
    test : str
        "serial", "normal_plugin" or "bootstrap".
    pool : ReplicationPool, optional
        Pool to run on; a temporary one sized by cfg.monte_carlo.n_workers
        is used (and closed) when omitted.
    n_replications : int, optional
        Overrides cfg.monte_carlo.n_replications.
    """
    if test not in _TASKS:
        raise ConfigurationError(f"Unknown study {test!r}, expected one of {list(_TASKS)}")
    validate_config(cfg)
    R = n_replications if n_replications is not None else cfg.monte_carlo.n_replications
    if R < 1:
        raise ConfigurationError(f"n_replications must be >= 1, got {R}")

    own_pool = pool is None
    if own_pool:
        pool = ReplicationPool(cfg.monte_carlo.n_workers)

    logger.info(
        "Study %s: family=%s, estimator=%s, R=%d, workers=%d",
        test, cfg.simulation.family, cfg.estimation.method, R, pool.max_workers,
    )
    t_start = time.perf_counter()
    try:
        rows = pool.run_batch(_TASKS[test], cfg, cfg.monte_carlo.base_seed, R)
    finally:
        if own_pool:
            pool.close()
    elapsed = time.perf_counter() - t_start

    decisions = np.array([r[0] for r in rows], dtype=bool)
    statistics = np.array([r[1] for r in rows], dtype=np.float64)
    a_estimates = np.array([r[2] for r in rows], dtype=np.float64)
    rate = float(np.mean(decisions))
    logger.info("Study %s: rejection rate %.4f over %d replications (%.1fs)",
                test, rate, R, elapsed)

    return StudyResult(
        name=test,
        n_replications=R,
        rejection_rate=rate,
        decisions=decisions,
        statistics=statistics,
        a_estimates=a_estimates,
        elapsed_seconds=elapsed,
    )


def run_serial_correlation_study(cfg: PipelineConfig, pool: Optional[ReplicationPool] = None,
                                 n_replications: Optional[int] = None) -> StudyResult:
    return run_study(cfg, "serial", pool=pool, n_replications=n_replications)


def run_normal_plugin_study(cfg: PipelineConfig, pool: Optional[ReplicationPool] = None,
                            n_replications: Optional[int] = None) -> StudyResult:
    return run_study(cfg, "normal_plugin", pool=pool, n_replications=n_replications)


def run_bootstrap_gof_study(cfg: PipelineConfig, pool: Optional[ReplicationPool] = None,
                            n_replications: Optional[int] = None) -> StudyResult:
    return run_study(cfg, "bootstrap", pool=pool, n_replications=n_replications)
