"""
CLI entry point for Levy-driven CAR(1) model verification.

Usage:
    python -m levy_car.run --config configs/gaussian_null.yaml --mode single
    python -m levy_car.run --config configs/gamma_power.yaml --mode study --study bootstrap
    python -m levy_car.run --config configs/real_data.yaml --mode data
"""

import argparse
import logging
import sys
import time
import uuid
from datetime import datetime

from numpy.random import default_rng

from .config import load_config
from .data_layer import load_spread, to_sampled_path
from .monte_carlo import ReplicationPool, analyze_series, run_study, simulate_sampled_path
from .output import write_outputs

STUDIES = ("serial", "normal_plugin", "bootstrap")


def _print_tests(analysis) -> None:
    print("-" * 60)
    print(f"ESTIMATE: a_hat = {analysis.a_hat:.6f}  [{analysis.estimator}]")
    print(f"          {len(analysis.increments)} recovered increments")
    print("-" * 60)
    print("TESTS")
    print("-" * 60)
    for key, res in analysis.tests.items():
        verdict = "REJECT" if res.reject else "accept"
        crit = f"{res.critical_value:.4f}" if res.critical_value is not None else "   -  "
        pval = f"{res.p_value:.4f}" if res.p_value is not None else "   -  "
        print(f"  {res.name:28s} stat={res.statistic:+.4f}  crit={crit}  p={pval}  -> {verdict}")


def main():
    parser = argparse.ArgumentParser(
        description="Levy-driven CAR(1) estimation, increment recovery and model tests",
    )
    parser.add_argument(
        "--config", type=str, required=True,
        help="Path to YAML configuration file",
    )
    parser.add_argument(
        "--mode", type=str, default="single", choices=["single", "study", "data"],
        help="single simulated series, Monte Carlo study, or real-data spread",
    )
    parser.add_argument(
        "--study", nargs="+", choices=STUDIES, default=None,
        help="Tests to replicate in --mode study (default: all)",
    )
    parser.add_argument(
        "--run-id", type=str, default=None,
        help="Custom run ID (default: auto-generated)",
    )
    parser.add_argument(
        "--log-level", type=str, default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger = logging.getLogger("levy_car")

    run_id = args.run_id or f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"
    cfg = load_config(args.config)
    sim = cfg.simulation

    print("=" * 60)
    print("Levy-driven CAR(1) Model Verification")
    print("=" * 60)
    print(f"  run_id:    {run_id}")
    print(f"  mode:      {args.mode}")
    print(f"  family:    {sim.family} (mu={sim.mu}, eta={sim.eta})")
    print(f"  N/K/M:     {sim.n_intervals}/{sim.fine_steps}/{sim.sampling_freq}")
    print(f"  a, sigma:  {sim.a}, {sim.sigma}")
    print(f"  estimator: {cfg.estimation.method}")
    print()

    t_start = time.perf_counter()
    metadata = {"mode": args.mode, "timestamp": datetime.now().isoformat()}

    if args.mode == "study":
        studies = []
        with ReplicationPool(cfg.monte_carlo.n_workers) as pool:
            for name in args.study or STUDIES:
                studies.append(run_study(cfg, name, pool=pool))

        print("-" * 60)
        print(f"RESULTS: rejection rate over R={cfg.monte_carlo.n_replications} (alpha={cfg.testing.alpha})")
        print("-" * 60)
        for s in studies:
            print(f"  {s.name:15s} {s.rejection_rate:.4f}  "
                  f"[mean a_hat={s.a_estimates.mean():.4f}, {s.elapsed_seconds:.1f}s]")
        out_dir = write_outputs(cfg, run_id, metadata, studies=studies)
    else:
        if args.mode == "data":
            logger.info("Loading price pair...")
            spread, data_meta = load_spread(cfg)
            sampled, n_dropped = to_sampled_path(spread, sim.sampling_freq)
            data_meta["n_dropped_for_alignment"] = n_dropped
            metadata["data"] = data_meta
            true_a = None
            print(f"  data:      {len(spread)} rows [{data_meta['actual_start']} .. {data_meta['actual_end']}]")
        else:
            logger.info("Simulating sampled path...")
            paths = simulate_sampled_path(sim, default_rng(sim.seed))
            sampled = paths.sampled
            metadata["y0"] = paths.y0
            true_a = sim.a

        analysis = analyze_series(sampled, cfg, default_rng(cfg.monte_carlo.base_seed),
                                  true_a=true_a, return_null=cfg.output.charts)
        _print_tests(analysis)
        out_dir = write_outputs(cfg, run_id, metadata, analysis=analysis, sampled=sampled)

    elapsed = time.perf_counter() - t_start
    print()
    print("-" * 60)
    print(f"  outputs: {out_dir}")
    print(f"  timing:  {elapsed:.1f}s")
    print("=" * 60)
    print("Done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
