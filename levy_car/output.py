"""
Output generation: CSV, JSON summary, and matplotlib charts.

Charts (matplotlib only):
    1) sampled_path.png           observed / sampled state series
    2) recovered_increments.png   histogram with the fitted target density
    3) bootstrap_null.png         bootstrap KS null with observed statistic
    4) rejection_rates.png        Monte Carlo rejection rate per study
"""

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

_STYLE = {
    "figure.facecolor": "#FAFAFA",
    "axes.facecolor": "#FFFFFF",
    "axes.edgecolor": "#CCCCCC",
    "axes.grid": True,
    "grid.alpha": 0.25,
    "grid.color": "#CCCCCC",
    "font.size": 10,
    "axes.titlesize": 12,
    "axes.labelsize": 10,
    "legend.fontsize": 8,
}

_COLOR_PATH = "#2D2D2D"
_COLOR_HIST = "#7FBBDB"
_COLOR_FIT = "#1B6CA8"
_COLOR_REJECT = "#D62728"


def write_outputs(
    cfg,
    run_id: str,
    metadata: Dict[str, Any],
    analysis=None,
    sampled: Optional[np.ndarray] = None,
    studies: Optional[List[Any]] = None,
) -> Path:
    """
    Write all output files to <base_dir>/<run_id>/.

    analysis is a SeriesAnalysis (single-series modes), studies a list of
    StudyResult (Monte Carlo mode). Returns the output directory path.
    """
    out_dir = Path(cfg.output.base_dir) / run_id
    charts_dir = out_dir / "charts"
    out_dir.mkdir(parents=True, exist_ok=True)

    if analysis is not None:
        inc_path = out_dir / "recovered_increments.csv"
        pd.DataFrame({
            "interval": np.arange(1, len(analysis.increments) + 1),
            "increment": analysis.increments,
        }).to_csv(inc_path, index=False)
        logger.info("Wrote %s (%d rows)", inc_path, len(analysis.increments))

    if studies:
        study_path = out_dir / "studies.csv"
        pd.DataFrame([s.to_dict() for s in studies]).to_csv(study_path, index=False)
        logger.info("Wrote %s", study_path)

    summary = _build_summary(cfg, run_id, metadata, analysis, studies)
    summary_path = out_dir / "summary.json"
    with open(summary_path, "w") as f:
        json.dump(summary, f, indent=2, default=_json_serializer)
    logger.info("Wrote %s", summary_path)

    if cfg.output.charts:
        charts_dir.mkdir(parents=True, exist_ok=True)
        _generate_charts(cfg, charts_dir, analysis, sampled, studies)

    return out_dir


def _build_summary(cfg, run_id: str, metadata, analysis, studies) -> dict:
    """Build the summary.json content."""
    summary: Dict[str, Any] = {
        "run_id": run_id,
        "config": {
            "simulation": asdict(cfg.simulation),
            "estimation": asdict(cfg.estimation),
            "testing": asdict(cfg.testing),
            "monte_carlo": asdict(cfg.monte_carlo),
            "data_source": cfg.data.source,
        },
        "metadata": metadata,
    }
    if analysis is not None:
        summary["estimate"] = {"method": analysis.estimator, "a_hat": analysis.a_hat}
        summary["n_increments"] = len(analysis.increments)
        tests = {}
        for key, res in analysis.tests.items():
            d = res.to_dict()
            d["details"] = {k: v for k, v in d["details"].items() if k != "null"}
            tests[key] = d
        summary["tests"] = tests
    if studies:
        summary["studies"] = [s.to_dict() for s in studies]
    return summary


def _json_serializer(obj):
    """Handle numpy types in JSON serialization."""
    if isinstance(obj, (np.integer,)):
        return int(obj)
    if isinstance(obj, (np.floating,)):
        return float(obj) if not np.isnan(obj) else None
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, pd.Timestamp):
        return str(obj)
    return str(obj)


def _generate_charts(cfg, charts_dir: Path, analysis, sampled, studies):
    """Generate matplotlib charts for whatever results are present."""
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    plt.rcParams.update(_STYLE)
    n_charts = 0

    if sampled is not None:
        _chart_sampled_path(sampled, cfg.simulation.sampling_freq, charts_dir)
        n_charts += 1
    if analysis is not None:
        _chart_recovered_increments(analysis, charts_dir)
        n_charts += 1
        boot = analysis.tests.get("bootstrap")
        if boot is not None and "null" in boot.details:
            _chart_bootstrap_null(boot, charts_dir)
            n_charts += 1
    if studies:
        _chart_rejection_rates(studies, cfg.testing.alpha, charts_dir)
        n_charts += 1

    logger.info("Charts saved to %s (%d charts)", charts_dir, n_charts)


def _chart_sampled_path(sampled, M, charts_dir):
    """Chart 1: sampled path on the unit-interval time axis."""
    import matplotlib.pyplot as plt

    t = np.arange(1, len(sampled) + 1) / M
    fig, ax = plt.subplots(figsize=(14, 4.5))
    ax.plot(t, sampled, color=_COLOR_PATH, linewidth=0.8)
    ax.set_xlabel("time (unit intervals)")
    ax.set_ylabel("Y")
    ax.set_title("Sampled state path")
    fig.tight_layout()
    fig.savefig(charts_dir / "sampled_path.png", dpi=120)
    plt.close(fig)


def _chart_recovered_increments(analysis, charts_dir):
    """Chart 2: recovered increments with the fitted bootstrap-target density."""
    import matplotlib.pyplot as plt
    from scipy import stats

    x = analysis.increments
    fig, ax = plt.subplots(figsize=(10, 5))
    ax.hist(x, bins=min(40, max(10, len(x) // 5)), density=True,
            color=_COLOR_HIST, edgecolor="white", label="recovered")

    boot = analysis.tests.get("bootstrap")
    if boot is not None:
        fitted = boot.details["fitted"]
        grid = np.linspace(x.min(), x.max(), 400)
        family = boot.details["family"]
        if family == "normal":
            dens = stats.norm.pdf(grid, fitted["mean"], fitted["sd"])
        elif family == "gamma":
            dens = stats.gamma.pdf(grid, fitted["shape"], scale=1.0 / fitted["rate"])
        else:
            dens = stats.invgauss.pdf(grid, fitted["mean"] / fitted["shape"], scale=fitted["shape"])
        ax.plot(grid, dens, color=_COLOR_FIT, linewidth=1.5, label=f"fitted {family}")

    ax.set_title(f"Recovered increments (a_hat={analysis.a_hat:.4f}, {analysis.estimator})")
    ax.legend()
    fig.tight_layout()
    fig.savefig(charts_dir / "recovered_increments.png", dpi=120)
    plt.close(fig)


def _chart_bootstrap_null(result, charts_dir):
    """Chart 3: bootstrap null distribution of sqrt(n) * D."""
    import matplotlib.pyplot as plt

    fig, ax = plt.subplots(figsize=(10, 5))
    ax.hist(result.details["null"], bins=40, color=_COLOR_HIST, edgecolor="white")
    ax.axvline(result.critical_value, color=_COLOR_FIT, linestyle="--", label="critical value")
    ax.axvline(result.statistic, color=_COLOR_REJECT, linewidth=1.5, label="observed")
    ax.set_title(f"Parametric bootstrap null ({result.details['family']})")
    ax.legend()
    fig.tight_layout()
    fig.savefig(charts_dir / "bootstrap_null.png", dpi=120)
    plt.close(fig)


def _chart_rejection_rates(studies, alpha, charts_dir):
    """Chart 4: empirical rejection rate per study against the nominal level."""
    import matplotlib.pyplot as plt

    names = [s.name for s in studies]
    rates = [s.rejection_rate for s in studies]
    fig, ax = plt.subplots(figsize=(8, 4.5))
    ax.bar(names, rates, color=_COLOR_FIT)
    ax.axhline(alpha, color=_COLOR_REJECT, linestyle="--", label=f"alpha={alpha}")
    ax.set_ylim(0, 1)
    ax.set_ylabel("rejection rate")
    ax.legend()
    fig.tight_layout()
    fig.savefig(charts_dir / "rejection_rates.png", dpi=120)
    plt.close(fig)
