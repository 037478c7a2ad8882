"""
Data ingestion for the real-data application: CSV or synthetic price pairs,
cleaning, and the log-price spread

    spread_t = log(A_t) - h * log(B_t)

with h a fixed hedge ratio or its OLS estimate. The core consumes only the
spread values, as an ordered real series.
"""

import logging
import os
from typing import Any, Dict, Tuple

import numpy as np
import pandas as pd
from numpy.random import default_rng

from .errors import ConfigurationError, DegenerateDataError
from .noise import DrivingFamily, generate_noise, stationary_initial_value
from .simulation import sample_path, simulate_car1_path

logger = logging.getLogger(__name__)


def _date_str(value: object) -> str:
    """Return ISO date string for index/timestamp-like values."""
    text = str(value)
    return text[:10] if len(text) >= 10 else text


def load_pair(cfg) -> Tuple[pd.DataFrame, Dict[str, Any]]:
    """
    Load a price pair according to config. Returns (df, metadata).
    df has a DatetimeIndex and columns 'a' and 'b'.
    """
    meta: Dict[str, Any] = {
        "source_requested": cfg.data.source,
        "csv_path": cfg.data.csv_path,
        "columns_used": None,
        "warnings": [],
    }

    if cfg.data.source == "csv":
        df, meta = _load_csv(cfg, meta)
    elif cfg.data.source == "synthetic":
        df, meta = _generate_synthetic(cfg, meta)
    else:
        raise ConfigurationError(f"Data source {cfg.data.source!r} does not provide a price pair")

    df, meta = _clean_and_validate(df, cfg.data.min_rows, meta)

    meta["rows"] = len(df)
    meta["actual_start"] = _date_str(df.index[0])
    meta["actual_end"] = _date_str(df.index[-1])
    return df, meta


def _load_csv(cfg, meta: dict) -> Tuple[pd.DataFrame, dict]:
    """Load two price columns from a CSV file with a date index."""
    path = cfg.data.csv_path
    if not os.path.exists(path):
        raise FileNotFoundError(f"CSV file not found: {path}")

    raw = pd.read_csv(path, parse_dates=True, index_col=0)

    if cfg.data.asset_a is not None and cfg.data.asset_b is not None:
        missing = [c for c in (cfg.data.asset_a, cfg.data.asset_b) if c not in raw.columns]
        if missing:
            raise ConfigurationError(f"Columns {missing} not in CSV. Columns: {list(raw.columns)}")
        col_a, col_b = cfg.data.asset_a, cfg.data.asset_b
    else:
        numeric = [c for c in raw.columns if pd.api.types.is_numeric_dtype(raw[c])]
        if len(numeric) < 2:
            raise ConfigurationError(
                f"Need two numeric price columns in CSV. Columns: {list(raw.columns)}"
            )
        col_a, col_b = numeric[0], numeric[1]

    df = pd.DataFrame({"a": raw[col_a].values, "b": raw[col_b].values}, index=raw.index)
    meta["columns_used"] = [str(col_a), str(col_b)]
    return df, meta


def _generate_synthetic(cfg, meta: dict) -> Tuple[pd.DataFrame, dict]:
    """Generate a synthetic cointegrated pair whose spread is a sampled CAR(1) path."""
    rng = default_rng(cfg.data.synthetic_seed)
    sim = cfg.simulation
    M = sim.sampling_freq
    N = max(cfg.data.synthetic_days // M, 2)
    K = 20 * M
    family = DrivingFamily.from_name(sim.family)

    noise = generate_noise(family, N, K, sim.mu, sim.eta, rng, burn_in=sim.burn_in)
    y0 = stationary_initial_value(family, sim.mu, sim.eta, sim.a, sim.sigma, rng)
    spread = sample_path(simulate_car1_path(noise, sim.a, sim.sigma, K, y0, burn_in=sim.burn_in), K, M)

    n_obs = len(spread)
    log_b = np.log(100.0) + np.cumsum(0.01 * rng.standard_normal(n_obs))
    log_a = log_b + 0.05 * spread

    dates = pd.bdate_range(start="2015-01-01", periods=n_obs, freq="B")
    df = pd.DataFrame({"a": np.exp(log_a), "b": np.exp(log_b)}, index=dates)

    meta["columns_used"] = ["synthetic_a", "synthetic_b"]
    meta["source_requested"] = "synthetic"
    return df, meta


def _clean_and_validate(
    df: pd.DataFrame, min_rows: int, meta: dict
) -> Tuple[pd.DataFrame, dict]:
    """Clean and validate the price pair."""
    before = len(df)
    df = df.dropna(subset=["a", "b"])
    if len(df) < before:
        meta["warnings"].append(f"Dropped {before - len(df)} NaN rows")

    if not isinstance(df.index, pd.DatetimeIndex):
        df.index = pd.to_datetime(df.index)
    if df.index.tz is not None:
        df.index = df.index.tz_localize(None)

    df = df.sort_index()
    dup_mask = np.asarray(df.index.duplicated(keep="first"), dtype=bool)
    if dup_mask.any():
        meta["warnings"].append(f"Removed {int(dup_mask.sum())} duplicate dates")
        df = df.loc[~dup_mask].copy()

    neg_mask = (df["a"].to_numpy(dtype=float) <= 0.0) | (df["b"].to_numpy(dtype=float) <= 0.0)
    if neg_mask.any():
        meta["warnings"].append(f"Removed {int(neg_mask.sum())} rows with non-positive prices")
        df = df.loc[~neg_mask].copy()

    if len(df) < min_rows:
        raise DegenerateDataError(f"Insufficient data: {len(df)} rows, need >= {min_rows}")

    for w in meta["warnings"]:
        logger.warning("Data warning: %s", w)
    return df, meta


def hedge_ratio(df: pd.DataFrame, ratio) -> float:
    """Fixed hedge ratio, or the OLS slope of log(A) on log(B) when ratio == 'ols'."""
    if ratio == "ols":
        slope, _ = np.polyfit(np.log(df["b"].to_numpy(dtype=float)),
                              np.log(df["a"].to_numpy(dtype=float)), 1)
        return float(slope)
    return float(ratio)


def log_spread(df: pd.DataFrame, h: float) -> pd.Series:
    """log(A) - h * log(B)."""
    spread = np.log(df["a"]) - h * np.log(df["b"])
    return spread.rename("spread")


def to_sampled_path(spread: pd.Series, M: int) -> Tuple[np.ndarray, int]:
    """
    Trim the oldest observations so the series splits into whole blocks of M.

    Returns (values, n_dropped).
    """
    if M <= 0:
        raise ConfigurationError(f"M must be positive, got {M}")
    values = spread.to_numpy(dtype=float)
    n_dropped = len(values) % M
    if n_dropped:
        logger.info("Dropping %d leading observations to align to blocks of %d", n_dropped, M)
    values = values[n_dropped:]
    if len(values) // M < 3:
        raise DegenerateDataError(
            f"Spread of {len(spread)} observations gives fewer than 3 blocks of {M}"
        )
    return values, n_dropped


def load_spread(cfg) -> Tuple[pd.Series, Dict[str, Any]]:
    """Load the pair and return (spread, metadata)."""
    df, meta = load_pair(cfg)
    h = hedge_ratio(df, cfg.data.hedge_ratio)
    spread = log_spread(df, h)
    if float(spread.std()) == 0.0:
        raise DegenerateDataError("Log-price spread is constant")

    meta["hedge_ratio"] = h
    meta["spread_statistics"] = {
        "mean": round(float(spread.mean()), 6),
        "std": round(float(spread.std()), 6),
        "min": round(float(spread.min()), 6),
        "max": round(float(spread.max()), 6),
    }
    logger.info("Loaded spread: %d rows [%s .. %s], hedge ratio %.4f",
                len(spread), meta["actual_start"], meta["actual_end"], h)
    return spread, meta
