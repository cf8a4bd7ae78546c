from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np
import pandas as pd

from .io import read_table
from .utils import get_logger

BANDS = ("lower", "central", "upper")


@dataclass(frozen=True, eq=False)
class ProxySeries:
    """
    Standardized temperature anomaly (proxy-SD units) per time step, in the
    order given by the source record. Years are years before present.
    """
    years_bp: np.ndarray
    lower: np.ndarray
    central: np.ndarray
    upper: np.ndarray

    def __post_init__(self) -> None:
        n = len(self.years_bp)
        for b in BANDS:
            v = getattr(self, b)
            if len(v) != n:
                raise ValueError(f"Band {b} has {len(v)} values for {n} time steps")
            if not np.isfinite(np.asarray(v, dtype="float64")).all():
                raise ValueError(f"Band {b} contains non-finite values")
        if pd.Index(self.years_bp).has_duplicates:
            raise ValueError("Proxy record has duplicate years_bp values")

    @property
    def n_steps(self) -> int:
        return int(len(self.years_bp))

    def band(self, name: str) -> np.ndarray:
        if name not in BANDS:
            raise KeyError(f"Unknown proxy band: {name}")
        return np.asarray(getattr(self, name), dtype="float64")

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "ProxySeries":
        missing = {"years_bp", *BANDS} - set(df.columns)
        if missing:
            raise KeyError(f"Proxy table missing required columns: {sorted(missing)}")
        return cls(
            years_bp=df["years_bp"].to_numpy(),
            lower=df["lower"].to_numpy(dtype="float64"),
            central=df["central"].to_numpy(dtype="float64"),
            upper=df["upper"].to_numpy(dtype="float64"),
        )


def standardize_anomalies(df: pd.DataFrame) -> tuple[pd.DataFrame, float]:
    """
    Raw record (years_bp, anomaly_c, uncertainty_c) -> standardized bands.

    central = anomaly / sd, lower/upper = (anomaly -/+ uncertainty) / sd,
    with sd the standard deviation of the anomaly series. Returns the bands
    and sd (degrees C per proxy SD).
    """
    missing = {"years_bp", "anomaly_c", "uncertainty_c"} - set(df.columns)
    if missing:
        raise KeyError(f"Raw proxy table missing required columns: {sorted(missing)}")

    a = pd.to_numeric(df["anomaly_c"], errors="coerce")
    u = pd.to_numeric(df["uncertainty_c"], errors="coerce").abs()
    sd = float(a.std(ddof=1))
    if not np.isfinite(sd) or sd <= 0:
        raise ValueError("Proxy anomalies have no spread; cannot standardize")

    out = pd.DataFrame(
        {
            "years_bp": df["years_bp"].to_numpy(),
            "lower": ((a - u) / sd).to_numpy(),
            "central": (a / sd).to_numpy(),
            "upper": ((a + u) / sd).to_numpy(),
        }
    )
    return out, sd


def read_proxy_series(path: Path) -> ProxySeries:
    """
    Read a proxy record that is either already standardized
    (years_bp, lower, central, upper) or raw in degrees C
    (years_bp, anomaly_c, uncertainty_c).
    """
    logger = get_logger()
    df = read_table(path)

    if set(BANDS) <= set(df.columns):
        series = ProxySeries.from_frame(df)
    else:
        std, sd = standardize_anomalies(df)
        logger.info("Standardized proxy anomalies with sd=%.3f C", sd)
        series = ProxySeries.from_frame(std)

    logger.info(
        "Proxy record %s: %d steps, %s..%s years BP",
        path.name, series.n_steps, series.years_bp[0], series.years_bp[-1],
    )
    return series


def proxy_sd_scale(path: Path) -> float:
    """Degrees C per proxy SD, from a raw (anomaly_c) proxy record."""
    df = read_table(path)
    if "anomaly_c" not in df.columns:
        raise KeyError(
            f"{path.name} has no anomaly_c column; set gdd.sd_scale_c in the project config"
        )
    _std, sd = standardize_anomalies(df)
    return sd
