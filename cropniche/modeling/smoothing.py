from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import xarray as xr
from sklearn.isotonic import isotonic_regression
from statsmodels.nonparametric.smoothers_lowess import lowess

from cropniche.modeling.config import SmoothingConfig


def knot_axis(offsets_sd: np.ndarray, step: float) -> np.ndarray:
    """Dense, evenly spaced offsets spanning the sampled perturbation levels."""
    lo, hi = float(offsets_sd[0]), float(offsets_sd[-1])
    n = max(int(round((hi - lo) / step)), 1)
    return np.linspace(lo, hi, n + 1)


def isotonic_rows(y: np.ndarray, increasing: bool = True) -> np.ndarray:
    """
    Isotonic regression of every row of `y` along its columns.
    Rows that are already monotone are returned as they are.
    """
    out = np.array(y, dtype="float64", copy=True)
    steps = np.diff(out, axis=1)
    monotone = (steps >= 0).all(axis=1) if increasing else (steps <= 0).all(axis=1)
    for i in np.flatnonzero(~monotone):
        out[i] = isotonic_regression(out[i], increasing=increasing)
    return out


def lowess_operator(offsets_sd: np.ndarray, knots: np.ndarray, span: float) -> np.ndarray:
    """
    Hat matrix of degree-1 lowess without robustness iterations.

    Such a fit is linear in the response, so smoothing any curve sampled on
    `offsets_sd` and evaluating it at `knots` is `operator @ y`.
    """
    n = offsets_sd.size
    # at least three points per neighbourhood for a local line
    frac = max(float(span), min(1.0, 3.0 / n))
    op = np.empty((knots.size, n), dtype="float64")
    for j in range(n):
        unit = np.zeros(n)
        unit[j] = 1.0
        op[:, j] = lowess(unit, offsets_sd, frac=frac, it=0, delta=0.0, xvals=knots, is_sorted=True)
    return op


@dataclass
class SmoothedResponse:
    """
    Per-cell niche response curves: probability as a function of perturbation (SD).

    `values[c, k]` is the smoothed probability of cell `c` at `knots[k]`;
    evaluation between knots is linear and clamped beyond the ends.
    """
    knots: np.ndarray
    values: np.ndarray
    cells: np.ndarray | None = None

    def __post_init__(self) -> None:
        self.knots = np.asarray(self.knots, dtype="float64")
        self.values = np.atleast_2d(np.asarray(self.values))
        if self.values.shape[1] != self.knots.size:
            raise ValueError(
                f"values has {self.values.shape[1]} columns but there are {self.knots.size} knots"
            )
        if self.cells is None:
            self.cells = np.arange(self.values.shape[0])
        self.cells = np.asarray(self.cells)
        if self.cells.size != self.values.shape[0]:
            raise ValueError("cells and values disagree on the number of cells")

    @property
    def n_cells(self) -> int:
        return int(self.values.shape[0])

    def evaluate(self, x) -> np.ndarray:
        """Return an (n_cells, len(x)) array of probabilities at offsets `x`."""
        x = np.atleast_1d(np.asarray(x, dtype="float64"))
        k = self.knots
        xc = np.clip(x, k[0], k[-1])
        idx = np.clip(np.searchsorted(k, xc, side="right") - 1, 0, k.size - 2)
        w = (xc - k[idx]) / (k[idx + 1] - k[idx])
        v = self.values
        return v[:, idx] * (1.0 - w) + v[:, idx + 1] * w

    def to_dataset(self) -> xr.Dataset:
        return xr.Dataset(
            {"probability": (("cell", "offset_sd"), self.values.astype("float32"))},
            coords={"cell": self.cells, "offset_sd": self.knots},
        )

    @classmethod
    def from_dataset(cls, ds: xr.Dataset) -> "SmoothedResponse":
        return cls(
            knots=ds["offset_sd"].values,
            values=ds["probability"].values,
            cells=ds["cell"].values,
        )


def smooth_response(
    raw: np.ndarray,
    offsets_sd,
    cfg: SmoothingConfig = SmoothingConfig(),
    cells: np.ndarray | None = None,
) -> SmoothedResponse:
    """
    Turn raw indicator-kriging predictions (cells x offsets) into bounded,
    monotone response curves: clip to [0, 1], isotonic regression along the
    offset axis, then lowess evaluated on a dense knot axis.
    """
    raw = np.atleast_2d(np.asarray(raw, dtype="float64"))
    offsets = np.asarray(offsets_sd, dtype="float64")

    if raw.shape[1] != offsets.size:
        raise ValueError(f"raw has {raw.shape[1]} columns but there are {offsets.size} offsets")
    if not np.isfinite(raw).all():
        raise ValueError("raw predictions contain non-finite values")

    y = isotonic_rows(np.clip(raw, 0.0, 1.0), increasing=cfg.increasing)

    knots = knot_axis(offsets, cfg.knot_step)
    smooth = y @ lowess_operator(offsets, knots, cfg.span).T

    # local lines can overshoot next to a step; restore the bounds and the order
    smooth = np.clip(smooth, 0.0, 1.0)
    if cfg.increasing:
        smooth = np.maximum.accumulate(smooth, axis=1)
    else:
        smooth = np.minimum.accumulate(smooth, axis=1)

    return SmoothedResponse(knots=knots, values=smooth.astype("float32"), cells=cells)
