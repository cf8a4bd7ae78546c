from __future__ import annotations

import numpy as np
import xarray as xr

from cropniche.exceptions import ConfigurationMismatchError
from cropniche.grid import ElevationGrid
from cropniche.modeling.smoothing import SmoothedResponse
from cropniche.proxy import BANDS, ProxySeries

RECON_VAR = "niche_pct"


def to_percent(p: np.ndarray) -> np.ndarray:
    """Probability -> integer percentage in 0..100 (kept as float so NaN survives)."""
    return np.clip(np.rint(100.0 * np.asarray(p, dtype="float64")), 0.0, 100.0)


def project_response(
    model: xr.Dataset | SmoothedResponse,
    proxy: ProxySeries,
    grid: ElevationGrid,
) -> xr.DataArray:
    """
    Evaluate every cell's response curve at the proxy anomaly of each time
    step, separately for the lower/central/upper bands.

    Returns percentages with dims (band, years_bp, y, x); time steps keep the
    order of the proxy record.
    """
    resp = model if isinstance(model, SmoothedResponse) else SmoothedResponse.from_dataset(model)

    if resp.n_cells != grid.n_cells or not np.array_equal(resp.cells, grid.cell_index):
        raise ConfigurationMismatchError(
            f"Model covers {resp.n_cells} cells but the elevation grid has {grid.n_cells}"
        )

    stack = np.empty((len(BANDS), proxy.n_steps, grid.n_cells), dtype="float64")
    for i, band in enumerate(BANDS):
        stack[i] = resp.evaluate(proxy.band(band)).T

    da = grid.to_raster(
        to_percent(stack),
        leading={"band": np.asarray(BANDS), "years_bp": np.asarray(proxy.years_bp)},
        name=RECON_VAR,
    )
    da.attrs["units"] = "percent"
    da["years_bp"].attrs["long_name"] = "years before present"

    if isinstance(model, xr.Dataset):
        for k in ("cultivar_id", "crop", "t_base", "min_gdd"):
            if k in model.attrs:
                da.attrs[k] = model.attrs[k]
    return da
