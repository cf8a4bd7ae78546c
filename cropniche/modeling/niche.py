from __future__ import annotations

from typing import Mapping

import numpy as np
import pandas as pd
import xarray as xr

from cropniche.exceptions import ModelFittingError
from cropniche.gdd import indicator_matrix
from cropniche.grid import ElevationGrid
from cropniche.modeling.config import NicheConfig
from cropniche.modeling.kriging import IndicatorKriging, usable_observations
from cropniche.modeling.smoothing import smooth_response
from cropniche.utils import get_logger

CULTIVAR_ATTRS = ("cultivar_id", "crop", "t_base", "min_gdd")


def station_indicators(
    cultivar: Mapping,
    gdd_table: pd.DataFrame,
    stations: pd.DataFrame,
    offsets_sd,
) -> pd.DataFrame:
    """
    Station table (station_id, lon, lat, elevation) joined to the cultivar's
    0/1 indicator columns, one per perturbation level.
    """
    ind = indicator_matrix(gdd_table, cultivar["t_base"], cultivar["min_gdd"], offsets_sd)
    st = stations[["station_id", "lon", "lat", "elevation"]].set_index("station_id")
    return st.join(ind, how="inner")


def level_surface(
    joined: pd.DataFrame,
    offset: float,
    grid: ElevationGrid,
    cfg: NicheConfig,
) -> np.ndarray:
    """Raw indicator-kriging prediction for one perturbation level at every grid cell."""
    lon = joined["lon"].to_numpy(dtype="float64")
    lat = joined["lat"].to_numpy(dtype="float64")
    elev = joined["elevation"].to_numpy(dtype="float64")
    z = joined[offset].to_numpy(dtype="float64")

    ok = usable_observations(lon, lat, elev, z, cfg.kriging.min_stations)
    values = np.unique(z[ok])
    if values.size == 1 and cfg.degenerate_policy == "constant":
        return np.full(grid.n_cells, values[0], dtype="float64")

    model = IndicatorKriging(cfg.kriging).fit(lon, lat, elev, z)
    return model.predict(grid.lon, grid.lat, grid.elevation_values)


def fit_cultivar_model(
    cultivar: Mapping,
    gdd_table: pd.DataFrame,
    stations: pd.DataFrame,
    grid: ElevationGrid,
    cfg: NicheConfig = NicheConfig(),
) -> xr.Dataset:
    """
    Fit the smoothed niche response of one cultivar over the elevation grid.

    For every perturbation level the stations are thresholded on the
    cultivar's GDD requirement and kriged onto the grid; the stacked
    (cells x levels) predictions are then smoothed into monotone curves.
    Returns the response as a Dataset carrying the cultivar parameters.
    """
    logger = get_logger()
    cid = str(cultivar["cultivar_id"])
    offsets = [float(o) for o in cfg.offsets_sd]

    joined = station_indicators(cultivar, gdd_table, stations, offsets)
    logger.info("[%s] fitting %d levels from %d stations", cid, len(offsets), len(joined))

    raw = np.empty((grid.n_cells, len(offsets)), dtype="float64")
    n_flat = 0
    for j, offset in enumerate(offsets):
        try:
            raw[:, j] = level_surface(joined, offset, grid, cfg)
        except ModelFittingError as e:
            raise ModelFittingError(f"[{cid}] offset={offset:+g} SD: {e}") from e
        n_flat += int(np.ptp(raw[:, j]) == 0)

    if n_flat:
        logger.info("[%s] %d of %d levels are spatially constant", cid, n_flat, len(offsets))

    ds = smooth_response(raw, offsets, cfg.smoothing, cells=grid.cell_index).to_dataset()
    ds.attrs.update({k: cultivar[k] for k in CULTIVAR_ATTRS})
    ds.attrs["sampled_offsets_sd"] = np.asarray(offsets)
    ds.attrs["grid_shape"] = np.asarray(grid.shape)
    return ds
