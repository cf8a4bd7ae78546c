from __future__ import annotations

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest
import xarray as xr
import rioxarray  # noqa: F401  (needed for .rio accessor)

from cropniche.grid import ElevationGrid
from cropniche.modeling.config import KrigingConfig, NicheConfig, SmoothingConfig, offset_axis
from cropniche.proxy import ProxySeries

OFFSETS = offset_axis(-20, 20, 1)

# offset (SD) from which each station meets the GDD requirement
STATION_ONSET = {"S1": 5.0, "S2": 1.0, "S3": 0.0}


@pytest.fixture
def elevation_da() -> xr.DataArray:
    """3 x 4 degree grid far from the stations, one cell off land."""
    values = np.array(
        [
            [120.0, 250.0, 300.0, np.nan],
            [90.0, 180.0, 410.0, 520.0],
            [60.0, 75.0, 95.0, 130.0],
        ],
        dtype="float32",
    )
    da = xr.DataArray(
        values,
        dims=("y", "x"),
        coords={"y": [12.5, 11.5, 10.5], "x": [120.5, 121.5, 122.5, 123.5]},
        name="elevation",
    )
    return da.rio.write_crs("EPSG:4326")


@pytest.fixture
def grid(elevation_da) -> ElevationGrid:
    return ElevationGrid(elevation_da)


@pytest.fixture
def stations() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "station_id": ["S1", "S2", "S3"],
            "lon": [80.0, 90.0, 100.0],
            "lat": [40.0, 45.0, 50.0],
            "elevation": [1500.0, 800.0, 200.0],
        }
    )


@pytest.fixture
def gdd_table() -> pd.DataFrame:
    """GDD crosses 1000 at each station's onset offset; base temperature 10 C."""
    rows = []
    for sid, onset in STATION_ONSET.items():
        for o in OFFSETS:
            rows.append({"station_id": sid, "t_base": 10.0, "offset_sd": o, "gdd": 1000.0 + 100.0 * (o - onset)})
    return pd.DataFrame(rows)


@pytest.fixture
def cultivar() -> dict:
    return {"cultivar_id": "rice_test", "crop": "Rice", "t_base": 10.0, "min_gdd": 1000.0}


@pytest.fixture
def niche_cfg() -> NicheConfig:
    # stations and grid cells are degrees apart, far beyond the 1 km range
    return NicheConfig(
        offsets_sd=OFFSETS,
        kriging=KrigingConfig(sill=1.0, range_km=1.0, nugget=0.0, drift_terms=(), min_stations=3),
        smoothing=SmoothingConfig(),
    )


@pytest.fixture
def proxy() -> ProxySeries:
    return ProxySeries(
        years_bp=np.array([6000, 3000, 0]),
        lower=np.array([-3.0, -1.0, 0.0]),
        central=np.array([-1.0, 0.4, 2.0]),
        upper=np.array([1.0, 2.0, 6.0]),
    )


@pytest.fixture
def offsets() -> tuple[float, ...]:
    return OFFSETS
