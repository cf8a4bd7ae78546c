from __future__ import annotations

from pathlib import Path
from typing import Mapping, Optional

import numpy as np
import xarray as xr
import rioxarray  # noqa: F401  (needed for .rio accessor)

DEFAULT_CRS = "EPSG:4326"


class ElevationGrid:
    """
    Land-masked elevation raster seen as a flat list of prediction cells.

    Cells are the finite pixels of `elevation` in C order (row by row, top to
    bottom). Every per-cell array in the pipeline uses this order, and
    `to_raster` scatters such arrays back onto the (y, x) raster.
    """

    def __init__(self, elevation: xr.DataArray):
        da = elevation
        if "band" in da.dims:
            da = da.squeeze("band", drop=True)
        if set(da.dims) != {"y", "x"}:
            raise ValueError(f"Elevation grid needs dims (y, x); got {da.dims}")

        da = da.transpose("y", "x").astype("float32")
        if da.rio.crs is None:
            da = da.rio.write_crs(DEFAULT_CRS)
        self.elevation = da.rename("elevation")

        values = self.elevation.values.ravel()
        self.cell_index = np.flatnonzero(np.isfinite(values))
        if self.cell_index.size == 0:
            raise ValueError("Elevation grid has no land cells")

        xx, yy = np.meshgrid(self.elevation["x"].values, self.elevation["y"].values)
        self.lon = xx.ravel()[self.cell_index].astype("float64")
        self.lat = yy.ravel()[self.cell_index].astype("float64")
        self.elevation_values = values[self.cell_index].astype("float64")

    @property
    def shape(self) -> tuple[int, int]:
        return tuple(self.elevation.shape)

    @property
    def n_cells(self) -> int:
        return int(self.cell_index.size)

    @property
    def crs(self):
        return self.elevation.rio.crs

    def same_layout(self, other: "ElevationGrid") -> bool:
        return (
            self.shape == other.shape
            and np.array_equal(self.cell_index, other.cell_index)
            and np.allclose(self.elevation["x"].values, other.elevation["x"].values)
            and np.allclose(self.elevation["y"].values, other.elevation["y"].values)
        )

    def to_raster(
        self,
        values: np.ndarray,
        leading: Optional[Mapping[str, np.ndarray]] = None,
        name: str = "probability",
    ) -> xr.DataArray:
        """
        Scatter per-cell values of shape (*leading, n_cells) onto the raster,
        giving dims (*leading, y, x) with NaN off the land mask.
        """
        leading = dict(leading or {})
        lead_shape = tuple(len(v) for v in leading.values())
        values = np.asarray(values)
        if values.shape != lead_shape + (self.n_cells,):
            raise ValueError(f"Expected values of shape {lead_shape + (self.n_cells,)}, got {values.shape}")

        ny, nx = self.shape
        out = np.full(lead_shape + (ny * nx,), np.nan, dtype="float32")
        out[..., self.cell_index] = values

        coords = {k: np.asarray(v) for k, v in leading.items()}
        coords["y"] = self.elevation["y"].values
        coords["x"] = self.elevation["x"].values

        da = xr.DataArray(
            out.reshape(lead_shape + (ny, nx)),
            dims=tuple(leading) + ("y", "x"),
            coords=coords,
            name=name,
        )
        return da.rio.write_crs(self.crs)

    def sample(self, lon: np.ndarray, lat: np.ndarray) -> np.ndarray:
        """Elevation of the nearest pixel to each (lon, lat); NaN off land."""
        pts = self.elevation.sel(
            x=xr.DataArray(np.asarray(lon, dtype="float64"), dims="pt"),
            y=xr.DataArray(np.asarray(lat, dtype="float64"), dims="pt"),
            method="nearest",
        )
        return pts.values.astype("float64")

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        self.elevation.rio.write_nodata(np.nan).rio.to_raster(path)


def load_elevation_grid(path: Path) -> ElevationGrid:
    if not path.exists():
        raise FileNotFoundError(f"Elevation grid not found: {path}")
    with rioxarray.open_rasterio(path, masked=True) as src:
        da = src.squeeze("band", drop=True).load()
    return ElevationGrid(da)
