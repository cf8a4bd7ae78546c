from __future__ import annotations

from typing import Sequence

import numpy as np
import xarray as xr

from cropniche.exceptions import ConfigurationMismatchError

ALIGNED_COORDS = ("band", "years_bp", "y", "x")


def check_aligned(recons: Sequence[xr.DataArray]) -> None:
    """
    Every reconstruction must share dims and the exact band, time and
    spatial coordinates of the first one; no partial alignment.
    """
    ref = recons[0]
    for i, da in enumerate(recons[1:], start=1):
        if da.dims != ref.dims:
            raise ConfigurationMismatchError(f"Reconstruction {i} has dims {da.dims}, expected {ref.dims}")
        for c in ALIGNED_COORDS:
            if c not in da.coords or c not in ref.coords:
                raise ConfigurationMismatchError(f"Reconstruction {i} lacks coordinate {c!r}")
            if not np.array_equal(da[c].values, ref[c].values):
                raise ConfigurationMismatchError(f"Reconstruction {i} disagrees with the first on {c!r}")


def aggregate_reconstructions(recons: Sequence[xr.DataArray], crop: str | None = None) -> xr.DataArray:
    """
    Per-cell, per-band, per-time-step mean of cultivar reconstructions,
    rounded to whole percentages. One input is returned unchanged.
    """
    recons = list(recons)
    if not recons:
        raise ValueError("Nothing to aggregate")
    if len(recons) == 1:
        return recons[0].copy(deep=True)

    check_aligned(recons)

    stacked = np.stack([da.values.astype("float64") for da in recons])
    out = recons[0].copy(data=np.rint(stacked.mean(axis=0)).astype(recons[0].dtype))

    out.attrs = {"units": recons[0].attrs.get("units", "percent")}
    out.attrs["cultivars"] = ",".join(str(da.attrs.get("cultivar_id", i)) for i, da in enumerate(recons))
    if crop is not None:
        out.attrs["crop"] = crop
    return out
