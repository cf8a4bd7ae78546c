from __future__ import annotations

import numpy as np
import pandas as pd
import rasterio
import xarray as xr

from cropniche.modeling.projection import project_response
from cropniche.modeling.smoothing import SmoothedResponse
from cropniche.reporting import (
    export_geotiff,
    fig_reconstruction_maps,
    fig_reconstruction_timeseries,
    save_df,
    summarize_reconstruction,
)


def _recon(grid, proxy) -> xr.DataArray:
    resp = SmoothedResponse(
        knots=np.array([-10.0, 10.0]), values=np.tile([0.0, 1.0], (grid.n_cells, 1)), cells=grid.cell_index
    )
    return project_response(resp, proxy, grid)


def test_summary_quartiles_ignore_off_land_cells():
    data = np.full((1, 1, 2, 3), np.nan, dtype="float32")
    data[0, 0].flat[:5] = [0, 10, 20, 30, 40]
    da = xr.DataArray(
        data,
        dims=("band", "years_bp", "y", "x"),
        coords={"band": ["central"], "years_bp": [500], "y": [1.5, 0.5], "x": [0.5, 1.5, 2.5]},
    )

    s = summarize_reconstruction(da)

    row = s.iloc[0]
    assert (row["band"], row["years_bp"], row["n_cells"]) == ("central", 500, 5)
    assert (row["mean"], row["q25"], row["median"], row["q75"]) == (20.0, 10.0, 20.0, 30.0)


def test_summary_has_one_row_per_band_and_step(grid, proxy):
    s = summarize_reconstruction(_recon(grid, proxy))
    assert len(s) == 3 * proxy.n_steps
    assert s["mean"].between(0, 100).all()


def test_save_df_by_suffix(tmp_path):
    df = pd.DataFrame({"a": [1, 2]})
    save_df(df, tmp_path / "t" / "x.parquet")
    save_df(df, tmp_path / "t" / "x.csv")
    pd.testing.assert_frame_equal(pd.read_parquet(tmp_path / "t" / "x.parquet"), df)
    pd.testing.assert_frame_equal(pd.read_csv(tmp_path / "t" / "x.csv"), df)


def test_figures_are_written(tmp_path, grid, proxy):
    da = _recon(grid, proxy)
    fig_reconstruction_timeseries(summarize_reconstruction(da), tmp_path / "ts.png", title="rice")
    fig_reconstruction_maps(da, tmp_path / "maps.png")
    assert (tmp_path / "ts.png").stat().st_size > 0
    assert (tmp_path / "maps.png").stat().st_size > 0


def test_geotiff_layers_are_labelled_by_years(tmp_path, grid, proxy):
    da = _recon(grid, proxy)
    p = tmp_path / "central.tif"

    export_geotiff(da, "central", p)

    with rasterio.open(p) as src:
        assert src.count == proxy.n_steps
        assert src.descriptions == ("6000 BP", "3000 BP", "0 BP")
        assert src.nodata == -1
        layer = src.read(1)
    assert layer[0, 3] == -1
    np.testing.assert_array_equal(layer[0, 0], da.sel(band="central").values[0, 0, 0])
