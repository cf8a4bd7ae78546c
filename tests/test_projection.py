from __future__ import annotations

import numpy as np
import pytest

from cropniche.exceptions import ConfigurationMismatchError
from cropniche.modeling.projection import project_response, to_percent
from cropniche.modeling.smoothing import SmoothedResponse
from cropniche.proxy import BANDS


def _constant_model(grid, p: float) -> SmoothedResponse:
    knots = np.linspace(-20.0, 20.0, 401)
    return SmoothedResponse(knots=knots, values=np.full((grid.n_cells, knots.size), p), cells=grid.cell_index)


def test_to_percent_rounds_and_clips():
    np.testing.assert_array_equal(to_percent([0.0, 0.123, 0.5, 0.996, 1.2, -0.1]), [0, 12, 50, 100, 100, 0])
    assert np.isnan(to_percent([np.nan])[0])


def test_constant_model_projects_to_uniform_fifty(grid, proxy):
    da = project_response(_constant_model(grid, 0.5), proxy, grid)

    assert da.dims == ("band", "years_bp", "y", "x")
    land = np.isfinite(grid.elevation.values)
    for b in BANDS:
        for t in range(proxy.n_steps):
            layer = da.sel(band=b).isel(years_bp=t).values
            assert (layer[land] == 50).all()
            assert np.isnan(layer[~land]).all()


def test_three_steps_three_layers_per_band_with_labels(grid, proxy):
    da = project_response(_constant_model(grid, 0.2), proxy, grid)

    assert da.sizes["band"] == 3
    assert da.sizes["years_bp"] == 3
    assert list(da["band"].values) == ["lower", "central", "upper"]
    np.testing.assert_array_equal(da["years_bp"].values, [6000, 3000, 0])
    assert da.attrs["units"] == "percent"
    assert da.rio.crs is not None


def test_bands_evaluate_their_own_proxy_values(grid, proxy):
    knots = np.array([-10.0, 10.0])
    values = np.tile([0.0, 1.0], (grid.n_cells, 1))  # p = (x + 10) / 20
    resp = SmoothedResponse(knots=knots, values=values, cells=grid.cell_index)

    da = project_response(resp, proxy, grid)
    cell = da.isel(y=0, x=0)

    for b in BANDS:
        expected = np.rint(100.0 * (proxy.band(b) + 10.0) / 20.0)
        np.testing.assert_array_equal(cell.sel(band=b).values, expected)


def test_time_order_follows_the_proxy(grid, proxy):
    from cropniche.proxy import ProxySeries

    flipped = ProxySeries(
        years_bp=proxy.years_bp[::-1],
        lower=proxy.lower[::-1],
        central=proxy.central[::-1],
        upper=proxy.upper[::-1],
    )
    resp = SmoothedResponse(
        knots=np.array([-10.0, 10.0]), values=np.tile([0.0, 1.0], (grid.n_cells, 1)), cells=grid.cell_index
    )
    a = project_response(resp, proxy, grid)
    b = project_response(resp, flipped, grid)

    np.testing.assert_array_equal(b["years_bp"].values, [0, 3000, 6000])
    np.testing.assert_array_equal(a.sel(years_bp=3000).values, b.sel(years_bp=3000).values)


def test_model_grid_mismatch(grid, proxy):
    knots = np.array([0.0, 1.0])
    small = SmoothedResponse(knots=knots, values=np.zeros((grid.n_cells - 1, 2)))
    with pytest.raises(ConfigurationMismatchError):
        project_response(small, proxy, grid)


def test_projects_stored_model_dataset(grid, proxy):
    ds = _constant_model(grid, 0.5).to_dataset()
    ds.attrs["cultivar_id"] = "rice_test"
    da = project_response(ds, proxy, grid)
    assert da.attrs["cultivar_id"] == "rice_test"
    assert np.nanmax(da.values) == 50
