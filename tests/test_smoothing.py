from __future__ import annotations

import numpy as np
import pytest

from cropniche.modeling.config import SmoothingConfig
from cropniche.modeling.smoothing import (
    SmoothedResponse,
    isotonic_rows,
    knot_axis,
    lowess_operator,
    smooth_response,
)


def test_knot_axis_spans_offsets():
    k = knot_axis(np.arange(-20.0, 21.0), 0.1)
    assert k[0] == -20.0 and k[-1] == 20.0
    assert k.size == 401
    np.testing.assert_allclose(np.diff(k), 0.1)


def test_isotonic_rows_only_touch_non_monotone_rows():
    y = np.array([[0.0, 0.2, 0.9], [0.5, 0.1, 0.9]])
    out = isotonic_rows(y)
    np.testing.assert_array_equal(out[0], y[0])
    np.testing.assert_allclose(out[1], [0.3, 0.3, 0.9])


def test_lowess_operator_reproduces_lines():
    x = np.arange(-20.0, 21.0)
    knots = knot_axis(x, 0.1)
    op = lowess_operator(x, knots, span=0.1)
    np.testing.assert_allclose(op.sum(axis=1), 1.0, atol=1e-8)
    np.testing.assert_allclose(op @ (0.02 * x + 0.5), 0.02 * knots + 0.5, atol=1e-8)


def test_smoothed_curves_are_monotone_and_bounded(offsets):
    rng = np.random.default_rng(11)
    x = np.asarray(offsets)
    trend = 1.0 / (1.0 + np.exp(-x / 3.0))
    raw = trend[None, :] + rng.normal(0.0, 0.25, size=(30, x.size))  # goes well outside [0, 1]

    resp = smooth_response(raw, offsets)

    assert resp.values.shape == (30, resp.knots.size)
    assert (resp.values >= 0.0).all() and (resp.values <= 1.0).all()
    assert (np.diff(resp.values, axis=1) >= 0.0).all()


def test_degenerate_rows_give_constant_curves(offsets):
    raw = np.vstack([np.zeros(len(offsets)), np.ones(len(offsets)), np.full(len(offsets), 1.7)])
    resp = smooth_response(raw, offsets)
    np.testing.assert_allclose(resp.values[0], 0.0)
    np.testing.assert_allclose(resp.values[1], 1.0)
    np.testing.assert_allclose(resp.values[2], 1.0)


def test_decreasing_orientation(offsets):
    x = np.asarray(offsets)
    raw = (x < 0).astype("float64")[None, :]
    resp = smooth_response(raw, offsets, SmoothingConfig(increasing=False))
    assert (np.diff(resp.values, axis=1) <= 0.0).all()


def test_smooth_response_validates_input(offsets):
    with pytest.raises(ValueError):
        smooth_response(np.zeros((2, 3)), offsets)
    bad = np.zeros((1, len(offsets)))
    bad[0, 4] = np.nan
    with pytest.raises(ValueError):
        smooth_response(bad, offsets)


def test_evaluate_interpolates_and_clamps():
    resp = SmoothedResponse(knots=np.array([-1.0, 0.0, 1.0]), values=np.array([[0.0, 0.4, 0.8]]))
    out = resp.evaluate([-5.0, -0.5, 0.25, 1.0, 7.0])
    np.testing.assert_allclose(out, [[0.0, 0.2, 0.5, 0.8, 0.8]])


def test_dataset_round_trip_keeps_cells():
    resp = SmoothedResponse(
        knots=np.array([0.0, 1.0]), values=np.array([[0.1, 0.2], [0.3, 0.9]]), cells=np.array([4, 9])
    )
    ds = resp.to_dataset()
    assert ds["probability"].dims == ("cell", "offset_sd")
    back = SmoothedResponse.from_dataset(ds)
    np.testing.assert_array_equal(back.cells, [4, 9])
    np.testing.assert_allclose(back.evaluate([0.5]), [[0.15], [0.6]], rtol=1e-6)
