from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from cropniche.proxy import ProxySeries, proxy_sd_scale, read_proxy_series


def test_standardized_table_is_read_as_is(tmp_path):
    p = tmp_path / "proxy.csv"
    pd.DataFrame(
        {"years_bp": [9000, 100, 5000], "lower": [-2.0, 0.0, -1.0], "central": [-1.0, 0.5, 0.0], "upper": [0.0, 1.0, 1.0]}
    ).to_csv(p, index=False)

    s = read_proxy_series(p)

    assert s.n_steps == 3
    np.testing.assert_array_equal(s.years_bp, [9000, 100, 5000])  # order kept
    np.testing.assert_allclose(s.band("central"), [-1.0, 0.5, 0.0])


def test_raw_anomalies_are_standardized(tmp_path):
    p = tmp_path / "raw.csv"
    a = np.array([-1.0, 0.0, 1.0, 2.0])
    pd.DataFrame({"years_bp": [300, 200, 100, 0], "anomaly_c": a, "uncertainty_c": 0.5}).to_csv(p, index=False)

    s = read_proxy_series(p)
    sd = a.std(ddof=1)

    np.testing.assert_allclose(s.central, a / sd)
    np.testing.assert_allclose(s.lower, (a - 0.5) / sd)
    np.testing.assert_allclose(s.upper, (a + 0.5) / sd)
    assert proxy_sd_scale(p) == pytest.approx(sd)


def test_sd_scale_needs_raw_record(tmp_path):
    p = tmp_path / "proxy.csv"
    pd.DataFrame({"years_bp": [0], "lower": [0.0], "central": [0.0], "upper": [0.0]}).to_csv(p, index=False)
    with pytest.raises(KeyError):
        proxy_sd_scale(p)


def test_missing_columns(tmp_path):
    p = tmp_path / "proxy.csv"
    pd.DataFrame({"years_bp": [0, 1], "central": [0.0, 1.0]}).to_csv(p, index=False)
    with pytest.raises(KeyError):
        read_proxy_series(p)


def test_duplicate_years_and_nan_rejected():
    with pytest.raises(ValueError):
        ProxySeries(np.array([0, 0]), np.zeros(2), np.zeros(2), np.zeros(2))
    with pytest.raises(ValueError):
        ProxySeries(np.array([0, 1]), np.zeros(2), np.array([0.0, np.nan]), np.zeros(2))


def test_unknown_band():
    s = ProxySeries(np.array([0]), np.zeros(1), np.zeros(1), np.zeros(1))
    with pytest.raises(KeyError):
        s.band("median")
