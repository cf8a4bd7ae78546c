from __future__ import annotations

import numpy as np
import scipy.linalg
from pykrige.ok import OrdinaryKriging
from sklearn.linear_model import LinearRegression

from cropniche.exceptions import ModelFittingError
from cropniche.modeling.config import KrigingConfig

DRIFT_TERMS = ("elevation", "lon", "lat")


def count_distinct_locations(lon: np.ndarray, lat: np.ndarray) -> int:
    if len(lon) == 0:
        return 0
    pts = np.round(np.column_stack([lon, lat]), 6)
    return int(np.unique(pts, axis=0).shape[0])


def usable_observations(
    lon: np.ndarray,
    lat: np.ndarray,
    elevation: np.ndarray,
    indicator: np.ndarray,
    min_stations: int,
) -> np.ndarray:
    """
    Boolean mask of stations that can enter a fit.
    Raises ModelFittingError when fewer than `min_stations` distinct locations remain.
    """
    ok = np.isfinite(indicator) & np.isfinite(lon) & np.isfinite(lat) & np.isfinite(elevation)
    n = count_distinct_locations(lon[ok], lat[ok])
    if n < min_stations:
        raise ModelFittingError(
            f"only {n} distinct stations with indicator values (need >= {min_stations})"
        )
    return ok


class IndicatorKriging:
    """
    Regression kriging of a 0/1 indicator.

    A linear drift on the covariates in `cfg.drift_terms` (elevation by default) is
    removed first; the residuals are interpolated by ordinary kriging with an
    exponential variogram on great-circle distances. Predictions are drift +
    kriged residual, returned unbounded.
    """

    def __init__(self, cfg: KrigingConfig = KrigingConfig()):
        unknown = set(cfg.drift_terms) - set(DRIFT_TERMS)
        if unknown:
            raise ValueError(f"Unknown drift terms: {sorted(unknown)}")
        self.cfg = cfg
        self._drift: LinearRegression | None = None
        self._ok: OrdinaryKriging | None = None

    def _design(self, lon: np.ndarray, lat: np.ndarray, elevation: np.ndarray) -> np.ndarray:
        cols = {"elevation": elevation, "lon": lon, "lat": lat}
        return np.column_stack([np.asarray(cols[t], dtype="float64") for t in self.cfg.drift_terms])

    def fit(self, lon, lat, elevation, indicator) -> "IndicatorKriging":
        lon = np.asarray(lon, dtype="float64")
        lat = np.asarray(lat, dtype="float64")
        elevation = np.asarray(elevation, dtype="float64")
        indicator = np.asarray(indicator, dtype="float64")

        ok = usable_observations(lon, lat, elevation, indicator, self.cfg.min_stations)
        lon, lat, elevation, z = lon[ok], lat[ok], elevation[ok], indicator[ok]

        if np.unique(z).size == 1:
            raise ModelFittingError(f"indicator is constant ({z[0]:g}) at every station")

        if self.cfg.drift_terms:
            X = self._design(lon, lat, elevation)
            self._drift = LinearRegression().fit(X, z)
            resid = z - self._drift.predict(X)
        else:
            self._drift = None
            resid = z

        try:
            self._ok = OrdinaryKriging(
                lon,
                lat,
                resid,
                variogram_model=self.cfg.variogram_model,
                variogram_parameters=self.cfg.variogram_parameters(),
                nlags=self.cfg.nlags,
                coordinates_type="geographic",
                pseudo_inv=True,
                verbose=False,
                enable_plotting=False,
            )
        except (ValueError, ZeroDivisionError, np.linalg.LinAlgError, scipy.linalg.LinAlgError) as e:
            raise ModelFittingError(f"variogram fit failed: {e}") from e
        return self

    def predict(self, lon, lat, elevation) -> np.ndarray:
        """
        Predict at target cells in fixed-size batches; output keeps the input order.
        """
        if self._ok is None:
            raise RuntimeError("fit() must be called before predict()")

        lon = np.asarray(lon, dtype="float64")
        lat = np.asarray(lat, dtype="float64")
        elevation = np.asarray(elevation, dtype="float64")

        n = lon.shape[0]
        out = np.empty(n, dtype="float64")
        bs = int(self.cfg.batch_size)

        for start in range(0, n, bs):
            sl = slice(start, min(start + bs, n))
            z, _ss = self._ok.execute("points", lon[sl], lat[sl], backend="vectorized")
            pred = np.ma.getdata(z).astype("float64")
            if self._drift is not None:
                pred = pred + self._drift.predict(self._design(lon[sl], lat[sl], elevation[sl]))
            out[sl] = pred

        if not np.isfinite(out).all():
            raise ModelFittingError("kriging produced non-finite predictions")
        return out
