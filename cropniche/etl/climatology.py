# cropniche/etl/climatology.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

import numpy as np
import pandas as pd

from cropniche.utils import ensure_dir, get_logger

DAYS = 365


@dataclass(frozen=True)
class ClimatologyConfig:
    # Calibration window (years, inclusive)
    start_year: int = 1981
    end_year: int = 2010

    # A year counts when this share of its days has both tmin and tmax
    min_day_fraction: float = 0.9
    min_years: int = 20


@dataclass(frozen=True, eq=False)
class StationRecord:
    station_id: str
    lon: float
    lat: float
    elevation: float
    climatology: pd.DataFrame  # doy (1..365), tmin, tmax in C


def noleap_doy(dates: pd.Series) -> np.ndarray:
    """
    Day of year on a 365-day calendar. Feb 29 maps to 0 so callers can drop it.
    """
    doy = dates.dt.dayofyear.to_numpy()
    leap = dates.dt.is_leap_year.to_numpy()
    month = dates.dt.month.to_numpy()
    day = dates.dt.day.to_numpy()

    doy = np.where(leap & (month > 2), doy - 1, doy)
    return np.where((month == 2) & (day == 29), 0, doy)


def daily_climatology(daily: pd.DataFrame, cfg: ClimatologyConfig) -> Optional[pd.DataFrame]:
    """
    Mean tmin/tmax per day of year over the complete calibration years.

    Expects columns: date, tmin, tmax. Returns None when fewer than
    `cfg.min_years` years are complete.
    """
    d = daily[daily["date"].dt.year.between(cfg.start_year, cfg.end_year)].copy()
    d["doy"] = noleap_doy(d["date"])
    d = d[d["doy"] > 0]
    d["year"] = d["date"].dt.year

    valid = d["tmin"].notna() & d["tmax"].notna()
    per_year = valid.groupby(d["year"]).sum()
    complete = per_year[per_year >= cfg.min_day_fraction * DAYS].index

    if len(complete) < cfg.min_years:
        return None

    d = d[d["year"].isin(complete) & valid]
    clim = d.groupby("doy")[["tmin", "tmax"]].mean().reindex(range(1, DAYS + 1))

    if clim.isna().any().any():
        # fill gaps around the year boundary by interpolating a wrapped copy
        tiled = pd.concat([clim, clim, clim], ignore_index=True)
        tiled = tiled.interpolate(method="linear", limit_direction="both")
        clim = tiled.iloc[DAYS : 2 * DAYS].set_axis(clim.index)

    clim.index.name = "doy"
    return clim.reset_index()


def build_station_records(
    stations: pd.DataFrame,
    daily_by_station: Mapping[str, pd.DataFrame],
    cfg: ClimatologyConfig,
) -> list[StationRecord]:
    """
    One StationRecord per station with an elevation and enough complete years.
    `stations` needs: station_id, lon, lat, elevation.
    """
    logger = get_logger()

    required = {"station_id", "lon", "lat", "elevation"}
    missing = required - set(stations.columns)
    if missing:
        raise KeyError(f"Station table missing required columns: {sorted(missing)}")

    records: list[StationRecord] = []
    no_data = no_elev = short = 0

    for row in stations.itertuples(index=False):
        daily = daily_by_station.get(row.station_id)
        if daily is None or daily.empty:
            no_data += 1
            continue
        if not np.isfinite(row.elevation):
            no_elev += 1
            continue

        clim = daily_climatology(daily, cfg)
        if clim is None:
            short += 1
            continue

        records.append(
            StationRecord(
                station_id=str(row.station_id),
                lon=float(row.lon),
                lat=float(row.lat),
                elevation=float(row.elevation),
                climatology=clim,
            )
        )

    logger.info(
        "Climatology: %d stations kept | no data=%d no elevation=%d too few years=%d",
        len(records), no_data, no_elev, short,
    )
    return records


def records_to_frames(records: list[StationRecord]) -> tuple[pd.DataFrame, pd.DataFrame]:
    """(stations, long climatology) tables for parquet storage."""
    stations = pd.DataFrame(
        [
            {"station_id": r.station_id, "lon": r.lon, "lat": r.lat, "elevation": r.elevation}
            for r in records
        ],
        columns=["station_id", "lon", "lat", "elevation"],
    )
    clim = pd.concat(
        [r.climatology.assign(station_id=r.station_id) for r in records],
        axis=0,
        ignore_index=True,
    )[["station_id", "doy", "tmin", "tmax"]]
    return stations, clim


def frames_to_records(stations: pd.DataFrame, clim: pd.DataFrame) -> list[StationRecord]:
    by_station = {sid: g.sort_values("doy") for sid, g in clim.groupby("station_id")}
    records = []
    for row in stations.itertuples(index=False):
        g = by_station.get(row.station_id)
        if g is None:
            raise KeyError(f"No climatology rows for station {row.station_id}")
        records.append(
            StationRecord(
                station_id=str(row.station_id),
                lon=float(row.lon),
                lat=float(row.lat),
                elevation=float(row.elevation),
                climatology=g[["doy", "tmin", "tmax"]].reset_index(drop=True),
            )
        )
    return records


def read_station_table(paths) -> pd.DataFrame:
    if not paths.stations_path.exists():
        raise FileNotFoundError(f"Station table not found: {paths.stations_path}")
    return pd.read_parquet(paths.stations_path)


def load_station_records(paths) -> list[StationRecord]:
    if not paths.climatology_path.exists():
        raise FileNotFoundError(f"Station climatology not found: {paths.climatology_path}")
    return frames_to_records(read_station_table(paths), pd.read_parquet(paths.climatology_path))


def run_build_climatology(cfg, *, overwrite: bool = False) -> list[StationRecord]:
    """
    Pipeline entrypoint: GHCN station files -> stations.parquet + station_climatology.parquet.

    Missing station elevations are filled from the elevation grid when it has
    been built already.
    """
    from cropniche.etl.fetch_ghcn import read_station_daily, station_file
    from cropniche.grid import load_elevation_grid
    from cropniche.io import ProjectPaths

    logger = get_logger()
    paths = ProjectPaths(cfg.root)

    if paths.stations_path.exists() and paths.climatology_path.exists() and not (overwrite or cfg.overwrite):
        logger.info("[SKIP] Station climatology exists: %s", paths.climatology_path)
        return load_station_records(paths)

    if not paths.selected_stations_path.exists():
        raise FileNotFoundError(f"Run the GHCN fetch first; missing {paths.selected_stations_path}")
    stations = pd.read_parquet(paths.selected_stations_path)

    if stations["elevation"].isna().any() and paths.elevation_grid_path.exists():
        grid = load_elevation_grid(paths.elevation_grid_path)
        fill = stations["elevation"].isna()
        stations.loc[fill, "elevation"] = grid.sample(
            stations.loc[fill, "lon"].to_numpy(), stations.loc[fill, "lat"].to_numpy()
        )
        logger.info("Filled %d station elevations from %s", int(fill.sum()), paths.elevation_grid_path)

    daily_by_station: dict[str, pd.DataFrame] = {}
    for sid in stations["station_id"]:
        p = station_file(paths.ghcn_station_dir, sid)
        if p.exists():
            daily_by_station[sid] = read_station_daily(p, cfg.climatology.start_year, cfg.climatology.end_year)

    records = build_station_records(stations, daily_by_station, cfg.climatology)
    if not records:
        raise ValueError("No station passed the climatology completeness checks")

    station_df, clim_df = records_to_frames(records)
    ensure_dir(paths.derived_dir)
    station_df.to_parquet(paths.stations_path, index=False)
    clim_df.to_parquet(paths.climatology_path, index=False)
    logger.info("[OK] Station climatology saved: %s (%d stations)", paths.climatology_path, len(records))
    return records
