# cropniche/etl/fetch_ghcn.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd
import requests

from cropniche.utils import ensure_dir, get_logger


@dataclass(frozen=True)
class GhcnConfig:
    base_url: str = "https://www.ncei.noaa.gov/pub/data/ghcn/daily"
    timeout_s: int = 60
    elements: tuple[str, ...] = ("TMIN", "TMAX")


# fixed-width layouts from the GHCN-Daily readme
STATION_COLSPECS = [(0, 11), (12, 20), (21, 30), (31, 37), (38, 40), (41, 71)]
STATION_NAMES = ["station_id", "lat", "lon", "elevation", "state", "name"]
INVENTORY_COLSPECS = [(0, 11), (12, 20), (21, 30), (31, 35), (36, 40), (41, 45)]
INVENTORY_NAMES = ["station_id", "lat", "lon", "element", "first_year", "last_year"]
DAILY_NAMES = ["station_id", "date", "element", "value", "m_flag", "q_flag", "s_flag", "obs_time"]

MISSING_ELEVATION = -999.9


def download_file(url: str, dest: Path, *, overwrite: bool = False, timeout_s: int = 60) -> Path:
    """
    Stream `url` to `dest`; skip if `dest` already exists.
    Writes to a temp file first so an interrupted download never looks complete.
    """
    logger = get_logger()

    if dest.exists() and not overwrite:
        logger.info("[SKIP] Download exists: %s", dest)
        return dest

    ensure_dir(dest.parent)
    tmp = dest.with_name(dest.name + ".part")

    logger.info("Downloading %s -> %s", url, dest)
    try:
        with requests.get(url, stream=True, timeout=timeout_s) as r:
            r.raise_for_status()
            with open(tmp, "wb") as f:
                for chunk in r.iter_content(chunk_size=1 << 20):
                    f.write(chunk)
        tmp.replace(dest)
    finally:
        if tmp.exists():
            tmp.unlink()

    return dest


def read_station_list(path: Path) -> pd.DataFrame:
    """Parse ghcnd-stations.txt."""
    df = pd.read_fwf(path, colspecs=STATION_COLSPECS, names=STATION_NAMES, dtype={"station_id": str})
    df["elevation"] = pd.to_numeric(df["elevation"], errors="coerce")
    df.loc[np.isclose(df["elevation"], MISSING_ELEVATION), "elevation"] = np.nan
    return df[["station_id", "lon", "lat", "elevation", "name"]]


def read_inventory(path: Path) -> pd.DataFrame:
    """Parse ghcnd-inventory.txt (one row per station x element)."""
    return pd.read_fwf(
        path, colspecs=INVENTORY_COLSPECS, names=INVENTORY_NAMES, dtype={"station_id": str}
    )


def select_stations(
    stations: pd.DataFrame,
    inventory: pd.DataFrame,
    bbox: tuple[float, float, float, float],
    start_year: int,
    end_year: int,
    elements: tuple[str, ...] = ("TMIN", "TMAX"),
) -> pd.DataFrame:
    """
    Stations inside `bbox` whose inventory covers every element over the
    whole [start_year, end_year] period.
    """
    xmin, ymin, xmax, ymax = bbox
    inside = stations[
        stations["lon"].between(xmin, xmax) & stations["lat"].between(ymin, ymax)
    ]

    inv = inventory[
        inventory["element"].isin(elements)
        & (inventory["first_year"] <= start_year)
        & (inventory["last_year"] >= end_year)
    ]
    counts = inv.groupby("station_id")["element"].nunique()
    covered = set(counts[counts == len(elements)].index)

    return inside[inside["station_id"].isin(covered)].reset_index(drop=True)


def read_station_daily(path: Path, start_year: int, end_year: int) -> pd.DataFrame:
    """
    Read one by_station/<ID>.csv.gz file.
    Keeps TMIN/TMAX without a quality flag, converts tenths of C to C.

    Returns a DataFrame with columns: date, tmin, tmax
    """
    raw = pd.read_csv(
        path,
        header=None,
        names=DAILY_NAMES,
        dtype={"date": str, "element": str, "q_flag": str},
        usecols=["date", "element", "value", "q_flag"],
    )
    raw = raw[raw["element"].isin(["TMIN", "TMAX"]) & raw["q_flag"].isna()].copy()
    raw["date"] = pd.to_datetime(raw["date"], format="%Y%m%d", errors="coerce")
    raw = raw[raw["date"].dt.year.between(start_year, end_year)]
    raw["value"] = pd.to_numeric(raw["value"], errors="coerce") / 10.0

    wide = raw.pivot_table(index="date", columns="element", values="value", aggfunc="mean")
    wide = wide.rename(columns={"TMIN": "tmin", "TMAX": "tmax"})
    for c in ("tmin", "tmax"):
        if c not in wide.columns:
            wide[c] = np.nan

    out = wide[["tmin", "tmax"]].reset_index()
    out.columns.name = None
    return out.sort_values("date").reset_index(drop=True)


def station_file(station_dir: Path, station_id: str) -> Path:
    return station_dir / f"{station_id}.csv.gz"


def run_fetch_stations(cfg, *, overwrite: bool = False, limit: Optional[int] = None) -> pd.DataFrame:
    """
    Pipeline entrypoint: download GHCN-Daily inventories and station files for
    the study area and calibration period.

    - idempotent (skip files that exist unless overwrite=True)
    - a failed station download is logged and skipped; it is simply absent later
    """
    from cropniche.io import ProjectPaths

    logger = get_logger()
    paths = ProjectPaths(cfg.root)
    g = cfg.ghcn
    overwrite = overwrite or cfg.overwrite

    stations_txt = download_file(
        f"{g.base_url}/ghcnd-stations.txt", paths.ghcn_dir / "ghcnd-stations.txt",
        overwrite=overwrite, timeout_s=g.timeout_s,
    )
    inventory_txt = download_file(
        f"{g.base_url}/ghcnd-inventory.txt", paths.ghcn_dir / "ghcnd-inventory.txt",
        overwrite=overwrite, timeout_s=g.timeout_s,
    )

    selected = select_stations(
        read_station_list(stations_txt),
        read_inventory(inventory_txt),
        cfg.bbox,
        cfg.climatology.start_year,
        cfg.climatology.end_year,
        g.elements,
    )
    if limit is not None:
        selected = selected.head(limit)
    logger.info("GHCN: %d stations cover %s in %s", len(selected), g.elements, cfg.bbox)

    ok = 0
    fail = 0
    for sid in selected["station_id"]:
        try:
            download_file(
                f"{g.base_url}/by_station/{sid}.csv.gz",
                station_file(paths.ghcn_station_dir, sid),
                overwrite=overwrite,
                timeout_s=g.timeout_s,
            )
            ok += 1
        except requests.RequestException as e:
            fail += 1
            logger.warning("[FAIL] GHCN download %s: %s", sid, e)

    selected.to_parquet(paths.selected_stations_path, index=False)
    logger.info("GHCN finished. ok=%d fail=%d | selection: %s", ok, fail, paths.selected_stations_path)
    return selected
