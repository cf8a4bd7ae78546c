# cropniche/io.py
from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

import pandas as pd

from .utils import get_logger, slugify

CULTIVAR_ID_PATTERN = re.compile(r"^[a-z0-9_]+$")
CULTIVAR_COLUMNS = ("cultivar_id", "crop", "cultivar", "t_base", "min_gdd")


# -----------------------
# Helpers
# -----------------------
def is_valid_cultivar_id(cultivar_id: str) -> bool:
    return bool(CULTIVAR_ID_PATTERN.match(str(cultivar_id)))


def read_table(path: Path) -> pd.DataFrame:
    """Read a CSV or Parquet table, picked by suffix."""
    if not path.exists():
        raise FileNotFoundError(f"Table not found: {path}")
    if path.suffix.lower() == ".parquet":
        return pd.read_parquet(path)
    return pd.read_csv(path)


# -----------------------
# Project paths
# -----------------------
@dataclass(frozen=True)
class ProjectPaths:
    """
    Centralized path registry. This is the "contract" for where the pipeline reads/writes.

    Inputs live under data/raw (downloads) and data/derived (station tables,
    GDD table, elevation grid); fitted models and reconstructions live in the
    artifact store under outputs/artifacts.
    """
    root: Path

    # ---- raw downloads
    @property
    def raw_dir(self) -> Path:
        return self.root / "data" / "raw"

    @property
    def ghcn_dir(self) -> Path:
        return self.raw_dir / "ghcnd"

    @property
    def ghcn_station_dir(self) -> Path:
        return self.ghcn_dir / "by_station"

    @property
    def selected_stations_path(self) -> Path:
        return self.ghcn_dir / "selected_stations.parquet"

    @property
    def reference_dir(self) -> Path:
        return self.raw_dir / "reference"

    # ---- derived inputs
    @property
    def derived_dir(self) -> Path:
        return self.root / "data" / "derived"

    @property
    def stations_path(self) -> Path:
        return self.derived_dir / "stations.parquet"

    @property
    def climatology_path(self) -> Path:
        return self.derived_dir / "station_climatology.parquet"

    @property
    def gdd_table_path(self) -> Path:
        return self.derived_dir / "gdd_table.parquet"

    @property
    def elevation_grid_path(self) -> Path:
        return self.derived_dir / "elevation_grid.tif"

    # ---- outputs
    @property
    def outputs_dir(self) -> Path:
        return self.root / "outputs"

    @property
    def artifacts_dir(self) -> Path:
        return self.outputs_dir / "artifacts"

    @property
    def figures_dir(self) -> Path:
        return self.outputs_dir / "figures"

    @property
    def tables_dir(self) -> Path:
        return self.outputs_dir / "tables"

    @property
    def rasters_dir(self) -> Path:
        return self.outputs_dir / "rasters"


# -----------------------
# Cultivar parameters
# -----------------------
def read_cultivars(path: Path) -> pd.DataFrame:
    """
    Read the cultivar parameter table (cultivar_id, crop, cultivar, t_base, min_gdd)
    and add a `crop_key` column used to name crop-level artifacts.
    """
    logger = get_logger()
    df = read_table(path)

    missing = set(CULTIVAR_COLUMNS) - set(df.columns)
    if missing:
        raise KeyError(f"Cultivar table missing required columns: {sorted(missing)}")

    df = df[list(CULTIVAR_COLUMNS)].copy()
    df["cultivar_id"] = df["cultivar_id"].astype(str).str.strip()

    bad = [c for c in df["cultivar_id"] if not is_valid_cultivar_id(c)]
    if bad:
        raise ValueError(f"Invalid cultivar_id values (use [a-z0-9_]): {bad}")

    dup = df.loc[df["cultivar_id"].duplicated(), "cultivar_id"].tolist()
    if dup:
        raise ValueError(f"Duplicate cultivar_id values: {dup}")

    for c in ("t_base", "min_gdd"):
        df[c] = pd.to_numeric(df[c], errors="coerce")
        if df[c].isna().any():
            rows = df.loc[df[c].isna(), "cultivar_id"].tolist()
            raise ValueError(f"Non-numeric {c} for cultivars: {rows}")

    df["crop_key"] = df["crop"].map(slugify)
    logger.info("Read %d cultivars in %d crops from %s", len(df), df["crop_key"].nunique(), path)
    return df.reset_index(drop=True)


def crop_groups(cultivars: pd.DataFrame) -> dict[str, list[str]]:
    """crop_key -> cultivar_ids, in table order."""
    groups: dict[str, list[str]] = {}
    for crop_key, cid in zip(cultivars["crop_key"], cultivars["cultivar_id"]):
        groups.setdefault(crop_key, []).append(cid)
    return groups
