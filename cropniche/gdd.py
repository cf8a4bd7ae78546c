from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

import numpy as np
import pandas as pd

from .utils import get_logger


@dataclass(frozen=True)
class GddConfig:
    # Growing degree day definition: max(min(tavg, cap) - base, 0)
    gdd_cap_c: float = 30.0

    # Degrees C per proxy standard deviation; None = derive from the proxy record
    sd_scale_c: float | None = None


def daily_gdd(tmin: np.ndarray, tmax: np.ndarray, t_base: float, cap_c: float) -> np.ndarray:
    tavg = (np.asarray(tmin, dtype="float64") + np.asarray(tmax, dtype="float64")) / 2.0
    return np.clip(np.minimum(tavg, cap_c) - t_base, 0.0, None)


def modulated_gdd(
    climatology: pd.DataFrame,
    t_base: float,
    offsets_sd: Sequence[float],
    cfg: GddConfig,
) -> np.ndarray:
    """
    Annual GDD of a station's daily climatology after shifting every day's
    tmin/tmax by offset * sd_scale_c, for each offset in `offsets_sd`.
    """
    if cfg.sd_scale_c is None:
        raise ValueError("GddConfig.sd_scale_c must be resolved before computing GDD")

    shift = np.asarray(offsets_sd, dtype="float64")[:, None] * float(cfg.sd_scale_c)
    tmin = climatology["tmin"].to_numpy(dtype="float64")[None, :] + shift
    tmax = climatology["tmax"].to_numpy(dtype="float64")[None, :] + shift

    gdd = daily_gdd(tmin, tmax, t_base, cfg.gdd_cap_c)
    # a day with a missing temperature leaves the whole year undefined
    return gdd.sum(axis=1)


def build_gdd_table(
    records: Iterable,
    t_bases: Sequence[float],
    offsets_sd: Sequence[float],
    cfg: GddConfig,
) -> pd.DataFrame:
    """
    Long GDD table with one row per (station_id, t_base, offset_sd).
    `records` are StationRecord-like objects with `station_id` and `climatology`.
    """
    logger = get_logger()
    offsets = np.asarray(offsets_sd, dtype="float64")
    bases = sorted({float(b) for b in t_bases})

    parts: list[pd.DataFrame] = []
    n = 0
    for rec in records:
        n += 1
        for base in bases:
            parts.append(
                pd.DataFrame(
                    {
                        "station_id": rec.station_id,
                        "t_base": base,
                        "offset_sd": offsets,
                        "gdd": modulated_gdd(rec.climatology, base, offsets, cfg),
                    }
                )
            )

    if not parts:
        raise ValueError("No station records to build a GDD table from")

    out = pd.concat(parts, axis=0, ignore_index=True)
    logger.info(
        "GDD table: %d stations x %d base temps x %d offsets (sd_scale=%.3f C)",
        n, len(bases), offsets.size, cfg.sd_scale_c,
    )
    return out


def indicator_matrix(
    gdd_table: pd.DataFrame,
    t_base: float,
    min_gdd: float,
    offsets_sd: Sequence[float],
) -> pd.DataFrame:
    """
    Stations x offsets frame: 1.0 where GDD meets the cultivar requirement,
    0.0 where it does not, NaN where GDD is unknown.
    """
    required = {"station_id", "t_base", "offset_sd", "gdd"}
    missing = required - set(gdd_table.columns)
    if missing:
        raise KeyError(f"GDD table missing required columns: {sorted(missing)}")

    sub = gdd_table[np.isclose(gdd_table["t_base"].to_numpy(dtype="float64"), float(t_base))]
    if sub.empty:
        raise KeyError(f"GDD table has no rows for base temperature {t_base:g} C")

    wide = sub.pivot(index="station_id", columns="offset_sd", values="gdd")

    offsets = [float(o) for o in offsets_sd]
    absent = [o for o in offsets if o not in wide.columns]
    if absent:
        raise KeyError(f"GDD table lacks perturbation levels: {absent}")
    wide = wide[offsets]

    ind = (wide >= float(min_gdd)).astype("float64")
    return ind.where(wide.notna())


def read_gdd_table(path: Path) -> pd.DataFrame:
    if not path.exists():
        raise FileNotFoundError(f"GDD table not found: {path}")
    return pd.read_parquet(path)


def run_build_gdd_table(cfg, *, overwrite: bool = False) -> Path:
    """
    Stage runner: station climatologies -> derived/gdd_table.parquet.
    """
    from .etl.climatology import load_station_records
    from .io import ProjectPaths, read_cultivars
    from .proxy import proxy_sd_scale
    from .utils import ensure_dir

    logger = get_logger()
    paths = ProjectPaths(cfg.root)
    out_path = paths.gdd_table_path

    if out_path.exists() and not (overwrite or cfg.overwrite):
        logger.info("[SKIP] GDD table exists: %s", out_path)
        return out_path

    gdd_cfg = cfg.gdd
    if gdd_cfg.sd_scale_c is None:
        gdd_cfg = GddConfig(gdd_cap_c=gdd_cfg.gdd_cap_c, sd_scale_c=proxy_sd_scale(cfg.proxy_path))

    records = load_station_records(paths)
    cultivars = read_cultivars(cfg.cultivars_path)

    table = build_gdd_table(records, cultivars["t_base"].unique(), cfg.niche.offsets_sd, gdd_cfg)

    ensure_dir(out_path.parent)
    table.to_parquet(out_path, index=False)
    logger.info("[OK] GDD table saved: %s (%d rows)", out_path, len(table))
    return out_path
