from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import pandas as pd
import xarray as xr
import rioxarray  # noqa: F401  (needed for .rio accessor)

from cropniche.grid import DEFAULT_CRS
from cropniche.utils import ensure_dir, get_logger


def save_df(df: pd.DataFrame, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    suffix = path.suffix.lower()
    if suffix == ".parquet":
        df.to_parquet(path, index=False)
    else:
        # default to CSV for ".csv" and unknown suffixes
        df.to_csv(path, index=False)


def summarize_reconstruction(da: xr.DataArray) -> pd.DataFrame:
    """
    Spatial mean and quartiles of every (band, years_bp) layer, ignoring
    cells off the land mask.
    """
    bands = da["band"].values
    years = da["years_bp"].values
    flat = da.transpose("band", "years_bp", "y", "x").values.reshape(len(bands), len(years), -1)
    flat = flat.astype("float64")

    rows = []
    for i, band in enumerate(bands):
        for j, year in enumerate(years):
            v = flat[i, j]
            v = v[np.isfinite(v)]
            if v.size == 0:
                q25 = med = q75 = mean = np.nan
            else:
                q25, med, q75 = np.percentile(v, [25, 50, 75])
                mean = v.mean()
            rows.append(
                {
                    "band": str(band),
                    "years_bp": year,
                    "mean": float(mean),
                    "q25": float(q25),
                    "median": float(med),
                    "q75": float(q75),
                    "n_cells": int(v.size),
                }
            )
    return pd.DataFrame(rows)


def fig_reconstruction_timeseries(summary: pd.DataFrame, path: Path, title: str = "") -> None:
    import matplotlib.pyplot as plt

    path.parent.mkdir(parents=True, exist_ok=True)
    wide = summary.pivot(index="years_bp", columns="band", values="mean").sort_index()

    fig, ax = plt.subplots(figsize=(9, 4))
    if {"lower", "upper"} <= set(wide.columns):
        lo = wide[["lower", "upper"]].min(axis=1)
        hi = wide[["lower", "upper"]].max(axis=1)
        ax.fill_between(wide.index, lo, hi, alpha=0.3, label="lower-upper")
    if "central" in wide.columns:
        ax.plot(wide.index, wide["central"], lw=1.5, label="central")

    ax.set_xlim(wide.index.max(), wide.index.min())
    ax.set_ylim(0, 100)
    ax.set_xlabel("Years BP")
    ax.set_ylabel("Mean niche probability (%)")
    ax.set_title(title)
    ax.legend(loc="best")
    fig.tight_layout()
    fig.savefig(path, dpi=150)
    plt.close(fig)


def fig_reconstruction_maps(
    da: xr.DataArray,
    path: Path,
    years_bp: Optional[Sequence] = None,
    band: str = "central",
    ncols: int = 4,
) -> None:
    """
    Small multiples of one band. Without `years_bp`, up to eight evenly
    spaced time steps are shown.
    """
    import matplotlib.pyplot as plt

    path.parent.mkdir(parents=True, exist_ok=True)
    layer = da.sel(band=band)
    if years_bp is None:
        all_years = layer["years_bp"].values
        idx = np.unique(np.linspace(0, len(all_years) - 1, min(8, len(all_years))).round().astype(int))
        years_bp = all_years[idx]

    n = len(years_bp)
    ncols = max(1, min(ncols, n))
    nrows = int(np.ceil(n / ncols))
    fig, axes = plt.subplots(nrows, ncols, figsize=(3.2 * ncols, 2.6 * nrows), squeeze=False)

    im = None
    for ax, year in zip(axes.flat, years_bp):
        im = layer.sel(years_bp=year).plot.imshow(ax=ax, vmin=0, vmax=100, cmap="viridis", add_colorbar=False)
        ax.set_title(f"{year} BP")
        ax.set_xlabel("")
        ax.set_ylabel("")
    for ax in list(axes.flat)[n:]:
        ax.set_axis_off()

    if im is not None:
        fig.colorbar(im, ax=axes, shrink=0.8, label="Niche probability (%)")
    fig.savefig(path, dpi=150)
    plt.close(fig)


def export_geotiff(da: xr.DataArray, band: str, path: Path) -> None:
    """One GeoTIFF per band, one layer per time step described by its years BP."""
    path.parent.mkdir(parents=True, exist_ok=True)
    layer = da.sel(band=band, drop=True).transpose("years_bp", "y", "x")
    crs = layer.rio.crs or DEFAULT_CRS

    out = layer.fillna(-1).astype("int16")
    out.attrs = {"long_name": tuple(f"{y} BP" for y in layer["years_bp"].values)}
    out = out.rio.write_crs(crs).rio.write_nodata(-1)
    out.rio.to_raster(path)


def report_one(da: xr.DataArray, key: str, paths) -> pd.DataFrame:
    summary = summarize_reconstruction(da)
    save_df(summary, paths.tables_dir / f"{key}_summary.csv")
    fig_reconstruction_timeseries(summary, paths.figures_dir / f"{key}_timeseries.png", title=key)
    fig_reconstruction_maps(da, paths.figures_dir / f"{key}_maps.png")
    for band in da["band"].values:
        export_geotiff(da, str(band), paths.rasters_dir / f"{key}_{band}.tif")
    return summary.assign(key=key)


def run_reports(cfg) -> pd.DataFrame:
    """
    Tables, figures and GeoTIFFs for every cultivar reconstruction and crop
    aggregate. Cultivar reconstructions must all exist.
    """
    from cropniche.io import ProjectPaths, read_cultivars
    from cropniche.pipeline import CROPS, RECONSTRUCTIONS, artifact_store

    logger = get_logger()
    paths = ProjectPaths(cfg.root)
    store = artifact_store(cfg)

    ids = list(read_cultivars(cfg.cultivars_path)["cultivar_id"])
    store.require(RECONSTRUCTIONS, ids)

    for d in (paths.tables_dir, paths.figures_dir, paths.rasters_dir):
        ensure_dir(d)

    parts = []
    for kind, keys in ((RECONSTRUCTIONS, ids), (CROPS, store.keys(CROPS))):
        for key in keys:
            da = store.load_array(kind, key)
            parts.append(report_one(da, f"{kind}_{key}", paths).assign(kind=kind))
            logger.info("[OK] Reports for %s/%s", kind, key)

    out = pd.concat(parts, axis=0, ignore_index=True)
    save_df(out, paths.tables_dir / "reconstruction_summary.csv")
    logger.info("[OK] Summary table: %s", paths.tables_dir / "reconstruction_summary.csv")
    return out
