from __future__ import annotations

import shutil
import zipfile
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import numpy as np
import geopandas as gpd
import xarray as xr
import rioxarray  # noqa: F401  (needed for .rio accessor)
from rasterio.features import geometry_mask
from shapely.geometry import box

from cropniche.etl.fetch_ghcn import download_file
from cropniche.grid import DEFAULT_CRS, ElevationGrid, load_elevation_grid
from cropniche.utils import ensure_dir, get_logger


def _make_valid(gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """
    Avoid GEOS errors on clip by ensuring valid geometries.
    """
    gdf = gdf.copy()
    gdf["geometry"] = gdf.geometry.make_valid()
    return gdf[gdf.geometry.notna() & ~gdf.geometry.is_empty].copy()


def read_study_area(
    land_path: Path,
    bbox: tuple[float, float, float, float],
    continent: Optional[str] = None,
) -> gpd.GeoDataFrame:
    """
    Land / country polygons in EPSG:4326 clipped to `bbox`, optionally
    restricted to one CONTINENT (Natural Earth attribute).
    """
    logger = get_logger()
    if not land_path.exists():
        raise FileNotFoundError(f"Land polygons not found: {land_path}")

    gdf = gpd.read_file(land_path)
    if gdf.crs is None:
        logger.warning("Land polygons CRS missing; setting to %s.", DEFAULT_CRS)
        gdf = gdf.set_crs(DEFAULT_CRS)
    gdf = gdf.to_crs(DEFAULT_CRS)

    if continent:
        col = next((c for c in gdf.columns if c.upper() == "CONTINENT"), None)
        if col is None:
            raise KeyError(f"{land_path.name} has no CONTINENT column to filter on")
        gdf = gdf[gdf[col] == continent]

    gdf = _make_valid(gdf).clip(box(*bbox))
    if gdf.empty:
        raise ValueError(f"No study-area polygons inside bbox={bbox} (continent={continent})")

    logger.info("Study area: %d polygons from %s", len(gdf), land_path.name)
    return gdf


def load_dem(dem_path: Path, bbox: tuple[float, float, float, float], coarsen: int = 1) -> xr.DataArray:
    """
    Read a DEM, clip it to `bbox`, and optionally block-average `coarsen` x `coarsen` pixels.
    """
    logger = get_logger()
    if not dem_path.exists():
        raise FileNotFoundError(f"DEM not found: {dem_path}")

    with rioxarray.open_rasterio(dem_path, masked=True) as src:
        dem = src.squeeze("band", drop=True).rio.clip_box(*bbox).load()

    crs = dem.rio.crs or DEFAULT_CRS
    dem = dem.astype("float32")

    if coarsen > 1:
        logger.info("Coarsening DEM by %dx%d", coarsen, coarsen)
        dem = dem.coarsen(x=coarsen, y=coarsen, boundary="trim").mean()
        # stored GeoTransform no longer matches the coarse coords
        dem = dem.drop_vars("spatial_ref", errors="ignore").rio.write_crs(crs)

    logger.info("DEM %s: shape=%s", dem_path.name, dem.shape)
    return dem.rename("elevation")


def polygon_mask(da: xr.DataArray, polygons: gpd.GeoDataFrame) -> np.ndarray:
    """True for pixels whose centre falls inside any polygon."""
    polys = polygons.to_crs(da.rio.crs)
    return geometry_mask(
        list(polys.geometry),
        out_shape=da.shape,
        transform=da.rio.transform(),
        invert=True,
        all_touched=False,
    )


def mask_to_study_area(
    dem: xr.DataArray,
    study_area: gpd.GeoDataFrame,
    water: Optional[gpd.GeoDataFrame] = None,
) -> xr.DataArray:
    """
    NaN outside the study-area polygons and inside water polygons.
    """
    keep = polygon_mask(dem, study_area)
    if water is not None and not water.empty:
        keep &= ~polygon_mask(dem, water)
    return dem.where(xr.DataArray(keep, dims=("y", "x")))


def fetch_reference(cfg, *, overwrite: bool = False) -> None:
    """
    Download land / water polygons and the DEM when their URLs are configured.
    Zip archives for the DEM are extracted next to the target path.
    """
    logger = get_logger()
    overwrite = overwrite or cfg.overwrite

    for path, url in ((cfg.land_path, cfg.land_url), (cfg.water_path, cfg.water_url)):
        if path is not None and url:
            download_file(url, path, overwrite=overwrite, timeout_s=cfg.ghcn.timeout_s)

    if cfg.dem_path.exists() and not overwrite:
        logger.info("[SKIP] DEM exists: %s", cfg.dem_path)
        return
    if not cfg.dem_url:
        return

    name = Path(urlparse(cfg.dem_url).path).name
    if not name.lower().endswith(".zip"):
        download_file(cfg.dem_url, cfg.dem_path, overwrite=overwrite, timeout_s=cfg.ghcn.timeout_s)
        return

    archive = download_file(
        cfg.dem_url, cfg.dem_path.parent / name, overwrite=overwrite, timeout_s=cfg.ghcn.timeout_s
    )
    with zipfile.ZipFile(archive) as zf:
        member = next((m for m in zf.namelist() if Path(m).name == cfg.dem_path.name), None)
        if member is None:
            raise FileNotFoundError(f"{cfg.dem_path.name} not found inside {archive}")
        ensure_dir(cfg.dem_path.parent)
        with zf.open(member) as src, open(cfg.dem_path, "wb") as dst:
            shutil.copyfileobj(src, dst, length=1 << 20)
    logger.info("[OK] DEM extracted: %s", cfg.dem_path)


def run_build_elevation_grid(cfg, *, overwrite: bool = False) -> ElevationGrid:
    """
    Pipeline entrypoint: DEM + study-area polygons -> derived/elevation_grid.tif
    """
    from cropniche.io import ProjectPaths

    logger = get_logger()
    paths = ProjectPaths(cfg.root)
    out_path = paths.elevation_grid_path

    if out_path.exists() and not (overwrite or cfg.overwrite):
        logger.info("[SKIP] Elevation grid exists: %s", out_path)
        return load_elevation_grid(out_path)

    fetch_reference(cfg, overwrite=overwrite)

    study_area = read_study_area(cfg.land_path, cfg.bbox, cfg.continent)
    water = None
    if cfg.water_path is not None and cfg.water_path.exists():
        water = _make_valid(gpd.read_file(cfg.water_path)).clip(box(*cfg.bbox))

    dem = load_dem(cfg.dem_path, cfg.bbox, cfg.coarsen)
    grid = ElevationGrid(mask_to_study_area(dem, study_area, water))

    grid.save(out_path)
    logger.info("[OK] Elevation grid saved: %s (%d land cells)", out_path, grid.n_cells)
    return grid
