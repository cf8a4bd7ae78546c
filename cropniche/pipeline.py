from __future__ import annotations

from enum import Enum
from functools import partial
from typing import Optional, Sequence

import pandas as pd

from cropniche.grid import ElevationGrid, load_elevation_grid
from cropniche.io import ProjectPaths, crop_groups, read_cultivars
from cropniche.modeling.aggregate import aggregate_reconstructions
from cropniche.modeling.config import NicheConfig
from cropniche.modeling.niche import fit_cultivar_model
from cropniche.modeling.projection import project_response
from cropniche.parallel import run_batch
from cropniche.proxy import ProxySeries, read_proxy_series
from cropniche.store import MODEL_ENCODING, RECON_ENCODING, ArtifactStore
from cropniche.utils import get_logger

MODELS = "models"
RECONSTRUCTIONS = "reconstructions"
CROPS = "crops"


class CultivarState(str, Enum):
    UNFITTED = "unfitted"
    MODEL_FITTED = "model_fitted"
    RECONSTRUCTED = "reconstructed"
    AGGREGATED = "aggregated"


def artifact_store(cfg, *, overwrite: bool = False) -> ArtifactStore:
    return ArtifactStore(ProjectPaths(cfg.root).artifacts_dir, overwrite=overwrite or cfg.overwrite)


def _select(cultivars: pd.DataFrame, ids: Optional[Sequence[str]]) -> pd.DataFrame:
    if ids is None:
        return cultivars
    unknown = sorted(set(ids) - set(cultivars["cultivar_id"]))
    if unknown:
        raise KeyError(f"Unknown cultivar ids: {unknown}")
    return cultivars[cultivars["cultivar_id"].isin(ids)]


# -----------------------
# Workers (module level so joblib can pickle them)
# -----------------------
def _fit_one(
    store: ArtifactStore,
    cultivar: dict,
    gdd_table: pd.DataFrame,
    stations: pd.DataFrame,
    grid: ElevationGrid,
    niche_cfg: NicheConfig,
) -> str:
    compute = partial(fit_cultivar_model, cultivar, gdd_table, stations, grid, niche_cfg)
    store.ensure(MODELS, cultivar["cultivar_id"], compute, encoding=MODEL_ENCODING)
    return cultivar["cultivar_id"]


def _project_one(store: ArtifactStore, cultivar_id: str, proxy: ProxySeries, grid: ElevationGrid) -> str:
    def compute():
        return project_response(store.load(MODELS, cultivar_id), proxy, grid)

    store.ensure(RECONSTRUCTIONS, cultivar_id, compute, encoding=RECON_ENCODING)
    return cultivar_id


# -----------------------
# Stages
# -----------------------
def fit_models(cfg, *, cultivar_ids: Optional[Sequence[str]] = None, overwrite: bool = False) -> list[str]:
    """
    Stage: one smoothed niche model per cultivar -> artifacts/models/<cultivar_id>.nc
    """
    from cropniche.etl.climatology import read_station_table
    from cropniche.gdd import read_gdd_table

    logger = get_logger()
    paths = ProjectPaths(cfg.root)
    store = artifact_store(cfg, overwrite=overwrite)

    cultivars = _select(read_cultivars(cfg.cultivars_path), cultivar_ids)
    todo = [c for c in cultivars.to_dict("records") if store.overwrite or not store.exists(MODELS, c["cultivar_id"])]
    logger.info("Fit: %d cultivars, %d to fit", len(cultivars), len(todo))
    if not todo:
        return list(cultivars["cultivar_id"])

    gdd_table = read_gdd_table(paths.gdd_table_path)
    stations = read_station_table(paths)
    grid = load_elevation_grid(paths.elevation_grid_path)

    tasks = [(store, c, gdd_table, stations, grid, cfg.niche) for c in todo]
    run_batch(_fit_one, tasks, n_jobs=cfg.fit_jobs, desc="Fit models")
    return list(cultivars["cultivar_id"])


def reconstruct(cfg, *, cultivar_ids: Optional[Sequence[str]] = None, overwrite: bool = False) -> list[str]:
    """
    Stage: models + proxy record -> artifacts/reconstructions/<cultivar_id>.nc

    Every model must exist before any projection starts.
    """
    logger = get_logger()
    paths = ProjectPaths(cfg.root)
    store = artifact_store(cfg, overwrite=overwrite)

    ids = list(_select(read_cultivars(cfg.cultivars_path), cultivar_ids)["cultivar_id"])
    store.require(MODELS, ids)

    todo = [cid for cid in ids if store.overwrite or not store.exists(RECONSTRUCTIONS, cid)]
    logger.info("Reconstruct: %d cultivars, %d to project", len(ids), len(todo))
    if not todo:
        return ids

    proxy = read_proxy_series(cfg.proxy_path)
    grid = load_elevation_grid(paths.elevation_grid_path)

    tasks = [(store, cid, proxy, grid) for cid in todo]
    run_batch(_project_one, tasks, n_jobs=cfg.project_jobs, desc="Reconstruct")
    return ids


def aggregate_crops(cfg, *, overwrite: bool = False) -> list[str]:
    """
    Stage: mean of each crop's cultivar reconstructions -> artifacts/crops/<crop_key>.nc

    Runs after every reconstruction of every crop exists. A crop with one
    cultivar gets a copy of that cultivar's reconstruction.
    """
    logger = get_logger()
    store = artifact_store(cfg, overwrite=overwrite)

    groups = crop_groups(read_cultivars(cfg.cultivars_path))
    store.require(RECONSTRUCTIONS, [cid for ids in groups.values() for cid in ids])

    for crop_key, ids in groups.items():
        if len(ids) == 1:
            store.copy(RECONSTRUCTIONS, ids[0], CROPS, crop_key)
            continue

        def compute(ids=ids, crop_key=crop_key):
            return aggregate_reconstructions([store.load_array(RECONSTRUCTIONS, cid) for cid in ids], crop=crop_key)

        store.ensure(CROPS, crop_key, compute, encoding=RECON_ENCODING)

    logger.info("Aggregate: %d crops", len(groups))
    return list(groups)


def cultivar_states(cfg) -> dict[str, CultivarState]:
    """Where each cultivar stands, read from the artifact store."""
    store = artifact_store(cfg)
    cultivars = read_cultivars(cfg.cultivars_path)
    groups = crop_groups(cultivars)

    states = {}
    for cid, crop_key in zip(cultivars["cultivar_id"], cultivars["crop_key"]):
        if store.exists(RECONSTRUCTIONS, cid):
            if len(groups[crop_key]) > 1 and store.exists(CROPS, crop_key):
                states[cid] = CultivarState.AGGREGATED
            else:
                states[cid] = CultivarState.RECONSTRUCTED
        elif store.exists(MODELS, cid):
            states[cid] = CultivarState.MODEL_FITTED
        else:
            states[cid] = CultivarState.UNFITTED
    return states


def run_pipeline(cfg, *, overwrite: bool = False, reports: bool = True) -> dict[str, CultivarState]:
    """
    All stages in order. Downloads and derived inputs are skipped when present.
    """
    from cropniche.etl.climatology import run_build_climatology
    from cropniche.etl.elevation import run_build_elevation_grid
    from cropniche.etl.fetch_ghcn import run_fetch_stations
    from cropniche.gdd import run_build_gdd_table
    from cropniche.reporting import run_reports

    logger = get_logger()

    run_fetch_stations(cfg, overwrite=overwrite)
    run_build_elevation_grid(cfg, overwrite=overwrite)
    run_build_climatology(cfg, overwrite=overwrite)
    run_build_gdd_table(cfg, overwrite=overwrite)

    fit_models(cfg, overwrite=overwrite)
    reconstruct(cfg, overwrite=overwrite)
    aggregate_crops(cfg, overwrite=overwrite)

    if reports:
        run_reports(cfg)

    states = cultivar_states(cfg)
    for cid, state in states.items():
        logger.info("%s: %s", cid, state.value)
    return states
