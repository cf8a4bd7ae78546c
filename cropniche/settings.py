from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
import os
import yaml

from .etl.climatology import ClimatologyConfig
from .etl.fetch_ghcn import GhcnConfig
from .gdd import GddConfig
from .modeling.config import KrigingConfig, NicheConfig, SmoothingConfig, _env_bool, offset_axis


@dataclass
class ProjectConfig:
    name: str
    root: Path

    # inputs
    cultivars_path: Path
    proxy_path: Path
    dem_path: Path
    land_path: Path
    water_path: Path | None = None
    dem_url: str | None = None
    land_url: str | None = None
    water_url: str | None = None

    # study area: (xmin, ymin, xmax, ymax) in EPSG:4326
    bbox: tuple[float, float, float, float] = (60.0, -11.0, 150.0, 56.0)
    continent: str | None = None
    coarsen: int = 1

    ghcn: GhcnConfig = field(default_factory=GhcnConfig)
    climatology: ClimatologyConfig = field(default_factory=ClimatologyConfig)
    gdd: GddConfig = field(default_factory=GddConfig)
    niche: NicheConfig = field(default_factory=NicheConfig)

    # worker counts; projection holds full raster stacks so it gets fewer workers
    fit_jobs: int = 1
    project_jobs: int = 1
    overwrite: bool = False


def _path_or_none(root: Path, value: str | None) -> Path | None:
    return None if value in (None, "") else root / value


def load_project_config(project_yaml: str = "conf/project.yaml") -> ProjectConfig:
    with open(project_yaml, "r") as f:
        cfg = yaml.safe_load(f)

    proj = cfg["project"]
    inputs = cfg["inputs"]
    area = cfg.get("study_area", {})
    run = cfg.get("run", {})
    par = cfg.get("parallel", {})

    root = Path(os.getenv("CROPNICHE_ROOT", proj.get("root", ".")))

    pert = cfg.get("perturbations", {})
    krig = dict(cfg.get("kriging", {}))
    if "drift_terms" in krig:
        krig["drift_terms"] = tuple(krig["drift_terms"] or ())

    niche = NicheConfig(
        offsets_sd=offset_axis(
            int(pert.get("start", -20)), int(pert.get("stop", 20)), int(pert.get("step", 1))
        ),
        kriging=KrigingConfig(**krig),
        smoothing=SmoothingConfig(**cfg.get("smoothing", {})),
        degenerate_policy=cfg.get("degenerate_policy", "constant"),
    )

    return ProjectConfig(
        name=proj["name"],
        root=root,
        cultivars_path=root / inputs["cultivars"],
        proxy_path=root / inputs["proxy"],
        dem_path=root / inputs["dem"],
        land_path=root / inputs["land"],
        water_path=_path_or_none(root, inputs.get("water")),
        dem_url=inputs.get("dem_url"),
        land_url=inputs.get("land_url"),
        water_url=inputs.get("water_url"),
        bbox=tuple(float(v) for v in area.get("bbox", (60.0, -11.0, 150.0, 56.0))),
        continent=area.get("continent"),
        coarsen=int(area.get("coarsen", 1)),
        ghcn=GhcnConfig(**cfg.get("ghcn", {})),
        climatology=ClimatologyConfig(**cfg.get("climatology", {})),
        gdd=GddConfig(**cfg.get("gdd", {})),
        niche=niche,
        fit_jobs=int(os.getenv("CROPNICHE_FIT_JOBS", par.get("fit_jobs", 1))),
        project_jobs=int(os.getenv("CROPNICHE_PROJECT_JOBS", par.get("project_jobs", 1))),
        overwrite=_env_bool("CROPNICHE_OVERWRITE", bool(run.get("overwrite", False))),
    )
