from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from cropniche.exceptions import MissingArtifactError
from cropniche.io import ProjectPaths
from cropniche.parallel import run_batch
from cropniche.pipeline import (
    CROPS,
    MODELS,
    RECONSTRUCTIONS,
    CultivarState,
    aggregate_crops,
    artifact_store,
    cultivar_states,
    fit_models,
    reconstruct,
)
from cropniche.settings import ProjectConfig


@pytest.fixture
def project(tmp_path, grid, stations, gdd_table, niche_cfg) -> ProjectConfig:
    paths = ProjectPaths(tmp_path)
    paths.derived_dir.mkdir(parents=True)

    cultivars = tmp_path / "cultivars.csv"
    pd.DataFrame(
        {
            "cultivar_id": ["rice_a", "rice_b", "millet_a"],
            "crop": ["Rice", "Rice", "Broomcorn millet"],
            "cultivar": ["A", "B", "A"],
            "t_base": [10.0, 10.0, 10.0],
            "min_gdd": [1000.0, 1100.0, 900.0],
        }
    ).to_csv(cultivars, index=False)

    proxy = tmp_path / "proxy.csv"
    pd.DataFrame(
        {"years_bp": [6000, 3000, 0], "lower": [-3.0, -1.0, 0.0], "central": [-1.0, 0.4, 2.0], "upper": [1.0, 2.0, 6.0]}
    ).to_csv(proxy, index=False)

    gdd_table.to_parquet(paths.gdd_table_path, index=False)
    stations.to_parquet(paths.stations_path, index=False)
    grid.save(paths.elevation_grid_path)

    return ProjectConfig(
        name="test",
        root=tmp_path,
        cultivars_path=cultivars,
        proxy_path=proxy,
        dem_path=tmp_path / "dem.tif",
        land_path=tmp_path / "land.gpkg",
        niche=niche_cfg,
        fit_jobs=1,
        project_jobs=1,
    )


def test_run_batch_keeps_task_order():
    assert run_batch(pow, [(2, 3), (3, 2), (10, 0)], n_jobs=2, desc="pow") == [8, 9, 1]
    assert run_batch(pow, [], n_jobs=4) == []


def test_run_batch_propagates_failures():
    with pytest.raises(ValueError):
        run_batch(int, [("1",), ("not a number",)], n_jobs=1)


def test_reconstruct_needs_every_model_first(project):
    with pytest.raises(MissingArtifactError) as exc:
        reconstruct(project)
    assert exc.value.keys == ["rice_a", "rice_b", "millet_a"]
    assert not artifact_store(project).keys(RECONSTRUCTIONS)


def test_stages_advance_cultivar_states(project):
    assert set(cultivar_states(project).values()) == {CultivarState.UNFITTED}

    fit_models(project)
    assert set(cultivar_states(project).values()) == {CultivarState.MODEL_FITTED}

    reconstruct(project)
    assert set(cultivar_states(project).values()) == {CultivarState.RECONSTRUCTED}

    aggregate_crops(project)
    states = cultivar_states(project)
    assert states["rice_a"] == CultivarState.AGGREGATED
    assert states["rice_b"] == CultivarState.AGGREGATED
    # a one-cultivar crop is copied, not aggregated
    assert states["millet_a"] == CultivarState.RECONSTRUCTED

    store = artifact_store(project)
    assert store.keys(CROPS) == ["broomcorn_millet", "rice"]
    assert (
        store.path_for(CROPS, "broomcorn_millet").read_bytes()
        == store.path_for(RECONSTRUCTIONS, "millet_a").read_bytes()
    )

    rice = store.load_array(CROPS, "rice")
    a = store.load_array(RECONSTRUCTIONS, "rice_a")
    b = store.load_array(RECONSTRUCTIONS, "rice_b")
    expected = np.rint((a.values.astype("float64") + b.values) / 2.0)
    np.testing.assert_array_equal(rice.values, expected)
    assert rice.dims == ("band", "years_bp", "y", "x")


def test_reconstruction_values_are_percentages(project):
    fit_models(project, cultivar_ids=["rice_a"])
    reconstruct(project, cultivar_ids=["rice_a"])

    da = artifact_store(project).load_array(RECONSTRUCTIONS, "rice_a")
    v = da.values[np.isfinite(da.values)]
    assert ((v >= 0) & (v <= 100)).all()
    np.testing.assert_array_equal(v, np.rint(v))
    np.testing.assert_array_equal(da["years_bp"].values, [6000, 3000, 0])


def test_completed_artifacts_are_not_recomputed(project):
    fit_models(project, cultivar_ids=["rice_a"])
    path = artifact_store(project).path_for(MODELS, "rice_a")
    before = (path.read_bytes(), path.stat().st_mtime_ns)

    fit_models(project, cultivar_ids=["rice_a"])

    assert (path.read_bytes(), path.stat().st_mtime_ns) == before


def test_completed_reconstructions_are_not_recomputed(project):
    fit_models(project, cultivar_ids=["rice_a"])
    reconstruct(project, cultivar_ids=["rice_a"])
    path = artifact_store(project).path_for(RECONSTRUCTIONS, "rice_a")
    before = (path.read_bytes(), path.stat().st_mtime_ns)

    reconstruct(project, cultivar_ids=["rice_a"])

    assert (path.read_bytes(), path.stat().st_mtime_ns) == before


def test_overwrite_recomputes_models(project):
    fit_models(project, cultivar_ids=["rice_a"])
    path = artifact_store(project).path_for(MODELS, "rice_a")
    path.write_bytes(b"stale")

    fit_models(project, cultivar_ids=["rice_a"], overwrite=True)

    assert path.read_bytes() != b"stale"
    assert artifact_store(project).load(MODELS, "rice_a")["probability"].shape[0] == 11


def test_aggregation_waits_for_every_reconstruction(project):
    fit_models(project)
    reconstruct(project, cultivar_ids=["rice_a", "millet_a"])

    with pytest.raises(MissingArtifactError) as exc:
        aggregate_crops(project)
    assert exc.value.keys == ["rice_b"]
    assert artifact_store(project).keys(CROPS) == []


def test_unknown_cultivar_id(project):
    with pytest.raises(KeyError):
        fit_models(project, cultivar_ids=["sorghum"])
