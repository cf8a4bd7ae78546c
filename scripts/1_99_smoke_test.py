#!/usr/bin/env python
from __future__ import annotations

import argparse
import sys
from pathlib import Path

import pandas as pd

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from cropniche.io import ProjectPaths
from cropniche.pipeline import cultivar_states
from cropniche.settings import load_project_config


def parquet_preview(path: Path, n: int = 3) -> None:
    if not path.exists():
        print(f"[WARN] Missing: {path}")
        return
    df = pd.read_parquet(path)
    print(f"\n[PARQUET PREVIEW] {path}")
    print("shape:", df.shape)
    print("cols:", df.columns.tolist())
    print(df.head(n))


def main() -> None:
    ap = argparse.ArgumentParser(description="Check derived inputs and report artifact states per cultivar")
    ap.add_argument("--config", default="conf/project.yaml")
    args = ap.parse_args()

    cfg = load_project_config(args.config)
    paths = ProjectPaths(cfg.root)

    print("\n=== FILE CHECKS ===")
    print("station files:", len(list(paths.ghcn_station_dir.glob("*.csv.gz"))))
    for p in (paths.elevation_grid_path, paths.stations_path, paths.climatology_path, paths.gdd_table_path):
        print(f"{p.name}: {'ok' if p.exists() else 'MISSING'}")

    parquet_preview(paths.stations_path)
    parquet_preview(paths.gdd_table_path)

    print("\n=== CULTIVAR STATES ===")
    for cid, state in cultivar_states(cfg).items():
        print(f"{cid:32s} {state.value}")

    print("\n[OK] Smoke test complete.")


if __name__ == "__main__":
    main()
