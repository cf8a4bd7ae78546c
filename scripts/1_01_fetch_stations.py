#!/usr/bin/env python
from __future__ import annotations

import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from cropniche.etl.fetch_ghcn import run_fetch_stations
from cropniche.settings import load_project_config


def main() -> None:
    ap = argparse.ArgumentParser(
        description="Stage 1: download GHCN-Daily inventories + station files for the study area"
    )
    ap.add_argument("--config", default="conf/project.yaml")
    ap.add_argument("--limit", type=int, default=None, help="Only the first N selected stations (smoke runs)")
    ap.add_argument("--overwrite", action="store_true", help="Download again even if files exist")
    args = ap.parse_args()

    cfg = load_project_config(args.config)
    run_fetch_stations(cfg, overwrite=args.overwrite, limit=args.limit)


if __name__ == "__main__":
    main()
