#!/usr/bin/env python
from __future__ import annotations

import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from cropniche.etl.climatology import run_build_climatology
from cropniche.settings import load_project_config


def main() -> None:
    ap = argparse.ArgumentParser(
        description="Stage 1: GHCN station files -> daily climatology per station"
    )
    ap.add_argument("--config", default="conf/project.yaml")
    ap.add_argument("--overwrite", action="store_true", help="Recompute even if outputs exist")
    args = ap.parse_args()

    cfg = load_project_config(args.config)
    run_build_climatology(cfg, overwrite=args.overwrite)


if __name__ == "__main__":
    main()
