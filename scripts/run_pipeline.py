#!/usr/bin/env python
from __future__ import annotations

import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from cropniche.logging_utils import ensure_output_dirs, setup_logging
from cropniche.pipeline import run_pipeline
from cropniche.settings import load_project_config


def main() -> None:
    ap = argparse.ArgumentParser(description="Run every stage in order (skip what already exists)")
    ap.add_argument("--config", default="conf/project.yaml")
    ap.add_argument("--logging", default="conf/logging.yaml")
    ap.add_argument("--no-reports", action="store_true", help="Stop after crop aggregation")
    ap.add_argument("--overwrite", action="store_true", help="Recompute every stage of this run")
    args = ap.parse_args()

    cfg = load_project_config(args.config)
    outputs = cfg.root / "outputs"
    ensure_output_dirs(str(outputs))
    setup_logging(args.logging, log_dir=str(outputs / "logs"))

    run_pipeline(cfg, overwrite=args.overwrite, reports=not args.no_reports)


if __name__ == "__main__":
    main()
