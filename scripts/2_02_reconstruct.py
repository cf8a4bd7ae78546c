#!/usr/bin/env python
from __future__ import annotations

import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from cropniche.pipeline import reconstruct
from cropniche.settings import load_project_config
from cropniche.utils import get_logger


def main() -> None:
    ap = argparse.ArgumentParser(
        description="Stage 2: project niche models through the paleoclimate proxy bands"
    )
    ap.add_argument("--config", default="conf/project.yaml")
    ap.add_argument("--cultivar", action="append", default=None, help="Only this cultivar_id (repeatable)")
    ap.add_argument("--jobs", type=int, default=None, help="Worker count (default from config)")
    ap.add_argument("--overwrite", action="store_true", help="Recompute even if reconstructions exist")
    args = ap.parse_args()

    cfg = load_project_config(args.config)
    if args.jobs is not None:
        cfg.project_jobs = args.jobs

    ids = reconstruct(cfg, cultivar_ids=args.cultivar, overwrite=args.overwrite)
    get_logger().info("Reconstructions ready for %d cultivars", len(ids))


if __name__ == "__main__":
    main()
