#!/usr/bin/env python
from __future__ import annotations

import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from cropniche.reporting import run_reports
from cropniche.settings import load_project_config


def main() -> None:
    ap = argparse.ArgumentParser(
        description="Stage 3: summary tables, figures and GeoTIFFs for every reconstruction"
    )
    ap.add_argument("--config", default="conf/project.yaml")
    args = ap.parse_args()

    cfg = load_project_config(args.config)
    summary = run_reports(cfg)
    print("Wrote summaries for", summary["key"].nunique(), "reconstructions")


if __name__ == "__main__":
    main()
