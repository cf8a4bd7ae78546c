from __future__ import annotations
from pathlib import Path
import logging
import logging.config
import yaml

def setup_logging(logging_yaml: str = "conf/logging.yaml", log_dir: str = "outputs/logs") -> None:
    with open(logging_yaml, "r") as f:
        config = yaml.safe_load(f)
    # file handlers write into log_dir whatever the working directory is
    for handler in config.get("handlers", {}).values():
        if "filename" in handler:
            handler["filename"] = str(Path(log_dir) / Path(handler["filename"]).name)
    # file handler opens on dictConfig, so the directory must exist first
    Path(log_dir).mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(config)

def ensure_output_dirs(outputs: str = "outputs") -> None:
    for sub in ["figures", "tables", "logs", "artifacts", "rasters"]:
        (Path(outputs) / sub).mkdir(parents=True, exist_ok=True)
