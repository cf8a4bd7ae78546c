from __future__ import annotations

import logging
import re
from pathlib import Path


def get_logger(name: str = "cropniche") -> logging.Logger:
    """
    Create a simple console logger.
    """
    logger = logging.getLogger(name)

    # Avoid duplicate handlers in notebooks / repeated runs / joblib workers
    if not logger.handlers:
        logger.setLevel(logging.INFO)
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            fmt="%(asctime)s | %(levelname)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def ensure_dir(path: Path) -> None:
    """
    Create directory if it does not exist.
    """
    path.mkdir(parents=True, exist_ok=True)


def slugify(label: str) -> str:
    """
    Turn a free-text label ("Broomcorn millet") into an artifact key ("broomcorn_millet").
    """
    slug = re.sub(r"[^a-z0-9]+", "_", str(label).strip().lower()).strip("_")
    if not slug:
        raise ValueError(f"Cannot build a key from label: {label!r}")
    return slug
