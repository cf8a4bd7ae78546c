from __future__ import annotations

from typing import Any, Callable, Sequence

from joblib import Parallel, delayed

from cropniche.utils import get_logger


def run_batch(
    func: Callable[..., Any],
    tasks: Sequence[tuple],
    n_jobs: int = 1,
    desc: str = "batch",
) -> list[Any]:
    """
    Map `func` over independent argument tuples on a joblib worker pool.

    Returns results in task order once every task has finished. The first
    failing task raises here and the batch is abandoned.
    """
    logger = get_logger()
    tasks = list(tasks)
    if not tasks:
        logger.info("%s: nothing to do", desc)
        return []

    n_jobs = max(1, min(int(n_jobs), len(tasks)))
    logger.info("%s: %d tasks on %d worker(s)", desc, len(tasks), n_jobs)

    results = Parallel(n_jobs=n_jobs)(delayed(func)(*args) for args in tasks)

    logger.info("%s: finished %d tasks", desc, len(tasks))
    return list(results)
