import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Any, Hashable, Tuple

MAX_WORKERS = 4


def bounded_workers(n_jobs: int | None = None, cap: int = MAX_WORKERS) -> int:
    """
    Sizes a worker pool as min(cap, available cores - 1, n_jobs), never below one.

    Parameters
    ----------
    n_jobs : int, optional
        The number of jobs that will be submitted. Default is no job bound.
    cap : int, optional
        The hard upper bound on workers. Default is MAX_WORKERS.

    Returns
    -------
    int
        The number of workers to use.
    """
    n = min(cap, (os.cpu_count() or 1) - 1)
    if n_jobs is not None:
        n = min(n, n_jobs)
    return max(1, n)


def tp_calc_keyed(jobs: dict[Hashable, Tuple[Callable[..., Any], Tuple[Any, ...]]],
                  n: int | None = None) -> Tuple[dict[Hashable, Any], dict[Hashable, BaseException]]:
    """
    Runs keyed jobs on a bounded thread pool and collects them in completion order.

    Each job is a (func, args) tuple. A job that raises does not abort the batch; its
    exception is returned separately under the same key.

    Parameters
    ----------
    jobs : dict
        Job key mapped to a (func, args) tuple.
    n : int, optional
        The number of worker threads. Default is bounded_workers(len(jobs)).

    Returns
    -------
    tuple
        (results, errors): two dictionaries keyed like the input jobs.
    """
    results = {}
    errors = {}
    if not jobs:
        return results, errors
    if n is None:
        n = bounded_workers(len(jobs))
    with ThreadPoolExecutor(max_workers=n) as executor:
        futures = {executor.submit(func, *args): key for key, (func, args) in jobs.items()}
        for future in as_completed(futures):
            key = futures[future]
            try:
                results[key] = future.result()
            except Exception as e:
                errors[key] = e
    return results, errors
