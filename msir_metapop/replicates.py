"""Task farm for independent replicates.

Every replicate is a pure function of (model, initial state, t_end, its own
seed). Tasks are dispatched to a ``multiprocessing.Pool`` and collected
with ``imap_unordered``; each result carries its task index so the output
list is always in replicate order, whatever the completion order.

Replicate k always draws from the k-th child of SeedSequence(seed), so a
run is bit-reproducible for any number of workers.
"""

from __future__ import annotations

from dataclasses import dataclass
from multiprocessing import Pool
from typing import Any, Callable, List, Optional, Sequence

import numpy as np

from msir_metapop.config import LeapSection, validate_leap
from msir_metapop.errors import ConfigurationError
from msir_metapop.model import MetapopModel
from msir_metapop.rng import spawn_seeds
from msir_metapop.types import Trajectory

ProgressCallback = Callable[[int, int], None]


# ═══════════════════════════════════════════════════════════════════════
# GENERIC TASK FARM
# ═══════════════════════════════════════════════════════════════════════

def _indexed_call(job):
    func, i, task = job
    return i, func(task)


def run_tasks(
    func: Callable[[Any], Any],
    tasks: Sequence[Any],
    workers: int = 1,
    progress_callback: Optional[ProgressCallback] = None,
) -> List[Any]:
    """Apply a picklable function to every task, serially or over a process pool.

    Args:
        func: Module-level function of one task.
        tasks: Task objects (picklable when workers > 1).
        workers: Number of processes; 1 runs in the calling process.
        progress_callback: Optional callable(done, total) after each task.

    Returns:
        Results in task order.
    """
    n = len(tasks)
    results: List[Any] = [None] * n
    if workers <= 1 or n <= 1:
        for i, task in enumerate(tasks):
            results[i] = func(task)
            if progress_callback is not None:
                progress_callback(i + 1, n)
        return results

    jobs = [(func, i, task) for i, task in enumerate(tasks)]
    with Pool(processes=min(workers, n)) as pool:
        for done, (i, value) in enumerate(pool.imap_unordered(_indexed_call, jobs), start=1):
            results[i] = value
            if progress_callback is not None:
                progress_callback(done, n)
    return results


# ═══════════════════════════════════════════════════════════════════════
# STOCHASTIC REPLICATES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class ReplicateTask:
    """Everything one replicate needs; shares no mutable state with others."""
    model: MetapopModel
    x0: np.ndarray
    t_end: float
    seed: np.random.SeedSequence
    thin: Optional[float] = None
    leap: Optional[LeapSection] = None


def run_replicate(task: ReplicateTask) -> Trajectory:
    """Run one replicate with its own random stream."""
    return task.model.simulate(task.x0, task.t_end, rng=task.seed,
                               thin=task.thin, leap=task.leap)


def run_replicates(
    model: MetapopModel,
    x0,
    t_end: float,
    n_replicates: int,
    seed: int = 42,
    thin: Optional[float] = None,
    leap: Optional[LeapSection] = None,
    workers: int = 1,
    progress_callback: Optional[ProgressCallback] = None,
) -> List[Trajectory]:
    """Draw independent trajectories from the same initial condition.

    Args:
        model: Shared, read-only model.
        x0: (4n,) initial counts.
        t_end: End time (yr).
        n_replicates: Number of trajectories.
        seed: Master seed; replicate k uses child stream k.
        thin: Optional resampling interval (yr).
        leap: Step-size controls.
        workers: Worker processes (1 = serial).
        progress_callback: Optional callable(done, total).

    Returns:
        List of n_replicates Trajectories, in replicate order.

    Raises:
        ConfigurationError: Invalid inputs, before any replicate starts.
    """
    x0 = model.check_state(x0)
    if n_replicates < 1:
        raise ConfigurationError(f"n_replicates must be >= 1, got {n_replicates}")
    if not t_end > 0:
        raise ConfigurationError(f"t_end must be > 0, got {t_end!r}")
    if thin is not None and not thin > 0:
        raise ConfigurationError(f"thin must be > 0 or None, got {thin!r}")
    if leap is not None:
        validate_leap(leap)

    tasks = [
        ReplicateTask(model=model, x0=x0, t_end=t_end, seed=ss, thin=thin, leap=leap)
        for ss in spawn_seeds(seed, n_replicates)
    ]
    return run_tasks(run_replicate, tasks, workers=workers,
                     progress_callback=progress_callback)
