"""
Communicator helpers.

Communicators follow the mpi4py interface (``Get_rank``, ``Get_size``,
``allgather``, ``Barrier``). ``mpi4py`` is imported lazily so that serial
runs that pass their own communicator never initialise MPI.
"""

import logging
from typing import List, Tuple

import numpy as np


def world_comm():
    """Return ``MPI.COMM_WORLD``."""
    from mpi4py import MPI

    return MPI.COMM_WORLD


def exclusive_offsets(counts: List[int]) -> np.ndarray:
    """Exclusive prefix sum of per-rank counts.

    Rank 0 gets offset 0 and rank ``k`` the sum of the counts of ranks ``< k``.

    Examples
    --------
    >>> exclusive_offsets([2, 3, 0, 1]).tolist()
    [0, 2, 5, 5]
    """
    counts_arr = np.asarray(counts, dtype=np.int64)
    offsets = np.zeros_like(counts_arr)
    if counts_arr.size > 1:
        offsets[1:] = np.cumsum(counts_arr[:-1])
    return offsets


def allgather_triplets(
    comm, rows: np.ndarray, cols: np.ndarray, values: np.ndarray
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Replicate rank-local COO triplets on every rank.

    Parameters
    ----------
    comm : mpi4py-like communicator
    rows, cols, values : np.ndarray
        Rank-local triplets in global numbering.

    Returns
    -------
    tuple of np.ndarray
        Concatenated triplets of all ranks, in rank order.
    """
    gathered = comm.allgather(
        (
            np.asarray(rows, dtype=np.int64),
            np.asarray(cols, dtype=np.int64),
            np.asarray(values, dtype=np.float64),
        )
    )
    all_rows = np.concatenate([g[0] for g in gathered]) if gathered else np.empty(0, np.int64)
    all_cols = np.concatenate([g[1] for g in gathered]) if gathered else np.empty(0, np.int64)
    all_vals = np.concatenate([g[2] for g in gathered]) if gathered else np.empty(0)
    return all_rows, all_cols, all_vals


def leader_info(logger: logging.Logger, comm, msg: str, *args) -> None:
    """Log ``msg`` at INFO level on rank 0 only."""
    if comm.Get_rank() == 0:
        logger.info(msg, *args)
