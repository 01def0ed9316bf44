"""
Newton residual history logger.

Writes one row per Newton iteration to a text file on rank 0 only.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, TextIO

logger = logging.getLogger(__name__)


class NewtonResidualLogger:
    """
    Newton residual history written to a CSV-like text file.

    Parameters
    ----------
    log_file : Optional[str]
        Path to the log file, or None to disable logging.
    comm : mpi4py-like communicator, optional
        Only rank 0 writes. Without a communicator the calling process writes.
    separator : str
        Column separator character.

    Attributes
    ----------
    handle : Optional[TextIO]
        File handle for writing.

    Example
    -------
    ::

        history = NewtonResidualLogger("residualsNewton", comm)
        history.initialize()
        history.log_iteration(t, 0, 1.0e-2, 0)
        history.close()
    """

    COLUMNS = ("time", "iteration", "residual_norm", "linear_iterations")

    def __init__(self, log_file: Optional[str], comm=None, separator: str = ","):
        self.log_file = log_file
        self.separator = separator
        self.handle: Optional[TextIO] = None
        self._enabled = log_file is not None and (comm is None or comm.Get_rank() == 0)

    def initialize(self) -> None:
        """Create the file and write the header."""
        if not self._enabled:
            return

        log_path = Path(self.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self.handle = open(log_path, "w", encoding="utf-8")
        except OSError as e:
            logger.warning("Could not open Newton residual log file: %s", e)
            self.handle = None
            return

        h = self.handle
        h.write("# Monolithic FSI Newton residual history\n")
        h.write(f"# Generated: {datetime.now().isoformat()}\n")
        h.write(self.separator.join(self.COLUMNS) + "\n")
        h.flush()

    def log_iteration(
        self, time: float, iteration: int, residual_norm: float, linear_iterations: int
    ) -> None:
        """Write a single Newton iteration entry."""
        if self.handle is None:
            return
        values = [f"{time:.6e}", str(iteration), f"{residual_norm:.6e}", str(linear_iterations)]
        self.handle.write(self.separator.join(values) + "\n")
        self.handle.flush()

    def close(self) -> None:
        """Close the log file."""
        if self.handle is not None:
            self.handle.close()
            self.handle = None
