"""
Write-only exporters for solution fields.

The coupled solver registers named fields once and calls ``post_process``
after every accepted time step. File formats are left to subclasses.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Tuple

import numpy as np

from fsi_blocks.core.maps import FieldMap

logger = logging.getLogger(__name__)


class Exporter(ABC):
    """Base exporter.

    A field is registered with a getter returning its current values, so the
    exporter always sees the latest solution without holding a reference to
    a vector that is replaced between steps.
    """

    def __init__(self):
        self._fields: Dict[str, Tuple[FieldMap, Callable[[], np.ndarray]]] = {}
        self._closed = False

    def add_field(self, name: str, field_map: FieldMap, getter: Callable[[], np.ndarray]) -> None:
        if self._closed:
            raise RuntimeError("Cannot add fields to a closed exporter")
        if name in self._fields:
            raise KeyError(f"Field '{name}' is already registered")
        self._fields[name] = (field_map, getter)

    @property
    def field_names(self) -> List[str]:
        return list(self._fields)

    def post_process(self, time: float) -> None:
        """Export every registered field at ``time``."""
        if self._closed:
            raise RuntimeError("Cannot post-process with a closed exporter")
        values = {}
        for name, (field_map, getter) in self._fields.items():
            data = np.array(getter(), dtype=float)
            if data.shape != (field_map.size,):
                raise ValueError(
                    f"Field '{name}' has shape {data.shape}, expected ({field_map.size},)"
                )
            values[name] = data
        self.write(time, values)

    @abstractmethod
    def write(self, time: float, values: Dict[str, np.ndarray]) -> None:
        ...

    def close(self) -> None:
        self._closed = True


class InMemoryExporter(Exporter):
    """Keep every exported snapshot in memory.

    Attributes
    ----------
    times : List[float]
        Export times, in call order.
    snapshots : Dict[str, List[np.ndarray]]
        Exported values per field.
    """

    def __init__(self):
        super().__init__()
        self.times: List[float] = []
        self.snapshots: Dict[str, List[np.ndarray]] = {}

    def write(self, time: float, values: Dict[str, np.ndarray]) -> None:
        self.times.append(float(time))
        for name, data in values.items():
            self.snapshots.setdefault(name, []).append(data)
        logger.debug("Exported %d fields at t=%.6g", len(values), time)

    def latest(self, name: str) -> np.ndarray:
        if not self.snapshots.get(name):
            raise KeyError(f"No snapshot recorded for field '{name}'")
        return self.snapshots[name][-1]
