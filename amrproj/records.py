# -*- encoding: utf-8 -*-

from abc import ABC, abstractmethod
from collections import namedtuple
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, List, Optional

import numpy as np
import numpy.typing as npt

CellRecord = namedtuple("CellRecord", ["level", "cx", "cy", "cz", "fields"])
"""One AMR cell: refinement level, 1-based integer address and scalar fields.

The field `fields` is a dictionary associating the name of each stored
quantity (e.g., ``"rho"``, ``"vx"``) with its value in code units.
"""

ParticleRecord = namedtuple("ParticleRecord", ["x", "y", "z", "fields"])
"""One particle: position in code units and scalar fields (e.g., ``"mass"``)."""

RecordKind = Enum("RecordKind", ["cells", "particles"])


def _read_only(array: npt.ArrayLike, dtype=np.float64) -> npt.NDArray:
    result = np.array(array, dtype=dtype, copy=True)
    result.setflags(write=False)
    return result


class RecordSet(ABC):
    """A columnar, immutable set of records ready to be projected

    The projection engine only talks to records through this interface, so
    that the same code handles AMR cells and particles. All the arrays
    returned by the methods of this class are read-only and can be shared
    among threads.

    Args:
        fields (dict): a dictionary associating the name of each stored
            quantity with a 1D array containing one value per record

        box_length (float): the length of the side of the simulation box,
            in code units
    """

    kind = None  # type: RecordKind

    def __init__(self, fields: Dict[str, npt.ArrayLike], box_length: float):
        if not box_length > 0.0:
            raise ValueError(f"the box length must be positive, got {box_length}")

        self._box_length = float(box_length)
        self._fields = MappingProxyType(
            {str(name): _read_only(values) for name, values in fields.items()}
        )

        for name, values in self._fields.items():
            if values.ndim != 1:
                raise ValueError(f'field "{name}" must be a 1D array')

    def _check_lengths(self, num_of_records: int) -> None:
        for name, values in self._fields.items():
            if len(values) != num_of_records:
                raise ValueError(
                    f'field "{name}" has {len(values)} elements, '
                    f"but there are {num_of_records} records"
                )

    @property
    def box_length(self) -> float:
        return self._box_length

    @property
    def field_names(self) -> List[str]:
        return list(self._fields.keys())

    def has_field(self, name: str) -> bool:
        return name in self._fields

    def field(self, name: str) -> npt.NDArray:
        """Return the values of the stored field `name` (a read-only array)"""
        try:
            return self._fields[name]
        except KeyError:
            raise KeyError(
                f'no field "{name}" in the records, available fields are: '
                + ", ".join(self._fields.keys())
            ) from None

    @abstractmethod
    def __len__(self) -> int:
        pass

    @abstractmethod
    def positions(self) -> npt.NDArray:
        """Return a ``(N, 3)`` array with the center of each record (code units)"""

    @abstractmethod
    def half_sizes(self) -> npt.NDArray:
        """Return the half-side of the footprint of each record (0 for points)"""

    @abstractmethod
    def volumes(self) -> npt.NDArray:
        """Return the volume of each record, in code units"""

    @abstractmethod
    def masses(self) -> npt.NDArray:
        """Return the mass (or mass-equivalent) of each record, in code units"""


class CellRecords(RecordSet):
    """A set of AMR cells

    The physical size of a cell at level ``l`` is ``box_length / 2**l``,
    and the position of its center along each axis is ``(index - 0.5) *
    size``, where ``index`` is the 1-based integer address of the cell
    within its level.

    Args:
        level (array): refinement level of each cell

        cx, cy, cz (arrays): integer address of each cell

        fields (dict): stored quantities, see :class:`.RecordSet`

        box_length (float): size of the simulation box in code units

        lmin (int): minimum refinement level of the simulation. If provided,
            cells with a lower level are rejected.
    """

    kind = RecordKind.cells

    def __init__(
        self,
        level: npt.ArrayLike,
        cx: npt.ArrayLike,
        cy: npt.ArrayLike,
        cz: npt.ArrayLike,
        fields: Dict[str, npt.ArrayLike],
        box_length: float = 1.0,
        lmin: Optional[int] = None,
    ):
        super().__init__(fields=fields, box_length=box_length)

        self.level = _read_only(level, dtype=np.int64)
        address = [_read_only(x, dtype=np.int64) for x in (cx, cy, cz)]
        for cur_address in address:
            if cur_address.shape != self.level.shape:
                raise ValueError(
                    "levels and integer addresses must have the same length"
                )
        self.cx, self.cy, self.cz = address
        self._check_lengths(len(self.level))

        if len(self.level) > 0:
            self.lmin = int(self.level.min()) if lmin is None else int(lmin)
            self.lmax = int(self.level.max())
            if self.level.min() < self.lmin:
                raise ValueError(
                    f"some cells have a level lower than lmin={self.lmin}"
                )
        else:
            self.lmin = 0 if lmin is None else int(lmin)
            self.lmax = self.lmin

        # Positions and sizes are computed once, so that threads sharing this
        # object only ever read them
        self._sizes = _read_only(self._box_length / 2.0**self.level)
        self._positions = _read_only(
            (np.column_stack(address) - 0.5) * self._sizes[:, None]
        )

    @classmethod
    def from_records(
        cls,
        records: Iterable[CellRecord],
        box_length: float = 1.0,
        lmin: Optional[int] = None,
    ) -> "CellRecords":
        """Build a :class:`.CellRecords` object from a sequence of :class:`.CellRecord`

        Every record must define the same set of fields."""
        records = list(records)
        names = list(records[0].fields.keys()) if records else []
        return cls(
            level=[r.level for r in records],
            cx=[r.cx for r in records],
            cy=[r.cy for r in records],
            cz=[r.cz for r in records],
            fields={name: [r.fields[name] for r in records] for name in names},
            box_length=box_length,
            lmin=lmin,
        )

    def __len__(self) -> int:
        return len(self.level)

    def sizes(self) -> npt.NDArray:
        return self._sizes

    def positions(self) -> npt.NDArray:
        return self._positions

    def half_sizes(self) -> npt.NDArray:
        return self._sizes * 0.5

    def volumes(self) -> npt.NDArray:
        return self._sizes**3

    def masses(self) -> npt.NDArray:
        # The mass of a cell is its density times its volume
        return self.field("rho") * self.volumes()


class ParticleRecords(RecordSet):
    """A set of point-like particles

    Args:
        x, y, z (arrays): position of each particle in code units

        fields (dict): stored quantities, see :class:`.RecordSet`. The field
            ``mass`` is needed for mass weighting and surface densities.

        box_length (float): size of the simulation box in code units
    """

    kind = RecordKind.particles

    def __init__(
        self,
        x: npt.ArrayLike,
        y: npt.ArrayLike,
        z: npt.ArrayLike,
        fields: Dict[str, npt.ArrayLike],
        box_length: float = 1.0,
    ):
        super().__init__(fields=fields, box_length=box_length)

        coords = [np.asarray(c, dtype=np.float64) for c in (x, y, z)]
        if not (coords[0].shape == coords[1].shape == coords[2].shape):
            raise ValueError("x, y, and z must have the same length")

        self._positions = _read_only(np.column_stack(coords).reshape(-1, 3))
        self._check_lengths(len(self._positions))

    @classmethod
    def from_records(
        cls, records: Iterable[ParticleRecord], box_length: float = 1.0
    ) -> "ParticleRecords":
        """Build a :class:`.ParticleRecords` object from :class:`.ParticleRecord` tuples"""
        records = list(records)
        names = list(records[0].fields.keys()) if records else []
        return cls(
            x=[r.x for r in records],
            y=[r.y for r in records],
            z=[r.z for r in records],
            fields={name: [r.fields[name] for r in records] for name in names},
            box_length=box_length,
        )

    def __len__(self) -> int:
        return len(self._positions)

    def positions(self) -> npt.NDArray:
        return self._positions

    def half_sizes(self) -> npt.NDArray:
        return np.zeros(len(self))

    def volumes(self) -> npt.NDArray:
        raise ValueError("particles have no volume, as they are point-like")

    def masses(self) -> npt.NDArray:
        return self.field("mass")
