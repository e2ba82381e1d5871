# -*- encoding: utf-8 -*-
from dataclasses import dataclass
from enum import Enum
from typing import Tuple, Union

import numpy as np
import numpy.typing as npt

from .records import RecordSet
from .units import UnitScales

"""
The axis along which records are projected.
"""
Direction = Enum("Direction", ["x", "y", "z"])

# For each direction: index of the first and second in-plane axis, and of
# the out-of-plane axis
_DIRECTION_TO_AXES = {
    Direction.z: (0, 1, 2),
    Direction.y: (0, 2, 1),
    Direction.x: (1, 2, 0),
}


def parse_direction(direction: Union[str, Direction]) -> Direction:
    """Convert a string like ``"z"`` into a :class:`.Direction`

    .. doctest::

        >>> parse_direction("y")
        <Direction.y: 2>
    """
    if isinstance(direction, Direction):
        return direction

    try:
        return Direction[str(direction).lower()]
    except KeyError:
        raise ValueError(
            f'invalid projection direction "{direction}", valid choices are x, y, z'
        ) from None


def direction_axes(direction: Direction) -> Tuple[int, int, int]:
    """Return the indices of the two in-plane axes and of the line of sight"""
    return _DIRECTION_TO_AXES[direction]


@dataclass(frozen=True)
class Footprints:
    """The footprint of each record on the projection plane

    All the fields are 1D arrays expressed in code units:

    - ``u``, ``v``: coordinates of the center along the two in-plane axes
    - ``w``: coordinate along the line of sight
    - ``half_size``: half of the side of the square footprint (zero for
      particles)
    """

    u: npt.NDArray
    v: npt.NDArray
    w: npt.NDArray
    half_size: npt.NDArray

    def __len__(self):
        return len(self.u)


class CoordinateMapper:
    """Map records on the projection plane chosen by `direction`

    The mapper knows the center of the projection (a 3-element array in code
    units) and the unit scales. The method :meth:`.footprints` returns
    absolute code coordinates, used to bin records; :meth:`.to_physical`
    converts code coordinates into center-relative coordinates expressed in
    some named unit, like ``kpc``.
    """

    def __init__(
        self,
        direction: Direction,
        center: npt.ArrayLike,
        scales: UnitScales,
    ):
        self.direction = direction
        self.center = np.asarray(center, dtype=np.float64)
        assert self.center.shape == (3,)
        self.scales = scales
        self.axes = direction_axes(direction)

    def footprints(self, records: RecordSet) -> Footprints:
        positions = records.positions()
        iu, iv, iw = self.axes
        return Footprints(
            u=positions[:, iu],
            v=positions[:, iv],
            w=positions[:, iw],
            half_size=records.half_sizes(),
        )

    def plane_center(self) -> Tuple[float, float]:
        """Return the center of the projection on the plane (code units)"""
        iu, iv, _ = self.axes
        return self.center[iu], self.center[iv]

    def to_physical(
        self, coords: npt.ArrayLike, axis: int, unit: str = "standard"
    ) -> npt.NDArray:
        """Convert code coordinates along `axis` into center-relative ones in `unit`

        An unknown `unit` raises :class:`.UnknownUnitError`."""
        factor = self.scales[unit]
        return (np.asarray(coords, dtype=np.float64) - self.center[axis]) * factor
