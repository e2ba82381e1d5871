# -*- encoding: utf-8 -*-

import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

import numpy as np
import numpy.typing as npt

from amrproj.errors import InvalidRequestError
from amrproj.records import RecordSet


@dataclass(frozen=True)
class PixelGrid:
    """The window of pixels covered by a projection

    The whole simulation box is divided in ``resolution × resolution``
    pixels with side ``pixel_size``; the map only covers the pixels with
    global indices ``[i0, i1) × [j0, j1)``, where the first index runs along
    the first in-plane axis. Maps are NumPy arrays with shape ``(nx, ny)``.

    The field ``ranges`` is a ``(3, 2)`` array containing the range of
    each axis (x, y, z) in code units, and ``axes`` contains the indices of
    the two in-plane axes and of the line of sight.
    """

    resolution: int
    box_length: float
    pixel_size: float
    i0: int
    i1: int
    j0: int
    j1: int
    ranges: npt.NDArray
    axes: Tuple[int, int, int]

    @property
    def nx(self) -> int:
        return self.i1 - self.i0

    @property
    def ny(self) -> int:
        return self.j1 - self.j0

    @property
    def shape(self) -> Tuple[int, int]:
        return self.nx, self.ny

    @property
    def pixel_area(self) -> float:
        return self.pixel_size**2

    def window_edges(self) -> Tuple[float, float, float, float]:
        """Return the edges of the window ``(umin, umax, vmin, vmax)`` in code units"""
        return (
            self.i0 * self.pixel_size,
            self.i1 * self.pixel_size,
            self.j0 * self.pixel_size,
            self.j1 * self.pixel_size,
        )


def build_pixel_grid(
    ranges: npt.ArrayLike,
    axes: Tuple[int, int, int],
    box_length: float,
    resolution: int,
) -> PixelGrid:
    """Compute the window of pixels covering the in-plane ranges

    `ranges` is a ``(3, 2)`` array with the absolute range of each axis in
    code units.
    """
    ranges = np.array(ranges, dtype=np.float64)
    ranges.setflags(write=False)
    assert ranges.shape == (3, 2)

    if resolution < 1:
        raise InvalidRequestError(f"invalid resolution {resolution}")

    pixel_size = box_length / resolution
    iu, iv, _ = axes
    (umin, umax), (vmin, vmax) = ranges[iu], ranges[iv]

    i0, i1 = math.floor(umin / pixel_size), math.ceil(umax / pixel_size)
    j0, j1 = math.floor(vmin / pixel_size), math.ceil(vmax / pixel_size)

    if i1 <= i0 or j1 <= j0:
        raise InvalidRequestError(
            f"the requested ranges do not cover any pixel at resolution {resolution}"
        )

    return PixelGrid(
        resolution=int(resolution),
        box_length=float(box_length),
        pixel_size=pixel_size,
        i0=i0,
        i1=i1,
        j0=j0,
        j1=j1,
        ranges=ranges,
        axes=tuple(axes),
    )


def select_records(
    records: RecordSet,
    ranges: npt.ArrayLike,
    mask: Optional[npt.ArrayLike] = None,
) -> npt.NDArray:
    """Return the indices of the records taking part in the projection

    A record is selected if its center lies in the half-open interval
    ``[lo, hi)`` of each of the three `ranges` and if `mask` (when
    provided) is ``True`` for it.
    """
    positions = records.positions()
    selected = np.ones(len(records), dtype=bool)

    for axis in range(3):
        lo, hi = ranges[axis]
        coords = positions[:, axis]
        selected &= (coords >= lo) & (coords < hi)

    if mask is not None:
        if len(mask) != len(records):
            raise InvalidRequestError(
                f"the mask has {len(mask)} elements, "
                f"but there are {len(records)} records"
            )
        selected &= mask

    return np.flatnonzero(selected)


def read_only_array(array: npt.ArrayLike) -> npt.NDArray:
    result = np.array(array, dtype=np.float64, copy=True)
    result.setflags(write=False)
    return result


def read_only_maps(maps: Dict[str, npt.ArrayLike]) -> Mapping[str, npt.NDArray]:
    """Return a read-only mapping with read-only copies of the arrays in `maps`"""
    return MappingProxyType({name: read_only_array(x) for name, x in maps.items()})
