# -*- encoding: utf-8 -*-

# Assignment of records to the pixels of a map
#
# A record never deposits its weight on pixels scattered around the map:
# the set of pixels it touches is always a rectangle, and every pixel of
# the rectangle receives the same fraction. We therefore store one block
# ``[ix_start, ix_stop) × [iy_start, iy_stop)`` per record instead of the
# full list of (pixel, fraction) pairs.

import logging
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np
import numpy.typing as npt

from amrproj.constants import CELL_PIXEL_RTOL
from amrproj.coordinates import Footprints

from .common import PixelGrid

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BinnedRecords:
    """The pixels touched by each record, as computed by :class:`.LevelBinner`

    Fields:

    - ``indices``: index of each record in the original record set
    - ``ix_start``, ``ix_stop``, ``iy_start``, ``iy_stop``: the block of
      pixels (relative to the window of the :class:`.PixelGrid`) touched by
      each record
    - ``fraction``: the fraction of the record that falls on each pixel of
      its block, i.e., ``1 / num_of_pixels``

    All the arrays are read-only, so that the same object can be used by
    several threads at the same time.
    """

    indices: npt.NDArray
    ix_start: npt.NDArray
    ix_stop: npt.NDArray
    iy_start: npt.NDArray
    iy_stop: npt.NDArray
    fraction: npt.NDArray

    def __len__(self):
        return len(self.indices)

    def num_of_pixels(self) -> npt.NDArray:
        return (self.ix_stop - self.ix_start) * (self.iy_stop - self.iy_start)

    def pairs(self, i: int) -> List[Tuple[Tuple[int, int], float]]:
        """Return the list of ``((ix, iy), fraction)`` pairs for the `i`-th record"""
        frac = float(self.fraction[i])
        return [
            ((ix, iy), frac)
            for ix in range(self.ix_start[i], self.ix_stop[i])
            for iy in range(self.iy_start[i], self.iy_stop[i])
        ]


def _freeze(array: npt.NDArray) -> npt.NDArray:
    array.setflags(write=False)
    return array


class LevelBinner:
    """Compute the pixels touched by records on a :class:`.PixelGrid`

    Records whose footprint is not larger than a pixel (this includes
    particles, which have no footprint) fall entirely in the pixel that
    contains their center. Larger cells are spread over all the pixels
    whose center lies within the footprint of the cell, each getting the
    same fraction.

    If a large cell spills outside the window of the grid, it is clipped
    and the fraction is computed using only the pixels that are left, so
    that every record always deposits all its weight.
    """

    def __init__(self, grid: PixelGrid):
        self.grid = grid

    def bin(self, footprints: Footprints, indices: npt.ArrayLike) -> BinnedRecords:
        """Compute the blocks for the records in `indices`

        The parameter `footprints` must contain *all* the records, as
        `indices` is used to pick the selected ones."""
        grid = self.grid
        pix = grid.pixel_size
        indices = np.asarray(indices, dtype=np.int64)

        u = footprints.u[indices]
        v = footprints.v[indices]
        half_size = footprints.half_size[indices]

        # Rounding errors might place a center lying on the border of the
        # window just outside it, hence the clipping
        ix = np.clip(np.floor(u / pix).astype(np.int64), grid.i0, grid.i1 - 1)
        iy = np.clip(np.floor(v / pix).astype(np.int64), grid.j0, grid.j1 - 1)

        ix_start, ix_stop = ix.copy(), ix + 1
        iy_start, iy_stop = iy.copy(), iy + 1

        large = 2.0 * half_size > pix * (1.0 + CELL_PIXEL_RTOL)
        if np.any(large):
            umin = u[large] - half_size[large]
            umax = u[large] + half_size[large]
            vmin = v[large] - half_size[large]
            vmax = v[large] + half_size[large]

            # Pixel k has its center at (k + 0.5) * pix, so the pixels whose
            # center lies in [cmin, cmax) are those in
            # [ceil(cmin / pix - 0.5), ceil(cmax / pix - 0.5))
            bx0 = np.clip(np.ceil(umin / pix - 0.5).astype(np.int64), grid.i0, grid.i1)
            bx1 = np.clip(np.ceil(umax / pix - 0.5).astype(np.int64), grid.i0, grid.i1)
            by0 = np.clip(np.ceil(vmin / pix - 0.5).astype(np.int64), grid.j0, grid.j1)
            by1 = np.clip(np.ceil(vmax / pix - 0.5).astype(np.int64), grid.j0, grid.j1)

            # A large cell whose center is inside the window always covers
            # the center of the pixel that contains its own center; only
            # rounding errors could empty the block
            nonempty = (bx1 > bx0) & (by1 > by0)
            if not np.all(nonempty):
                log.debug(
                    "%d large cells fell back to a single pixel",
                    np.count_nonzero(~nonempty),
                )

            ix_start[large] = np.where(nonempty, bx0, ix_start[large])
            ix_stop[large] = np.where(nonempty, bx1, ix_stop[large])
            iy_start[large] = np.where(nonempty, by0, iy_start[large])
            iy_stop[large] = np.where(nonempty, by1, iy_stop[large])

        num_of_pixels = (ix_stop - ix_start) * (iy_stop - iy_start)
        assert np.all(num_of_pixels > 0)

        return BinnedRecords(
            indices=_freeze(indices.copy()),
            ix_start=_freeze(ix_start - grid.i0),
            ix_stop=_freeze(ix_stop - grid.i0),
            iy_start=_freeze(iy_start - grid.j0),
            iy_stop=_freeze(iy_stop - grid.j0),
            fraction=_freeze(1.0 / num_of_pixels),
        )
