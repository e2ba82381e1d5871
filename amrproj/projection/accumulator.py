# -*- encoding: utf-8 -*-

from dataclasses import dataclass
from typing import Tuple

import numpy as np
import numpy.typing as npt
from numba import njit

from .binner import BinnedRecords


@dataclass
class AccumulatorBuffer:
    """The running sums of a :class:`.WeightedAccumulator`

    - ``weighted_sum``: the sum of ``value × weight × fraction`` in each pixel
    - ``weight_sum``: the sum of ``weight × fraction`` in each pixel

    Both arrays have shape ``(nx, ny)``. A buffer has exactly one writer.
    """

    weighted_sum: npt.NDArray
    weight_sum: npt.NDArray

    @classmethod
    def zeros(cls, shape: Tuple[int, int]) -> "AccumulatorBuffer":
        return cls(
            weighted_sum=np.zeros(shape, dtype=np.float64),
            weight_sum=np.zeros(shape, dtype=np.float64),
        )

    @property
    def nbytes(self) -> int:
        return self.weighted_sum.nbytes + self.weight_sum.nbytes


@njit(nogil=True)
def _accumulate_blocks(
    ix_start: npt.ArrayLike,
    ix_stop: npt.ArrayLike,
    iy_start: npt.ArrayLike,
    iy_stop: npt.ArrayLike,
    fraction: npt.ArrayLike,
    values: npt.ArrayLike,
    weights: npt.ArrayLike,
    weighted_sum: npt.ArrayLike,
    weight_sum: npt.ArrayLike,
) -> None:
    # This function does not acquire the GIL, so several threads can run it
    # at the same time on different buffers
    for i in range(fraction.size):
        cur_weight = weights[i] * fraction[i]
        cur_value = values[i] * cur_weight
        for ix in range(ix_start[i], ix_stop[i]):
            for iy in range(iy_start[i], iy_stop[i]):
                weighted_sum[ix, iy] += cur_value
                weight_sum[ix, iy] += cur_weight


class WeightedAccumulator:
    """Accumulate weighted values on a 2D grid of pixels

    The accumulator keeps the sum of ``value × weight × fraction`` and the
    sum of ``weight × fraction`` in each pixel; the weighted average is
    computed by :meth:`.finalize`.

    .. doctest::

        >>> acc = WeightedAccumulator((2, 2))
        >>> acc.add((0, 0), 10.0, 2.0)
        >>> acc.add((0, 0), 20.0, 1.0)
        >>> float(acc.finalize()[0, 0])
        13.333333333333334
    """

    def __init__(self, shape: Tuple[int, int]):
        self.shape = tuple(shape)
        self.buffer = AccumulatorBuffer.zeros(self.shape)
        self.num_of_contributions = 0

    def add(
        self,
        pixel: Tuple[int, int],
        value: float,
        weight: float,
        fraction: float = 1.0,
    ) -> None:
        """Add one value to one pixel"""
        if weight < 0.0:
            raise ValueError(f"negative weight {weight}")

        ix, iy = pixel
        if not (0 <= ix < self.shape[0] and 0 <= iy < self.shape[1]):
            raise IndexError(f"pixel {pixel} lies outside a map with shape {self.shape}")

        self.buffer.weighted_sum[ix, iy] += value * weight * fraction
        self.buffer.weight_sum[ix, iy] += weight * fraction
        if weight > 0.0:
            self.num_of_contributions += 1

    def add_blocks(
        self, binned: BinnedRecords, values: npt.ArrayLike, weights: npt.ArrayLike
    ) -> None:
        """Add one value per record, spreading it over the block of each record

        Both `values` and `weights` must have one element per record in
        `binned`."""
        values = np.ascontiguousarray(values, dtype=np.float64)
        weights = np.ascontiguousarray(weights, dtype=np.float64)
        assert len(values) == len(weights) == len(binned)

        if len(binned) == 0:
            return

        if np.any(weights < 0.0):
            raise ValueError("weights must not be negative")

        # The Numba kernel does not check indices
        if (
            binned.ix_start.min() < 0
            or binned.iy_start.min() < 0
            or binned.ix_stop.max() > self.shape[0]
            or binned.iy_stop.max() > self.shape[1]
        ):
            raise IndexError(f"some blocks lie outside a map with shape {self.shape}")

        _accumulate_blocks(
            binned.ix_start,
            binned.ix_stop,
            binned.iy_start,
            binned.iy_stop,
            binned.fraction,
            values,
            weights,
            self.buffer.weighted_sum,
            self.buffer.weight_sum,
        )
        self.num_of_contributions += int(np.count_nonzero(weights > 0.0))

    def finalize(self) -> npt.NDArray:
        """Return the weighted average in each pixel, or NaN where no weight fell"""
        weight_sum = self.buffer.weight_sum
        result = np.full(self.shape, np.nan)
        seen = weight_sum > 0.0
        result[seen] = self.buffer.weighted_sum[seen] / weight_sum[seen]
        return result

    def finalize_sum(self) -> npt.NDArray:
        """Return the weighted sum in each pixel"""
        return self.buffer.weighted_sum.copy()
