# -*- encoding: utf-8 -*-

import dataclasses
import logging
from types import MappingProxyType
from typing import Dict

import numpy as np
import numpy.typing as npt

from amrproj.errors import RemapAlignmentError
from amrproj.request import ProjectionMode

from .common import read_only_maps

log = logging.getLogger(__name__)


def _block_sum(array: npt.NDArray, factor: int) -> npt.NDArray:
    nx, ny = array.shape
    return array.reshape(nx // factor, factor, ny // factor, factor).sum(axis=(1, 3))


def _block_nanmean(array: npt.NDArray, factor: int) -> npt.NDArray:
    nx, ny = array.shape
    blocks = array.reshape(nx // factor, factor, ny // factor, factor)
    finite = np.isfinite(blocks)
    count = finite.sum(axis=(1, 3))
    total = np.where(finite, blocks, 0.0).sum(axis=(1, 3))

    result = np.full(count.shape, np.nan)
    np.divide(total, count, out=result, where=count > 0)
    return result


def _block_weighted_mean(
    array: npt.NDArray, weights: npt.NDArray, factor: int
) -> npt.NDArray:
    # Pixels with no weight are NaN in `array`, but they must not poison the
    # average of the block
    seen = weights > 0.0
    total = _block_sum(np.where(seen, array * weights, 0.0), factor)
    weight_total = _block_sum(np.where(seen, weights, 0.0), factor)

    result = np.full(total.shape, np.nan)
    np.divide(total, weight_total, out=result, where=weight_total > 0.0)
    return result


def dispersion_from_moments(mean: npt.NDArray, mean2: npt.NDArray) -> npt.NDArray:
    """Return `sqrt(max(<b²> - <b>², 0))` for each pixel

    Pixels where the moments are NaN stay NaN."""
    return np.sqrt(np.maximum(mean2 - mean**2, 0.0))


class CoarseRemapper:
    """Re-bin the maps of a :class:`.MapResult` at a coarser resolution

    The source map must have ``2**L`` pixels along each side of the box and
    its window must be made of whole coarse pixels. The way pixels are
    merged depends on the quantity:

    - maps computed as weighted averages are averaged again using the
      weights retained in ``weight_maps``, so that the result is the same as
      a direct projection at the coarse resolution;
    - dispersions are computed again from their moments (``moment_maps``),
      each re-binned like a weighted average;
    - per-pixel totals (``mass`` and every map computed in ``sum`` mode) are
      summed;
    - densities per unit area (``sd``) use the plain average of the pixels
      in the block, ignoring NaNs.
    """

    def __init__(self, map_result):
        self.map_result = map_result

    def source_depth(self) -> int:
        resolution = self.map_result.resolution
        if resolution < 1 or (resolution & (resolution - 1)) != 0:
            raise RemapAlignmentError(
                f"a map with resolution {resolution} cannot be remapped, "
                "as it is not a power of two"
            )
        return resolution.bit_length() - 1

    def factor(self, target_depth: int) -> int:
        """Return how many source pixels make one coarse pixel along each axis"""
        depth = self.source_depth()
        if not (0 <= target_depth <= depth):
            raise RemapAlignmentError(
                f"cannot remap a map at depth {depth} to depth {target_depth}"
            )

        factor = 2 ** (depth - target_depth)
        grid = self.map_result.grid
        for name in ("i0", "i1", "j0", "j1"):
            if getattr(grid, name) % factor != 0:
                raise RemapAlignmentError(
                    f"the window of the map ({name}={getattr(grid, name)}) is not "
                    f"aligned with the pixels at depth {target_depth}"
                )

        return factor

    def remap_arrays(self, target_depth: int) -> Dict[str, npt.NDArray]:
        factor = self.factor(target_depth)
        result = self.map_result

        coarse = {}
        for name, cur_map in result.maps.items():
            if name in result.moment_maps:
                weights = result.weight_maps[name]
                mean, mean2 = (
                    _block_weighted_mean(x, weights, factor)
                    for x in result.moment_maps[name]
                )
                coarse[name] = dispersion_from_moments(mean, mean2)
            elif name in result.weight_maps:
                coarse[name] = _block_weighted_mean(
                    cur_map, result.weight_maps[name], factor
                )
            elif result.modes[name] == ProjectionMode.sum:
                coarse[name] = _block_sum(cur_map, factor)
            else:
                coarse[name] = _block_nanmean(cur_map, factor)

        log.debug(
            "remapped %d maps from depth %d to depth %d",
            len(coarse),
            self.source_depth(),
            target_depth,
        )
        return coarse

    def remap(self, target_depth: int):
        """Return a copy of the :class:`.MapResult` whose ``coarse_maps``
        include the maps at `target_depth`"""
        coarse_maps = dict(self.map_result.coarse_maps)
        coarse_maps[target_depth] = read_only_maps(self.remap_arrays(target_depth))

        return dataclasses.replace(
            self.map_result, coarse_maps=MappingProxyType(coarse_maps)
        )
