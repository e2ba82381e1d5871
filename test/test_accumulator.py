# -*- encoding: utf-8 -*-

import numpy as np
import pytest

from amrproj import WeightedAccumulator
from amrproj.projection import BinnedRecords


def _blocks(ix_start, ix_stop, iy_start, iy_stop):
    ix_start, ix_stop, iy_start, iy_stop = (
        np.array(x, dtype=np.int64) for x in (ix_start, ix_stop, iy_start, iy_stop)
    )
    num_of_pixels = (ix_stop - ix_start) * (iy_stop - iy_start)
    return BinnedRecords(
        indices=np.arange(len(ix_start)),
        ix_start=ix_start,
        ix_stop=ix_stop,
        iy_start=iy_start,
        iy_stop=iy_stop,
        fraction=1.0 / num_of_pixels,
    )


def test_weighted_mean_of_two_records():
    acc = WeightedAccumulator((2, 2))
    acc.add((0, 0), 10.0, 2.0)
    acc.add((0, 0), 20.0, 1.0)

    result = acc.finalize()
    assert result[0, 0] == pytest.approx(40.0 / 3.0)
    assert np.all(np.isnan(result[1:, :]))
    assert np.isnan(result[0, 1])
    assert acc.num_of_contributions == 2

    total = acc.finalize_sum()
    assert total[0, 0] == pytest.approx(40.0)
    assert np.all(total[1:, :] == 0.0)


def test_add_blocks_matches_add():
    binned = _blocks(
        ix_start=[0, 1, 2], ix_stop=[2, 2, 4], iy_start=[0, 1, 0], iy_stop=[2, 3, 1]
    )
    values = np.array([1.0, -3.0, 5.0])
    weights = np.array([2.0, 0.5, 1.0])

    acc_blocks = WeightedAccumulator((4, 3))
    acc_blocks.add_blocks(binned, values, weights)

    acc_pairs = WeightedAccumulator((4, 3))
    for i in range(len(binned)):
        for pixel, fraction in binned.pairs(i):
            acc_pairs.add(pixel, values[i], weights[i], fraction)

    assert np.allclose(acc_blocks.buffer.weighted_sum, acc_pairs.buffer.weighted_sum)
    assert np.allclose(acc_blocks.buffer.weight_sum, acc_pairs.buffer.weight_sum)
    assert np.allclose(
        acc_blocks.finalize(), acc_pairs.finalize(), equal_nan=True
    )

    # Every record deposits its whole weight
    assert acc_blocks.buffer.weight_sum.sum() == pytest.approx(weights.sum())


def test_zero_weights_do_not_contribute():
    acc = WeightedAccumulator((1, 1))
    acc.add_blocks(_blocks([0], [1], [0], [1]), [5.0], [0.0])

    assert acc.num_of_contributions == 0
    assert np.isnan(acc.finalize()[0, 0])


def test_invalid_additions():
    acc = WeightedAccumulator((2, 2))

    with pytest.raises(ValueError):
        acc.add((0, 0), 1.0, -1.0)

    with pytest.raises(IndexError):
        acc.add((2, 0), 1.0, 1.0)

    with pytest.raises(IndexError):
        acc.add((0, -1), 1.0, 1.0)

    with pytest.raises(IndexError):
        acc.add_blocks(_blocks([1], [3], [0], [1]), [1.0], [1.0])

    with pytest.raises(ValueError):
        acc.add_blocks(_blocks([0], [1], [0], [1]), [1.0], [-1.0])

    # Nothing was added by the failed calls
    assert np.all(acc.buffer.weight_sum == 0.0)
