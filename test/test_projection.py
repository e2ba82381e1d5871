# -*- encoding: utf-8 -*-

import dataclasses

import numpy as np
import pytest

import amrproj
from amrproj import (
    DerivedVariableError,
    EmptyResultWarning,
    FromDepth,
    InvalidRequestError,
    PixelCount,
    ProjectionMode,
    ProjectionRequest,
)


def _request(variables, **kwargs):
    arguments = dict(max_concurrency=1, resolution=FromDepth(1))
    arguments.update(kwargs)
    return ProjectionRequest(variables=variables, **arguments)


def test_cells_matching_pixels(square_cells):
    result = amrproj.project(square_cells, _request(["vx"]))

    assert result.variables == ["vx"]
    assert result.maps["vx"].shape == (2, 2)

    # The first index runs along x, the second along y
    assert np.allclose(result.maps["vx"], [[1.0, 3.0], [2.0, 4.0]])
    assert result.units["vx"] == "standard"
    assert result.modes["vx"] == ProjectionMode.mean
    assert result.resolution == 2
    assert result.num_of_records == 4
    assert not result.errors


def test_weighted_mean_across_levels():
    # A coarse cell (value 10, weight 2) and a fine cell (value 20, weight 1)
    # at different depths along the line of sight, both in pixel (0, 0)
    cells = amrproj.CellRecords(
        level=[1, 2],
        cx=[1, 1],
        cy=[1, 1],
        cz=[1, 3],
        fields={"rho": [1.0, 1.0], "vx": [10.0, 20.0], "w": [2.0, 1.0]},
    )
    result = amrproj.project(cells, _request(["vx"], weighting="w"))

    vx_map = result.maps["vx"]
    assert vx_map[0, 0] == pytest.approx(40.0 / 3.0)
    assert np.isnan(vx_map[1, 1])
    assert np.isnan(vx_map[0, 1])
    assert np.isnan(vx_map[1, 0])

    # The weights of each pixel are kept for remapping
    assert np.allclose(result.weight_maps["vx"], [[3.0, 0.0], [0.0, 0.0]])


def test_coarse_cell_spread_over_finer_pixels():
    # The level-1 cell covers 2×2 pixels at depth 2, and the level-2 cell
    # falls in the first of them
    cells = amrproj.CellRecords(
        level=[1, 2],
        cx=[1, 1],
        cy=[1, 1],
        cz=[1, 1],
        fields={"rho": [1.0, 1.0], "vx": [10.0, 20.0], "w": [2.0, 1.0]},
    )
    result = amrproj.project(
        cells, _request(["vx"], resolution=FromDepth(2), weighting="w")
    )

    vx_map = result.maps["vx"]
    assert vx_map.shape == (4, 4)
    assert vx_map[0, 0] == pytest.approx((10.0 * 2.0 * 0.25 + 20.0) / (2.0 * 0.25 + 1.0))
    assert vx_map[0, 1] == 10.0
    assert vx_map[1, 0] == 10.0
    assert vx_map[1, 1] == 10.0
    assert np.all(np.isnan(vx_map[2:, :]))
    assert np.all(np.isnan(vx_map[:, 2:]))


def test_projection_along_x():
    cells = amrproj.CellRecords(
        level=[1, 1, 1, 1],
        cx=[1, 1, 1, 1],
        cy=[1, 2, 1, 2],
        cz=[1, 1, 2, 2],
        fields={"rho": np.ones(4), "vx": [1.0, 2.0, 3.0, 4.0]},
    )
    result = amrproj.project(cells, _request(["vx"], direction="x"))

    assert result.direction == amrproj.Direction.x
    assert np.allclose(result.maps["vx"], [[1.0, 3.0], [2.0, 4.0]])


def test_extent_and_pixel_size(square_cells):
    result = amrproj.project(square_cells, _request(["vx"]))

    assert result.extent == pytest.approx((0.0, 1.0, 0.0, 1.0))
    assert result.extent_center == pytest.approx((-0.5, 0.5, -0.5, 0.5))
    assert result.ratio == pytest.approx(1.0)
    assert result.pixel_size == pytest.approx(0.5)

    scales = amrproj.UnitScales({"kpc": 100.0})
    result = amrproj.project(
        square_cells,
        _request(
            ["vx"],
            resolution=FromDepth(3),
            xrange=(-25.0, 25.0),
            range_unit="kpc",
        ),
        scales=scales,
    )

    assert result.maps["vx"].shape == (4, 8)
    assert result.extent == pytest.approx((25.0, 75.0, 0.0, 100.0))
    assert result.extent_center == pytest.approx((-25.0, 25.0, -50.0, 50.0))
    assert result.ratio == pytest.approx(0.5)
    assert result.pixel_size == pytest.approx(12.5)
    assert result.range_unit == "kpc"


def test_mask(square_cells):
    mask = np.array([True, False, True, True])
    result = amrproj.project(square_cells, _request(["vx"], mask=mask))

    assert np.isnan(result.maps["vx"][1, 0])
    assert result.maps["vx"][0, 0] == pytest.approx(1.0)
    assert result.num_of_records == 3


def test_sum_mode(square_cells):
    result = amrproj.project(
        square_cells,
        _request(["rho"], resolution=FromDepth(2), weighting="unweighted", mode="sum"),
    )

    # Each cell is spread over 2×2 pixels
    assert result.modes["rho"] == ProjectionMode.sum
    assert np.allclose(result.maps["rho"], 0.25)
    assert result.maps["rho"].sum() == pytest.approx(4.0)
    assert "rho" not in result.weight_maps


def test_unit_conversion(square_cells):
    scales = amrproj.UnitScales({"km_s": 3.0})
    plain = amrproj.project(square_cells, _request(["vx", "v2"]))
    converted = amrproj.project(
        square_cells, _request(["vx", "v2"], units="km_s"), scales=scales
    )

    assert converted.units["v2"] == "km_s"
    assert np.allclose(converted.maps["vx"], 3.0 * plain.maps["vx"])
    assert np.allclose(converted.maps["v2"], 9.0 * plain.maps["v2"])


@pytest.mark.parametrize("resolution", [FromDepth(5), FromDepth(7), PixelCount(100)])
def test_surface_density_conserves_mass(layer_cells, resolution):
    result = amrproj.project(layer_cells, _request(["sd", "mass"], resolution=resolution))

    total_mass = layer_cells.masses().sum()
    assert result.maps["sd"].sum() * result.grid.pixel_area == pytest.approx(total_mass)
    assert result.maps["mass"].sum() == pytest.approx(total_mass)
    assert result.modes["mass"] == ProjectionMode.sum
    assert np.all(result.maps["sd"] >= 0.0)


def test_mass_conservation_within_ranges(layer_cells):
    result = amrproj.project(
        layer_cells,
        _request(["sd"], resolution=FromDepth(7), xrange=(-0.3, 0.1)),
    )

    positions = layer_cells.positions()
    lo, hi = 0.5 + (-0.3), 0.5 + 0.1
    inside = (positions[:, 0] >= lo) & (positions[:, 0] < hi)
    expected = layer_cells.masses()[inside].sum()

    assert result.num_of_records == np.count_nonzero(inside)
    assert result.maps["sd"].sum() * result.grid.pixel_area == pytest.approx(expected)


def test_particles(particles):
    result = amrproj.project(
        particles, _request(["sd", "vx", "sigma"], resolution=PixelCount(4))
    )

    assert result.maps["sd"].sum() * result.grid.pixel_area == pytest.approx(
        particles.masses().sum()
    )
    assert result.maps["vx"].shape == (4, 4)
    assert np.all(np.isfinite(result.maps["vx"]))


def test_dispersion_identity(layer_cells):
    result = amrproj.project(
        layer_cells, _request(["sigma", "v", "v2", "sigma_z"], resolution=FromDepth(6))
    )

    expected = np.sqrt(np.maximum(result.maps["v2"] - result.maps["v"] ** 2, 0.0))
    assert np.allclose(result.maps["sigma"], expected, equal_nan=True)

    seen = np.isfinite(result.maps["sigma_z"])
    assert np.any(seen)
    assert np.all(result.maps["sigma_z"][seen] >= 0.0)


def test_dispersion_moments(layer_cells):
    scales = amrproj.UnitScales({"km_s": 3.0})
    result = amrproj.project(
        layer_cells,
        _request(["sigma_x", "vx"], resolution=FromDepth(6), units="km_s"),
        scales=scales,
    )

    assert list(result.moment_maps.keys()) == ["sigma_x"]
    mean, mean2 = result.moment_maps["sigma_x"]
    assert np.allclose(mean, result.maps["vx"], equal_nan=True)
    assert np.allclose(
        result.maps["sigma_x"],
        np.sqrt(np.maximum(mean2 - mean**2, 0.0)),
        equal_nan=True,
    )

    with pytest.raises(ValueError):
        mean[0, 0] = 0.0


def test_dispersion_of_a_uniform_field_is_zero(square_cells):
    result = amrproj.project(square_cells, _request(["sigma_y"]))
    assert np.allclose(result.maps["sigma_y"], 0.0)


def test_thread_count_invariance(layer_cells):
    variables = ["rho", "vx", "v", "sigma", "sd", "mass", "cs", "T", "ekin"]

    single = amrproj.project(
        layer_cells, _request(variables, resolution=FromDepth(7), max_concurrency=1)
    )
    multi = amrproj.project(
        layer_cells, _request(variables, resolution=FromDepth(7), max_concurrency=8)
    )

    assert single.peak_concurrency == 1
    assert 1 <= multi.peak_concurrency <= 8
    assert single.variables == multi.variables == variables

    for name in variables:
        assert np.allclose(
            single.maps[name], multi.maps[name], rtol=1e-9, atol=0.0, equal_nan=True
        ), name


def test_concurrency_budget(layer_cells):
    variables = ["rho", "vx", "vy", "vz", "v", "sd"]
    result = amrproj.project(
        layer_cells, _request(variables, resolution=FromDepth(6), max_concurrency=2)
    )

    assert result.peak_concurrency <= 2
    assert len(result.profile_data) == len(variables)
    assert [x.name for x in result.profile_data] == variables


def test_partial_failures_are_isolated(square_cells):
    # There is no pressure in these cells, and no data center was provided
    result = amrproj.project(square_cells, _request(["rho", "cs", "vr_cylinder", "vx"]))

    assert result.variables == ["rho", "vx"]
    assert set(result.errors.keys()) == {"cs", "vr_cylinder"}
    assert isinstance(result.errors["cs"], DerivedVariableError)
    assert isinstance(result.errors["vr_cylinder"], DerivedVariableError)
    assert "cs" not in result.units


def test_radial_quantities_with_data_center(square_cells):
    result = amrproj.project(
        square_cells,
        _request(["r_cylinder", "vr_cylinder"], data_center=("bc", "bc", "bc")),
    )

    assert not result.errors
    assert np.allclose(result.maps["r_cylinder"], np.sqrt(2.0) / 4)


def test_cell_quantities_on_particles(particles):
    result = amrproj.project(particles, _request(["vx", "volume"]))

    assert "vx" in result.maps
    assert isinstance(result.errors["volume"], DerivedVariableError)


def test_invalid_requests(square_cells, particles):
    with pytest.raises(InvalidRequestError):
        amrproj.project(square_cells, _request(["vx", "entropy"]))

    with pytest.raises(InvalidRequestError):
        amrproj.project(square_cells, _request(["vx"], mask=np.ones(3, dtype=bool)))

    with pytest.raises(amrproj.UnknownUnitError):
        amrproj.project(square_cells, _request(["vx"], units="parsec"))

    with pytest.raises(amrproj.UnknownUnitError):
        amrproj.project(square_cells, _request(["vx"], range_unit="kpc"))

    with pytest.raises(InvalidRequestError):
        amrproj.project(square_cells, _request(["vx"], weighting="temperature"))

    with pytest.raises(InvalidRequestError):
        amrproj.project(particles, _request(["vx"], weighting="volume"))


def test_empty_result_warning(layer_cells):
    # All the cells lie close to z = 0
    with pytest.warns(EmptyResultWarning):
        result = amrproj.project(
            layer_cells, _request(["vx", "sd"], resolution=FromDepth(4), zrange=(0.1, 0.4))
        )

    assert result.num_of_records == 0
    assert np.all(np.isnan(result.maps["vx"]))
    assert np.all(result.maps["sd"] == 0.0)


def test_progress_callback(square_cells):
    calls = []
    result = amrproj.project(
        square_cells,
        _request(
            ["rho", "vx"],
            callback=lambda name, index, total: calls.append((name, index, total)),
        ),
    )

    assert calls == [("rho", 1, 2), ("vx", 2, 2)]
    assert result.variables == ["rho", "vx"]


@pytest.mark.parametrize("max_concurrency", [1, 2])
def test_failing_progress_callback(layer_cells, max_concurrency):
    def callback(name, index, total):
        raise RuntimeError("cannot report progress")

    variables = ["rho", "vx", "vy", "vz"]
    result = amrproj.project(
        layer_cells,
        _request(
            variables,
            resolution=FromDepth(4),
            max_concurrency=max_concurrency,
            callback=callback,
        ),
    )

    assert result.variables == variables
    assert not result.errors


def test_map_result_is_immutable(square_cells):
    result = amrproj.project(square_cells, _request(["vx"]))

    with pytest.raises(ValueError):
        result.maps["vx"][0, 0] = 0.0

    with pytest.raises(TypeError):
        result.maps["sd"] = np.zeros((2, 2))

    with pytest.raises(dataclasses.FrozenInstanceError):
        result.resolution = 4
