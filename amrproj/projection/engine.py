# -*- encoding: utf-8 -*-

import logging
import warnings
from collections.abc import Mapping as AbstractMapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np
import numpy.typing as npt

from amrproj.coordinates import CoordinateMapper, Direction, direction_axes
from amrproj.errors import EmptyResultWarning, InvalidRequestError
from amrproj.profiler import TimeProfiler
from amrproj.records import RecordKind, RecordSet
from amrproj.request import PixelSize, ProjectionMode, ProjectionRequest
from amrproj.units import UnitScales

from .accumulator import WeightedAccumulator
from .binner import BinnedRecords, LevelBinner
from .common import (
    PixelGrid,
    build_pixel_grid,
    read_only_array,
    read_only_maps,
    select_records,
)
from .derived import DerivedVariableResolver, VariableInfo, VariableKind
from .remap import CoarseRemapper, dispersion_from_moments
from .scheduler import TaskOutcome, ThreadScheduler

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class MapResult:
    """Result of a call to :func:`.project`

    This dataclass is immutable: mappings are read-only and arrays are not
    writeable, so it can be shared among threads. It has the following
    fields:

    - ``maps``: a mapping associating each variable that was computed
      successfully with its 2D map, in the order of the request. Each map
      has shape ``(nx, ny)``, the first index running along the first
      in-plane axis.
    - ``units``: the unit of each map
    - ``modes``: how each map was computed, a :class:`.ProjectionMode`
    - ``weight_maps``: the sum of the weights in each pixel, for the maps
      computed as weighted averages; it is used by :func:`.remap`
    - ``moment_maps``: for each dispersion, the pair of maps ``(<b>,
      <b²>)`` of its base quantity, in the same unit as the dispersion
      (squared for ``<b²>``)
    - ``resolution``: number of pixels along each side of the whole box
    - ``pixel_size``: side of a pixel, in ``range_unit``
    - ``box_length``: side of the simulation box in code units
    - ``direction``: the line of sight, a :class:`.Direction`
    - ``range_unit``: the unit used for ``pixel_size`` and for the extents
    - ``extent``: the edges ``(umin, umax, vmin, vmax)`` of the map in
      ``range_unit``
    - ``extent_center``: the same as ``extent``, but relative to the center
      of the projection
    - ``ratio``: the aspect ratio of the map, ``(umax - umin) / (vmax - vmin)``
    - ``grid``: the :class:`.PixelGrid` used for the projection
    - ``coarse_maps``: a mapping from a refinement depth to the maps
      re-binned at that depth by :func:`.remap`
    - ``errors``: the variables that could not be computed, each associated
      with the exception that was raised
    - ``num_of_records``: number of records that took part in the
      projection
    - ``peak_concurrency``: the largest number of variables that were
      computed at the same time
    - ``profile_data``: one :class:`.TimeProfiler` per variable
    """

    maps: Mapping[str, npt.NDArray]
    units: Mapping[str, str]
    modes: Mapping[str, ProjectionMode]
    weight_maps: Mapping[str, npt.NDArray]
    resolution: int
    pixel_size: float
    box_length: float
    direction: Direction
    range_unit: str
    extent: Tuple[float, float, float, float]
    extent_center: Tuple[float, float, float, float]
    ratio: float
    grid: PixelGrid
    moment_maps: Mapping[str, Tuple[npt.NDArray, npt.NDArray]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    coarse_maps: Mapping[int, Mapping[str, npt.NDArray]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    errors: Mapping[str, Exception] = field(
        default_factory=lambda: MappingProxyType({})
    )
    num_of_records: int = 0
    peak_concurrency: int = 0
    profile_data: Tuple[TimeProfiler, ...] = ()

    @property
    def variables(self) -> List[str]:
        return list(self.maps.keys())


def projection_log_callback(name: str, index: int, total: int) -> None:
    """The function called by :func:`.project` every time a variable is done

    It only produces a visual feedback of the progress of the projection;
    pass your own function in the field ``callback`` of
    :class:`.ProjectionRequest` to change this behavior."""
    log.info(f"Projection of {name} completed ({index}/{total})")


@dataclass
class _VariableMap:
    # What each worker returns to the orchestrating thread
    values: npt.NDArray
    mode: ProjectionMode
    weight_map: Optional[npt.NDArray]
    num_of_contributions: int
    moments: Optional[Tuple[npt.NDArray, npt.NDArray]] = None


def _normalize_scales(scales: Optional[Mapping[str, float]]) -> UnitScales:
    if scales is None:
        return UnitScales()
    if isinstance(scales, UnitScales):
        return scales
    if not isinstance(scales, AbstractMapping):
        raise InvalidRequestError(f"invalid unit scales {scales!r}")
    return UnitScales(dict(scales))


def _check_units(request: ProjectionRequest, scales: UnitScales) -> None:
    # Looking up a unit raises UnknownUnitError if it does not exist
    for unit in request.units:
        scales[unit]
    scales[request.range_unit]
    scales[request.data_center_unit]
    if isinstance(request.resolution, PixelSize):
        scales[request.resolution.unit]


def record_weights(records: RecordSet, weighting: str) -> npt.NDArray:
    """Return the weight of each record for the given weighting scheme

    `weighting` can be ``"mass"``, ``"volume"``, ``"unweighted"``, or the
    name of a stored field. Weights must be finite and non-negative."""
    try:
        if weighting == "mass":
            weights = records.masses()
        elif weighting == "volume":
            if records.kind != RecordKind.cells:
                raise InvalidRequestError("particles cannot be weighted by volume")
            weights = records.volumes()
        elif weighting == "unweighted":
            weights = np.ones(len(records))
        else:
            weights = records.field(weighting)
    except KeyError as err:
        raise InvalidRequestError(
            f'cannot use weighting "{weighting}": {err.args[0]}'
        ) from None

    weights = np.asarray(weights, dtype=np.float64)
    if not np.all(np.isfinite(weights)) or np.any(weights < 0.0):
        raise InvalidRequestError(
            f'the weights for weighting "{weighting}" must be finite and non-negative'
        )

    weights.setflags(write=False)
    return weights


def _project_variable(
    name: str,
    info: VariableInfo,
    unit_factor: float,
    mode: ProjectionMode,
    resolver: DerivedVariableResolver,
    binned: BinnedRecords,
    weights: npt.NDArray,
    grid: PixelGrid,
) -> _VariableMap:
    # This runs in a worker thread: the accumulators are private, everything
    # else is only read
    resolver.check(name)
    indices = binned.indices

    if info.kind == VariableKind.extensive:
        acc = WeightedAccumulator(grid.shape)
        acc.add_blocks(binned, resolver.values(name, indices), np.ones(len(binned)))
        values = acc.finalize_sum()
        if name == "sd":
            # Surface densities are averaged, not summed, when remapping
            values /= grid.pixel_area
            var_mode = ProjectionMode.mean
        else:
            var_mode = ProjectionMode.sum

        return _VariableMap(
            values=values * unit_factor,
            mode=var_mode,
            weight_map=None,
            num_of_contributions=acc.num_of_contributions,
        )

    if info.kind == VariableKind.dispersion:
        base, base2 = resolver.moments(name, indices)
        acc = WeightedAccumulator(grid.shape)
        acc2 = WeightedAccumulator(grid.shape)
        acc.add_blocks(binned, base, weights)
        acc2.add_blocks(binned, base2, weights)

        mean = acc.finalize() * unit_factor
        mean2 = acc2.finalize() * unit_factor**2
        return _VariableMap(
            values=dispersion_from_moments(mean, mean2),
            mode=ProjectionMode.mean,
            weight_map=acc.buffer.weight_sum,
            num_of_contributions=acc.num_of_contributions,
            moments=(mean, mean2),
        )

    acc = WeightedAccumulator(grid.shape)
    acc.add_blocks(binned, resolver.values(name, indices), weights)
    if mode == ProjectionMode.mean:
        return _VariableMap(
            values=acc.finalize() * unit_factor,
            mode=ProjectionMode.mean,
            weight_map=acc.buffer.weight_sum,
            num_of_contributions=acc.num_of_contributions,
        )

    return _VariableMap(
        values=acc.finalize_sum() * unit_factor,
        mode=ProjectionMode.sum,
        weight_map=None,
        num_of_contributions=acc.num_of_contributions,
    )


def project(
    records: RecordSet,
    request: ProjectionRequest,
    scales: Optional[Mapping[str, float]] = None,
) -> MapResult:
    """Project `records` on a 2D map, following `request`

    The function validates the request against the records, assigns each
    record to the pixels of the map, and then computes each variable in a
    separate thread (at most ``request.max_concurrency`` at the same time).

    The parameter `scales` is a mapping associating unit names with the
    factor that converts code units into them (see :class:`.UnitScales`);
    if it is not provided, only the unit ``"standard"`` (code units) is
    available.

    Errors in the request (unknown variables, units, or weighting, a mask
    with the wrong length…) raise :class:`.InvalidRequestError` before any
    computation starts. A variable that cannot be computed for these records
    does not stop the others: it is omitted from ``maps`` and its exception
    is stored in ``errors``. If no record contributes to a variable, an
    :class:`.EmptyResultWarning` is issued.
    """
    scales = _normalize_scales(scales)
    _check_units(request, scales)

    box_length = records.box_length
    data_center = request.resolve_data_center(box_length, scales)
    resolver = DerivedVariableResolver(records, data_center=data_center)

    # Unknown variable names are rejected before any work is done
    infos = {name: resolver.info(name) for name in request.variables}

    weights = record_weights(records, request.weighting)

    ranges = request.resolve_ranges(box_length, scales)
    resolution = request.resolve_resolution(box_length, scales)
    axes = direction_axes(request.direction)
    grid = build_pixel_grid(ranges, axes, box_length, resolution)

    center = request.resolve_center(box_length, scales)
    mapper = CoordinateMapper(request.direction, center, scales)

    indices = select_records(records, ranges, request.mask)
    binned = LevelBinner(grid).bin(mapper.footprints(records), indices)
    selected_weights = weights[binned.indices]
    selected_weights.setflags(write=False)

    log.info(
        "Projecting %d/%d records along %s on %d×%d pixels "
        "(resolution %d, pixel size %g code units)",
        len(binned),
        len(records),
        request.direction.name,
        grid.nx,
        grid.ny,
        resolution,
        grid.pixel_size,
    )

    tasks = []
    for name in request.variables:
        unit_factor = scales.factor(request.unit_for(name), infos[name].unit_power)
        tasks.append(
            (
                name,
                # Bind the loop variables now, not when the task runs
                lambda name=name, unit_factor=unit_factor: _project_variable(
                    name=name,
                    info=infos[name],
                    unit_factor=unit_factor,
                    mode=request.mode,
                    resolver=resolver,
                    binned=binned,
                    weights=selected_weights,
                    grid=grid,
                ),
            )
        )

    callback = request.callback if request.callback else projection_log_callback

    def on_complete(outcome: TaskOutcome, index: int, total: int) -> None:
        callback(outcome.name, index, total)

    scheduler = ThreadScheduler(request.max_concurrency, on_complete=on_complete)
    outcomes = scheduler.run(tasks)

    maps = {}  # type: Dict[str, Any]
    modes = {}
    weight_maps = {}
    moment_maps = {}
    errors = {}
    for outcome in outcomes:
        log.debug(
            "variable %s computed in %.3f s by thread %s",
            outcome.name,
            outcome.profiler.elapsed_time_s(),
            outcome.profiler.thread_name,
        )

        if outcome.error is not None:
            log.warning(f"Unable to project {outcome.name}: {outcome.error}")
            errors[outcome.name] = outcome.error
            continue

        var_map = outcome.result
        maps[outcome.name] = var_map.values
        modes[outcome.name] = var_map.mode
        if var_map.weight_map is not None:
            weight_maps[outcome.name] = var_map.weight_map
        if var_map.moments is not None:
            moment_maps[outcome.name] = tuple(
                read_only_array(x) for x in var_map.moments
            )

        if var_map.num_of_contributions == 0:
            warnings.warn(
                f'no record contributes to the map of "{outcome.name}"',
                EmptyResultWarning,
            )

    range_factor = scales[request.range_unit]
    umin, umax, vmin, vmax = grid.window_edges()
    cu, cv = mapper.plane_center()
    extent = tuple(x * range_factor for x in (umin, umax, vmin, vmax))
    extent_center = (
        (umin - cu) * range_factor,
        (umax - cu) * range_factor,
        (vmin - cv) * range_factor,
        (vmax - cv) * range_factor,
    )

    return MapResult(
        maps=read_only_maps(maps),
        units=MappingProxyType({name: request.unit_for(name) for name in maps}),
        modes=MappingProxyType(modes),
        weight_maps=read_only_maps(weight_maps),
        resolution=resolution,
        pixel_size=grid.pixel_size * range_factor,
        box_length=box_length,
        direction=request.direction,
        range_unit=request.range_unit,
        extent=extent,
        extent_center=extent_center,
        ratio=(umax - umin) / (vmax - vmin),
        grid=grid,
        moment_maps=MappingProxyType(moment_maps),
        coarse_maps=MappingProxyType({}),
        errors=MappingProxyType(errors),
        num_of_records=len(binned),
        peak_concurrency=scheduler.peak_concurrency,
        profile_data=tuple(outcome.profiler for outcome in outcomes),
    )


def remap(map_result: MapResult, target_depth: int) -> MapResult:
    """Re-bin the maps in `map_result` at refinement depth `target_depth`

    The result is a new :class:`.MapResult`, identical to `map_result` but
    with the coarse maps added to ``coarse_maps[target_depth]``. See
    :class:`.CoarseRemapper` for the conditions on the source map;
    :class:`.RemapAlignmentError` is raised if they are not met.
    """
    return CoarseRemapper(map_result).remap(target_depth)
