# -*- encoding: utf-8 -*-

import math
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, Union

import numpy as np
import numpy.typing as npt
import tomlkit

from .constants import BOX_CENTER_TOKENS, STANDARD_UNIT
from .coordinates import Direction, parse_direction
from .errors import InvalidRequestError
from .units import UnitScales

ProjectionMode = Enum("ProjectionMode", ["mean", "sum"])


@dataclass(frozen=True)
class PixelCount:
    """Use `pixels` pixels along each side of the whole simulation box"""

    pixels: int


@dataclass(frozen=True)
class PixelSize:
    """Use pixels with side `value`, expressed in `unit`"""

    value: float
    unit: str = STANDARD_UNIT


@dataclass(frozen=True)
class FromDepth:
    """Use ``2**depth`` pixels along each side of the box, i.e., the size of
    the cells at refinement level `depth`"""

    depth: int


ResolutionSpec = Union[PixelCount, PixelSize, FromDepth]

CoordinateSpec = Tuple[Union[float, str], Union[float, str], Union[float, str]]


def _is_integer(value: Any) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)


def _check_resolution(resolution: Any) -> None:
    if isinstance(resolution, PixelCount):
        if not _is_integer(resolution.pixels) or resolution.pixels < 1:
            raise InvalidRequestError(
                f"the number of pixels must be a positive integer, got {resolution.pixels}"
            )
    elif isinstance(resolution, PixelSize):
        if not (math.isfinite(resolution.value) and resolution.value > 0.0):
            raise InvalidRequestError(
                f"the pixel size must be positive, got {resolution.value}"
            )
    elif isinstance(resolution, FromDepth):
        if not _is_integer(resolution.depth) or not (0 <= resolution.depth <= 30):
            raise InvalidRequestError(
                f"the refinement depth must be an integer in [0, 30], got {resolution.depth}"
            )
    else:
        raise InvalidRequestError(
            "the resolution must be a PixelCount, PixelSize, or FromDepth object, "
            f"got {resolution!r}"
        )


def _normalize_range(name: str, value: Any) -> Optional[Tuple[float, float]]:
    if value is None:
        return None

    try:
        lo, hi = (float(x) for x in value)
    except (TypeError, ValueError):
        raise InvalidRequestError(
            f"{name} must be a pair of numbers, got {value!r}"
        ) from None

    if not (math.isfinite(lo) and math.isfinite(hi)):
        raise InvalidRequestError(f"{name} must contain finite numbers, got {value!r}")
    if hi == lo:
        raise InvalidRequestError(f"{name} has zero width: {value!r}")
    if hi < lo:
        raise InvalidRequestError(f"{name} is reversed: {value!r}")

    return lo, hi


def _normalize_coordinates(name: str, value: Any) -> CoordinateSpec:
    if isinstance(value, str):
        # A single token like "bc" selects the box center along every axis
        value = [value] * 3

    value = list(value)
    if len(value) != 3:
        raise InvalidRequestError(f"{name} must have three coordinates, got {value!r}")

    result = []
    for cur_coord in value:
        if isinstance(cur_coord, str):
            if cur_coord.lower() not in BOX_CENTER_TOKENS:
                raise InvalidRequestError(
                    f'cannot resolve coordinate "{cur_coord}" in {name}, '
                    f"use a number or one of {', '.join(BOX_CENTER_TOKENS)}"
                )
            result.append(cur_coord.lower())
        else:
            try:
                cur_coord = float(cur_coord)
            except (TypeError, ValueError):
                raise InvalidRequestError(
                    f"cannot resolve coordinate {cur_coord!r} in {name}"
                ) from None
            if not math.isfinite(cur_coord):
                raise InvalidRequestError(f"{name} contains a non-finite coordinate")
            result.append(cur_coord)

    return tuple(result)


def _resolve_coordinates(
    coords: CoordinateSpec, box_length: float, factor: float
) -> npt.NDArray:
    return np.array(
        [
            box_length / 2 if isinstance(c, str) else c / factor
            for c in coords
        ],
        dtype=np.float64,
    )


@dataclass(frozen=True)
class ProjectionRequest:
    """The full description of a projection, validated once at construction

    The fields are:

    - ``variables``: names of the quantities to project. Each name is either
      a stored field of the records or one of the derived quantities listed
      in :data:`.VARIABLE_CATALOGUE`.
    - ``max_concurrency``: maximum number of variables computed at the same
      time. It is mandatory, as projections are often run inside an outer
      parallel loop.
    - ``resolution``: a :class:`.PixelCount`, :class:`.PixelSize`, or
      :class:`.FromDepth` object
    - ``units``: output unit of each variable; a single name is used for
      every variable
    - ``direction``: line of sight, a :class:`.Direction` or ``"x"``,
      ``"y"``, ``"z"``
    - ``xrange``, ``yrange``, ``zrange``: pairs ``(lo, hi)`` relative to
      ``center``, in ``range_unit``; ``None`` selects the whole box
    - ``center``: three coordinates in ``range_unit``; each can be replaced
      by ``"bc"`` (box center). The default is the center of the box.
    - ``data_center``: reference point for radii, angles and cylindrical or
      spherical components, in ``data_center_unit``
    - ``weighting``: ``"mass"`` (default), ``"volume"``, ``"unweighted"``, or
      the name of a stored field
    - ``mode``: ``"mean"`` (weighted average) or ``"sum"`` (weighted sum
      along the line of sight)
    - ``mask``: optional Boolean array with one element per record; records
      whose mask is ``False`` are skipped
    - ``callback``: optional function ``callback(name, index, total)`` called
      every time a variable has been computed
    """

    variables: Tuple[str, ...]
    max_concurrency: int
    resolution: ResolutionSpec
    units: Tuple[str, ...] = (STANDARD_UNIT,)
    direction: Direction = Direction.z
    xrange: Optional[Tuple[float, float]] = None
    yrange: Optional[Tuple[float, float]] = None
    zrange: Optional[Tuple[float, float]] = None
    range_unit: str = STANDARD_UNIT
    center: CoordinateSpec = ("bc", "bc", "bc")
    data_center: Optional[CoordinateSpec] = None
    data_center_unit: str = STANDARD_UNIT
    weighting: str = "mass"
    mode: ProjectionMode = ProjectionMode.mean
    mask: Optional[npt.NDArray] = field(default=None, compare=False, repr=False)
    callback: Optional[Callable[[str, int, int], None]] = field(
        default=None, compare=False, repr=False
    )

    def __post_init__(self):
        # The dataclass is frozen, so normalized values are stored through
        # object.__setattr__
        def _set(name, value):
            object.__setattr__(self, name, value)

        variables = self.variables
        if isinstance(variables, str):
            variables = (variables,)
        variables = tuple(variables)
        if not variables:
            raise InvalidRequestError("no variables to project")
        for cur_var in variables:
            if not isinstance(cur_var, str) or not cur_var:
                raise InvalidRequestError(f"invalid variable name {cur_var!r}")
        if len(set(variables)) != len(variables):
            raise InvalidRequestError(f"duplicated variables in {variables!r}")
        _set("variables", variables)

        units = self.units
        if isinstance(units, str):
            units = (units,)
        units = tuple(str(x) for x in units)
        if len(units) == 1:
            units = units * len(variables)
        if len(units) != len(variables):
            raise InvalidRequestError(
                f"{len(variables)} variables but {len(units)} units were given"
            )
        _set("units", units)

        if not _is_integer(self.max_concurrency) or self.max_concurrency < 1:
            raise InvalidRequestError(
                f"max_concurrency must be a positive integer, got {self.max_concurrency!r}"
            )

        _check_resolution(self.resolution)

        try:
            _set("direction", parse_direction(self.direction))
        except ValueError as err:
            raise InvalidRequestError(str(err)) from None

        for name in ("xrange", "yrange", "zrange"):
            _set(name, _normalize_range(name, getattr(self, name)))

        _set("center", _normalize_coordinates("center", self.center))
        if self.data_center is not None:
            _set(
                "data_center", _normalize_coordinates("data_center", self.data_center)
            )

        if not isinstance(self.weighting, str) or not self.weighting:
            raise InvalidRequestError(f"invalid weighting {self.weighting!r}")

        if not isinstance(self.mode, ProjectionMode):
            try:
                _set("mode", ProjectionMode[str(self.mode)])
            except KeyError:
                raise InvalidRequestError(
                    f'invalid mode "{self.mode}", valid choices are "mean" and "sum"'
                ) from None

        if self.mask is not None:
            mask = np.asarray(self.mask)
            if mask.ndim != 1 or mask.dtype != np.bool_:
                raise InvalidRequestError("the mask must be a 1D array of Booleans")
            mask = mask.copy()
            mask.setflags(write=False)
            _set("mask", mask)

        if self.callback is not None and not callable(self.callback):
            raise InvalidRequestError("the callback must be a callable object")

    def unit_for(self, variable: str) -> str:
        return self.units[self.variables.index(variable)]

    def resolve_center(self, box_length: float, scales: UnitScales) -> npt.NDArray:
        """Return the projection center in code units"""
        return _resolve_coordinates(self.center, box_length, scales[self.range_unit])

    def resolve_data_center(
        self, box_length: float, scales: UnitScales
    ) -> Optional[npt.NDArray]:
        """Return the data center in code units, or ``None`` if it was not set"""
        if self.data_center is None:
            return None
        return _resolve_coordinates(
            self.data_center, box_length, scales[self.data_center_unit]
        )

    def resolve_ranges(self, box_length: float, scales: UnitScales) -> npt.NDArray:
        """Return a ``(3, 2)`` array with the absolute ranges in code units

        Ranges are clipped to the simulation box; a range that falls outside
        the box raises :class:`.InvalidRequestError`."""
        factor = scales[self.range_unit]
        center = self.resolve_center(box_length, scales)

        result = np.empty((3, 2))
        for axis, cur_range in enumerate((self.xrange, self.yrange, self.zrange)):
            if cur_range is None:
                result[axis] = (0.0, box_length)
            else:
                lo = max(center[axis] + cur_range[0] / factor, 0.0)
                hi = min(center[axis] + cur_range[1] / factor, box_length)
                if not hi > lo:
                    raise InvalidRequestError(
                        f"{'xyz'[axis]}range={cur_range} lies outside the box"
                    )
                result[axis] = (lo, hi)

        return result

    def resolve_resolution(self, box_length: float, scales: UnitScales) -> int:
        """Return the number of pixels along each side of the whole box"""
        if isinstance(self.resolution, PixelCount):
            return int(self.resolution.pixels)
        elif isinstance(self.resolution, FromDepth):
            return 2 ** int(self.resolution.depth)
        else:
            pixel_size = self.resolution.value / scales[self.resolution.unit]
            return max(1, int(math.ceil(box_length / pixel_size - 1e-9)))

    @classmethod
    def from_parameters(
        cls, parameters: Dict[str, Any], **kwargs
    ) -> "ProjectionRequest":
        """Build a request from a dictionary, like the ``[projection]`` table of
        a TOML parameter file

        The dictionary must contain the keys ``variables``,
        ``max_concurrency``, and ``resolution``; the latter is a dictionary
        with exactly one of the keys ``pixels``, ``pixel_size`` (a pair
        ``[value, unit]``), or ``depth``. The optional dictionary ``range``
        can contain ``x``, ``y``, ``z``, ``unit``, ``center``,
        ``data_center``, and ``data_center_unit``. Keyword arguments (e.g.,
        ``mask`` or ``callback``) are passed to the constructor unchanged.
        """
        params = dict(parameters)
        try:
            variables = params.pop("variables")
            max_concurrency = params.pop("max_concurrency")
            resolution = dict(params.pop("resolution"))
        except KeyError as err:
            raise InvalidRequestError(f"missing key {err} in the parameters") from None

        if len(resolution) != 1:
            raise InvalidRequestError(
                "the resolution must contain exactly one of "
                f"pixels, pixel_size, depth: got {list(resolution.keys())}"
            )
        (kind, value), = resolution.items()
        if kind == "pixels":
            resolution_spec = PixelCount(value)
        elif kind == "depth":
            resolution_spec = FromDepth(value)
        elif kind == "pixel_size":
            if isinstance(value, (list, tuple)):
                resolution_spec = PixelSize(float(value[0]), str(value[1]))
            else:
                resolution_spec = PixelSize(float(value))
        else:
            raise InvalidRequestError(f'unknown resolution kind "{kind}"')

        ranges = dict(params.pop("range", {}))
        arguments = dict(
            variables=variables,
            max_concurrency=max_concurrency,
            resolution=resolution_spec,
        )
        for key, target in [
            ("x", "xrange"),
            ("y", "yrange"),
            ("z", "zrange"),
            ("unit", "range_unit"),
            ("center", "center"),
            ("data_center", "data_center"),
            ("data_center_unit", "data_center_unit"),
        ]:
            if key in ranges:
                arguments[target] = ranges.pop(key)

        for key in ("units", "direction", "weighting", "mode"):
            if key in params:
                arguments[key] = params.pop(key)

        unknown = list(params.keys()) + list(ranges.keys())
        if unknown:
            raise InvalidRequestError(f"unknown parameters: {', '.join(unknown)}")

        arguments.update(kwargs)
        return cls(**arguments)


def _tomlkit_to_popo(d):
    # Convert the objects returned by tomlkit into Plain Old Python Objects
    # (POPOs), see https://github.com/sdispater/tomlkit/issues/43
    try:
        result = getattr(d, "value")
    except AttributeError:
        result = d

    if isinstance(result, list):
        result = [_tomlkit_to_popo(x) for x in result]
    elif isinstance(result, dict):
        result = {
            _tomlkit_to_popo(key): _tomlkit_to_popo(val) for key, val in result.items()
        }
    elif isinstance(result, tomlkit.items.Bool):
        result = bool(result)
    elif isinstance(result, tomlkit.items.Integer):
        result = int(result)
    elif isinstance(result, tomlkit.items.Float):
        result = float(result)
    elif isinstance(result, tomlkit.items.String):
        result = str(result)

    return result


def read_request_file(
    parameter_file: Union[str, Path], section: str = "projection", **kwargs
) -> ProjectionRequest:
    """Read a :class:`.ProjectionRequest` from the table `section` of a TOML file

    Keyword arguments are passed to :meth:`.ProjectionRequest.from_parameters`;
    use them for values that cannot be stored in a file, like ``mask``.
    """
    parameter_file = Path(parameter_file)
    with parameter_file.open("rt") as inpf:
        param_file_contents = "".join(inpf.readlines())

    parameters = _tomlkit_to_popo(tomlkit.parse(param_file_contents))
    if section not in parameters:
        raise InvalidRequestError(
            f'no table "[{section}]" in parameter file "{parameter_file}"'
        )

    return ProjectionRequest.from_parameters(parameters[section], **kwargs)
