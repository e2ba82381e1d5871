# -*- encoding: utf-8 -*-

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

import numpy as np
import numpy.typing as npt

from amrproj.constants import DEFAULT_GAMMA
from amrproj.errors import DerivedVariableError, InvalidRequestError
from amrproj.records import RecordKind, RecordSet

# How the values of a variable are turned into a map:
#
# - stored, single: one value per record, averaged (or summed) with the
#   weights of the request
# - dispersion: the base quantity and its square are accumulated with the
#   same weights, and the map is sqrt(<b²> - <b>²)
# - extensive: the quantity is summed in each pixel, regardless of the
#   weighting and of the mode
VariableKind = Enum("VariableKind", ["stored", "single", "dispersion", "extensive"])

# Placeholder in VariableInfo.inputs for "whatever is needed to compute the
# mass of a record" (rho for cells, mass for particles)
MASS_INPUT = "@mass"


@dataclass(frozen=True)
class VariableInfo:
    """Description of a quantity that can be projected

    - ``name``: the name used in :class:`.ProjectionRequest`
    - ``kind``: a :class:`.VariableKind`
    - ``inputs``: stored fields needed to compute the quantity
    - ``cells_only``: the quantity has no meaning for particles
    - ``needs_data_center``: the quantity is measured with respect to the
      ``data_center`` of the request
    - ``unit_power``: the output unit factor is raised to this power, e.g.,
      2 for squared velocities
    - ``base``: for dispersions, the name of the quantity whose spread is
      measured
    """

    name: str
    kind: VariableKind
    inputs: Tuple[str, ...] = ()
    cells_only: bool = False
    needs_data_center: bool = False
    unit_power: int = 1
    base: Optional[str] = None
    description: str = ""


_VELOCITY = ("vx", "vy", "vz")


def _single(name, inputs=(), description="", **kwargs):
    return VariableInfo(
        name=name,
        kind=VariableKind.single,
        inputs=tuple(inputs),
        description=description,
        **kwargs,
    )


def _dispersion(name, base, inputs, **kwargs):
    return VariableInfo(
        name=name,
        kind=VariableKind.dispersion,
        inputs=tuple(inputs),
        base=base,
        description=f"dispersion of {base}",
        **kwargs,
    )


VARIABLE_CATALOGUE = {
    info.name: info
    for info in [
        _single("v", _VELOCITY, "speed"),
        _single("v2", _VELOCITY, "squared speed", unit_power=2),
        _single("vx2", ("vx",), "squared x velocity", unit_power=2),
        _single("vy2", ("vy",), "squared y velocity", unit_power=2),
        _single("vz2", ("vz",), "squared z velocity", unit_power=2),
        _single("ekin", _VELOCITY + (MASS_INPUT,), "kinetic energy"),
        _single("volume", (), "volume of the cell", cells_only=True, unit_power=3),
        _single("cellsize", (), "side of the cell", cells_only=True),
        _single("cs", ("p", "rho"), "adiabatic sound speed", cells_only=True),
        _single("T", ("p", "rho"), "temperature (p/rho)", cells_only=True),
        _single("mach", _VELOCITY + ("p", "rho"), "Mach number", cells_only=True),
        _single("x", (), "x coordinate"),
        _single("y", (), "y coordinate"),
        _single("z", (), "z coordinate"),
        _single("r_cylinder", (), "cylindrical radius", needs_data_center=True),
        _single("r_sphere", (), "spherical radius", needs_data_center=True),
        _single(
            "phi", (), "azimuthal angle", needs_data_center=True, unit_power=0
        ),
        _single(
            "vr_cylinder", ("vx", "vy"), "radial velocity", needs_data_center=True
        ),
        _single(
            "vphi_cylinder",
            ("vx", "vy"),
            "azimuthal velocity",
            needs_data_center=True,
        ),
        _single("vr_sphere", _VELOCITY, "radial velocity", needs_data_center=True),
        _single(
            "vtheta_sphere", _VELOCITY, "polar velocity", needs_data_center=True
        ),
        _single(
            "vphi_sphere", ("vx", "vy"), "azimuthal velocity", needs_data_center=True
        ),
        _dispersion("sigma", "v", _VELOCITY),
        _dispersion("sigma_x", "vx", ("vx",)),
        _dispersion("sigma_y", "vy", ("vy",)),
        _dispersion("sigma_z", "vz", ("vz",)),
        _dispersion(
            "sigma_r_cylinder", "vr_cylinder", ("vx", "vy"), needs_data_center=True
        ),
        _dispersion(
            "sigma_phi_cylinder", "vphi_cylinder", ("vx", "vy"), needs_data_center=True
        ),
        VariableInfo(
            name="sd",
            kind=VariableKind.extensive,
            inputs=(MASS_INPUT,),
            description="surface density",
        ),
        VariableInfo(
            name="mass",
            kind=VariableKind.extensive,
            inputs=(MASS_INPUT,),
            description="mass along the line of sight",
        ),
    ]
}  # type: Dict[str, VariableInfo]


def _zero_where_undefined(values: npt.NDArray) -> npt.NDArray:
    # Components measured at zero radius are undefined; they are set to zero
    values[~np.isfinite(values)] = 0.0
    return values


class DerivedVariableResolver:
    """Compute the value of each record for stored and derived quantities

    Names are looked up first among the stored fields of `records`, then in
    :data:`.VARIABLE_CATALOGUE`. The extensive quantities ``sd`` and
    ``mass`` are always taken from the catalogue.

    The resolver only reads `records`, so one instance can be shared by
    several threads.

    Args:
        records (:class:`.RecordSet`): the records to project

        data_center (array or ``None``): the reference point of radii,
            angles and of cylindrical/spherical components, in code units

        gamma (float): the adiabatic index used for the sound speed
    """

    def __init__(
        self,
        records: RecordSet,
        data_center: Optional[npt.ArrayLike] = None,
        gamma: float = DEFAULT_GAMMA,
    ):
        self.records = records
        self.data_center = (
            None if data_center is None else np.asarray(data_center, dtype=np.float64)
        )
        self.gamma = gamma

    def info(self, name: str) -> VariableInfo:
        """Return the :class:`.VariableInfo` for `name`

        Unknown names raise :class:`.InvalidRequestError`."""
        catalogued = VARIABLE_CATALOGUE.get(name)
        if catalogued is not None and catalogued.kind == VariableKind.extensive:
            return catalogued

        if self.records.has_field(name):
            return VariableInfo(name=name, kind=VariableKind.stored, inputs=(name,))

        if catalogued is None:
            raise InvalidRequestError(
                f'unknown variable "{name}": it is neither a stored field '
                f"({', '.join(self.records.field_names)}) nor a derived quantity"
            )

        return catalogued

    def check(self, name: str) -> VariableInfo:
        """Verify that `name` can be computed for these records

        Raise :class:`.DerivedVariableError` if it cannot."""
        info = self.info(name)

        if info.cells_only and self.records.kind != RecordKind.cells:
            raise DerivedVariableError(name, "it is only defined for AMR cells")

        if info.needs_data_center and self.data_center is None:
            raise DerivedVariableError(name, "no data_center was provided")

        for cur_input in info.inputs:
            if cur_input == MASS_INPUT:
                cur_input = "rho" if self.records.kind == RecordKind.cells else "mass"
            if not self.records.has_field(cur_input):
                raise DerivedVariableError(name, f'field "{cur_input}" is missing')

        return info

    def values(self, name: str, indices: Optional[npt.ArrayLike] = None) -> npt.NDArray:
        """Return the value of `name` for each record (in code units)

        If `indices` is provided, only the values for those records are
        returned. For dispersions, use :meth:`.moments`."""
        info = self.check(name)
        if info.kind == VariableKind.dispersion:
            raise ValueError(f'"{name}" is a dispersion, use moments() instead')

        if info.kind == VariableKind.stored:
            result = self.records.field(name)
        elif info.kind == VariableKind.extensive:
            result = self.records.masses()
        else:
            result = _COMPUTE[name](self)

        result = np.asarray(result, dtype=np.float64)
        return result if indices is None else result[indices]

    def moments(
        self, name: str, indices: Optional[npt.ArrayLike] = None
    ) -> Tuple[npt.NDArray, npt.NDArray]:
        """Return the base quantity of the dispersion `name` and its square"""
        info = self.check(name)
        if info.kind != VariableKind.dispersion:
            raise ValueError(f'"{name}" is not a dispersion')

        base = self.values(info.base, indices)
        return base, base**2

    def relative_positions(self) -> npt.NDArray:
        """Return the positions of the records relative to `data_center`"""
        if self.data_center is None:
            raise DerivedVariableError("data_center", "no data_center was provided")
        return self.records.positions() - self.data_center[None, :]

    def _velocity(self) -> Tuple[npt.NDArray, npt.NDArray, npt.NDArray]:
        return tuple(self.records.field(x) for x in _VELOCITY)


def _speed(res: DerivedVariableResolver) -> npt.NDArray:
    vx, vy, vz = res._velocity()
    return np.sqrt(vx**2 + vy**2 + vz**2)


def _sound_speed(res: DerivedVariableResolver) -> npt.NDArray:
    return np.sqrt(res.gamma * res.records.field("p") / res.records.field("rho"))


def _cylinder(res: DerivedVariableResolver):
    pos = res.relative_positions()
    x, y = pos[:, 0], pos[:, 1]
    return x, y, np.sqrt(x**2 + y**2)


def _vr_cylinder(res: DerivedVariableResolver) -> npt.NDArray:
    x, y, radius = _cylinder(res)
    vx, vy = res.records.field("vx"), res.records.field("vy")
    with np.errstate(divide="ignore", invalid="ignore"):
        return _zero_where_undefined((x * vx + y * vy) / radius)


def _vphi_cylinder(res: DerivedVariableResolver) -> npt.NDArray:
    x, y, radius = _cylinder(res)
    vx, vy = res.records.field("vx"), res.records.field("vy")
    with np.errstate(divide="ignore", invalid="ignore"):
        return _zero_where_undefined((x * vy - y * vx) / radius)


def _vr_sphere(res: DerivedVariableResolver) -> npt.NDArray:
    pos = res.relative_positions()
    vx, vy, vz = res._velocity()
    radius = np.sqrt(np.sum(pos**2, axis=1))
    with np.errstate(divide="ignore", invalid="ignore"):
        return _zero_where_undefined(
            (pos[:, 0] * vx + pos[:, 1] * vy + pos[:, 2] * vz) / radius
        )


def _vtheta_sphere(res: DerivedVariableResolver) -> npt.NDArray:
    pos = res.relative_positions()
    x, y, z = pos[:, 0], pos[:, 1], pos[:, 2]
    vx, vy, vz = res._velocity()
    r_cyl2 = x**2 + y**2
    r_sphere = np.sqrt(r_cyl2 + z**2)
    with np.errstate(divide="ignore", invalid="ignore"):
        return _zero_where_undefined(
            (z * (x * vx + y * vy) - r_cyl2 * vz) / (r_sphere * np.sqrt(r_cyl2))
        )


def _position(axis: int) -> Callable[[DerivedVariableResolver], npt.NDArray]:
    return lambda res: res.records.positions()[:, axis]


_COMPUTE = {
    "v": _speed,
    "v2": lambda res: _speed(res) ** 2,
    "vx2": lambda res: res.records.field("vx") ** 2,
    "vy2": lambda res: res.records.field("vy") ** 2,
    "vz2": lambda res: res.records.field("vz") ** 2,
    "ekin": lambda res: 0.5 * res.records.masses() * _speed(res) ** 2,
    "volume": lambda res: res.records.volumes(),
    "cellsize": lambda res: res.records.sizes(),
    "cs": _sound_speed,
    "T": lambda res: res.records.field("p") / res.records.field("rho"),
    "mach": lambda res: _speed(res) / _sound_speed(res),
    "x": _position(0),
    "y": _position(1),
    "z": _position(2),
    "r_cylinder": lambda res: _cylinder(res)[2],
    "r_sphere": lambda res: np.sqrt(np.sum(res.relative_positions() ** 2, axis=1)),
    "phi": lambda res: np.arctan2(
        res.relative_positions()[:, 1], res.relative_positions()[:, 0]
    ),
    "vr_cylinder": _vr_cylinder,
    "vphi_cylinder": _vphi_cylinder,
    "vr_sphere": _vr_sphere,
    "vtheta_sphere": _vtheta_sphere,
    "vphi_sphere": _vphi_cylinder,
}  # type: Dict[str, Callable[[DerivedVariableResolver], npt.NDArray]]

assert set(_COMPUTE.keys()) == set(
    name
    for name, info in VARIABLE_CATALOGUE.items()
    if info.kind == VariableKind.single
)
