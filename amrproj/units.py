# -*- encoding: utf-8 -*-

from collections.abc import Mapping
from enum import Enum
from types import MappingProxyType
from typing import Dict, Optional, Union

from astropy import units as u

from .constants import STANDARD_UNIT
from .errors import UnknownUnitError

UnitDimension = Enum(
    "UnitDimension",
    [
        "length",
        "velocity",
        "mass",
        "density",
        "surface_density",
        "time",
        "energy",
    ],
)

# Physical units known to :meth:`.UnitScales.from_code_units`, grouped by
# the dimension they measure
_NAMED_UNITS = {
    "cm": (UnitDimension.length, u.cm),
    "m": (UnitDimension.length, u.m),
    "km": (UnitDimension.length, u.km),
    "au": (UnitDimension.length, u.au),
    "ly": (UnitDimension.length, u.lyr),
    "pc": (UnitDimension.length, u.pc),
    "kpc": (UnitDimension.length, u.kpc),
    "Mpc": (UnitDimension.length, u.Mpc),
    "cm_s": (UnitDimension.velocity, u.cm / u.s),
    "m_s": (UnitDimension.velocity, u.m / u.s),
    "km_s": (UnitDimension.velocity, u.km / u.s),
    "g": (UnitDimension.mass, u.g),
    "kg": (UnitDimension.mass, u.kg),
    "Msol": (UnitDimension.mass, u.M_sun),
    "g_cm3": (UnitDimension.density, u.g / u.cm**3),
    "kg_m3": (UnitDimension.density, u.kg / u.m**3),
    "Msol_pc3": (UnitDimension.density, u.M_sun / u.pc**3),
    "Msol_kpc3": (UnitDimension.density, u.M_sun / u.kpc**3),
    "g_cm2": (UnitDimension.surface_density, u.g / u.cm**2),
    "Msol_pc2": (UnitDimension.surface_density, u.M_sun / u.pc**2),
    "Msol_kpc2": (UnitDimension.surface_density, u.M_sun / u.kpc**2),
    "s": (UnitDimension.time, u.s),
    "yr": (UnitDimension.time, u.yr),
    "Myr": (UnitDimension.time, u.Myr),
    "Gyr": (UnitDimension.time, u.Gyr),
    "erg": (UnitDimension.energy, u.erg),
    "J": (UnitDimension.energy, u.J),
}


class UnitScales(Mapping):
    """A read-only table of multiplicative factors, one per unit name

    A value expressed in code units is converted into the unit ``name`` by
    multiplying it by ``scales[name]``. The unit ``"standard"`` is always
    present and has factor 1. Looking up a unit that is not in the table
    raises :class:`.UnknownUnitError`.

    The engine only relies on the mapping protocol, so any table produced
    by an external reader can be wrapped in this class.
    """

    def __init__(self, factors: Optional[Dict[str, float]] = None):
        table = {STANDARD_UNIT: 1.0}
        if factors:
            for name, value in factors.items():
                value = float(value)
                if not value > 0.0:
                    raise ValueError(
                        f'the factor for unit "{name}" must be positive, got {value}'
                    )
                table[str(name)] = value

        self._factors = MappingProxyType(table)

    def __getitem__(self, name: str) -> float:
        try:
            return self._factors[name]
        except KeyError:
            raise UnknownUnitError(
                f'unknown unit "{name}", valid choices are: '
                + ", ".join(sorted(self._factors.keys()))
            ) from None

    def __iter__(self):
        return iter(self._factors)

    def __len__(self):
        return len(self._factors)

    def __repr__(self):
        return f"UnitScales({dict(self._factors)!r})"

    def factor(self, name: str, power: int = 1) -> float:
        """Return the factor for `name` raised to `power`

        Squared quantities like ``v2`` need the square of a velocity factor."""
        return self[name] ** power

    @classmethod
    def from_code_units(
        cls,
        unit_length: Union[u.Quantity, float],
        unit_density: Union[u.Quantity, float],
        unit_time: Union[u.Quantity, float],
    ) -> "UnitScales":
        """Build the table of scales for a simulation with the given code units

        The three arguments are the physical values of one code unit of
        length, density and time. They can be :class:`astropy.units.Quantity`
        objects or plain numbers, in which case CGS units are assumed. All the
        other code units (velocity, mass, energy…) are derived from these.

        .. doctest::

            >>> from astropy import units as u
            >>> scales = UnitScales.from_code_units(1 * u.kpc, 1 * u.g / u.cm**3, 1 * u.Myr)
            >>> round(scales["pc"])
            1000
        """
        length = u.Quantity(unit_length, u.cm)
        density = u.Quantity(unit_density, u.g / u.cm**3)
        time = u.Quantity(unit_time, u.s)

        code_units = {
            UnitDimension.length: length,
            UnitDimension.velocity: length / time,
            UnitDimension.mass: density * length**3,
            UnitDimension.density: density,
            UnitDimension.surface_density: density * length,
            UnitDimension.time: time,
            UnitDimension.energy: density * length**5 / time**2,
        }

        return cls(
            {
                name: code_units[dimension].to(target).value
                for name, (dimension, target) in _NAMED_UNITS.items()
            }
        )
