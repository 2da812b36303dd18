"""Canonical engine symbols, their SI units and unit conversion factors.

The tables below are process-wide and read-only.  :class:`UnitCatalog`
wraps them in :class:`types.MappingProxyType` so that a catalog can be
injected into every component without any of them being able to alter the
shared state.
"""
from __future__ import annotations

import logging
import re
import warnings
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Mapping, Optional

from .errors import UnknownVariable
from .warnings import UnitWarning

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Variable:
    """Physical quantity as understood by the interpolation engine."""

    symbol: str
    unit: str
    ucd: str
    description: str = ""


# symbol -> (SI unit, UCD, description)
_ENGINE_VARIABLES: Dict[str, tuple[str, str, str]] = {
    "t": ("s", "time.epoch", "Time"),
    "x": ("m", "pos.cartesian.x", "X coordinate"),
    "y": ("m", "pos.cartesian.y", "Y coordinate"),
    "z": ("m", "pos.cartesian.z", "Z coordinate"),
    "rho": ("kg/m^3", "phys.density", "Mass density"),
    "n": ("1/m^3", "phys.density", "Number density"),
    "vx": ("m/s", "phys.veloc", "Plasma velocity, x component"),
    "vy": ("m/s", "phys.veloc", "Plasma velocity, y component"),
    "vz": ("m/s", "phys.veloc", "Plasma velocity, z component"),
    "v": ("m/s", "phys.veloc", "Plasma speed"),
    "U": ("J/m^3", "phys.energy.density", "Total energy density"),
    "P": ("Pa", "phys.pressure", "Thermal pressure"),
    "T": ("K", "phys.temperature", "Temperature"),
    "Bx": ("T", "phys.magField", "Magnetic field, x component"),
    "By": ("T", "phys.magField", "Magnetic field, y component"),
    "Bz": ("T", "phys.magField", "Magnetic field, z component"),
    "B": ("T", "phys.magField", "Magnetic field magnitude"),
    "Ex": ("V/m", "phys.electField", "Electric field, x component"),
    "Ey": ("V/m", "phys.electField", "Electric field, y component"),
    "Ez": ("V/m", "phys.electField", "Electric field, z component"),
    "E": ("V/m", "phys.electField", "Electric field magnitude"),
    "jx": ("A/m^2", "phys", "Current density, x component"),
    "jy": ("A/m^2", "phys", "Current density, y component"),
    "jz": ("A/m^2", "phys", "Current density, z component"),
    "j": ("A/m^2", "phys", "Current density magnitude"),
    "Ebin0": ("m-2.s-1.sr-1.eV-1", "phys.flux.density", "Differential particle flux"),
    "Seconds": ("s", "time", "Time from the start point of the particle"),
}

# Non-SI unit -> multiplier to SI
_UNIT_CONVERSIONS: Dict[str, float] = {
    "km": 1.0e3,
    "mi": 1609.344,
    "km/s": 1.0e3,
    "km/h": 1.0 / 3.6,
    "kg": 1.0,
    "g": 1.0e-3,
    "1/cm^3": 1.0e6,
    "cm^-3": 1.0e6,
    "cm-3": 1.0e6,
    "nT": 1.0e-9,
    "mV/m": 1.0e-3,
    "nPa": 1.0e-9,
    "eV": 1.602177e-19,
    "C": 1.0,
}

# Leading multiplier such as "6371", "1.5e3", "6.371x10+6" or "6.371x10^6"
_MULTIPLIER_RE = re.compile(
    r"^\s*(?P<mantissa>[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)"
    r"(?:\s*[x*]\s*10\s*\^?\s*(?P<exponent>[-+]?\d+))?\s*(?P<unit>.*?)\s*$"
)


class UnitCatalog:
    """Read-only catalog of engine variables and unit conversions."""

    def __init__(
        self,
        variables: Optional[Mapping[str, tuple[str, str, str]]] = None,
        conversions: Optional[Mapping[str, float]] = None,
    ) -> None:
        table = _ENGINE_VARIABLES if variables is None else variables
        self._variables: Mapping[str, Variable] = MappingProxyType(
            {symbol: Variable(symbol, *entry) for symbol, entry in table.items()}
        )
        self._conversions: Mapping[str, float] = MappingProxyType(
            dict(_UNIT_CONVERSIONS if conversions is None else conversions)
        )
        self._si_units = frozenset(var.unit for var in self._variables.values())

    @property
    def variables(self) -> Mapping[str, Variable]:
        return self._variables

    def variable(self, symbol: str) -> Variable:
        """Return the :class:`Variable` registered for ``symbol``."""

        try:
            return self._variables[symbol]
        except KeyError:
            raise UnknownVariable(symbol, "no such engine symbol") from None

    def unit(self, symbol: str) -> str:
        return self.variable(symbol).unit

    def ucd(self, symbol: str) -> str:
        return self.variable(symbol).ucd

    def is_si_unit(self, unit: str) -> bool:
        return unit.strip() in self._si_units

    def _suffix_factor(self, suffix: str) -> Optional[float]:
        if suffix in self._conversions:
            return self._conversions[suffix]
        if suffix in self._si_units:
            return 1.0
        return None

    def unit_factor(self, unit: Optional[str]) -> float:
        """Return the multiplier converting values in ``unit`` to SI.

        ``unit`` may carry a leading numeric multiplier, e.g. ``"6371km"``
        or ``"6.371x10+6m"``.  Unrecognised unit suffixes contribute a
        factor of one and emit a :class:`~plasmagrid.warnings.UnitWarning`.
        """

        if unit is None:
            return 1.0
        text = unit.strip()
        if not text:
            return 1.0
        # "1/cm^3" starts with a digit but is a unit in its own right
        direct = self._suffix_factor(text)
        if direct is not None:
            return direct

        multiplier = 1.0
        suffix = text
        match = _MULTIPLIER_RE.match(text)
        if match is not None:
            multiplier = float(match.group("mantissa"))
            exponent = match.group("exponent")
            if exponent is not None:
                multiplier *= 10.0 ** int(exponent)
            suffix = match.group("unit")

        if not suffix:
            return multiplier
        factor = self._suffix_factor(suffix)
        if factor is None:
            logger.warning("Unrecognised unit '%s'; values are passed through unscaled", unit)
            warnings.warn(f"Unrecognised unit '{unit}'", UnitWarning, stacklevel=2)
            factor = 1.0
        return multiplier * factor


DEFAULT_CATALOG = UnitCatalog()


__all__ = ["Variable", "UnitCatalog", "DEFAULT_CATALOG"]
