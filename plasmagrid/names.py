"""Translation between parameter keys, engine symbols and output field names.

Three naming domains meet in the pipeline:

* parameter keys, as published by the simulation run (``"Btot"``, ``"Ux"``),
* engine symbols, as understood by the interpolation engine (``"B"``, ``"vx"``),
* output field names, as written into result tables (``"Btot"``, ``"Ux"``).
"""
from __future__ import annotations

from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional

from .catalog import DEFAULT_CATALOG, UnitCatalog, Variable
from .errors import UnknownVariable

# parameter key -> engine symbol
_KEY_TO_SYMBOL: Dict[str, str] = {
    "Density": "n",
    "MassDensity": "rho",
    "Ux": "vx",
    "Uy": "vy",
    "Uz": "vz",
    "Utot": "v",
    "Jx": "jx",
    "Jy": "jy",
    "Jz": "jz",
    "Jtot": "j",
    "EnergyDensity": "U",
    "Pressure": "P",
    "Temperature": "T",
    "Bx": "Bx",
    "By": "By",
    "Bz": "Bz",
    "Btot": "B",
    "Ex": "Ex",
    "Ey": "Ey",
    "Ez": "Ez",
    "Etot": "E",
    "ParticleFlux": "Ebin0",
}

# engine symbol -> output field name
_SYMBOL_TO_FIELD: Dict[str, str] = {
    "t": "Time",
    "x": "x",
    "y": "y",
    "z": "z",
    "rho": "MassDensity",
    "n": "Density",
    "vx": "Ux",
    "vy": "Uy",
    "vz": "Uz",
    "v": "Utot",
    "jx": "Jx",
    "jy": "Jy",
    "jz": "Jz",
    "j": "Jtot",
    "U": "EnergyDensity",
    "P": "Pressure",
    "T": "Temperature",
    "Bx": "Bx",
    "By": "By",
    "Bz": "Bz",
    "B": "Btot",
    "Ex": "Ex",
    "Ey": "Ey",
    "Ez": "Ez",
    "E": "Etot",
    "Ebin0": "ParticleFlux",
}


class NameTranslator:
    """Resolve names across the three naming domains.

    Parameter keys are matched exactly first and case-insensitively second,
    so ``"btot"`` and ``"Btot"`` both resolve to the magnitude symbol ``B``.
    """

    def __init__(
        self,
        catalog: Optional[UnitCatalog] = None,
        key_to_symbol: Optional[Mapping[str, str]] = None,
        symbol_to_field: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.catalog = catalog if catalog is not None else DEFAULT_CATALOG
        keys = dict(_KEY_TO_SYMBOL if key_to_symbol is None else key_to_symbol)
        fields = dict(_SYMBOL_TO_FIELD if symbol_to_field is None else symbol_to_field)
        self._key_to_symbol: Mapping[str, str] = MappingProxyType(keys)
        self._folded_keys: Mapping[str, str] = MappingProxyType({k.lower(): v for k, v in keys.items()})
        self._symbol_to_field: Mapping[str, str] = MappingProxyType(fields)
        self._field_to_symbol: Mapping[str, str] = MappingProxyType({v: k for k, v in fields.items()})
        self._symbol_to_key: Mapping[str, str] = MappingProxyType({v: k for k, v in keys.items()})

    def symbol(self, key: str) -> str:
        """Return the engine symbol for a parameter key."""

        name = key.strip()
        symbol = self._key_to_symbol.get(name)
        if symbol is None:
            symbol = self._folded_keys.get(name.lower())
        if symbol is None:
            raise UnknownVariable(key)
        return symbol

    def resolve(self, key: str) -> Variable:
        """Return the :class:`Variable` a parameter key stands for."""

        return self.catalog.variable(self.symbol(key))

    def to_canonical_list(self, keys: Iterable[str]) -> List[str]:
        """Map parameter keys to engine symbols, preserving caller order."""

        return [self.symbol(key) for key in keys]

    def field_name(self, symbol: str) -> str:
        """Return the output field name for an engine symbol.

        Symbols without a registered field name are returned unchanged.
        """

        return self._symbol_to_field.get(symbol, symbol)

    def symbol_for_field(self, name: str) -> str:
        try:
            return self._field_to_symbol[name]
        except KeyError:
            raise UnknownVariable(name, "no such output field") from None

    def key_for_symbol(self, symbol: str) -> str:
        try:
            return self._symbol_to_key[symbol]
        except KeyError:
            raise UnknownVariable(symbol, "no parameter key for engine symbol") from None


DEFAULT_TRANSLATOR = NameTranslator()


__all__ = ["NameTranslator", "DEFAULT_TRANSLATOR"]
