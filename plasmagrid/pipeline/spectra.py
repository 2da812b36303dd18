"""Energy channels of spectral (particle flux) outputs.

For spectral snapshot files the engine returns every channel regardless of
the symbol list, as columns ``Ebin0 Ebin1 ...`` after the position.
"""
from __future__ import annotations

from typing import List, Optional, Sequence

from ..errors import EngineFailure, RequestError
from ..io.votable import VOParam
from ..schema import EnergyBand, EnergyChannels, SimulationRun
from ..table import Table

SPECTRAL_SYMBOL = "Ebin0"


def channels_of(run: SimulationRun) -> EnergyChannels:
    if run.energy_channels is None:
        raise RequestError(f"NumericalOutput element does not contain spectral information: {run.resource_id}")
    return run.energy_channels


def select_bands(channels: EnergyChannels, names: Sequence[str]) -> List[int]:
    """Indices of the requested bands, in channel order; all when ``names`` is empty."""

    if not names:
        return list(range(len(channels.bands)))
    known = {band.name: index for index, band in enumerate(channels.bands)}
    wanted = set()
    for name in names:
        if name not in known:
            raise RequestError(f"Illegal input parameter value: unknown energy channel {name}")
        wanted.add(known[name])
    return sorted(wanted)


def energy_range_param(channels: EnergyChannels, indices: Optional[Sequence[int]] = None) -> VOParam:
    """``EnergyRange`` PARAM: lower edges of the chosen bands, then the run's upper edge."""

    if indices is None:
        indices = range(len(channels.bands))
    chosen: List[EnergyBand] = [channels.bands[i] for i in indices]
    edges = [band.low for band in chosen]
    edges.append(channels.high)
    return VOParam(
        name="EnergyRange",
        value=" ".join(f"{edge:g}" for edge in edges),
        datatype="float",
        unit=channels.units,
        ucd="instr.param",
        arraysize=str(len(edges)),
    )


def restrict_channels(table: Table, channels: EnergyChannels, indices: Sequence[int]) -> Table:
    """Keep the position columns and the requested channel columns."""

    spectral = [name for name in table.columns if name.startswith("Ebin")]
    if len(spectral) != len(channels.bands):
        raise EngineFailure(
            f"engine returned {len(spectral)} energy channels, run declares {len(channels.bands)}"
        )
    keep = [name for name in table.columns if not name.startswith("Ebin")]
    keep += [spectral[index] for index in indices]
    return Table(keep, table.frame[keep].copy(), list(table.comments))


__all__ = ["SPECTRAL_SYMBOL", "channels_of", "select_bands", "energy_range_param", "restrict_channels"]
