"""netCDF output staged as CDL text and compiled by ``ncgen``."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Sequence

import numpy as np

from ..constants import MISSING_SENTINEL
from ..errors import FormatCompilerFailure, ScratchIOError
from ..pipeline.interpolation import run_tool
from ..schema import FormatCompilerConfig

logger = logging.getLogger(__name__)

_NAME_DIM_MIN = 20


@dataclass
class CDLVariable:
    """One ``float name(count)`` variable."""

    name: str
    values: np.ndarray
    units: str = ""
    long_name: str = ""


def _quote(text: str) -> str:
    escaped = str(text).replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    return f'"{escaped}"'


def _number(value: float) -> str:
    return f"{float(value):.9g}"


def _wrap(items: Sequence[str], per_line: int = 8) -> str:
    lines = [", ".join(items[i : i + per_line]) for i in range(0, len(items), per_line)]
    return ",\n    ".join(lines)


def render_cdl(
    dataset_name: str,
    variables: Sequence[CDLVariable],
    *,
    planet_name: str,
    planet_radius: float,
    planet_radius_units: str,
    global_attributes: Mapping[str, str],
    time_tokens: Optional[Sequence[str]] = None,
) -> str:
    """Render CDL text describing ``variables`` plus planet scalars."""

    count = len(variables[0].values) if variables else len(time_tokens or [])
    for variable in variables:
        if len(variable.values) != count:
            raise ValueError(f"variable {variable.name} has {len(variable.values)} values, expected {count}")
    name_dim = max(_NAME_DIM_MIN, len(planet_name))
    time_dim = max((len(token) for token in time_tokens), default=1) if time_tokens else 0

    out: List[str] = [f"netcdf {dataset_name} {{", "dimensions:"]
    out.append("\tdim_1 = 1 ;")
    out.append(f"\tdimname = {name_dim} ;")
    out.append(f"\tcount = {count} ;" if count else "\tcount = UNLIMITED ; // (0 currently)")
    if time_tokens:
        out.append(f"\tdimtime = {time_dim} ;")

    out.append("variables:")
    out.append("\tchar planetname(dimname) ;")
    out.append("\tfloat r_planet(dim_1) ;")
    out.append(f"\t\tr_planet:units = {_quote(planet_radius_units)} ;")
    if time_tokens:
        out.append("\tchar Time(count, dimtime) ;")
        out.append(f"\t\tTime:long_name = {_quote('Time, ISO 8601')} ;")
    for variable in variables:
        out.append(f"\tfloat {variable.name}(count) ;")
        out.append(f"\t\t{variable.name}:units = {_quote(variable.units)} ;")
        out.append(f"\t\t{variable.name}:missing_value = {MISSING_SENTINEL:.1f}f ;")
        out.append(f"\t\t{variable.name}:long_name = {_quote(variable.long_name or variable.name)} ;")

    out.append("")
    out.append("// global attributes:")
    for key, value in global_attributes.items():
        out.append(f"\t\t:{key} = {_quote(value)} ;")

    out.append("data:")
    out.append(f" planetname = {_quote(planet_name)} ;")
    out.append(f" r_planet = {_number(planet_radius)} ;")
    if count:
        if time_tokens:
            out.append(f" Time =\n    {_wrap([_quote(token) for token in time_tokens], 4)} ;")
        for variable in variables:
            cells = [_number(value) for value in np.asarray(variable.values, dtype=float)]
            out.append(f" {variable.name} =\n    {_wrap(cells)} ;")
    out.append("}")
    return "\n".join(out) + "\n"


def write_cdl(path: Path, text: str) -> Path:
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise ScratchIOError(f"Could not write CDL file {path}: {exc}") from exc
    return path


def compile_cdl(cdl_path: Path, output_path: Path, config: Optional[FormatCompilerConfig] = None) -> Path:
    """Compile a CDL file into binary netCDF with the configured compiler."""

    config = config if config is not None else FormatCompilerConfig()
    command: Iterable[str] = [*config.command, "-o", str(output_path), str(cdl_path)]
    run_tool(list(command), timeout=config.timeout_s, error=FormatCompilerFailure, label="netCDF compiler")
    if not Path(output_path).is_file():
        raise FormatCompilerFailure(f"netCDF compiler did not produce {Path(output_path).name}")
    logger.debug("Compiled %s into %s", Path(cdl_path).name, Path(output_path).name)
    return Path(output_path)


__all__ = ["CDLVariable", "render_cdl", "write_cdl", "compile_cdl"]
